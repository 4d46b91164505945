"""
Change applier: send a change set to the account.

Operations go to a ContactSink (the PeopleAPI wrapper in production) one
at a time or as batch requests. Every operation is recorded in the
operations log with its correlation id and outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from oab_sync.api.people_api import PeopleAPIError
from oab_sync.sync.changeset import DEFAULT_BATCH_LIMIT, Action, ChangeSet, Operation
from oab_sync.utils.logging import get_operations_logger

logger = logging.getLogger(__name__)


class ContactSink(Protocol):
    """Destination the change set is written to."""

    def create_contact(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    def update_contact(
        self, resource_name: str, etag: Optional[str], payload: dict[str, Any]
    ) -> dict[str, Any]: ...

    def delete_contact(self, resource_name: str) -> bool: ...

    def upload_photo(self, resource_name: str, photo_bytes: bytes) -> bool: ...

    def execute_batch(
        self, operations: list[Operation]
    ) -> dict[str, Optional[Exception]]: ...


@dataclass
class Failure:
    """A failed operation."""

    correlation_id: str
    error: str


@dataclass
class ApplyResult:
    """
    Outcome of applying a change set.

    Attributes:
        applied: Operations that succeeded (or would have, in dry-run mode)
        failed: Operations that failed
        skipped: Operations not attempted because of the limit
        photos: Photo uploads that succeeded
        failures: Details of each failure
    """

    applied: int = 0
    failed: int = 0
    skipped: int = 0
    photos: int = 0
    failures: list[Failure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class ApplyError(Exception):
    """Raised when an operation fails and the run does not proceed on errors."""

    def __init__(self, message: str, result: ApplyResult):
        super().__init__(message)
        self.result = result


class ChangeApplier:
    """
    Applies change sets to a ContactSink.

    Attributes:
        sink: Where operations are sent
        photo_bytes: Processed photo for photo uploads (None disables them)
        dry_run: Log operations without sending them
        proceed: Continue after failed operations
        batch: Send operations as batch requests
        batch_size: Operations per batch request
        limit: Stop after this many successful writes and photo uploads

    Usage:
        applier = ChangeApplier(api, photo_bytes=photo, proceed=True)
        result = applier.apply(change_set)
    """

    def __init__(
        self,
        sink: ContactSink,
        photo_bytes: Optional[bytes] = None,
        dry_run: bool = False,
        proceed: bool = False,
        batch: bool = False,
        batch_size: int = DEFAULT_BATCH_LIMIT,
        limit: Optional[int] = None,
    ):
        self.sink = sink
        self.photo_bytes = photo_bytes
        self.dry_run = dry_run
        self.proceed = proceed
        self.batch = batch
        self.batch_size = batch_size
        self.limit = limit
        self._ops_log = get_operations_logger()

    def apply(self, change_set: ChangeSet) -> ApplyResult:
        """
        Apply every operation, then the photo uploads of kept entries.

        Raises:
            ApplyError: On the first failure, unless proceeding on errors
        """
        result = ApplyResult()
        prefix = "[dry-run] " if self.dry_run else ""
        logger.info(
            f"{prefix}Applying {len(change_set.operations)} operations and "
            f"{len(change_set.photo_uploads)} photo uploads"
        )

        if self.batch:
            for operations in change_set.batches(self.batch_size):
                self._apply_batch(operations, result)
        else:
            for operation in change_set.operations:
                self._apply_one(operation, result)

        for upload in change_set.photo_uploads:
            if self._limit_reached(result):
                result.skipped += 1
                continue
            self._upload_photo(upload.target, upload.correlation_id, result)

        if result.skipped:
            logger.info(f"Limit of {self.limit} reached; {result.skipped} skipped")
        return result

    def _limit_reached(self, result: ApplyResult) -> bool:
        if self.limit is None:
            return False
        return result.applied + result.photos >= self.limit

    def _send(self, operation: Operation) -> None:
        if operation.action is Action.INSERT:
            created = self.sink.create_contact(operation.payload or {})
            operation.target = created.get("resourceName")
        elif operation.action is Action.UPDATE:
            self.sink.update_contact(
                operation.target or "",
                operation.concurrency_token,
                operation.payload or {},
            )
        else:
            self.sink.delete_contact(operation.target or "")

    def _succeeded(self, operation: Operation, result: ApplyResult) -> None:
        result.applied += 1
        prefix = "[dry-run] " if self.dry_run else ""
        self._ops_log.info(f"{prefix}{operation.correlation_id} {operation.target or ''}")
        if operation.photo and operation.target:
            self._upload_photo(operation.target, operation.correlation_id, result)

    def _fail(
        self, correlation_id: str, error: Exception, result: ApplyResult, raise_now: bool
    ) -> None:
        result.failed += 1
        result.failures.append(Failure(correlation_id=correlation_id, error=str(error)))
        logger.error(f"{correlation_id} failed: {error}")
        self._ops_log.error(f"{correlation_id} FAILED: {error}")
        if raise_now and not self.proceed:
            raise ApplyError(f"{correlation_id} failed: {error}", result) from error

    def _apply_one(self, operation: Operation, result: ApplyResult) -> None:
        if self._limit_reached(result):
            result.skipped += 1
            return

        if self.dry_run:
            logger.info(f"[dry-run] {operation.correlation_id}")
            self._succeeded(operation, result)
            return

        try:
            self._send(operation)
        except PeopleAPIError as e:
            self._fail(operation.correlation_id, e, result, raise_now=True)
            return
        self._succeeded(operation, result)

    def _apply_batch(self, operations: list[Operation], result: ApplyResult) -> None:
        if self.limit is not None:
            remaining = max(self.limit - (result.applied + result.photos), 0)
            result.skipped += len(operations[remaining:])
            operations = operations[:remaining]
        if not operations:
            return

        if self.dry_run:
            for operation in operations:
                logger.info(f"[dry-run] {operation.correlation_id}")
                self._succeeded(operation, result)
            return

        try:
            outcomes = self.sink.execute_batch(operations)
        except PeopleAPIError as e:
            for operation in operations:
                self._fail(operation.correlation_id, e, result, raise_now=False)
            if not self.proceed:
                raise ApplyError(f"Batch request failed: {e}", result) from e
            return

        first_error: Optional[Exception] = None
        for operation in operations:
            error = outcomes.get(operation.correlation_id)
            if error is None:
                self._succeeded(operation, result)
            else:
                self._fail(operation.correlation_id, error, result, raise_now=False)
                first_error = first_error or error

        if first_error is not None and not self.proceed:
            raise ApplyError(f"Batch had failures: {first_error}", result) from first_error

    def _upload_photo(
        self, resource_name: str, correlation_id: str, result: ApplyResult
    ) -> None:
        if self.photo_bytes is None:
            logger.debug(f"No photo loaded; skipping photo for {correlation_id}")
            return

        if self.dry_run:
            logger.info(f"[dry-run] photo for {correlation_id}")
            result.photos += 1
            return

        try:
            self.sink.upload_photo(resource_name, self.photo_bytes)
        except PeopleAPIError as e:
            self._fail(f"photo:{correlation_id}", e, result, raise_now=True)
            return
        result.photos += 1
        self._ops_log.info(f"photo {correlation_id} {resource_name}")
