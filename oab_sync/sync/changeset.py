"""
Change set emitter.

Walks the reconciled snapshot and turns entry statuses into the insert,
update and delete operations to send to the account, plus the photo
uploads that accompany kept and updated entries.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from oab_sync.sync.entry import DestinationEntry, email_in_domain
from oab_sync.sync.group import GroupRoles
from oab_sync.sync.record import is_managed_label
from oab_sync.sync.status import Status

logger = logging.getLogger(__name__)

# Maximum number of operations per batch request
DEFAULT_BATCH_LIMIT = 100

# Person fields written by this tool, sent as the update mask
PERSON_FIELDS = "names,fileAses,emailAddresses,phoneNumbers,memberships,organizations"


class Action(str, Enum):
    """Operation sent to the account."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Operation:
    """
    A single write to the account.

    Attributes:
        action: insert, update or delete
        correlation_id: "<action>-<email>", unique within the change set
        email: Managed email of the entry
        target: Resource name of the entry (None for inserts)
        concurrency_token: Etag passed back to the account
        payload: Person dict for inserts and updates
        photo: Upload the configured photo once this operation succeeds
        stripped: The operation removes managed fields from a kept entry
    """

    action: Action
    correlation_id: str
    email: str
    target: str | None = None
    concurrency_token: str | None = None
    payload: dict[str, Any] | None = None
    photo: bool = False
    stripped: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "operation": self.action.value,
            "correlationId": self.correlation_id,
        }
        if self.target:
            result["targetIdentity"] = self.target
        if self.concurrency_token:
            result["concurrencyToken"] = self.concurrency_token
        if self.payload is not None:
            result["payload"] = self.payload
        return result


@dataclass
class PhotoUpload:
    """A photo upload for an entry that needs no other write."""

    target: str
    email: str

    @property
    def correlation_id(self) -> str:
        return f"photo-{self.email}"


@dataclass
class ChangeSummary:
    """Counters describing a change set."""

    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    kept: int = 0
    stripped: int = 0
    photo_updates: int = 0

    @property
    def total(self) -> int:
        """Number of write operations."""
        return self.inserted + self.updated + self.deleted

    def to_dict(self) -> dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "deleted": self.deleted,
            "kept": self.kept,
            "stripped": self.stripped,
            "photoUpdates": self.photo_updates,
        }


@dataclass
class ChangeSet:
    """Operations and photo uploads produced from one reconciliation pass."""

    operations: list[Operation] = field(default_factory=list)
    photo_uploads: list[PhotoUpload] = field(default_factory=list)
    summary: ChangeSummary = field(default_factory=ChangeSummary)

    def __len__(self) -> int:
        return len(self.operations)

    def is_empty(self) -> bool:
        return not self.operations and not self.photo_uploads

    def by_action(self, action: Action) -> list[Operation]:
        return [op for op in self.operations if op.action is action]

    def batches(self, size: int = DEFAULT_BATCH_LIMIT) -> list[list[Operation]]:
        """
        Split the operations into batches of at most ``size`` operations.

        Raises:
            ValueError: If size is outside 1..DEFAULT_BATCH_LIMIT
        """
        if not 1 <= size <= DEFAULT_BATCH_LIMIT:
            raise ValueError(
                f"Batch size must be between 1 and {DEFAULT_BATCH_LIMIT}, got {size}"
            )
        return [
            self.operations[i : i + size] for i in range(0, len(self.operations), size)
        ]

    def filter(self, action: Action | None) -> ChangeSet:
        """
        Restrict the change set to one kind of operation.

        Photo uploads of kept entries only survive when no filter is given.
        """
        if action is None:
            return self

        operations = self.by_action(action)
        summary = ChangeSummary(
            inserted=len(operations) if action is Action.INSERT else 0,
            updated=len(operations) if action is Action.UPDATE else 0,
            deleted=len(operations) if action is Action.DELETE else 0,
            kept=self.summary.kept,
            stripped=sum(1 for op in operations if op.stripped),
            photo_updates=sum(1 for op in operations if op.photo),
        )
        return ChangeSet(operations=operations, photo_uploads=[], summary=summary)

    def to_list(self) -> list[dict[str, Any]]:
        return [op.to_dict() for op in self.operations]


class ChangeSetEmitter:
    """
    Builds a ChangeSet from reconciled entries.

    Attributes:
        domain: Managed email domain
        roles: Resolved group roles (the work group is removed when stripping)
        organization: Configured organization (removed when stripping)
    """

    def __init__(
        self,
        domain: str,
        roles: GroupRoles | None = None,
        organization: str | None = None,
    ):
        self.domain = domain
        self.roles = roles
        self.organization = organization
        self._correlation_ids: set[str] = set()

    def emit(self, entries: Iterable[DestinationEntry]) -> ChangeSet:
        """Produce the change set for a reconciled snapshot."""
        self._correlation_ids = set()
        change_set = ChangeSet()

        for entry in entries:
            handler = self._HANDLERS.get(entry.status)
            if handler is not None:
                handler(self, entry, change_set)

        summary = change_set.summary
        summary.photo_updates = len(change_set.photo_uploads) + sum(
            1 for op in change_set.operations if op.photo
        )
        logger.info(
            f"Change set: {summary.inserted} inserts, {summary.updated} updates, "
            f"{summary.deleted} deletes, {summary.kept} kept, "
            f"{summary.photo_updates} photo updates"
        )
        return change_set

    def strip(self, entry: DestinationEntry) -> DestinationEntry | None:
        """
        Remove every field this tool manages from a copy of an entry.

        Returns:
            The stripped copy, or None when no email or number would remain
        """
        stripped = entry.clone()
        stripped.emails = [
            e for e in stripped.emails if not email_in_domain(e.address, self.domain)
        ]
        stripped.phones = [p for p in stripped.phones if not is_managed_label(p.label)]
        if self.roles is not None and self.roles.work in stripped.groups:
            stripped.groups.remove(self.roles.work)
        if self.organization:
            stripped.organizations = [
                org
                for org in stripped.organizations
                if org.get("name") != self.organization
            ]

        if not stripped.emails and not stripped.phones:
            return None
        return stripped

    def _email(self, entry: DestinationEntry) -> str:
        return entry.managed_email(self.domain) or entry.label

    def _correlation_id(self, action: Action, email: str) -> str:
        base = f"{action.value}-{email}"
        correlation_id = base
        n = 2
        while correlation_id in self._correlation_ids:
            correlation_id = f"{base}#{n}"
            n += 1
        self._correlation_ids.add(correlation_id)
        return correlation_id

    def _operation(
        self,
        action: Action,
        entry: DestinationEntry,
        payload: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Operation:
        email = self._email(entry)
        return Operation(
            action=action,
            correlation_id=self._correlation_id(action, email),
            email=email,
            target=entry.identity,
            concurrency_token=entry.concurrency_token,
            payload=payload,
            **kwargs,
        )

    def _emit_delete(self, entry: DestinationEntry, change_set: ChangeSet) -> None:
        if not entry.identity:
            logger.debug(f"Dropping delete of {entry.label}: never created")
            return
        change_set.operations.append(self._operation(Action.DELETE, entry))
        change_set.summary.deleted += 1

    def _emit_insert(self, entry: DestinationEntry, change_set: ChangeSet) -> None:
        payload = entry.to_api_format(include_photos=False)
        change_set.operations.append(self._operation(Action.INSERT, entry, payload))
        change_set.summary.inserted += 1

    def _emit_update(self, entry: DestinationEntry, change_set: ChangeSet) -> None:
        payload = entry.to_api_format(include_photos=False)
        change_set.operations.append(
            self._operation(
                Action.UPDATE, entry, payload, photo=entry.photo_pending
            )
        )
        change_set.summary.updated += 1

    def _emit_keep(self, entry: DestinationEntry, change_set: ChangeSet) -> None:
        change_set.summary.kept += 1
        if entry.photo_pending and entry.identity:
            change_set.photo_uploads.append(
                PhotoUpload(target=entry.identity, email=self._email(entry))
            )

    def _emit_strip(self, entry: DestinationEntry, change_set: ChangeSet) -> None:
        if not entry.identity:
            return
        change_set.summary.stripped += 1
        stripped = self.strip(entry)
        if stripped is None:
            logger.debug(f"Nothing left of {entry.label} after stripping; deleting")
            self._emit_delete(entry, change_set)
            change_set.operations[-1].stripped = True
            return
        payload = stripped.to_api_format(include_photos=False)
        change_set.operations.append(
            self._operation(Action.UPDATE, entry, payload, stripped=True)
        )
        change_set.summary.updated += 1

    _HANDLERS = {
        Status.DELETE: _emit_delete,
        Status.NEW: _emit_insert,
        Status.UPDATE: _emit_update,
        Status.KEEP: _emit_keep,
        Status.STRIP: _emit_strip,
    }
