"""
Google People API wrapper.

Provides the account side of a reconciliation run:
- Listing contacts and contact groups with pagination
- Creating, updating and deleting contacts
- Sending operations as batch HTTP requests keyed by correlation id
- Uploading contact photos
- Exponential backoff retry logic for rate limits and server errors
"""

import base64
import logging
import time
from collections.abc import Callable
from functools import partial
from typing import Any, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from oab_sync.sync.changeset import PERSON_FIELDS as UPDATE_PERSON_FIELDS
from oab_sync.sync.changeset import Action, Operation

# Person fields read from the account
PERSON_FIELDS = ",".join(
    [
        "names",
        "fileAses",
        "emailAddresses",
        "phoneNumbers",
        "organizations",
        "memberships",
        "photos",
    ]
)

GROUP_FIELDS = "name,groupType,memberCount"

# API maximum page size
MAX_PAGE_SIZE = 1000
DEFAULT_PAGE_SIZE = 1000

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

logger = logging.getLogger(__name__)


class PeopleAPIError(Exception):
    """Raised when a People API operation fails."""

    pass


class RateLimitError(PeopleAPIError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


class PeopleAPI:
    """
    Google People API wrapper for contact operations.

    Attributes:
        credentials: Google OAuth2 credentials
        service: Google API service object

    Usage:
        api = PeopleAPI(credentials)

        people = api.list_people()
        groups = api.list_contact_groups()

        created = api.create_contact(payload)
        api.update_contact("people/c123", etag, payload)
        api.delete_contact("people/c123")

        failures = api.execute_batch(operations)
    """

    def __init__(
        self,
        credentials: Credentials,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
    ):
        self.credentials = credentials
        self.page_size = min(page_size, MAX_PAGE_SIZE)
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self._service = None

    @property
    def service(self) -> Any:
        """
        Get or create the Google API service object.

        Raises:
            PeopleAPIError: If service cannot be created
        """
        if self._service is None:
            try:
                self._service = build(
                    "people", "v1", credentials=self.credentials, cache_discovery=False
                )
            except Exception as e:
                raise PeopleAPIError(f"Failed to create API service: {e}") from e
            logger.debug("Created People API service")
        return self._service

    def _retry_with_backoff(
        self, operation: Callable[[], Any], operation_name: str
    ) -> Any:
        """
        Execute an operation with exponential backoff retry.

        Rate limits (429, 403) and server errors (5xx) are retried; other
        HTTP errors fail immediately.

        Args:
            operation: Callable to execute
            operation_name: Name for logging purposes

        Returns:
            Result of the operation

        Raises:
            RateLimitError: If retries are exhausted due to rate limits
            PeopleAPIError: For other API errors
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                return operation()

            except HttpError as e:
                status_code = e.resp.status

                if status_code in (429, 403):
                    if last_attempt:
                        raise RateLimitError(
                            f"Rate limit exceeded for {operation_name} "
                            f"after {self.max_retries} retries"
                        ) from e
                    logger.warning(
                        f"{operation_name} rate limited, retrying in "
                        f"{delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue

                if status_code >= 500 and not last_attempt:
                    logger.warning(
                        f"{operation_name} server error ({status_code}), "
                        f"retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue

                logger.error(f"{operation_name} failed with status {status_code}: {e}")
                raise PeopleAPIError(f"{operation_name} failed: {e}") from e

        raise PeopleAPIError(f"{operation_name} failed after all retries")

    def _list_pages(
        self, request: Callable[[dict[str, Any]], Any], key: str, name: str
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page_token: Optional[str] = None

        while True:
            params: dict[str, Any] = {"pageSize": self.page_size}
            if page_token:
                params["pageToken"] = page_token

            response = self._retry_with_backoff(partial(request, params), name)
            items.extend(response.get(key, []))

            page_token = response.get("nextPageToken")
            if not page_token:
                return items

    def list_people(self) -> list[dict[str, Any]]:
        """
        List every contact of the account as raw person resources.

        Raises:
            PeopleAPIError: If listing fails
            RateLimitError: If rate limit exceeded
        """

        def request(params: dict[str, Any]) -> Any:
            return (
                self.service.people()
                .connections()
                .list(resourceName="people/me", personFields=PERSON_FIELDS, **params)
                .execute()
            )

        people = self._list_pages(request, "connections", "list_people")
        logger.info(f"Listed {len(people)} contacts")
        return people

    def list_contact_groups(self) -> list[dict[str, Any]]:
        """
        List all contact groups, user-created and system groups alike.

        Raises:
            PeopleAPIError: If listing fails
        """

        def request(params: dict[str, Any]) -> Any:
            return (
                self.service.contactGroups()
                .list(groupFields=GROUP_FIELDS, **params)
                .execute()
            )

        groups = self._list_pages(request, "contactGroups", "list_contact_groups")
        logger.debug(f"Listed {len(groups)} contact groups")
        return groups

    def _create_request(self, payload: dict[str, Any]) -> Any:
        return self.service.people().createContact(
            body=payload, personFields=PERSON_FIELDS
        )

    def _update_request(
        self, resource_name: str, etag: Optional[str], payload: dict[str, Any]
    ) -> Any:
        body = dict(payload)
        body["resourceName"] = resource_name
        if etag:
            body["etag"] = etag
        return self.service.people().updateContact(
            resourceName=resource_name,
            body=body,
            updatePersonFields=UPDATE_PERSON_FIELDS,
            personFields=PERSON_FIELDS,
        )

    def _delete_request(self, resource_name: str) -> Any:
        return self.service.people().deleteContact(resourceName=resource_name)

    def create_contact(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a contact and return the created person."""
        created = self._retry_with_backoff(
            lambda: self._create_request(payload).execute(), "create_contact"
        )
        logger.debug(f"Created contact {created.get('resourceName')}")
        return created

    def update_contact(
        self, resource_name: str, etag: Optional[str], payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Update the managed fields of a contact.

        The etag is passed back so the account rejects the update when the
        contact changed since the snapshot was taken.
        """
        updated = self._retry_with_backoff(
            lambda: self._update_request(resource_name, etag, payload).execute(),
            f"update_contact({resource_name})",
        )
        logger.debug(f"Updated contact {resource_name}")
        return updated

    def delete_contact(self, resource_name: str) -> bool:
        """Delete a contact."""
        self._retry_with_backoff(
            lambda: self._delete_request(resource_name).execute(),
            f"delete_contact({resource_name})",
        )
        logger.debug(f"Deleted contact {resource_name}")
        return True

    def upload_photo(self, resource_name: str, photo_bytes: bytes) -> bool:
        """
        Upload a contact photo.

        Args:
            resource_name: Contact's resource name (e.g., "people/c12345")
            photo_bytes: JPEG data

        Raises:
            PeopleAPIError: If the upload fails
        """
        body = {"photoBytes": base64.b64encode(photo_bytes).decode("ascii")}

        def execute_upload() -> Any:
            return (
                self.service.people()
                .updateContactPhoto(resourceName=resource_name, body=body)
                .execute()
            )

        self._retry_with_backoff(execute_upload, f"upload_photo({resource_name})")
        logger.debug(f"Uploaded photo for contact {resource_name}")
        return True

    def _request_for(self, operation: Operation) -> Any:
        if operation.action is Action.INSERT:
            return self._create_request(operation.payload or {})
        if operation.action is Action.UPDATE:
            return self._update_request(
                operation.target or "",
                operation.concurrency_token,
                operation.payload or {},
            )
        return self._delete_request(operation.target or "")

    def execute_batch(
        self, operations: list[Operation]
    ) -> dict[str, Optional[Exception]]:
        """
        Send operations as one batch HTTP request.

        Each request is keyed by the operation's correlation id, so the
        per-request outcomes can be matched back to the operations.

        Args:
            operations: Operations to send (at most 100)

        Returns:
            Mapping of correlation id to None (success) or the error

        Raises:
            PeopleAPIError: If the batch request itself fails
        """
        results: dict[str, Optional[Exception]] = {}
        by_id = {operation.correlation_id: operation for operation in operations}

        def callback(request_id: str, response: Any, exception: Any) -> None:
            if exception is not None:
                results[request_id] = PeopleAPIError(f"{request_id} failed: {exception}")
                return
            results[request_id] = None
            operation = by_id.get(request_id)
            if operation is not None and operation.action is Action.INSERT and response:
                operation.target = response.get("resourceName")

        def execute() -> Any:
            results.clear()
            batch = self.service.new_batch_http_request(callback=callback)
            for operation in operations:
                batch.add(
                    self._request_for(operation), request_id=operation.correlation_id
                )
            return batch.execute()

        self._retry_with_backoff(execute, f"execute_batch({len(operations)})")

        for operation in operations:
            results.setdefault(
                operation.correlation_id,
                PeopleAPIError(f"No response for {operation.correlation_id}"),
            )
        logger.debug(
            f"Batch of {len(operations)}: "
            f"{sum(1 for e in results.values() if e is None)} succeeded"
        )
        return results
