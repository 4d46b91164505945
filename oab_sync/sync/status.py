"""
Per-entry status state machine.

Every destination entry carries a status that decides which operation the
change set emitter produces for it. Statuses only move along the
transitions listed in TRANSITIONS; any other request is a programming
error and aborts the run with the offending entry attached.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Status(str, Enum):
    """Lifecycle status of a destination entry within one run."""

    UNSET = "unset"
    NEW = "new"
    KEEP = "keep"
    UPDATE = "update"
    DELETE = "delete"
    STRIP = "strip"


# (current, requested) -> resulting status. Identity pairs are added below.
TRANSITIONS: dict[tuple[Status, Status], Status] = {
    (Status.NEW, Status.UPDATE): Status.NEW,
    (Status.UNSET, Status.STRIP): Status.STRIP,
    (Status.UNSET, Status.DELETE): Status.DELETE,
    (Status.UNSET, Status.KEEP): Status.KEEP,
    (Status.UNSET, Status.NEW): Status.NEW,
    (Status.DELETE, Status.KEEP): Status.KEEP,
    (Status.DELETE, Status.UPDATE): Status.UPDATE,
    (Status.KEEP, Status.UPDATE): Status.UPDATE,
}
TRANSITIONS.update({(status, status): status for status in Status})

# Requests ignored while cleaning the account
CLEAN_MODE_REJECTED = frozenset({Status.KEEP, Status.NEW, Status.UPDATE})


class StatusCarrier(Protocol):
    """Anything with a status that can describe itself for diagnostics."""

    status: Status

    def describe(self) -> dict[str, Any]: ...


class InvalidTransitionError(Exception):
    """Raised when a status transition outside the table is requested."""

    def __init__(self, current: Status, requested: Status, entry: dict[str, Any]):
        self.current = current
        self.requested = requested
        self.entry = entry
        dump = json.dumps(entry, indent=2, sort_keys=True, default=str)
        super().__init__(
            f"Invalid status transition {current.value}:{requested.value}\n{dump}"
        )


class StatusMachine:
    """
    Applies status transitions to entries.

    A single instance is owned by the reconciler and shared with the
    contact index so both follow the same mode.

    Attributes:
        clean: When True, entries are frozen at their delete/strip outcome
               and keep/new/update requests are ignored.
    """

    def __init__(self, clean: bool = False):
        self.clean = clean

    def transition(self, entry: StatusCarrier, requested: Status) -> Status:
        """
        Move an entry to the status resulting from a request.

        Args:
            entry: The entry whose status changes
            requested: The requested status

        Returns:
            The entry's status after the transition

        Raises:
            InvalidTransitionError: If the pair is not in the table
        """
        current = entry.status

        if self.clean and requested in CLEAN_MODE_REJECTED:
            logger.debug(
                f"Clean mode: ignoring {current.value}:{requested.value} request"
            )
            return current

        result = TRANSITIONS.get((current, requested))
        if result is None:
            raise InvalidTransitionError(current, requested, entry.describe())

        if result is not current:
            logger.debug(f"Status {current.value} -> {result.value}")
        entry.status = result
        return result
