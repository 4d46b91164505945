"""
Email index over the destination snapshot.

The index maps each managed email address to the single destination entry
that represents that person, collapsing duplicate entries on the way, and
gives every managed entry its initial status.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from oab_sync.config.sync_config import MixedEntryPolicy
from oab_sync.sync.entry import DestinationEntry, PhoneNumber
from oab_sync.sync.phone import PhoneNormalizer
from oab_sync.sync.status import Status, StatusMachine

logger = logging.getLogger(__name__)


class ContactIndex:
    """
    Lookup of managed destination entries by email.

    Pre-existing managed entries start out marked for deletion; the
    reconciler confirms the ones the directory still lists. Entries that
    share a managed email are collapsed into the first one seen: its
    phone numbers gain the duplicate's numbers and the duplicate is
    retired. The first entry keeps its initial status; the reconciler
    writes the merged numbers back once the directory confirms it.

    Attributes:
        domain: Managed email domain
        machine: Status machine shared with the reconciler
        mixed_policy: Policy for managed entries holding other emails
        entries: Every entry of the snapshot, in snapshot order
        duplicates: Number of duplicate entries collapsed
    """

    def __init__(
        self,
        domain: str,
        machine: StatusMachine,
        mixed_policy: MixedEntryPolicy = MixedEntryPolicy.STRIP,
        normalizer: PhoneNormalizer | None = None,
        work_group: str | None = None,
    ):
        self.domain = domain
        self.machine = machine
        self.mixed_policy = mixed_policy
        self.normalizer = normalizer or PhoneNormalizer()
        self.work_group = work_group
        self.entries: list[DestinationEntry] = []
        self.duplicates = 0
        self._by_email: dict[str, DestinationEntry] = {}
        self._in_scope: list[DestinationEntry] = []
        self._merged: set[int] = set()

    def build(self, entries: Iterable[DestinationEntry]) -> ContactIndex:
        """Index every entry of a snapshot."""
        for entry in entries:
            self._index(entry)
        logger.info(
            f"Indexed {len(self.entries)} entries, {len(self._by_email)} managed, "
            f"{self.duplicates} duplicates collapsed"
        )
        return self

    def __len__(self) -> int:
        return len(self._by_email)

    def lookup(self, email: str) -> DestinationEntry | None:
        return self._by_email.get(email.strip().lower())

    def add(self, entry: DestinationEntry) -> None:
        """Register an entry created during reconciliation."""
        email = entry.managed_email(self.domain)
        self.entries.append(entry)
        if email is not None:
            self._by_email[email.lower()] = entry
            self._in_scope.append(entry)

    def was_merged(self, entry: DestinationEntry) -> bool:
        """True when a duplicate's numbers were merged into this entry."""
        return id(entry) in self._merged

    @property
    def managed_entries(self) -> list[DestinationEntry]:
        """Every in-scope entry, duplicates included."""
        return list(self._in_scope)

    def _index(self, entry: DestinationEntry) -> None:
        self.entries.append(entry)

        managed = entry.managed_emails(self.domain)
        if len(managed) > 1:
            logger.warning(
                f"Entry {entry.label} has {len(managed)} addresses under "
                f"{self.domain}; leaving it untouched"
            )
            return
        if not managed:
            if self.work_group and self.work_group in entry.groups:
                logger.warning(
                    f"Entry {entry.label} is in the work group but has no "
                    f"address under {self.domain}"
                )
            return

        self._in_scope.append(entry)
        email = managed[0].lower()
        first = self._by_email.get(email)
        if first is None:
            self._by_email[email] = entry
            self._assume_retired(entry)
        else:
            self._collapse(first, entry)

    def _is_stripped(self, entry: DestinationEntry) -> bool:
        return (
            self.mixed_policy is MixedEntryPolicy.STRIP
            and entry.is_mixed(self.domain)
        )

    def _assume_retired(self, entry: DestinationEntry) -> None:
        if entry.identity is None:
            return
        if self._is_stripped(entry):
            # Confirmed by the directory or stripped at the end of the pass
            if self.machine.clean:
                self.machine.transition(entry, Status.STRIP)
            return
        self.machine.transition(entry, Status.DELETE)

    def _collapse(self, first: DestinationEntry, later: DestinationEntry) -> None:
        self.duplicates += 1
        logger.info(
            f"Duplicate entry for {later.label} ({later.identity}); "
            f"merging into {first.identity}"
        )

        known = {self.normalizer.key(p.value) for p in first.phones}
        added = False
        for phone in later.phones:
            key = self.normalizer.key(phone.value)
            if key in known:
                continue
            known.add(key)
            first.phones.append(PhoneNumber(value=phone.value, label=phone.label))
            added = True

        if added:
            # Written back only if the directory still lists the person
            self._merged.add(id(first))

        if self._is_stripped(later):
            self.machine.transition(later, Status.STRIP)
        else:
            self.machine.transition(later, Status.DELETE)
