"""
Reconciler: merge the directory feed into the destination snapshot.

For every directory person the reconciler finds (or creates) the matching
destination entry and diffs the fields the directory owns: phone numbers,
group memberships, name, organization and photo. Each difference moves
the entry's status through the shared StatusMachine; the change set
emitter turns the final statuses into operations.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from oab_sync.config.sync_config import SyncConfig
from oab_sync.sync.entry import (
    DestinationEntry,
    PhoneNumber,
    StructuredName,
    email_in_domain,
)
from oab_sync.sync.group import GroupRoles
from oab_sync.sync.index import ContactIndex
from oab_sync.sync.phone import PhoneNormalizer
from oab_sync.sync.record import (
    CATEGORY_LABELS,
    PhoneCategory,
    SourceRecord,
    is_managed_label,
    merge_duplicate_records,
    prune_assistant_numbers,
)
from oab_sync.sync.status import Status, StatusMachine
from oab_sync.utils.normalization import display_name

logger = logging.getLogger(__name__)

ORGANIZATION_TYPE = "work"


@dataclass
class ReconcileResult:
    """
    Outcome of a reconciliation pass.

    Attributes:
        entries: Every destination entry, mutated in place, plus new shells
        index: The contact index built for the pass
        records: Number of directory records after merging duplicates
        skipped: Directory records without numbers and without an entry
        outside_domain: Directory records whose email is not under the domain
    """

    entries: list[DestinationEntry]
    index: ContactIndex
    records: int = 0
    skipped: list[str] = field(default_factory=list)
    outside_domain: list[str] = field(default_factory=list)

    def count(self, status: Status) -> int:
        return sum(1 for entry in self.entries if entry.status is status)


class Reconciler:
    """
    Drives one reconciliation pass.

    Usage:
        reconciler = Reconciler(config, roles)
        result = reconciler.reconcile(records, decode_snapshot(people))
    """

    def __init__(
        self,
        config: SyncConfig,
        roles: GroupRoles,
        normalizer: PhoneNormalizer | None = None,
    ):
        self.config = config
        self.roles = roles
        self.normalizer = normalizer or PhoneNormalizer(
            config.locale, config.mobile_prefixes
        )
        self.machine = StatusMachine(clean=config.clean)

    def reconcile(
        self,
        records: Iterable[SourceRecord],
        entries: Iterable[DestinationEntry],
    ) -> ReconcileResult:
        """
        Reconcile directory records against destination entries.

        Args:
            records: Directory feed records, in feed order
            entries: Decoded destination snapshot

        Returns:
            ReconcileResult holding the mutated entries
        """
        index = ContactIndex(
            self.config.domain,
            self.machine,
            mixed_policy=self.config.mixed_entries,
            normalizer=self.normalizer,
            work_group=self.roles.work,
        ).build(entries)

        result = ReconcileResult(entries=index.entries, index=index)

        if self.config.clean:
            logger.info("Clean mode: removing every managed entry")
        else:
            records = list(records)
            prune_assistant_numbers(records)
            merged = merge_duplicate_records(records)
            result.records = len(merged)
            for record in merged:
                if not email_in_domain(record.email, self.config.domain):
                    logger.warning(
                        f"Skipping {record.email}: not under {self.config.domain}"
                    )
                    result.outside_domain.append(record.email)
                    continue
                if self.merge(record, index) is None:
                    result.skipped.append(record.email)

        self._finalize(index)
        result.entries = index.entries
        return result

    def merge(
        self, record: SourceRecord, index: ContactIndex
    ) -> DestinationEntry | None:
        """
        Merge one directory record into the snapshot.

        Returns:
            The entry representing the record, or None when the record has
            neither numbers nor an existing entry
        """
        entry = index.lookup(record.email)

        if entry is None:
            if not record.has_numbers():
                logger.debug(f"Skipping {record.email}: no numbers and no entry")
                return None
            entry = DestinationEntry.shell(record.email)
            index.add(entry)
            self.machine.transition(entry, Status.NEW)
            logger.debug(f"New entry for {record.email}")

        phones_changed = self._merge_phones(entry, record)

        if not any(is_managed_label(p.label) for p in entry.phones):
            self._retire(entry)
            return entry

        self._confirm(entry, index)
        changed = phones_changed
        changed |= self._merge_groups(entry)
        changed |= self._merge_name(entry, record)
        changed |= self._merge_organization(entry)
        if changed:
            self.machine.transition(entry, Status.UPDATE)

        self._schedule_photo(entry)
        return entry

    def _confirm(self, entry: DestinationEntry, index: ContactIndex) -> None:
        if entry.status in (Status.UNSET, Status.DELETE):
            requested = Status.KEEP if entry.identity else Status.NEW
            self.machine.transition(entry, requested)
        if index.was_merged(entry):
            self.machine.transition(entry, Status.UPDATE)

    def _retire(self, entry: DestinationEntry) -> None:
        """Handle an entry the directory lists without any number."""
        if entry.status is Status.UNSET:
            self.machine.transition(entry, Status.STRIP)
        elif entry.status is Status.DELETE:
            self.machine.transition(entry, Status.DELETE)
        else:
            logger.warning(
                f"{entry.label} has no directory numbers left but is already "
                f"marked {entry.status.value}; leaving it as is"
            )

    def _label_for(self, number: str, category: PhoneCategory | None) -> str:
        base = CATEGORY_LABELS[category or PhoneCategory.BUSINESS]
        return self.normalizer.label_for(number, base)

    def _merge_phones(self, entry: DestinationEntry, record: SourceRecord) -> bool:
        """
        Bring the entry's managed numbers in line with the record.

        Numbers are compared by normalized value. Matching numbers get the
        label derived from their category, managed numbers the directory no
        longer lists are removed, missing ones are appended. Numbers under
        labels this tool does not own are never touched; a directory number
        held only under such a label gets its own managed copy.
        """
        wanted: dict[str, str] = {}
        for number in record.all_numbers():
            wanted.setdefault(self.normalizer.key(number), number)

        changed = False
        seen: set[str] = set()
        phones: list[PhoneNumber] = []

        for phone in entry.phones:
            if not is_managed_label(phone.label):
                phones.append(phone)
                continue
            key = self.normalizer.key(phone.value)
            if key in wanted and key not in seen:
                seen.add(key)
                number = wanted[key]
                label = self._label_for(number, record.category_of(number))
                if phone.label != label:
                    logger.debug(f"{record.email}: relabel {phone.value} as {label}")
                    phone.label = label
                    changed = True
                phones.append(phone)
            else:
                logger.debug(f"{record.email}: remove {phone.value} ({phone.label})")
                changed = True

        for key, number in wanted.items():
            if key in seen:
                continue
            label = self._label_for(number, record.category_of(number))
            logger.debug(f"{record.email}: add {number} ({label})")
            phones.append(PhoneNumber(value=number, label=label))
            changed = True

        entry.phones = phones
        return changed

    def _merge_groups(self, entry: DestinationEntry) -> bool:
        """
        Apply the group membership policy.

        Directory people belong to the work group and are neither starred
        nor in "My Contacts", unless they are also in the friends group, in
        which case the friends group replaces the work group.
        """
        roles = self.roles
        groups = entry.groups
        in_work = roles.work in groups
        in_friends = roles.friends is not None and roles.friends in groups
        personal = [g for g in (roles.starred, roles.my_contacts) if g in groups]

        if not in_work and not in_friends:
            groups.append(roles.work)
            for group in personal:
                groups.remove(group)
            return True

        if in_work and in_friends:
            groups.remove(roles.work)
            return True

        if in_work and personal:
            for group in personal:
                groups.remove(group)
            return True

        return False

    def _merge_name(self, entry: DestinationEntry, record: SourceRecord) -> bool:
        """Write the display name when the entry has none or renaming is forced."""
        if entry.name is not None and not self.config.force:
            return False

        full_name = display_name(record.full_name, record.family_name)
        if full_name is None:
            return False

        current = entry.name
        if (
            current is not None
            and entry.title == full_name
            and current.full_name == full_name
            and current.given_name == record.given_name
            and current.family_name == record.family_name
        ):
            return False

        attrs = current.attrs if current is not None else {}
        entry.name = StructuredName(
            given_name=record.given_name,
            family_name=record.family_name,
            full_name=full_name,
            attrs=attrs,
        )
        entry.title = full_name
        logger.debug(f"{record.email}: name set to {full_name!r}")
        return True

    def _merge_organization(self, entry: DestinationEntry) -> bool:
        organization = self.config.organization
        if not organization:
            return False
        if any(org.get("name") == organization for org in entry.organizations):
            return False
        entry.organizations.insert(0, {"name": organization, "type": ORGANIZATION_TYPE})
        return True

    def _schedule_photo(self, entry: DestinationEntry) -> None:
        if not self.config.photo or not entry.identity:
            return
        if entry.has_custom_photo and not self.config.force_photo:
            return
        entry.photo_pending = True

    def _finalize(self, index: ContactIndex) -> None:
        """Strip managed entries that were left without a status."""
        for entry in index.managed_entries:
            if entry.status is Status.UNSET and entry.identity:
                logger.debug(f"{entry.label} is not in the directory; stripping")
                self.machine.transition(entry, Status.STRIP)
