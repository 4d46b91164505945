"""
Destination entry model and snapshot codec.

A destination snapshot is a list of People API ``person`` resources. Each
person is decoded into a DestinationEntry whose managed fields (emails,
phone numbers, group memberships, name, organizations) are typed, while
every other field is kept verbatim and written back unchanged.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from oab_sync.sync.status import Status

logger = logging.getLogger(__name__)

# Email label given to entries created from the directory
WORK_EMAIL_LABEL = "work"

# Annotation written into backups, never read back
STATUS_FIELD = "syncStatus"


def email_in_domain(address: str, domain: str) -> bool:
    """Check whether an address belongs to a domain or one of its subdomains."""
    address = address.strip().lower()
    domain = domain.strip().lower().lstrip("@")
    return address.endswith(f"@{domain}") or address.endswith(f".{domain}")


@dataclass
class EmailAddress:
    """An email address with its label and any extra API attributes."""

    address: str
    label: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> EmailAddress:
        attrs = {k: v for k, v in data.items() if k not in ("value", "type")}
        return cls(address=data.get("value", ""), label=data.get("type"), attrs=attrs)

    def to_api_format(self) -> dict[str, Any]:
        result = copy.deepcopy(self.attrs)
        result["value"] = self.address
        if self.label:
            result["type"] = self.label
        return result


@dataclass
class PhoneNumber:
    """A phone number with its label and any extra API attributes."""

    value: str
    label: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> PhoneNumber:
        attrs = {k: v for k, v in data.items() if k not in ("value", "type")}
        return cls(value=data.get("value", ""), label=data.get("type"), attrs=attrs)

    def to_api_format(self) -> dict[str, Any]:
        result = copy.deepcopy(self.attrs)
        result["value"] = self.value
        if self.label:
            result["type"] = self.label
        return result


@dataclass
class StructuredName:
    """The structured name block of a person."""

    given_name: str | None = None
    family_name: str | None = None
    full_name: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> StructuredName:
        known = ("givenName", "familyName", "unstructuredName")
        return cls(
            given_name=data.get("givenName"),
            family_name=data.get("familyName"),
            full_name=data.get("unstructuredName"),
            attrs={k: v for k, v in data.items() if k not in known},
        )

    def to_api_format(self) -> dict[str, Any]:
        result = copy.deepcopy(self.attrs)
        if self.given_name:
            result["givenName"] = self.given_name
        if self.family_name:
            result["familyName"] = self.family_name
        if self.full_name:
            result["unstructuredName"] = self.full_name
        return result


@dataclass
class DestinationEntry:
    """
    A contact in the destination account.

    Attributes:
        identity: People API resource name (None until created)
        concurrency_token: People API etag, passed back on update
        emails: Email addresses in account order
        phones: Phone numbers in account order
        groups: Contact group resource names
        name: Structured name block (first entry of ``names``)
        title: Flat display title (first entry of ``fileAses``)
        organizations: Organization dicts, verbatim
        photos: Photo dicts, verbatim
        extra: Every person field without a typed counterpart
        status: Lifecycle status for the current run
        photo_pending: True when the configured photo should be uploaded
    """

    identity: str | None = None
    concurrency_token: str | None = None
    emails: list[EmailAddress] = field(default_factory=list)
    phones: list[PhoneNumber] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)
    foreign_memberships: list[dict[str, Any]] = field(default_factory=list)
    name: StructuredName | None = None
    extra_names: list[dict[str, Any]] = field(default_factory=list)
    title: str | None = None
    extra_file_ases: list[dict[str, Any]] = field(default_factory=list)
    organizations: list[dict[str, Any]] = field(default_factory=list)
    photos: list[dict[str, Any]] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)
    status: Status = Status.UNSET
    photo_pending: bool = False

    @classmethod
    def shell(cls, email: str) -> DestinationEntry:
        """Create an empty entry for a directory person missing from the account."""
        return cls(emails=[EmailAddress(address=email, label=WORK_EMAIL_LABEL)])

    @classmethod
    def from_api_response(cls, person: dict[str, Any]) -> DestinationEntry:
        """
        Decode a People API person resource.

        Known fields are dispatched to their decoder; unknown fields are
        copied into ``extra`` so they survive the round trip.
        """
        entry = cls()
        for key, value in person.items():
            if key == STATUS_FIELD:
                continue
            decoder = _FIELD_DECODERS.get(key)
            if decoder is None:
                entry.extra[key] = copy.deepcopy(value)
            else:
                decoder(entry, value)
        return entry

    def to_api_format(
        self, include_photos: bool = True, include_status: bool = False
    ) -> dict[str, Any]:
        """
        Encode the entry as a People API person resource.

        Args:
            include_photos: Include the read-only ``photos`` field
            include_status: Annotate the person with its sync status

        Returns:
            Person dict
        """
        person: dict[str, Any] = {}
        if self.identity:
            person["resourceName"] = self.identity
        if self.concurrency_token:
            person["etag"] = self.concurrency_token

        names = copy.deepcopy(self.extra_names)
        if self.name is not None:
            names.insert(0, self.name.to_api_format())
        if names:
            person["names"] = names

        file_ases = copy.deepcopy(self.extra_file_ases)
        if self.title:
            file_ases.insert(0, {"value": self.title})
        if file_ases:
            person["fileAses"] = file_ases

        if self.emails:
            person["emailAddresses"] = [e.to_api_format() for e in self.emails]
        if self.phones:
            person["phoneNumbers"] = [p.to_api_format() for p in self.phones]
        if self.organizations:
            person["organizations"] = copy.deepcopy(self.organizations)

        memberships = [
            {"contactGroupMembership": {"contactGroupResourceName": group}}
            for group in self.groups
        ]
        memberships.extend(copy.deepcopy(self.foreign_memberships))
        if memberships:
            person["memberships"] = memberships

        if include_photos and self.photos:
            person["photos"] = copy.deepcopy(self.photos)

        for key, value in self.extra.items():
            person[key] = copy.deepcopy(value)

        if include_status:
            person[STATUS_FIELD] = self.status.value

        return person

    def describe(self) -> dict[str, Any]:
        """Full state of the entry, for diagnostics."""
        return self.to_api_format(include_status=True)

    def clone(self) -> DestinationEntry:
        return copy.deepcopy(self)

    def managed_emails(self, domain: str) -> list[str]:
        """Email addresses of this entry that fall under the managed domain."""
        return [e.address for e in self.emails if email_in_domain(e.address, domain)]

    def managed_email(self, domain: str) -> str | None:
        """The single managed email, or None when there is not exactly one."""
        managed = self.managed_emails(domain)
        return managed[0] if len(managed) == 1 else None

    def is_managed(self, domain: str) -> bool:
        return self.managed_email(domain) is not None

    def is_mixed(self, domain: str) -> bool:
        """True for a managed entry that also holds non-managed emails."""
        return self.is_managed(domain) and len(self.emails) > 1

    @property
    def has_custom_photo(self) -> bool:
        """True when the account holds a photo set by a person, not a placeholder."""
        return any(not photo.get("default", False) for photo in self.photos)

    @property
    def label(self) -> str:
        """Short human-readable identification for log messages."""
        email = self.emails[0].address if self.emails else None
        return email or self.identity or "<empty entry>"


def _decode_identity(entry: DestinationEntry, value: Any) -> None:
    entry.identity = value or None


def _decode_etag(entry: DestinationEntry, value: Any) -> None:
    entry.concurrency_token = value or None


def _decode_emails(entry: DestinationEntry, value: Any) -> None:
    entry.emails = [EmailAddress.from_api_response(item) for item in value or []]


def _decode_phones(entry: DestinationEntry, value: Any) -> None:
    entry.phones = [PhoneNumber.from_api_response(item) for item in value or []]


def _decode_memberships(entry: DestinationEntry, value: Any) -> None:
    for item in value or []:
        group = item.get("contactGroupMembership")
        if not group:
            entry.foreign_memberships.append(copy.deepcopy(item))
            continue
        resource_name = group.get("contactGroupResourceName")
        if not resource_name and group.get("contactGroupId"):
            resource_name = f"contactGroups/{group['contactGroupId']}"
        if resource_name and resource_name not in entry.groups:
            entry.groups.append(resource_name)


def _decode_names(entry: DestinationEntry, value: Any) -> None:
    names = list(value or [])
    if names:
        entry.name = StructuredName.from_api_response(names[0])
        entry.extra_names = copy.deepcopy(names[1:])


def _decode_file_ases(entry: DestinationEntry, value: Any) -> None:
    file_ases = list(value or [])
    if file_ases:
        entry.title = file_ases[0].get("value")
        entry.extra_file_ases = copy.deepcopy(file_ases[1:])


def _decode_organizations(entry: DestinationEntry, value: Any) -> None:
    entry.organizations = copy.deepcopy(list(value or []))


def _decode_photos(entry: DestinationEntry, value: Any) -> None:
    entry.photos = copy.deepcopy(list(value or []))


_FIELD_DECODERS: dict[str, Callable[[DestinationEntry, Any], None]] = {
    "resourceName": _decode_identity,
    "etag": _decode_etag,
    "emailAddresses": _decode_emails,
    "phoneNumbers": _decode_phones,
    "memberships": _decode_memberships,
    "names": _decode_names,
    "fileAses": _decode_file_ases,
    "organizations": _decode_organizations,
    "photos": _decode_photos,
}


def decode_snapshot(people: Iterable[dict[str, Any]]) -> list[DestinationEntry]:
    """Decode a list of People API persons into destination entries."""
    entries = [DestinationEntry.from_api_response(person) for person in people]
    logger.debug(f"Decoded {len(entries)} destination entries")
    return entries


def encode_snapshot(
    entries: Iterable[DestinationEntry], include_status: bool = False
) -> list[dict[str, Any]]:
    """Encode destination entries back into People API persons."""
    return [entry.to_api_format(include_status=include_status) for entry in entries]
