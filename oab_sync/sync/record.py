"""
Source record model.

A SourceRecord is one person from the authoritative directory feed: an
email address (the identity key), name fields and normalized phone numbers
tagged by category.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from oab_sync.sync.phone import MOBILE_QUALIFIER, PhoneNormalizer
from oab_sync.utils.normalization import name_from_email, normalize_string

logger = logging.getLogger(__name__)


class SourceRecordError(Exception):
    """Raised when a feed entry cannot be turned into a source record."""

    pass


class PhoneCategory(str, Enum):
    """Category of a directory phone number."""

    BUSINESS = "business"
    MOBILE = "mobile"
    ASSISTANT = "assistant"


# Precedence when the same number appears under several categories
CATEGORY_ORDER = (PhoneCategory.BUSINESS, PhoneCategory.MOBILE, PhoneCategory.ASSISTANT)

PRIMARY_CATEGORIES = frozenset({PhoneCategory.BUSINESS, PhoneCategory.MOBILE})

# Base label written to the account for each category
CATEGORY_LABELS = {
    PhoneCategory.BUSINESS: "Work",
    PhoneCategory.MOBILE: "Work",
    PhoneCategory.ASSISTANT: "Assistant",
}

# Feed field names accepted for each category, compared normalized
CATEGORY_ALIASES = {
    "business": PhoneCategory.BUSINESS,
    "primary": PhoneCategory.BUSINESS,
    "primarybusiness": PhoneCategory.BUSINESS,
    "businesstelephonenumber": PhoneCategory.BUSINESS,
    "business2telephonenumber": PhoneCategory.BUSINESS,
    "mobile": PhoneCategory.MOBILE,
    "mobiletelephonenumber": PhoneCategory.MOBILE,
    "assistant": PhoneCategory.ASSISTANT,
    "assistanttelephonenumber": PhoneCategory.ASSISTANT,
}

MANAGED_LABELS = frozenset(
    variant.lower()
    for base in set(CATEGORY_LABELS.values())
    for variant in (base, f"{base} {MOBILE_QUALIFIER}")
)


def parse_category(name: str) -> PhoneCategory | None:
    """Map a feed field name to a phone category, or None if unknown."""
    return CATEGORY_ALIASES.get(normalize_string(name))


def is_managed_label(label: str | None) -> bool:
    """Check whether a phone label is one this tool writes and owns."""
    if not label:
        return False
    return " ".join(label.split()).lower() in MANAGED_LABELS


@dataclass
class SourceRecord:
    """
    A person from the directory feed.

    Numbers are kept unique across categories; a number listed under more
    than one category stays in the first one of CATEGORY_ORDER.
    """

    email: str
    given_name: str | None = None
    family_name: str | None = None
    full_name: str | None = None
    numbers: dict[PhoneCategory, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        numbers: dict[PhoneCategory, list[str]] = {}
        for category in CATEGORY_ORDER:
            for number in self.numbers.get(category, []):
                if number in seen:
                    continue
                seen.add(number)
                numbers.setdefault(category, []).append(number)
        self.numbers = numbers

    @property
    def key(self) -> str:
        """Case-insensitive identity key."""
        return self.email.strip().lower()

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], normalizer: PhoneNormalizer | None = None
    ) -> SourceRecord:
        """
        Build a record from a feed entry.

        Numbers may be given as a ``numbers`` mapping of category to number
        list, or as top-level fields named after the exporter's columns
        (``MobileTelephoneNumber`` and friends). Implausible numbers are
        dropped.

        Raises:
            SourceRecordError: If the entry has no email address
        """
        if normalizer is None:
            normalizer = PhoneNormalizer()

        email = str(data.get("email") or "").strip()
        if not email:
            raise SourceRecordError(f"Feed entry without an email address: {dict(data)}")

        raw_numbers: list[tuple[PhoneCategory, Any]] = []
        numbers_field = data.get("numbers") or {}
        if not isinstance(numbers_field, Mapping):
            raise SourceRecordError(f"'numbers' of {email} must be a mapping")
        for name, values in numbers_field.items():
            category = parse_category(name)
            if category is None:
                logger.warning(f"Ignoring unknown phone category {name!r} for {email}")
                continue
            raw_numbers.append((category, values))

        for name, values in data.items():
            if name in ("numbers", "email"):
                continue
            category = parse_category(name)
            if category is not None:
                raw_numbers.append((category, values))

        numbers: dict[PhoneCategory, list[str]] = {}
        for category, values in raw_numbers:
            if values is None:
                continue
            if isinstance(values, str):
                values = [values]
            for raw in values:
                normalized = normalizer.normalize(str(raw))
                if normalized is None:
                    logger.debug(f"Dropping implausible number {raw!r} of {email}")
                    continue
                numbers.setdefault(category, []).append(normalized)

        full_name = data.get("fullName") or data.get("displayName")
        return cls(
            email=email,
            given_name=data.get("givenName") or None,
            family_name=data.get("familyName") or None,
            full_name=full_name or name_from_email(email),
            numbers=numbers,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "givenName": self.given_name,
            "familyName": self.family_name,
            "fullName": self.full_name,
            "numbers": {c.value: list(n) for c, n in self.numbers.items()},
        }

    def all_numbers(self) -> list[str]:
        """Every number in category order."""
        return [n for c in CATEGORY_ORDER for n in self.numbers.get(c, [])]

    def has_numbers(self) -> bool:
        return any(self.numbers.values())

    def category_of(self, number: str) -> PhoneCategory | None:
        for category in CATEGORY_ORDER:
            if number in self.numbers.get(category, []):
                return category
        return None

    def merged_with(self, other: SourceRecord) -> SourceRecord:
        """Union of two records for the same person; this record's names win."""
        numbers: dict[PhoneCategory, list[str]] = {}
        for record in (self, other):
            for category, values in record.numbers.items():
                bucket = numbers.setdefault(category, [])
                bucket.extend(v for v in values if v not in bucket)
        return SourceRecord(
            email=self.email,
            given_name=self.given_name or other.given_name,
            family_name=self.family_name or other.family_name,
            full_name=self.full_name or other.full_name,
            numbers=numbers,
        )


def prune_assistant_numbers(records: Iterable[SourceRecord]) -> int:
    """
    Drop assistant numbers that are someone's primary number.

    An assistant line listed on a person is usually the assistant's own
    business or mobile number; keeping it would file the same number under
    two people.

    Returns:
        Number of assistant numbers dropped
    """
    records = list(records)
    primary = {
        number
        for record in records
        for category in PRIMARY_CATEGORIES
        for number in record.numbers.get(category, [])
    }

    dropped = 0
    for record in records:
        assistant = record.numbers.get(PhoneCategory.ASSISTANT)
        if not assistant:
            continue
        kept = [n for n in assistant if n not in primary]
        dropped += len(assistant) - len(kept)
        if kept:
            record.numbers[PhoneCategory.ASSISTANT] = kept
        else:
            del record.numbers[PhoneCategory.ASSISTANT]

    if dropped:
        logger.debug(f"Dropped {dropped} assistant numbers duplicating primary numbers")
    return dropped


def merge_duplicate_records(records: Iterable[SourceRecord]) -> list[SourceRecord]:
    """
    Collapse records sharing an email into one record per person.

    Order follows the first occurrence of each email.
    """
    merged: dict[str, SourceRecord] = {}
    for record in records:
        existing = merged.get(record.key)
        if existing is None:
            merged[record.key] = record
        else:
            logger.debug(f"Merging duplicate directory record for {record.email}")
            merged[record.key] = existing.merged_with(record)
    return list(merged.values())
