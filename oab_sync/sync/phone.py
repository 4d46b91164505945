"""
Phone number normalization.

Directory exports carry phone numbers in every shape people type them:
national numbers with a trunk prefix, international numbers with ``00``
or ``+``, bare country-code numbers, and plenty of punctuation. This module
turns them into one canonical international form (libphonenumber's
INTERNATIONAL format, e.g. ``+31 6 12345678``) so numbers from the source
feed and the destination account can be compared.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat, PhoneNumberType

logger = logging.getLogger(__name__)

DEFAULT_REGION = "NL"

# Country calling code -> national significant number prefixes that are mobile
DEFAULT_MOBILE_PREFIXES: dict[str, tuple[str, ...]] = {"31": ("6",)}

MOBILE_QUALIFIER = "mobile"

_NOISE = re.compile(r"[^\d+]")


def _parse(raw: str, region: str) -> phonenumbers.PhoneNumber | None:
    """Parse a raw string into a valid phone number, or None."""
    text = raw.strip()
    if not any(c.isdigit() for c in text):
        return None

    has_plus = text.lstrip().startswith("+")
    digits = re.sub(r"\D", "", text)
    if not digits:
        return None

    if has_plus:
        candidates = [f"+{digits}"]
    elif digits.startswith("00"):
        candidates = [f"+{digits[2:]}"]
    else:
        candidates = [digits]
        # "31612345678" is an international number missing its prefix
        country_code = str(phonenumbers.country_code_for_region(region))
        if country_code != "0" and digits.startswith(country_code):
            candidates.append(f"+{digits}")

    for candidate in candidates:
        try:
            parsed = phonenumbers.parse(candidate, region)
        except NumberParseException:
            continue
        if phonenumbers.is_valid_number(parsed):
            return parsed

    return None


def normalize_phone(raw: str | None, region: str = DEFAULT_REGION) -> str | None:
    """
    Normalize a raw phone string into canonical international format.

    Args:
        raw: Phone number as typed by a person or exported by a directory
        region: ISO region used for numbers without an international prefix

    Returns:
        The number in international format, or None if it is not plausible
    """
    if raw is None:
        return None

    parsed = _parse(str(raw), region)
    if parsed is None:
        logger.debug(f"Dropping implausible phone number {raw!r}")
        return None

    return phonenumbers.format_number(parsed, PhoneNumberFormat.INTERNATIONAL)


def phone_key(raw: str, region: str = DEFAULT_REGION) -> str:
    """
    Comparison key for a phone number.

    Plausible numbers compare by their normalized form. Numbers that cannot
    be normalized still need to match themselves, so they compare by their
    digits with a leading ``+`` kept.
    """
    normalized = normalize_phone(raw, region)
    if normalized is not None:
        return normalized
    stripped = _NOISE.sub("", raw.strip())
    if stripped.startswith("+"):
        return "+" + stripped[1:].replace("+", "")
    return stripped.replace("+", "")


class PhoneNormalizer:
    """
    Region-aware normalizer with a mobile-number predicate.

    The mobile predicate uses a per-country table of national number
    prefixes. Countries missing from the table fall back to
    libphonenumber's own number type classification.

    Attributes:
        region: ISO region for numbers without an international prefix
        mobile_prefixes: Country calling code -> mobile national prefixes
    """

    def __init__(
        self,
        region: str = DEFAULT_REGION,
        mobile_prefixes: Mapping[str, Iterable[str]] | None = None,
    ):
        self.region = region.upper()
        if mobile_prefixes is None:
            mobile_prefixes = DEFAULT_MOBILE_PREFIXES
        self.mobile_prefixes = {
            str(code).lstrip("+"): tuple(str(p) for p in prefixes)
            for code, prefixes in mobile_prefixes.items()
        }

    def normalize(self, raw: str | None) -> str | None:
        return normalize_phone(raw, self.region)

    def key(self, raw: str) -> str:
        return phone_key(raw, self.region)

    def is_mobile(self, number: str) -> bool:
        """Check whether a (normalized or raw) number is a mobile number."""
        parsed = _parse(number, self.region)
        if parsed is None:
            return False

        country_code = str(parsed.country_code)
        prefixes = self.mobile_prefixes.get(country_code)
        if prefixes is not None:
            national = phonenumbers.national_significant_number(parsed)
            return national.startswith(prefixes)

        return phonenumbers.number_type(parsed) == PhoneNumberType.MOBILE

    def label_for(self, number: str, base_label: str) -> str:
        """Derive the label for a number: the base label plus ``mobile``."""
        if self.is_mobile(number):
            return f"{base_label} {MOBILE_QUALIFIER}"
        return base_label
