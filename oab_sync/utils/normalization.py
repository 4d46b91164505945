"""
String normalization utilities.

Provides consistent string normalization for group-name matching, label
comparison and display-name synthesis.
"""

from __future__ import annotations

import re
import unicodedata


def normalize_string(
    value: str,
    allow_email_chars: bool = False,
    remove_spaces: bool = True,
    strip_punctuation: bool = True,
) -> str:
    """
    Normalize a string for case- and accent-insensitive comparison.

    Args:
        value: String to normalize
        allow_email_chars: If True, preserve @ symbol for email normalization.
                          Only applies when strip_punctuation is True.
        remove_spaces: If True, remove all spaces from the result.
                      If False, multiple spaces are collapsed to single space.
        strip_punctuation: If True, remove non-alphanumeric characters.
                          If False, only normalize unicode and whitespace.

    Returns:
        Normalized lowercase string with special characters handled
    """
    if not value:
        return ""

    # Decompose accents and drop the combining characters
    normalized = unicodedata.normalize("NFKD", value)
    normalized = "".join(c for c in normalized if not unicodedata.combining(c))
    normalized = normalized.lower()

    if strip_punctuation:
        pattern = r"[^a-z0-9@\s]" if allow_email_chars else r"[^a-z0-9\s]"
        normalized = re.sub(pattern, "", normalized)

    normalized = re.sub(r"\s+", " ", normalized).strip()

    if remove_spaces:
        normalized = normalized.replace(" ", "")

    return normalized


def name_from_email(email: str) -> str:
    """Derive a readable name from an email local part ("jan.de.vries")."""
    local = email.split("@", 1)[0]
    return re.sub(r"\s+", " ", local.replace(".", " ")).strip()


def display_name(
    full_name: str | None,
    family_name: str | None = None,
) -> str | None:
    """
    Build a "Given Surname" display name from a directory name.

    Directory exports list people surname first, either as
    "Surname, Given" or as "Surname Given" where the surname is known
    from the family name field. Both are reordered; any other value is
    returned with its whitespace collapsed.

    Args:
        full_name: Full name as exported by the directory
        family_name: Family name, used to recognise "Surname Given"

    Returns:
        The display name, or None when there is nothing to display
    """
    name = re.sub(r"\s+", " ", full_name or "").strip()
    if not name:
        return None

    if "," in name:
        surname, _, given = name.partition(",")
        name = f"{given.strip()} {surname.strip()}".strip()
    elif family_name:
        match = re.match(rf"^({re.escape(family_name.strip())}\S*) (.+)$", name)
        if match:
            name = f"{match.group(2)} {match.group(1)}"

    return name or None
