"""
Reconciliation settings.

Builds typed settings from the YAML configuration dictionary:

    domain: example.com
    locale: NL
    groups:
      work: Coworkers
      friends: Friends
      starred: starred
      my_contacts: myContacts
    organization: Example Corp
    photo: logo.png
    mixed_entries: strip
    mobile_prefixes:
      "31": ["6"]
    batch_size: 100

Notes:
    - ``domain`` is required; an entry is managed when exactly one of its
      email addresses is under it
    - Groups can be given by display name ("Coworkers") or resource name
      ("contactGroups/123abc"); ``friends`` is optional
    - Command line flags override the run options (force, clean, ...)
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from oab_sync.config.loader import DEFAULT_CONFIG_FILE, MAX_BATCH_SIZE, ConfigLoader
from oab_sync.sync.phone import DEFAULT_MOBILE_PREFIXES, DEFAULT_REGION

logger = logging.getLogger(__name__)

DEFAULT_STARRED_GROUP = "starred"
DEFAULT_MY_CONTACTS_GROUP = "myContacts"


class MixedEntryPolicy(str, Enum):
    """What to do with managed entries that also hold non-managed emails."""

    STRIP = "strip"  # Keep the entry, remove only the managed fields
    DELETE = "delete"  # Treat it like any other managed entry


class SyncConfigError(Exception):
    """Raised when reconciliation settings are missing or invalid."""

    pass


@dataclass
class GroupNames:
    """
    Names of the contact groups with a role in reconciliation.

    Attributes:
        work: Group every directory person belongs to (required)
        starred: The starred system group
        my_contacts: The "My Contacts" system group
        friends: Optional group marking people who are also friends
    """

    work: str | None = None
    starred: str = DEFAULT_STARRED_GROUP
    my_contacts: str = DEFAULT_MY_CONTACTS_GROUP
    friends: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GroupNames:
        if data is None:
            return cls()

        if not isinstance(data, dict):
            raise SyncConfigError(
                f"groups configuration must be a dictionary, got {type(data).__name__}"
            )

        values: dict[str, Any] = {}
        for role in ("work", "starred", "my_contacts", "friends"):
            if data.get(role) is None:
                continue
            name = data[role]
            if not isinstance(name, str) or not name.strip():
                raise SyncConfigError(f"groups.{role} must be a non-empty string")
            values[role] = name.strip()

        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "work": self.work,
            "starred": self.starred,
            "my_contacts": self.my_contacts,
        }
        if self.friends is not None:
            result["friends"] = self.friends
        return result


@dataclass
class SyncConfig:
    """
    Settings for one reconciliation run.

    Attributes:
        domain: Managed email domain
        locale: Region for phone numbers without an international prefix
        groups: Group role names
        organization: Organization name written to directory entries
        photo: Path or URL of the photo given to directory entries
        mixed_entries: Policy for managed entries with other emails
        mobile_prefixes: Country calling code -> mobile number prefixes
        batch_size: Maximum operations per batch request
        force: Rewrite names even when the entry already has one
        force_photo: Upload the photo even when the entry already has one
        clean: Remove every managed entry instead of reconciling
        proceed: Continue after failed operations
        dry_run: Compute changes without sending them
        batch: Send operations as batch requests
        source: Path of the directory feed
    """

    domain: str
    locale: str = DEFAULT_REGION
    groups: GroupNames = field(default_factory=GroupNames)
    organization: str | None = None
    photo: str | None = None
    mixed_entries: MixedEntryPolicy = MixedEntryPolicy.STRIP
    mobile_prefixes: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_MOBILE_PREFIXES.items()}
    )
    batch_size: int = MAX_BATCH_SIZE
    force: bool = False
    force_photo: bool = False
    clean: bool = False
    proceed: bool = False
    dry_run: bool = False
    batch: bool = False
    source: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """
        Create SyncConfig from a configuration dictionary.

        Raises:
            SyncConfigError: If the domain is missing or a value is invalid
        """
        if not isinstance(data, dict):
            raise SyncConfigError(
                f"Configuration must be a dictionary, got {type(data).__name__}"
            )

        domain = data.get("domain")
        if not isinstance(domain, str) or not domain.strip():
            raise SyncConfigError("No managed domain configured (set 'domain')")

        try:
            mixed_entries = MixedEntryPolicy(data.get("mixed_entries", "strip"))
        except ValueError as e:
            raise SyncConfigError(
                f"mixed_entries must be one of "
                f"{[p.value for p in MixedEntryPolicy]}, got {data['mixed_entries']!r}"
            ) from e

        batch_size = data.get("batch_size", MAX_BATCH_SIZE)
        if not isinstance(batch_size, int) or not 1 <= batch_size <= MAX_BATCH_SIZE:
            raise SyncConfigError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size!r}"
            )

        mobile_prefixes = data.get("mobile_prefixes")
        if mobile_prefixes is None:
            prefixes = {k: list(v) for k, v in DEFAULT_MOBILE_PREFIXES.items()}
        else:
            prefixes = {
                str(code).lstrip("+"): [str(p) for p in values]
                for code, values in mobile_prefixes.items()
            }

        groups = GroupNames.from_dict(data.get("groups"))
        if groups.work is None:
            raise SyncConfigError("No work group configured (set 'groups.work')")

        return cls(
            domain=domain.strip().lower().lstrip("@"),
            locale=str(data.get("locale", DEFAULT_REGION)).upper(),
            groups=groups,
            organization=data.get("organization") or None,
            photo=data.get("photo") or None,
            mixed_entries=mixed_entries,
            mobile_prefixes=prefixes,
            batch_size=batch_size,
            force=bool(data.get("force", False)),
            force_photo=bool(data.get("force_photo", False)),
            clean=bool(data.get("clean", False)),
            proceed=bool(data.get("proceed", False)),
            dry_run=bool(data.get("dry_run", False)),
            batch=bool(data.get("batch", False)),
            source=data.get("source") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "domain": self.domain,
            "locale": self.locale,
            "groups": self.groups.to_dict(),
            "mixed_entries": self.mixed_entries.value,
            "mobile_prefixes": self.mobile_prefixes,
            "batch_size": self.batch_size,
        }
        for key in ("organization", "photo", "source"):
            if getattr(self, key) is not None:
                result[key] = getattr(self, key)
        for key in ("force", "force_photo", "clean", "proceed", "dry_run", "batch"):
            if getattr(self, key):
                result[key] = True
        return result

    def with_overrides(self, **overrides: Any) -> SyncConfig:
        """Return a copy with the given options replaced; None values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes)

    def __repr__(self) -> str:
        return (
            f"SyncConfig(domain={self.domain!r}, locale={self.locale!r}, "
            f"work_group={self.groups.work!r}, "
            f"mixed_entries={self.mixed_entries.value!r}, clean={self.clean})"
        )


def load_config(
    config_dir: Path | str | None = None, config_file: str = DEFAULT_CONFIG_FILE
) -> tuple[dict[str, Any], SyncConfig]:
    """
    Load and validate the configuration file.

    Args:
        config_dir: Configuration directory (defaults to ~/.oab-sync)
        config_file: Configuration file name

    Returns:
        Tuple of (raw configuration dict, SyncConfig)

    Raises:
        ConfigError: If the file cannot be parsed or has invalid values
        SyncConfigError: If reconciliation settings are missing
    """
    loader = ConfigLoader(
        config_dir=Path(config_dir) if config_dir else None, config_file=config_file
    )
    raw = loader.load_and_validate()
    return raw, SyncConfig.from_dict(raw)
