"""
Backup manager for destination snapshots.

Provides functionality to:
- Write JSON snapshots of the account's contacts and groups, before
  reconciliation, after reconciliation and when a run aborts
- List available backups sorted by timestamp
- Load a backup, for inspection or to replay a run offline
- Apply retention policy to limit backup count
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class BackupError(Exception):
    """Raised when a snapshot file cannot be read."""

    pass


class BackupManager:
    """
    Manager for creating and managing snapshot backups.

    Backups are written to a temporary file and renamed into place, so an
    interrupted run never leaves a truncated backup behind.

    Attributes:
        backup_dir: Directory path where backups are stored
        retention_count: Maximum number of backups to retain (0 = unlimited)

    Usage:
        bm = BackupManager(Path("~/.oab-sync/backups"), retention_count=10)

        backup_file = bm.create_backup(people, groups, stage="before")
        backups = bm.list_backups()
    """

    BACKUP_VERSION = "1.0"
    BACKUP_PREFIX = "backup_"
    BACKUP_SUFFIX = ".json"

    def __init__(self, backup_dir: Path, retention_count: int = 10):
        self.backup_dir = Path(backup_dir).expanduser()
        self.retention_count = retention_count
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def create_backup(
        self,
        people: list[dict[str, Any]],
        groups: list[dict[str, Any]],
        stage: str = "before",
        account: str | None = None,
    ) -> Path | None:
        """
        Write a timestamped snapshot backup.

        Creates backup_YYYYMMDD_HHMMSS_<stage>.json containing:

            {
                "version": "1.0",
                "timestamp": "2024-01-20T10:30:00.000000",
                "stage": "before",
                "account": "me@example.com",
                "people": [...],
                "groups": [...]
            }

        Args:
            people: People API person dicts
            groups: People API contact group dicts
            stage: "before", "after" or "partial"
            account: Email address of the account, for identification

        Returns:
            Path to created backup file, or None if writing failed
        """
        timestamp = datetime.now()
        filename = (
            f"{self.BACKUP_PREFIX}{timestamp.strftime('%Y%m%d_%H%M%S')}_{stage}"
            f"{self.BACKUP_SUFFIX}"
        )
        backup_path = self.backup_dir / filename

        backup_data = {
            "version": self.BACKUP_VERSION,
            "timestamp": timestamp.isoformat(),
            "stage": stage,
            "account": account,
            "people": people,
            "groups": groups,
        }

        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.backup_dir, prefix=".tmp_", suffix=self.BACKUP_SUFFIX
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(backup_data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, backup_path)
        except OSError as e:
            logger.error(f"Failed to write backup {backup_path}: {e}")
            return None

        logger.info(f"Backup written: {backup_path} ({len(people)} contacts)")
        self.apply_retention()
        return backup_path

    def list_backups(self) -> list[Path]:
        """List backup files, newest first."""
        backup_files = list(
            self.backup_dir.glob(f"{self.BACKUP_PREFIX}*{self.BACKUP_SUFFIX}")
        )
        backup_files.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
        return backup_files

    def apply_retention(self) -> None:
        """Delete backups beyond the retention count (0 keeps everything)."""
        if self.retention_count == 0:
            return

        for backup in self.list_backups()[self.retention_count :]:
            try:
                backup.unlink()
            except OSError as e:
                logger.debug(f"Could not delete old backup {backup}: {e}")


def read_snapshot_file(path: Path) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """
    Read a destination snapshot from a file.

    Accepts a backup written by BackupManager, a ``connections`` listing as
    returned by the People API, or a bare JSON list of persons.

    Returns:
        Tuple of (people, groups); groups is empty when the file has none

    Raises:
        BackupError: If the file cannot be read or has an unknown shape
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise BackupError(f"Cannot read snapshot {path}: {e}") from e

    if isinstance(data, list):
        return data, []
    if isinstance(data, dict):
        if "people" in data:
            return list(data["people"]), list(data.get("groups") or [])
        if "connections" in data:
            return list(data["connections"]), list(data.get("contactGroups") or [])
    raise BackupError(f"Unrecognized snapshot format in {path}")


def read_groups_file(path: Path) -> list[dict[str, Any]]:
    """
    Read contact groups from a JSON file.

    Accepts a bare list or a ``contactGroups`` listing.

    Raises:
        BackupError: If the file cannot be read or has an unknown shape
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise BackupError(f"Cannot read groups {path}: {e}") from e

    if isinstance(data, list):
        return data
    if isinstance(data, dict) and "contactGroups" in data:
        return list(data["contactGroups"])
    raise BackupError(f"Unrecognized groups format in {path}")
