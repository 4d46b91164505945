"""
Snapshot backups of the destination account.

Backups record the account's contacts before and after reconciliation so a
run can be inspected or replayed offline.
"""

from oab_sync.backup.manager import (
    BackupError,
    BackupManager,
    read_groups_file,
    read_snapshot_file,
)

__all__ = ["BackupError", "BackupManager", "read_groups_file", "read_snapshot_file"]
