"""CLI package for oab_sync."""

from oab_sync.cli.formatters import (
    format_summary,
    show_apply_result,
    show_detailed_changes,
    show_group_roles,
    show_reconcile_info,
)
from oab_sync.cli.main import cli, get_config_dir, get_config_file
from oab_sync.utils import DEFAULT_CONFIG_DIR

__all__ = [
    "DEFAULT_CONFIG_DIR",
    "cli",
    "format_summary",
    "get_config_dir",
    "get_config_file",
    "show_apply_result",
    "show_detailed_changes",
    "show_group_roles",
    "show_reconcile_info",
]
