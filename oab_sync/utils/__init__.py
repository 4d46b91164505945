"""
oab_sync.utils - Utility module

Common utilities including logging configuration.
"""

from oab_sync.utils.normalization import display_name, normalize_string
from oab_sync.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = ["display_name", "normalize_string", "resolve_config_dir", "DEFAULT_CONFIG_DIR"]
