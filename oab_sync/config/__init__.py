"""
oab_sync.config - Configuration management module

Contains configuration loading, validation, and default settings.
"""

from oab_sync.config.loader import ConfigError, ConfigLoader
from oab_sync.config.sync_config import (
    GroupNames,
    MixedEntryPolicy,
    SyncConfig,
    SyncConfigError,
    load_config,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "GroupNames",
    "MixedEntryPolicy",
    "SyncConfig",
    "SyncConfigError",
    "load_config",
]
