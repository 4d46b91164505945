"""
Configuration loader module for oab-sync.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Validation of keys, types and value ranges
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from oab_sync.utils.paths import resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

# Hard cap on operations per batch request
MAX_BATCH_SIZE = 100

VALID_MIXED_ENTRY_POLICIES = ("strip", "delete")

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.oab-sync/ or $OAB_SYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    def _get_config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Returns an empty dict if the file doesn't exist, allowing
        graceful operation with CLI defaults.

        Args:
            path: Path to the configuration file

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if config is None:
            logger.debug(f"Configuration file is empty: {path}")
            return {}

        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        valid_keys: dict[str, type[Any] | tuple[type[Any], ...]] = {
            # Directory and account
            "domain": str,
            "locale": str,
            "source": str,
            "groups": dict,
            "organization": str,
            "photo": str,
            "mobile_prefixes": dict,
            "mixed_entries": str,
            # Run options
            "dry_run": bool,
            "force": bool,
            "force_photo": bool,
            "clean": bool,
            "proceed": bool,
            "batch": bool,
            "batch_size": int,
            "verbose": bool,
            # API options
            "api_page_size": int,
            "api_max_retries": int,
            "api_initial_retry_delay": (int, float),
            "api_max_retry_delay": (int, float),
            # Auth options
            "auth_timeout": int,
            # Photo options
            "photo_max_dimension": int,
            # Logging options
            "log_dir": str,
            "log_retention_count": int,
            # Backup options
            "backup_enabled": bool,
            "backup_dir": str,
            "backup_retention_count": int,
        }

        for key, value in config.items():
            if key not in valid_keys:
                logger.warning(f"Unknown configuration key '{key}' ignored")
                continue
            expected_type = valid_keys[key]
            # bool is an int subclass, reject it for numeric keys
            is_bool_for_number = isinstance(value, bool) and expected_type is not bool
            if not isinstance(value, expected_type) or is_bool_for_number:
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        if "mixed_entries" in config:
            if config["mixed_entries"] not in VALID_MIXED_ENTRY_POLICIES:
                raise ConfigError(
                    f"Invalid mixed_entries '{config['mixed_entries']}'. "
                    f"Must be one of: {', '.join(VALID_MIXED_ENTRY_POLICIES)}"
                )

        if "batch_size" in config:
            batch_size = config["batch_size"]
            if not 1 <= batch_size <= MAX_BATCH_SIZE:
                raise ConfigError(
                    f"batch_size must be between 1 and {MAX_BATCH_SIZE}, "
                    f"got {batch_size}"
                )

        positive_int_keys = [
            "api_page_size",
            "api_max_retries",
            "auth_timeout",
            "photo_max_dimension",
            "backup_retention_count",
        ]
        for key in positive_int_keys:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        # 0 keeps every log file
        if config.get("log_retention_count", 0) < 0:
            raise ConfigError(
                f"log_retention_count must be >= 0, got {config['log_retention_count']}"
            )

        for key in ("api_initial_retry_delay", "api_max_retry_delay"):
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

        if "groups" in config:
            for role, name in config["groups"].items():
                if name is not None and not isinstance(name, str):
                    raise ConfigError(
                        f"Group name for '{role}' must be a string, "
                        f"got {type(name).__name__}"
                    )

        if "mobile_prefixes" in config:
            for code, prefixes in config["mobile_prefixes"].items():
                if not isinstance(prefixes, list):
                    raise ConfigError(
                        f"mobile_prefixes for country {code} must be a list, "
                        f"got {type(prefixes).__name__}"
                    )

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Returns:
            Validated configuration dictionary

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config
