"""
Logging configuration module for oab_sync.

Provides centralized logging configuration with support for:
- Console and file logging
- Configurable log levels via environment variables
- Verbose mode for detailed output
- Colored output for better readability (when supported)
- A per-run operations log recording every change sent to the account
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from oab_sync.utils.paths import resolve_config_dir

# Simplified format for console (less verbose)
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

# Verbose format (includes more details)
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)

# Date format for log timestamps
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Operations log format, one line per emitted operation
OPERATIONS_LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(levelname)s - %(message)s"

# Environment variable names
ENV_LOG_LEVEL = "OAB_SYNC_LOG_LEVEL"
ENV_DEBUG = "OAB_SYNC_DEBUG"
ENV_LOG_FILE = "OAB_SYNC_LOG_FILE"

LOGGER_NAME = "oab_sync"
OPERATIONS_LOGGER_NAME = "oab_sync.operations"


def default_log_dir() -> Path:
    """Get the default logs directory inside the configuration directory."""
    return resolve_config_dir() / "logs"


class ColoredFormatter(logging.Formatter):
    """
    A logging formatter that adds ANSI color codes to log messages.

    Colors are only applied when output is to a terminal that supports them.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    def _supports_color(self) -> bool:
        """Check if the terminal supports colors."""
        if not hasattr(sys.stderr, "isatty") or not sys.stderr.isatty():
            return False

        # https://no-color.org/
        if os.environ.get("NO_COLOR"):
            return False

        term = os.environ.get("TERM", "")
        return term != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with optional colors."""
        # Copy so other handlers see the uncolored record
        record = logging.makeLogRecord(record.__dict__)

        if self.use_colors and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            record.levelname = f"{color}{record.levelname}{self.RESET}"
            record.msg = f"{color}{record.msg}{self.RESET}"

        return super().format(record)


def get_log_level_from_env() -> int:
    """
    Get the logging level from environment variables.

    Checks OAB_SYNC_DEBUG and OAB_SYNC_LOG_LEVEL to determine the level.

    Returns:
        Logging level constant (e.g., logging.DEBUG, logging.INFO)
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG

    level_str = os.environ.get(ENV_LOG_LEVEL, "INFO").upper()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "WARN": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    return level_map.get(level_str, logging.INFO)


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Get the log file path from environment or default location.

    Returns:
        Path to log file, or None if file logging is disabled
    """
    log_file = os.environ.get(ENV_LOG_FILE)
    if log_file is not None:
        if log_file.lower() in ("none", "disabled", ""):
            return None
        return Path(log_file)

    logs_dir = log_dir or default_log_dir()
    return logs_dir / f"oab_sync_{datetime.now().strftime('%Y%m%d')}.log"


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure logging for the oab_sync application.

    Sets up both console and file logging handlers with appropriate
    formatters and levels.

    Args:
        level: Logging level (e.g., logging.DEBUG). If None, determined from
               environment variables.
        verbose: If True, use verbose format with more details.
        log_dir: Directory for log files. If provided, overrides default.
        log_file: Path to log file. If None, uses log_dir or default.
        enable_file_logging: If False, disable file logging entirely.
        use_colors: If True, use colored output for console (when supported).

    Returns:
        The root logger for oab_sync

    Example:
        # Verbose mode for CLI
        setup_logging(verbose=True)

        # Disable file logging
        setup_logging(enable_file_logging=False)
    """
    if level is None:
        level = get_log_level_from_env()
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    console_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    console_formatter: logging.Formatter
    if use_colors:
        console_formatter = ColoredFormatter(console_format, DATE_FORMAT)
    else:
        console_formatter = logging.Formatter(console_format, DATE_FORMAT)

    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if enable_file_logging:
        file_path = log_file or get_log_file_path(log_dir)

        if file_path:
            try:
                file_path.parent.mkdir(parents=True, exist_ok=True)

                file_handler = logging.FileHandler(file_path, encoding="utf-8")
                file_handler.setLevel(logging.DEBUG)  # Always capture debug in file
                file_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
                logger.addHandler(file_handler)

                logger.debug(f"Log file: {file_path}")
            except OSError as e:
                logger.warning(f"Could not create log file {file_path}: {e}")

    global _configured_log_dir
    if log_dir:
        _configured_log_dir = log_dir
    elif log_file:
        _configured_log_dir = log_file.parent
    else:
        _configured_log_dir = None

    return logger


# Log directory chosen by the last setup_logging() call
_configured_log_dir: Optional[Path] = None


def _resolve_logs_dir(log_dir: Optional[Path]) -> Path:
    if log_dir:
        return log_dir
    if _configured_log_dir:
        return _configured_log_dir
    return default_log_dir()


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Clean up old log files, keeping only the most recent ones.

    Removes old oab_sync_*.log and operations_*.log files, keeping
    ``keep_count`` of each kind.

    Args:
        log_dir: Directory containing log files. If None, uses configured
                 directory or the default.
        keep_count: Number of log files to keep for each type. Set to 0 to
                    disable cleanup.

    Returns:
        Number of files deleted.
    """
    if keep_count <= 0:
        return 0

    logs_dir = _resolve_logs_dir(log_dir)
    if not logs_dir.exists():
        return 0

    logger = logging.getLogger(LOGGER_NAME)
    deleted_count = 0

    for pattern in ("oab_sync_*.log", "operations_*.log"):
        logs = sorted(
            logs_dir.glob(pattern), key=lambda p: p.stat().st_mtime, reverse=True
        )
        for old_log in logs[keep_count:]:
            try:
                old_log.unlink()
                deleted_count += 1
            except OSError as e:
                logger.debug(f"Could not delete old log {old_log}: {e}")

    return deleted_count


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module.

    Returns a child logger of the oab_sync logger hierarchy.

    Args:
        name: Name of the module (typically __name__)

    Returns:
        Logger instance for the module
    """
    if not name.startswith(LOGGER_NAME):
        name = f"{LOGGER_NAME}.{name}"

    return logging.getLogger(name)


def get_operations_log_path(log_dir: Optional[Path] = None) -> Path:
    """Get a timestamped path for this run's operations log."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return _resolve_logs_dir(log_dir) / f"operations_{timestamp}.log"


def setup_operations_logger(
    log_file: Optional[Path] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Set up the dedicated logger recording every operation of a run.

    Each insert, update, delete and photo upload is written with its
    correlation id and outcome, so a run can be audited afterwards
    without raising the console log level.

    Args:
        log_file: Optional custom path for the log file.
        level: Logging level for the operations log.

    Returns:
        Logger instance for operations
    """
    logger = logging.getLogger(OPERATIONS_LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    file_path = log_file if log_file else get_operations_log_path()

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(OPERATIONS_LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)
        logger.info(f"Operations log started at {datetime.now().isoformat()}")
    except OSError as e:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(OPERATIONS_LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(console_handler)
        logger.warning(f"Could not create operations log file {file_path}: {e}")

    return logger


def get_operations_logger() -> logging.Logger:
    """Get the operations logger (silent until set up)."""
    return logging.getLogger(OPERATIONS_LOGGER_NAME)


__all__ = [
    "setup_logging",
    "get_logger",
    "cleanup_old_logs",
    "ColoredFormatter",
    "get_log_level_from_env",
    "get_log_file_path",
    "setup_operations_logger",
    "get_operations_logger",
    "get_operations_log_path",
    "default_log_dir",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
    "OPERATIONS_LOG_FORMAT",
]
