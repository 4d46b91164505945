"""
Configuration file generator for oab-sync.

Generates a default configuration file documenting every option.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    The required settings (domain and work group) are present with
    placeholder values; everything else is commented out.

    Returns:
        String containing YAML configuration with comments
    """
    return """# Address Book Sync Configuration
# ===============================
#
# Default options for oab-sync. CLI arguments always override these values.
#
# To use this configuration:
#   1. Save as ~/.oab-sync/config.yaml (or custom location)
#   2. Set the domain and work group below
#   3. Uncomment and modify other options as needed


# Directory
# ---------

# Email domain of the organization. A contact is managed by oab-sync when
# exactly one of its email addresses is under this domain (or a subdomain).
domain: example.com

# Region used for phone numbers written without a country code
# Default: NL
# locale: NL

# Directory feed (.json, .jsonl, .yaml or .csv), relative to this directory
# source: directory.json

# Organization name written to every directory contact
# organization: Example Corp

# Photo (path or http(s) URL) uploaded to directory contacts without one
# photo: logo.png


# Groups
# ------
# Groups are given by display name or resource name (contactGroups/...)

groups:
  # Every directory contact is put in this group
  work: Coworkers
  # Contacts that are also in this group are taken out of the work group
  # friends: Friends
  # starred: starred
  # my_contacts: myContacts


# Phone Numbers
# -------------

# National number prefixes that identify mobile numbers, per country code.
# Countries not listed use the phone number library's own classification.
# mobile_prefixes:
#   "31": ["6"]


# Behavior
# --------

# What to do with managed contacts that also hold non-managed email
# addresses: "strip" removes only the managed fields, "delete" treats them
# like any other managed contact.
# Default: strip
# mixed_entries: strip

# Preview changes without applying them
# dry_run: false

# Rewrite names of contacts that already have one
# force: false

# Upload the photo even to contacts that already have one
# force_photo: false

# Continue when an operation fails
# proceed: false

# Send operations as batch requests of at most batch_size operations
# batch: false
# batch_size: 100


# API Options
# -----------

# api_page_size: 1000
# api_max_retries: 5
# api_initial_retry_delay: 1.0
# api_max_retry_delay: 60.0

# Seconds to wait for the browser during authentication
# auth_timeout: 300


# Logging and Backups
# -------------------

# verbose: false
# log_dir: ~/.oab-sync/logs
# log_retention_count: 10

# backup_enabled: true
# backup_dir: ~/.oab-sync/backups
# backup_retention_count: 10
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save default configuration file to specified path.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file. If False, fail if file exists.

    Returns:
        Tuple of (success, error_message); error_message is None on success
    """
    config_path = config_path.expanduser().resolve()

    if config_path.exists() and not overwrite:
        return (
            False,
            f"Configuration file already exists: {config_path}\n"
            "Use --force to overwrite.",
        )

    try:
        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        config_path.chmod(0o600)
    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)

    logger.info(f"Created configuration file: {config_path}")
    return (True, None)
