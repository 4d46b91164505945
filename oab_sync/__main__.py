"""
Entry point for running oab_sync as a module.

Usage:
    python -m oab_sync --help
    python -m oab_sync auth
    python -m oab_sync sync --source directory.json --dry-run
"""

from oab_sync.cli import cli

if __name__ == "__main__":
    cli()
