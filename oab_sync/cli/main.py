"""
Command-line interface for oab_sync.

Provides CLI commands for authentication, status checking, configuration
and reconciliation of a directory feed into a Google Contacts account.

Usage:
    # Show help
    oab-sync --help

    # Authenticate the account
    oab-sync auth

    # Check status
    oab-sync status

    # Run reconciliation
    oab-sync sync --source directory.csv
    oab-sync sync --dry-run --verbose

    # Offline: reconcile against a saved snapshot
    oab-sync sync --snapshot people.json --groups-file groups.json --output out.json
"""

import json
import sys
from pathlib import Path
from typing import Any, NoReturn, Optional

import click

from oab_sync import __version__
from oab_sync.auth.google_auth import AuthenticationError, GoogleAuth
from oab_sync.backup.manager import (
    BackupError,
    BackupManager,
    read_groups_file,
    read_snapshot_file,
)
from oab_sync.cli.formatters import (
    format_summary,
    show_apply_result,
    show_detailed_changes,
    show_group_roles,
    show_reconcile_info,
)
from oab_sync.config.generator import save_config_file
from oab_sync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from oab_sync.config.sync_config import SyncConfig, SyncConfigError
from oab_sync.source.feed import FeedError, load_feed
from oab_sync.sync.applier import ApplyError, ChangeApplier
from oab_sync.sync.changeset import Action, ChangeSetEmitter
from oab_sync.sync.entry import decode_snapshot, encode_snapshot
from oab_sync.sync.group import ContactGroup, GroupDirectory
from oab_sync.sync.phone import PhoneNormalizer
from oab_sync.sync.photo import MAX_PHOTO_DIMENSION, PhotoError, load_photo
from oab_sync.sync.reconciler import Reconciler
from oab_sync.sync.status import InvalidTransitionError
from oab_sync.utils import resolve_config_dir
from oab_sync.utils.logging import (
    cleanup_old_logs,
    get_logger,
    get_operations_log_path,
    setup_logging,
    setup_operations_logger,
)
from oab_sync.utils.paths import resolve_data_path

ACTION_CHOICES = tuple(action.value for action in Action)


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_file: str | None, config_dir: Path) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


def _fail(message: str, *hints: str) -> NoReturn:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    for hint in hints:
        click.echo(hint, err=True)
    sys.exit(1)


def _flag(value: bool) -> Optional[bool]:
    """CLI flags only override the configuration file when given."""
    return True if value else None


@click.group()
@click.version_option(version=__version__, prog_name="oab-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="OAB_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.oab-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="OAB_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    Directory to Google Contacts reconciliation.

    Brings a Google Contacts account in line with an organization's address
    book export: directory people are created, updated and removed, while
    data the directory does not own is left alone.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(config_file, resolved_config_dir)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file
    ctx.obj["config_error"] = None

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Commands that need the configuration fail on it later
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        ctx.obj["config_error"] = str(e)
        config = {}

    ctx.obj["config"] = config

    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = resolve_data_path(config.get("log_dir"), resolved_config_dir)
    if log_dir is None:
        log_dir = resolved_config_dir / "logs"
    ctx.obj["log_dir"] = log_dir

    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Auth Command
# =============================================================================


@cli.command("auth")
@click.option(
    "--force",
    is_flag=True,
    help="Force re-authentication even if already authenticated.",
)
@click.pass_context
def auth_command(ctx: click.Context, force: bool) -> None:
    """
    Authenticate the Google account.

    Opens a browser window to complete the OAuth flow and stores
    the credentials for future use.

    Examples:

        oab-sync auth

        # Force re-authentication
        oab-sync auth --force
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj["config"]

    click.echo("Authenticating...")

    try:
        auth = GoogleAuth(
            config_dir=config_dir, auth_timeout=config.get("auth_timeout", 10)
        )

        if not force and auth.is_authenticated():
            click.echo(click.style("Account is already authenticated.", fg="green"))
            click.echo("Use --force to re-authenticate.")
            return

        auth.authenticate(force_reauth=force)

        email = auth.get_account_email()
        if email:
            click.echo(click.style(f"Successfully authenticated {email}!", fg="green"))
        else:
            click.echo(click.style("Successfully authenticated!", fg="green"))

        logger.info(f"Authentication completed for {email or 'account'}")

    except FileNotFoundError as e:
        _fail(
            str(e),
            "\nTo get started:",
            "1. Go to https://console.cloud.google.com/",
            "2. Create a project and enable the People API",
            "3. Create OAuth 2.0 credentials (Desktop application)",
            f"4. Download and save as: {config_dir / 'credentials.json'}",
        )

    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        click.echo(click.style(f"Authentication failed: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show authentication and configuration status.

    Example:

        oab-sync status
    """
    config_dir = ctx.obj["config_dir"]
    config_file = ctx.obj["config_file"]
    config = ctx.obj["config"]

    auth = GoogleAuth(config_dir=config_dir)
    auth_status = auth.get_auth_status()

    click.echo("=== oab-sync Status ===\n")

    click.echo(f"Configuration directory: {auth_status['config_dir']}")
    creds_status = (
        "Found"
        if auth_status["credentials_exist"]
        else click.style("Not found", fg="red")
    )
    click.echo(f"OAuth credentials: {creds_status}")

    if auth_status["authenticated"]:
        label = auth_status["email"] or "account"
        click.echo(f"{label}: {click.style('Authenticated', fg='green')}")
    elif auth_status["token_exists"]:
        click.echo(f"Account: {click.style('Token expired or invalid', fg='yellow')}")
    else:
        click.echo(f"Account: {click.style('Not authenticated', fg='red')}")

    click.echo()

    ready = auth_status["authenticated"]
    if ctx.obj["config_error"]:
        click.echo(f"Configuration file: {config_file}")
        click.echo(click.style(f"  Invalid: {ctx.obj['config_error']}", fg="red"))
        ready = False
    elif not config_file.exists():
        click.echo(
            f"Configuration file: {click.style('Not found', fg='yellow')} ({config_file})"
        )
        click.echo("  Run 'oab-sync init-config' to create one.")
        ready = False
    else:
        click.echo(f"Configuration file: {config_file}")
        try:
            sync_config = SyncConfig.from_dict(config)
        except SyncConfigError as e:
            click.echo(click.style(f"  Incomplete: {e}", fg="yellow"))
            ready = False
        else:
            click.echo(f"  Domain: {sync_config.domain}")
            click.echo(f"  Work group: {sync_config.groups.work}")
            click.echo(f"  Directory feed: {sync_config.source or '(not set)'}")

    click.echo()

    if ready:
        click.echo(click.style("Ready to sync!", fg="green"))
        click.echo("Run 'oab-sync sync' to reconcile the directory.")
    elif not auth_status["credentials_exist"]:
        click.echo(
            click.style("Setup required: OAuth credentials not found.", fg="yellow")
        )
        click.echo("Please download credentials from Google Cloud Console")
        click.echo(f"and save to: {auth_status['credentials_path']}")
    elif not auth_status["authenticated"]:
        click.echo(click.style("Authentication required.", fg="yellow"))
        click.echo("  Run: oab-sync auth")


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with all available options documented.
    Set the managed domain and the work group, then adjust the rest.

    Examples:

        # Create config file (fails if already exists)
        oab-sync init-config

        # Overwrite existing config file
        oab-sync init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Set 'domain' and 'groups.work' for your organization")
        click.echo("2. Point 'source' at the directory export")
        click.echo("3. Run 'oab-sync sync --dry-run' to preview the changes")
        logger.info(f"Created configuration file: {config_file}")
    else:
        logger.error(f"Failed to create configuration file: {error}")
        _fail(str(error))


# =============================================================================
# Groups Command
# =============================================================================


def _api_for(config_dir: Path, config: dict[str, Any]) -> Any:
    """Build a PeopleAPI client from the stored credentials, or exit."""
    from oab_sync.api.people_api import PeopleAPI

    auth = GoogleAuth(
        config_dir=config_dir, auth_timeout=config.get("auth_timeout", 10)
    )
    creds = auth.get_credentials()
    if not creds:
        _fail("Account is not authenticated.", "Run: oab-sync auth")

    return PeopleAPI(
        credentials=creds,
        page_size=config.get("api_page_size", 1000),
        max_retries=config.get("api_max_retries", 5),
        initial_retry_delay=config.get("api_initial_retry_delay", 1.0),
        max_retry_delay=config.get("api_max_retry_delay", 60.0),
    )


@cli.command("groups")
@click.option(
    "--all",
    "-A",
    "show_all",
    is_flag=True,
    help="Show all groups including system groups.",
)
@click.option(
    "--groups-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Read groups from a JSON file instead of the account.",
)
@click.pass_context
def groups_command(ctx: click.Context, show_all: bool, groups_file: str | None) -> None:
    """
    List contact groups and the resolved group roles.

    Examples:

        oab-sync groups

        # Include system groups (myContacts, starred)
        oab-sync groups --all
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj["config"]
    verbose = ctx.obj["verbose"]

    try:
        if groups_file:
            groups_data = read_groups_file(Path(groups_file))
        else:
            groups_data = _api_for(config_dir, config).list_contact_groups()
    except BackupError as e:
        _fail(str(e))
    except Exception as e:
        logger.exception(f"Failed to list groups: {e}")
        _fail(str(e))

    directory = GroupDirectory.from_api_response(groups_data)
    groups: list[ContactGroup] = list(directory.groups)
    if not show_all:
        groups = [g for g in groups if not g.is_system_group()]

    if not groups:
        click.echo("No contact groups found.")
    else:
        click.echo(f"{'Name':<40} {'Type':<10} {'Members':<10}")
        click.echo("-" * 60)
        for group in sorted(groups, key=lambda g: g.display_name.lower()):
            group_type = "System" if group.is_system_group() else "User"
            click.echo(f"{group.display_name:<40} {group_type:<10} {group.member_count:<10}")
        click.echo()
        click.echo(f"Total: {len(groups)} group(s)")

        if verbose:
            click.echo("\nResource names:")
            for group in sorted(groups, key=lambda g: g.display_name.lower()):
                click.echo(f"  {group.display_name}: {group.resource_name}")

    try:
        sync_config = SyncConfig.from_dict(config)
    except SyncConfigError as e:
        logger.debug(f"Not resolving group roles: {e}")
        return

    click.echo()
    try:
        show_group_roles(directory.resolve(sync_config.groups))
    except ConfigError as e:
        click.echo(click.style(f"Warning: {e}", fg="yellow"))


# =============================================================================
# Sync Command
# =============================================================================


def _write_output(path: Path, change_set: Any, entries: list[Any]) -> None:
    document = {
        "summary": change_set.summary.to_dict(),
        "operations": change_set.to_list(),
        "snapshot": encode_snapshot(entries, include_status=True),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False)


@cli.command("sync")
@click.option(
    "--source",
    "-s",
    type=click.Path(exists=True, dir_okay=False),
    help="Directory feed file (.json, .jsonl, .yaml, .csv).",
)
@click.option(
    "--snapshot",
    type=click.Path(exists=True, dir_okay=False),
    help="Reconcile against a saved snapshot instead of the account (offline).",
)
@click.option(
    "--groups-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Contact groups for offline mode.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="Write the change set and reconciled snapshot as JSON.",
)
@click.option(
    "--dry-run", "-n", is_flag=True, help="Preview changes without applying them."
)
@click.option("--force", is_flag=True, help="Rewrite names of existing contacts.")
@click.option(
    "--force-photo", is_flag=True, help="Replace photos contacts already have."
)
@click.option(
    "--clean", is_flag=True, help="Remove every directory contact from the account."
)
@click.option("--proceed", is_flag=True, help="Continue after failed operations.")
@click.option("--batch", is_flag=True, help="Send operations as batch requests.")
@click.option(
    "--action",
    type=click.Choice(ACTION_CHOICES, case_sensitive=False),
    help="Only apply operations of this kind.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    help="Stop after this many successful writes.",
)
@click.option(
    "--no-backup",
    is_flag=True,
    help="Skip snapshot backups (not recommended).",
)
@click.pass_context
def sync_command(
    ctx: click.Context,
    source: str | None,
    snapshot: str | None,
    groups_file: str | None,
    output: str | None,
    dry_run: bool,
    force: bool,
    force_photo: bool,
    clean: bool,
    proceed: bool,
    batch: bool,
    action: str | None,
    limit: int | None,
    no_backup: bool,
) -> None:
    """
    Reconcile the directory feed into the account.

    Directory people missing from the account are created, changed people
    are updated and people who left the directory are removed. Fields the
    directory does not own are never touched. A backup of the account is
    written before and after reconciliation unless --no-backup is used.

    Examples:

        # Preview changes without applying
        oab-sync sync --source directory.csv --dry-run

        # Only create new contacts, at most 10
        oab-sync sync --action insert --limit 10

        # Remove everything this tool manages
        oab-sync sync --clean

        # Offline run against a saved snapshot
        oab-sync sync --snapshot people.json --groups-file groups.json -o out.json
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    config = ctx.obj["config"]
    verbose = ctx.obj["verbose"]

    if ctx.obj["config_error"]:
        _fail(f"Configuration error: {ctx.obj['config_error']}")

    try:
        sync_config = SyncConfig.from_dict(config).with_overrides(
            source=source,
            dry_run=_flag(dry_run),
            force=_flag(force),
            force_photo=_flag(force_photo),
            clean=_flag(clean),
            proceed=_flag(proceed),
            batch=_flag(batch),
        )
    except SyncConfigError as e:
        _fail(str(e), f"Edit {ctx.obj['config_file']} or run 'oab-sync init-config'.")

    offline = snapshot is not None
    backup_enabled = not no_backup and config.get("backup_enabled", True) and not offline
    backup_dir = resolve_data_path(config.get("backup_dir"), config_dir)
    if backup_dir is None:
        backup_dir = config_dir / "backups"

    normalizer = PhoneNormalizer(sync_config.locale, sync_config.mobile_prefixes)

    records = []
    if not sync_config.clean:
        feed_path = resolve_data_path(sync_config.source, config_dir)
        if feed_path is None:
            _fail("No directory feed given (use --source or set 'source').")
        try:
            records = load_feed(feed_path, normalizer)
        except FeedError as e:
            _fail(str(e))

    photo_bytes = None
    if sync_config.photo and not sync_config.clean:
        try:
            photo_bytes = load_photo(
                sync_config.photo,
                base_dir=config_dir,
                max_dimension=config.get("photo_max_dimension", MAX_PHOTO_DIMENSION),
            )
        except PhotoError as e:
            _fail(f"Cannot load photo: {e}")

    api = None
    account = None
    try:
        if offline:
            people, groups = read_snapshot_file(Path(snapshot))
            if groups_file:
                groups = read_groups_file(Path(groups_file))
            if not groups:
                _fail("Offline mode needs the account's contact groups (--groups-file).")
            click.echo(f"Loaded {len(people)} contacts from {snapshot}")
        else:
            api = _api_for(config_dir, config)
            account = GoogleAuth(config_dir=config_dir).get_account_email()
            click.echo(f"Fetching contacts of {account or 'the account'}...")
            people = api.list_people()
            groups = api.list_contact_groups()

        roles = GroupDirectory.from_api_response(groups).resolve(sync_config.groups)
    except ConfigError as e:
        _fail(str(e))
    except BackupError as e:
        _fail(str(e))
    except Exception as e:
        logger.exception(f"Failed to fetch the account: {e}")
        _fail(f"Failed to fetch the account: {e}")

    backups = None
    if backup_enabled:
        backups = BackupManager(
            backup_dir, retention_count=config.get("backup_retention_count", 10)
        )
        backups.create_backup(people, groups, stage="before", account=account)

    if verbose:
        click.echo("\nSync configuration:")
        click.echo(f"  {sync_config!r}")
        click.echo(f"  Dry run: {sync_config.dry_run}")
        click.echo(f"  Batch: {sync_config.batch} (size {sync_config.batch_size})")
        click.echo(f"  Backups: {backup_dir if backup_enabled else 'disabled'}")

    mode = "Removing managed contacts" if sync_config.clean else "Reconciling"
    click.echo(f"\n{mode}...")

    try:
        result = Reconciler(sync_config, roles, normalizer).reconcile(
            records, decode_snapshot(people)
        )
    except InvalidTransitionError as e:
        logger.error(f"Reconciliation aborted: {e}")
        _fail(f"Reconciliation aborted: {e}")

    reconciled = encode_snapshot(result.entries, include_status=True)
    if backups is not None:
        backups.create_backup(reconciled, groups, stage="after", account=account)

    change_set = ChangeSetEmitter(
        sync_config.domain, roles, sync_config.organization
    ).emit(result.entries)
    if action:
        change_set = change_set.filter(Action(action.lower()))

    if verbose:
        show_reconcile_info(result)

    click.echo("\n" + "=" * 50)
    click.echo(format_summary(change_set))
    click.echo("=" * 50)

    if output:
        _write_output(Path(output), change_set, result.entries)
        click.echo(f"\nChange set written to {output}")

    if change_set.is_empty():
        click.echo(
            click.style("\nAccount is already in sync. No changes needed.", fg="green")
        )
        return

    if offline:
        click.echo(click.style("\nOffline run: no changes were sent.", fg="yellow"))
        if verbose:
            show_detailed_changes(change_set)
        return

    setup_operations_logger(get_operations_log_path(ctx.obj["log_dir"]))
    applier = ChangeApplier(
        api,
        photo_bytes=photo_bytes,
        dry_run=sync_config.dry_run,
        proceed=sync_config.proceed,
        batch=sync_config.batch,
        batch_size=sync_config.batch_size,
        limit=limit,
    )

    try:
        applied = applier.apply(change_set)
    except ApplyError as e:
        if backups is not None:
            backups.create_backup(reconciled, groups, stage="partial", account=account)
        show_apply_result(e.result)
        logger.error(f"Sync aborted: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        click.echo("Use --proceed to continue past failed operations.", err=True)
        sys.exit(1)

    show_apply_result(applied, dry_run=sync_config.dry_run)

    if sync_config.dry_run:
        click.echo(click.style("\nDry run complete. No changes were made.", fg="yellow"))
        click.echo("Run without --dry-run to apply these changes.")
        if verbose:
            show_detailed_changes(change_set)
    elif applied.ok:
        click.echo(click.style("\nSync completed successfully!", fg="green"))
        logger.info(
            f"Sync completed: {change_set.summary.inserted} inserted, "
            f"{change_set.summary.updated} updated, "
            f"{change_set.summary.deleted} deleted"
        )
    else:
        click.echo(
            click.style(f"\nWarning: {applied.failed} operation(s) failed.", fg="yellow")
        )
