"""CLI output formatting functions.

This module contains functions for displaying change set summaries, apply
results and detailed change listings on the command line.
"""

from typing import TYPE_CHECKING

import click

from oab_sync.sync.changeset import Action

if TYPE_CHECKING:
    from oab_sync.sync.applier import ApplyResult
    from oab_sync.sync.changeset import ChangeSet, Operation
    from oab_sync.sync.group import GroupRoles
    from oab_sync.sync.reconciler import ReconcileResult

# Number of items listed per section before truncating
MAX_LISTED = 10

ACTION_SYMBOLS = {
    Action.INSERT: "+",
    Action.UPDATE: "~",
    Action.DELETE: "-",
}


def format_summary(change_set: "ChangeSet") -> str:
    """Render the change set counters as a block of text."""
    summary = change_set.summary
    lines = [
        "Change summary:",
        f"  Inserted:      {summary.inserted}",
        f"  Updated:       {summary.updated}",
        f"  Deleted:       {summary.deleted}",
        f"  Kept:          {summary.kept}",
        f"  Stripped:      {summary.stripped}",
        f"  Photo updates: {summary.photo_updates}",
    ]
    return "\n".join(lines)


def _describe(operation: "Operation") -> str:
    text = f"  {ACTION_SYMBOLS[operation.action]} {operation.email}"
    details = []
    if operation.target:
        details.append(operation.target)
    if operation.stripped:
        details.append("strip")
    if operation.photo:
        details.append("photo")
    if details:
        text += f" ({', '.join(details)})"
    return text


def show_detailed_changes(change_set: "ChangeSet") -> None:
    """
    Display the operations of a change set, grouped by action.

    Args:
        change_set: The ChangeSet to display
    """
    click.echo("\n=== Detailed Changes ===")

    headings = {
        Action.INSERT: "Contacts to create",
        Action.UPDATE: "Contacts to update",
        Action.DELETE: "Contacts to delete",
    }
    for action, heading in headings.items():
        operations = change_set.by_action(action)
        if not operations:
            continue
        click.echo(f"\n{heading}:")
        for operation in operations[:MAX_LISTED]:
            click.echo(_describe(operation))
        if len(operations) > MAX_LISTED:
            click.echo(f"  ... and {len(operations) - MAX_LISTED} more")

    if change_set.photo_uploads:
        click.echo("\nPhotos to upload:")
        for upload in change_set.photo_uploads[:MAX_LISTED]:
            click.echo(f"  * {upload.email} ({upload.target})")
        if len(change_set.photo_uploads) > MAX_LISTED:
            click.echo(f"  ... and {len(change_set.photo_uploads) - MAX_LISTED} more")


def show_reconcile_info(result: "ReconcileResult") -> None:
    """Display what the reconciler saw in the feed and the snapshot."""
    click.echo("\n=== Reconciliation ===")
    click.echo(f"Directory records: {result.records}")
    click.echo(f"Destination entries: {len(result.entries)}")
    if result.index.duplicates:
        click.echo(f"Duplicate entries merged: {result.index.duplicates}")
    if result.skipped:
        click.echo(f"Records without numbers or entry: {len(result.skipped)}")
        for email in result.skipped[:MAX_LISTED]:
            click.echo(f"  {email}")
    if result.outside_domain:
        click.echo(f"Records outside the domain: {len(result.outside_domain)}")
        for email in result.outside_domain[:MAX_LISTED]:
            click.echo(f"  {email}")


def show_apply_result(result: "ApplyResult", dry_run: bool = False) -> None:
    """Display the outcome of applying a change set."""
    verb = "Would apply" if dry_run else "Applied"
    click.echo(f"\n{verb} {result.applied} operation(s), {result.photos} photo(s)")
    if result.skipped:
        click.echo(
            click.style(f"Skipped {result.skipped} (limit reached)", fg="yellow")
        )
    if result.failures:
        click.echo(click.style(f"Failed: {result.failed}", fg="red"))
        for failure in result.failures[:MAX_LISTED]:
            click.echo(f"  {failure.correlation_id}: {failure.error}")
        if len(result.failures) > MAX_LISTED:
            click.echo(f"  ... and {len(result.failures) - MAX_LISTED} more")


def show_group_roles(roles: "GroupRoles") -> None:
    """Display the resolved group roles."""
    click.echo("Group roles:")
    click.echo(f"  work:        {roles.work}")
    click.echo(f"  friends:     {roles.friends or '(none)'}")
    click.echo(f"  starred:     {roles.starred}")
    click.echo(f"  my_contacts: {roles.my_contacts}")
