"""Sync commands for stocksync CLI.

Commands:
- pull: Replace local data with the remote document
- push: Push local changes
- sync: Merge remote changes into local data, then push
- status: Show identity, counts and sync state
- reset-snapshot: Forget the last reconciled remote state
- check-remote: Inspect the remote document
"""

from __future__ import annotations

import sys

import click

from stocksync.client.api import APIError
from stocksync.client.cli.app import open_app
from stocksync.client.cli.config import load_config
from stocksync.client.document import MalformedRemoteDataError
from stocksync.client.sync.domain import Conflict
from stocksync.client.sync.types import PullFailedError, PushFailedError
from stocksync.core.types import SyncStatus


def _echo_conflicts(conflicts: list[Conflict]) -> None:
    if not conflicts:
        return
    click.echo(f"{len(conflicts)} conflict(s) resolved automatically:")
    for conflict in conflicts:
        click.echo(f"  {conflict.describe()}")


@click.command()
def pull() -> None:
    """Replace local data with the remote document."""
    with open_app() as app:
        orchestrator = app.require_orchestrator()
        app.require_login()
        try:
            result = orchestrator.pull()
        except PullFailedError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        if not result.found:
            click.echo("Remote document does not exist yet.")
            return
        click.echo(f"Pulled {result.warehouses} warehouses and {result.products} products.")


@click.command()
def push() -> None:
    """Push local changes to the remote document."""
    with open_app() as app:
        orchestrator = app.require_orchestrator()
        app.require_login()
        try:
            result = orchestrator.push_now()
        except PushFailedError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        if result.written:
            if result.retried:
                click.echo("Remote had changed, merged and pushed.")
            else:
                click.echo("Pushed.")
            _echo_conflicts(result.conflicts)
        elif orchestrator.status == SyncStatus.PENDING:
            click.echo("Remote unreachable, changes kept locally.")
        else:
            click.echo("Already up to date.")


@click.command()
def sync() -> None:
    """Merge remote changes into local data, then push the result.

    Use this when the same user edits from several machines.
    """
    with open_app() as app:
        orchestrator = app.require_orchestrator()
        app.require_login()
        try:
            conflicts = orchestrator.consolidate()
            result = orchestrator.push_now()
        except (PullFailedError, PushFailedError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        _echo_conflicts(conflicts + result.conflicts)
        click.echo("Synced." if result.written else "Already up to date.")


@click.command()
def status() -> None:
    """Show identity, record counts and sync state."""
    with open_app() as app:
        click.echo(f"User: {app.identity.username or '(not logged in)'}")
        click.echo(f"Warehouses: {len(app.inventory.warehouses())}")
        click.echo(f"Products: {len(app.inventory.products())}")

        orchestrator = app.orchestrator
        if orchestrator is None:
            click.echo("Remote: not configured")
            return
        config = load_config()
        click.echo(f"Remote: {config['owner']}/{config['repo']} ({orchestrator.remote_key})")
        reachable = orchestrator.connectivity.check()
        click.echo(f"Reachable: {'yes' if reachable else 'no'}")

        snapshot = orchestrator.snapshot()
        if snapshot is None:
            click.echo("Last sync: never")
        else:
            click.echo(f"Last sync: {snapshot.version_token or '(remote empty)'}")
        state = "pending" if orchestrator.has_local_changes() else "synced"
        click.echo(f"Status: {state}")


@click.command("reset-snapshot")
@click.option("--force", is_flag=True, help="Skip confirmation prompt.")
def reset_snapshot(force: bool) -> None:
    """Forget the last reconciled remote state.

    The next push merges local data with the remote as if syncing for the
    first time.
    """
    if not force and not click.confirm("Reset the sync snapshot?"):
        return
    with open_app() as app:
        orchestrator = app.require_orchestrator()
        orchestrator.reset_snapshot()
        click.echo("Snapshot reset. Next push merges with the remote from scratch.")


@click.command("check-remote")
@click.option("--user", "username", default=None, help="User whose document to inspect.")
def check_remote(username: str | None) -> None:
    """Inspect the remote document: live records and tombstones."""
    with open_app() as app:
        orchestrator = app.require_orchestrator()
        if username is None:
            username = app.require_login()
        key = orchestrator.key_for(username)
        try:
            current = orchestrator.client.fetch(key)
        except MalformedRemoteDataError as e:
            click.echo(f"Error: {key} is malformed: {e}", err=True)
            sys.exit(1)
        except APIError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        if current is None:
            click.echo(f"{key}: does not exist")
            return
        document = current.document
        click.echo(f"{key} at {current.version_token}")
        for name, records in (("warehouses", document.warehouses), ("products", document.products)):
            deleted = sum(1 for r in records if r.deleted)
            click.echo(f"  {name}: {len(records) - deleted} live, {deleted} deleted")
