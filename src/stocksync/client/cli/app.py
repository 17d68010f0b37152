"""Wiring of the local stores, inventory and orchestrator for CLI commands."""

from __future__ import annotations

import contextlib
import sys
from collections.abc import Iterator
from dataclasses import dataclass

import click

from stocksync.client.api import GitContentsClient
from stocksync.client.cli.config import (
    get_state_db,
    load_remote_config,
    load_sync_settings,
)
from stocksync.client.credentials import CredentialsError
from stocksync.client.identity import IdentityStore
from stocksync.client.inventory import Inventory
from stocksync.client.state import SQLiteKeyValueStore
from stocksync.client.sync.connectivity import ConnectivityMonitor
from stocksync.client.sync.orchestrator import SyncOrchestrator
from stocksync.client.sync.types import PushFailedError
from stocksync.core.types import SyncStatus


@dataclass
class App:
    """Objects shared by one CLI invocation."""

    store: SQLiteKeyValueStore
    identity: IdentityStore
    inventory: Inventory
    orchestrator: SyncOrchestrator | None = None

    def require_orchestrator(self) -> SyncOrchestrator:
        """Get the orchestrator or exit if the remote is not configured."""
        if self.orchestrator is None:
            click.echo("Error: Remote not configured. Run 'stocksync configure' first.", err=True)
            sys.exit(1)
        return self.orchestrator

    def require_login(self) -> str:
        """Get the logged-in user or exit."""
        if not self.identity.is_logged_in:
            click.echo("Error: Not logged in. Run 'stocksync login USER' first.", err=True)
            sys.exit(1)
        return self.identity.current

    def push_changes(self) -> None:
        """Push local mutations made by this command, if sync is available."""
        if self.orchestrator is None or not self.identity.is_logged_in:
            return
        try:
            result = self.orchestrator.push_now()
        except PushFailedError as e:
            click.echo(f"Warning: Saved locally, push failed: {e}", err=True)
            return
        if result.written:
            click.echo("Pushed to remote.")
        elif result.skipped and self.orchestrator.status == SyncStatus.PENDING:
            click.echo("Saved locally, will push when the remote is reachable.")


@contextlib.contextmanager
def open_app(with_remote: bool = True) -> Iterator[App]:
    """Open the local state and, if configured, the remote client.

    Args:
        with_remote: Also build the remote client and orchestrator.
    """
    db_path = get_state_db()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = SQLiteKeyValueStore(db_path)
    identity = IdentityStore(store)
    inventory = Inventory(store, lambda: identity.current)
    app = App(store=store, identity=identity, inventory=inventory)

    client = None
    if with_remote:
        try:
            remote = load_remote_config()
        except CredentialsError as e:
            click.echo(f"Warning: {e}", err=True)
            remote = None
        if remote is not None:
            settings = load_sync_settings()
            client = GitContentsClient(remote, settings)
            app.orchestrator = SyncOrchestrator(
                inventory,
                store,
                client,
                identity,
                connectivity=ConnectivityMonitor(probe=client.health_check),
                settings=settings,
                key_for=remote.path_for,
            )

    try:
        yield app
    finally:
        if app.orchestrator is not None:
            app.orchestrator.close()
        if client is not None:
            client.close()
        store.close()
