"""Command-line interface for stocksync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set the remote repository and access token
- disconnect: Forget the remote repository
- login: Log in as a user and pull their inventory
- logout: Log out
- pull: Replace local data with the remote document
- push: Push local changes
- sync: Merge remote changes, then push
- status: Show sync status
- reset-snapshot: Forget the last reconciled remote state
- check-remote: Inspect the remote document
- warehouse: Manage warehouses
- product: Manage products
"""

from __future__ import annotations

import click

from stocksync.client.cli.account import configure, disconnect, login, logout
from stocksync.client.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
    setup_logging,
)
from stocksync.client.cli.inventory import product, warehouse
from stocksync.client.cli.sync import (
    check_remote,
    pull,
    push,
    reset_snapshot,
    status,
    sync,
)


@click.group()
@click.version_option(package_name="stocksync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """stocksync - Warehouse inventory synced through a git repository."""
    setup_logging(verbose)


# Account commands
cli.add_command(configure)
cli.add_command(disconnect)
cli.add_command(login)
cli.add_command(logout)

# Sync commands
cli.add_command(pull)
cli.add_command(push)
cli.add_command(sync)
cli.add_command(status)
cli.add_command(reset_snapshot)
cli.add_command(check_remote)

# Inventory commands
cli.add_command(warehouse)
cli.add_command(product)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
