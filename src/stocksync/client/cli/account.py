"""Remote and account commands for stocksync CLI.

Commands:
- configure: Set the remote repository and store the access token
- disconnect: Forget the remote repository and token
- login: Log in as a user and pull their inventory
- logout: Log out (local data is kept)
"""

from __future__ import annotations

import sys

import click

from stocksync.client.cli.app import open_app
from stocksync.client.cli.config import REMOTE_KEYS, load_config, save_config
from stocksync.client.credentials import CredentialsError, clear_token, save_token
from stocksync.client.sync.types import PullFailedError
from stocksync.core.config import DEFAULT_API_URL
from stocksync.core.types import SyncStatus


@click.command()
@click.option("--owner", required=True, help="Account owning the data repository.")
@click.option("--repo", required=True, help="Repository holding the data documents.")
@click.option("--branch", default=None, help="Branch to read from and commit to.")
@click.option("--api-url", default=DEFAULT_API_URL, show_default=True, help="Content API base URL.")
@click.option(
    "--token",
    prompt="Access token",
    hide_input=True,
    help="Access token with write access to the repository.",
)
def configure(owner: str, repo: str, branch: str | None, api_url: str, token: str) -> None:
    """Configure the remote repository used for sync.

    The token is stored in the OS keyring, not in the config file.
    """
    try:
        save_token(token)
    except CredentialsError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    config = load_config()
    config["owner"] = owner
    config["repo"] = repo
    config["api_url"] = api_url.rstrip("/")
    if branch:
        config["branch"] = branch
    else:
        config.pop("branch", None)
    save_config(config)

    click.echo(f"Remote configured: {owner}/{repo}")


@click.command()
def disconnect() -> None:
    """Forget the remote repository and its token."""
    config = load_config()
    for key in REMOTE_KEYS:
        config.pop(key, None)
    save_config(config)
    try:
        clear_token()
    except CredentialsError as e:
        click.echo(f"Warning: {e}", err=True)
    click.echo("Remote disconnected. Local data is kept.")


@click.command()
@click.argument("username")
def login(username: str) -> None:
    """Log in as USERNAME and pull their inventory."""
    with open_app() as app:
        if app.identity.username == username:
            click.echo(f"Already logged in as {username}.")
            return
        try:
            app.identity.login(username)
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        click.echo(f"Logged in as {app.identity.current}.")

        orchestrator = app.orchestrator
        if orchestrator is None:
            click.echo("Remote not configured, working offline.")
            return
        try:
            result = orchestrator.wait_for_pull()
        except PullFailedError as e:
            click.echo(f"Warning: Pull failed: {e}", err=True)
            return
        if result is None or orchestrator.status == SyncStatus.PENDING:
            click.echo("Remote unreachable, pull deferred.")
        elif not result.found:
            click.echo(f"No remote data for {app.identity.current} yet.")
        else:
            click.echo(f"Pulled {result.warehouses} warehouses and {result.products} products.")


@click.command()
def logout() -> None:
    """Log out. Local data stays on this machine."""
    with open_app(with_remote=False) as app:
        username = app.identity.username
        if username is None:
            click.echo("Not logged in.")
            return
        app.identity.logout()
        click.echo(f"Logged out {username}.")
