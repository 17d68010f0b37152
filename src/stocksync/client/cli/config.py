"""Configuration utilities for stocksync CLI.

This module provides shared configuration functions used across CLI commands.
The access token is not part of config.json; it lives in the OS keyring.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from stocksync.client.credentials import load_token
from stocksync.core.config import DEFAULT_API_URL, RemoteConfig, SyncSettings

# Keys of config.json describing the remote repository
REMOTE_KEYS = ("owner", "repo", "branch", "api_url")


def get_config_dir() -> Path:
    """Get the configuration directory for stocksync.

    Returns:
        Path to ~/.stocksync or equivalent.
    """
    return Path.home() / ".stocksync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the local state database."""
    return get_config_dir() / "state.db"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def load_remote_config() -> RemoteConfig | None:
    """Build the remote configuration.

    Returns:
        RemoteConfig, or None if the repository or token is not configured.
    """
    config = load_config()
    if not config.get("owner") or not config.get("repo"):
        return None
    token = load_token()
    if not token:
        return None
    return RemoteConfig(
        owner=config["owner"],
        repo=config["repo"],
        token=token,
        api_url=config.get("api_url") or DEFAULT_API_URL,
        branch=config.get("branch") or None,
    )


def load_sync_settings() -> SyncSettings:
    """Build sync settings, honoring overrides from config.json."""
    config = load_config()
    settings = SyncSettings()
    if "min_push_interval" in config:
        settings.min_push_interval = float(config["min_push_interval"])
    if "max_rate_limit_retries" in config:
        settings.max_rate_limit_retries = int(config["max_rate_limit_retries"])
    return settings


def setup_logging(verbose: bool) -> None:
    """Send stocksync log records to stderr."""
    stocksync_logger = logging.getLogger("stocksync")
    for handler in stocksync_logger.handlers[:]:
        stocksync_logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    stocksync_logger.addHandler(handler)
    stocksync_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
