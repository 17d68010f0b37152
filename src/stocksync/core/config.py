"""Shared configuration classes for stocksync.

This module defines configuration classes used by the remote client,
the orchestrator and the CLI.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_PATH_TEMPLATE = "warehouse-data-{identity}.json"


def sanitize_identity(identity: str) -> str:
    """Make an identity safe to embed in a remote path.

    Only alphanumeric characters, dots, hyphens and underscores survive.
    Other characters are replaced with underscores.
    """
    cleaned = re.sub(r"[^A-Za-z0-9._-]", "_", identity.strip())
    return cleaned or "local"


@dataclass
class RemoteConfig:
    """Configuration for the remote blob store.

    Attributes:
        owner: Account that owns the repository.
        repo: Repository holding the data documents.
        token: Access token sent as a bearer token.
        api_url: Base URL of the content API.
        branch: Optional branch to read from and commit to.
        timeout: Request timeout in seconds.
        path_template: Remote path of an identity's document.
    """

    owner: str
    repo: str
    token: str
    api_url: str = DEFAULT_API_URL
    branch: str | None = None
    timeout: float = 30.0
    path_template: str = DEFAULT_PATH_TEMPLATE

    def __post_init__(self) -> None:
        """Normalize API URL."""
        self.api_url = self.api_url.rstrip("/")

    @property
    def contents_url(self) -> str:
        """Get the contents endpoint prefix for the repository."""
        return f"/repos/{self.owner}/{self.repo}/contents"

    def path_for(self, identity: str) -> str:
        """Get the remote document path owned by an identity."""
        return self.path_template.format(identity=sanitize_identity(identity))


@dataclass
class SyncSettings:
    """Tuning knobs for push scheduling and rate-limit retries.

    Attributes:
        min_push_interval: Seconds that must separate two pushes.
        max_rate_limit_retries: Retry ceiling for throttled requests.
        initial_backoff: First backoff delay when no server hint is given.
        max_backoff: Upper bound for a single backoff delay.
    """

    min_push_interval: float = 5.0
    max_rate_limit_retries: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
