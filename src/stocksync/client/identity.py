"""Client identity (logged-in user).

The identity selects the remote document a client reads and writes and is
stamped into updated_by on every mutation. When nobody is logged in the
identity is "local".
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable

from stocksync.client.state import KeyValueStore
from stocksync.client.sync.domain.records import DEFAULT_IDENTITY

logger = logging.getLogger(__name__)

AUTH_KEY = "auth:user"

IdentityListener = Callable[[str | None, str | None], None]


class IdentityStore:
    """Persists the logged-in username and notifies listeners on change.

    Listeners receive (previous_username, new_username); either may be None.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._listeners: list[IdentityListener] = []
        self._username = self._load()

    def _load(self) -> str | None:
        raw = self._store.get(AUTH_KEY)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Stored user is unreadable, treating as logged out")
            return None
        username = data.get("username") if isinstance(data, dict) else None
        return username if isinstance(username, str) and username else None

    @property
    def username(self) -> str | None:
        """Logged-in username, or None."""
        return self._username

    @property
    def current(self) -> str:
        """Identity used for stamping and remote selection."""
        return self._username or DEFAULT_IDENTITY

    @property
    def is_logged_in(self) -> bool:
        return self._username is not None

    def subscribe(self, listener: IdentityListener) -> None:
        """Register a listener for login/logout."""
        self._listeners.append(listener)

    def login(self, username: str) -> None:
        """Log in as username."""
        username = username.strip()
        if not username:
            raise ValueError("Username must not be empty")
        previous = self._username
        self._store.set(AUTH_KEY, json.dumps({"username": username}).encode("utf-8"))
        self._username = username
        logger.info("Logged in as %s", username)
        self._notify(previous, username)

    def logout(self) -> None:
        """Log out the current user."""
        previous = self._username
        self._store.delete(AUTH_KEY)
        self._username = None
        if previous is not None:
            logger.info("Logged out %s", previous)
            self._notify(previous, None)

    def _notify(self, previous: str | None, new: str | None) -> None:
        for listener in self._listeners:
            listener(previous, new)
