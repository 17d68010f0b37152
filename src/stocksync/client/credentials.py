"""Remote access token storage.

The token for the remote blob store is kept in the OS keyring, never in
the plain config file. Owner, repository and branch live in config.json.
"""

from __future__ import annotations

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

KEYRING_SERVICE = "stocksync"
TOKEN_ENTRY = "remote-token"


class CredentialsError(Exception):
    """Exception raised for credential storage errors."""


def save_token(token: str) -> None:
    """Store the remote access token.

    Raises:
        CredentialsError: If no keyring backend can store it.
    """
    if not token:
        raise CredentialsError("Token must not be empty")
    try:
        keyring.set_password(KEYRING_SERVICE, TOKEN_ENTRY, token)
    except KeyringError as e:
        raise CredentialsError(f"Cannot store token in keyring: {e}") from e


def load_token() -> str | None:
    """Get the stored remote access token, or None."""
    try:
        return keyring.get_password(KEYRING_SERVICE, TOKEN_ENTRY)
    except KeyringError as e:
        raise CredentialsError(f"Cannot read token from keyring: {e}") from e


def clear_token() -> None:
    """Remove the stored token if present."""
    try:
        keyring.delete_password(KEYRING_SERVICE, TOKEN_ENTRY)
    except PasswordDeleteError:
        pass
    except KeyringError as e:
        raise CredentialsError(f"Cannot remove token from keyring: {e}") from e
