"""Local key-value persistence for the sync client.

This module provides:
- KeyValueStore: Protocol for the byte store used by every local component
- SQLiteKeyValueStore: SQLite-backed store (WAL mode, thread-safe)
- MemoryKeyValueStore: dict-backed store for tests and ephemeral sessions

The store enforces no schema. Callers own their key names:
    records (working copy of every identity)
    snapshot:<identity>
    auth:user
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Protocol for local byte storage."""

    def get(self, key: str) -> bytes | None:
        """Get the value stored under key, or None."""
        ...

    def set(self, key: str, value: bytes) -> None:
        """Store value under key, replacing any previous value."""
        ...

    def delete(self, key: str) -> None:
        """Remove key if present."""
        ...


class SQLiteKeyValueStore:
    """SQLite-based key-value store."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Lock for thread-safe database access
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL
            )
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SQLiteKeyValueStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def get(self, key: str) -> bytes | None:
        """Get the value stored under key, or None."""
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM kv_store WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return bytes(row[0])

    def set(self, key: str, value: bytes) -> None:
        """Store value under key."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                (key, value),
            )

    def delete(self, key: str) -> None:
        """Remove key if present."""
        with self._lock:
            self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))


class MemoryKeyValueStore:
    """In-memory key-value store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        """Get the value stored under key, or None."""
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        """Store value under key."""
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        """Remove key if present."""
        with self._lock:
            self._data.pop(key, None)
