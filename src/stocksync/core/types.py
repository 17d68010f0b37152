"""Shared types for stocksync.

This module defines enums used by the orchestrator, the CLI and any UI
layer that displays sync progress.
"""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Visible sync status of a client session.

    Consumed by the presentation layer; never blocks local reads or writes.
    """

    SYNCED = "synced"
    PENDING = "pending"
    SYNCING = "syncing"
    ERROR = "error"


class RecordKind(str, Enum):
    """Kinds of record collections held in a remote document."""

    WAREHOUSE = "warehouse"
    PRODUCT = "product"

    @property
    def collection(self) -> str:
        """Name of the collection in the remote document."""
        return f"{self.value}s"
