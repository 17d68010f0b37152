"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, PushFailedError, PullFailedError: Exception classes
- PushResult, PullResult: Operation result dataclasses
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from stocksync.client.sync.domain.conflicts import Conflict
from stocksync.core.types import SyncStatus


class SyncError(Exception):
    """Base exception for sync errors."""


class PushFailedError(SyncError):
    """A push ended in a terminal failure."""


class PullFailedError(SyncError):
    """A pull ended in a terminal failure."""


@dataclass
class PushResult:
    """Result of one push attempt.

    Attributes:
        written: True if a write reached the remote store.
        skipped: True if the push was deferred (offline or nothing to do).
        version_token: Remote token after the push.
        conflicts: Field conflicts found while re-merging after a CAS
            rejection.
        retried: True if the first write was rejected as stale.
    """

    written: bool = False
    skipped: bool = False
    version_token: str | None = None
    conflicts: list[Conflict] = field(default_factory=list)
    retried: bool = False


@dataclass
class PullResult:
    """Result of a pull.

    Attributes:
        found: False if the remote document does not exist yet.
        version_token: Remote token of the pulled state.
        warehouses: Number of warehouses received.
        products: Number of products received.
    """

    found: bool
    version_token: str | None = None
    warehouses: int = 0
    products: int = 0


# Type alias for status callback
StatusCallback = Callable[[SyncStatus], None]

# Type alias for conflict callback
ConflictCallback = Callable[[list[Conflict]], None]
