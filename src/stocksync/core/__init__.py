"""Core module - Shared configuration and status types."""

from stocksync.core.config import RemoteConfig, SyncSettings, sanitize_identity
from stocksync.core.types import RecordKind, SyncStatus

__all__ = [
    # Config
    "RemoteConfig",
    "SyncSettings",
    "sanitize_identity",
    # Types
    "RecordKind",
    "SyncStatus",
]
