"""Sync operations between the local inventory and the remote store.

Architecture:
    Inventory mutation → PushScheduler → SyncOrchestrator → BlobClient

Components:
- **domain**: Record model, three-way merge, conflicts, session states
- **PushScheduler**: Coalesces push requests within the minimum interval
- **ConnectivityMonitor**: Reachability state and reconnect notifications
- **SyncOrchestrator** (sync.orchestrator): Pull, push, CAS retry, status

The orchestrator is imported from its module directly; it depends on the
remote client, which itself depends on the domain package.
"""

from stocksync.client.sync.connectivity import ConnectivityMonitor
from stocksync.client.sync.scheduler import PushScheduler
from stocksync.client.sync.types import (
    ConflictCallback,
    PullFailedError,
    PullResult,
    PushFailedError,
    PushResult,
    StatusCallback,
    SyncError,
)

__all__ = [
    # connectivity
    "ConnectivityMonitor",
    # scheduler
    "PushScheduler",
    # types
    "ConflictCallback",
    "PullFailedError",
    "PullResult",
    "PushFailedError",
    "PushResult",
    "StatusCallback",
    "SyncError",
]
