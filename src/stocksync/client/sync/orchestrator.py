"""Sync orchestrator for reconciling the local inventory with the remote.

This module provides:
- SyncOrchestrator: Pull-on-login, coalesced pushes, CAS retry and status

The orchestrator is the glue between the inventory, the snapshot (BASE),
the remote blob client and the connectivity monitor:
1. Local mutations call request_push(); requests are coalesced by the
   PushScheduler and never block the caller
2. A push sends the identity's own records plus the tombstones the remote
   already holds, skipping the write when nothing changed since BASE
3. A stale version token triggers re-fetch, three-way merge and one retry
4. A successful push advances BASE and purges the published tombstones

Decision Matrix:
    | Trigger              | Condition           | Action                    |
    |----------------------|---------------------|---------------------------|
    | local mutation       | logged in           | status pending, push      |
    | push fires           | offline             | status pending, skip      |
    | push fires           | local == BASE       | status synced, no write   |
    | write rejected stale | first attempt       | fetch, merge, retry once  |
    | write rejected stale | second attempt      | status error              |
    | login                | new identity        | pull once                 |
    | logout               | push scheduled      | cancel pending push       |
    | reconnect            | pending or error    | pull if needed, else push |
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from stocksync.client.api import (
    APIError,
    BlobClient,
    RemoteUnreachableError,
    VersionConflictError,
)
from stocksync.client.document import MalformedRemoteDataError, RemoteDocument
from stocksync.client.identity import IdentityStore
from stocksync.client.inventory import Inventory
from stocksync.client.snapshot import Snapshot, SnapshotStore
from stocksync.client.state import KeyValueStore
from stocksync.client.sync.connectivity import ConnectivityMonitor
from stocksync.client.sync.domain import (
    Conflict,
    SessionState,
    SyncSession,
    compact,
    index_by_id,
    merge,
)
from stocksync.client.sync.scheduler import PushScheduler
from stocksync.client.sync.types import (
    ConflictCallback,
    PullFailedError,
    PullResult,
    PushFailedError,
    PushResult,
    StatusCallback,
)
from stocksync.core.config import DEFAULT_PATH_TEMPLATE, SyncSettings, sanitize_identity
from stocksync.core.types import RecordKind, SyncStatus

logger = logging.getLogger(__name__)

# Errors that end a push or pull without crashing the worker thread
_REMOTE_ERRORS = (APIError, MalformedRemoteDataError)


def default_key_for(identity: str) -> str:
    """Remote key of an identity's document."""
    return DEFAULT_PATH_TEMPLATE.format(identity=sanitize_identity(identity))


def reconcile(
    base: RemoteDocument,
    local: RemoteDocument,
    remote: RemoteDocument,
) -> tuple[RemoteDocument, list[Conflict]]:
    """Three-way merge both collections of a document.

    Returns:
        Tuple of (merged document, conflicts of both kinds).
    """
    merged: dict[RecordKind, list] = {}
    conflicts: list[Conflict] = []
    for kind in RecordKind:
        result = merge(base.collection(kind), local.collection(kind), remote.collection(kind), kind)
        merged[kind] = result.merged
        conflicts.extend(result.conflicts)
    document = RemoteDocument.build(merged[RecordKind.WAREHOUSE], merged[RecordKind.PRODUCT])
    return document, conflicts


class SyncOrchestrator:
    """Keeps one identity's inventory in step with its remote document.

    Usage:
        orchestrator = SyncOrchestrator(inventory, store, client, identity)
        identity.login("alice")                 # pulls in the background
        inventory.add_warehouse("Main")         # schedules a push
        orchestrator.request_push().result()    # wait for the next push
        orchestrator.close()
    """

    def __init__(
        self,
        inventory: Inventory,
        store: KeyValueStore,
        client: BlobClient,
        identity: IdentityStore,
        connectivity: ConnectivityMonitor | None = None,
        settings: SyncSettings | None = None,
        key_for: Callable[[str], str] = default_key_for,
        on_status_change: StatusCallback | None = None,
        on_conflicts: ConflictCallback | None = None,
    ) -> None:
        """Initialize the orchestrator and wire its listeners.

        Args:
            inventory: Local working copy.
            store: Key-value store holding the snapshots.
            client: Remote blob client.
            identity: Logged-in user store.
            connectivity: Reachability monitor (always reachable if None).
            settings: Push interval and retry tuning.
            key_for: Maps an identity to its remote key.
            on_status_change: Called with the new visible status.
            on_conflicts: Called with conflicts found while merging.
        """
        self._inventory = inventory
        self._store = store
        self._client = client
        self._identity = identity
        self._connectivity = connectivity or ConnectivityMonitor()
        self._settings = settings or SyncSettings()
        self._key_for = key_for
        self._on_status_change = on_status_change
        self._on_conflicts = on_conflicts

        self._lock = threading.RLock()
        # Serializes network work: at most one pull or push at a time
        self._io_lock = threading.Lock()
        self._session = SyncSession(identity.current, self._notify_status)
        self._snapshots = SnapshotStore(store, identity.current)
        self._pull_needed = False
        self._last_conflicts: list[Conflict] = []
        self._pull_future: Future[PullResult] | None = None

        self._scheduler = PushScheduler(self._run_push, self._settings.min_push_interval)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="stocksync-pull")

        inventory.set_on_change(self._on_local_change)
        identity.subscribe(self._on_identity_change)
        self._connectivity.subscribe(self.on_connectivity_change)

    # === Properties ===

    @property
    def status(self) -> SyncStatus:
        """Get the visible sync status."""
        with self._lock:
            return self._session.status

    @property
    def state(self) -> SessionState:
        """Get the session state."""
        with self._lock:
            return self._session.state

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._session.last_error

    @property
    def last_conflicts(self) -> list[Conflict]:
        """Conflicts found by the most recent merge."""
        with self._lock:
            return list(self._last_conflicts)

    @property
    def identity(self) -> str:
        with self._lock:
            return self._session.identity

    @property
    def client(self) -> BlobClient:
        return self._client

    @property
    def connectivity(self) -> ConnectivityMonitor:
        return self._connectivity

    def key_for(self, identity: str) -> str:
        """Remote key of an identity."""
        return self._key_for(identity)

    @property
    def remote_key(self) -> str:
        """Remote key of the current identity."""
        return self._key_for(self.identity)

    def snapshot(self) -> Snapshot | None:
        """Get the current identity's snapshot."""
        with self._lock:
            snapshots = self._snapshots
        return snapshots.get()

    def has_local_changes(self) -> bool:
        """Check if the local state differs from BASE (a push would write)."""
        with self._lock:
            identity = self._session.identity
            snapshots = self._snapshots
        snapshot = snapshots.get()
        if snapshot is None:
            return True
        _, _, outgoing = self._outgoing(identity, snapshot)
        return not outgoing.same_content(snapshot.document)

    def close(self) -> None:
        """Cancel pending pushes and stop background workers.

        Waits for an in-flight push or pull to finish.
        """
        self._scheduler.shutdown()
        with self._io_lock:
            pass
        self._executor.shutdown(wait=True)
        self._inventory.set_on_change(None)

    # === Triggers ===

    def request_push(self) -> Future[PushResult]:
        """Schedule a push; the Future resolves when the push that serves it ends.

        Requests made while a push is pending share its Future.
        """
        if not self._identity.is_logged_in:
            future: Future[PushResult] = Future()
            future.set_result(PushResult(skipped=True))
            return future

        with self._lock:
            if self._session.state in (SessionState.IDLE, SessionState.ERROR):
                self._session.transition_to(SessionState.PUSH_SCHEDULED)
        return self._scheduler.request()

    def push_now(self, timeout: float | None = None) -> PushResult:
        """Request a push and wait for its outcome.

        Raises:
            PushFailedError: If the push ended in a terminal failure.
        """
        if not self._identity.is_logged_in:
            return PushResult(skipped=True)
        with self._lock:
            if self._session.state in (SessionState.IDLE, SessionState.ERROR):
                self._session.transition_to(SessionState.PUSH_SCHEDULED)
        return self._scheduler.flush().result(timeout=timeout)

    def pull(self) -> PullResult:
        """Replace the local inventory with the remote document.

        Raises:
            PullFailedError: If the remote could not be read.
        """
        with self._io_lock:
            return self._run_pull()

    def on_login(self) -> Future[PullResult]:
        """Pull the new identity's remote document in the background."""
        with self._lock:
            self._pull_needed = True
            future = self._executor.submit(self._pull_on_login)
            self._pull_future = future
        return future

    def wait_for_pull(self, timeout: float | None = None) -> PullResult | None:
        """Wait for the background pull started by the last login.

        Returns:
            The pull result, or None if no pull was started.

        Raises:
            PullFailedError: If that pull failed.
        """
        with self._lock:
            future = self._pull_future
        if future is None:
            return None
        return future.result(timeout=timeout)

    def on_logout(self) -> None:
        """Cancel a pending push; an in-flight push completes."""
        if self._scheduler.cancel():
            logger.info("Pending push cancelled by logout")
        with self._lock:
            self._pull_needed = False
            if self._session.state == SessionState.PUSH_SCHEDULED:
                self._session.transition_to(SessionState.IDLE)

    def on_connectivity_change(self, reachable: bool) -> None:
        """Resume sync work when the network comes back."""
        if not reachable or not self._identity.is_logged_in:
            return
        with self._lock:
            pull_needed = self._pull_needed
            status = self._session.status
        if pull_needed:
            logger.info("Network restored, pulling")
            with self._lock:
                self._pull_future = self._executor.submit(self._pull_on_login)
        elif status in (SyncStatus.PENDING, SyncStatus.ERROR):
            logger.info("Network restored, pushing pending changes")
            self.request_push()

    def reset_snapshot(self) -> None:
        """Forget BASE so the next push treats the local state as new.

        The pending push, if any, is cancelled; status becomes pending until
        the next push.
        """
        self._scheduler.cancel()
        with self._lock:
            self._snapshots.clear()
            if self._session.state == SessionState.PUSH_SCHEDULED:
                self._session.transition_to(SessionState.IDLE)
            self._session.set_status(SyncStatus.PENDING)

    def consolidate(self) -> list[Conflict]:
        """Merge the remote document into the local inventory without pushing.

        Used when the same identity writes from several devices: local edits
        and remote edits made since BASE are combined field by field. BASE
        moves to the remote state, so a later push publishes the merge.

        Returns:
            Conflicts found while merging.

        Raises:
            PullFailedError: If the remote could not be read.
        """
        with self._io_lock:
            with self._lock:
                identity = self._session.identity
                snapshots = self._snapshots
            key = self._key_for(identity)
            try:
                current = self._client.fetch(key)
            except _REMOTE_ERRORS as e:
                raise PullFailedError(f"Cannot read {key}: {e}") from e
            if current is None:
                logger.info("Remote %s is empty, nothing to consolidate", key)
                return []

            snapshot = snapshots.get()
            base = snapshot.document if snapshot else RemoteDocument()
            local_w, local_p, outgoing = self._outgoing(identity, snapshot)
            merged, conflicts = reconcile(base, outgoing, current.document)
            self._apply(merged, local_w, local_p)
            snapshots.set(current.document.warehouses, current.document.products, current.version_token)
            self._record_conflicts(conflicts)
            if not merged.same_content(current.document):
                self._on_local_change()
            return conflicts

    # === Listeners ===

    def _on_local_change(self) -> None:
        if not self._identity.is_logged_in:
            return
        with self._lock:
            if self._session.state != SessionState.PUSHING:
                self._session.set_status(SyncStatus.PENDING)
        self.request_push()

    def _on_identity_change(self, previous: str | None, new: str | None) -> None:
        self._scheduler.cancel()
        with self._lock:
            self._session = SyncSession(self._identity.current, self._notify_status)
            self._snapshots = SnapshotStore(self._store, self._identity.current)
            self._last_conflicts = []
        if new is None:
            self.on_logout()
        elif new != previous:
            self.on_login()

    def _notify_status(self, status: SyncStatus) -> None:
        logger.debug("Sync status: %s", status.value)
        if self._on_status_change:
            self._on_status_change(status)

    # === Pull ===

    def _pull_on_login(self) -> PullResult:
        if not self._connectivity.is_reachable:
            logger.info("Offline, pull deferred until reconnect")
            with self._lock:
                self._session.set_status(SyncStatus.PENDING)
            return PullResult(found=False)
        try:
            return self.pull()
        except PullFailedError:
            logger.exception("Pull after login failed")
            raise

    def _run_pull(self) -> PullResult:
        with self._lock:
            identity = self._session.identity
            snapshots = self._snapshots
            self._session.transition_to(SessionState.PULLING)
            self._session.set_status(SyncStatus.SYNCING)
        key = self._key_for(identity)

        try:
            current = self._client.fetch(key)
        except RemoteUnreachableError as e:
            self._finish(identity, SessionState.IDLE, SyncStatus.PENDING)
            self._connectivity.set_reachable(False)
            raise PullFailedError(f"Remote unreachable: {e}") from e
        except _REMOTE_ERRORS as e:
            self._finish(identity, SessionState.ERROR, SyncStatus.ERROR, str(e))
            raise PullFailedError(f"Cannot read {key}: {e}") from e

        if current is None:
            logger.info("No remote document for %s yet", identity)
            snapshots.set((), (), None)
            result = PullResult(found=False)
        else:
            document = current.document
            self._inventory.replace_all(compact(document.warehouses), compact(document.products))
            snapshots.set(document.warehouses, document.products, current.version_token)
            result = PullResult(
                found=True,
                version_token=current.version_token,
                warehouses=len(compact(document.warehouses)),
                products=len(compact(document.products)),
            )
            logger.info(
                "Pulled %d warehouses and %d products for %s",
                result.warehouses,
                result.products,
                identity,
            )

        with self._lock:
            self._pull_needed = False
        self._finish(identity, SessionState.IDLE, SyncStatus.SYNCED)
        return result

    # === Push ===

    def _run_push(self) -> PushResult:
        with self._io_lock:
            with self._lock:
                identity = self._session.identity
                snapshots = self._snapshots
                if self._session.state in (SessionState.IDLE, SessionState.ERROR):
                    self._session.transition_to(SessionState.PUSH_SCHEDULED)

            if not self._connectivity.is_reachable:
                logger.info("Offline, push deferred until reconnect")
                self._finish(identity, SessionState.IDLE, SyncStatus.PENDING)
                return PushResult(skipped=True)

            with self._lock:
                self._session.transition_to(SessionState.PUSHING)
                self._session.set_status(SyncStatus.SYNCING)

            try:
                result = self._push(identity, snapshots)
            except RemoteUnreachableError as e:
                logger.warning("Remote unreachable during push: %s", e)
                self._finish(identity, SessionState.IDLE, SyncStatus.PENDING)
                self._connectivity.set_reachable(False)
                return PushResult(skipped=True)
            except _REMOTE_ERRORS as e:
                logger.error("Push for %s failed: %s", identity, e)
                self._finish(identity, SessionState.ERROR, SyncStatus.ERROR, str(e))
                raise PushFailedError(str(e)) from e

            if self._scheduler.has_pending:
                self._finish(identity, SessionState.PUSH_SCHEDULED, SyncStatus.PENDING)
            else:
                self._finish(identity, SessionState.IDLE, SyncStatus.SYNCED)
        return result

    def _push(self, identity: str, snapshots: SnapshotStore) -> PushResult:
        key = self._key_for(identity)
        snapshot = snapshots.get()
        local_w, local_p, outgoing = self._outgoing(identity, snapshot)

        if snapshot is not None and outgoing.same_content(snapshot.document):
            logger.info("No changes since last sync for %s", identity)
            return PushResult(skipped=True, version_token=snapshot.version_token)

        base = snapshot.document if snapshot else RemoteDocument()
        token = snapshot.version_token if snapshot else None
        conflicts: list[Conflict] = []
        retried = False
        merged_remote = False

        if snapshot is None:
            # No baseline: merge with whatever the remote holds first
            current = self._client.fetch(key)
            if current is not None:
                outgoing, conflicts = reconcile(base, outgoing, current.document)
                token = current.version_token
                merged_remote = True

        try:
            new_token = self._client.write(key, outgoing, token)
        except VersionConflictError:
            logger.info("Remote %s changed since %s, merging", key, token)
            retried = True
            current = self._client.fetch(key)
            if current is None:
                token = None
            else:
                outgoing, conflicts = reconcile(base, outgoing, current.document)
                token = current.version_token
                merged_remote = True
            new_token = self._client.write(key, outgoing, token)

        if merged_remote:
            self._apply(outgoing, local_w, local_p)
        snapshots.set(outgoing.warehouses, outgoing.products, new_token)
        self._inventory.purge_deleted(published=outgoing.warehouses + outgoing.products)
        self._record_conflicts(conflicts)
        logger.info("Pushed %s at %s", key, new_token)
        return PushResult(
            written=True,
            version_token=new_token,
            conflicts=conflicts,
            retried=retried,
        )

    # === Helpers ===

    def _outgoing(self, identity: str, snapshot: Snapshot | None) -> tuple[list, list, RemoteDocument]:
        """Own local records plus the tombstones BASE holds that local purged."""
        local_w = self._inventory.records(RecordKind.WAREHOUSE, owner=identity)
        local_p = self._inventory.records(RecordKind.PRODUCT, owner=identity)
        warehouses = index_by_id(local_w)
        products = index_by_id(local_p)
        if snapshot is not None:
            for target, base_records in ((warehouses, snapshot.warehouses), (products, snapshot.products)):
                for record in base_records:
                    if record.deleted and record.id not in target:
                        target[record.id] = record
        return local_w, local_p, RemoteDocument.build(warehouses.values(), products.values())

    def _apply(self, merged: RemoteDocument, local_w: list, local_p: list) -> None:
        self._inventory.apply_records(RecordKind.WAREHOUSE, merged.warehouses, index_by_id(local_w))
        self._inventory.apply_records(RecordKind.PRODUCT, merged.products, index_by_id(local_p))

    def _record_conflicts(self, conflicts: list[Conflict]) -> None:
        with self._lock:
            self._last_conflicts = list(conflicts)
        if not conflicts:
            return
        for conflict in conflicts:
            logger.warning("Conflict: %s", conflict.describe())
        if self._on_conflicts:
            self._on_conflicts(list(conflicts))

    def _finish(
        self,
        identity: str,
        state: SessionState,
        status: SyncStatus,
        error: str | None = None,
    ) -> None:
        with self._lock:
            if self._session.identity != identity:
                # Identity changed while the operation ran
                return
            self._session.transition_to(state)
            self._session.set_status(status, error)
