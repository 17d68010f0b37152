"""Tests for the sync orchestrator."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

import pytest

from stocksync.client.api import AuthenticationError, InMemoryBlobStore
from stocksync.client.document import RemoteDocument
from stocksync.client.identity import IdentityStore
from stocksync.client.inventory import Inventory
from stocksync.client.state import MemoryKeyValueStore
from stocksync.client.sync.connectivity import ConnectivityMonitor
from stocksync.client.sync.domain import Conflict, SessionState, Warehouse
from stocksync.client.sync.orchestrator import SyncOrchestrator, default_key_for, reconcile
from stocksync.client.sync.types import PullFailedError, PullResult, PushFailedError
from stocksync.core.config import SyncSettings
from stocksync.core.types import RecordKind, SyncStatus

WAIT = 5.0
OLD = "2020-01-01T00:00:00.000Z"
ALICE_KEY = "warehouse-data-alice.json"


class RecordingStore(InMemoryBlobStore):
    """In-memory store that records write attempts and can fail them.

    before_fetch and before_write run once, on the next call.
    """

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0
        self.fail_with: Exception | None = None
        self.before_fetch: Callable[[], object] | None = None
        self.before_write: Callable[[], object] | None = None

    def fetch(self, key):  # type: ignore[no-untyped-def]
        if self.before_fetch is not None:
            hook, self.before_fetch = self.before_fetch, None
            hook()
        return super().fetch(key)

    def write(self, key, document, expected_token):  # type: ignore[no-untyped-def]
        self.attempts += 1
        if self.before_write is not None:
            hook, self.before_write = self.before_write, None
            hook()
        if self.fail_with is not None:
            raise self.fail_with
        return super().write(key, document, expected_token)


@dataclass
class Env:
    """Wired orchestrator with in-memory stores."""

    store: MemoryKeyValueStore
    identity: IdentityStore
    inventory: Inventory
    remote: RecordingStore
    connectivity: ConnectivityMonitor
    orchestrator: SyncOrchestrator
    statuses: list[SyncStatus] = field(default_factory=list)
    conflicts: list[list[Conflict]] = field(default_factory=list)

    def login(self, username: str = "alice"):  # type: ignore[no-untyped-def]
        self.identity.login(username)
        return self.orchestrator.wait_for_pull(timeout=WAIT)

    def remote_document(self, key: str = ALICE_KEY) -> RemoteDocument:
        result = self.remote.fetch(key)
        assert result is not None
        return result.document

    def seed(self, *warehouses: Warehouse, key: str = ALICE_KEY) -> str:
        """Store a document as if another device had written it."""
        return self.remote.put_raw(key, RemoteDocument.build(warehouses, []).to_canonical_bytes())


def make_env(min_push_interval: float = 0.0) -> Env:
    store = MemoryKeyValueStore()
    identity = IdentityStore(store)
    inventory = Inventory(store, lambda: identity.current)
    remote = RecordingStore()
    connectivity = ConnectivityMonitor()
    statuses: list[SyncStatus] = []
    conflicts: list[list[Conflict]] = []
    orchestrator = SyncOrchestrator(
        inventory,
        store,
        remote,
        identity,
        connectivity=connectivity,
        settings=SyncSettings(min_push_interval=min_push_interval),
        on_status_change=statuses.append,
        on_conflicts=conflicts.append,
    )
    return Env(store, identity, inventory, remote, connectivity, orchestrator, statuses, conflicts)


@pytest.fixture
def env() -> Iterator[Env]:
    environment = make_env()
    yield environment
    environment.orchestrator.close()


def seeded(name: str = "A", version: int = 1, **values: object) -> Warehouse:
    return Warehouse(
        id="w1", version=version, updated_at=OLD, updated_by="alice", store_id="alice", name=name, **values  # type: ignore[arg-type]
    )


class TestHelpers:
    """Tests for module helpers."""

    def test_default_key_for(self) -> None:
        """Identities map to sanitized document names."""
        assert default_key_for("alice") == ALICE_KEY
        assert default_key_for("a b/c") == "warehouse-data-a_b_c.json"

    def test_reconcile_merges_both_collections(self) -> None:
        """Warehouses and products are merged independently."""
        base = RemoteDocument.build([seeded()], [])
        local = RemoteDocument.build([seeded(version=2, qr_only=True)], [])
        remote = RemoteDocument.build([seeded("R", version=2)], [])

        merged, conflicts = reconcile(base, local, remote)

        assert conflicts == []
        [warehouse] = merged.warehouses
        assert (warehouse.name, warehouse.qr_only, warehouse.version) == ("R", True, 3)


class TestPull:
    """Tests for pull on login."""

    def test_pull_replaces_local_and_sets_base(self, env: Env) -> None:
        """Live records become the working copy; BASE keeps tombstones."""
        gone = Warehouse(id="w2", updated_at=OLD, store_id="alice", deleted=True)
        token = env.seed(seeded(), gone)

        result = env.login()

        assert result.found
        assert result.warehouses == 1
        assert [w.id for w in env.inventory.warehouses()] == ["w1"]
        assert env.inventory.records(RecordKind.WAREHOUSE) == [seeded()]
        snapshot = env.orchestrator.snapshot()
        assert snapshot is not None
        assert snapshot.version_token == token
        assert [w.id for w in snapshot.warehouses] == ["w1", "w2"]
        assert env.orchestrator.status == SyncStatus.SYNCED

    def test_pull_missing_document(self, env: Env) -> None:
        """An absent remote yields an empty baseline."""
        result = env.login()

        assert not result.found
        snapshot = env.orchestrator.snapshot()
        assert snapshot is not None
        assert snapshot.version_token is None
        assert env.orchestrator.status == SyncStatus.SYNCED

    def test_pull_malformed_document(self, env: Env) -> None:
        """Unparseable remote content is an error, not a crash."""
        env.remote.put_raw(ALICE_KEY, b"{garbage")

        with pytest.raises(PullFailedError):
            env.login()
        assert env.orchestrator.status == SyncStatus.ERROR
        assert env.orchestrator.state == SessionState.ERROR

    def test_pull_deferred_while_offline(self, env: Env) -> None:
        """Offline login pulls after reconnect."""
        env.seed(seeded())
        env.connectivity.set_reachable(False)

        result = env.login()
        assert not result.found
        assert env.orchestrator.status == SyncStatus.PENDING

        env.connectivity.set_reachable(True)
        result = env.orchestrator.wait_for_pull(timeout=WAIT)
        assert result is not None and result.found
        assert [w.id for w in env.inventory.warehouses()] == ["w1"]

    def test_switching_identity_selects_document(self, env: Env) -> None:
        """Each identity pulls its own document."""
        env.seed(Warehouse(id="b1", updated_at=OLD, store_id="bob"), key="warehouse-data-bob.json")
        env.login()
        env.inventory.add_warehouse("Alice's")
        env.orchestrator.push_now(timeout=WAIT)

        env.login("bob")

        assert env.orchestrator.identity == "bob"
        assert env.orchestrator.remote_key == "warehouse-data-bob.json"
        assert [w.id for w in env.inventory.warehouses()] == ["b1"]
        assert [w.name for w in env.remote_document().warehouses] == ["Alice's"]


class TestPush:
    """Tests for pushing local changes."""

    def test_requires_login(self, env: Env) -> None:
        """Without a user nothing is pushed."""
        env.inventory.add_warehouse("Main")

        assert env.orchestrator.request_push().result(timeout=WAIT).skipped
        assert env.orchestrator.push_now(timeout=WAIT).skipped
        assert env.remote.attempts == 0

    def test_mutation_is_pushed(self, env: Env) -> None:
        """Local changes reach the remote and advance BASE."""
        env.login()
        warehouse = env.inventory.add_warehouse("Main")

        env.orchestrator.push_now(timeout=WAIT)

        assert env.remote_document().warehouses == (warehouse,)
        snapshot = env.orchestrator.snapshot()
        assert snapshot is not None
        assert snapshot.warehouses == (warehouse,)
        assert env.orchestrator.status == SyncStatus.SYNCED
        assert not env.orchestrator.has_local_changes()
        assert SyncStatus.SYNCING in env.statuses

    def test_no_op_push_skips_write(self, env: Env) -> None:
        """Nothing changed since BASE means no write at all."""
        env.seed(seeded())
        env.login()

        result = env.orchestrator.push_now(timeout=WAIT)

        assert result.skipped
        assert not result.written
        assert env.remote.attempts == 0

    def test_stale_token_merges_and_retries(self, env: Env) -> None:
        """A concurrent remote write is merged in before one retry."""
        env.seed(seeded())
        env.login()
        env.seed(seeded("Remote", version=2), Warehouse(id="w9", updated_at=OLD, store_id="alice"))

        env.inventory.update_warehouse("w1", qr_only=True)
        env.orchestrator.push_now(timeout=WAIT)

        assert env.remote.attempts == 2
        assert env.remote.writes == 1
        remote = {w.id: w for w in env.remote_document().warehouses}
        assert remote["w1"].name == "Remote"
        assert remote["w1"].qr_only is True
        assert remote["w1"].version == 3
        assert "w9" in remote
        local = env.inventory.get_warehouse("w1")
        assert local is not None and local.name == "Remote"
        assert env.inventory.get_warehouse("w9") is not None
        assert env.orchestrator.last_conflicts == []

    def test_edit_during_merge_keeps_remote_change(self, env: Env) -> None:
        """A local edit made while a stale push re-merges lands on top of the merge."""
        env.seed(seeded())
        env.login()
        env.seed(seeded(version=2, qr_only=True))
        env.remote.before_fetch = lambda: env.inventory.update_warehouse("w1", name="L2")

        env.inventory.update_warehouse("w1", name="L1")
        env.orchestrator.push_now(timeout=WAIT)
        env.orchestrator.push_now(timeout=WAIT)

        [remote] = env.remote_document().warehouses
        assert (remote.name, remote.qr_only) == ("L2", True)
        assert remote.version == 4
        assert env.inventory.get_warehouse("w1") == remote
        assert env.orchestrator.last_conflicts == []
        assert not env.orchestrator.has_local_changes()

    def test_pull_waits_for_push_to_settle(self, env: Env) -> None:
        """A pull started mid-push runs once the push has finished its status."""
        env.login()
        pulls: list[PullResult] = []
        errors: list[Exception] = []

        def pull() -> None:
            try:
                pulls.append(env.orchestrator.pull())
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=pull)
        env.remote.before_write = thread.start

        env.inventory.add_warehouse("Main")
        env.orchestrator.push_now(timeout=WAIT)
        thread.join(WAIT)

        assert errors == []
        assert [p.warehouses for p in pulls] == [1]
        assert env.orchestrator.state == SessionState.IDLE
        assert env.orchestrator.status == SyncStatus.SYNCED

    def test_conflict_reported(self, env: Env) -> None:
        """Same-field edits resolve by timestamp and are reported."""
        env.seed(seeded())
        env.login()
        env.seed(seeded("Remote", version=2))

        env.inventory.update_warehouse("w1", name="Local")
        env.orchestrator.push_now(timeout=WAIT)

        assert env.remote_document().warehouses[0].name == "Local"
        [conflict] = env.orchestrator.last_conflicts
        assert conflict.field_names == ["name"]
        assert env.conflicts == [[conflict]]

    def test_push_failure_sets_error(self, env: Env) -> None:
        """Terminal remote errors surface as PushFailedError."""
        env.login()
        env.remote.fail_with = AuthenticationError("Bad credentials", 401)
        env.inventory.add_warehouse("Main")

        with pytest.raises(PushFailedError, match="Bad credentials"):
            env.orchestrator.push_now(timeout=WAIT)
        assert env.orchestrator.status == SyncStatus.ERROR
        assert env.orchestrator.last_error == "Bad credentials"

        env.remote.fail_with = None
        env.orchestrator.push_now(timeout=WAIT)
        assert env.orchestrator.status == SyncStatus.SYNCED

    def test_tombstones_stay_remote(self, env: Env) -> None:
        """Deletes are published and kept remotely, purged locally."""
        env.login()
        warehouse = env.inventory.add_warehouse("Main")
        env.orchestrator.push_now(timeout=WAIT)

        env.inventory.delete_warehouse(warehouse.id)
        env.orchestrator.push_now(timeout=WAIT)

        assert env.inventory.records(RecordKind.WAREHOUSE) == []
        [tomb] = env.remote_document().warehouses
        assert tomb.deleted is True

        env.inventory.add_warehouse("Other")
        env.orchestrator.push_now(timeout=WAIT)
        remote = {w.id: w for w in env.remote_document().warehouses}
        assert remote[warehouse.id].deleted is True
        assert len(remote) == 2


class TestConnectivity:
    """Tests for offline behavior."""

    def test_offline_push_is_deferred(self, env: Env) -> None:
        """Offline pushes are skipped and resumed on reconnect."""
        env.login()
        env.connectivity.set_reachable(False)
        warehouse = env.inventory.add_warehouse("Main")

        result = env.orchestrator.push_now(timeout=WAIT)

        assert result.skipped
        assert env.remote.attempts == 0
        assert env.orchestrator.status == SyncStatus.PENDING

        env.connectivity.set_reachable(True)
        env.orchestrator.push_now(timeout=WAIT)
        assert env.remote_document().warehouses == (warehouse,)
        assert env.orchestrator.status == SyncStatus.SYNCED

    def test_unreachable_during_push(self, env: Env) -> None:
        """A transport failure leaves the change pending."""
        env.login()
        env.remote.reachable = False
        env.inventory.add_warehouse("Main")

        result = env.orchestrator.push_now(timeout=WAIT)

        assert result.skipped
        assert env.orchestrator.status == SyncStatus.PENDING
        assert env.connectivity.is_reachable is False

        env.remote.reachable = True
        env.connectivity.set_reachable(True)
        env.orchestrator.push_now(timeout=WAIT)
        assert len(env.remote_document().warehouses) == 1


class TestSessionControl:
    """Tests for logout, snapshot reset and consolidation."""

    def test_logout_cancels_pending_push(self) -> None:
        """A deferred push is dropped on logout."""
        env = make_env(min_push_interval=60.0)
        try:
            env.login()
            assert env.orchestrator.request_push().result(timeout=WAIT).skipped

            env.inventory.add_warehouse("Deferred")
            pending = env.orchestrator.request_push()
            env.identity.logout()

            assert pending.cancelled()
            assert env.orchestrator.state == SessionState.IDLE
            assert env.remote.fetch(ALICE_KEY) is None
            assert env.remote.attempts == 0
        finally:
            env.orchestrator.close()

    def test_reset_snapshot(self, env: Env) -> None:
        """Without BASE, the next push reconciles against the remote."""
        env.login()
        env.inventory.add_warehouse("Main")
        env.orchestrator.push_now(timeout=WAIT)
        writes = env.remote.writes

        env.orchestrator.reset_snapshot()

        assert env.orchestrator.snapshot() is None
        assert env.orchestrator.status == SyncStatus.PENDING
        assert env.orchestrator.has_local_changes()

        env.orchestrator.push_now(timeout=WAIT)
        assert env.orchestrator.snapshot() is not None
        assert env.remote.writes == writes
        assert env.orchestrator.status == SyncStatus.SYNCED

    def test_consolidate(self, env: Env) -> None:
        """Remote edits are merged into the local inventory."""
        env.seed(seeded())
        env.login()
        env.connectivity.set_reachable(False)
        env.inventory.update_warehouse("w1", qr_only=True)
        env.orchestrator.push_now(timeout=WAIT)
        token = env.seed(seeded("Remote", version=2))

        conflicts = env.orchestrator.consolidate()

        assert conflicts == []
        local = env.inventory.get_warehouse("w1")
        assert local is not None
        assert (local.name, local.qr_only) == ("Remote", True)
        snapshot = env.orchestrator.snapshot()
        assert snapshot is not None and snapshot.version_token == token

        env.connectivity.set_reachable(True)
        env.orchestrator.push_now(timeout=WAIT)
        [remote] = env.remote_document().warehouses
        assert (remote.name, remote.qr_only) == ("Remote", True)

    def test_consolidate_empty_remote(self, env: Env) -> None:
        """Nothing to merge when the remote does not exist."""
        env.login()
        assert env.orchestrator.consolidate() == []
