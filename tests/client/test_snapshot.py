"""Tests for snapshot persistence."""

from __future__ import annotations

from stocksync.client.snapshot import SnapshotStore
from stocksync.client.state import MemoryKeyValueStore
from stocksync.client.sync.domain import Product, Warehouse


class TestSnapshotStore:
    """Tests for SnapshotStore."""

    def test_absent(self) -> None:
        """No snapshot has been taken yet."""
        assert SnapshotStore(MemoryKeyValueStore(), "alice").get() is None

    def test_set_and_get(self) -> None:
        """Both collections and the token move together."""
        snapshots = SnapshotStore(MemoryKeyValueStore(), "alice")
        snapshots.set(
            [Warehouse(id="w1", name="Main", deleted=True)],
            [Product(id="p1", warehouse_id="w1")],
            "sha-1",
        )

        snapshot = snapshots.get()
        assert snapshot is not None
        assert snapshot.version_token == "sha-1"
        assert snapshot.warehouses == (Warehouse(id="w1", name="Main", deleted=True),)
        assert [p.id for p in snapshot.products] == ["p1"]

    def test_token_may_be_none(self) -> None:
        """A missing remote document has no token."""
        snapshots = SnapshotStore(MemoryKeyValueStore(), "alice")
        snapshots.set([], [], None)

        snapshot = snapshots.get()
        assert snapshot is not None
        assert snapshot.version_token is None

    def test_keyed_per_identity(self) -> None:
        """Identities never see each other's snapshot."""
        store = MemoryKeyValueStore()
        SnapshotStore(store, "alice").set([Warehouse(id="w1")], [], "a")

        assert SnapshotStore(store, "bob").get() is None
        assert SnapshotStore(store, "alice").key == "snapshot:alice"

    def test_corrupt_is_absent(self) -> None:
        """Unreadable snapshots are ignored."""
        store = MemoryKeyValueStore()
        snapshots = SnapshotStore(store, "alice")

        for raw in (b"not json", b"[1, 2]", b'{"versionToken": 5, "document": {}}',
                    b'{"document": {"warehouses": [{"bogus": true}]}}'):
            store.set(snapshots.key, raw)
            assert snapshots.get() is None

    def test_clear(self) -> None:
        """Clearing removes the snapshot."""
        snapshots = SnapshotStore(MemoryKeyValueStore(), "alice")
        snapshots.set([], [], "t")
        snapshots.clear()

        assert snapshots.get() is None
