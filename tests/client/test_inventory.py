"""Tests for the local inventory."""

from __future__ import annotations

from dataclasses import replace

import pytest

from stocksync.client.inventory import (
    DuplicateBarcodeError,
    Inventory,
    InventoryError,
    RecordNotFoundError,
    natural_key,
)
from stocksync.client.state import MemoryKeyValueStore
from stocksync.client.sync.domain import Product, Warehouse, tombstone
from stocksync.core.types import RecordKind


class Owner:
    """Mutable identity for tests."""

    def __init__(self, name: str = "alice") -> None:
        self.name = name

    def __call__(self) -> str:
        return self.name


@pytest.fixture
def owner() -> Owner:
    return Owner()


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def inventory(store: MemoryKeyValueStore, owner: Owner) -> Inventory:
    return Inventory(store, owner)


class TestWarehouses:
    """Tests for warehouse operations."""

    def test_add_and_list(self, inventory: Inventory) -> None:
        """Should create owned warehouses."""
        warehouse = inventory.add_warehouse("Main", qr_only=True)

        assert inventory.warehouses() == [warehouse]
        assert warehouse.store_id == "alice"
        assert warehouse.qr_only is True

    def test_update_bumps_version(self, inventory: Inventory) -> None:
        """Updates go through touch."""
        warehouse = inventory.add_warehouse("Main")
        updated = inventory.update_warehouse(warehouse.id, name="Renamed")

        assert updated.version == 2
        assert inventory.get_warehouse(warehouse.id) == updated

    def test_update_rejects_unknown_field(self, inventory: Inventory) -> None:
        """Only domain fields may be changed."""
        warehouse = inventory.add_warehouse("Main")
        with pytest.raises(InventoryError, match="version"):
            inventory.update_warehouse(warehouse.id, version=9)

    def test_delete_cascades_to_products(self, inventory: Inventory) -> None:
        """Deleting a warehouse tombstones its products."""
        warehouse = inventory.add_warehouse("Main")
        inventory.add_product(warehouse.id, internal_name="Bolt")
        inventory.delete_warehouse(warehouse.id)

        assert inventory.warehouses() == []
        assert inventory.products() == []
        products = inventory.records(RecordKind.PRODUCT)
        assert [p.deleted for p in products] == [True]

    def test_missing_warehouse(self, inventory: Inventory) -> None:
        """Unknown ids raise RecordNotFoundError."""
        with pytest.raises(RecordNotFoundError):
            inventory.delete_warehouse("nope")

    def test_other_identity_invisible(self, inventory: Inventory, owner: Owner) -> None:
        """Records of other identities are neither listed nor mutable."""
        warehouse = inventory.add_warehouse("Alice's")
        owner.name = "bob"

        assert inventory.warehouses() == []
        with pytest.raises(RecordNotFoundError):
            inventory.update_warehouse(warehouse.id, name="mine now")
        assert len(inventory.records(RecordKind.WAREHOUSE)) == 1


class TestProducts:
    """Tests for product operations."""

    def test_add_requires_warehouse(self, inventory: Inventory) -> None:
        """Products must belong to an existing warehouse."""
        with pytest.raises(RecordNotFoundError):
            inventory.add_product("missing", internal_name="Bolt")

    def test_barcode_unique_per_warehouse(self, inventory: Inventory) -> None:
        """Two live products in one warehouse cannot share a barcode."""
        first = inventory.add_warehouse("A")
        second = inventory.add_warehouse("B")
        inventory.add_product(first.id, barcode="123")

        with pytest.raises(DuplicateBarcodeError):
            inventory.add_product(first.id, barcode="123")
        inventory.add_product(second.id, barcode="123")

    def test_barcode_reusable_after_delete(self, inventory: Inventory) -> None:
        """Tombstoned products release their barcode."""
        warehouse = inventory.add_warehouse("A")
        product = inventory.add_product(warehouse.id, barcode="123")
        inventory.delete_product(product.id)

        inventory.add_product(warehouse.id, barcode="123")

    def test_update_keeps_own_barcode(self, inventory: Inventory) -> None:
        """A product does not clash with itself."""
        warehouse = inventory.add_warehouse("A")
        product = inventory.add_product(warehouse.id, barcode="123")

        updated = inventory.update_product(product.id, barcode="123", quantity=4)
        assert updated.quantity == 4

    def test_queries(self, inventory: Inventory) -> None:
        """Filters select by barcode and stock levels."""
        warehouse = inventory.add_warehouse("A")
        low = inventory.add_product(warehouse.id, barcode="1", min_amount=5, quantity=2, max_amount=10)
        high = inventory.add_product(warehouse.id, barcode="2", max_amount=3, quantity=8)
        bare = inventory.add_product(warehouse.id, location="A10")

        assert inventory.products_below_min(warehouse.id) == [low]
        assert inventory.products_overstock(warehouse.id) == [high]
        assert inventory.products_without_barcode(warehouse.id) == [bare]
        assert inventory.find_product_by_barcode(warehouse.id, "2") == high

    def test_without_barcode_natural_order(self, inventory: Inventory) -> None:
        """Locations sort with numbers compared numerically."""
        warehouse = inventory.add_warehouse("A")
        for location in ("A10", "a2", "B1", "A1"):
            inventory.add_product(warehouse.id, location=location)

        locations = [p.location for p in inventory.products_without_barcode(warehouse.id)]
        assert locations == ["A1", "a2", "A10", "B1"]

    def test_natural_key(self) -> None:
        """Digit runs compare as numbers."""
        assert natural_key("shelf 9") < natural_key("shelf 10")

    def test_import_validates_all_rows_first(self, inventory: Inventory) -> None:
        """A bad row stores nothing."""
        warehouse = inventory.add_warehouse("A")

        with pytest.raises(DuplicateBarcodeError):
            inventory.import_products(
                warehouse.id,
                [{"internal_name": "x", "barcode": "9"}, {"internal_name": "y", "barcode": "9"}],
            )
        assert inventory.products() == []

    def test_import_ignores_unknown_keys(self, inventory: Inventory) -> None:
        """Extra columns are dropped."""
        warehouse = inventory.add_warehouse("A")
        [product] = inventory.import_products(
            warehouse.id, [{"internal_name": "Bolt", "colour": "red", "quantity": 3}]
        )

        assert product.quantity == 3
        assert product.warehouse_id == warehouse.id


class TestPersistenceAndSync:
    """Tests for persistence and orchestrator hooks."""

    def test_persists_across_instances(self, store: MemoryKeyValueStore, owner: Owner) -> None:
        """Records are reloaded from the store."""
        Inventory(store, owner).add_warehouse("Main")

        assert [w.name for w in Inventory(store, owner).warehouses()] == ["Main"]

    def test_wrong_type_is_rejected_before_persisting(
        self, store: MemoryKeyValueStore, owner: Owner
    ) -> None:
        """A badly typed value cannot make the stored working copy unreadable."""
        inventory = Inventory(store, owner)
        warehouse = inventory.add_warehouse("Main")
        product = inventory.add_product(warehouse.id, internal_name="Bolt", quantity=1)

        with pytest.raises(InventoryError, match="product.quantity"):
            inventory.update_product(product.id, quantity="5")
        with pytest.raises(InventoryError):
            inventory.add_warehouse("Other", qr_only="yes")  # type: ignore[arg-type]
        with pytest.raises(InventoryError):
            inventory.import_products(warehouse.id, [{"internal_name": "Nut", "quantity": "2"}])

        reloaded = Inventory(store, owner)
        assert reloaded.get_warehouse(warehouse.id) == warehouse
        assert reloaded.get_product(product.id) == product
        assert [w.name for w in reloaded.warehouses()] == ["Main"]

    def test_on_change_called_per_mutation(self, store: MemoryKeyValueStore, owner: Owner) -> None:
        """Every successful mutation notifies once."""
        calls: list[None] = []
        inventory = Inventory(store, owner, on_change=lambda: calls.append(None))

        warehouse = inventory.add_warehouse("Main")
        inventory.update_warehouse(warehouse.id, name="B")
        with pytest.raises(RecordNotFoundError):
            inventory.delete_product("missing")

        assert len(calls) == 2

    def test_replace_all_does_not_notify(self, inventory: Inventory) -> None:
        """Pulls are not local changes."""
        calls: list[None] = []
        inventory.set_on_change(lambda: calls.append(None))

        inventory.replace_all([Warehouse(id="w1", store_id="alice")], [])

        assert [w.id for w in inventory.warehouses()] == ["w1"]
        assert calls == []

    def test_apply_records_rebases_newer_local(self, inventory: Inventory) -> None:
        """A local edit made after the merge input is merged again on top."""
        warehouse = inventory.add_warehouse("Main")
        inventory.update_warehouse(warehouse.id, name="Renamed")
        merged = [
            replace(warehouse, version=2, qr_only=True),
            Warehouse(id="w-new", name="remote", store_id="alice"),
        ]

        applied = inventory.apply_records(RecordKind.WAREHOUSE, merged, {warehouse.id: warehouse})

        assert applied == 2
        current = inventory.get_warehouse(warehouse.id)
        assert current is not None
        assert (current.name, current.qr_only) == ("Renamed", True)
        assert current.version == 3
        assert inventory.get_warehouse("w-new") is not None

    def test_apply_records_remote_delete_wins(self, inventory: Inventory) -> None:
        """A pushed tombstone is kept over a concurrent local edit."""
        warehouse = inventory.add_warehouse("Main")
        inventory.update_warehouse(warehouse.id, name="Renamed")
        deleted = tombstone(warehouse, "alice")

        inventory.apply_records(RecordKind.WAREHOUSE, [deleted], {warehouse.id: warehouse})

        assert inventory.get_warehouse(warehouse.id) is None
        assert inventory.records(RecordKind.WAREHOUSE) == [deleted]

    def test_purge_only_published(self, inventory: Inventory) -> None:
        """Only tombstones that were pushed are removed."""
        first = inventory.add_warehouse("A")
        second = inventory.add_warehouse("B")
        inventory.delete_warehouse(first.id)
        inventory.delete_warehouse(second.id)
        published = [r for r in inventory.records(RecordKind.WAREHOUSE) if r.id == first.id]

        assert inventory.purge_deleted(published=published) == 1
        assert [r.id for r in inventory.records(RecordKind.WAREHOUSE)] == [second.id]
        assert inventory.purge_deleted() == 1

    def test_purge_ignores_newer_tombstone_version(self, inventory: Inventory) -> None:
        """A tombstone that changed since publishing is kept."""
        warehouse = inventory.add_warehouse("A")
        inventory.delete_warehouse(warehouse.id)
        [current] = inventory.records(RecordKind.WAREHOUSE)
        older = Warehouse(id=current.id, version=current.version - 1, deleted=True)

        assert inventory.purge_deleted(published=[older]) == 0

    def test_records_filtered_by_owner(self, inventory: Inventory) -> None:
        """Bulk access can filter by owner."""
        inventory.replace_all(
            [Warehouse(id="a", store_id="alice"), Warehouse(id="b", store_id="bob")],
            [Product(id="p", store_id="bob")],
        )

        assert [r.id for r in inventory.records(RecordKind.WAREHOUSE, owner="bob")] == ["b"]
        assert [r.id for r in inventory.records(RecordKind.PRODUCT, owner="alice")] == []
