"""Local working copy of warehouses and products.

This module provides:
- Inventory: In-memory collections persisted to the key-value store

Mutations apply synchronously to local state and never wait on the
network. Every mutation notifies the change listener, which the
orchestrator uses to schedule a push.

Ownership:
    Every record carries the identity that owns it (store_id). Reads and
    mutations only see records owned by the current identity; records of
    other identities are kept untouched.
"""

from __future__ import annotations

import contextlib
import json
import logging
import re
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import replace
from typing import Any

from stocksync.client.document import MalformedRemoteDataError, RemoteDocument
from stocksync.client.state import KeyValueStore
from stocksync.client.sync.domain.merge import merge_record
from stocksync.client.sync.domain.records import (
    Product,
    Record,
    RecordFormatError,
    Warehouse,
    check_values,
    create,
    sort_records,
    tombstone,
    touch,
)
from stocksync.core.types import RecordKind

logger = logging.getLogger(__name__)

RECORDS_KEY = "records"

_PRODUCT_FIELDS = frozenset(Product.mergeable_fields()) - {"deleted", "store_id"}
_WAREHOUSE_FIELDS = frozenset(Warehouse.mergeable_fields()) - {"deleted", "store_id"}


class InventoryError(Exception):
    """Base exception for rejected local mutations."""


class RecordNotFoundError(InventoryError, KeyError):
    """No live record with that id is owned by the current identity."""


class DuplicateBarcodeError(InventoryError):
    """Another live product in the warehouse already uses the barcode."""


def natural_key(value: str) -> list[Any]:
    """Sort key comparing digit runs numerically and text case-insensitively."""
    return [int(part) if part.isdigit() else part.casefold() for part in re.split(r"(\d+)", value)]


class Inventory:
    """Warehouses and products for the current identity."""

    def __init__(
        self,
        store: KeyValueStore,
        identity: Callable[[], str],
        on_change: Callable[[], None] | None = None,
    ) -> None:
        """Initialize and load persisted records.

        Args:
            store: Local key-value store.
            identity: Returns the current identity.
            on_change: Called after every local mutation.
        """
        self._store = store
        self._identity = identity
        self._on_change = on_change
        self._lock = threading.RLock()
        self._warehouses: dict[str, Record] = {}
        self._products: dict[str, Record] = {}
        self._load()

    def set_on_change(self, callback: Callable[[], None] | None) -> None:
        """Set callback for local mutations."""
        self._on_change = callback

    # === Persistence ===

    def _load(self) -> None:
        raw = self._store.get(RECORDS_KEY)
        if raw is None:
            return
        try:
            document = RemoteDocument.from_dict(json.loads(raw))
        except (ValueError, MalformedRemoteDataError) as e:
            logger.error("Stored records are unreadable, starting empty: %s", e)
            return
        self._warehouses = {r.id: r for r in document.warehouses}
        self._products = {r.id: r for r in document.products}

    def _persist(self) -> None:
        document = RemoteDocument.build(self._warehouses.values(), self._products.values())
        self._store.set(RECORDS_KEY, json.dumps(document.to_dict()).encode("utf-8"))

    @contextlib.contextmanager
    def _mutating(self) -> Iterator[None]:
        """Hold the lock for a mutation, then persist and notify outside it."""
        with self._lock:
            yield
            self._persist()
        if self._on_change:
            self._on_change()

    def _collection(self, kind: RecordKind) -> dict[str, Record]:
        if kind == RecordKind.WAREHOUSE:
            return self._warehouses
        return self._products

    # === Bulk access (used by the orchestrator) ===

    def records(self, kind: RecordKind, owner: str | None = None) -> list[Record]:
        """All records of a kind, tombstones included, sorted by id.

        Args:
            kind: Collection kind.
            owner: Only return records owned by this identity.
        """
        with self._lock:
            items = list(self._collection(kind).values())
        if owner is not None:
            items = [r for r in items if r.store_id == owner]
        return sort_records(items)

    def replace_all(self, warehouses: Iterable[Record], products: Iterable[Record]) -> None:
        """Replace the working copy with remote state (pull)."""
        with self._lock:
            self._warehouses = {r.id: r for r in warehouses}
            self._products = {r.id: r for r in products}
            self._persist()

    def apply_records(
        self,
        kind: RecordKind,
        records: Iterable[Record],
        if_unchanged_from: Mapping[str, Record],
    ) -> int:
        """Store merged records, rebasing local edits made meanwhile.

        A record the user changed after the merge was computed is merged
        again (the merge input as BASE, the current copy as LOCAL, the
        merged record as REMOTE) and stored above the merged version, so
        the next push publishes the edit on top of the merge.

        Args:
            kind: Collection kind.
            records: Merged records to store.
            if_unchanged_from: Local records the merge was computed from.

        Returns:
            Number of records stored.
        """
        applied = 0
        with self._lock:
            collection = self._collection(kind)
            for record in records:
                current = collection.get(record.id)
                expected = if_unchanged_from.get(record.id)
                if current != expected:
                    if current is None:
                        logger.debug("Local %s %s removed meanwhile", kind.value, record.id)
                        continue
                    logger.debug("Rebasing newer local %s %s", kind.value, record.id)
                    record = _rebase(expected, current, record)
                collection[record.id] = record
                applied += 1
            if applied:
                self._persist()
        return applied

    def purge_deleted(self, published: Iterable[Record] | None = None) -> int:
        """Physically remove tombstones.

        Args:
            published: Only purge tombstones identical to these records
                (the ones a push just stored). None purges every tombstone.

        Returns:
            Number of records removed.
        """
        allowed = None
        if published is not None:
            allowed = {(type(r), r.id, r.version) for r in published if r.deleted}
        removed = 0
        with self._lock:
            for collection in (self._warehouses, self._products):
                for record_id, record in list(collection.items()):
                    if not record.deleted:
                        continue
                    if allowed is not None and (type(record), record.id, record.version) not in allowed:
                        continue
                    del collection[record_id]
                    removed += 1
            if removed:
                self._persist()
        if removed:
            logger.info("Purged %d deleted records", removed)
        else:
            logger.debug("No deleted records to purge")
        return removed

    # === Warehouse operations ===

    def warehouses(self) -> list[Warehouse]:
        """Live warehouses of the current identity."""
        owner = self._identity()
        with self._lock:
            return [
                w for w in self._warehouses.values()  # type: ignore[misc]
                if not w.deleted and w.store_id == owner
            ]

    def get_warehouse(self, warehouse_id: str) -> Warehouse | None:
        with self._lock:
            return self._own_live(self._warehouses, warehouse_id)  # type: ignore[return-value]

    def add_warehouse(self, name: str, qr_only: bool = False) -> Warehouse:
        """Create a warehouse."""
        _check_fields({"name": name, "qr_only": qr_only}, _WAREHOUSE_FIELDS, Warehouse)
        identity = self._identity()
        warehouse = create(Warehouse, identity, name=name, qr_only=qr_only)
        with self._mutating():
            self._warehouses[warehouse.id] = warehouse
        logger.debug("Added warehouse %s (%s)", warehouse.id, name)
        return warehouse  # type: ignore[return-value]

    def update_warehouse(self, warehouse_id: str, **changes: Any) -> Warehouse:
        """Change fields of a warehouse."""
        _check_fields(changes, _WAREHOUSE_FIELDS, Warehouse)
        with self._mutating():
            current = self._require(self._warehouses, warehouse_id)
            updated = touch(current, self._identity(), **changes)
            self._warehouses[warehouse_id] = updated
        return updated  # type: ignore[return-value]

    def delete_warehouse(self, warehouse_id: str) -> None:
        """Soft-delete a warehouse and all of its products."""
        identity = self._identity()
        with self._mutating():
            current = self._require(self._warehouses, warehouse_id)
            self._warehouses[warehouse_id] = tombstone(current, identity)
            for product in list(self._products.values()):
                if (
                    product.warehouse_id == warehouse_id  # type: ignore[attr-defined]
                    and product.store_id == identity
                    and not product.deleted
                ):
                    self._products[product.id] = tombstone(product, identity)
        logger.debug("Deleted warehouse %s", warehouse_id)

    # === Product operations ===

    def products(self) -> list[Product]:
        """Live products of the current identity."""
        owner = self._identity()
        with self._lock:
            return [
                p for p in self._products.values()  # type: ignore[misc]
                if not p.deleted and p.store_id == owner
            ]

    def get_product(self, product_id: str) -> Product | None:
        with self._lock:
            return self._own_live(self._products, product_id)  # type: ignore[return-value]

    def add_product(self, warehouse_id: str, **values: Any) -> Product:
        """Create a product in a warehouse.

        Raises:
            RecordNotFoundError: If the warehouse does not exist.
            DuplicateBarcodeError: If the barcode is already used there.
        """
        _check_fields(values, _PRODUCT_FIELDS - {"warehouse_id"}, Product)
        with self._mutating():
            self._require(self._warehouses, warehouse_id)
            self._check_barcode(warehouse_id, values.get("barcode", ""), None)
            product = create(Product, self._identity(), warehouse_id=warehouse_id, **values)
            self._products[product.id] = product
        return product  # type: ignore[return-value]

    def update_product(self, product_id: str, **changes: Any) -> Product:
        """Change fields of a product."""
        _check_fields(changes, _PRODUCT_FIELDS, Product)
        with self._mutating():
            current = self._require(self._products, product_id)
            warehouse_id = changes.get("warehouse_id", current.warehouse_id)  # type: ignore[attr-defined]
            if "warehouse_id" in changes:
                self._require(self._warehouses, warehouse_id)
            barcode = changes.get("barcode", current.barcode)  # type: ignore[attr-defined]
            self._check_barcode(warehouse_id, barcode, product_id)
            updated = touch(current, self._identity(), **changes)
            self._products[product_id] = updated
        return updated  # type: ignore[return-value]

    def delete_product(self, product_id: str) -> None:
        """Soft-delete a product."""
        with self._mutating():
            current = self._require(self._products, product_id)
            self._products[product_id] = tombstone(current, self._identity())

    def import_products(
        self,
        warehouse_id: str,
        rows: Iterable[Mapping[str, Any]],
    ) -> list[Product]:
        """Create products in bulk from already-parsed rows.

        Rows use the record field names; unknown keys are ignored. All rows
        are validated before any is stored.
        """
        identity = self._identity()
        created: list[Product] = []
        with self._mutating():
            self._require(self._warehouses, warehouse_id)
            seen: set[str] = set()
            for row in rows:
                values = {k: v for k, v in row.items() if k in _PRODUCT_FIELDS and k != "warehouse_id"}
                _check_fields(values, _PRODUCT_FIELDS, Product)
                barcode = values.get("barcode", "")
                if barcode and barcode in seen:
                    raise DuplicateBarcodeError(f"Barcode {barcode} appears twice in import")
                self._check_barcode(warehouse_id, barcode, None)
                if barcode:
                    seen.add(barcode)
                created.append(create(Product, identity, warehouse_id=warehouse_id, **values))  # type: ignore[arg-type]
            for product in created:
                self._products[product.id] = product
        logger.info("Imported %d products into %s", len(created), warehouse_id)
        return created

    # === Queries ===

    def warehouse_products(self, warehouse_id: str) -> list[Product]:
        return [p for p in self.products() if p.warehouse_id == warehouse_id]

    def products_without_barcode(self, warehouse_id: str) -> list[Product]:
        """Products lacking a barcode, naturally sorted by location."""
        items = [p for p in self.warehouse_products(warehouse_id) if not p.barcode]
        return sorted(items, key=lambda p: natural_key(p.location))

    def products_below_min(self, warehouse_id: str) -> list[Product]:
        return [p for p in self.warehouse_products(warehouse_id) if p.quantity < p.min_amount]

    def products_overstock(self, warehouse_id: str) -> list[Product]:
        return [p for p in self.warehouse_products(warehouse_id) if p.quantity > p.max_amount]

    def find_product_by_barcode(self, warehouse_id: str, barcode: str) -> Product | None:
        for product in self.warehouse_products(warehouse_id):
            if product.barcode == barcode:
                return product
        return None

    # === Helpers ===

    def _own_live(self, collection: dict[str, Record], record_id: str) -> Record | None:
        record = collection.get(record_id)
        if record is None or record.deleted or record.store_id != self._identity():
            return None
        return record

    def _require(self, collection: dict[str, Record], record_id: str) -> Record:
        record = self._own_live(collection, record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def _check_barcode(self, warehouse_id: str, barcode: str, exclude_id: str | None) -> None:
        if not barcode:
            return
        owner = self._identity()
        for product in self._products.values():
            if (
                product.id != exclude_id
                and not product.deleted
                and product.store_id == owner
                and product.warehouse_id == warehouse_id  # type: ignore[attr-defined]
                and product.barcode == barcode  # type: ignore[attr-defined]
            ):
                raise DuplicateBarcodeError(
                    f"Barcode {barcode} already used by product {product.id}"
                )


def _check_fields(values: Mapping[str, Any], allowed: frozenset[str], cls: type[Record]) -> None:
    unknown = set(values) - allowed
    if unknown:
        raise InventoryError(f"Unknown {cls.KIND.value} fields: {', '.join(sorted(unknown))}")
    try:
        check_values(cls, values)
    except RecordFormatError as e:
        raise InventoryError(str(e)) from e


def _rebase(base: Record | None, current: Record, merged: Record) -> Record:
    """Merge a local edit made during a push onto the pushed record."""
    rebased, conflict = merge_record(base, current, merged)
    if conflict is not None:
        logger.warning("Conflict with pushed %s", conflict.describe())
    if rebased is None or rebased == merged:
        return merged
    if rebased.version <= merged.version:
        rebased = replace(rebased, version=merged.version + 1)
    return rebased
