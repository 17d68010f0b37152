"""Versioned record model shared by every collection.

Records are immutable. Every mutation path goes through create(), touch()
or tombstone(), which:
- increment version (creation starts at 1)
- stamp updated_at / updated_by
- mark deletions with deleted=True instead of removing the record

Tombstones are removed physically only after a push has published them.

Wire format:
    Records travel as JSON objects with camelCase keys (updatedAt,
    warehouseId, ...). Unknown keys are rejected on read.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, fields, replace
from datetime import UTC, datetime
from typing import Any, ClassVar

from stocksync.core.types import RecordKind

# Fields that describe the record envelope rather than domain data
ENVELOPE_FIELDS = ("id", "version", "updated_at", "updated_by", "deleted")

# Fields never merged field-by-field
MERGE_EXCLUDED_FIELDS = frozenset({"id", "version", "updated_at", "updated_by"})

DEFAULT_IDENTITY = "local"


class RecordFormatError(ValueError):
    """Raised when a stored or remote record does not match its schema."""


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Empty or invalid timestamps sort before every real one.
    """
    if not value:
        return datetime.min.replace(tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def generate_id() -> str:
    """Generate a random client-side record id."""
    return secrets.token_hex(12)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass(frozen=True)
class Record:
    """Base shape of every synchronized record.

    Attributes:
        id: Stable client-generated id, unique within its collection.
        version: Mutation counter (>= 1), bumped by every change.
        updated_at: ISO-8601 UTC timestamp of the last change.
        updated_by: Identity that made the last change.
        deleted: Tombstone flag.
        store_id: Identity owning the record.
    """

    KIND: ClassVar[RecordKind]

    id: str
    version: int = 1
    updated_at: str = ""
    updated_by: str = DEFAULT_IDENTITY
    deleted: bool = False
    store_id: str = DEFAULT_IDENTITY

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        """All dataclass field names, in declaration order."""
        return tuple(f.name for f in fields(cls))

    @classmethod
    def mergeable_fields(cls) -> tuple[str, ...]:
        """Fields merged one by one by the merge engine."""
        return tuple(n for n in cls.field_names() if n not in MERGE_EXCLUDED_FIELDS)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire representation."""
        return {_camel(k): v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Record:
        """Create from a wire dictionary.

        Legacy records without version default to 1, and records without a
        storeId are owned by whoever last updated them.

        Raises:
            RecordFormatError: If the data does not match the schema.
        """
        if not isinstance(data, Mapping):
            raise RecordFormatError(f"{cls.KIND.value} record must be an object")

        by_wire = {_camel(f.name): f for f in fields(cls)}
        unknown = set(data) - set(by_wire)
        if unknown:
            raise RecordFormatError(
                f"Unknown {cls.KIND.value} fields: {', '.join(sorted(unknown))}"
            )
        if not data.get("id") or not isinstance(data["id"], str):
            raise RecordFormatError(f"{cls.KIND.value} record without a valid id")

        values: dict[str, Any] = {}
        for wire, f in by_wire.items():
            if wire not in data or data[wire] is None:
                continue
            value = data[wire]
            expected = _FIELD_TYPES.get(f.type)
            if expected is int and isinstance(value, float) and value.is_integer():
                value = int(value)
            if not _matches(value, expected):
                raise RecordFormatError(
                    f"{cls.KIND.value}.{wire}: expected {f.type}, got {type(value).__name__}"
                )
            values[f.name] = value

        if "store_id" not in values:
            values["store_id"] = values.get("updated_by") or DEFAULT_IDENTITY
        record = cls(**values)
        if record.version < 1:
            raise RecordFormatError(f"{cls.KIND.value} {record.id}: version must be >= 1")
        return record


# Annotations are strings because of `from __future__ import annotations`
_FIELD_TYPES: dict[Any, type] = {"str": str, "int": int, "bool": bool}


def _matches(value: Any, expected: type | None) -> bool:
    if expected is None:
        return True
    if expected is int and isinstance(value, bool):
        return False
    return isinstance(value, expected)


def check_values(cls: type[Record], values: Mapping[str, Any]) -> None:
    """Check values against the field types of a record class.

    Raises:
        RecordFormatError: On an unknown field or a value of the wrong type.
    """
    annotations = {f.name: f.type for f in fields(cls)}
    for name, value in values.items():
        if name not in annotations:
            raise RecordFormatError(f"Unknown {cls.KIND.value} field: {name}")
        if not _matches(value, _FIELD_TYPES.get(annotations[name])):
            raise RecordFormatError(
                f"{cls.KIND.value}.{name}: expected {annotations[name]}, got {type(value).__name__}"
            )


@dataclass(frozen=True)
class Warehouse(Record):
    """A warehouse holding products."""

    KIND: ClassVar[RecordKind] = RecordKind.WAREHOUSE

    name: str = ""
    qr_only: bool = False


@dataclass(frozen=True)
class Product(Record):
    """A product stocked in exactly one warehouse."""

    KIND: ClassVar[RecordKind] = RecordKind.PRODUCT

    internal_name: str = ""
    customer_name: str = ""
    barcode: str = ""
    location: str = ""
    min_amount: int = 0
    max_amount: int = 0
    quantity: int = 0
    warehouse_id: str = ""


RECORD_TYPES: dict[RecordKind, type[Record]] = {
    RecordKind.WAREHOUSE: Warehouse,
    RecordKind.PRODUCT: Product,
}


def record_type(kind: RecordKind) -> type[Record]:
    """Get the record class for a collection kind."""
    return RECORD_TYPES[kind]


def record_from_dict(kind: RecordKind, data: Mapping[str, Any]) -> Record:
    """Parse a wire dictionary into a record of the given kind."""
    return RECORD_TYPES[kind].from_dict(data)


# === Mutation paths ===


def create(cls: type[Record], identity: str, **values: Any) -> Record:
    """Create a new record at version 1 owned by identity.

    Raises:
        RecordFormatError: If a value does not match its field type.
    """
    check_values(cls, values)
    values.setdefault("id", generate_id())
    values.setdefault("store_id", identity)
    return cls(
        version=1,
        updated_at=utc_timestamp(),
        updated_by=identity,
        **values,
    )


def touch(record: Record, identity: str, **changes: Any) -> Record:
    """Apply changes to a record, bumping version and stamps."""
    forbidden = set(changes) & set(ENVELOPE_FIELDS)
    if forbidden:
        raise ValueError(f"Cannot set envelope fields directly: {', '.join(sorted(forbidden))}")
    check_values(type(record), changes)
    return replace(
        record,
        version=record.version + 1,
        updated_at=utc_timestamp(),
        updated_by=identity,
        **changes,
    )


def tombstone(record: Record, identity: str) -> Record:
    """Soft-delete a record."""
    return replace(
        record,
        deleted=True,
        version=record.version + 1,
        updated_at=utc_timestamp(),
        updated_by=identity,
    )


# === Collections ===


def index_by_id(records: Iterable[Record] | Mapping[str, Record]) -> dict[str, Record]:
    """Key a collection by record id."""
    if isinstance(records, Mapping):
        return dict(records)
    return {r.id: r for r in records}


def compact(records: Iterable[Record]) -> list[Record]:
    """Drop tombstones from a collection."""
    return [r for r in records if not r.deleted]


def sort_records(records: Iterable[Record]) -> list[Record]:
    """Order a collection by id for stable serialization."""
    return sorted(records, key=lambda r: r.id)
