"""Remote document model and canonical serialization.

The remote unit of storage is one JSON document per identity:

    {"meta": {"schemaVersion": 1}, "warehouses": [...], "products": [...]}

Canonical form sorts object keys explicitly and records by id, so the
same collections always serialize to the same bytes. Both the write path
and the no-op comparison go through to_canonical_bytes().
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from stocksync.client.sync.domain.records import (
    Record,
    RecordFormatError,
    record_from_dict,
    sort_records,
)
from stocksync.core.types import RecordKind

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_TRAILING_COMMA = re.compile(r",(\s*[\]}])")


class MalformedRemoteDataError(Exception):
    """Remote content could not be parsed, even after repair."""


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class RemoteDocument:
    """Warehouses and products stored under one remote key."""

    warehouses: tuple[Record, ...] = field(default_factory=tuple)
    products: tuple[Record, ...] = field(default_factory=tuple)
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def build(
        cls,
        warehouses: Iterable[Record],
        products: Iterable[Record],
        schema_version: int = SCHEMA_VERSION,
    ) -> RemoteDocument:
        """Create a document with both collections sorted by id."""
        return cls(
            warehouses=tuple(sort_records(warehouses)),
            products=tuple(sort_records(products)),
            schema_version=schema_version,
        )

    def collection(self, kind: RecordKind) -> tuple[Record, ...]:
        """Get the records of one kind."""
        if kind == RecordKind.WAREHOUSE:
            return self.warehouses
        return self.products

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        return {
            "meta": {"schemaVersion": self.schema_version},
            "warehouses": [r.to_dict() for r in sort_records(self.warehouses)],
            "products": [r.to_dict() for r in sort_records(self.products)],
        }

    def to_canonical_bytes(self) -> bytes:
        """Canonical UTF-8 serialization."""
        return canonical_json(self.to_dict()).encode("utf-8")

    def same_content(self, other: RemoteDocument | None) -> bool:
        """Check byte equality of the canonical forms."""
        if other is None:
            return False
        return self.to_canonical_bytes() == other.to_canonical_bytes()

    @classmethod
    def from_dict(cls, data: Any) -> RemoteDocument:
        """Create from a wire dictionary.

        Documents written before the meta envelope existed are accepted as
        schema version 1.

        Raises:
            MalformedRemoteDataError: If the shape is wrong.
        """
        if not isinstance(data, dict):
            raise MalformedRemoteDataError("Remote document must be a JSON object")

        meta = data.get("meta") or {}
        if not isinstance(meta, dict):
            raise MalformedRemoteDataError("Remote document meta must be an object")
        schema_version = meta.get("schemaVersion", SCHEMA_VERSION)
        if not isinstance(schema_version, int) or schema_version > SCHEMA_VERSION:
            raise MalformedRemoteDataError(
                f"Unsupported schema version: {schema_version!r}"
            )

        collections: dict[RecordKind, list[Record]] = {}
        for kind in RecordKind:
            raw = data.get(kind.collection, [])
            if not isinstance(raw, list):
                raise MalformedRemoteDataError(f"'{kind.collection}' must be a list")
            try:
                collections[kind] = [record_from_dict(kind, item) for item in raw]
            except RecordFormatError as e:
                raise MalformedRemoteDataError(str(e)) from e

        return cls.build(
            collections[RecordKind.WAREHOUSE],
            collections[RecordKind.PRODUCT],
            schema_version=SCHEMA_VERSION,
        )

    @classmethod
    def parse(cls, raw: bytes | str) -> RemoteDocument:
        """Parse raw remote content, attempting one repair pass on failure.

        Raises:
            MalformedRemoteDataError: If the content is still unparseable.
        """
        if isinstance(raw, bytes):
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedRemoteDataError(f"Remote document is not valid UTF-8: {e}") from e
        else:
            text = raw
        try:
            return cls.from_dict(json.loads(text))
        except (json.JSONDecodeError, MalformedRemoteDataError) as first_error:
            repaired = repair_serialization(text)
            if repaired == text:
                raise _as_malformed(first_error) from first_error
            logger.warning("Remote document failed to parse, retrying after repair: %s", first_error)
            try:
                return cls.from_dict(json.loads(repaired))
            except (json.JSONDecodeError, MalformedRemoteDataError) as e:
                raise _as_malformed(e) from e


def _as_malformed(error: Exception) -> MalformedRemoteDataError:
    if isinstance(error, MalformedRemoteDataError):
        return error
    return MalformedRemoteDataError(f"Remote document is not valid JSON: {error}")


def repair_serialization(text: str) -> str:
    """Normalize known serialization artifacts.

    Handles a leading BOM, surrounding whitespace, trailing commas before a
    closing bracket, and content that is still base64 (possibly wrapped at
    fixed line width) instead of JSON.
    """
    repaired = text.lstrip("\ufeff").strip()
    if repaired and repaired[0] not in "{[":
        decoded = decode_base64_content(repaired)
        if decoded is not None:
            repaired = decoded.lstrip("\ufeff").strip()
    return _TRAILING_COMMA.sub(r"\1", repaired)


def decode_base64_content(content: str) -> str | None:
    """Decode base64 content that may contain line breaks.

    Returns:
        Decoded UTF-8 text, or None if the content is not valid base64.
    """
    compact = "".join(content.split())
    try:
        return base64.b64decode(compact, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
