"""Snapshot (BASE) persistence per client identity.

The snapshot is the last remote state this client observed and reconciled
against, with the version token it was read or written at. It anchors the
three-way merge across sessions.

Both collections are stored in a single value so they always move
together. A snapshot that fails shape-checking on read is treated as
absent.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from stocksync.client.document import MalformedRemoteDataError, RemoteDocument
from stocksync.client.state import KeyValueStore
from stocksync.client.sync.domain.records import Record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Last reconciled remote state.

    Attributes:
        document: Warehouses and products as last seen on the remote.
        version_token: Remote token of that state (None if the remote
            document did not exist).
    """

    document: RemoteDocument
    version_token: str | None

    @property
    def warehouses(self) -> tuple[Record, ...]:
        return self.document.warehouses

    @property
    def products(self) -> tuple[Record, ...]:
        return self.document.products


class SnapshotStore:
    """Reads and writes the snapshot of one identity."""

    def __init__(self, store: KeyValueStore, identity: str) -> None:
        self._store = store
        self._identity = identity

    @property
    def key(self) -> str:
        """Storage key of this identity's snapshot."""
        return f"snapshot:{self._identity}"

    def get(self) -> Snapshot | None:
        """Load the snapshot, or None if absent or corrupt."""
        raw = self._store.get(self.key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict) or "document" not in data:
                raise MalformedRemoteDataError("snapshot envelope missing document")
            token = data.get("versionToken")
            if token is not None and not isinstance(token, str):
                raise MalformedRemoteDataError("snapshot token must be a string")
            document = RemoteDocument.from_dict(data["document"])
        except (ValueError, MalformedRemoteDataError) as e:
            logger.warning("Ignoring corrupt snapshot for %s: %s", self._identity, e)
            return None
        return Snapshot(document=document, version_token=token)

    def set(
        self,
        warehouses: Iterable[Record],
        products: Iterable[Record],
        version_token: str | None,
    ) -> Snapshot:
        """Replace the snapshot atomically."""
        snapshot = Snapshot(
            document=RemoteDocument.build(warehouses, products),
            version_token=version_token,
        )
        payload = {
            "versionToken": version_token,
            "document": snapshot.document.to_dict(),
        }
        self._store.set(self.key, json.dumps(payload, sort_keys=True).encode("utf-8"))
        logger.debug("Snapshot for %s set at %s", self._identity, version_token)
        return snapshot

    def clear(self) -> None:
        """Forget the snapshot so the next push treats local state as baseline."""
        self._store.delete(self.key)
        logger.info("Snapshot for %s cleared", self._identity)
