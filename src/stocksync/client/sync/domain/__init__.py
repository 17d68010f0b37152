"""Domain modules for sync business rules.

This package centralizes business logic for the sync system:
- records: versioned record model and mutation paths
- merge: three-way merge of record collections
- conflicts: field-level conflict types
- session: sync session state machine

Architecture:
    domain/ contains pure business logic without external dependencies.
    Implementation details (persistence, API calls) stay outside.
"""

from stocksync.client.sync.domain.conflicts import (
    Conflict,
    ConflictWinner,
    FieldConflict,
)
from stocksync.client.sync.domain.merge import MergeResult, merge, merge_record
from stocksync.client.sync.domain.records import (
    Product,
    Record,
    RecordFormatError,
    Warehouse,
    compact,
    create,
    index_by_id,
    record_from_dict,
    record_type,
    sort_records,
    tombstone,
    touch,
    utc_timestamp,
)
from stocksync.client.sync.domain.session import (
    InvalidTransitionError,
    SessionState,
    SyncSession,
)

__all__ = [
    # records
    "Record",
    "Warehouse",
    "Product",
    "RecordFormatError",
    "create",
    "touch",
    "tombstone",
    "compact",
    "index_by_id",
    "record_from_dict",
    "record_type",
    "sort_records",
    "utc_timestamp",
    # merge
    "MergeResult",
    "merge",
    "merge_record",
    # conflicts
    "Conflict",
    "ConflictWinner",
    "FieldConflict",
    # session
    "InvalidTransitionError",
    "SessionState",
    "SyncSession",
]
