"""Three-way merge of record collections.

Merges BASE (last reconciled remote state), LOCAL (working copy) and
REMOTE (current remote state) for one collection kind. Pure function:
no I/O, no shared state, safe to call from any thread.

Per record id:
1. Tombstone check - the highest version wins if it is a tombstone
   (ties go to the tombstone). A delete is only overridden by a live
   candidate with a strictly higher version.
2. Field merge - a side that changed a field relative to BASE wins.
   When both changed it to different values, the newer updated_at wins
   (exact tie: LOCAL) and a FieldConflict is recorded.
3. Envelope - version = max(candidate versions) + 1, updated_at = the
   later of LOCAL/REMOTE.

Record-level rules on top of the field merge:
- A record known only to BASE is gone on both sides and is dropped.
- A side whose version is not newer than BASE carries no edits since BASE;
  it counts as BASE in the field merge.
- When every effective candidate is identical the record passes through
  untouched, so re-merging an already merged collection changes nothing.

Output is sorted by id so identical inputs serialize identically.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from stocksync.client.sync.domain.conflicts import Conflict, ConflictWinner, FieldConflict
from stocksync.client.sync.domain.records import (
    Record,
    index_by_id,
    parse_timestamp,
    record_type,
)
from stocksync.core.types import RecordKind

Collection = Iterable[Record] | Mapping[str, Record]


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING: Any = _Missing()


@dataclass
class MergeResult:
    """Merged collection plus the field-level conflicts found on the way."""

    merged: list[Record] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        """Check whether any field was changed differently on both sides."""
        return bool(self.conflicts)


def merge(
    base: Collection,
    local: Collection,
    remote: Collection,
    kind: RecordKind,
) -> MergeResult:
    """Three-way merge of one collection kind.

    Args:
        base: Last reconciled remote state.
        local: Local working copy.
        remote: Current remote state.
        kind: Collection kind, used to validate inputs and label conflicts.

    Returns:
        MergeResult with the merged records (sorted by id) and conflicts.

    Raises:
        TypeError: If a record does not belong to the collection kind.
    """
    cls = record_type(kind)
    sides = [index_by_id(base), index_by_id(local), index_by_id(remote)]
    for side in sides:
        for rec in side.values():
            if not isinstance(rec, cls):
                raise TypeError(f"Expected {cls.__name__}, got {type(rec).__name__}")

    b_side, l_side, r_side = sides
    result = MergeResult()
    for record_id in sorted(set(b_side) | set(l_side) | set(r_side)):
        merged, conflict = merge_record(
            b_side.get(record_id),
            l_side.get(record_id),
            r_side.get(record_id),
        )
        if merged is not None:
            result.merged.append(merged)
        if conflict is not None:
            result.conflicts.append(conflict)
    return result


def merge_record(
    base: Record | None,
    local: Record | None,
    remote: Record | None,
) -> tuple[Record | None, Conflict | None]:
    """Merge the BASE/LOCAL/REMOTE versions of a single record.

    Returns:
        (merged record or None if the record is gone, conflict or None)
    """
    if local is None and remote is None:
        return None, None

    candidates = [c for c in (local, remote, base) if c is not None]
    top = max(c.version for c in candidates)

    # 1. Tombstone check (LOCAL first among equal tombstones)
    for candidate in candidates:
        if candidate.deleted and candidate.version == top:
            return candidate, None

    # Dead candidates below the winner contribute nothing
    eff_local = local if local is not None and not local.deleted else None
    eff_remote = remote if remote is not None and not remote.deleted else None
    eff_base = base if base is not None and not base.deleted else None

    # Sides with nothing newer than BASE count as BASE
    if base is not None:
        if eff_local is not None and local.version <= base.version:
            eff_local = eff_base
        if eff_remote is not None and remote.version <= base.version:
            eff_remote = eff_base

    effective = [c for c in (eff_local, eff_remote, eff_base) if c is not None]
    if all(c == effective[0] for c in effective):
        return effective[0], None

    # 2. Field merge
    remote_is_newer = _remote_is_newer(eff_local, eff_remote)
    values: dict[str, Any] = {}
    field_conflicts: list[FieldConflict] = []
    for name in candidates[0].mergeable_fields():
        b = _value(eff_base, name)
        l_val = _value(eff_local, name)
        r_val = _value(eff_remote, name)
        value, conflict = _merge_field(name, b, l_val, r_val, remote_is_newer)
        values[name] = value
        if conflict is not None:
            field_conflicts.append(conflict)
    values["deleted"] = False

    # 3. Envelope
    stamp_source = _stamp_source(eff_local, eff_remote, eff_base, remote_is_newer)
    template = eff_local or eff_remote or eff_base
    merged = replace(
        template,
        version=top + 1,
        updated_at=stamp_source.updated_at,
        updated_by=stamp_source.updated_by,
        **values,
    )

    conflict = None
    if field_conflicts:
        conflict = Conflict(
            record_id=merged.id,
            record_type=merged.KIND,
            fields=tuple(field_conflicts),
        )
    return merged, conflict


def _value(record: Record | None, name: str) -> Any:
    if record is None:
        return MISSING
    return getattr(record, name)


def _remote_is_newer(local: Record | None, remote: Record | None) -> bool:
    """Tie-break for true conflicts: strictly newer timestamp, LOCAL on ties."""
    if local is None or remote is None:
        return remote is not None and local is None
    return parse_timestamp(remote.updated_at) > parse_timestamp(local.updated_at)


def _stamp_source(
    local: Record | None,
    remote: Record | None,
    base: Record | None,
    remote_is_newer: bool,
) -> Record:
    if local is not None and remote is not None:
        return remote if remote_is_newer else local
    source = local or remote or base
    assert source is not None
    return source


def _merge_field(
    name: str,
    base: Any,
    local: Any,
    remote: Any,
    remote_is_newer: bool,
) -> tuple[Any, FieldConflict | None]:
    """Merge one field value.

    Returns:
        (value to persist, conflict or None)
    """
    if local is not MISSING and remote is not MISSING:
        if base == remote and local != base:
            return local, None
        if base == local and remote != base:
            return remote, None
        if local != base and remote != base and local != remote:
            winner = ConflictWinner.REMOTE if remote_is_newer else ConflictWinner.LOCAL
            conflict = FieldConflict(
                name=name,
                base_value=None if base is MISSING else base,
                local_value=local,
                remote_value=remote,
                winner=winner,
            )
            return conflict.resolved_value, conflict

    for value in (local, remote, base):
        if value is not MISSING:
            return value, None
    return None, None
