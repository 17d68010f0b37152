"""Field-level merge conflicts.

A conflict is produced when LOCAL and REMOTE changed the same field of the
same record to different values relative to BASE. Conflicts are merge
output, never stored state: the caller decides whether to surface them or
accept the tie-break already applied by the merge.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from stocksync.core.types import RecordKind


class ConflictWinner(Enum):
    """Which side's value the merge persisted."""

    LOCAL = auto()
    REMOTE = auto()


@dataclass(frozen=True)
class FieldConflict:
    """One field changed differently on both sides."""

    name: str
    base_value: Any
    local_value: Any
    remote_value: Any
    winner: ConflictWinner = ConflictWinner.LOCAL

    @property
    def resolved_value(self) -> Any:
        """Value written to the merged record."""
        if self.winner is ConflictWinner.LOCAL:
            return self.local_value
        return self.remote_value


@dataclass(frozen=True)
class Conflict:
    """All conflicting fields of a single record."""

    record_id: str
    record_type: RecordKind
    fields: tuple[FieldConflict, ...] = field(default_factory=tuple)

    @property
    def field_names(self) -> list[str]:
        """Names of the conflicting fields."""
        return [f.name for f in self.fields]

    def describe(self) -> str:
        """Human-readable one-line summary."""
        parts = [
            f"{f.name}: base={f.base_value!r} local={f.local_value!r} "
            f"remote={f.remote_value!r} -> {f.winner.name.lower()}"
            for f in self.fields
        ]
        return f"{self.record_type.value} {self.record_id}: " + "; ".join(parts)
