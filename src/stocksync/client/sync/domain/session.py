"""Sync session state machine.

States:
    IDLE -> PULLING -> IDLE
                    -> ERROR
    IDLE | ERROR -> PUSH_SCHEDULED -> PUSHING -> IDLE
                                              -> ERROR
    PUSH_SCHEDULED -> IDLE  (cancelled by logout or snapshot reset)

All state transitions are validated. The orchestrator owns exactly one
SyncSession per identity and drives it under its lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import IntEnum, auto

from stocksync.core.types import SyncStatus

logger = logging.getLogger(__name__)


class SessionState(IntEnum):
    """State of a client sync session."""

    IDLE = auto()
    PULLING = auto()
    PUSH_SCHEDULED = auto()
    PUSHING = auto()
    ERROR = auto()


# Valid state transitions
VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.PULLING, SessionState.PUSH_SCHEDULED},
    SessionState.PULLING: {SessionState.IDLE, SessionState.ERROR},
    SessionState.PUSH_SCHEDULED: {
        SessionState.PUSHING,
        SessionState.IDLE,
        SessionState.PULLING,
    },
    SessionState.PUSHING: {SessionState.IDLE, SessionState.ERROR, SessionState.PUSH_SCHEDULED},
    SessionState.ERROR: {
        SessionState.PULLING,
        SessionState.PUSH_SCHEDULED,
        SessionState.IDLE,
    },
}


class InvalidTransitionError(Exception):
    """Raised when attempting invalid state transition."""


class SyncSession:
    """State of one identity's sync session plus its visible status."""

    def __init__(
        self,
        identity: str,
        on_status_change: Callable[[SyncStatus], None] | None = None,
    ) -> None:
        self.identity = identity
        self.state = SessionState.IDLE
        self.status = SyncStatus.SYNCED
        self.last_error: str | None = None
        self._on_status_change = on_status_change

    def transition_to(self, new_state: SessionState) -> None:
        """Transition to a new state with validation."""
        if new_state == self.state:
            return
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot transition from {self.state.name} to {new_state.name}"
            )
        logger.debug("Session %s: %s -> %s", self.identity, self.state.name, new_state.name)
        self.state = new_state

    def set_status(self, status: SyncStatus, error: str | None = None) -> None:
        """Update the visible status and notify the listener on change."""
        self.last_error = error if status == SyncStatus.ERROR else None
        if status == self.status:
            return
        self.status = status
        if self._on_status_change:
            self._on_status_change(status)
