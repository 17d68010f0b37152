"""Network reachability tracking.

This module provides:
- ConnectivityMonitor: Holds the reachability state and notifies listeners
  when it changes

Pushes are skipped (not failed) while the remote is unreachable; the
reconnect notification re-triggers them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Reachability state plus change notifications."""

    def __init__(
        self,
        reachable: bool = True,
        probe: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the monitor.

        Args:
            reachable: Initial state.
            probe: Health check run by check().
        """
        self._reachable = reachable
        self._probe = probe
        self._lock = threading.Lock()
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_reachable(self) -> bool:
        with self._lock:
            return self._reachable

    def subscribe(self, listener: ConnectivityListener) -> None:
        """Register a listener called with the new state on every change."""
        with self._lock:
            self._listeners.append(listener)

    def set_reachable(self, reachable: bool) -> None:
        """Update the state; listeners run only on an actual change."""
        with self._lock:
            if reachable == self._reachable:
                return
            self._reachable = reachable
            listeners = list(self._listeners)

        if reachable:
            logger.info("Network restored")
        else:
            logger.info("Network appears down")
        for listener in listeners:
            try:
                listener(reachable)
            except Exception:
                logger.exception("Connectivity listener failed")

    def check(self) -> bool:
        """Run the probe once and record the result.

        A probe that raises counts as unreachable.
        """
        if self._probe is None:
            return self.is_reachable
        try:
            reachable = self._probe()
        except Exception:
            logger.exception("Health check failed")
            reachable = False
        self.set_reachable(reachable)
        return reachable
