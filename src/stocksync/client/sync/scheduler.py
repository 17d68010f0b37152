"""Coalescing push scheduler.

This module provides:
- PushScheduler: Runs an action at most once per interval, merging requests

Rules:
- A request fires immediately (on a timer thread) if the previous run
  finished at least min_interval ago, otherwise at the end of the interval.
- Requests arriving before the pending run starts share its Future, so
  every caller waiting for "sync completed" resolves together.
- At most one run is in flight. Requests made during a run queue a single
  follow-up run.
- A pending run can be cancelled; an in-flight run cannot.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any

logger = logging.getLogger(__name__)


class PushScheduler:
    """Debounces and serializes calls to a push action."""

    def __init__(
        self,
        action: Callable[[], Any],
        min_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            action: Callable performing one push; its return value or
                exception completes the shared Future.
            min_interval: Minimum seconds between the end of one run and
                the start of the next.
            clock: Monotonic clock (replaced in tests).
        """
        self._action = action
        self._min_interval = min_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: Future[Any] | None = None
        self._timer: threading.Timer | None = None
        self._running = False
        self._current: Future[Any] | None = None
        self._last_finished: float | None = None
        self._closed = False

    @property
    def has_pending(self) -> bool:
        """Check if a run is waiting to start."""
        with self._lock:
            return self._pending is not None

    @property
    def is_running(self) -> bool:
        """Check if a run is in flight."""
        with self._lock:
            return self._running

    def request(self) -> Future[Any]:
        """Request a run; returns the Future of the run that will serve it."""
        with self._lock:
            if self._closed:
                future: Future[Any] = Future()
                future.cancel()
                return future
            if self._pending is not None:
                return self._pending
            future = Future()
            self._pending = future
            if not self._running:
                self._arm_locked()
            else:
                logger.debug("Push in flight, queued follow-up")
            return future

    def flush(self) -> Future[Any]:
        """Get the Future of the pending run, else the running one, else request.

        Unlike request(), this does not queue a follow-up behind a run that
        already started.
        """
        with self._lock:
            if self._pending is not None:
                return self._pending
            if self._current is not None:
                return self._current
        return self.request()

    def cancel(self) -> bool:
        """Cancel the pending run, if it has not started.

        Returns:
            True if a pending run was cancelled.
        """
        with self._lock:
            future = self._pending
            self._pending = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        if future is None:
            return False
        future.cancel()
        logger.debug("Pending push cancelled")
        return True

    def shutdown(self) -> None:
        """Cancel pending work and refuse new requests."""
        with self._lock:
            self._closed = True
        self.cancel()

    def _delay_locked(self) -> float:
        if self._last_finished is None:
            return 0.0
        elapsed = self._clock() - self._last_finished
        return max(0.0, self._min_interval - elapsed)

    def _arm_locked(self) -> None:
        delay = self._delay_locked()
        if delay > 0:
            logger.debug("Push deferred by %.2fs", delay)
        self._timer = threading.Timer(delay, self._fire)
        self._timer.daemon = True
        self._timer.name = "PushScheduler"
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            future = self._pending
            self._pending = None
            self._timer = None
            if future is None:
                return
            self._running = True
            self._current = future

        try:
            if future.set_running_or_notify_cancel():
                try:
                    result = self._action()
                except BaseException as e:
                    future.set_exception(e)
                else:
                    future.set_result(result)
        finally:
            with self._lock:
                self._running = False
                self._current = None
                self._last_finished = self._clock()
                if self._pending is not None and not self._closed:
                    self._arm_locked()
