"""
watchrun Debouncer.

Coalesces bursts of raw filesystem events into change batches.
Requires Python 3.11+.
"""

import threading
import time
from pathlib import Path

from watchrun.utils.logger import LoggerMixin
from watchrun.watcher.events import ChangeBatch, RawEvent


class Debouncer(LoggerMixin):
    """
    Debounces rapid file changes.

    Accumulates changed paths into an open batch. Every observed event
    restarts the quiet-window countdown; once the window elapses with no
    new event the batch is handed out by ``poll_ready`` and a new one is
    started. A single file save usually produces several notifications,
    all of which end up in the same batch.

    The debouncer never looks at the wall clock on its own: the times come
    from the events and from the ``now`` argument, so tests can drive it
    with synthetic timestamps.
    """

    def __init__(self, quiet_window: float = 0.1) -> None:
        """
        Initialize the debouncer.

        Args:
            quiet_window: Idle time in seconds after the last event before
                the open batch is considered complete
        """
        if quiet_window < 0:
            raise ValueError("quiet_window must not be negative")
        self._quiet_window = quiet_window
        self._pending: dict[Path, None] = {}
        self._last_event_at: float | None = None
        self._lock = threading.Lock()

    @property
    def quiet_window(self) -> float:
        return self._quiet_window

    def observe(self, event: RawEvent) -> None:
        """
        Add a raw event to the open batch.

        Args:
            event: The next raw notification
        """
        with self._lock:
            self._pending[event.path] = None
            if self._last_event_at is None or event.observed_at > self._last_event_at:
                self._last_event_at = event.observed_at

    def poll_ready(self, now: float | None = None) -> ChangeBatch | None:
        """
        Return the open batch if its quiet window has elapsed.

        Args:
            now: Current monotonic time; defaults to ``time.monotonic()``

        Returns:
            The completed batch, or None when nothing is ready yet
        """
        if now is None:
            now = time.monotonic()

        with self._lock:
            if self._last_event_at is None:
                return None
            if now - self._last_event_at < self._quiet_window:
                return None
            batch = self._take(now)

        self.log.debug("batch_ready", paths=batch.size)
        return batch

    def time_until_ready(self, now: float | None = None) -> float | None:
        """
        Seconds until the open batch becomes ready.

        Returns:
            0.0 if a batch is ready now, None if nothing is pending
        """
        if now is None:
            now = time.monotonic()

        with self._lock:
            if self._last_event_at is None:
                return None
            return max(0.0, self._last_event_at + self._quiet_window - now)

    def flush(self, now: float | None = None) -> ChangeBatch | None:
        """Emit the open batch immediately, ignoring the quiet window."""
        if now is None:
            now = time.monotonic()

        with self._lock:
            if self._last_event_at is None:
                return None
            return self._take(now)

    def clear(self) -> None:
        """Drop the open batch without emitting it."""
        with self._lock:
            self._pending.clear()
            self._last_event_at = None

    def _take(self, now: float) -> ChangeBatch:
        batch = ChangeBatch(trigger_time=now, paths=frozenset(self._pending))
        self._pending.clear()
        self._last_event_at = None
        return batch

    @property
    def pending_count(self) -> int:
        """Get number of distinct paths waiting in the open batch."""
        with self._lock:
            return len(self._pending)

    @property
    def pending_paths(self) -> list[Path]:
        """Get list of paths with pending changes."""
        with self._lock:
            return list(self._pending)
