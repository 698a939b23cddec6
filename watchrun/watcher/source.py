"""
watchrun Raw Event Source.

Cross-platform file system monitoring using watchdog, exposed as a
pull-based queue of raw events.
Requires Python 3.11+.
"""

import os
import queue
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from watchrun.utils.errors import WatchSourceError
from watchrun.utils.logger import LoggerMixin
from watchrun.watcher.events import ChangeKind, RawEvent
from watchrun.watcher.filters import PathFilter


_KIND_BY_EVENT_TYPE: dict[str, ChangeKind] = {
    "created": ChangeKind.CREATED,
    "modified": ChangeKind.MODIFIED,
    "deleted": ChangeKind.REMOVED,
    "moved": ChangeKind.RENAMED,
    "closed": ChangeKind.OTHER,
}


class RawEventHandler(FileSystemEventHandler, LoggerMixin):
    """
    Translates watchdog events into raw events.

    Directory modification events are dropped, they accompany every
    file creation or removal inside the directory. Open events and
    read-only close events are dropped too, otherwise a command that
    reads its own sources would restart itself forever.
    """

    def __init__(self, source: "RawEventSource") -> None:
        super().__init__()
        self._source = source

    def on_any_event(self, event: FileSystemEvent) -> None:
        kind = _KIND_BY_EVENT_TYPE.get(event.event_type)
        if kind is None:
            return
        if event.is_directory and kind is ChangeKind.MODIFIED:
            return

        now = time.monotonic()
        src_path = Path(os.fsdecode(event.src_path))
        self._source.offer(RawEvent(path=src_path, kind=kind, observed_at=now))

        dest_path = getattr(event, "dest_path", "")
        if kind is ChangeKind.RENAMED and dest_path:
            self._source.offer(
                RawEvent(path=Path(os.fsdecode(dest_path)), kind=kind, observed_at=now)
            )


class RawEventSource(LoggerMixin):
    """
    Watches the configured roots and queues raw change notifications.

    Directories are watched recursively. A watched file is observed
    through a non-recursive watch on its parent directory; sibling
    changes are discarded. The sequence of events is lazy, unbounded and
    cannot be restarted once stopped.

    A root whose subscription fails is logged and dropped; if no root can
    be subscribed, ``start`` raises ``WatchSourceError``.
    """

    def __init__(
        self,
        paths: tuple[Path, ...] | list[Path],
        path_filter: PathFilter | None = None,
        observer_factory: Callable[[], Any] | None = None,
    ) -> None:
        """
        Initialize the event source.

        Args:
            paths: Watched roots (files or directories), already resolved
            path_filter: Filter applied before events are queued
            observer_factory: Builds the watchdog observer; tests pass
                a fake or a polling observer here
        """
        self._roots = tuple(paths)
        self._dir_roots = tuple(p for p in self._roots if p.is_dir())
        self._file_roots = frozenset(p for p in self._roots if not p.is_dir())
        self._filter = path_filter
        self._observer_factory = observer_factory or Observer
        self._queue: queue.Queue[RawEvent] = queue.Queue()
        self._observer: Any = None
        self._handler = RawEventHandler(self)
        self._watched: list[Path] = []
        self._stopped = False

    @property
    def roots(self) -> tuple[Path, ...]:
        return self._roots

    @property
    def watched(self) -> list[Path]:
        """Roots whose subscription succeeded."""
        return list(self._watched)

    def start(self) -> None:
        """Start the observer and subscribe every root."""
        if self._stopped:
            raise WatchSourceError("event source cannot be restarted once stopped")
        if self._observer is not None:
            return

        self._observer = self._observer_factory()
        self._observer.start()

        scheduled: set[tuple[Path, bool]] = set()
        for root in self._roots:
            target, recursive = (root, True) if root in self._dir_roots else (root.parent, False)
            try:
                if (target, recursive) not in scheduled:
                    self._observer.schedule(self._handler, str(target), recursive=recursive)
                    scheduled.add((target, recursive))
            except OSError as e:
                self.log.error("watch_subscription_failed", path=str(root), error=str(e))
                continue

            self._watched.append(root)
            self.log.info(
                "watching_directory" if recursive else "watching_file",
                path=str(root),
            )

        if not self._watched:
            self.stop()
            raise WatchSourceError("none of the watched paths could be subscribed")

    def stop(self) -> None:
        """Stop the observer. Queued events stay readable."""
        self._stopped = True
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5.0)

    @property
    def is_alive(self) -> bool:
        """Check that the observer thread is still running."""
        return self._observer is not None and self._observer.is_alive()

    def is_relevant(self, path: Path) -> bool:
        """Check that *path* lies under a watched root."""
        if path in self._file_roots:
            return True
        return any(path == root or path.is_relative_to(root) for root in self._dir_roots)

    def offer(self, event: RawEvent) -> None:
        """Queue *event* if it is under a watched root and passes the filter."""
        if not self.is_relevant(event.path):
            return
        if event.kind is ChangeKind.REMOVED and event.path in self._roots:
            self.log.warning("watch_root_removed", path=str(event.path))
        elif self._filter is not None and not self._filter.accepts(event.path):
            return
        self.publish(event)

    def publish(self, event: RawEvent) -> None:
        """Queue *event* unconditionally; used for manual injection."""
        self.log.debug("raw_event", path=str(event.path), kind=event.kind.value)
        self._queue.put(event)

    def get(self, timeout: float | None = None) -> RawEvent | None:
        """
        Take the next raw event.

        Args:
            timeout: Seconds to wait; None blocks until an event arrives

        Returns:
            The event, or None if the timeout elapsed
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __iter__(self) -> Iterator[RawEvent]:
        while not self._stopped or not self._queue.empty():
            event = self.get(timeout=0.1)
            if event is not None:
                yield event

    def __enter__(self) -> "RawEventSource":
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.stop()
