"""
watchrun Orchestrator.

Top-level control loop binding the event source, the debouncer and the
process supervisor, plus process-wide shutdown handling.
Requires Python 3.11+.
"""

import signal
import sys
import threading
from types import FrameType
from typing import Any

from watchrun.supervisor import ProcessSupervisor
from watchrun.utils.config import Settings
from watchrun.utils.errors import SpawnError, TerminationError, WatchrunError, WatchSourceError
from watchrun.utils.logger import LoggerMixin, get_logger
from watchrun.watcher import (
    Debouncer,
    PathFilter,
    RawEventSource,
    find_global_gitignore,
    find_project_gitignore,
)


logger = get_logger("watchrun.orchestrator")

EXIT_OK = 0
EXIT_FATAL = 1

_TERMINATION_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGHUP") if hasattr(signal, name)
)


def clear_screen() -> None:
    """Clear the terminal and its scrollback before the command starts."""
    sys.stdout.write("\x1b[2J\x1b[3J\x1b[H")
    sys.stdout.flush()


class Orchestrator(LoggerMixin):
    """
    Runs the command and restarts it on every batch of changes.

    Three threads cooperate besides the watchdog observer:

    * the debounce thread drains raw events into the debouncer and raises
      a single "dirty" flag whenever a batch is ready;
    * the restart worker waits on that flag and calls
      ``supervisor.restart()``. Batches arriving while a restart runs just
      leave the flag set, so they cost exactly one more restart;
    * the calling (main) thread waits for a termination request and then
      shuts everything down, returning only once the child is gone.
    """

    def __init__(
        self,
        source: RawEventSource,
        debouncer: Debouncer,
        supervisor: ProcessSupervisor,
        poll_interval: float = 0.5,
        install_signal_handlers: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            source: Raw event source for the watched roots
            debouncer: Debouncer turning raw events into batches
            supervisor: Owner of the managed child process
            poll_interval: Upper bound for blocking waits, in seconds
            install_signal_handlers: Handle SIGINT/SIGTERM/SIGHUP when run
                from the main thread
        """
        self._source = source
        self._debouncer = debouncer
        self._supervisor = supervisor
        self._poll_interval = poll_interval
        self._install_signal_handlers = install_signal_handlers

        self._stop = threading.Event()
        self._dirty = threading.Event()
        self._lock = threading.RLock()
        self._stop_requests = 0
        self._received_signal: int | None = None
        self._fatal: WatchrunError | None = None
        self._threads: list[threading.Thread] = []
        self._batch_count = 0
        self._started = threading.Event()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "Orchestrator":
        """Wire up the components described by *settings*."""
        watch = settings.watch

        gitignore = None
        if watch.use_project_ignore:
            try:
                gitignore = find_project_gitignore()
            except OSError as e:
                logger.warning("gitignore_unreadable", error=str(e))

        global_gitignore = None
        if watch.use_global_ignore:
            try:
                global_gitignore = find_global_gitignore()
            except OSError as e:
                logger.warning("global_gitignore_unreadable", error=str(e))

        path_filter = PathFilter(
            roots=tuple(p for p in watch.paths if p.is_dir()),
            watched_files=frozenset(p for p in watch.paths if not p.is_dir()),
            ignore_globs=watch.effective_ignore_globs,
            extensions=watch.extensions,
            gitignore=gitignore,
            global_gitignore=global_gitignore,
        )
        source = RawEventSource(watch.paths, path_filter=path_filter)
        debouncer = Debouncer(quiet_window=watch.quiet_window)
        supervisor = ProcessSupervisor.from_settings(
            settings.supervisor,
            pre_spawn=clear_screen if settings.supervisor.clear else None,
        )
        return cls(source, debouncer, supervisor, **kwargs)

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def batch_count(self) -> int:
        """Number of change batches seen so far."""
        with self._lock:
            return self._batch_count

    @property
    def started(self) -> threading.Event:
        """Set once the watch loop is up and the first run was requested."""
        return self._started

    def run(self) -> int:
        """
        Run until a termination request or a fatal error.

        Returns:
            Exit status: 0 after a clean shutdown, 1 after a fatal error
        """
        previous_handlers = self._set_signal_handlers()
        try:
            try:
                self._source.start()
            except WatchSourceError as e:
                self.log.error("watch_source_failed", error=str(e))
                self._fatal = e
                return EXIT_FATAL

            # First run happens right away, without waiting for a change
            self._dirty.set()
            self._start_thread(self._debounce_loop, "watchrun-debounce")
            self._start_thread(self._restart_loop, "watchrun-restart")
            self._started.set()
            self.log.info("watching", paths=[str(p) for p in self._source.watched])

            while not self._stop.wait(self._poll_interval):
                if not self._source.is_alive:
                    self.log.error("watch_source_stopped")
                    self._fatal = WatchSourceError("file system observer stopped unexpectedly")
                    break

            if self._received_signal is not None:
                self.log.info(
                    "termination_requested",
                    signal=signal.Signals(self._received_signal).name,
                )
        finally:
            self._shutdown()
            self._restore_signal_handlers(previous_handlers)

        return EXIT_FATAL if self._fatal is not None else EXIT_OK

    def request_stop(self, force: bool = False) -> None:
        """
        Ask the run loop to shut down. Safe from any thread.

        A second request while the first is still being handled, or
        ``force=True``, kills the child without waiting out its grace
        period.
        """
        if self._register_stop(force):
            self.log.warning("forcing_shutdown")

    def _register_stop(self, force: bool) -> bool:
        """Set the stop flags; returns True when the grace period was cut short."""
        with self._lock:
            self._stop_requests += 1
            forced = force or self._stop_requests > 1

        if forced:
            self._supervisor.abort_grace_period()

        self._stop.set()
        self._dirty.set()
        return forced

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        # Flags only: logging here can deadlock on structlog's stderr lock
        self._received_signal = signum
        self._register_stop(force=False)

    def _set_signal_handlers(self) -> dict[int, Any]:
        if not self._install_signal_handlers:
            return {}
        if threading.current_thread() is not threading.main_thread():
            return {}

        previous = {}
        for signum in _TERMINATION_SIGNALS:
            previous[signum] = signal.signal(signum, self._handle_signal)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, Any]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def _start_thread(self, target: Any, name: str) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        self._threads.append(thread)
        thread.start()

    def _debounce_loop(self) -> None:
        """Feed raw events to the debouncer and flag every ready batch."""
        while not self._stop.is_set():
            wait = self._debouncer.time_until_ready()
            timeout = self._poll_interval if wait is None else min(wait, self._poll_interval)

            event = self._source.get(timeout=timeout)
            if event is not None:
                self._debouncer.observe(event)

            batch = self._debouncer.poll_ready()
            if batch is None:
                continue

            with self._lock:
                self._batch_count += 1
            self.log.info(
                "change_detected",
                paths=batch.size,
                example=str(next(iter(batch.paths))),
            )
            self._dirty.set()

    def _restart_loop(self) -> None:
        """Restart the command once per raised dirty flag."""
        while True:
            self._dirty.wait()
            if self._stop.is_set():
                return
            self._dirty.clear()

            try:
                self._supervisor.restart()
            except SpawnError as e:
                self.log.error("command_not_started", error=str(e), hint="waiting for changes")
            except TerminationError as e:
                self.log.critical("command_unkillable", pid=e.pid, error=e.reason)
                self._fatal = e
                self._stop.set()
                return

    def _shutdown(self) -> None:
        self._stop.set()
        self._dirty.set()
        self._source.stop()

        try:
            self._supervisor.shutdown()
        except TerminationError as e:
            self.log.critical("command_unkillable", pid=e.pid, error=e.reason)
            self._fatal = e

        for thread in self._threads:
            thread.join(timeout=self._poll_interval * 4)
            if thread.is_alive():
                self.log.warning("thread_still_running", thread=thread.name)
        self._threads.clear()
        self.log.info("shutdown_complete")
