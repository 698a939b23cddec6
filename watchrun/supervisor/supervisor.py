"""
watchrun Process Supervisor.

Owns the lifecycle of the single managed child process.
Requires Python 3.11+.
"""

import signal
import threading
import time
from collections.abc import Callable
from typing import Any

from watchrun.supervisor import process as proc
from watchrun.supervisor.process import ChildState, Command, ManagedChild
from watchrun.utils.config import BusyPolicy, SupervisorSettings
from watchrun.utils.errors import SpawnError, TerminationError
from watchrun.utils.logger import LoggerMixin


class ProcessSupervisor(LoggerMixin):
    """
    Keeps at most one instance of the command alive.

    Every ``restart`` runs one cycle: terminate the current child (graceful
    signal, then SIGKILL after the grace period), wait for it to exit and
    spawn a new one. Cycles never overlap. Callers arriving while a cycle is
    in flight wait for it, and are then served together by a single extra
    cycle, so any number of concurrent requests costs at most one more
    restart.

    State machine::

        IDLE -> RUNNING -> TERMINATING -> RUNNING | IDLE
        any  -> STOPPED  (shutdown, terminal)

    A child that exits on its own is reaped by a background thread and the
    supervisor goes back to IDLE; nothing is respawned until the next
    ``restart``.
    """

    def __init__(
        self,
        command: Command,
        grace_period: float = 5.0,
        kill_timeout: float = 5.0,
        graceful_signal: int = signal.SIGTERM,
        busy_policy: BusyPolicy = BusyPolicy.RESTART,
        pre_spawn: Callable[[], None] | None = None,
        popen_kwargs: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            command: Command to run, owned for the supervisor's lifetime
            grace_period: Seconds to wait after the graceful signal
            kill_timeout: Seconds to wait for exit after SIGKILL
            graceful_signal: Signal sent first when stopping the child
            busy_policy: What a restart does while the child is running
            pre_spawn: Called right before every spawn attempt
            popen_kwargs: Extra keyword arguments for ``subprocess.Popen``
        """
        self._command = command
        self._grace_period = grace_period
        self._kill_timeout = kill_timeout
        self._graceful_signal = graceful_signal
        self._busy_policy = busy_policy
        self._pre_spawn = pre_spawn
        self._popen_kwargs = popen_kwargs or {}

        self._cond = threading.Condition()
        self._state = ChildState.IDLE
        self._child: ManagedChild | None = None
        self._requested = 0
        self._completed = 0
        self._cycling = False
        self._closing = False
        self._spawn_count = 0

        # Cuts a running grace period short; only set once shutting down
        self._force = threading.Event()
        self._abort_requested = False
        # Wakes a queue-policy wait on shutdown
        self._interrupt = threading.Event()

    @classmethod
    def from_settings(
        cls,
        settings: SupervisorSettings,
        pre_spawn: Callable[[], None] | None = None,
    ) -> "ProcessSupervisor":
        """Build a supervisor from validated settings."""
        return cls(
            command=Command.from_argv(settings.command),
            grace_period=settings.grace_period,
            kill_timeout=settings.kill_timeout,
            graceful_signal=proc.resolve_signal(settings.signal),
            busy_policy=settings.busy_policy,
            pre_spawn=pre_spawn,
        )

    @property
    def command(self) -> Command:
        return self._command

    @property
    def state(self) -> ChildState:
        with self._cond:
            return self._state

    @property
    def child(self) -> ManagedChild | None:
        with self._cond:
            return self._child

    @property
    def pid(self) -> int | None:
        child = self.child
        return child.pid if child is not None else None

    @property
    def spawn_count(self) -> int:
        """Number of successful spawns so far."""
        with self._cond:
            return self._spawn_count

    def restart(self) -> bool:
        """
        Make a fresh instance of the command the running one.

        Returns:
            True if this call (or the cycle it was folded into) left a
            child running, False if the supervisor is stopped or the busy
            policy skipped the spawn

        Raises:
            SpawnError: The spawn attempt of this cycle failed
            TerminationError: The previous child could not be killed
        """
        with self._cond:
            if self._closing:
                self.log.debug("restart_ignored", reason="stopped")
                return False

            self._requested += 1
            ticket = self._requested
            self.log.debug("restart_requested", ticket=ticket)

            while self._cycling and self._completed < ticket and not self._closing:
                self._cond.wait()

            if self._closing:
                return False
            if self._completed >= ticket:
                # Served by a cycle another caller ran
                return self._state is ChildState.RUNNING

            self._cycling = True
            target = self._requested

        try:
            return self._cycle()
        finally:
            with self._cond:
                self._completed = max(self._completed, target)
                self._cycling = False
                self._cond.notify_all()

    def shutdown(self, force: bool = False) -> None:
        """
        Terminate the child and refuse any further restarts.

        Calling it again is a no-op, except that ``force=True`` cuts short
        a grace period that is still running.

        Raises:
            TerminationError: The child could not be killed
        """
        if force:
            self.abort_grace_period()

        with self._cond:
            if self._closing:
                while self._state is not ChildState.STOPPED:
                    self._cond.wait()
                return

            self._closing = True
            if self._abort_requested:
                self._force.set()
            self._interrupt.set()
            self._cond.notify_all()
            while self._cycling:
                self._cond.wait()
            self._cycling = True
            child = self._child

        self.log.info("supervisor_shutting_down", pid=child.pid if child else None)
        try:
            if child is not None:
                self._terminate(child)
        finally:
            with self._cond:
                self._state = ChildState.STOPPED
                self._cycling = False
                self._cond.notify_all()
        self.log.info("supervisor_stopped")

    def abort_grace_period(self) -> None:
        """
        Kill the child without waiting out the rest of its grace period.

        Never blocks, so it is safe to call from a signal handler while
        another thread (or the interrupted frame) is inside ``shutdown``.
        Before shutdown starts, the request is remembered and takes effect
        once it does; restarts keep their full grace period.
        """
        self._abort_requested = True
        if self._closing:
            self._force.set()

    def _cycle(self) -> bool:
        child = self.child
        if child is not None and child.is_alive:
            if self._busy_policy is BusyPolicy.DO_NOTHING:
                self.log.info("restart_skipped", reason="busy", pid=child.pid)
                return False
            if self._busy_policy is BusyPolicy.QUEUE:
                self.log.info("waiting_for_exit", pid=child.pid)
                if not proc.wait_for_exit(child, None, cancel=self._interrupt):
                    return False
            else:
                self._terminate(child)

        with self._cond:
            if self._closing:
                return False
        return self._spawn()

    def _spawn(self) -> bool:
        if self._pre_spawn is not None:
            self._pre_spawn()

        self.log.info("starting_command", command=self._command.display)
        try:
            child = proc.spawn(self._command, **self._popen_kwargs)
        except SpawnError as e:
            with self._cond:
                self._child = None
                self._state = ChildState.IDLE
            self.log.error("spawn_failed", executable=e.executable, error=e.reason)
            raise

        with self._cond:
            self._child = child
            self._state = ChildState.RUNNING
            self._spawn_count += 1

        self.log.info("child_spawned", pid=child.pid)
        reaper = threading.Thread(
            target=self._reap,
            args=(child,),
            name=f"watchrun-reaper-{child.pid}",
            daemon=True,
        )
        reaper.start()
        return True

    def _reap(self, child: ManagedChild) -> None:
        """Wait for *child* and record an exit nobody asked for."""
        returncode = child.process.wait()
        with self._cond:
            if self._child is not child or self._state is not ChildState.RUNNING:
                return
            self._child = None
            self._state = ChildState.IDLE
        self.log.info(
            "child_exited",
            pid=child.pid,
            returncode=returncode,
            runtime_seconds=round(time.monotonic() - child.spawn_time, 3),
        )

    def _terminate(self, child: ManagedChild) -> None:
        """Stop *child*: graceful signal, grace period, then SIGKILL."""
        with self._cond:
            self._state = ChildState.TERMINATING

        if child.returncode is None:
            self.log.info(
                "stopping_child",
                pid=child.pid,
                signal=signal.Signals(self._graceful_signal).name,
            )
            try:
                proc.send_signal(child, self._graceful_signal)
            except OSError as e:
                self.log.warning("graceful_signal_failed", pid=child.pid, error=str(e))

            exited = proc.wait_for_exit(child, self._grace_period, cancel=self._force)
            if not exited:
                self.log.warning(
                    "escalating_to_kill",
                    pid=child.pid,
                    grace_period=self._grace_period,
                    forced=self._force.is_set(),
                )
                try:
                    proc.kill(child)
                except OSError as e:
                    self.log.critical("kill_failed", pid=child.pid, error=str(e))
                    raise TerminationError(child.pid, str(e)) from e

                if not proc.wait_for_exit(child, self._kill_timeout):
                    self.log.critical("child_survived_kill", pid=child.pid)
                    raise TerminationError(child.pid, "still alive after SIGKILL")

        with self._cond:
            if self._child is child:
                self._child = None
            self._state = ChildState.IDLE

        self.log.info("child_stopped", pid=child.pid, returncode=child.returncode)
