"""
Tests for the Orchestrator.

Requires Python 3.11+.
"""

import signal
import sys
import threading
import time
from pathlib import Path

import pytest
import structlog
import structlog.testing

from helpers import (
    RECORDING_CHILD,
    SLEEPING_CHILD,
    FakeObserver,
    line_count,
    posix_only,
    python_argv,
    wait_until,
)
from watchrun.orchestrator import EXIT_FATAL, EXIT_OK, Orchestrator
from watchrun.supervisor import ChildState, Command, ProcessSupervisor
from watchrun.supervisor import process as proc
from watchrun.utils.config import Settings, SupervisorSettings, WatchSettings
from watchrun.utils.logger import configure_logging
from watchrun.watcher import Debouncer, RawEventSource
from watchrun.watcher.events import ChangeKind, RawEvent


pytestmark = posix_only

# Appends to argv[1] like RECORDING_CHILD, but ignores SIGTERM
STUBBORN_RECORDING_CHILD = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "with open(sys.argv[1], 'a') as f:\n"
    "    f.write('hi\\n')\n"
    "time.sleep(60)\n"
)


class Runner:
    """Runs an orchestrator on a background thread."""

    def __init__(self, orchestrator: Orchestrator) -> None:
        self.orchestrator = orchestrator
        self.exit_code: int | None = None
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        self.exit_code = self.orchestrator.run()

    def start(self) -> "Runner":
        self._thread.start()
        assert self.orchestrator.started.wait(5.0)
        return self

    def stop(self, timeout: float = 10.0) -> int | None:
        self.orchestrator.request_stop()
        return self.join(timeout)

    def join(self, timeout: float = 10.0) -> int | None:
        self._thread.join(timeout)
        assert not self._thread.is_alive()
        return self.exit_code

    @property
    def running(self) -> bool:
        return self._thread.is_alive()


def build(
    watch_dir: Path,
    argv: list[str],
    observer: FakeObserver | None = None,
    quiet_window: float = 0.05,
    **supervisor_kwargs,
) -> tuple[Orchestrator, RawEventSource]:
    observer = observer or FakeObserver()
    source = RawEventSource([watch_dir], observer_factory=lambda: observer)
    supervisor = ProcessSupervisor(Command.from_argv(argv), **supervisor_kwargs)
    orchestrator = Orchestrator(
        source,
        Debouncer(quiet_window=quiet_window),
        supervisor,
        poll_interval=0.05,
        install_signal_handlers=False,
    )
    return orchestrator, source


def touch(source: RawEventSource, path: Path, times: int = 1) -> None:
    for _ in range(times):
        source.publish(RawEvent(path=path, kind=ChangeKind.MODIFIED))


class TestOrchestrator:
    """Test cases for Orchestrator."""

    def test_initial_run_and_one_restart_per_burst(self, tmp_path: Path, watch_dir: Path):
        """Test that a burst of notifications restarts the command once."""
        out = tmp_path / "out.txt"
        orchestrator, source = build(watch_dir, python_argv(RECORDING_CHILD, str(out)))
        runner = Runner(orchestrator).start()

        assert wait_until(lambda: line_count(out) == 1)

        touch(source, watch_dir / "app.py", times=5)
        touch(source, watch_dir / "pkg" / "module.py", times=3)

        assert wait_until(lambda: line_count(out) == 2)
        time.sleep(0.5)
        assert line_count(out) == 2
        assert orchestrator.batch_count == 1
        assert orchestrator.supervisor.spawn_count == 2

        assert runner.stop() == EXIT_OK

    def test_batches_during_a_restart_cost_one_more_cycle(self, tmp_path: Path, watch_dir: Path):
        """Test that several batches arriving mid-restart trigger a single extra restart."""
        out = tmp_path / "out.txt"
        orchestrator, source = build(
            watch_dir,
            python_argv(STUBBORN_RECORDING_CHILD, str(out)),
            grace_period=1.0,
        )
        supervisor = orchestrator.supervisor
        runner = Runner(orchestrator).start()
        assert wait_until(lambda: line_count(out) == 1)

        touch(source, watch_dir / "app.py")
        assert wait_until(lambda: supervisor.state is ChildState.TERMINATING)

        for _ in range(3):
            touch(source, watch_dir / "app.py")
            time.sleep(0.15)

        assert wait_until(lambda: supervisor.spawn_count == 3, timeout=10.0)
        time.sleep(1.5)
        assert supervisor.spawn_count == 3
        assert orchestrator.batch_count == 4

        orchestrator.request_stop(force=True)
        assert runner.join() == EXIT_OK

    def test_missing_executable_keeps_watching(self, tmp_path: Path, watch_dir: Path):
        """Test that spawn failures are retried on each change without stopping the loop."""
        attempts: list[float] = []
        orchestrator, source = build(
            watch_dir,
            [str(tmp_path / "does-not-exist")],
            pre_spawn=lambda: attempts.append(time.monotonic()),
        )
        runner = Runner(orchestrator).start()

        assert wait_until(lambda: len(attempts) == 1)
        for expected in (2, 3):
            touch(source, watch_dir / "app.py")
            assert wait_until(lambda: len(attempts) == expected)

        assert runner.running
        assert orchestrator.supervisor.spawn_count == 0
        assert runner.stop() == EXIT_OK

    def test_termination_request_stops_the_child(self, tmp_path: Path, watch_dir: Path):
        """Test that stopping terminates the child gracefully and leaves nothing behind."""
        orchestrator, _ = build(watch_dir, python_argv(SLEEPING_CHILD))
        supervisor = orchestrator.supervisor
        runner = Runner(orchestrator).start()
        assert wait_until(lambda: supervisor.child is not None)
        child = supervisor.child

        assert runner.stop() == EXIT_OK

        assert child.returncode == -signal.SIGTERM
        assert supervisor.child is None
        assert supervisor.state is ChildState.STOPPED

    def test_second_stop_request_forces_a_kill(self, tmp_path: Path, watch_dir: Path):
        """Test that repeating the stop request skips the grace period."""
        out = tmp_path / "out.txt"
        orchestrator, _ = build(
            watch_dir,
            python_argv(STUBBORN_RECORDING_CHILD, str(out)),
            grace_period=30.0,
        )
        supervisor = orchestrator.supervisor
        runner = Runner(orchestrator).start()
        assert wait_until(lambda: line_count(out) == 1)
        child = supervisor.child

        started = time.monotonic()
        orchestrator.request_stop()
        assert wait_until(lambda: supervisor.state is ChildState.TERMINATING)
        orchestrator.request_stop()

        assert runner.join() == EXIT_OK
        assert time.monotonic() - started < 10.0
        assert child.returncode == -signal.SIGKILL

    def test_watch_source_failure_aborts(self, watch_dir: Path):
        """Test that a run with no subscribable path exits with an error."""
        observer = FakeObserver(fail_paths=(watch_dir,))
        orchestrator, _ = build(watch_dir, python_argv(SLEEPING_CHILD), observer=observer)

        assert orchestrator.run() == EXIT_FATAL
        assert orchestrator.supervisor.spawn_count == 0

    def test_observer_dying_aborts(self, tmp_path: Path, watch_dir: Path):
        """Test that losing the observer thread ends the run after stopping the child."""
        observer = FakeObserver()
        orchestrator, _ = build(watch_dir, python_argv(SLEEPING_CHILD), observer=observer)
        supervisor = orchestrator.supervisor
        runner = Runner(orchestrator).start()
        assert wait_until(lambda: supervisor.child is not None)
        child = supervisor.child

        observer.stop()

        assert runner.join() == EXIT_FATAL
        assert child.returncode is not None

    def test_unkillable_child_is_fatal(
        self, tmp_path: Path, watch_dir: Path, monkeypatch: pytest.MonkeyPatch
    ):
        """Test that a failed forceful termination ends the run with an error."""
        out = tmp_path / "out.txt"
        orchestrator, source = build(
            watch_dir,
            python_argv(STUBBORN_RECORDING_CHILD, str(out)),
            grace_period=0.1,
            kill_timeout=0.1,
        )
        runner = Runner(orchestrator).start()
        assert wait_until(lambda: line_count(out) == 1)
        child = orchestrator.supervisor.child

        real_kill = proc.kill
        monkeypatch.setattr(proc, "kill", lambda c: None)
        try:
            touch(source, watch_dir / "app.py")
            assert runner.join() == EXIT_FATAL
        finally:
            real_kill(child)
            child.process.wait(timeout=5)

    def test_signal_handler_never_waits_on_log_output(
        self, watch_dir: Path, monkeypatch: pytest.MonkeyPatch
    ):
        """Test that handling a signal while a log line is being written cannot hang."""
        configure_logging()
        orchestrator, _ = build(watch_dir, python_argv(SLEEPING_CHILD))
        aborts: list[int] = []
        monkeypatch.setattr(orchestrator.supervisor, "abort_grace_period", lambda: aborts.append(1))

        def deliver_twice() -> None:
            orchestrator._handle_signal(signal.SIGINT, None)
            orchestrator._handle_signal(signal.SIGINT, None)

        # Held the way structlog holds it while printing to stderr
        write_lock = structlog._output._get_lock_for_file(sys.stderr)
        with write_lock:
            handler = threading.Thread(target=deliver_twice, daemon=True)
            handler.start()
            handler.join(timeout=2.0)
            finished = not handler.is_alive()

        assert finished
        assert aborts == [1]

    def test_signal_is_logged_by_the_run_loop(self, watch_dir: Path):
        """Test that the termination request is reported once the loop wakes up."""
        orchestrator, _ = build(watch_dir, python_argv(SLEEPING_CHILD))
        with structlog.testing.capture_logs() as logs:
            runner = Runner(orchestrator).start()
            orchestrator._handle_signal(signal.SIGTERM, None)
            assert runner.join() == EXIT_OK

        requested = [e for e in logs if e["event"] == "termination_requested"]
        assert [e["signal"] for e in requested] == ["SIGTERM"]


class TestOrchestratorEndToEnd:
    """Test cases wiring real components from settings."""

    def test_touching_a_file_reruns_the_command(self, tmp_path: Path, watch_dir: Path):
        """Test one respawn per file save with a real watchdog observer."""
        out = tmp_path / "out.txt"
        settings = Settings(
            watch=WatchSettings(
                paths=[watch_dir],
                debounce_ms=100,
                use_project_ignore=False,
                use_global_ignore=False,
            ),
            supervisor=SupervisorSettings(command=python_argv(RECORDING_CHILD, str(out))),
        )
        orchestrator = Orchestrator.from_settings(
            settings, poll_interval=0.05, install_signal_handlers=False
        )
        runner = Runner(orchestrator).start()
        assert wait_until(lambda: line_count(out) == 1)
        time.sleep(0.3)

        (watch_dir / "app.py").write_text("print('changed')\n")

        assert wait_until(lambda: line_count(out) == 2, timeout=10.0)
        time.sleep(0.5)
        assert line_count(out) == 2

        assert runner.stop() == EXIT_OK
        assert orchestrator.supervisor.state is ChildState.STOPPED

    def test_ignored_files_do_not_trigger(self, tmp_path: Path, watch_dir: Path):
        """Test that changes matching an ignore glob are filtered out."""
        out = tmp_path / "out.txt"
        settings = Settings(
            watch=WatchSettings(
                paths=[watch_dir],
                debounce_ms=50,
                ignore_globs=("*.log",),
                use_project_ignore=False,
                use_global_ignore=False,
            ),
            supervisor=SupervisorSettings(command=python_argv(RECORDING_CHILD, str(out))),
        )
        orchestrator = Orchestrator.from_settings(
            settings, poll_interval=0.05, install_signal_handlers=False
        )
        runner = Runner(orchestrator).start()
        assert wait_until(lambda: line_count(out) == 1)
        time.sleep(0.3)

        (watch_dir / "debug.log").write_text("noise\n")
        time.sleep(1.0)

        assert line_count(out) == 1
        assert runner.stop() == EXIT_OK
