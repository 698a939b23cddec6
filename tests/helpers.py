"""
Shared helpers for the watchrun tests.

Requires Python 3.11+.
"""

import sys
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX process groups")

# Prints "ready" once SIGTERM is ignored, then sleeps
STUBBORN_CHILD = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "print('ready', flush=True)\n"
    "time.sleep(60)\n"
)

# Prints "ready" and sleeps until terminated
SLEEPING_CHILD = "import time\nprint('ready', flush=True)\ntime.sleep(60)\n"

# Appends one line to the file named by argv[1], then sleeps
RECORDING_CHILD = (
    "import sys, time\n"
    "with open(sys.argv[1], 'a') as f:\n"
    "    f.write('hi\\n')\n"
    "time.sleep(60)\n"
)


def python_argv(code: str, *args: str) -> list[str]:
    """Build an argv running a Python snippet with the current interpreter."""
    return [sys.executable, "-c", code, *args]


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll *predicate* until it holds or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def line_count(path: Path) -> int:
    """Number of lines in *path*, 0 if it does not exist yet."""
    if not path.exists():
        return 0
    return len(path.read_text().splitlines())


class FakeObserver:
    """Stand-in for a watchdog observer that records subscriptions."""

    def __init__(self, fail_paths: tuple[Path, ...] = ()) -> None:
        self.fail_paths = {str(p) for p in fail_paths}
        self.scheduled: list[tuple[str, bool]] = []
        self.handler: Any = None
        self._alive = False

    def start(self) -> None:
        self._alive = True

    def stop(self) -> None:
        self._alive = False

    def join(self, timeout: float | None = None) -> None:
        pass

    def is_alive(self) -> bool:
        return self._alive

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> None:
        if path in self.fail_paths:
            raise PermissionError(13, "Permission denied", path)
        self.handler = handler
        self.scheduled.append((path, recursive))
