"""
watchrun Error Types.

Exception hierarchy shared by the watcher, supervisor and CLI.
Requires Python 3.11+.
"""

from pathlib import Path


class WatchrunError(Exception):
    """Base class for all watchrun errors."""


class StartupError(WatchrunError):
    """Invalid arguments or watch paths; the watch loop is never entered."""


class WatchSourceError(WatchrunError):
    """A filesystem subscription could not be established."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class SpawnError(WatchrunError):
    """The command could not be started (missing or not executable)."""

    def __init__(self, executable: str, reason: str) -> None:
        super().__init__(f"{executable}: {reason}")
        self.executable = executable
        self.reason = reason


class TerminationError(WatchrunError):
    """A child process survived forceful termination."""

    def __init__(self, pid: int, reason: str) -> None:
        super().__init__(f"failed to terminate process {pid}: {reason}")
        self.pid = pid
        self.reason = reason
