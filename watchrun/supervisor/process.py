"""
watchrun Child Processes.

Command description, managed child handle and the platform-specific
spawn and signal primitives the supervisor is built on.
Requires Python 3.11+.
"""

import os
import shlex
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from watchrun.utils.errors import SpawnError


class ChildState(str, Enum):
    """Lifecycle state of the supervisor's managed child."""

    IDLE = "idle"
    RUNNING = "running"
    TERMINATING = "terminating"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Command:
    """An executable and its arguments, run verbatim without a shell."""

    executable: str
    args: tuple[str, ...] = ()

    @classmethod
    def from_argv(cls, argv: list[str] | tuple[str, ...]) -> "Command":
        """Build a command from ``[executable, *args]``."""
        if not argv:
            raise ValueError("command must not be empty")
        return cls(executable=argv[0], args=tuple(argv[1:]))

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    @property
    def display(self) -> str:
        """Shell-quoted rendering, for logs only."""
        return shlex.join(self.argv)


@dataclass
class ManagedChild:
    """A spawned instance of the command."""

    process: subprocess.Popen[Any]
    spawn_time: float = field(default_factory=time.monotonic)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        return self.process.poll() is None


def _popen_kwargs() -> dict[str, Any]:
    """Returns platform-specific flags putting the child in its own process group."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def spawn(command: Command, **popen_kwargs: Any) -> ManagedChild:
    """
    Start *command* and return its handle.

    The child inherits stdin, stdout and stderr.

    Raises:
        SpawnError: The executable is missing or cannot be executed
    """
    kwargs = {**_popen_kwargs(), **popen_kwargs}
    try:
        process = subprocess.Popen(command.argv, **kwargs)
    except FileNotFoundError:
        raise SpawnError(command.executable, "command not found") from None
    except PermissionError:
        raise SpawnError(command.executable, "permission denied") from None
    except OSError as e:
        raise SpawnError(command.executable, e.strerror or str(e)) from e
    return ManagedChild(process=process)


def resolve_signal(name: str) -> int:
    """Map a signal name to its number, falling back to SIGTERM where unsupported."""
    return int(getattr(signal, name, signal.SIGTERM))


def send_signal(child: ManagedChild, sig: int) -> None:
    """
    Deliver *sig* to the child's whole process group.

    A group that has already gone away is not an error. Windows has no
    process-group signals; the child is terminated there.
    """
    if sys.platform == "win32":
        child.process.terminate()
        return

    try:
        os.killpg(child.pid, sig)
    except ProcessLookupError:
        pass


def kill(child: ManagedChild) -> None:
    """Forcefully kill the child's process group."""
    if sys.platform == "win32":
        child.process.kill()
        return

    try:
        os.killpg(child.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def wait_for_exit(
    child: ManagedChild,
    timeout: float | None,
    cancel: threading.Event | None = None,
    slice_seconds: float = 0.05,
) -> bool:
    """
    Wait until the child exits.

    Args:
        child: Process to wait for
        timeout: Upper bound in seconds; None waits indefinitely
        cancel: Event that cuts the wait short when set
        slice_seconds: Granularity at which *cancel* is checked

    Returns:
        True if the child exited, False on timeout or cancellation
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        step = slice_seconds
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return child.process.returncode is not None
            step = min(step, remaining)
        try:
            child.process.wait(timeout=step)
            return True
        except subprocess.TimeoutExpired:
            pass
        if cancel is not None and cancel.is_set():
            return False
