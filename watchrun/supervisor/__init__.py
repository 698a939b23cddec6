"""
watchrun Supervisor Package.

Lifecycle management for the single managed child process.
Requires Python 3.11+.
"""

from watchrun.supervisor.process import ChildState, Command, ManagedChild
from watchrun.supervisor.supervisor import ProcessSupervisor

__all__ = [
    "ChildState",
    "Command",
    "ManagedChild",
    "ProcessSupervisor",
]
