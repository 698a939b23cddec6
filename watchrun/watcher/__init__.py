"""
watchrun Watcher Package.

File system monitoring and change debouncing.
Requires Python 3.11+.
"""

from watchrun.watcher.debouncer import Debouncer
from watchrun.watcher.events import ChangeBatch, ChangeKind, RawEvent
from watchrun.watcher.filters import (
    GitignoreRules,
    PathFilter,
    find_global_gitignore,
    find_project_gitignore,
    global_gitignore_path,
)
from watchrun.watcher.source import RawEventHandler, RawEventSource

__all__ = [
    "Debouncer",
    "ChangeBatch",
    "ChangeKind",
    "RawEvent",
    "GitignoreRules",
    "PathFilter",
    "find_global_gitignore",
    "find_project_gitignore",
    "global_gitignore_path",
    "RawEventHandler",
    "RawEventSource",
]
