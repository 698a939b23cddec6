"""
watchrun Utilities Package.

Configuration, logging and error types shared across all modules.
Requires Python 3.11+.
"""

from watchrun.utils.config import (
    BusyPolicy,
    LoggingSettings,
    Settings,
    SupervisorSettings,
    WatchSettings,
)
from watchrun.utils.errors import (
    SpawnError,
    StartupError,
    TerminationError,
    WatchrunError,
    WatchSourceError,
)
from watchrun.utils.logger import configure_logging, get_logger, LoggerMixin

__all__ = [
    "BusyPolicy",
    "LoggingSettings",
    "Settings",
    "SupervisorSettings",
    "WatchSettings",
    "SpawnError",
    "StartupError",
    "TerminationError",
    "WatchrunError",
    "WatchSourceError",
    "configure_logging",
    "get_logger",
    "LoggerMixin",
]
