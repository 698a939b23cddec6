"""
watchrun Structured Logging Module.

Provides consistent, structured logging throughout the application.
All output goes to stderr so the managed command owns stdout.
Requires Python 3.11+.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from watchrun.utils.config import LoggingSettings


def _app_context(app_name: str, app_version: str) -> Processor:
    """Build a processor adding application context to all log entries."""

    def add_app_context(
        logger: logging.Logger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict["app"] = app_name
        event_dict["version"] = app_version
        return event_dict

    return add_app_context


def configure_logging(
    settings: LoggingSettings | None = None,
    app_name: str = "watchrun",
    app_version: str = "0.1.0",
) -> None:
    """
    Configure structured logging for the application.

    Call this once at application startup.

    Args:
        settings: Level and output format; defaults when omitted
        app_name: Name added to JSON entries
        app_version: Version added to JSON entries
    """
    settings = settings or LoggingSettings()
    level = getattr(logging, settings.level.upper())

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.format == "json":
        processors: list[Processor] = [
            *shared_processors,
            _app_context(app_name, app_version),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )

    # Suppress noisy loggers
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def get_logger(name: str | None = None, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
        initial_values: Context bound to every entry of the returned logger

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name, **initial_values)


class LoggerMixin:
    """
    Mixin class to add logging capability to any class.

    Usage:
        class MyClass(LoggerMixin):
            def my_method(self):
                self.log.info("doing_something", key="value")
    """

    @property
    def log(self) -> structlog.stdlib.BoundLogger:
        """Get logger bound to this class name."""
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger
