"""
watchrun Configuration Module.

Centralizes all runtime settings using Pydantic models.
Settings are built from command-line arguments only; no environment
variables or configuration files are consulted.
Requires Python 3.11+.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from watchrun import __version__


DEFAULT_IGNORE_GLOBS: tuple[str, ...] = (
    "*~",
    ".DS_Store",
    ".git",
    "*.swp",
    "__pycache__",
)

GRACEFUL_SIGNALS: tuple[str, ...] = ("SIGHUP", "SIGINT", "SIGQUIT", "SIGTERM")


class BusyPolicy(str, Enum):
    """What to do with a change while the command is still running."""

    RESTART = "restart"
    QUEUE = "queue"
    DO_NOTHING = "do-nothing"


class WatchSettings(BaseModel):
    """What to watch and how to debounce it."""

    model_config = ConfigDict(frozen=True)

    paths: tuple[Path, ...] = Field(description="Watched roots, resolved and de-duplicated")
    debounce_ms: int = Field(default=100, ge=0, le=60_000)
    ignore_globs: tuple[str, ...] = Field(default=())
    extensions: tuple[str, ...] = Field(default=())
    use_default_ignore: bool = Field(default=True)
    use_project_ignore: bool = Field(default=True)
    use_global_ignore: bool = Field(default=True)

    @field_validator("paths", mode="before")
    @classmethod
    def resolve_paths(cls, v: list[str | Path] | tuple[str | Path, ...]) -> tuple[Path, ...]:
        """Resolve, de-duplicate and check the existence of every watched path."""
        if not v:
            raise ValueError("at least one path to watch is required")

        resolved: list[Path] = []
        for raw in v:
            path = Path(raw).expanduser()
            if not path.exists():
                raise ValueError(f"{raw}: no such file or directory")
            path = path.resolve()
            if path not in resolved:
                resolved.append(path)
        return tuple(resolved)

    @field_validator("extensions", mode="before")
    @classmethod
    def parse_extensions(cls, v: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
        """Accept comma-separated strings; strip leading dots."""
        if isinstance(v, str):
            v = [v]
        exts: list[str] = []
        for item in v:
            for part in item.split(","):
                part = part.strip().lstrip(".")
                if part and part not in exts:
                    exts.append(part)
        return tuple(exts)

    @property
    def quiet_window(self) -> float:
        """Debounce window in seconds."""
        return self.debounce_ms / 1000.0

    @property
    def effective_ignore_globs(self) -> tuple[str, ...]:
        """User globs plus the defaults, unless disabled."""
        if self.use_default_ignore:
            return (*self.ignore_globs, *DEFAULT_IGNORE_GLOBS)
        return self.ignore_globs


class SupervisorSettings(BaseModel):
    """How the managed command is run and stopped."""

    model_config = ConfigDict(frozen=True)

    command: tuple[str, ...] = Field(description="Executable followed by its arguments")
    grace_period: float = Field(default=5.0, ge=0.0, le=3600.0)
    kill_timeout: float = Field(default=5.0, gt=0.0, le=3600.0)
    signal: str = Field(default="SIGTERM")
    busy_policy: BusyPolicy = Field(default=BusyPolicy.RESTART)
    clear: bool = Field(default=False)

    @field_validator("command", mode="before")
    @classmethod
    def check_command(cls, v: list[str] | tuple[str, ...]) -> tuple[str, ...]:
        """The command must name an executable."""
        if not v or not v[0]:
            raise ValueError("a command to run is required after '--'")
        return tuple(v)

    @field_validator("signal", mode="before")
    @classmethod
    def normalize_signal(cls, v: str) -> str:
        """Accept signal names with or without the SIG prefix, any case."""
        name = str(v).upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        if name not in GRACEFUL_SIGNALS:
            raise ValueError(f"invalid signal {v!r}; choices are {', '.join(GRACEFUL_SIGNALS)}")
        return name


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO")
    format: str = Field(default="console")  # "json" or "console"

    @field_validator("level")
    @classmethod
    def check_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level {v!r}")
        return level

    @field_validator("format")
    @classmethod
    def check_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError(f"invalid log format {v!r}")
        return v


class Settings(BaseModel):
    """Main application settings aggregating all sub-settings."""

    model_config = ConfigDict(frozen=True)

    app_name: str = Field(default="watchrun")
    app_version: str = Field(default=__version__)

    watch: WatchSettings
    supervisor: SupervisorSettings
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
