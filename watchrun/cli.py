"""
watchrun Command Line Interface.

Usage:
    watchrun [options] <path>... -- <executable> [<argument>...]

Everything before ``--`` is a watched path or an option; everything after
it is the command, passed to the operating system verbatim.
Requires Python 3.11+.
"""

import argparse
import sys

from pydantic import ValidationError

from watchrun import __version__
from watchrun.orchestrator import Orchestrator
from watchrun.utils.config import (
    GRACEFUL_SIGNALS,
    BusyPolicy,
    LoggingSettings,
    Settings,
    SupervisorSettings,
    WatchSettings,
)
from watchrun.utils.errors import StartupError
from watchrun.utils.logger import configure_logging


EXIT_USAGE = 2

SEPARATOR = "--"


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the options and paths before ``--``."""
    parser = argparse.ArgumentParser(
        prog="watchrun",
        usage="%(prog)s [options] <path>... -- <executable> [<argument>...]",
        description="Run a command and restart it whenever a watched path changes.",
    )
    parser.add_argument("paths", nargs="*", help="Files or directories to watch (recursively)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every raw event and restart decision",
    )
    parser.add_argument(
        "-d",
        "--debounce",
        type=int,
        default=100,
        metavar="MS",
        help="Quiet time after the last change before restarting (default: 100)",
    )
    parser.add_argument(
        "-g",
        "--grace-period",
        type=float,
        default=5.0,
        metavar="SECONDS",
        help="Time the command gets to exit before it is killed (default: 5)",
    )
    parser.add_argument(
        "-s",
        "--signal",
        choices=GRACEFUL_SIGNALS,
        default="SIGTERM",
        type=str.upper,
        help="Signal used to ask the command to stop (default: SIGTERM)",
    )
    parser.add_argument(
        "--on-busy-update",
        choices=[policy.value for policy in BusyPolicy],
        default=BusyPolicy.RESTART.value,
        help="What to do on a change while the command is still running (default: restart)",
    )
    parser.add_argument(
        "-i",
        "--ignore",
        action="append",
        default=[],
        metavar="GLOB",
        help="Ignore paths matching the glob (repeatable)",
    )
    parser.add_argument(
        "-e",
        "--exts",
        action="append",
        default=[],
        metavar="EXT[,EXT...]",
        help="Only react to files with these extensions (repeatable)",
    )
    parser.add_argument(
        "--no-default-ignore",
        action="store_true",
        help="Do not use the default ignore globs",
    )
    parser.add_argument(
        "--no-project-ignore",
        action="store_true",
        help="Do not load the project .gitignore",
    )
    parser.add_argument(
        "--no-global-ignore",
        action="store_true",
        help="Do not load git's global excludes file",
    )
    parser.add_argument(
        "-L",
        "--clear",
        action="store_true",
        help="Clear the screen before each run",
    )
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        default="console",
        help="Format of watchrun's own log output on stderr (default: console)",
    )
    return parser


def parse_args(argv: list[str]) -> argparse.Namespace:
    """
    Split *argv* at ``--`` and parse the option half.

    Raises:
        StartupError: The separator, the paths or the command is missing
    """
    if SEPARATOR in argv:
        index = argv.index(SEPARATOR)
        options, command = argv[:index], argv[index + 1 :]
    else:
        options, command = argv, None

    # --help and --version exit here, before the separator is required
    args = build_parser().parse_intermixed_args(options)

    if command is None:
        raise StartupError(f"missing '{SEPARATOR}' between the watched paths and the command")
    if not args.paths:
        raise StartupError("at least one path to watch is required")
    if not command:
        raise StartupError(f"a command to run is required after '{SEPARATOR}'")

    args.command = command
    return args


def _format_validation_error(error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        message = str(item["msg"]).removeprefix("Value error, ")
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)


def build_settings(args: argparse.Namespace) -> Settings:
    """
    Validate parsed arguments into settings.

    Raises:
        StartupError: A value is out of range or a path does not exist
    """
    try:
        return Settings(
            watch=WatchSettings(
                paths=args.paths,
                debounce_ms=args.debounce,
                ignore_globs=tuple(args.ignore),
                extensions=args.exts,
                use_default_ignore=not args.no_default_ignore,
                use_project_ignore=not args.no_project_ignore,
                use_global_ignore=not args.no_global_ignore,
            ),
            supervisor=SupervisorSettings(
                command=args.command,
                grace_period=args.grace_period,
                signal=args.signal,
                busy_policy=BusyPolicy(args.on_busy_update),
                clear=args.clear,
            ),
            logging=LoggingSettings(
                level="DEBUG" if args.verbose else "INFO",
                format=args.log_format,
            ),
        )
    except ValidationError as e:
        raise StartupError(_format_validation_error(e)) from e


def main(argv: list[str] | None = None) -> int:
    """
    Entry point of the ``watchrun`` command.

    Returns:
        Process exit status
    """
    argv = sys.argv[1:] if argv is None else argv
    try:
        settings = build_settings(parse_args(argv))
    except StartupError as e:
        print(f"watchrun: error: {e}", file=sys.stderr)
        return EXIT_USAGE

    configure_logging(settings.logging, settings.app_name, settings.app_version)
    orchestrator = Orchestrator.from_settings(settings)
    return orchestrator.run()


if __name__ == "__main__":
    sys.exit(main())
