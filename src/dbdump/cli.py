from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import NoReturn, Optional, Sequence

from . import __version__
from .config import ConfigurationError, build_dump_settings, build_restore_settings, load_defaults
from .engines import create_engine
from .logger import configure_logging
from .orchestrator import BackupOrchestrator
from .transfer import build_transfer

COMMANDS_EPILOG = """\
Available commands:
  dump       Dump one or more databases
  restore    Restore a database from a dump file
  -v         Print the version number and exit

Use `dbdump <command> --help` for more information about a specific command.
"""


class UsageError(Exception):
    pass


class _Parser(argparse.ArgumentParser):
    """Argument parser that reports usage on stdout and exits with status 1."""

    def error(self, message: str) -> NoReturn:
        print(f"Error: {message}\n")
        self.print_help(sys.stdout)
        self.exit(1)


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "t", "true", "yes", "y"):
        return True
    if lowered in ("0", "f", "false", "no", "n"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value '{value}'")


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--help", action="help", help="Show this message and exit.")
    parser.add_argument("-h", dest="host", help="PostgreSQL host (default 127.0.0.1).")
    parser.add_argument("-p", dest="port", type=int, help="PostgreSQL port (default 5432).")
    parser.add_argument("-U", dest="user", help="PostgreSQL user (default postgres).")
    parser.add_argument("-W", dest="password", help="PostgreSQL password (required).")
    parser.add_argument("-t", dest="engine", help="Database type (default postgres).")
    parser.add_argument("--config", type=Path, help="YAML file with connection defaults (or DBDUMP_CONFIG).")
    parser.add_argument(
        "--work-dir",
        type=Path,
        help="Directory for log and dump files (default: current directory).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="dbdump",
        usage="dbdump <command> [arguments]",
        description="Back up and restore databases in parallel.",
        epilog=COMMANDS_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument("--help", action="help", help="Show this message and exit.")
    parser.add_argument("-v", dest="version", action="store_true", help="Print the version number and exit.")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Diagnostic log level (default INFO).",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    dump_parser = subparsers.add_parser("dump", help="Dump one or more databases", add_help=False)
    _add_common_arguments(dump_parser)
    dump_parser.add_argument(
        "-e",
        dest="environment",
        help="Target environment tag used in file names, e.g. prod or staging (default staging).",
    )
    dump_parser.add_argument(
        "-a",
        dest="backup_all",
        action="store_true",
        help="Back up all non-template databases.",
    )
    dump_parser.add_argument(
        "-d",
        dest="databases",
        action="append",
        help="Database to back up (can be specified multiple times).",
    )
    dump_parser.add_argument(
        "-l",
        dest="local_only",
        action="store_true",
        help="Keep the dump locally and skip the S3 upload.",
    )
    dump_parser.add_argument(
        "--max-parallel",
        type=int,
        help="Upper bound on concurrent dump jobs (default: one per database).",
    )
    dump_parser.set_defaults(handler=run_dump, command_parser=dump_parser)

    restore_parser = subparsers.add_parser("restore", help="Restore a database from a dump file", add_help=False)
    _add_common_arguments(restore_parser)
    restore_parser.add_argument("-d", dest="database", help="Name of the database to restore (required).")
    restore_parser.add_argument(
        "-f",
        dest="source",
        help="S3 URI of the dump, or a local path when -s false (required).",
    )
    restore_parser.add_argument(
        "-n",
        dest="jobs",
        type=int,
        help="Number of parallel restore processes (default 2).",
    )
    restore_parser.add_argument(
        "-s",
        dest="from_remote",
        type=parse_bool,
        nargs="?",
        const=True,
        help="Download the dump from S3 first (default true; use -s false for a local file).",
    )
    restore_parser.set_defaults(handler=run_restore, command_parser=restore_parser)

    return parser


def run_dump(args: argparse.Namespace) -> int:
    settings = _settings(build_dump_settings, args)

    engine = create_engine(settings.engine, settings.connection)
    transfer = build_transfer(enabled=not settings.local_only)
    orchestrator = BackupOrchestrator(
        engine=engine,
        transfer=transfer,
        work_dir=settings.work_dir,
        max_parallel=settings.max_parallel,
    )
    targets = orchestrator.resolve_targets(settings.backup_all, settings.databases)

    print("\nInitializing backup process in background...")
    for target in targets:
        print(f"-> Spawning backup task for '{target}'.")
    print("\nAll backup processes have been started. Waiting for them to complete...")
    orchestrator.run_dump(targets, environment=settings.environment, local_only=settings.local_only)
    print("Check the 'backup_log_*.log' files for progress and results.")
    return 0


def run_restore(args: argparse.Namespace) -> int:
    settings = _settings(build_restore_settings, args)

    transfer = build_transfer(enabled=settings.from_remote, require_bucket=False)
    engine = create_engine(settings.engine, settings.connection, restore_jobs=settings.jobs)
    orchestrator = BackupOrchestrator(engine=engine, transfer=transfer, work_dir=settings.work_dir)
    targets = orchestrator.resolve_targets(False, [settings.database])

    print("\nInitializing restore process in background...")
    print(f"-> Spawning restore task for '{settings.database}'.")
    print("\nAll restore processes have been started. Waiting for them to complete...")
    orchestrator.run_restore(targets, source=settings.source, from_remote=settings.from_remote)
    print("Check the 'restore_log_*.log' file for progress and results.")
    return 0


def _settings(builder, args: argparse.Namespace):
    defaults = load_defaults(args.config)
    try:
        return builder(vars(args), defaults)
    except ConfigurationError as exc:
        raise UsageError(str(exc)) from exc


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    if not argv:
        parser.print_help(sys.stdout)
        return 1

    args = parser.parse_args(argv)
    if args.version:
        print(f"dbdump version {__version__}")
        return 0
    if not args.command:
        parser.print_help(sys.stdout)
        return 1

    configure_logging(args.log_level)
    try:
        return args.handler(args)
    except UsageError as exc:
        print(f"Error: {exc}\n")
        args.command_parser.print_help(sys.stdout)
        return 1
    except ConfigurationError as exc:
        print(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
