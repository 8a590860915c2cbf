"""Command-line interface definition."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence, Union

PROG = "clarisfs"
_VERSION = "0.1.0"


def version() -> str:
    """Return the package version."""
    return _VERSION


@dataclass(frozen=True)
class InitCommand:
    """Initialise a directory for version control."""

    directory: Path


@dataclass(frozen=True)
class MountCommand:
    """Mount a source directory at a mount point."""

    source_dir: Path
    mountpoint: Path
    read_only: bool = False


@dataclass(frozen=True)
class HistoryCommand:
    """Show the version history of a file."""

    file_path: Path
    limit: int | None = None
    verbose: bool = False


@dataclass(frozen=True)
class RestoreCommand:
    """Restore a file to an earlier version."""

    file_path: Path
    version: int
    force: bool = False


Command = Union[InitCommand, MountCommand, HistoryCommand, RestoreCommand]


@dataclass(frozen=True)
class Cli:
    """Parsed command line: global options and one sub-command."""

    command: Command
    log_level: str | None = None
    unmount_on_exit: bool = False


def _count(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {text!r}")
    return value


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the command line."""
    parser = argparse.ArgumentParser(
        prog=PROG, description="Version-controlled passthrough filesystem"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {version()}")
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="log level (trace, debug, info, warn, error)",
    )
    parser.add_argument(
        "--unmount-on-exit", action="store_true", help="unmount filesystems on exit"
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    init = sub.add_parser(
        "init", help="initialise a directory for version control (creates its database)"
    )
    init.add_argument("directory", metavar="DIRECTORY", type=Path)
    init.set_defaults(build=lambda ns: InitCommand(ns.directory))

    mount = sub.add_parser("mount", help="mount a filesystem with version control")
    mount.add_argument("source_dir", metavar="SOURCE_DIR", type=Path)
    mount.add_argument("mountpoint", metavar="MOUNTPOINT", type=Path)
    mount.add_argument("--read-only", action="store_true", help="mount read-only")
    mount.set_defaults(
        build=lambda ns: MountCommand(ns.source_dir, ns.mountpoint, ns.read_only)
    )

    history = sub.add_parser("history", help="view version history of a file")
    history.add_argument("file_path", metavar="FILE_PATH", type=Path)
    history.add_argument(
        "--limit", type=_count, help="number of versions to show (default: all)"
    )
    history.add_argument("--verbose", action="store_true", help="show details")
    history.set_defaults(
        build=lambda ns: HistoryCommand(ns.file_path, ns.limit, ns.verbose)
    )

    restore = sub.add_parser("restore", help="restore a file to a previous version")
    restore.add_argument("file_path", metavar="FILE_PATH", type=Path)
    restore.add_argument(
        "--version", type=_count, required=True, help="version to restore to"
    )
    restore.add_argument(
        "--force", action="store_true", help="don't prompt for confirmation"
    )
    restore.set_defaults(
        build=lambda ns: RestoreCommand(ns.file_path, ns.version, ns.force)
    )
    return parser


def parse_args(argv: Sequence[str] | None = None) -> Cli:
    """Parse command-line arguments (without the program name)."""
    ns = build_parser().parse_args(argv)
    return Cli(
        command=ns.build(ns),
        log_level=ns.log_level,
        unmount_on_exit=ns.unmount_on_exit,
    )