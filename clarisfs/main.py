"""Command-line entry point."""

from __future__ import annotations

import logging
import os
import signal
import sys
from pathlib import Path
from typing import Sequence

from .cli import (
    PROG,
    Cli,
    HistoryCommand,
    InitCommand,
    MountCommand,
    RestoreCommand,
    parse_args,
)
from .errors import FsError
from .fuse_session import unmount
from .passthrough import PassthroughFS
from .storage import DB_FILENAME, init_storage, is_valid_storage

log = logging.getLogger(__name__)

LOG_ENV_VAR = "CLARISFS_LOG"
"""Environment variable that, when set, overrides the log level."""

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 1,
}


class _CommandError(Exception):
    """A command failed; the message is shown to the user."""


def _configure_logging(log_level: str | None) -> None:
    name = os.environ.get(LOG_ENV_VAR) or log_level or "info"
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(_LEVELS.get(name.strip().lower(), logging.INFO))


def _init(command: InitCommand) -> None:
    directory = command.directory
    log.info("Initializing directory %s for version control", directory)
    if not directory.exists():
        log.error("Directory does not exist: %s", directory)
        raise _CommandError("Directory does not exist")
    if not directory.is_dir():
        log.error("Path is not a directory: %s", directory)
        raise _CommandError("Path is not a directory")
    try:
        init_storage(directory)
    except OSError as exc:
        raise _CommandError(f"Failed to initialize storage in {directory}: {exc}") from exc
    print("Successfully initialized directory for version control")
    print("You can now mount the filesystem with:")
    print(f"{PROG} mount {directory} <mountpoint>")


def _install_unmount_handler(mount_point: Path) -> None:
    def handler(signum: int, frame: object) -> None:
        log.info("Received interrupt signal, unmounting filesystem")
        try:
            if unmount(mount_point):
                log.info("Successfully unmounted filesystem")
        except OSError as exc:
            log.error("Failed to execute unmount command: %s", exc)
        raise SystemExit(0)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, handler)


def _mount(command: MountCommand, unmount_on_exit: bool) -> None:
    source, mountpoint = command.source_dir, command.mountpoint
    log.info(
        "Mounting filesystem from %s to mount point %s%s",
        source, mountpoint, " (read-only)" if command.read_only else "",
    )
    if not is_valid_storage(source):
        log.error("Directory %s has not been initialized for version control", source)
        log.error("Run '%s init %s' first", PROG, source)
        raise _CommandError("Directory not initialized")
    try:
        fs = PassthroughFS(source / DB_FILENAME, mountpoint, read_only=command.read_only)
    except FsError as exc:
        raise _CommandError(str(exc)) from exc
    if unmount_on_exit:
        log.info("Will unmount filesystem on exit")
        _install_unmount_handler(mountpoint)
    try:
        fs.mount()
    except OSError as exc:
        raise _CommandError(str(exc)) from exc


def _history(command: HistoryCommand) -> None:
    log.info("Viewing history for file %s", command.file_path)
    print("File history viewing is not available in this version")
    if command.verbose:
        print("Verbose mode enabled")
    if command.limit is not None:
        print(f"Showing up to {command.limit} versions")


def _restore(command: RestoreCommand) -> None:
    log.info("Restoring file %s to version %d", command.file_path, command.version)
    print("File restoration is not available in this version")
    if command.force:
        print("Force mode enabled, skipping confirmation")


def _run(cli: Cli) -> None:
    match cli.command:
        case InitCommand() as command:
            _init(command)
        case MountCommand() as command:
            _mount(command, cli.unmount_on_exit)
        case HistoryCommand() as command:
            _history(command)
        case RestoreCommand() as command:
            _restore(command)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line and return the exit status."""
    cli = parse_args(argv)
    _configure_logging(cli.log_level)
    try:
        _run(cli)
    except _CommandError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())