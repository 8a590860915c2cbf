"""Errors raised by filesystem operations, each carrying its errno code."""

from __future__ import annotations

import errno
import os
from pathlib import Path


class FsError(Exception):
    """Base class of all filesystem operation errors."""

    error_code: int = errno.EIO


class FsIoError(FsError):
    """An operating-system error with no more specific meaning."""

    def __init__(self, error: OSError) -> None:
        super().__init__(f"I/O error: {error}")
        self.error = error

    @property
    def error_code(self) -> int:  # type: ignore[override]
        return self.error.errno or errno.EIO


class _PathError(FsError):
    _template = "{}"

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        super().__init__(self._template.format(self.path))


class InvalidPathError(_PathError):
    """The path cannot be used."""

    _template = "Invalid path: {}"
    error_code = errno.EINVAL


class PathNotFoundError(_PathError):
    """The path does not exist."""

    _template = "Path not found: {}"
    error_code = errno.ENOENT


class PermissionDeniedError(_PathError):
    """Access to the path was refused."""

    _template = "Permission denied for path: {}"
    error_code = errno.EACCES


class PathExistsError(_PathError):
    """The path is already present."""

    _template = "Path already exists: {}"
    error_code = errno.EEXIST


class InvalidFileTypeError(_PathError):
    """The path is of the wrong file type for the operation."""

    _template = "Invalid file type for path: {}"
    error_code = errno.EINVAL


class InodeAllocationError(_PathError):
    """No inode could be assigned to the path."""

    _template = "Failed to allocate inode for path: {}"
    error_code = errno.ENOMEM


class PathConversionError(_PathError):
    """The path could not be converted."""

    _template = "Failed to convert path: {}"
    error_code = errno.EINVAL


class ReadOnlyFsError(FsError):
    """A modifying operation on a read-only mount."""

    error_code = errno.EROFS

    def __init__(self) -> None:
        super().__init__("Invalid operation in read-only mode")


class DbInsideMountPointError(FsError):
    """The database file lies inside the mount point."""

    error_code = errno.EINVAL

    def __init__(self) -> None:
        super().__init__("Database file cannot be inside mount point")


class InodeNotFoundError(FsError):
    """No path is known for the inode."""

    error_code = errno.ENOENT

    def __init__(self, ino: int) -> None:
        super().__init__(f"Inode {ino} not found")
        self.ino = ino


class OperationNotSupportedError(FsError):
    """The requested operation is not supported."""

    error_code = errno.ENOSYS

    def __init__(self, operation: str) -> None:
        super().__init__(f"Operation not supported: {operation}")
        self.operation = operation


class InternalError(FsError):
    """An unexpected internal failure."""

    error_code = errno.EIO

    def __init__(self, detail: str) -> None:
        super().__init__(f"Internal error: {detail}")
        self.detail = detail


def from_os_error(error: OSError, path: str | os.PathLike[str]) -> FsError:
    """Turn an OSError into the most specific FsError for the given path."""
    if isinstance(error, FileNotFoundError):
        return PathNotFoundError(path)
    if isinstance(error, PermissionError):
        return PermissionDeniedError(path)
    if isinstance(error, FileExistsError):
        return PathExistsError(path)
    return FsIoError(error)