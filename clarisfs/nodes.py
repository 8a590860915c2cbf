"""Low-level helpers for creating, truncating and re-timing files in a source tree."""

from __future__ import annotations

import errno
import os
import stat
import sys
import time
from dataclasses import dataclass

from .fuse_session import TIME_NOW

PathLike = str | os.PathLike


@dataclass(frozen=True)
class Now:
    """Marks a timestamp that is to be set to the current time."""


NOW = Now()
"""The shared marker for "the current time"."""


def _is_now(value: object) -> bool:
    return value is Now or isinstance(value, Now) or value == TIME_NOW


def truncate(path: PathLike, size: int, fd: int | None = None) -> None:
    """Set the length of a file, through ``fd`` when one is given."""
    if fd is not None:
        os.ftruncate(fd, size)
        return
    handle = os.open(path, os.O_WRONLY)
    try:
        os.ftruncate(handle, size)
    finally:
        os.close(handle)


def _resolve_ns(value: object, current: int, now: int) -> int:
    if value is None:
        return current
    if _is_now(value):
        return now
    if not isinstance(value, int):
        raise TypeError(f"timestamp must be None, Now or nanoseconds, not {value!r}")
    # Times before the epoch are clamped to it.
    return max(value, 0)


def set_times(path: PathLike, atime: object = None, mtime: object = None) -> None:
    """Set the access and modification times of ``path``.

    Each time is None (left as it is), :class:`Now` or :data:`TIME_NOW`
    (the current time), or nanoseconds since the epoch.
    """
    if atime is None and mtime is None:
        return
    try:
        if _is_now(atime) and _is_now(mtime):
            os.utime(path)
            return
        st = os.stat(path)
        now = time.time_ns()
        os.utime(
            path,
            ns=(
                _resolve_ns(atime, st.st_atime_ns, now),
                _resolve_ns(mtime, st.st_mtime_ns, now),
            ),
        )
    except ValueError as exc:
        raise OSError(errno.EINVAL, "path contains null bytes", os.fspath(path)) from exc


def _create_regular(path: PathLike, perm: int) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o666)
    try:
        try:
            os.fchmod(fd, perm)
        except OSError:
            pass
    finally:
        os.close(fd)


def make_node(path: PathLike, mode: int, rdev: int = 0, umask: int = 0) -> None:
    """Create a regular file, FIFO or device node at ``path``.

    The file type is taken from ``mode`` and the permissions from ``mode``
    with ``umask`` applied.  Failures other than those of creating a regular
    file are reported as ``EACCES``.
    """
    perm = mode & ~umask & 0o777
    if mode & stat.S_IFREG:
        _create_regular(path, perm)
    elif mode & stat.S_IFIFO:
        try:
            os.mkfifo(path, perm)
        except OSError as exc:
            raise OSError(errno.EACCES, f"failed to create FIFO: {exc}", os.fspath(path)) from exc
    elif mode & (stat.S_IFCHR | stat.S_IFBLK):
        if not sys.platform.startswith("linux"):
            raise OSError(
                errno.EACCES,
                "Device creation not supported on this platform",
                os.fspath(path),
            )
        file_type = stat.S_IFCHR if mode & stat.S_IFCHR else stat.S_IFBLK
        device = os.makedev(rdev >> 8, rdev & 0xFF)
        try:
            os.mknod(path, file_type | perm, device)
        except OSError as exc:
            raise OSError(errno.EACCES, f"failed to create device: {exc}", os.fspath(path)) from exc
    else:
        raise OSError(errno.EACCES, "Unsupported file type", os.fspath(path))


def open_options(flags: int, create: bool = False) -> int:
    """Turn the flags of an open or create request into flags for ``os.open``.

    With ``create`` the file is always opened for writing and created if
    missing; otherwise ``O_CREAT`` is honoured only with write access.
    """
    append = bool(flags & os.O_APPEND)
    access = flags & os.O_ACCMODE
    if create:
        creating = True
        write = True
        read = access != os.O_WRONLY
    else:
        creating = bool(flags & os.O_CREAT)
        read = access in (os.O_RDWR, os.O_RDONLY) or access not in (os.O_WRONLY,)
        write = access in (os.O_RDWR, os.O_WRONLY)
        if access == os.O_WRONLY:
            read = False
    writes = write or append
    if creating and not writes:
        raise OSError(errno.EINVAL, "creating a file requires write access")
    if read and writes:
        result = os.O_RDWR
    elif writes:
        result = os.O_WRONLY
    else:
        result = os.O_RDONLY
    if append:
        result |= os.O_APPEND
    if creating:
        result |= os.O_CREAT
    return result