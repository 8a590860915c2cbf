"""A FUSE session: mounting through fusermount and the kernel wire protocol.

The session decodes kernel requests and calls methods of an operations
object, encoding what they return as replies.  The operations object is
called as follows; a missing method answers ``ENOSYS``:

* ``lookup(parent, name)``, ``getattr(ino)``, ``mknod(parent, name, mode,
  rdev, umask)``, ``mkdir(parent, name, mode, umask)`` and
  ``setattr(ino, mode, uid, gid, size, atime, mtime, fh)`` return a
  :class:`~clarisfs.attrs.FileAttr`.  ``atime`` and ``mtime`` are ``None``,
  :data:`TIME_NOW` or nanoseconds since the epoch.
* ``unlink``, ``rmdir``, ``rename(parent, name, newparent, newname)``,
  ``flush(ino, fh)`` and ``release(ino, fh)`` return nothing.
* ``open(ino, flags)`` returns ``(fh, open_flags)``.
* ``create(parent, name, mode, flags, umask)`` returns
  ``(attr, fh, open_flags)``.
* ``read(ino, fh, offset, size)`` returns bytes and
  ``write(ino, fh, offset, data)`` the number of bytes written.
* ``readdir(ino, offset)`` returns entries with ``ino``, ``offset``,
  ``kind`` and ``name`` attributes.

Errors are reported by raising :class:`~clarisfs.errors.FsError` or
:class:`OSError`.
"""

from __future__ import annotations

import enum
import errno
import logging
import os
import shutil
import socket
import stat
import struct
import subprocess
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from .attrs import FileAttr, FileType
from .errors import FsError

log = logging.getLogger(__name__)

KERNEL_VERSION = 7
"""Major version of the FUSE protocol spoken."""
KERNEL_MINOR_VERSION = 31
"""Highest minor version of the FUSE protocol spoken."""
MIN_KERNEL_MINOR_VERSION = 12
"""Lowest minor version of the FUSE protocol accepted from the kernel."""
MAX_WRITE = 128 * 1024
"""Largest write the kernel is told to send in one request."""
TTL_SECONDS = 1
"""How long the kernel may cache entries and attributes."""
FOPEN_DIRECT_IO = 1
"""Open flag asking the kernel to bypass its page cache."""
TIME_NOW = "now"
"""Stands for "the current time" in a setattr request."""

_BUFFER_SIZE = MAX_WRITE + 4096

_FUSE_ASYNC_READ = 1 << 0
_FUSE_BIG_WRITES = 1 << 5
_SUPPORTED_INIT_FLAGS = _FUSE_ASYNC_READ | _FUSE_BIG_WRITES
_COMPAT_22_INIT_OUT_SIZE = 24


class Opcode(enum.IntEnum):
    """Request opcodes of the FUSE protocol."""

    LOOKUP = 1
    FORGET = 2
    GETATTR = 3
    SETATTR = 4
    READLINK = 5
    SYMLINK = 6
    MKNOD = 8
    MKDIR = 9
    UNLINK = 10
    RMDIR = 11
    RENAME = 12
    LINK = 13
    OPEN = 14
    READ = 15
    WRITE = 16
    STATFS = 17
    RELEASE = 18
    FSYNC = 20
    SETXATTR = 21
    GETXATTR = 22
    LISTXATTR = 23
    REMOVEXATTR = 24
    FLUSH = 25
    INIT = 26
    OPENDIR = 27
    READDIR = 28
    RELEASEDIR = 29
    FSYNCDIR = 30
    GETLK = 31
    SETLK = 32
    SETLKW = 33
    ACCESS = 34
    CREATE = 35
    INTERRUPT = 36
    BMAP = 37
    DESTROY = 38
    IOCTL = 39
    POLL = 40
    NOTIFY_REPLY = 41
    BATCH_FORGET = 42
    FALLOCATE = 43
    READDIRPLUS = 44
    RENAME2 = 45
    LSEEK = 46
    COPY_FILE_RANGE = 47


class SetattrValid(enum.IntFlag):
    """Which fields of a setattr request are set."""

    MODE = 1 << 0
    UID = 1 << 1
    GID = 1 << 2
    SIZE = 1 << 3
    ATIME = 1 << 4
    MTIME = 1 << 5
    FH = 1 << 6
    ATIME_NOW = 1 << 7
    MTIME_NOW = 1 << 8
    LOCKOWNER = 1 << 9
    CTIME = 1 << 10


_NO_REPLY = frozenset(
    {Opcode.FORGET, Opcode.BATCH_FORGET, Opcode.INTERRUPT, Opcode.NOTIFY_REPLY}
)

_IN_HEADER = struct.Struct("<IIQQIIIHH")
_OUT_HEADER = struct.Struct("<IiQ")
_ATTR = struct.Struct("<QQQqqqIIIIIIIIII")
_ENTRY_OUT_HEAD = struct.Struct("<QQQQII")
_ATTR_OUT_HEAD = struct.Struct("<QII")
_INIT_IN = struct.Struct("<IIII")
_INIT_OUT = struct.Struct("<IIIIHHIIHHI28x")
_VERSION_ONLY = struct.Struct("<II")
_SETATTR_IN = struct.Struct("<IIQQQQQQIIIIIIII")
_MKNOD_IN = struct.Struct("<IIII")
_MKDIR_IN = struct.Struct("<II")
_RENAME_IN = struct.Struct("<Q")
_RENAME2_IN = struct.Struct("<QII")
_OPEN_IN = struct.Struct("<II")
_OPEN_OUT = struct.Struct("<QII")
_READ_IN = struct.Struct("<QqIIQII")
_WRITE_IN = struct.Struct("<QqIIQII")
_WRITE_OUT = struct.Struct("<II")
_RELEASE_IN = struct.Struct("<QIIQ")
_FLUSH_IN = struct.Struct("<QIIQ")
_CREATE_IN = struct.Struct("<IIII")
_DIRENT_HEAD = struct.Struct("<QQII")
_STATFS_OUT = struct.Struct("<QQQQQIIII24x")

_MODE_BITS = {
    FileType.DIRECTORY: stat.S_IFDIR,
    FileType.REGULAR_FILE: stat.S_IFREG,
    FileType.SYMLINK: stat.S_IFLNK,
}


def _names(data: bytes, count: int) -> list[str]:
    parts = data.split(b"\0")
    if len(parts) <= count:
        raise OSError(errno.EINVAL, "malformed name in request")
    return [os.fsdecode(part) for part in parts[:count]]


def _encode_attr(attr: FileAttr) -> bytes:
    return _ATTR.pack(
        attr.ino,
        attr.size,
        attr.blocks,
        attr.atime,
        attr.mtime,
        attr.ctime,
        0,
        0,
        0,
        _MODE_BITS[attr.kind] | attr.perm,
        attr.nlink,
        attr.uid,
        attr.gid,
        attr.rdev,
        attr.blksize,
        attr.flags,
    )


def _entry_out(attr: FileAttr) -> bytes:
    head = _ENTRY_OUT_HEAD.pack(attr.ino, 0, TTL_SECONDS, TTL_SECONDS, 0, 0)
    return head + _encode_attr(attr)


def _attr_out(attr: FileAttr) -> bytes:
    return _ATTR_OUT_HEAD.pack(TTL_SECONDS, 0, 0) + _encode_attr(attr)


def _pack_dirents(entries: Iterable[Any], size: int) -> bytes:
    out = bytearray()
    for entry in entries:
        name = os.fsencode(entry.name)
        record = _DIRENT_HEAD.pack(
            entry.ino, entry.offset, len(name), _MODE_BITS[entry.kind] >> 12
        ) + name
        record += b"\0" * (-len(record) % 8)
        if len(out) + len(record) > size:
            break
        out += record
    return bytes(out)


def _time_arg(valid: int, set_bit: int, now_bit: int, sec: int, nsec: int):
    if valid & now_bit:
        return TIME_NOW
    if valid & set_bit:
        return sec * 1_000_000_000 + nsec
    return None


def _fusermount() -> str:
    return shutil.which("fusermount3") or shutil.which("fusermount") or "fusermount"


def unmount(mount_point: str | os.PathLike[str]) -> bool:
    """Unmount ``mount_point`` with fusermount; True if it succeeded."""
    result = subprocess.run([_fusermount(), "-u", str(mount_point)], check=False)
    if result.returncode != 0:
        log.error("Failed to unmount %s, exit code: %d", mount_point, result.returncode)
    return result.returncode == 0


class FuseSession:
    """Connection between the kernel and an operations object for one mount."""

    def __init__(
        self,
        operations: Any,
        mount_point: str | os.PathLike[str],
        options: Sequence[str] = (),
    ) -> None:
        self.operations = operations
        self.mount_point = Path(mount_point)
        self.options = list(options)
        self._fd: int | None = None
        self._initialized = False
        self._destroyed = False
        self._proto_minor = 0
        self._handlers: dict[Opcode, Callable[[int, bytes], bytes]] = {
            Opcode.INIT: self._init,
            Opcode.DESTROY: self._destroy,
            Opcode.LOOKUP: self._lookup,
            Opcode.GETATTR: self._getattr,
            Opcode.SETATTR: self._setattr,
            Opcode.MKNOD: self._mknod,
            Opcode.MKDIR: self._mkdir,
            Opcode.UNLINK: self._unlink,
            Opcode.RMDIR: self._rmdir,
            Opcode.RENAME: self._rename,
            Opcode.RENAME2: self._rename2,
            Opcode.OPEN: self._open,
            Opcode.READ: self._read,
            Opcode.WRITE: self._write,
            Opcode.STATFS: self._statfs,
            Opcode.RELEASE: self._release,
            Opcode.FLUSH: self._flush,
            Opcode.OPENDIR: self._opendir,
            Opcode.READDIR: self._readdir,
            Opcode.RELEASEDIR: self._releasedir,
            Opcode.CREATE: self._create,
        }

    def __enter__(self) -> FuseSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _mount(self) -> None:
        parent_sock, child_sock = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
        with parent_sock, child_sock:
            env = dict(os.environ, _FUSE_COMMFD=str(child_sock.fileno()))
            cmd = [_fusermount()]
            if self.options:
                cmd += ["-o", ",".join(self.options)]
            cmd += ["--", str(self.mount_point)]
            proc = subprocess.Popen(cmd, env=env, pass_fds=(child_sock.fileno(),))
            child_sock.close()
            try:
                _, fds, _, _ = socket.recv_fds(parent_sock, 1, 1)
            finally:
                status = proc.wait()
        if not fds:
            raise OSError(
                errno.EIO,
                f"fusermount failed with exit status {status}",
                str(self.mount_point),
            )
        self._fd = fds[0]
        log.info("Mounted filesystem at %s", self.mount_point)

    def run(self) -> None:
        """Mount if needed and serve requests until the filesystem is unmounted."""
        if self._fd is None:
            self._mount()
        try:
            while not self._destroyed and self._fd is not None:
                try:
                    data = os.read(self._fd, _BUFFER_SIZE)
                except OSError as exc:
                    if exc.errno in (errno.ENOENT, errno.EINTR, errno.EAGAIN):
                        continue
                    if exc.errno == errno.ENODEV:
                        break
                    raise
                if not data:
                    break
                try:
                    reply = self.handle(data)
                except ValueError as exc:
                    log.warning("Dropping malformed request: %s", exc)
                    continue
                if reply is not None:
                    self._send(reply)
        finally:
            self.close()

    def _send(self, reply: bytes) -> None:
        assert self._fd is not None
        try:
            os.write(self._fd, reply)
        except OSError as exc:
            # The request was interrupted and is no longer waited for.
            if exc.errno != errno.ENOENT:
                raise

    def close(self) -> None:
        """Close the connection to the kernel."""
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def handle(self, message: bytes) -> bytes | None:
        """Answer one raw kernel request; None where no reply is due."""
        if len(message) < _IN_HEADER.size:
            raise ValueError("short FUSE request")
        length, opcode, unique, nodeid, *_ = _IN_HEADER.unpack_from(message)
        body = bytes(message[_IN_HEADER.size : length])
        try:
            op = Opcode(opcode)
        except ValueError:
            log.warning("Unknown FUSE opcode %d", opcode)
            return self._reply(unique, error=errno.ENOSYS)
        if op in _NO_REPLY:
            return None
        if not self._initialized and op is not Opcode.INIT:
            log.warning("Request %s before INIT", op.name)
            return self._reply(unique, error=errno.EIO)
        handler = self._handlers.get(op)
        if handler is None:
            log.debug("Unsupported FUSE operation %s", op.name)
            return self._reply(unique, error=errno.ENOSYS)
        try:
            payload = handler(nodeid, body)
        except FsError as exc:
            return self._reply(unique, error=exc.error_code)
        except OSError as exc:
            return self._reply(unique, error=exc.errno or errno.EIO)
        except struct.error:
            return self._reply(unique, error=errno.EINVAL)
        return self._reply(unique, payload)

    @staticmethod
    def _reply(unique: int, payload: bytes = b"", error: int = 0) -> bytes:
        if error:
            return _OUT_HEADER.pack(_OUT_HEADER.size, -error, unique)
        return _OUT_HEADER.pack(_OUT_HEADER.size + len(payload), 0, unique) + payload

    def _call(self, name: str, *args: Any) -> Any:
        method = getattr(self.operations, name, None)
        if method is None:
            raise OSError(errno.ENOSYS, f"operation {name} not supported")
        return method(*args)

    def _init(self, nodeid: int, body: bytes) -> bytes:
        major, minor, max_readahead, flags = _INIT_IN.unpack_from(body)
        log.debug("INIT kernel protocol %d.%d", major, minor)
        if major < KERNEL_VERSION:
            raise OSError(errno.EPROTO, f"unsupported FUSE protocol {major}.{minor}")
        if major > KERNEL_VERSION:
            # The kernel retries with the version we reply.
            return _VERSION_ONLY.pack(KERNEL_VERSION, KERNEL_MINOR_VERSION)
        if minor < MIN_KERNEL_MINOR_VERSION:
            raise OSError(errno.EPROTO, f"unsupported FUSE protocol {major}.{minor}")
        self._proto_minor = minor
        self._initialized = True
        out = _INIT_OUT.pack(
            KERNEL_VERSION,
            KERNEL_MINOR_VERSION,
            max_readahead,
            flags & _SUPPORTED_INIT_FLAGS,
            16,
            12,
            MAX_WRITE,
            1,
            0,
            0,
            0,
        )
        return out[:_COMPAT_22_INIT_OUT_SIZE] if minor < 23 else out

    def _destroy(self, nodeid: int, body: bytes) -> bytes:
        self._destroyed = True
        return b""

    def _lookup(self, nodeid: int, body: bytes) -> bytes:
        (name,) = _names(body, 1)
        return _entry_out(self._call("lookup", nodeid, name))

    def _getattr(self, nodeid: int, body: bytes) -> bytes:
        return _attr_out(self._call("getattr", nodeid))

    def _setattr(self, nodeid: int, body: bytes) -> bytes:
        (
            valid, _, fh, size, _, atime, mtime, _,
            atimensec, mtimensec, _, mode, _, uid, gid, _,
        ) = _SETATTR_IN.unpack_from(body)
        attr = self._call(
            "setattr",
            nodeid,
            mode if valid & SetattrValid.MODE else None,
            uid if valid & SetattrValid.UID else None,
            gid if valid & SetattrValid.GID else None,
            size if valid & SetattrValid.SIZE else None,
            _time_arg(valid, SetattrValid.ATIME, SetattrValid.ATIME_NOW, atime, atimensec),
            _time_arg(valid, SetattrValid.MTIME, SetattrValid.MTIME_NOW, mtime, mtimensec),
            fh if valid & SetattrValid.FH else None,
        )
        return _attr_out(attr)

    def _mknod(self, nodeid: int, body: bytes) -> bytes:
        mode, rdev, umask, _ = _MKNOD_IN.unpack_from(body)
        (name,) = _names(body[_MKNOD_IN.size :], 1)
        return _entry_out(self._call("mknod", nodeid, name, mode, rdev, umask))

    def _mkdir(self, nodeid: int, body: bytes) -> bytes:
        mode, umask = _MKDIR_IN.unpack_from(body)
        (name,) = _names(body[_MKDIR_IN.size :], 1)
        return _entry_out(self._call("mkdir", nodeid, name, mode, umask))

    def _unlink(self, nodeid: int, body: bytes) -> bytes:
        (name,) = _names(body, 1)
        self._call("unlink", nodeid, name)
        return b""

    def _rmdir(self, nodeid: int, body: bytes) -> bytes:
        (name,) = _names(body, 1)
        self._call("rmdir", nodeid, name)
        return b""

    def _rename(self, nodeid: int, body: bytes) -> bytes:
        (newdir,) = _RENAME_IN.unpack_from(body)
        name, newname = _names(body[_RENAME_IN.size :], 2)
        self._call("rename", nodeid, name, newdir, newname)
        return b""

    def _rename2(self, nodeid: int, body: bytes) -> bytes:
        newdir, _flags, _ = _RENAME2_IN.unpack_from(body)
        name, newname = _names(body[_RENAME2_IN.size :], 2)
        self._call("rename", nodeid, name, newdir, newname)
        return b""

    def _open(self, nodeid: int, body: bytes) -> bytes:
        flags, _ = _OPEN_IN.unpack_from(body)
        fh, open_flags = self._call("open", nodeid, flags)
        return _OPEN_OUT.pack(fh, open_flags, 0)

    def _read(self, nodeid: int, body: bytes) -> bytes:
        fh, offset, size, *_ = _READ_IN.unpack_from(body)
        data = self._call("read", nodeid, fh, offset, size)
        return bytes(data[:size])

    def _write(self, nodeid: int, body: bytes) -> bytes:
        fh, offset, size, *_ = _WRITE_IN.unpack_from(body)
        data = body[_WRITE_IN.size : _WRITE_IN.size + size]
        written = self._call("write", nodeid, fh, offset, data)
        return _WRITE_OUT.pack(written, 0)

    def _statfs(self, nodeid: int, body: bytes) -> bytes:
        return _STATFS_OUT.pack(0, 0, 0, 0, 0, 512, 255, 0, 0)

    def _release(self, nodeid: int, body: bytes) -> bytes:
        fh, *_ = _RELEASE_IN.unpack_from(body)
        self._call("release", nodeid, fh)
        return b""

    def _flush(self, nodeid: int, body: bytes) -> bytes:
        fh, *_ = _FLUSH_IN.unpack_from(body)
        self._call("flush", nodeid, fh)
        return b""

    def _opendir(self, nodeid: int, body: bytes) -> bytes:
        return _OPEN_OUT.pack(0, 0, 0)

    def _readdir(self, nodeid: int, body: bytes) -> bytes:
        _fh, offset, size, *_ = _READ_IN.unpack_from(body)
        return _pack_dirents(self._call("readdir", nodeid, offset), size)

    def _releasedir(self, nodeid: int, body: bytes) -> bytes:
        return b""

    def _create(self, nodeid: int, body: bytes) -> bytes:
        flags, mode, umask, _ = _CREATE_IN.unpack_from(body)
        (name,) = _names(body[_CREATE_IN.size :], 1)
        attr, fh, open_flags = self._call("create", nodeid, name, mode, flags, umask)
        return _entry_out(attr) + _OPEN_OUT.pack(fh, open_flags, 0)