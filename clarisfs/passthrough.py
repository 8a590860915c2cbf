"""A filesystem that passes every operation through to a source directory."""

from __future__ import annotations

import errno
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .attrs import FileAttr, FileType, attr_from_stat, file_type_of
from .errors import (
    DbInsideMountPointError,
    InodeNotFoundError,
    OperationNotSupportedError,
    PathExistsError,
    ReadOnlyFsError,
    from_os_error,
)
from .fuse_session import FOPEN_DIRECT_IO, FuseSession
from .nodes import make_node, open_options, set_times, truncate
from .path_manager import ROOT_INODE, PathForm, PathManager

log = logging.getLogger(__name__)

FS_NAME = "claris-fuse"
"""Name under which the filesystem is mounted."""

_O_DIRECT = getattr(os, "O_DIRECT", 0)
_WRITE_FLAGS = os.O_WRONLY | os.O_RDWR | os.O_APPEND | os.O_CREAT


@dataclass(frozen=True)
class DirEntry:
    """One entry of a directory listing; ``offset`` is that of the next entry."""

    ino: int
    offset: int
    kind: FileType
    name: str


class PassthroughFS:
    """Mirrors a source directory, the one holding the database, at a mount point."""

    def __init__(
        self,
        db_path: str | os.PathLike[str],
        mount_point: str | os.PathLike[str],
        read_only: bool = False,
    ) -> None:
        self._db_path = Path(db_path)
        self._mount_point = Path(mount_point)
        self.read_only = read_only
        self.path_manager = PathManager(self._db_path.parent)
        if self._is_db_inside_mount_point():
            raise DbInsideMountPointError()
        log.info("Initialized PassthroughFS with source dir: %s", self._source_dir)

    @classmethod
    def new_read_only(
        cls, db_path: str | os.PathLike[str], mount_point: str | os.PathLike[str]
    ) -> PassthroughFS:
        """Create a filesystem that refuses every modifying operation."""
        return cls(db_path, mount_point, read_only=True)

    @property
    def db_path(self) -> Path:
        """Path of the database file."""
        return self._db_path

    @property
    def mount_point(self) -> Path:
        """Directory the filesystem is mounted on."""
        return self._mount_point

    @property
    def _source_dir(self) -> Path:
        return self._db_path.parent

    def _is_db_inside_mount_point(self) -> bool:
        try:
            db = self._db_path.resolve(strict=True)
            mount = self._mount_point.resolve(strict=True)
        except OSError:
            return False
        return db.is_relative_to(mount)

    def real_path(self, path: str | os.PathLike[str]) -> Path:
        """Return where the virtual ``path`` lives in the source directory."""
        return self.path_manager.get_real_path(path)

    def mount(self) -> None:
        """Mount the filesystem and serve it until it is unmounted."""
        options = [f"fsname={FS_NAME}"]
        if self.read_only:
            options.append("ro")
        if not self._db_path.exists():
            raise FileNotFoundError(
                errno.ENOENT, "Database file not found", str(self._db_path)
            )
        with FuseSession(self, self._mount_point, options) as session:
            session.run()

    # Helpers

    def _check_writable(self) -> None:
        if self.read_only:
            raise ReadOnlyFsError()

    def _path_of(self, ino: int) -> PurePosixPath:
        path = self.path_manager.get_path(ino)
        if path is None:
            log.error("inode %d not found in map", ino)
            raise InodeNotFoundError(ino)
        return path

    def _child(self, parent: int, name: str) -> PurePosixPath:
        path = self.path_manager.build_path(parent, name)
        if path is None:
            log.error("parent inode %d not found in path manager", parent)
            raise InodeNotFoundError(parent)
        return path

    # Operations

    def setattr(
        self,
        ino: int,
        mode: int | None = None,
        uid: int | None = None,
        gid: int | None = None,
        size: int | None = None,
        atime: object = None,
        mtime: object = None,
        fh: int | None = None,
    ) -> FileAttr:
        """Change size, permissions or times of inode ``ino``."""
        log.debug(
            "setattr(ino=%d, mode=%s, uid=%s, gid=%s, size=%s, fh=%s)",
            ino, mode, uid, gid, size, fh,
        )
        real = self.real_path(self._path_of(ino))
        st = os.stat(real)
        changed = False
        if size is not None:
            log.debug("setattr: truncating file %s to size %d", real, size)
            truncate(real, size, fh)
            changed = True
        if mode is not None:
            log.debug("setattr: changing mode of %s to %o", real, mode)
            os.chmod(real, mode & 0o777)
            changed = True
        if uid is not None or gid is not None:
            log.error("setattr: uid/gid change not supported")
            raise OperationNotSupportedError("uid/gid change")
        if atime is not None or mtime is not None:
            log.debug("setattr: setting timestamps for %s", real)
            set_times(real, atime, mtime)
            changed = True
        if changed:
            st = os.stat(real)
        return attr_from_stat(st, ino)

    def unlink(self, parent: int, name: str) -> None:
        """Remove the file ``name`` from directory ``parent``."""
        log.debug("unlink(parent=%d, name=%s)", parent, name)
        self._check_writable()
        path = self._child(parent, name)
        real = self.real_path(path)
        try:
            os.remove(real)
        except OSError as exc:
            raise from_os_error(exc, real) from exc
        ino = self.path_manager.remove_path(path)
        if ino is not None:
            log.debug("unlink: removed inode %d for path %s", ino, path)

    def write(self, ino: int, fh: int, offset: int, data: bytes) -> int:
        """Write ``data`` at ``offset`` and return the number of bytes written."""
        log.debug("write(ino=%d, fh=%d, offset=%d, len=%d)", ino, fh, offset, len(data))
        self._check_writable()
        real = self.real_path(self._path_of(ino))
        # A fresh descriptor avoids stale handles left by operations such as truncate.
        fd = os.open(real, os.O_WRONLY)
        try:
            written = os.pwrite(fd, data, offset)
        finally:
            os.close(fd)
        log.debug("write: successfully wrote %d bytes", written)
        return written

    def flush(self, ino: int, fh: int) -> None:
        """Flush the open file ``fh`` to disk."""
        log.debug("flush(ino=%d, fh=%d)", ino, fh)
        os.fsync(fh)

    def rmdir(self, parent: int, name: str) -> None:
        """Remove the empty directory ``name`` from directory ``parent``."""
        log.debug("rmdir(parent=%d, name=%s)", parent, name)
        self._check_writable()
        path = self._child(parent, name)
        real = self.real_path(path)
        try:
            os.rmdir(real)
        except OSError as exc:
            raise from_os_error(exc, real) from exc
        ino = self.path_manager.remove_path(path)
        if ino is not None:
            log.debug("rmdir: removed inode %d for path %s", ino, path)

    def release(self, ino: int, fh: int) -> None:
        """Close the open file ``fh``."""
        log.debug("release(ino=%d, fh=%d)", ino, fh)
        os.close(fh)

    def mknod(self, parent: int, name: str, mode: int, rdev: int, umask: int) -> FileAttr:
        """Create a regular file, FIFO or device node.

        The returned attributes carry inode 0: the node is not registered
        until it is looked up.
        """
        log.debug(
            "mknod(parent=%d, name=%s, mode=0%o, rdev=%d, umask=0%o)",
            parent, name, mode, rdev, umask,
        )
        self._check_writable()
        real = self.real_path(self._child(parent, name))
        if real.exists():
            raise PathExistsError(real)
        make_node(real, mode, rdev, umask)
        return attr_from_stat(os.stat(real), 0)

    def mkdir(self, parent: int, name: str, mode: int, umask: int) -> FileAttr:
        """Create the directory ``name`` in directory ``parent``."""
        log.debug("mkdir(parent=%d, name=%s, mode=0%o, umask=0%o)", parent, name, mode, umask)
        self._check_writable()
        path = self._child(parent, name)
        real = self.real_path(path)
        os.mkdir(real)
        try:
            os.chmod(real, mode & ~umask & 0o777)
        except OSError:
            pass
        st = os.stat(real)
        rel = self.path_manager.transform_path(path, PathForm.RELATIVE)
        ino = self.path_manager.get_or_create_inode(rel)
        log.debug("mkdir: assigned inode %d to path %s", ino, rel)
        return attr_from_stat(st, ino)

    def lookup(self, parent: int, name: str) -> FileAttr:
        """Find ``name`` in directory ``parent`` and return its attributes."""
        log.debug("lookup(parent=%d, name=%s)", parent, name)
        path = self._child(parent, name)
        real = self.real_path(path)
        st = os.stat(real)
        rel = self.path_manager.transform_path(path, PathForm.RELATIVE)
        ino = self.path_manager.get_or_create_inode(rel)
        log.debug("lookup: assigned inode %d to path %s", ino, rel)
        return attr_from_stat(st, ino)

    def getattr(self, ino: int) -> FileAttr:
        """Return the attributes of inode ``ino``."""
        log.debug("getattr(ino=%d)", ino)
        if ino == ROOT_INODE:
            return attr_from_stat(os.stat(self._source_dir), ROOT_INODE)
        real = self.real_path(self._path_of(ino))
        return attr_from_stat(os.stat(real), ino)

    def read(self, ino: int, fh: int, offset: int, size: int) -> bytes:
        """Read up to ``size`` bytes at ``offset``."""
        log.debug("read(ino=%d, fh=%d, offset=%d, size=%d)", ino, fh, offset, size)
        real = self.real_path(self._path_of(ino))
        if offset < 0:
            raise OSError(errno.EINVAL, "negative offset", str(real))
        with open(real, "rb") as file:
            file.seek(offset)
            return file.read(size)

    def readdir(self, ino: int, offset: int) -> list[DirEntry]:
        """List directory ``ino`` from entry ``offset`` on, hiding the database file."""
        log.debug("readdir(ino=%d, offset=%d)", ino, offset)
        dir_path = self._path_of(ino)
        real = self.real_path(dir_path)
        if not real.is_dir():
            raise OSError(errno.ENOTDIR, "Not a directory", str(real))

        if ino == ROOT_INODE:
            parent_ino = ROOT_INODE
        else:
            parent_ino = self.path_manager.get_or_create_inode(dir_path.parent)
        listing: list[tuple[int, FileType, str]] = [
            (ino, FileType.DIRECTORY, "."),
            (parent_ino, FileType.DIRECTORY, ".."),
        ]

        with os.scandir(real) as entries:
            for entry in entries:
                if ino == ROOT_INODE and entry.name == self._db_path.name:
                    log.debug("readdir: skipping database file %s", entry.name)
                    continue
                entry_path = self.path_manager.build_path(ino, entry.name)
                if entry_path is None:
                    continue
                try:
                    kind = file_type_of(entry.stat(follow_symlinks=False))
                except OSError as exc:
                    log.warning("readdir: error processing directory entry: %s", exc)
                    continue
                entry_ino = self.path_manager.get_or_create_inode(entry_path)
                listing.append((entry_ino, kind, entry.name))

        return [
            DirEntry(entry_ino, index + 1, kind, name)
            for index, (entry_ino, kind, name) in enumerate(listing)
            if index >= offset
        ]

    def rename(self, parent: int, name: str, newparent: int, newname: str) -> None:
        """Move ``name`` in ``parent`` to ``newname`` in ``newparent``."""
        log.debug(
            "rename(parent=%d, name=%s, newparent=%d, newname=%s)",
            parent, name, newparent, newname,
        )
        self._check_writable()
        src = self._child(parent, name)
        dst = self._child(newparent, newname)
        real_src = self.real_path(src)
        real_dst = self.real_path(dst)
        parent_dir = real_dst.parent
        if not parent_dir.exists():
            try:
                parent_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise from_os_error(exc, parent_dir) from exc
        try:
            os.rename(real_src, real_dst)
        except OSError as exc:
            raise from_os_error(exc, real_src) from exc
        self.path_manager.update_path(src, dst)

    def create(
        self, parent: int, name: str, mode: int, flags: int, umask: int
    ) -> tuple[FileAttr, int, int]:
        """Create and open a file; return its attributes, handle and open flags."""
        log.debug(
            "create(parent=%d, name=%s, mode=0%o, flags=%d, umask=0%o)",
            parent, name, mode, flags, umask,
        )
        self._check_writable()
        path = self._child(parent, name)
        real = self.real_path(path)
        parent_dir = real.parent
        if not parent_dir.exists():
            try:
                parent_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise from_os_error(exc, parent_dir) from exc
        try:
            fd = os.open(real, open_options(flags, create=True), 0o666)
        except OSError as exc:
            raise from_os_error(exc, real) from exc
        try:
            os.fchmod(fd, mode & ~umask & 0o777)
        except OSError as exc:
            log.error("Failed to set file permissions: %s", exc)
        rel = self.path_manager.transform_path(path, PathForm.RELATIVE)
        ino = self.path_manager.get_or_create_inode(rel)
        try:
            st = os.stat(real)
        except OSError as exc:
            os.close(fd)
            raise from_os_error(exc, real) from exc
        log.debug("File created at %s with inode %d", real, ino)
        return attr_from_stat(st, ino), fd, 0

    def open(self, ino: int, flags: int) -> tuple[int, int]:
        """Open inode ``ino``; return the file handle and open flags."""
        log.debug("open(ino=%d, flags=%d)", ino, flags)
        if self.read_only and flags & _WRITE_FLAGS:
            log.error("open: attempting write operation on read-only filesystem")
            raise ReadOnlyFsError()
        real = self.real_path(self._path_of(ino))
        fd = os.open(real, open_options(flags), 0o666)
        direct_io = bool(flags & _O_DIRECT)
        return fd, FOPEN_DIRECT_IO if direct_io else 0