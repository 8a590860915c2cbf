"""File attributes as reported to the kernel for a mounted tree."""

from __future__ import annotations

import enum
import os
import stat
from dataclasses import dataclass


class FileType(enum.Enum):
    """Kinds of file the filesystem reports."""

    DIRECTORY = "directory"
    REGULAR_FILE = "regular_file"
    SYMLINK = "symlink"


@dataclass(frozen=True)
class FileAttr:
    """Attributes of one file; times are whole seconds since the epoch."""

    ino: int
    size: int
    blocks: int
    atime: int
    mtime: int
    ctime: int
    crtime: int
    kind: FileType
    perm: int
    nlink: int
    uid: int
    gid: int
    rdev: int
    flags: int
    blksize: int


def file_type_of(st: os.stat_result) -> FileType:
    """Classify a stat result; anything unusual counts as a regular file."""
    mode = st.st_mode
    if stat.S_ISDIR(mode):
        return FileType.DIRECTORY
    if stat.S_ISREG(mode):
        return FileType.REGULAR_FILE
    if stat.S_ISLNK(mode):
        return FileType.SYMLINK
    return FileType.REGULAR_FILE


def attr_from_stat(st: os.stat_result, ino: int) -> FileAttr:
    """Build the attributes of inode ``ino`` from its stat result."""
    return FileAttr(
        ino=ino,
        size=st.st_size,
        blocks=getattr(st, "st_blocks", 0),
        atime=int(st.st_atime),
        mtime=int(st.st_mtime),
        ctime=int(st.st_ctime),
        crtime=0,
        kind=file_type_of(st),
        perm=st.st_mode & 0o7777,
        nlink=st.st_nlink,
        uid=st.st_uid,
        gid=st.st_gid,
        rdev=getattr(st, "st_rdev", 0) & 0xFFFFFFFF,
        flags=0,
        blksize=getattr(st, "st_blksize", 0) & 0xFFFFFFFF,
    )