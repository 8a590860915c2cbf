"""Mapping between inode numbers and virtual paths of a mounted tree."""

from __future__ import annotations

import enum
import itertools
import logging
import os
from pathlib import Path, PurePosixPath

log = logging.getLogger(__name__)

ROOT_INODE = 1
"""The inode number of the root directory."""

_ROOT_REL = PurePosixPath()
_SLASH = PurePosixPath("/")

PathLike = str | os.PathLike


def _virtual(path: PathLike) -> PurePosixPath:
    return PurePosixPath(os.fspath(path))


class PathForm(enum.Enum):
    """The forms a virtual path can be turned into."""

    ABSOLUTE = "absolute"
    """With a leading slash, e.g. ``/dir/file.txt``."""
    RELATIVE = "relative"
    """Without a leading slash, e.g. ``dir/file.txt``."""
    REAL = "real"
    """Under the source directory, e.g. ``/source/dir/file.txt``."""


class PathManager:
    """Keeps inode numbers and virtual paths in step for a source directory."""

    def __init__(self, source_dir: PathLike) -> None:
        self.source_dir = Path(source_dir)
        self._path_map: dict[PurePosixPath, int] = {_ROOT_REL: ROOT_INODE}
        self._inode_map: dict[int, PurePosixPath] = {ROOT_INODE: _ROOT_REL}
        self._next_inode = itertools.count(ROOT_INODE + 1)

    def transform_path(self, path: PathLike, form: PathForm) -> PurePosixPath | Path:
        """Return ``path`` in the requested form."""
        vpath = _virtual(path)
        if form is PathForm.ABSOLUTE:
            if vpath.is_absolute() or vpath == _ROOT_REL:
                return vpath
            return _SLASH / vpath
        relative = vpath.relative_to(_SLASH) if vpath.is_absolute() else vpath
        if form is PathForm.RELATIVE:
            return relative
        result = self.source_dir / relative
        log.debug("Transforming virtual path %s to real path %s", vpath, result)
        return result

    def get_real_path(self, path: PathLike) -> Path:
        """Return where ``path`` lives inside the source directory."""
        return self.transform_path(path, PathForm.REAL)  # type: ignore[return-value]

    def build_path(self, parent: int, name: PathLike) -> PurePosixPath | None:
        """Join ``name`` to the path of inode ``parent``; None if it is unknown."""
        if parent == ROOT_INODE:
            return _SLASH / _virtual(name)
        parent_path = self.get_path(parent)
        if parent_path is None:
            return None
        return self.transform_path(parent_path, PathForm.ABSOLUTE) / _virtual(name)

    def get_or_create_inode(self, path: PathLike) -> int:
        """Return the inode for ``path``, assigning a fresh one if needed."""
        rel_path = self.transform_path(path, PathForm.RELATIVE)
        if rel_path == _ROOT_REL:
            return ROOT_INODE
        ino = self._path_map.get(rel_path)
        if ino is not None:
            return ino
        ino = next(self._next_inode)
        self._path_map[rel_path] = ino
        self._inode_map[ino] = rel_path
        return ino

    def get_path(self, ino: int) -> PurePosixPath | None:
        """Return the relative path of ``ino`` (``/`` for the root), or None."""
        if ino == ROOT_INODE:
            return _SLASH
        return self._inode_map.get(ino)

    def update_path(self, old_path: PathLike, new_path: PathLike) -> bool:
        """Move the inode of ``old_path`` to ``new_path``; False if unknown."""
        old_rel = self.transform_path(old_path, PathForm.RELATIVE)
        new_rel = self.transform_path(new_path, PathForm.RELATIVE)
        ino = self._path_map.pop(old_rel, None)
        if ino is None:
            return False
        self._inode_map[ino] = new_rel
        self._path_map[new_rel] = ino
        log.debug("Updated inode %d mapping from %s to %s", ino, old_rel, new_rel)
        return True

    def remove_path(self, path: PathLike) -> int | None:
        """Forget ``path`` and return the inode it had, if any."""
        rel_path = self.transform_path(path, PathForm.RELATIVE)
        ino = self._path_map.pop(rel_path, None)
        if ino is not None:
            self._inode_map.pop(ino, None)
        return ino

    def should_exclude_path(self, path: PathLike, db_filename: PathLike | None) -> bool:
        """Tell whether ``path`` names the database file and is to be hidden."""
        if db_filename is None:
            return False
        file_name = _file_name(_virtual(path))
        db_name = _file_name(_virtual(db_filename))
        if file_name is None or db_name is None:
            return False
        return file_name == db_name


def _file_name(path: PurePosixPath) -> str | None:
    name = path.name
    return None if name in ("", "..") else name