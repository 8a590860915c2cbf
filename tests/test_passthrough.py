import errno
import os
from pathlib import Path

import pytest

from clarisfs.attrs import FileType
from clarisfs.errors import (
    DbInsideMountPointError,
    FsIoError,
    InodeNotFoundError,
    OperationNotSupportedError,
    PathExistsError,
    PathNotFoundError,
    ReadOnlyFsError,
)
from clarisfs.passthrough import PassthroughFS
from clarisfs.path_manager import ROOT_INODE


@pytest.fixture
def env(tmp_path):
    source = tmp_path / "source"
    mount = tmp_path / "mount"
    source.mkdir()
    mount.mkdir()
    db_path = source / "fs.db"
    fs = PassthroughFS(db_path, mount)
    return source, mount, db_path, fs


def test_real_path(env):
    source, _, _, fs = env
    assert fs.real_path(Path("/test/path.txt")) == source / "test/path.txt"
    assert fs.real_path(Path("test/another_path.txt")) == source / "test/another_path.txt"
    assert fs.real_path(Path("/")) == source
    assert fs.real_path(Path("")) == source


def test_passthrough_initialization(env):
    _, mount, db_path, fs = env
    assert fs.db_path == db_path
    assert fs.mount_point == mount
    assert fs.read_only is False
    ro = PassthroughFS.new_read_only(db_path, mount)
    assert ro.db_path == db_path
    assert ro.read_only is True


def test_db_inside_mount_point_rejected(tmp_path):
    db_path = tmp_path / "fs.db"
    db_path.write_text("dummy content")
    with pytest.raises(DbInsideMountPointError) as info:
        PassthroughFS(db_path, tmp_path)
    assert info.value.error_code == errno.EINVAL


def test_mount_without_database_fails(tmp_path):
    source = tmp_path / "s"
    mount = tmp_path / "m"
    source.mkdir()
    mount.mkdir()
    fs = PassthroughFS(source / "nonexistent.db", mount)
    with pytest.raises(FileNotFoundError):
        fs.mount()


def test_path_handling_special_characters(env):
    source, mount, _, _ = env
    special = source / "special@#$%.db"
    fs = PassthroughFS(special, mount)
    assert fs.db_path == special


def test_getattr_root(env):
    _, _, _, fs = env
    attr = fs.getattr(ROOT_INODE)
    assert attr.ino == ROOT_INODE
    assert attr.kind is FileType.DIRECTORY


def test_getattr_unknown_inode(env):
    _, _, _, fs = env
    with pytest.raises(InodeNotFoundError):
        fs.getattr(999)


def test_lookup_existing_file(env):
    source, _, _, fs = env
    (source / "test.txt").write_text("Hello, world!")
    attr = fs.lookup(ROOT_INODE, "test.txt")
    assert attr.ino > ROOT_INODE
    assert attr.size == len("Hello, world!")
    assert attr.kind is FileType.REGULAR_FILE
    assert fs.lookup(ROOT_INODE, "test.txt").ino == attr.ino
    assert fs.getattr(attr.ino).size == attr.size


def test_lookup_missing_file(env):
    _, _, _, fs = env
    with pytest.raises(OSError) as info:
        fs.lookup(ROOT_INODE, "missing.txt")
    assert info.value.errno == errno.ENOENT


def test_lookup_unknown_parent(env):
    _, _, _, fs = env
    with pytest.raises(InodeNotFoundError):
        fs.lookup(999, "file.txt")


def test_create_write_read(env):
    source, _, _, fs = env
    attr, fh, open_flags = fs.create(ROOT_INODE, "new.txt", 0o100644, os.O_RDWR, 0o022)
    try:
        assert open_flags == 0
        assert attr.perm == 0o644
        assert fs.write(attr.ino, fh, 0, b"hello") == 5
        fs.flush(attr.ino, fh)
    finally:
        fs.release(attr.ino, fh)
    assert (source / "new.txt").read_bytes() == b"hello"
    assert fs.read(attr.ino, 0, 1, 3) == b"ell"
    assert fs.read(attr.ino, 0, 10, 3) == b""


def test_release_twice_fails(env):
    _, _, _, fs = env
    attr, fh, _ = fs.create(ROOT_INODE, "f.txt", 0o100644, os.O_WRONLY, 0)
    fs.release(attr.ino, fh)
    with pytest.raises(OSError) as info:
        fs.release(attr.ino, fh)
    assert info.value.errno == errno.EBADF


def test_open_and_read_through_handle(env):
    source, _, _, fs = env
    (source / "data.txt").write_bytes(b"content")
    ino = fs.lookup(ROOT_INODE, "data.txt").ino
    fh, flags = fs.open(ino, os.O_RDONLY)
    try:
        assert flags == 0
        assert os.read(fh, 7) == b"content"
    finally:
        fs.release(ino, fh)


def test_mkdir(env):
    source, _, _, fs = env
    attr = fs.mkdir(ROOT_INODE, "dir", 0o755, 0o022)
    assert attr.kind is FileType.DIRECTORY
    assert attr.perm == 0o755
    assert (source / "dir").is_dir()
    inner = fs.mkdir(attr.ino, "sub", 0o700, 0)
    assert (source / "dir" / "sub").is_dir()
    assert fs.getattr(inner.ino).kind is FileType.DIRECTORY


def test_mknod_regular_file(env):
    source, _, _, fs = env
    attr = fs.mknod(ROOT_INODE, "node.txt", 0o100640, 0, 0)
    assert attr.ino == 0
    assert attr.perm == 0o640
    assert (source / "node.txt").is_file()
    with pytest.raises(PathExistsError):
        fs.mknod(ROOT_INODE, "node.txt", 0o100640, 0, 0)


def test_readdir_lists_entries_without_database(env):
    source, _, db_path, fs = env
    db_path.write_text("db")
    (source / "a.txt").write_text("a")
    (source / "sub").mkdir()
    entries = fs.readdir(ROOT_INODE, 0)
    names = [entry.name for entry in entries]
    assert names[:2] == [".", ".."]
    assert set(names[2:]) == {"a.txt", "sub"}
    assert [entry.offset for entry in entries] == list(range(1, len(entries) + 1))
    kinds = {entry.name: entry.kind for entry in entries}
    assert kinds["sub"] is FileType.DIRECTORY
    assert kinds["a.txt"] is FileType.REGULAR_FILE
    rest = fs.readdir(ROOT_INODE, 2)
    assert [entry.name for entry in rest] == names[2:]


def test_readdir_of_subdirectory_parent(env):
    source, _, _, fs = env
    (source / "sub").mkdir()
    (source / "sub" / "inner.txt").write_text("x")
    ino = fs.lookup(ROOT_INODE, "sub").ino
    entries = fs.readdir(ino, 0)
    assert entries[0].ino == ino
    assert entries[1].ino == ROOT_INODE
    assert [entry.name for entry in entries[2:]] == ["inner.txt"]


def test_readdir_of_file_fails(env):
    source, _, _, fs = env
    (source / "f.txt").write_text("x")
    ino = fs.lookup(ROOT_INODE, "f.txt").ino
    with pytest.raises(OSError) as info:
        fs.readdir(ino, 0)
    assert info.value.errno == errno.ENOTDIR


def test_rename_file(env):
    source, _, _, fs = env
    (source / "original.txt").write_text("Test content")
    ino = fs.lookup(ROOT_INODE, "original.txt").ino
    fs.rename(ROOT_INODE, "original.txt", ROOT_INODE, "renamed.txt")
    assert not (source / "original.txt").exists()
    assert (source / "renamed.txt").read_text() == "Test content"
    assert fs.lookup(ROOT_INODE, "renamed.txt").ino == ino
    assert fs.read(ino, 0, 0, 100) == b"Test content"


def test_rename_missing_source(env):
    _, _, _, fs = env
    with pytest.raises(PathNotFoundError):
        fs.rename(ROOT_INODE, "nope.txt", ROOT_INODE, "other.txt")


def test_unlink_and_rmdir(env):
    source, _, _, fs = env
    dir_attr = fs.mkdir(ROOT_INODE, "remove_test", 0o755, 0)
    (source / "remove_test" / "file.txt").write_text("x")
    file_ino = fs.lookup(dir_attr.ino, "file.txt").ino
    with pytest.raises(FsIoError) as info:
        fs.rmdir(ROOT_INODE, "remove_test")
    assert info.value.error_code == errno.ENOTEMPTY
    fs.unlink(dir_attr.ino, "file.txt")
    assert not (source / "remove_test" / "file.txt").exists()
    with pytest.raises(InodeNotFoundError):
        fs.getattr(file_ino)
    fs.rmdir(ROOT_INODE, "remove_test")
    assert not (source / "remove_test").exists()


def test_unlink_missing(env):
    _, _, _, fs = env
    with pytest.raises(PathNotFoundError):
        fs.unlink(ROOT_INODE, "missing.txt")


def test_setattr_size_mode_and_times(env):
    source, _, _, fs = env
    (source / "f.txt").write_text("0123456789")
    ino = fs.lookup(ROOT_INODE, "f.txt").ino
    assert fs.setattr(ino, size=4).size == 4
    assert (source / "f.txt").read_text() == "0123"
    assert fs.setattr(ino, mode=0o600).perm == 0o600
    attr = fs.setattr(ino, mtime=1_500_000_000 * 1_000_000_000)
    assert attr.mtime == 1_500_000_000
    assert fs.setattr(ino).size == 4


def test_setattr_ownership_not_supported(env):
    source, _, _, fs = env
    (source / "f.txt").write_text("x")
    ino = fs.lookup(ROOT_INODE, "f.txt").ino
    with pytest.raises(OperationNotSupportedError) as info:
        fs.setattr(ino, uid=0)
    assert info.value.error_code == errno.ENOSYS


def test_read_only_rejects_changes(env):
    source, mount, db_path, _ = env
    (source / "f.txt").write_text("x")
    ro = PassthroughFS.new_read_only(db_path, mount)
    ino = ro.lookup(ROOT_INODE, "f.txt").ino
    with pytest.raises(ReadOnlyFsError):
        ro.unlink(ROOT_INODE, "f.txt")
    with pytest.raises(ReadOnlyFsError):
        ro.mkdir(ROOT_INODE, "d", 0o755, 0)
    with pytest.raises(ReadOnlyFsError):
        ro.write(ino, 0, 0, b"y")
    with pytest.raises(ReadOnlyFsError) as info:
        ro.open(ino, os.O_WRONLY)
    assert info.value.error_code == errno.EROFS
    assert (source / "f.txt").read_text() == "x"