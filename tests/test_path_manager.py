from pathlib import Path, PurePosixPath

import pytest

from clarisfs.path_manager import ROOT_INODE, PathForm, PathManager


@pytest.fixture
def manager():
    return PathManager(Path("/tmp/source"))


def test_path_transformations(manager):
    assert manager.transform_path("a/b", PathForm.ABSOLUTE) == PurePosixPath("/a/b")
    assert manager.transform_path("/a/b", PathForm.ABSOLUTE) == PurePosixPath("/a/b")
    assert manager.transform_path("/a/b", PathForm.RELATIVE) == PurePosixPath("a/b")
    assert manager.transform_path("a/b", PathForm.RELATIVE) == PurePosixPath("a/b")
    assert manager.transform_path("/a/b", PathForm.REAL) == Path("/tmp/source/a/b")
    assert manager.transform_path("a/b", PathForm.REAL) == Path("/tmp/source/a/b")


def test_root_and_empty_real_paths(manager):
    assert manager.get_real_path("/") == Path("/tmp/source")
    assert manager.get_real_path("") == Path("/tmp/source")


def test_inode_path_mapping(manager):
    assert manager.get_path(ROOT_INODE) == PurePosixPath("/")
    assert manager.get_or_create_inode("/") == ROOT_INODE
    assert manager.get_or_create_inode("") == ROOT_INODE

    ino1 = manager.get_or_create_inode("/a/b.txt")
    assert ino1 > ROOT_INODE
    assert manager.get_path(ino1) == PurePosixPath("a/b.txt")

    ino2 = manager.get_or_create_inode("a/b.txt")
    assert ino1 == ino2

    assert manager.update_path("a/b.txt", "c/d.txt")
    assert manager.get_path(ino1) == PurePosixPath("c/d.txt")
    assert manager.get_or_create_inode("c/d.txt") == ino1

    assert manager.remove_path("c/d.txt") == ino1
    assert manager.get_path(ino1) is None


def test_build_path(manager):
    assert manager.build_path(ROOT_INODE, "file.txt") == PurePosixPath("/file.txt")

    dir_ino = manager.get_or_create_inode("/dir1")
    assert manager.build_path(dir_ino, "file.txt") == PurePosixPath("/dir1/file.txt")

    nested_ino = manager.get_or_create_inode("/dir1/subdir")
    assert manager.build_path(nested_ino, "file.txt") == PurePosixPath(
        "/dir1/subdir/file.txt"
    )

    assert manager.build_path(999, "file.txt") is None


def test_new_inodes_are_distinct(manager):
    inodes = [manager.get_or_create_inode(f"/f{n}") for n in range(5)]
    assert len(set(inodes)) == 5
    assert ROOT_INODE not in inodes


def test_update_unknown_path_returns_false(manager):
    assert manager.update_path("/nope", "/other") is False
    assert manager.get_or_create_inode("/other") > ROOT_INODE


def test_remove_unknown_path_returns_none(manager):
    assert manager.remove_path("/nope") is None


def test_old_path_forgotten_after_update(manager):
    ino = manager.get_or_create_inode("/old")
    manager.update_path("/old", "/new")
    assert manager.get_or_create_inode("/old") != ino


def test_should_exclude_path(manager):
    assert manager.should_exclude_path("/claris.db", "/src/claris.db") is True
    assert manager.should_exclude_path("/dir/claris.db", "claris.db") is True
    assert manager.should_exclude_path("/other.txt", "claris.db") is False
    assert manager.should_exclude_path("/claris.db", None) is False
    assert manager.should_exclude_path("/", "claris.db") is False