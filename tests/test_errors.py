import errno
from pathlib import Path

import pytest

from clarisfs.errors import (
    DbInsideMountPointError,
    FsError,
    FsIoError,
    InodeAllocationError,
    InodeNotFoundError,
    InternalError,
    InvalidFileTypeError,
    InvalidPathError,
    OperationNotSupportedError,
    PathConversionError,
    PathExistsError,
    PathNotFoundError,
    PermissionDeniedError,
    ReadOnlyFsError,
    from_os_error,
)


def test_not_found_maps_to_path_not_found():
    err = from_os_error(FileNotFoundError(errno.ENOENT, "gone"), "/a/b")
    assert isinstance(err, PathNotFoundError)
    assert err.path == Path("/a/b")
    assert err.error_code == errno.ENOENT


def test_permission_maps_to_permission_denied():
    err = from_os_error(PermissionError(errno.EACCES, "no"), "/secret")
    assert isinstance(err, PermissionDeniedError)
    assert err.error_code == errno.EACCES


def test_exists_maps_to_path_exists():
    err = from_os_error(FileExistsError(errno.EEXIST, "there"), "/x")
    assert isinstance(err, PathExistsError)
    assert err.error_code == errno.EEXIST


def test_other_os_error_is_wrapped_with_its_errno():
    original = OSError(errno.ENOSPC, "full")
    err = from_os_error(original, "/x")
    assert isinstance(err, FsIoError)
    assert err.error is original
    assert err.error_code == errno.ENOSPC


def test_os_error_without_errno_reports_eio():
    err = from_os_error(OSError("mystery"), "/x")
    assert isinstance(err, FsIoError)
    assert err.error_code == errno.EIO


@pytest.mark.parametrize(
    "error, code",
    [
        (InvalidPathError("/p"), errno.EINVAL),
        (PathNotFoundError("/p"), errno.ENOENT),
        (PermissionDeniedError("/p"), errno.EACCES),
        (PathExistsError("/p"), errno.EEXIST),
        (InvalidFileTypeError("/p"), errno.EINVAL),
        (ReadOnlyFsError(), errno.EROFS),
        (DbInsideMountPointError(), errno.EINVAL),
        (InodeAllocationError("/p"), errno.ENOMEM),
        (InodeNotFoundError(7), errno.ENOENT),
        (PathConversionError("/p"), errno.EINVAL),
        (OperationNotSupportedError("chown"), errno.ENOSYS),
        (InternalError("boom"), errno.EIO),
    ],
)
def test_error_codes(error, code):
    assert error.error_code == code
    assert isinstance(error, FsError)


@pytest.mark.parametrize(
    "error, message",
    [
        (InvalidPathError("/p"), "Invalid path: /p"),
        (PathNotFoundError("/p"), "Path not found: /p"),
        (PermissionDeniedError("/p"), "Permission denied for path: /p"),
        (PathExistsError("/p"), "Path already exists: /p"),
        (InvalidFileTypeError("/p"), "Invalid file type for path: /p"),
        (ReadOnlyFsError(), "Invalid operation in read-only mode"),
        (DbInsideMountPointError(), "Database file cannot be inside mount point"),
        (InodeAllocationError("/p"), "Failed to allocate inode for path: /p"),
        (InodeNotFoundError(7), "Inode 7 not found"),
        (PathConversionError("/p"), "Failed to convert path: /p"),
        (OperationNotSupportedError("chown"), "Operation not supported: chown"),
        (InternalError("boom"), "Internal error: boom"),
    ],
)
def test_messages(error, message):
    assert str(error) == message


def test_errors_can_be_raised_and_caught_as_base():
    err = from_os_error(FileNotFoundError(errno.ENOENT, "gone"), "/q")
    with pytest.raises(FsError) as info:
        raise err
    assert info.value is err
    assert err.path == Path("/q")
    assert err.error_code == errno.ENOENT
    assert str(err) == "Path not found: /q"