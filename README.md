# clarisfs

A FUSE filesystem that mirrors a source directory at a mount point. The
source directory is first prepared with a SQLite database,
`claris-fuse.db`, which marks it as ready for version control.

Mounting needs Linux with FUSE: `/dev/fuse` and `fusermount3` or
`fusermount` on the `PATH`. The FUSE protocol is spoken directly; no other
Python library is needed.

## Installing

```
pip install .
```

## Usage

Prepare a directory. This creates `claris-fuse.db` inside it and fails if
the database is already there:

```
clarisfs init /path/to/source
```

Mount it (this blocks until the filesystem is unmounted):

```
clarisfs mount /path/to/source /path/to/mountpoint
clarisfs mount --read-only /path/to/source /path/to/mountpoint
```

`mount` refuses a directory that has not been initialised, and a mount point
that contains the database file. Files created, written, truncated,
re-timed, renamed or removed under the mount point are applied directly to
the source directory. The database file is left out of listings of the
mount root. In read-only mode every modifying operation fails with `EROFS`.

Unmount with `fusermount -u /path/to/mountpoint`.

Global options come before the command:

```
clarisfs --log-level debug --unmount-on-exit mount /path/to/source /path/to/mountpoint
```

`--log-level` takes `trace`, `debug`, `info`, `warn` or `error` (default
`info`); the environment variable `CLARISFS_LOG`, when set, takes precedence.
With `--unmount-on-exit`, `SIGINT` or `SIGTERM` unmounts the mount point
before the program exits.

## What it does not do

No versions are recorded: the database holds only its empty schema and the
root directory entry, and nothing written through the mount is stored in it.
The `history` and `restore` commands are accepted but only report that they
are not available, along with the options given:

```
clarisfs history --limit 10 --verbose /path/to/file.txt
clarisfs restore --version 3 --force /path/to/file.txt
```

The filesystem also does not support changing ownership (`ENOSYS`),
symbolic links, hard links, extended attributes or locks, and reports
zeroed statistics to `statfs`.

## Library use

```python
from clarisfs.storage import SqliteStorage, init_storage, is_valid_storage
from clarisfs.passthrough import PassthroughFS

init_storage("/path/to/source")
assert is_valid_storage("/path/to/source")

with SqliteStorage.open("/path/to/source") as storage:
    print(storage.path)

fs = PassthroughFS("/path/to/source/claris-fuse.db", "/path/to/mountpoint")
fs.mount()  # blocks until unmounted
```

- `clarisfs.passthrough.PassthroughFS` raises
  `clarisfs.errors.DbInsideMountPointError` if the database file lies inside
  the mount point; `mount()` raises `FileNotFoundError` if the database file
  is missing. `PassthroughFS.new_read_only` builds a read-only instance, and
  its operations (`lookup`, `getattr`, `read`, `readdir`, `create`, …) can be
  called directly without mounting.
- `clarisfs.path_manager.PathManager` maps inode numbers to paths within
  the mounted tree.
- `clarisfs.errors` holds the `FsError` hierarchy; each error carries the
  `error_code` returned to the kernel.
- `clarisfs.fuse_session.FuseSession` mounts through `fusermount` and
  serves kernel requests for any object with the same operations;
  `clarisfs.fuse_session.unmount` unmounts a mount point.
- `clarisfs.cli.parse_args` parses a command line into a `Cli` value.

## Tests

```
pip install .[test]
pytest
```