"""SQLite-backed storage that marks a directory as version controlled."""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from contextlib import closing
from pathlib import Path

log = logging.getLogger(__name__)

DB_FILENAME = "claris-fuse.db"
"""Name of the database file kept in an initialised source directory."""

_REQUIRED_TABLES = ("directories", "files", "metadata", "content")

_ROOT_DIR_MODE = 0o755

_SCHEMA = (
    """CREATE TABLE directories (
        id INTEGER PRIMARY KEY,
        path TEXT NOT NULL UNIQUE,
        created_at INTEGER NOT NULL,
        metadata_id INTEGER NOT NULL
    )""",
    """CREATE TABLE files (
        id INTEGER PRIMARY KEY,
        directory_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        metadata_id INTEGER NOT NULL,
        UNIQUE(directory_id, name),
        FOREIGN KEY(directory_id) REFERENCES directories(id)
    )""",
    """CREATE TABLE metadata (
        id INTEGER PRIMARY KEY,
        mode INTEGER NOT NULL,
        uid INTEGER NOT NULL,
        gid INTEGER NOT NULL,
        atime INTEGER NOT NULL,
        mtime INTEGER NOT NULL,
        ctime INTEGER NOT NULL
    )""",
    """CREATE TABLE content (
        id INTEGER PRIMARY KEY,
        file_id INTEGER NOT NULL,
        data BLOB,
        FOREIGN KEY(file_id) REFERENCES files(id)
    )""",
)


def _db_path(directory: str | os.PathLike[str]) -> Path:
    return Path(directory) / DB_FILENAME


def _create_schema(conn: sqlite3.Connection) -> None:
    log.debug("Creating SQLite database schema")
    now = int(time.time())
    with conn:
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.execute(
            "INSERT INTO metadata (id, mode, uid, gid, atime, mtime, ctime) "
            "VALUES (1, ?, ?, ?, ?, ?, ?)",
            (_ROOT_DIR_MODE, os.getuid(), os.getgid(), now, now, now),
        )
        conn.execute(
            "INSERT INTO directories (id, path, created_at, metadata_id) "
            "VALUES (1, '/', ?, 1)",
            (now,),
        )
    log.debug("SQLite database schema created successfully")


class SqliteStorage:
    """An open storage database belonging to a source directory."""

    def __init__(self, conn: sqlite3.Connection, path: Path) -> None:
        self.conn = conn
        self.path = path

    @classmethod
    def init(cls, path: str | os.PathLike[str]) -> None:
        """Create a fresh database in directory ``path``.

        Raises FileExistsError if one is already there and OSError if the
        database or its schema cannot be created.
        """
        db_path = _db_path(path)
        if db_path.exists():
            raise FileExistsError(f"Database already exists at {db_path}")
        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.Error as exc:
            raise OSError(f"Failed to create database: {exc}") from exc
        with closing(conn):
            try:
                _create_schema(conn)
            except sqlite3.Error as exc:
                raise OSError(f"Failed to create schema: {exc}") from exc
        log.info("Initialized new database at %s", db_path)

    @classmethod
    def is_valid(cls, path: str | os.PathLike[str]) -> bool:
        """Tell whether directory ``path`` holds a database with the expected tables."""
        db_path = _db_path(path)
        if not db_path.exists():
            return False
        placeholders = ", ".join("?" for _ in _REQUIRED_TABLES)
        try:
            with closing(sqlite3.connect(db_path)) as conn:
                (count,) = conn.execute(
                    "SELECT count(*) FROM sqlite_master "
                    f"WHERE type='table' AND name IN ({placeholders})",
                    _REQUIRED_TABLES,
                ).fetchone()
        except sqlite3.Error:
            return False
        return count == len(_REQUIRED_TABLES)

    @classmethod
    def open(cls, path: str | os.PathLike[str]) -> SqliteStorage:
        """Open the database in directory ``path``.

        Raises FileNotFoundError if there is none, OSError if it cannot be
        opened and ValueError if it lacks the expected schema.
        """
        db_path = _db_path(path)
        if not db_path.exists():
            raise FileNotFoundError(f"Database not found at {db_path}")
        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.Error as exc:
            raise OSError(f"Failed to open database: {exc}") from exc
        if not cls.is_valid(path):
            conn.close()
            raise ValueError("Not a valid storage database")
        return cls(conn, db_path)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> SqliteStorage:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def init_storage(path: str | os.PathLike[str]) -> None:
    """Initialise storage in directory ``path``."""
    SqliteStorage.init(path)


def is_valid_storage(path: str | os.PathLike[str]) -> bool:
    """Tell whether directory ``path`` has been initialised."""
    return SqliteStorage.is_valid(path)


def open_storage(path: str | os.PathLike[str]) -> SqliteStorage:
    """Open the storage of directory ``path``."""
    return SqliteStorage.open(path)