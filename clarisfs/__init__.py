"""A FUSE passthrough filesystem that keeps a SQLite database in its source directory."""

__version__ = "0.1.0"