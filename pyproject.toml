[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "clarisfs"
version = "0.1.0"
description = "A FUSE passthrough filesystem that keeps a SQLite database in its source directory"
requires-python = ">=3.10"
dependencies = []
keywords = ["fuse", "filesystem", "passthrough", "sqlite", "version-control"]
classifiers = [
    "Development Status :: 2 - Pre-Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
clarisfs = "clarisfs.main:main"

[tool.setuptools.packages.find]
include = ["clarisfs*"]

[tool.pytest.ini_options]
addopts = "-ra"
