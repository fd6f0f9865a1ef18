"""
Stat-based file identity.

A fingerprint is derived from (path, size, mtime_ns) only; no file content
is read. This keeps rescans of large libraries cheap, at a known cost: a file
whose content changes while size and mtime stay identical (e.g. a rewrite
within the filesystem's timestamp resolution) is reported as unchanged.
"""

from __future__ import annotations

import hashlib
import os
from typing import Protocol


class StatLike(Protocol):
    st_size: int
    st_mtime_ns: int


def _md5(text: str) -> str:
    # surrogateescape keeps undecodable filenames hashable
    return hashlib.md5(text.encode("utf-8", errors="surrogateescape")).hexdigest()


def path_key(path: str | os.PathLike[str]) -> str:
    """Hash of the path alone."""
    return _md5(os.fspath(path))


def stat_key(stat: StatLike) -> str:
    """Hash of the (size, mtime) pair."""
    return _md5(f"{stat.st_size}:{stat.st_mtime_ns}")


def fingerprint(path: str | os.PathLike[str], stat: StatLike) -> str:
    """
    Compute the change-detection fingerprint for a file.

    Same (path, size, mtime_ns) always yields the same value; a change to
    either size or mtime yields a different one.
    """
    return _md5(f"{os.fspath(path)}|{stat.st_size}|{stat.st_mtime_ns}")
