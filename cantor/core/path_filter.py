"""
Include/exclude rules for directories below a scan root.

Paths handled here are *relative* to the scan root and use "/" as separator
after normalization. The empty string denotes the root itself.

Rules (in order):
1. If includes are configured, a directory is in scope when it equals an
   include, lives below one, or is an ancestor of one. The ancestor clause
   lets the walker descend toward a deeply nested include; it also means
   files sitting directly in such an ancestor directory are picked up.
2. If excludes are configured, a directory equal to or below an exclude is
   out of scope (excludes win over includes).
3. Everything else is in scope.
"""

from __future__ import annotations

from collections.abc import Iterable


def normalize_relative_path(path: str) -> str:
    """
    Normalize a relative directory path.

    - backslashes become "/"
    - leading, trailing and repeated separators are dropped
    - "." segments are dropped
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts)


def _normalize_entries(entries: Iterable[str]) -> list[str]:
    out: list[str] = []
    for entry in entries:
        if not isinstance(entry, str):
            continue
        out.append(normalize_relative_path(entry))
    return out


def _is_same_or_below(path: str, base: str) -> bool:
    if base == "":
        return True
    return path == base or path.startswith(base + "/")


def _is_ancestor(path: str, other: str) -> bool:
    if path == "":
        return True
    return other.startswith(path + "/")


def should_scan(
    relative_path: str,
    includes: Iterable[str] = (),
    excludes: Iterable[str] = (),
) -> bool:
    """Return True if the directory at `relative_path` is in scope."""
    path = normalize_relative_path(relative_path)
    include_list = _normalize_entries(includes)
    exclude_list = [e for e in _normalize_entries(excludes) if e]

    if include_list:
        if not any(
            _is_same_or_below(path, inc) or _is_ancestor(path, inc) for inc in include_list
        ):
            return False

    if exclude_list:
        if any(_is_same_or_below(path, exc) for exc in exclude_list):
            return False

    return True
