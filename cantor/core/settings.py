"""
Scan settings.

Settings are read once per scan from the catalog's `settings` table (see
`cantor.core.db.queries_settings`). Values arrive already type-coerced where
possible, but anything may be missing or malformed: each field falls back to
its default on its own, and a bad value never fails a scan.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from cantor.core.path_filter import normalize_relative_path, should_scan

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10

SETTING_MAX_DEPTH = "scan_max_depth"
SETTING_INCLUDE_FOLDERS = "scan_include_folders"
SETTING_EXCLUDE_FOLDERS = "scan_exclude_folders"


@dataclass(frozen=True, slots=True)
class ScanSettings:
    """
    Per-scan directory rules.

    `max_depth` of 0 means unlimited. Empty `include_folders` means everything.
    """

    max_depth: int = DEFAULT_MAX_DEPTH
    include_folders: tuple[str, ...] = ()
    exclude_folders: tuple[str, ...] = ()

    def allows(self, relative_dir: str) -> bool:
        return should_scan(relative_dir, self.include_folders, self.exclude_folders)

    def cache_key(self) -> str:
        """Stable digest of the settings, used to key whole-scan result caching."""
        raw = json.dumps(
            [self.max_depth, list(self.include_folders), list(self.exclude_folders)]
        )
        return hashlib.md5(raw.encode()).hexdigest()


def _parse_max_depth(value: Any) -> int | None:
    # bool is an int subclass; "true" is not a depth
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int) or value < 0:
        return None
    return value


def _parse_folder_list(value: Any) -> tuple[str, ...] | None:
    """
    Accept a list of strings, a JSON array string, or a comma/newline
    separated string.
    """
    if value is None:
        return ()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return ()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError:
                return None
        else:
            value = re.split(r"[,\n]", text)
    if not isinstance(value, list | tuple):
        return None

    folders: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        normalized = normalize_relative_path(item.strip())
        if normalized and normalized not in folders:
            folders.append(normalized)
    return tuple(folders)


def scan_settings_from_mapping(raw: Mapping[str, Any] | None) -> ScanSettings:
    """Build `ScanSettings` from raw key/value settings, falling back per field."""
    if not raw:
        return ScanSettings()

    max_depth = _parse_max_depth(raw.get(SETTING_MAX_DEPTH, DEFAULT_MAX_DEPTH))
    if max_depth is None:
        logger.warning(
            "Invalid %s=%r, using default %d",
            SETTING_MAX_DEPTH,
            raw.get(SETTING_MAX_DEPTH),
            DEFAULT_MAX_DEPTH,
        )
        max_depth = DEFAULT_MAX_DEPTH

    includes = _parse_folder_list(raw.get(SETTING_INCLUDE_FOLDERS))
    if includes is None:
        logger.warning("Invalid %s, scanning all folders", SETTING_INCLUDE_FOLDERS)
        includes = ()

    excludes = _parse_folder_list(raw.get(SETTING_EXCLUDE_FOLDERS))
    if excludes is None:
        logger.warning("Invalid %s, excluding nothing", SETTING_EXCLUDE_FOLDERS)
        excludes = ()

    return ScanSettings(
        max_depth=max_depth,
        include_folders=includes,
        exclude_folders=excludes,
    )
