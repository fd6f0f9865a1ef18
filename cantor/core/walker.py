from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from cantor.core.settings import ScanSettings

logger = logging.getLogger(__name__)

# Called with the path of an entry whose type could not be determined
WalkErrorHandler = Callable[[Path, OSError], None]


@dataclass(frozen=True, slots=True)
class FileCandidate:
    """An audio file found by the walker. Not persisted."""

    path: Path
    relative_dir: str


def normalize_extensions(extensions: Iterable[str]) -> frozenset[str]:
    """Lower-case extensions and make sure each has a leading dot."""
    out: set[str] = set()
    for ext in extensions:
        e = ext.strip().lower()
        if not e:
            continue
        out.add(e if e.startswith(".") else f".{e}")
    return frozenset(out)


class DirectoryWalker:
    """
    Depth-first enumeration of audio files below a root directory.

    Depth counts directory levels: the root is depth 0, its children depth 1.
    With `max_depth > 0`, directories deeper than `max_depth` are not entered.
    A directory is entered only if its root-relative path passes the settings'
    include/exclude rules; unreadable directories are skipped with a warning.
    An entry that cannot be stat'ed is skipped too, and reported to `on_error`
    so the caller can keep its catalog row and surface the failure.

    The extension allow-list is injected so tests (and callers with unusual
    collections) can use their own formats.
    """

    def __init__(self, extensions: Iterable[str], *, follow_symlinks: bool = False) -> None:
        self.extensions = normalize_extensions(extensions)
        self.follow_symlinks = follow_symlinks

    def iter_candidates(
        self,
        root: Path,
        settings: ScanSettings,
        on_error: WalkErrorHandler | None = None,
    ) -> Iterator[FileCandidate]:
        if not root.exists():
            raise FileNotFoundError(root)
        if not root.is_dir():
            raise NotADirectoryError(root)

        stack: list[tuple[Path, str, int]] = [(root, "", 0)]
        while stack:
            directory, rel, depth = stack.pop()
            if not settings.allows(rel):
                continue

            try:
                with os.scandir(directory) as it:
                    entries = list(it)
            except OSError as e:
                logger.warning("Skipping unreadable directory %s: %s", directory, e)
                continue

            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=self.follow_symlinks):
                        child_depth = depth + 1
                        if settings.max_depth > 0 and child_depth > settings.max_depth:
                            continue
                        child_rel = f"{rel}/{entry.name}" if rel else entry.name
                        stack.append((Path(entry.path), child_rel, child_depth))
                    elif entry.is_file():
                        if os.path.splitext(entry.name)[1].lower() in self.extensions:
                            yield FileCandidate(path=Path(entry.path), relative_dir=rel)
                except OSError as e:
                    logger.warning("Cannot stat %s: %s", entry.path, e)
                    if on_error is not None:
                        on_error(Path(entry.path), e)

    def walk(
        self, root: Path, settings: ScanSettings, on_error: WalkErrorHandler | None = None
    ) -> set[Path]:
        """Return the complete set of candidate file paths (order not guaranteed)."""
        return {c.path for c in self.iter_candidates(root, settings, on_error)}

    async def walk_async(
        self, root: Path, settings: ScanSettings, on_error: WalkErrorHandler | None = None
    ) -> set[Path]:
        """Run `walk` in a worker thread to keep the event loop responsive."""
        return await asyncio.to_thread(self.walk, root, settings, on_error)
