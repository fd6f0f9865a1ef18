"""
Reconcile catalog rows with the files found by a walk.

Two passes:

- Pass A (`sweep`) runs first and deletes every row whose file vanished,
  whose directory fell out of scope, or which the walk did not produce.
  It needs the complete candidate set, so it never starts before the walk
  has finished.
- Pass B (`process_all`) handles each candidate: unchanged files (same
  stat fingerprint) only get their `last_scanned` bumped; new or changed
  files are re-extracted (through the extraction cache) and written.

Extraction runs concurrently, bounded by a semaphore. The catalog sits
behind a single aiosqlite connection, so every catalog write goes through
one lock.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from collections.abc import Awaitable, Callable, Collection, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from cantor.core.artwork import DEFAULT_ARTWORK_NAMES, find_artwork
from cantor.core.cache import ExtractionCache
from cantor.core.db.models import NewTrack, TrackRef
from cantor.core.fingerprint import fingerprint
from cantor.core.library_db import DEFAULT_DELETE_BATCH_SIZE, LibraryDb
from cantor.core.lyrics import DEFAULT_LYRICS_EXTENSIONS, find_lyrics_source
from cantor.core.metadata import MetadataExtractor, TrackMetadata
from cantor.core.settings import ScanSettings

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 8

ProgressCallback = Callable[[int, int, Path], Awaitable[None]]


class Outcome(enum.Enum):
    NEW = "new"
    UPDATED = "updated"
    CACHED = "cached"


@dataclass(frozen=True, slots=True)
class ScanIssue:
    """A file that could not be processed, and why."""

    file: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"file": self.file, "error": self.error}


@dataclass(slots=True)
class PassResult:
    """Counters for one run of Pass B."""

    new: int = 0
    updated: int = 0
    cached: int = 0
    errors: list[ScanIssue] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.new + self.updated + self.cached

    @property
    def done(self) -> int:
        return self.processed + len(self.errors)

    def record(self, outcome: Outcome) -> None:
        if outcome is Outcome.NEW:
            self.new += 1
        elif outcome is Outcome.UPDATED:
            self.updated += 1
        else:
            self.cached += 1


def _relative_dir(root: Path, file_path: str) -> str | None:
    """Root-relative POSIX path of the file's directory, or None if outside root."""
    try:
        rel = Path(file_path).parent.relative_to(root)
    except ValueError:
        return None
    posix = rel.as_posix()
    return "" if posix == "." else posix


def _is_kept(file_path: str, kept: frozenset[str]) -> bool:
    if file_path in kept:
        return True
    return any(str(parent) in kept for parent in Path(file_path).parents)


def describe_error(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class ReconciliationEngine:
    """
    Diffs candidate files against catalog rows and applies the result.

    `cache` is optional; without it every new or changed file is extracted
    from scratch and no artwork is stored.
    """

    def __init__(
        self,
        db: LibraryDb,
        extractor: MetadataExtractor,
        cache: ExtractionCache | None = None,
        *,
        lyrics_extensions: Sequence[str] = DEFAULT_LYRICS_EXTENSIONS,
        artwork_names: Sequence[str] = DEFAULT_ARTWORK_NAMES,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        if delete_batch_size <= 0:
            raise ValueError("delete_batch_size must be > 0")
        self._db = db
        self._extractor = extractor
        self._cache = cache
        self._lyrics_extensions = tuple(lyrics_extensions)
        self._artwork_names = tuple(artwork_names)
        self._max_concurrency = max_concurrency
        self._delete_batch_size = delete_batch_size
        self._db_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Pass A
    # ------------------------------------------------------------------

    @staticmethod
    def _stale_ids(
        root: Path,
        refs: Sequence[TrackRef],
        wanted: frozenset[str],
        settings: ScanSettings,
        kept: frozenset[str] = frozenset(),
    ) -> list[int]:
        stale: list[int] = []
        for ref in refs:
            if kept and _is_kept(ref.file_path, kept):
                logger.debug("Keeping %s (walk could not stat it)", ref.file_path)
                continue
            if ref.file_path not in wanted:
                reason = "not found by walk"
            elif not os.path.exists(ref.file_path):
                reason = "file missing"
            else:
                rel = _relative_dir(root, ref.file_path)
                if rel is not None and settings.allows(rel):
                    continue
                reason = "out of scope"
            logger.debug("Removing %s (%s)", ref.file_path, reason)
            stale.append(ref.id)
        return stale

    async def sweep(
        self,
        root: Path,
        candidates: Collection[Path],
        settings: ScanSettings,
        *,
        keep: Collection[Path] = (),
    ) -> int:
        """
        Delete rows that no longer correspond to an in-scope file. Returns the count.

        Rows at or below a path in `keep` survive even when the walk did not
        produce them; the walker passes entries it could not classify.
        """
        async with self._db_lock:
            refs = await self._db.list_track_refs()
        if not refs:
            return 0

        wanted = frozenset(str(p) for p in candidates)
        kept = frozenset(str(p) for p in keep)
        stale = await asyncio.to_thread(self._stale_ids, root, refs, wanted, settings, kept)
        if not stale:
            return 0

        async with self._db_lock:
            deleted = await self._db.delete_tracks_by_ids(
                stale, batch_size=self._delete_batch_size
            )
            await self._db.commit()
        logger.info("Removed %d stale tracks from the catalog", deleted)
        return deleted

    @staticmethod
    def _missing_ids(refs: Sequence[TrackRef]) -> list[int]:
        return [ref.id for ref in refs if not os.path.exists(ref.file_path)]

    async def delete_missing(self) -> int:
        """Delete rows whose file no longer exists, regardless of scan scope."""
        async with self._db_lock:
            refs = await self._db.list_track_refs()
        missing = await asyncio.to_thread(self._missing_ids, refs)
        if not missing:
            return 0
        async with self._db_lock:
            deleted = await self._db.delete_tracks_by_ids(
                missing, batch_size=self._delete_batch_size
            )
            await self._db.commit()
        return deleted

    # ------------------------------------------------------------------
    # Pass B
    # ------------------------------------------------------------------

    async def _extract(self, path: Path, stat: os.stat_result) -> TrackMetadata:
        if self._cache is not None:
            cached = await self._cache.get_metadata(path, stat)
            if cached is not None:
                logger.debug("Metadata cache hit for %s", path.name)
                return TrackMetadata.from_dict(cached)

        metadata = await asyncio.to_thread(self._extractor.extract, path)

        if self._cache is not None:
            await self._cache.put_metadata(path, stat, metadata.to_dict())
        return metadata

    async def _store_artwork(self, path: Path) -> str | None:
        if self._cache is None:
            return None
        data = await asyncio.to_thread(find_artwork, path, self._artwork_names)
        if not data:
            return None
        stored = await self._cache.put_artwork(data)
        return str(stored[1]) if stored else None

    async def process(self, path: Path) -> Outcome:
        """
        Reconcile a single candidate with its catalog row.

        Raises on stat or catalog failures; `process_all` turns those into
        `ScanIssue`s.
        """
        file_path = str(path)
        stat = await asyncio.to_thread(os.stat, path)
        fp = fingerprint(file_path, stat)

        async with self._db_lock:
            existing = await self._db.get_track_by_path(file_path)
            if existing is not None and existing.fingerprint == fp:
                await self._db.touch_track(existing.id)
                return Outcome.CACHED

        metadata = await self._extract(path, stat)
        lyrics_source = await asyncio.to_thread(
            find_lyrics_source, path, self._lyrics_extensions
        )
        artwork_path = await self._store_artwork(path)

        track = NewTrack(
            file_path=file_path,
            filename=path.name,
            title=metadata.title,
            artist=metadata.artist,
            album=metadata.album,
            album_artist=metadata.album_artist,
            genre=metadata.genre,
            year=metadata.year,
            track_number=metadata.track,
            duration=metadata.duration,
            file_size=stat.st_size,
            fingerprint=fp,
            has_lyrics=lyrics_source is not None,
            lyrics_source=lyrics_source,
            artwork_path=artwork_path,
        )

        async with self._db_lock:
            if existing is None:
                await self._db.insert_track(track)
                return Outcome.NEW
            await self._db.update_track(existing.id, track)
            return Outcome.UPDATED

    async def process_all(
        self,
        paths: Collection[Path],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> PassResult:
        """Run Pass B over every candidate; one failing file never stops the batch."""
        result = PassResult()
        total = len(paths)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(path: Path) -> None:
            async with semaphore:
                try:
                    outcome = await self.process(path)
                except Exception as e:  # noqa: BLE001
                    logger.warning("Error processing %s: %s", path, e)
                    result.errors.append(ScanIssue(file=str(path), error=describe_error(e)))
                else:
                    result.record(outcome)
                if on_progress is not None:
                    await on_progress(result.done, total, path)

        await asyncio.gather(*(_one(p) for p in sorted(paths)))

        async with self._db_lock:
            await self._db.commit()
        return result

