from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cantor.core import CoreError
from cantor.core.artwork import DEFAULT_ARTWORK_NAMES
from cantor.core.cache import ExtractionCache
from cantor.core.db.models import CatalogStats, TrackRow
from cantor.core.events import EventBus, LibraryScanEvent, event_bus
from cantor.core.library_db import DEFAULT_DELETE_BATCH_SIZE, LibraryDb
from cantor.core.lyrics import DEFAULT_LYRICS_EXTENSIONS
from cantor.core.metadata import MetadataExtractor, default_strategies
from cantor.core.reconcile import (
    DEFAULT_MAX_CONCURRENCY,
    ReconciliationEngine,
    ScanIssue,
    describe_error,
)
from cantor.core.settings import ScanSettings, scan_settings_from_mapping
from cantor.core.walker import DirectoryWalker

if TYPE_CHECKING:
    from cantor.config import AppConfig

logger = logging.getLogger(__name__)

# Publish a progress event every N processed files
DEFAULT_PROGRESS_INTERVAL = 100


@dataclass(frozen=True, slots=True)
class ScanResult:
    processed: int = 0
    new: int = 0
    updated: int = 0
    cached: int = 0
    deleted: int = 0
    errors: tuple[ScanIssue, ...] = ()
    total_in_db: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "new": self.new,
            "updated": self.updated,
            "cached": self.cached,
            "deleted": self.deleted,
            "errors": [issue.to_dict() for issue in self.errors],
            "total_in_db": self.total_in_db,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScanResult:
        return cls(
            processed=int(data.get("processed", 0)),
            new=int(data.get("new", 0)),
            updated=int(data.get("updated", 0)),
            cached=int(data.get("cached", 0)),
            deleted=int(data.get("deleted", 0)),
            errors=tuple(
                ScanIssue(file=str(e.get("file", "")), error=str(e.get("error", "")))
                for e in data.get("errors", ())
            ),
            total_in_db=int(data.get("total_in_db", 0)),
        )


@dataclass
class ScanStatus:
    """Status of a running or completed scan."""

    is_running: bool = False
    root: str = ""
    progress: float = 0.0  # 0.0 to 1.0
    files_total: int = 0
    files_done: int = 0
    errors: int = 0
    last_result: ScanResult | None = None


class MusicLibraryError(CoreError):
    """Base error for MusicLibrary operations."""


class MusicLibraryNotReadyError(MusicLibraryError):
    """Raised when operations are attempted before the library is initialized."""


class ScanRootError(MusicLibraryError):
    """The scan root is missing, not a directory, or unreadable. Nothing was changed."""


class ScanInProgressError(MusicLibraryError):
    """A scan is already running on this library."""


def _absolute(path: Path | str) -> Path:
    return Path(os.path.abspath(Path(path).expanduser()))


def _check_root_readable(root: Path) -> None:
    with os.scandir(root):
        pass


class MusicLibrary:
    """
    Scan orchestrator and read facade for the catalog.

    A scan runs: load settings, walk, deletion sweep, per-file reconcile,
    report. Only one scan runs at a time per instance. The only fatal error
    is an inaccessible root, raised before anything is modified; every other
    failure ends up in `ScanResult.errors`.

    Dependencies:
    - `LibraryDb` for persistence (must already be open)
    - `DirectoryWalker` for discovery
    - `MetadataExtractor` for tag extraction
    - `ExtractionCache` (optional) to skip repeated extraction work
    """

    def __init__(
        self,
        *,
        db: LibraryDb,
        walker: DirectoryWalker,
        extractor: MetadataExtractor | None = None,
        cache: ExtractionCache | None = None,
        music_root: Path | str | None = None,
        events: EventBus | None = None,
        lyrics_extensions: Sequence[str] = DEFAULT_LYRICS_EXTENSIONS,
        artwork_names: Sequence[str] = DEFAULT_ARTWORK_NAMES,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        self._db = db
        self._walker = walker
        self._cache = cache
        self._music_root = _absolute(music_root) if music_root is not None else None
        self._events = events if events is not None else event_bus
        self._progress_interval = max(1, progress_interval)
        self._engine = ReconciliationEngine(
            db,
            extractor if extractor is not None else MetadataExtractor(),
            cache,
            lyrics_extensions=lyrics_extensions,
            artwork_names=artwork_names,
            max_concurrency=max_concurrency,
            delete_batch_size=delete_batch_size,
        )
        self._initialized = False
        self._scan_lock = asyncio.Lock()
        self._scan_status = ScanStatus()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        db: LibraryDb,
        cache: ExtractionCache | None = None,
        events: EventBus | None = None,
    ) -> MusicLibrary:
        """Wire a library from loaded configuration."""
        extractor = MetadataExtractor(
            default_strategies(config.formats.sidecar),
            album_artist_hints=config.metadata.album_artist_hints,
        )
        return cls(
            db=db,
            walker=DirectoryWalker(config.formats.audio),
            extractor=extractor,
            cache=cache,
            music_root=config.library.music_root,
            events=events,
            lyrics_extensions=config.formats.lyrics,
            artwork_names=config.formats.artwork_names or DEFAULT_ARTWORK_NAMES,
            max_concurrency=config.library.max_concurrency,
            delete_batch_size=config.library.delete_batch_size,
        )

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def music_root(self) -> Path | None:
        return self._music_root

    @property
    def scan_status(self) -> ScanStatus:
        return self._scan_status

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    async def initialize(self) -> None:
        """
        Prepare the library.

        Contract:
        - `LibraryDb` must already be open.
        - schema/migrations are ensured here for convenience.
        """
        if not self._db.is_open:
            raise MusicLibraryError(
                "LibraryDb is not open. Open it before initializing MusicLibrary."
            )

        await self._db.ensure_schema()
        self._initialized = True

    async def load_settings(self) -> ScanSettings:
        """Read scan settings from the catalog; any problem falls back to defaults."""
        try:
            raw = await self._db.get_settings()
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not load scan settings, using defaults: %s", e)
            return ScanSettings()
        return scan_settings_from_mapping(raw)

    # ---- Scanning ----

    async def _resolve_root(self, root: Path | str | None) -> Path:
        if root is not None:
            resolved = _absolute(root)
        elif self._music_root is not None:
            resolved = self._music_root
        else:
            raise ScanRootError("No scan root provided and no music_root configured.")

        try:
            await asyncio.to_thread(_check_root_readable, resolved)
        except OSError as e:
            raise ScanRootError(f"Scan root is not accessible: {resolved} ({e})") from e
        return resolved

    @staticmethod
    def _results_key(root: Path, settings: ScanSettings) -> str:
        raw = f"{root}|{settings.cache_key()}"
        return hashlib.md5(raw.encode("utf-8", "surrogateescape")).hexdigest()

    async def scan(
        self, root: Path | str | None = None, *, use_cached_results: bool = False
    ) -> ScanResult:
        """
        Scan `root` (or the configured music root) and reconcile the catalog.

        Raises:
            MusicLibraryNotReadyError: `initialize()` was not called.
            ScanInProgressError: another scan is running on this library.
            ScanRootError: the root is inaccessible; the catalog is untouched.
        """
        self._require_initialized()
        if self._scan_lock.locked():
            raise ScanInProgressError("A scan is already in progress.")

        async with self._scan_lock:
            scan_root = await self._resolve_root(root)
            settings = await self.load_settings()
            self._scan_status = ScanStatus(is_running=True, root=str(scan_root))

            try:
                return await self._run_scan(scan_root, settings, use_cached_results)
            except Exception as e:
                logger.error("Scan of %s failed: %s", scan_root, e)
                await self._events.publish(
                    LibraryScanEvent(status="failed", root=str(scan_root), error=str(e))
                )
                raise
            finally:
                self._scan_status.is_running = False

    async def _run_scan(
        self, root: Path, settings: ScanSettings, use_cached_results: bool
    ) -> ScanResult:
        results_key = self._results_key(root, settings)
        if use_cached_results and self._cache is not None:
            cached = await self._cache.get_scan_results(results_key)
            if cached is not None:
                result = ScanResult.from_dict(cached)
                logger.info("Using cached scan results for %s", root)
                self._finish(result)
                await self._publish_completed(root, result)
                return result

        logger.info(
            "Starting scan of %s (max_depth=%d, include=%s, exclude=%s)",
            root,
            settings.max_depth,
            list(settings.include_folders),
            list(settings.exclude_folders),
        )
        await self._events.publish(LibraryScanEvent(status="started", root=str(root)))

        unreadable: list[tuple[Path, OSError]] = []

        def _on_walk_error(path: Path, exc: OSError) -> None:
            unreadable.append((path, exc))

        try:
            candidates = await self._walker.walk_async(root, settings, _on_walk_error)
        except (FileNotFoundError, NotADirectoryError) as e:
            raise ScanRootError(f"Scan root disappeared: {root}") from e
        logger.info("Found %d audio files under %s", len(candidates), root)
        self._scan_status.files_total = len(candidates)

        walk_issues = [ScanIssue(file=str(p), error=describe_error(e)) for p, e in unreadable]
        deleted = await self._engine.sweep(
            root, candidates, settings, keep=[p for p, _ in unreadable]
        )

        async def _on_progress(done: int, total: int, path: Path) -> None:
            self._scan_status.files_done = done
            self._scan_status.progress = done / total if total else 1.0
            if done % self._progress_interval == 0 or done == total:
                logger.debug("Processed %d/%d files", done, total)
                await self._events.publish(
                    LibraryScanEvent(
                        status="progress",
                        root=str(root),
                        scanned=done,
                        total=total,
                        current_path=str(path),
                    )
                )

        passed = await self._engine.process_all(candidates, on_progress=_on_progress)
        total_in_db = await self._db.count_tracks()

        result = ScanResult(
            processed=passed.processed,
            new=passed.new,
            updated=passed.updated,
            cached=passed.cached,
            deleted=deleted,
            errors=(*walk_issues, *passed.errors),
            total_in_db=total_in_db,
        )
        logger.info(
            "Scan complete: %d processed, %d new, %d updated, %d cached, %d deleted, "
            "%d errors, %d in catalog",
            result.processed,
            result.new,
            result.updated,
            result.cached,
            result.deleted,
            len(result.errors),
            result.total_in_db,
        )

        if self._cache is not None:
            await self._cache.put_scan_results(results_key, result.to_dict())

        self._finish(result)
        await self._publish_completed(root, result)
        return result

    def _finish(self, result: ScanResult) -> None:
        self._scan_status.progress = 1.0
        self._scan_status.errors = len(result.errors)
        self._scan_status.last_result = result

    async def _publish_completed(self, root: Path, result: ScanResult) -> None:
        await self._events.publish(
            LibraryScanEvent(
                status="completed",
                root=str(root),
                scanned=result.processed,
                total=result.processed + len(result.errors),
                result=result.to_dict(),
            )
        )

    # ---- Catalog queries and maintenance ----

    async def stats(self) -> CatalogStats:
        self._require_initialized()
        return await self._db.get_stats()

    async def search(
        self, query: str, *, limit: int = 50, offset: int = 0
    ) -> tuple[TrackRow, ...]:
        """Substring search on title, artist and album."""
        self._require_initialized()
        self._validate_paging(offset=offset, limit=limit)
        q = query.strip()
        if not q:
            return ()
        return tuple(await self._db.search_tracks(q, limit=limit, offset=offset))

    async def cleanup_missing(self) -> int:
        """Delete catalog rows whose file no longer exists. Returns the count."""
        self._require_initialized()
        if self._scan_lock.locked():
            raise ScanInProgressError("Cannot clean up while a scan is running.")
        async with self._scan_lock:
            deleted = await self._engine.delete_missing()
        logger.info("Cleanup removed %d missing tracks", deleted)
        return deleted

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise MusicLibraryNotReadyError(
                "MusicLibrary is not initialized. Call await MusicLibrary.initialize() first."
            )

    @staticmethod
    def _validate_paging(*, offset: int, limit: int) -> None:
        if offset < 0:
            raise ValueError("offset must be >= 0")
        if limit <= 0:
            raise ValueError("limit must be > 0")
        if limit > 10_000:
            raise ValueError("limit is unreasonably large")
