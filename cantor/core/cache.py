import asyncio
import hashlib
import io
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from PIL import Image, ImageOps

from cantor.core.fingerprint import StatLike, path_key, stat_key

logger = logging.getLogger(__name__)

CATEGORIES: tuple[str, ...] = ("metadata", "artwork", "config", "temp")

# Limit concurrent cache writes to prevent task explosion under load
_MAX_CONCURRENT_WRITES = 4

DEFAULT_SCAN_RESULTS_TTL = 3600.0  # seconds
DEFAULT_TEMP_MAX_AGE_MS = 86_400_000  # 24 hours
DEFAULT_ARTWORK_SIZE = 300
DEFAULT_ARTWORK_QUALITY = 85

_SCAN_RESULTS_PREFIX = "scan_"


@dataclass(frozen=True, slots=True)
class CategoryStats:
    count: int = 0
    total_bytes: int = 0


class ExtractionCache:
    """
    On-disk cache that absorbs repeated extraction work across scans.

    Layout under `root`:
    - metadata/{md5(path)}_{md5(size:mtime)}.json: metadata snapshots
    - metadata/scan_{key}.json: whole-scan results (TTL'd, opt-in)
    - artwork/{md5(bytes)}.jpg: normalized thumbnails, content-addressed
    - config/{key}.json: small config blobs
    - temp/: scratch files, reclaimed by age

    Cache invalidation:
    - Metadata keys include size + mtime, so a changed file simply gets a new
      key. The old entry is orphaned, not deleted (see `reclaim_orphans`).

    The cache is never a correctness dependency: every operation logs and
    degrades to a miss or a no-op on failure.
    """

    def __init__(
        self,
        root: Path,
        *,
        artwork_size: int = DEFAULT_ARTWORK_SIZE,
        artwork_quality: int = DEFAULT_ARTWORK_QUALITY,
        scan_results_ttl: float = DEFAULT_SCAN_RESULTS_TTL,
    ):
        self.root = Path(root)
        self.metadata_dir = self.root / "metadata"
        self.artwork_dir = self.root / "artwork"
        self.config_dir = self.root / "config"
        self.temp_dir = self.root / "temp"
        self.artwork_size = artwork_size
        self.artwork_quality = artwork_quality
        self.scan_results_ttl = scan_results_ttl
        self._write_semaphore = asyncio.Semaphore(_MAX_CONCURRENT_WRITES)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        for directory in self._category_dirs().values():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning("Failed to create cache directory %s: %s", directory, e)

    def _category_dirs(self) -> dict[str, Path]:
        return {
            "metadata": self.metadata_dir,
            "artwork": self.artwork_dir,
            "config": self.config_dir,
            "temp": self.temp_dir,
        }

    @staticmethod
    def metadata_key(path: str | os.PathLike[str], stat: StatLike) -> str:
        return f"{path_key(path)}_{stat_key(stat)}"

    @staticmethod
    def _write_json(target: Path, payload: Any) -> None:
        # Write-then-rename so concurrent readers never see a partial file
        tmp = target.with_name(f".{target.name}.tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, target)

    @staticmethod
    def _read_json(target: Path) -> Any:
        return json.loads(target.read_text(encoding="utf-8"))

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_metadata(
        self, path: str | os.PathLike[str], stat: StatLike
    ) -> Optional[dict[str, Any]]:
        """Cached metadata snapshot for this exact (path, size, mtime), or None."""
        cache_file = self.metadata_dir / f"{self.metadata_key(path, stat)}.json"
        try:
            cached = await asyncio.to_thread(self._read_json, cache_file)
        except FileNotFoundError:
            return None
        except Exception as e:
            logger.debug("Unreadable metadata cache entry %s: %s", cache_file.name, e)
            return None

        if (
            isinstance(cached, dict)
            and cached.get("file_path") == os.fspath(path)
            and cached.get("timestamp")
            and isinstance(cached.get("metadata"), dict)
        ):
            return cached["metadata"]
        return None

    async def put_metadata(
        self, path: str | os.PathLike[str], stat: StatLike, metadata: dict[str, Any]
    ) -> None:
        cache_file = self.metadata_dir / f"{self.metadata_key(path, stat)}.json"
        entry = {
            "file_path": os.fspath(path),
            "metadata": metadata,
            "timestamp": time.time(),
            "stats": {"size": stat.st_size, "mtime_ns": stat.st_mtime_ns},
        }
        async with self._write_semaphore:
            try:
                await asyncio.to_thread(self._write_json, cache_file, entry)
            except Exception as e:
                logger.warning("Failed to cache metadata for %s: %s", path, e)

    # ------------------------------------------------------------------
    # Artwork
    # ------------------------------------------------------------------

    async def get_artwork(self, artwork_hash: str) -> Optional[Path]:
        artwork_file = self.artwork_dir / f"{artwork_hash}.jpg"
        try:
            exists = await asyncio.to_thread(artwork_file.is_file)
        except OSError:
            return None
        return artwork_file if exists else None

    def _render_thumbnail(self, data: bytes) -> bytes:
        """Crop/resize to a square JPEG thumbnail. Raises on undecodable input."""
        with Image.open(io.BytesIO(data)) as img:
            thumb = ImageOps.fit(
                img.convert("RGB"),
                (self.artwork_size, self.artwork_size),
                method=Image.Resampling.LANCZOS,
            )
        out = io.BytesIO()
        thumb.save(out, format="JPEG", quality=self.artwork_quality, progressive=True)
        return out.getvalue()

    def _store_artwork(self, artwork_file: Path, data: bytes) -> None:
        if artwork_file.exists():
            return
        try:
            payload = self._render_thumbnail(data)
        except Exception as e:
            # Keep the original bytes rather than losing the artwork
            logger.warning("Artwork processing failed, storing original: %s", e)
            payload = data
        tmp = artwork_file.with_name(f".{artwork_file.name}.tmp")
        tmp.write_bytes(payload)
        os.replace(tmp, artwork_file)

    async def put_artwork(self, data: bytes) -> Optional[tuple[str, Path]]:
        """
        Store artwork by content hash.

        Returns (hash, cached file path), or None if nothing could be written.
        """
        if not data:
            return None
        artwork_hash = hashlib.md5(data).hexdigest()
        artwork_file = self.artwork_dir / f"{artwork_hash}.jpg"
        async with self._write_semaphore:
            try:
                await asyncio.to_thread(self._store_artwork, artwork_file, data)
            except Exception as e:
                logger.warning("Failed to cache artwork %s: %s", artwork_hash, e)
                return None
        return artwork_hash, artwork_file

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    async def get_config(self, key: str) -> Any:
        try:
            return await asyncio.to_thread(self._read_json, self.config_dir / f"{key}.json")
        except Exception:
            return None

    async def put_config(self, key: str, data: Any) -> None:
        async with self._write_semaphore:
            try:
                await asyncio.to_thread(self._write_json, self.config_dir / f"{key}.json", data)
            except Exception as e:
                logger.warning("Failed to cache configuration %s: %s", key, e)

    # ------------------------------------------------------------------
    # Whole-scan results
    # ------------------------------------------------------------------

    async def get_scan_results(self, key: str) -> Optional[dict[str, Any]]:
        """Previously stored scan results, if younger than the TTL."""
        scan_file = self.metadata_dir / f"{_SCAN_RESULTS_PREFIX}{key}.json"
        try:
            cached = await asyncio.to_thread(self._read_json, scan_file)
        except Exception:
            return None
        try:
            if time.time() - float(cached["timestamp"]) < self.scan_results_ttl:
                return cached["results"]
        except (KeyError, TypeError, ValueError):
            pass
        return None

    async def put_scan_results(self, key: str, results: dict[str, Any]) -> None:
        scan_file = self.metadata_dir / f"{_SCAN_RESULTS_PREFIX}{key}.json"
        entry = {"scan_key": key, "results": results, "timestamp": time.time()}
        async with self._write_semaphore:
            try:
                await asyncio.to_thread(self._write_json, scan_file, entry)
            except Exception as e:
                logger.warning("Failed to cache scan results %s: %s", key, e)

    # ------------------------------------------------------------------
    # Temp files
    # ------------------------------------------------------------------

    async def create_temp_file(self, name: str, data: bytes) -> Optional[Path]:
        temp_file = self.temp_dir / Path(name).name
        try:
            await asyncio.to_thread(temp_file.write_bytes, data)
        except Exception as e:
            logger.warning("Failed to create temp file %s: %s", name, e)
            return None
        return temp_file

    def _cleanup_temp(self, max_age_ms: int) -> int:
        removed = 0
        now = time.time()
        with os.scandir(self.temp_dir) as it:
            entries = list(it)
        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                age_ms = (now - entry.stat().st_mtime) * 1000
                if age_ms > max_age_ms:
                    os.unlink(entry.path)
                    removed += 1
                    logger.debug("Cleaned up temp file %s", entry.name)
            except OSError as e:
                logger.debug("Cannot clean temp file %s: %s", entry.name, e)
        return removed

    async def cleanup_temp(self, max_age_ms: int = DEFAULT_TEMP_MAX_AGE_MS) -> int:
        """Delete temp entries older than `max_age_ms`. Returns how many were removed."""
        try:
            return await asyncio.to_thread(self._cleanup_temp, max_age_ms)
        except Exception as e:
            logger.warning("Failed to clean up temp files: %s", e)
            return 0

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _stats(self) -> dict[str, CategoryStats]:
        result: dict[str, CategoryStats] = {}
        for category, directory in self._category_dirs().items():
            count = 0
            total = 0
            try:
                with os.scandir(directory) as it:
                    for entry in it:
                        try:
                            if entry.is_file():
                                count += 1
                                total += entry.stat().st_size
                        except OSError:
                            continue
            except OSError:
                pass
            result[category] = CategoryStats(count=count, total_bytes=total)
        return result

    async def stats(self) -> dict[str, CategoryStats]:
        """Per-category file count and size. Missing directories count as empty."""
        try:
            return await asyncio.to_thread(self._stats)
        except Exception as e:
            logger.warning("Failed to compute cache stats: %s", e)
            return {c: CategoryStats() for c in CATEGORIES}

    def _clear(self, directories: list[Path]) -> bool:
        """Best-effort removal; False if any file or directory could not be cleared."""
        ok = True
        for directory in directories:
            try:
                with os.scandir(directory) as it:
                    entries = list(it)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Cannot list cache directory %s: %s", directory, e)
                ok = False
                continue
            for entry in entries:
                try:
                    if entry.is_file():
                        os.unlink(entry.path)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning("Cannot remove cached file %s: %s", entry.path, e)
                    ok = False
            logger.info("Cleared cache directory: %s", directory.name)
        return ok

    async def clear(self, category: str = "all") -> bool:
        """
        Delete cached files of one category, or all of them.

        Unknown categories clear everything. Files that cannot be removed are
        skipped; the result is False if any were.
        """
        dirs = self._category_dirs()
        targets = [dirs[category]] if category in dirs else list(dirs.values())
        return await asyncio.to_thread(self._clear, targets)

    def _reclaim_orphans(self) -> int:
        removed = 0
        with os.scandir(self.metadata_dir) as it:
            entries = list(it)
        for entry in entries:
            if not entry.name.endswith(".json") or entry.name.startswith(_SCAN_RESULTS_PREFIX):
                continue
            try:
                cached = self._read_json(Path(entry.path))
                file_path = cached["file_path"]
                expected = f"{path_key(file_path)}_{stat_key(os.stat(file_path))}.json"
                stale = expected != entry.name
            except (OSError, ValueError, KeyError, TypeError):
                stale = True
            if stale:
                try:
                    os.unlink(entry.path)
                    removed += 1
                except OSError:
                    continue
        return removed

    async def reclaim_orphans(self) -> int:
        """
        Delete metadata entries whose file is gone or has changed since caching.

        Returns the number of entries removed.
        """
        try:
            removed = await asyncio.to_thread(self._reclaim_orphans)
        except Exception as e:
            logger.warning("Failed to reclaim orphaned cache entries: %s", e)
            return 0
        if removed:
            logger.info("Reclaimed %d orphaned metadata cache entries", removed)
        return removed
