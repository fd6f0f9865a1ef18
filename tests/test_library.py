"""
Tests for cantor.core.library.MusicLibrary.

These run full scans against small directory trees on disk, an in-memory
catalog and a real extraction cache.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest
from PIL import Image

from cantor.config import ENV_MUSIC_PATH, load_config
from cantor.core import reconcile
from cantor.core.cache import ExtractionCache
from cantor.core.events import EventBus, LibraryScanEvent
from cantor.core.library import (
    MusicLibrary,
    MusicLibraryError,
    MusicLibraryNotReadyError,
    ScanInProgressError,
    ScanResult,
    ScanRootError,
)
from cantor.core.library_db import LibraryDb
from cantor.core.walker import DirectoryWalker

from .conftest import execute_sql, make_unstattable, touch_audio, write_flac


def _bump_mtime(path: Path, seconds: int = 5) -> None:
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


@pytest.fixture
async def db() -> LibraryDb:
    db = LibraryDb(":memory:")
    await db.open()
    yield db
    await db.close()


@pytest.fixture
def cache(tmp_path: Path) -> ExtractionCache:
    return ExtractionCache(tmp_path / "cache")


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
async def library(
    db: LibraryDb, cache: ExtractionCache, events: EventBus, music_root: Path
) -> MusicLibrary:
    library = MusicLibrary(
        db=db,
        walker=DirectoryWalker(["mp3", "flac"]),
        cache=cache,
        music_root=music_root,
        events=events,
    )
    await library.initialize()
    return library


@pytest.fixture
def three_files(music_root: Path) -> list[Path]:
    return [
        write_flac(music_root / "Artist" / "Album (2001)" / "01 - One.flac", title="One"),
        touch_audio(music_root / "Artist" / "Album (2001)" / "02 - Two.mp3"),
        touch_audio(music_root / "loose.mp3"),
    ]


class TestLifecycle:
    async def test_not_initialized(self, db: LibraryDb, music_root: Path) -> None:
        library = MusicLibrary(db=db, walker=DirectoryWalker(["mp3"]), music_root=music_root)
        assert not library.initialized
        with pytest.raises(MusicLibraryNotReadyError):
            await library.scan()
        with pytest.raises(MusicLibraryNotReadyError):
            await library.search("x")

    async def test_initialize_requires_open_db(self) -> None:
        library = MusicLibrary(db=LibraryDb(":memory:"), walker=DirectoryWalker(["mp3"]))
        with pytest.raises(MusicLibraryError):
            await library.initialize()


class TestScan:
    """Full reconcile cycles."""

    async def test_first_scan_inserts_everything(
        self, library: MusicLibrary, db: LibraryDb, three_files: list[Path]
    ) -> None:
        result = await library.scan()
        assert result.processed == 3
        assert result.new == 3
        assert result.updated == 0
        assert result.cached == 0
        assert result.deleted == 0
        assert result.errors == ()
        assert result.total_in_db == 3

        row = await db.get_track_by_path(three_files[0])
        assert row is not None
        assert row.title == "One"
        assert row.album == "Album"
        assert row.year == 2001
        assert row.duration == 1
        assert row.fingerprint

    async def test_second_scan_is_all_cached(
        self, library: MusicLibrary, three_files: list[Path]
    ) -> None:
        await library.scan()
        result = await library.scan()
        assert (result.new, result.updated, result.deleted) == (0, 0, 0)
        assert result.cached == 3
        assert result.processed == 3
        assert result.total_in_db == 3

    async def test_unchanged_file_only_touches_last_scanned(
        self, library: MusicLibrary, db: LibraryDb, three_files: list[Path]
    ) -> None:
        await library.scan()
        before = await db.get_track_by_path(three_files[1])
        await library.scan()
        after = await db.get_track_by_path(three_files[1])
        assert before is not None and after is not None
        assert after.updated_at == before.updated_at
        assert after.last_scanned >= before.last_scanned

    async def test_modified_file_is_updated(
        self, library: MusicLibrary, db: LibraryDb, music_root: Path
    ) -> None:
        song = write_flac(music_root / "song.flac", title="Old")
        await library.scan()

        write_flac(song, title="New Title")
        _bump_mtime(song)
        result = await library.scan()
        assert result.updated == 1
        assert result.new == 0

        row = await db.get_track_by_path(song)
        assert row is not None
        assert row.title == "New Title"

    async def test_removed_file_is_deleted(
        self, library: MusicLibrary, db: LibraryDb, three_files: list[Path]
    ) -> None:
        await library.scan()
        three_files[2].unlink()

        result = await library.scan()
        assert result.deleted == 1
        assert result.total_in_db == 2
        assert await db.get_track_by_path(three_files[2]) is None

    async def test_rows_outside_scanned_root_are_dropped(
        self, library: MusicLibrary, db: LibraryDb, music_root: Path
    ) -> None:
        a = touch_audio(music_root / "A" / "a.mp3")
        touch_audio(music_root / "B" / "b.mp3")
        await library.scan()

        result = await library.scan(music_root / "A")
        assert result.deleted == 1
        assert result.total_in_db == 1
        assert await db.get_track_by_path(a) is not None

    async def test_lyrics_and_artwork(
        self,
        library: MusicLibrary,
        db: LibraryDb,
        cache: ExtractionCache,
        music_root: Path,
    ) -> None:
        song = touch_audio(music_root / "Album" / "01 - Song.mp3")
        song.with_suffix(".lrc").write_text("[00:01.00]hello", encoding="utf-8")
        Image.new("RGB", (64, 64), "green").save(music_root / "Album" / "folder.jpg")
        bare = touch_audio(music_root / "Other" / "x.mp3")

        await library.scan()

        row = await db.get_track_by_path(song)
        assert row is not None
        assert row.has_lyrics is True
        assert row.lyrics_source == "sidecar"
        assert row.artwork_path is not None
        assert Path(row.artwork_path).parent == cache.artwork_dir
        assert Path(row.artwork_path).is_file()

        row = await db.get_track_by_path(bare)
        assert row is not None
        assert row.has_lyrics is False
        assert row.lyrics_source is None
        assert row.artwork_path is None

    async def test_per_file_error_does_not_stop_scan(
        self,
        library: MusicLibrary,
        db: LibraryDb,
        music_root: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        good = [touch_audio(music_root / "a.mp3"), touch_audio(music_root / "c.mp3")]
        bad = touch_audio(music_root / "b.mp3")
        real_fingerprint = reconcile.fingerprint

        def flaky(path, stat):  # type: ignore[no-untyped-def]
            if str(path) == str(bad):
                raise OSError("boom")
            return real_fingerprint(path, stat)

        monkeypatch.setattr(reconcile, "fingerprint", flaky)

        result = await library.scan()
        assert result.processed == 2
        assert result.new == 2
        assert len(result.errors) == 1
        assert result.errors[0].file == str(bad)
        assert result.errors[0].error == "OSError: boom"
        assert result.total_in_db == 2
        for path in good:
            assert await db.get_track_by_path(path) is not None
        assert library.scan_status.errors == 1

    async def test_unstattable_entry_is_reported_and_kept(
        self,
        library: MusicLibrary,
        db: LibraryDb,
        music_root: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        good = touch_audio(music_root / "a.mp3")
        bad = touch_audio(music_root / "b.mp3")
        assert (await library.scan()).total_in_db == 2

        make_unstattable(monkeypatch, "b.mp3")
        result = await library.scan()

        assert result.deleted == 0
        assert result.cached == 1
        assert result.total_in_db == 2
        assert len(result.errors) == 1
        assert result.errors[0].file == str(bad)
        assert result.errors[0].error.startswith("PermissionError")
        assert await db.get_track_by_path(good) is not None
        assert await db.get_track_by_path(bad) is not None

    async def test_rows_below_unstattable_directory_are_kept(
        self,
        library: MusicLibrary,
        db: LibraryDb,
        music_root: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        inside = touch_audio(music_root / "Album" / "01 - a.mp3")
        touch_audio(music_root / "b.mp3")
        await library.scan()

        make_unstattable(monkeypatch, "Album")
        result = await library.scan()

        assert result.deleted == 0
        assert [e.file for e in result.errors] == [str(music_root / "Album")]
        assert await db.get_track_by_path(inside) is not None


class TestScanSettings:
    """Depth and folder rules read from the catalog's settings table."""

    async def test_max_depth(
        self, library: MusicLibrary, db: LibraryDb, music_root: Path
    ) -> None:
        touch_audio(music_root / "a.mp3")
        touch_audio(music_root / "x" / "b.mp3")
        deep = touch_audio(music_root / "x" / "y" / "c.mp3")
        assert (await library.scan()).total_in_db == 3

        await db.set_setting("scan_max_depth", 1)
        await db.commit()

        result = await library.scan()
        assert result.deleted == 1
        assert result.total_in_db == 2
        assert await db.get_track_by_path(deep) is None

    async def test_include_and_exclude(
        self, library: MusicLibrary, db: LibraryDb, music_root: Path
    ) -> None:
        kept = touch_audio(music_root / "Rock" / "a.mp3")
        touch_audio(music_root / "Rock" / "Demos" / "b.mp3")
        touch_audio(music_root / "Jazz" / "c.mp3")
        await library.scan()

        await db.set_setting("scan_include_folders", ["Rock"])
        await db.set_setting("scan_exclude_folders", ["Rock/Demos"])
        await db.commit()

        result = await library.scan()
        assert result.deleted == 2
        assert result.cached == 1
        assert result.total_in_db == 1
        assert await db.get_track_by_path(kept) is not None

    async def test_malformed_settings_fall_back(
        self, library: MusicLibrary, db: LibraryDb, music_root: Path
    ) -> None:
        touch_audio(music_root / "a" / "b" / "c.mp3")
        await execute_sql(
            db,
            "UPDATE settings SET value = ? WHERE key = ?",
            ("[oops", "scan_include_folders"),
        )
        await db.set_setting("scan_max_depth", "deep")
        await db.commit()

        settings = await library.load_settings()
        assert settings.max_depth == 10
        assert settings.include_folders == ()
        assert (await library.scan()).new == 1


class TestScanErrors:
    async def test_missing_root_leaves_catalog_untouched(
        self, library: MusicLibrary, db: LibraryDb, three_files: list[Path], tmp_path: Path
    ) -> None:
        await library.scan()
        with pytest.raises(ScanRootError):
            await library.scan(tmp_path / "does-not-exist")
        assert await db.count_tracks() == 3

    async def test_file_as_root(self, library: MusicLibrary, music_root: Path) -> None:
        f = touch_audio(music_root / "a.mp3")
        with pytest.raises(ScanRootError):
            await library.scan(f)

    async def test_no_root_configured(self, db: LibraryDb) -> None:
        library = MusicLibrary(db=db, walker=DirectoryWalker(["mp3"]), events=EventBus())
        await library.initialize()
        with pytest.raises(ScanRootError):
            await library.scan()

    async def test_concurrent_scan_is_rejected(
        self, library: MusicLibrary, events: EventBus, three_files: list[Path]
    ) -> None:
        entered = asyncio.Event()
        release = asyncio.Event()

        async def hold(event: LibraryScanEvent) -> None:
            if event.status == "started":
                entered.set()
                await release.wait()

        await events.subscribe("library.scan", hold)

        task = asyncio.create_task(library.scan())
        await asyncio.wait_for(entered.wait(), timeout=5)
        assert library.is_scanning
        assert library.scan_status.is_running

        with pytest.raises(ScanInProgressError):
            await library.scan()
        with pytest.raises(ScanInProgressError):
            await library.cleanup_missing()

        release.set()
        result = await asyncio.wait_for(task, timeout=5)
        assert result.new == 3
        assert not library.is_scanning
        assert not library.scan_status.is_running


class TestEventsAndCaching:
    async def test_lifecycle_events(
        self, library: MusicLibrary, events: EventBus, three_files: list[Path]
    ) -> None:
        seen: list[LibraryScanEvent] = []

        async def collect(event: LibraryScanEvent) -> None:
            seen.append(event)

        await events.subscribe("library.*", collect)
        result = await library.scan()

        assert [e.status for e in seen] == ["started", "progress", "completed"]
        assert seen[1].scanned == 3
        assert seen[1].total == 3
        assert seen[-1].result == result.to_dict()

    async def test_progress_interval(
        self, db: LibraryDb, events: EventBus, music_root: Path
    ) -> None:
        for i in range(5):
            touch_audio(music_root / f"{i}.mp3")
        library = MusicLibrary(
            db=db,
            walker=DirectoryWalker(["mp3"]),
            music_root=music_root,
            events=events,
            progress_interval=2,
        )
        await library.initialize()

        progress: list[int] = []

        async def collect(event: LibraryScanEvent) -> None:
            if event.status == "progress":
                progress.append(event.scanned)

        await events.subscribe("library.scan", collect)
        await library.scan()
        assert progress == [2, 4, 5]

    async def test_cached_scan_results(
        self, library: MusicLibrary, db: LibraryDb, music_root: Path, three_files: list[Path]
    ) -> None:
        first = await library.scan()
        touch_audio(music_root / "late.mp3")

        reused = await library.scan(use_cached_results=True)
        assert reused == first
        assert await db.count_tracks() == 3

        fresh = await library.scan()
        assert fresh.new == 1
        assert fresh.total_in_db == 4

    async def test_scan_result_dict_roundtrip(self) -> None:
        result = ScanResult(
            processed=2,
            new=1,
            cached=1,
            errors=(reconcile.ScanIssue(file="/m/x.mp3", error="OSError: nope"),),
            total_in_db=2,
        )
        assert ScanResult.from_dict(result.to_dict()) == result


class TestQueries:
    async def test_search_and_stats(
        self, library: MusicLibrary, music_root: Path
    ) -> None:
        write_flac(music_root / "a.flac", title="Waterloo", artist="ABBA")
        write_flac(music_root / "b.flac", title="Dancing Queen", artist="ABBA")
        write_flac(music_root / "c.flac", title="Other", artist="Someone")
        await library.scan()

        rows = await library.search("abba")
        assert [r.title for r in rows] == ["Dancing Queen", "Waterloo"]
        assert await library.search("   ") == ()
        with pytest.raises(ValueError):
            await library.search("abba", limit=0)

        stats = await library.stats()
        assert stats.total_tracks == 3
        assert stats.unique_artists == 2
        assert stats.total_duration == 3

    async def test_cleanup_missing(
        self, library: MusicLibrary, db: LibraryDb, three_files: list[Path]
    ) -> None:
        await library.scan()
        three_files[0].unlink()
        three_files[1].unlink()

        assert await library.cleanup_missing() == 2
        assert await db.count_tracks() == 1
        assert await library.cleanup_missing() == 0


class TestFromConfig:
    async def test_wires_formats_root_and_hints(
        self, db: LibraryDb, tmp_path: Path, music_root: Path
    ) -> None:
        config = load_config(env={ENV_MUSIC_PATH: str(music_root)})
        song = touch_audio(music_root / "Voyage (2021)" / "01 - Don't Shut Me Down.ogg")
        touch_audio(music_root / "Voyage (2021)" / "notes.pdf")

        library = MusicLibrary.from_config(
            config, db=db, cache=ExtractionCache(tmp_path / "cache"), events=EventBus()
        )
        await library.initialize()
        assert library.music_root == music_root

        result = await library.scan()
        assert result.new == 1

        row = await db.get_track_by_path(song)
        assert row is not None
        assert row.album == "Voyage"
        assert row.artist == "ABBA"
        assert row.title == "Don't Shut Me Down"
