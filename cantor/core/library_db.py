"""
Catalog database access layer.

Goals:
- SQLite + aiosqlite, async/await friendly.
- Keep the schema small, but leave room to evolve (via user_version migrations).

Note:
- Models/DTOs and normalization helpers live in `cantor.core.db.models`
- Schema/migrations live in `cantor.core.db.schema`
- Query functions live in `cantor.core.db.queries_*` modules
- `LibraryDb` is the public facade used by the rest of the codebase
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiosqlite

from cantor.core.db import queries_settings, queries_tracks
from cantor.core.db.models import CatalogStats, NewTrack, TrackRef, TrackRow
from cantor.core.db.schema import ensure_schema as ensure_schema_sql

logger = logging.getLogger(__name__)

DEFAULT_DELETE_BATCH_SIZE = 100


class LibraryDb:
    """
    Async access layer for the catalog DB.

    Usage:
        db = LibraryDb("cantor.db")
        await db.open()
        await db.ensure_schema()
        ... queries ...
        await db.close()

    Notes:
    - Connections are not pooled; there is a single connection, so writers
      must be serialized by the caller.
    - Write helpers never commit. Call `commit()` at the end of a unit of work.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def path(self) -> str:
        return self._db_path

    async def open(self) -> None:
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA foreign_keys = ON;")
        await self._conn.execute("PRAGMA journal_mode = WAL;")
        await self._conn.execute("PRAGMA synchronous = NORMAL;")
        await self._conn.execute("PRAGMA temp_store = MEMORY;")

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("LibraryDb is not open. Call await db.open() first.")
        return self._conn

    async def ensure_schema(self) -> None:
        """Create or migrate schema to current version."""
        conn = self._require_conn()
        await ensure_schema_sql(conn)

    async def commit(self) -> None:
        conn = self._require_conn()
        await conn.commit()

    # ===========================================================================
    # Tracks: reads
    # ===========================================================================

    async def get_track_by_id(self, track_id: int) -> TrackRow | None:
        return await queries_tracks.get_track_by_id(self._require_conn(), track_id)

    async def get_track_by_path(self, file_path: str | Path) -> TrackRow | None:
        return await queries_tracks.get_track_by_path(self._require_conn(), str(file_path))

    async def list_track_refs(self) -> list[TrackRef]:
        return await queries_tracks.list_track_refs(self._require_conn())

    async def count_tracks(self) -> int:
        return await queries_tracks.count_tracks(self._require_conn())

    async def search_tracks(
        self, query: str, *, limit: int = 50, offset: int = 0
    ) -> list[TrackRow]:
        return await queries_tracks.search_tracks(
            self._require_conn(), query, limit=limit, offset=offset
        )

    async def get_stats(self) -> CatalogStats:
        return await queries_tracks.get_stats(self._require_conn())

    # ===========================================================================
    # Tracks: writes (no implicit commit)
    # ===========================================================================

    async def insert_track(self, track: NewTrack, *, now: float | None = None) -> int:
        return await queries_tracks.insert_track(
            self._require_conn(), track, now=time.time() if now is None else now
        )

    async def update_track(
        self, track_id: int, track: NewTrack, *, now: float | None = None
    ) -> bool:
        return await queries_tracks.update_track(
            self._require_conn(), track_id, track, now=time.time() if now is None else now
        )

    async def touch_track(self, track_id: int, *, now: float | None = None) -> bool:
        return await queries_tracks.touch_track(
            self._require_conn(), track_id, now=time.time() if now is None else now
        )

    async def delete_tracks_by_ids(
        self, track_ids: Sequence[int], *, batch_size: int = DEFAULT_DELETE_BATCH_SIZE
    ) -> int:
        """
        Delete rows by id, issuing one statement per `batch_size` ids.

        Keeps every statement well below SQLite's bound-parameter limit.
        Returns the number of rows deleted.
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        conn = self._require_conn()
        ids = list(track_ids)
        deleted = 0
        for start in range(0, len(ids), batch_size):
            batch = ids[start : start + batch_size]
            deleted += await queries_tracks.delete_tracks_by_ids(conn, batch)
        if ids:
            logger.debug("Deleted %d track rows in batches of %d", deleted, batch_size)
        return deleted

    # ===========================================================================
    # Settings
    # ===========================================================================

    async def get_settings(self) -> dict[str, Any]:
        return await queries_settings.get_settings(self._require_conn())

    async def set_setting(self, key: str, value: Any, *, now: float | None = None) -> None:
        """Store a typed setting value. Does not commit."""
        await queries_settings.set_setting(
            self._require_conn(), key, value, now=time.time() if now is None else now
        )
