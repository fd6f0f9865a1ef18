"""
Track-related DB queries used by the `LibraryDb` facade.

Design:
- Functions are *pure DB helpers*: they take an open `aiosqlite.Connection`
  and return rows/materialized dataclasses.
- These functions assume `conn.row_factory = aiosqlite.Row`.
- They never commit; transaction boundaries belong to the caller.

Important:
- Do NOT interpolate user input into SQL. The only dynamic SQL here is the
  placeholder list of `delete_tracks_by_ids`.
"""

from __future__ import annotations

from collections.abc import Sequence

import aiosqlite

from cantor.core.db.models import (
    CatalogStats,
    NewTrack,
    TrackRef,
    TrackRow,
    normalize_int,
    normalize_text,
)


def _row_to_track(row: aiosqlite.Row) -> TrackRow:
    """Convert an aiosqlite Row to a TrackRow dataclass."""
    return TrackRow(
        id=int(row["id"]),
        file_path=str(row["file_path"]),
        filename=str(row["filename"]),
        title=row["title"],
        artist=row["artist"],
        album=row["album"],
        album_artist=row["album_artist"],
        genre=row["genre"],
        year=row["year"],
        track_number=row["track_number"],
        duration=row["duration"],
        file_size=row["file_size"],
        fingerprint=row["fingerprint"],
        has_lyrics=bool(row["has_lyrics"]),
        lyrics_source=row["lyrics_source"],
        artwork_path=row["artwork_path"],
        last_scanned=row["last_scanned"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _track_params(track: NewTrack) -> dict[str, object]:
    return {
        "file_path": track.file_path,
        "filename": track.filename,
        "title": normalize_text(track.title),
        "artist": normalize_text(track.artist),
        "album": normalize_text(track.album),
        "album_artist": normalize_text(track.album_artist),
        "genre": normalize_text(track.genre),
        "year": normalize_int(track.year),
        "track_number": normalize_int(track.track_number),
        "duration": normalize_int(track.duration),
        "file_size": normalize_int(track.file_size),
        "fingerprint": track.fingerprint,
        "has_lyrics": 1 if track.has_lyrics else 0,
        "lyrics_source": track.lyrics_source,
        "artwork_path": track.artwork_path,
    }


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_track_by_id(conn: aiosqlite.Connection, track_id: int) -> TrackRow | None:
    cursor = await conn.execute("SELECT * FROM tracks WHERE id = ?;", (track_id,))
    row = await cursor.fetchone()
    return _row_to_track(row) if row else None


async def get_track_by_path(conn: aiosqlite.Connection, file_path: str) -> TrackRow | None:
    cursor = await conn.execute("SELECT * FROM tracks WHERE file_path = ?;", (file_path,))
    row = await cursor.fetchone()
    return _row_to_track(row) if row else None


async def list_track_refs(conn: aiosqlite.Connection) -> list[TrackRef]:
    cursor = await conn.execute("SELECT id, file_path FROM tracks ORDER BY id;")
    rows = await cursor.fetchall()
    return [TrackRef(id=int(r["id"]), file_path=str(r["file_path"])) for r in rows]


async def count_tracks(conn: aiosqlite.Connection) -> int:
    cursor = await conn.execute("SELECT COUNT(*) AS c FROM tracks;")
    row = await cursor.fetchone()
    return int(row["c"]) if row else 0


async def search_tracks(
    conn: aiosqlite.Connection,
    query: str,
    *,
    limit: int,
    offset: int,
) -> list[TrackRow]:
    """Substring match on title/artist/album (SQLite LIKE, ASCII case-insensitive)."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    cursor = await conn.execute(
        """
        SELECT * FROM tracks
        WHERE title LIKE ? ESCAPE '\\'
           OR artist LIKE ? ESCAPE '\\'
           OR album LIKE ? ESCAPE '\\'
        ORDER BY title COLLATE NOCASE, id
        LIMIT ? OFFSET ?;
        """,
        (pattern, pattern, pattern, int(limit), int(offset)),
    )
    rows = await cursor.fetchall()
    return [_row_to_track(r) for r in rows]


async def get_stats(conn: aiosqlite.Connection) -> CatalogStats:
    cursor = await conn.execute(
        """
        SELECT
            COUNT(*) AS total_tracks,
            COALESCE(SUM(CASE WHEN has_lyrics = 1 THEN 1 ELSE 0 END), 0) AS tracks_with_lyrics,
            COUNT(DISTINCT artist) AS unique_artists,
            COUNT(DISTINCT album) AS unique_albums,
            COALESCE(SUM(duration), 0) AS total_duration,
            COALESCE(SUM(file_size), 0) AS total_size
        FROM tracks;
        """
    )
    row = await cursor.fetchone()
    if row is None:
        return CatalogStats()
    return CatalogStats(
        total_tracks=int(row["total_tracks"]),
        tracks_with_lyrics=int(row["tracks_with_lyrics"]),
        unique_artists=int(row["unique_artists"]),
        unique_albums=int(row["unique_albums"]),
        total_duration=int(row["total_duration"]),
        total_size=int(row["total_size"]),
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def insert_track(conn: aiosqlite.Connection, track: NewTrack, *, now: float) -> int:
    params = _track_params(track)
    params.update({"last_scanned": now, "created_at": now, "updated_at": now})
    cursor = await conn.execute(
        """
        INSERT INTO tracks(
            file_path, filename, title, artist, album, album_artist, genre,
            year, track_number, duration, file_size, fingerprint,
            has_lyrics, lyrics_source, artwork_path,
            last_scanned, created_at, updated_at
        ) VALUES (
            :file_path, :filename, :title, :artist, :album, :album_artist, :genre,
            :year, :track_number, :duration, :file_size, :fingerprint,
            :has_lyrics, :lyrics_source, :artwork_path,
            :last_scanned, :created_at, :updated_at
        )
        """,
        params,
    )
    if cursor.lastrowid is None:
        raise RuntimeError("Insert failed: no row id returned.")
    return int(cursor.lastrowid)


async def update_track(
    conn: aiosqlite.Connection, track_id: int, track: NewTrack, *, now: float
) -> bool:
    params = _track_params(track)
    params.update({"id": track_id, "last_scanned": now, "updated_at": now})
    cursor = await conn.execute(
        """
        UPDATE tracks SET
            file_path     = :file_path,
            filename      = :filename,
            title         = :title,
            artist        = :artist,
            album         = :album,
            album_artist  = :album_artist,
            genre         = :genre,
            year          = :year,
            track_number  = :track_number,
            duration      = :duration,
            file_size     = :file_size,
            fingerprint   = :fingerprint,
            has_lyrics    = :has_lyrics,
            lyrics_source = :lyrics_source,
            artwork_path  = :artwork_path,
            last_scanned  = :last_scanned,
            updated_at    = :updated_at
        WHERE id = :id
        """,
        params,
    )
    return cursor.rowcount > 0


async def touch_track(conn: aiosqlite.Connection, track_id: int, *, now: float) -> bool:
    """Record that an unchanged file was seen; nothing else is modified."""
    cursor = await conn.execute(
        "UPDATE tracks SET last_scanned = ? WHERE id = ?;", (now, track_id)
    )
    return cursor.rowcount > 0


async def delete_tracks_by_ids(conn: aiosqlite.Connection, track_ids: Sequence[int]) -> int:
    """Delete one batch of rows. Callers keep batches small (see `LibraryDb`)."""
    if not track_ids:
        return 0
    placeholders = ",".join("?" for _ in track_ids)
    cursor = await conn.execute(
        f"DELETE FROM tracks WHERE id IN ({placeholders});",
        tuple(int(i) for i in track_ids),
    )
    return cursor.rowcount
