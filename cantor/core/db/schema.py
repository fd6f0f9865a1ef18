"""
Database schema + migrations for the catalog.

Design notes:
- We use SQLite `PRAGMA user_version` as the schema version.
- Migrations are forward-only (no downgrade support).
- Keep migrations small and explicit; for huge refactors prefer a new DB.
"""

from __future__ import annotations

from typing import Final

import aiosqlite

# Bump when you change the schema and add a migration in `migrate()`.
SCHEMA_VERSION: Final[int] = 2

# (key, value, type, description) seeded into the settings table
DEFAULT_SETTINGS: Final[tuple[tuple[str, str, str, str], ...]] = (
    ("scan_max_depth", "10", "number", "Maximum directory depth to scan (0 = unlimited)"),
    ("scan_include_folders", "[]", "json", "Folders to scan, relative to the root (empty = all)"),
    ("scan_exclude_folders", "[]", "json", "Folders to skip, relative to the root"),
)


async def ensure_schema(conn: aiosqlite.Connection) -> None:
    """
    Create or migrate schema to current version.

    This function assumes:
    - `conn` is an open aiosqlite connection
    - `conn.row_factory` is configured by the caller if desired
    """
    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    current = int(row[0]) if row is not None else 0

    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Database schema version {current} is newer than supported {SCHEMA_VERSION}."
        )

    if current == SCHEMA_VERSION:
        return

    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """
    Perform forward-only migrations.

    Keep migrations small. If you need a big refactor, create a new DB.
    """
    # v0 -> v1
    if from_version == 0 and to_version >= 1:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tracks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                file_path TEXT NOT NULL UNIQUE,
                filename TEXT NOT NULL,

                title TEXT,
                artist TEXT,
                album TEXT,
                album_artist TEXT,
                genre TEXT,
                year INTEGER,
                track_number INTEGER,
                duration INTEGER,

                file_size INTEGER,
                fingerprint TEXT,

                has_lyrics INTEGER NOT NULL DEFAULT 0,
                lyrics_source TEXT,
                artwork_path TEXT,

                last_scanned REAL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
            """
        )

        # Indexes: tuned for browsing and exact lookups.
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_artist ON tracks(artist);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_album ON tracks(album);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_tracks_title ON tracks(title);")
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_tracks_has_lyrics ON tracks(has_lyrics);"
        )
        await conn.commit()
        from_version = 1

    # v1 -> v2
    if from_version == 1 and to_version >= 2:
        # Typed key/value settings; values are stored as text and coerced on read
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                type TEXT NOT NULL DEFAULT 'string',
                default_value TEXT,
                description TEXT,
                updated_at REAL
            )
            """
        )
        await conn.executemany(
            """
            INSERT OR IGNORE INTO settings (key, value, type, default_value, description)
            VALUES (?, ?, ?, ?, ?)
            """,
            [(key, value, type_, value, desc) for key, value, type_, desc in DEFAULT_SETTINGS],
        )
        await conn.commit()
        from_version = 2
