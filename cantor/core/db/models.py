"""
DB models (DTOs) and small normalization helpers.

This module is intentionally lightweight:
- No DB connection knowledge
- No SQL
- Pure dataclasses + helper functions
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TrackRow:
    """
    Canonical track record as stored in SQLite.

    Notes:
    - `file_path` is the stable unique identifier for a local file.
    - `fingerprint` is the stat-based change signal (see `cantor.core.fingerprint`).
    - Timestamps are unix seconds.
    """

    id: int
    file_path: str
    filename: str
    title: str | None
    artist: str | None
    album: str | None
    album_artist: str | None
    genre: str | None
    year: int | None
    track_number: int | None
    duration: int | None
    file_size: int | None
    fingerprint: str | None
    has_lyrics: bool = False
    lyrics_source: str | None = None
    artwork_path: str | None = None
    last_scanned: float | None = None
    created_at: float | None = None
    updated_at: float | None = None


@dataclass(frozen=True, slots=True)
class TrackRef:
    """The minimum the deletion sweep needs to know about a row."""

    id: int
    file_path: str


@dataclass(frozen=True, slots=True)
class NewTrack:
    """
    Input record used by the scanner for inserts and full updates.

    `file_path` is required and must identify the same file across scans.
    """

    file_path: str
    filename: str
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    album_artist: str | None = None
    genre: str | None = None
    year: int | None = None
    track_number: int | None = None
    duration: int | None = None
    file_size: int | None = None
    fingerprint: str | None = None
    has_lyrics: bool = False
    lyrics_source: str | None = None
    artwork_path: str | None = None


@dataclass(frozen=True, slots=True)
class CatalogStats:
    total_tracks: int = 0
    tracks_with_lyrics: int = 0
    unique_artists: int = 0
    unique_albums: int = 0
    total_duration: int = 0
    total_size: int = 0


def normalize_text(value: str | None) -> str | None:
    """
    Normalize optional text fields:
    - strip whitespace
    - coerce empty strings to None
    """
    if value is None:
        return None
    v = value.strip()
    return v if v else None


def normalize_int(value: int | None) -> int | None:
    """Normalize optional integer fields (coerce to int, keep None)."""
    if value is None:
        return None
    return int(value)
