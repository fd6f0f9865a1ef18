"""
Shared helpers for building small audio fixtures on disk.

The files are not playable audio; they only have to be good enough for
mutagen to parse their headers and tags.
"""

from __future__ import annotations

import os
import struct
from pathlib import Path

import pytest
from mutagen.flac import FLAC
from mutagen.id3 import ID3, TALB, TIT2, TPE1, TRCK, USLT

from cantor.core.library_db import LibraryDb

_real_scandir = os.scandir


def _streaminfo_block(sample_rate: int = 44100, total_samples: int = 44100) -> bytes:
    # 2 channels, 16 bits per sample
    packed = (sample_rate << 44) | (1 << 41) | (15 << 36) | total_samples
    return (
        struct.pack(">HH", 4096, 4096)
        + b"\x00\x00\x00"
        + b"\x00\x00\x00"
        + packed.to_bytes(8, "big")
        + b"\x00" * 16
    )


def write_flac(path: Path, **tags: str) -> Path:
    """A header-only FLAC file (one second long), optionally with Vorbis comments."""
    path.parent.mkdir(parents=True, exist_ok=True)
    streaminfo = _streaminfo_block()
    # last-metadata-block flag set, block type 0 (STREAMINFO)
    path.write_bytes(b"fLaC" + b"\x80" + len(streaminfo).to_bytes(3, "big") + streaminfo)
    if tags:
        audio = FLAC(path)
        for key, value in tags.items():
            audio[key] = value
        audio.save()
    return path


def write_id3_file(
    path: Path,
    *,
    title: str | None = None,
    artist: str | None = None,
    album: str | None = None,
    track: str | None = None,
    lyrics: str | None = None,
) -> Path:
    """Junk payload with an ID3v2 tag in front of it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00" * 256)
    tags = ID3()
    if title is not None:
        tags.add(TIT2(encoding=3, text=[title]))
    if artist is not None:
        tags.add(TPE1(encoding=3, text=[artist]))
    if album is not None:
        tags.add(TALB(encoding=3, text=[album]))
    if track is not None:
        tags.add(TRCK(encoding=3, text=[track]))
    if lyrics is not None:
        tags.add(USLT(encoding=3, lang="eng", desc="", text=lyrics))
    tags.save(path)
    return path


def touch_audio(path: Path, payload: bytes = b"not really audio") -> Path:
    """An untagged file; extraction falls through to the path heuristic."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path


@pytest.fixture
def music_root(tmp_path: Path) -> Path:
    root = tmp_path / "music"
    root.mkdir()
    return root


class _UnstattableEntry:
    """A directory entry whose type checks fail, like a file vanishing mid-walk."""

    def __init__(self, entry: os.DirEntry) -> None:
        self.name = entry.name
        self.path = entry.path

    def _fail(self, *args: object, **kwargs: object) -> bool:
        raise PermissionError(13, "Permission denied", self.path)

    is_dir = is_file = is_symlink = stat = _fail


class _PatchedScandir:
    def __init__(self, path: str | os.PathLike[str], names: frozenset[str]) -> None:
        self._it = _real_scandir(path)
        self._names = names

    def __enter__(self) -> _PatchedScandir:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __iter__(self):
        for entry in self._it:
            yield _UnstattableEntry(entry) if entry.name in self._names else entry

    def close(self) -> None:
        self._it.close()


def make_unstattable(monkeypatch: pytest.MonkeyPatch, *names: str) -> None:
    """Make `os.scandir` hand out entries named `names` that cannot be stat'ed."""
    wanted = frozenset(names)
    monkeypatch.setattr(os, "scandir", lambda path=".": _PatchedScandir(path, wanted))


async def execute_sql(db: LibraryDb, sql: str, params: tuple = ()) -> None:
    """Run one raw statement against a `LibraryDb` and commit it."""
    conn = db._require_conn()
    await conn.execute(sql, params)
    await conn.commit()
