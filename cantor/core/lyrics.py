"""
Lyrics presence detection.

A track "has lyrics" when a non-empty sidecar lyrics file sits next to it
(`<stem>.lrc` by default), or when its container carries an embedded lyric
tag. Only ID3 (MP3) is inspected for embedded lyrics; every other container
reports no embedded lyrics.

Nothing here raises: read errors mean "no lyrics".
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Literal

from mutagen.id3 import ID3

logger = logging.getLogger(__name__)

DEFAULT_LYRICS_EXTENSIONS: tuple[str, ...] = (".lrc",)

# Containers whose embedded lyrics we can read
_EMBEDDED_LYRICS_SUFFIXES = frozenset({".mp3"})

LyricsSource = Literal["sidecar", "embedded"]


def has_sidecar_lyrics(
    path: Path, extensions: Sequence[str] = DEFAULT_LYRICS_EXTENSIONS
) -> bool:
    for ext in extensions:
        candidate = path.with_suffix(ext)
        try:
            if candidate.is_file() and candidate.stat().st_size > 0:
                return True
        except OSError:
            continue
    return False


def has_embedded_lyrics(path: Path) -> bool:
    """USLT frames, or COMM frames with text (synced lyrics are stored there by some tools)."""
    if path.suffix.lower() not in _EMBEDDED_LYRICS_SUFFIXES:
        return False
    try:
        tags = ID3(path)
    except Exception as e:
        logger.debug("No readable ID3 tag in %s: %s", path, e)
        return False

    for frame_id in ("USLT", "COMM"):
        for frame in tags.getall(frame_id):
            text = getattr(frame, "text", "")
            if isinstance(text, list):
                text = "".join(str(t) for t in text)
            if str(text).strip():
                return True
    return False


def find_lyrics_source(
    path: Path, extensions: Sequence[str] = DEFAULT_LYRICS_EXTENSIONS
) -> LyricsSource | None:
    """Return where the lyrics come from, sidecar first, or None."""
    try:
        if has_sidecar_lyrics(path, extensions):
            return "sidecar"
        if has_embedded_lyrics(path):
            return "embedded"
    except Exception as e:  # noqa: BLE001
        logger.debug("Lyrics check failed for %s: %s", path, e)
    return None


def has_lyrics(path: Path, extensions: Sequence[str] = DEFAULT_LYRICS_EXTENSIONS) -> bool:
    return find_lyrics_source(path, extensions) is not None
