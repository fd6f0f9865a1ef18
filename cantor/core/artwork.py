from __future__ import annotations

import base64
import logging
from collections.abc import Sequence
from pathlib import Path

from mutagen import File as mutagen_file
from mutagen.flac import FLAC, Picture
from mutagen.id3 import ID3
from mutagen.mp4 import MP4

from cantor.core.metadata import is_disc_directory

logger = logging.getLogger(__name__)

DEFAULT_ARTWORK_NAMES: tuple[str, ...] = (
    "folder.jpg",
    "cover.jpg",
    "front.jpg",
    "folder.png",
    "cover.png",
    "front.png",
)


def extract_embedded_artwork(path: Path) -> bytes | None:
    """Raw bytes of the first embedded picture (front cover preferred), or None."""
    try:
        audio = mutagen_file(path)
        if audio is None:
            return None

        # 1. MP4 (m4a, m4b)
        if isinstance(audio, MP4):
            if audio.tags and "covr" in audio.tags:
                covers = audio.tags["covr"]
                if covers:
                    return bytes(covers[0])

        # 2. FLAC
        elif isinstance(audio, FLAC):
            if audio.pictures:
                front = next((p for p in audio.pictures if p.type == 3), audio.pictures[0])
                return front.data

        # 3. ID3 (mp3, and ID3 glued onto other containers)
        elif isinstance(audio, ID3) or isinstance(getattr(audio, "tags", None), ID3):
            tags = audio if isinstance(audio, ID3) else audio.tags
            apic_frames = tags.getall("APIC")
            if apic_frames:
                cover = next((f for f in apic_frames if f.type == 3), apic_frames[0])
                return cover.data

        # 4. Vorbis (ogg, opus) - METADATA_BLOCK_PICTURE (base64)
        elif getattr(audio, "tags", None):
            for key in ("metadata_block_picture", "METADATA_BLOCK_PICTURE"):
                if key in audio.tags:
                    try:
                        return Picture(base64.b64decode(audio.tags[key][0])).data
                    except Exception:
                        continue

    except Exception as e:
        logger.debug("Artwork extraction failed for %s: %s", path, e)

    return None


def find_folder_artwork(path: Path, names: Sequence[str] = DEFAULT_ARTWORK_NAMES) -> Path | None:
    """
    Look for a cover image next to the file, then in the album directory when
    the file sits in a disc subdirectory.
    """
    directories = [path.parent]
    if is_disc_directory(path.parent.name):
        directories.append(path.parent.parent)

    for directory in directories:
        for name in names:
            candidate = directory / name
            try:
                if candidate.is_file():
                    return candidate
            except OSError:
                continue
    return None


def find_artwork(path: Path, names: Sequence[str] = DEFAULT_ARTWORK_NAMES) -> bytes | None:
    """Embedded artwork first, then a folder image. None if neither is usable."""
    data = extract_embedded_artwork(path)
    if data:
        return data

    folder_image = find_folder_artwork(path, names)
    if folder_image is None:
        return None
    try:
        return folder_image.read_bytes() or None
    except OSError as e:
        logger.debug("Cannot read folder artwork %s: %s", folder_image, e)
        return None
