from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Protocol

from mutagen import File as mutagen_file
from mutagen.apev2 import APEv2
from mutagen.id3 import ID3

logger = logging.getLogger(__name__)

DEFAULT_SIDECAR_EXTENSIONS: tuple[str, ...] = (".xml", ".nfo", ".txt")

# Directory names that only carry a disc index ("Disc 2", "CD1", "Digital Media 01").
_DISC_DIR_RE = re.compile(r"^(?:disc|disk|cd|digital\s+media)\s*\d+$", re.IGNORECASE)
# "<Album> (<year>)"
_ALBUM_YEAR_RE = re.compile(r"^(?P<album>.+?)\s*\((?P<year>\d{4})\)$")
# "<digits><separator><rest>", e.g. "03 - Song", "3. Song", "03_Song"
_TRACK_PREFIX_RE = re.compile(r"^(?P<track>\d{1,3})\s*[-._ ]\s*(?P<rest>.+)$")
# Root-ish folder names that never name an album
_GENERIC_DIR_NAMES = frozenset({"music", "my music"})


def is_disc_directory(name: str) -> bool:
    return bool(_DISC_DIR_RE.match(name.strip()))


@dataclass(frozen=True, slots=True)
class TrackMetadata:
    """
    Best-effort metadata for one audio file.

    Every field is optional; strategies fill what they can and the path
    heuristic fills the rest.
    """

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    album_artist: str | None = None
    genre: str | None = None
    year: int | None = None
    track: int | None = None
    duration: int | None = None  # seconds

    @property
    def has_identity(self) -> bool:
        """A usable result names at least a title or an artist."""
        return bool(self.title or self.artist)

    def fill_missing(self, other: TrackMetadata) -> TrackMetadata:
        """Return a copy where None fields are taken from `other`."""
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(self)
            if getattr(self, f.name) is None and getattr(other, f.name) is not None
        }
        return replace(self, **updates) if updates else self

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TrackMetadata:
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


# ---------------------------------------------------------------------------
# Tag value normalization
# ---------------------------------------------------------------------------


def _clean_str(value: str | None) -> str | None:
    if value is None:
        return None
    s = value.strip()
    return s if s else None


def _first_text(value: Any) -> str | None:
    """
    Mutagen returns different shapes depending on container/tag type:
    - ID3 frames
    - lists of strings (Vorbis comments)
    - tuples (MP4 `trkn`)
    - objects with `.text` or `.value` (ID3 frames, APEv2 values)
    We normalize to a single string (first item if multiple).
    """
    if value is None:
        return None

    if isinstance(value, list | tuple):
        if not value:
            return None
        return _first_text(value[0])

    if isinstance(value, bytes):
        return _clean_str(value.decode("utf-8", errors="replace"))

    if isinstance(value, str):
        return _clean_str(value)

    text = getattr(value, "text", None)
    if text is not None:
        return _first_text(text)

    val = getattr(value, "value", None)
    if val is not None:
        return _first_text(val)

    try:
        s = str(value)
    except Exception:
        return None

    return _clean_str(s)


def _parse_int_maybe(value: Any) -> int | None:
    """
    Parse things like:
    - "3"
    - "3/12"
    - ["3/12"]
    - mutagen frame objects
    """
    s = _first_text(value)
    if not s:
        return None

    if "/" in s:
        s = s.split("/", 1)[0].strip()

    try:
        return int(s)
    except ValueError:
        return None


def _parse_year_maybe(value: Any) -> int | None:
    """Accept "1999", "1999-01-01" or "1999/.." formats."""
    s = _first_text(value)
    if not s:
        return None

    for i in range(0, max(0, len(s) - 3)):
        chunk = s[i : i + 4]
        if chunk.isdigit():
            year = int(chunk)
            if 1000 <= year <= 3000:
                return year
    return None


def _parse_genre(value: Any) -> str | None:
    """First genre of a possibly multi-valued tag ("Rock; Pop" -> "Rock")."""
    s = _first_text(value)
    if not s:
        return None
    first = re.split(r"\s*[;/,]\s*", s, maxsplit=1)[0]
    return _clean_str(first)


def _tags_get(tags: Mapping[str, Any] | None, keys: Iterable[str]) -> Any:
    """Look up the first present key, falling back to a case-insensitive match."""
    if not tags:
        return None
    keys = tuple(keys)
    for k in keys:
        if k in tags:
            return tags[k]
    folded = {str(k).casefold(): v for k, v in tags.items()}
    for k in keys:
        v = folded.get(k.casefold())
        if v is not None:
            return v
    return None


def _tags_as_dict(tags: Any) -> dict[str, Any] | None:
    if tags is None:
        return None
    try:
        return dict(tags)
    except Exception:
        # Some tag containers (Vorbis) are lists of pairs
        try:
            return {k: v for k, v in tags}
        except Exception:
            return None


def _duration_seconds(info: Any) -> int | None:
    length = getattr(info, "length", None)
    if isinstance(length, int | float) and length > 0:
        return int(round(length))
    return None


# Tag keys per field, in lookup order: ID3, Vorbis/APEv2, MP4, ASF (WMA)
_TITLE_KEYS = ("TIT2", "title", "©nam", "Title")
_ARTIST_KEYS = ("TPE1", "artist", "©ART", "Author")
_ALBUM_KEYS = ("TALB", "album", "©alb", "WM/AlbumTitle")
_ALBUM_ARTIST_KEYS = (
    "TPE2", "albumartist", "album artist", "album_artist", "aART", "WM/AlbumArtist"
)
_GENRE_KEYS = ("TCON", "genre", "©gen", "WM/Genre")
_YEAR_KEYS = ("TDRC", "TYER", "date", "year", "©day", "WM/Year")
_TRACK_KEYS = ("TRCK", "tracknumber", "track", "trkn", "WM/TrackNumber", "WM/Track")


def metadata_from_tags(
    tags: Mapping[str, Any] | None, *, duration: int | None = None
) -> TrackMetadata:
    """Map a raw tag dictionary from any supported tag family onto `TrackMetadata`."""
    return TrackMetadata(
        title=_first_text(_tags_get(tags, _TITLE_KEYS)),
        artist=_first_text(_tags_get(tags, _ARTIST_KEYS)),
        album=_first_text(_tags_get(tags, _ALBUM_KEYS)),
        album_artist=_first_text(_tags_get(tags, _ALBUM_ARTIST_KEYS)),
        genre=_parse_genre(_tags_get(tags, _GENRE_KEYS)),
        year=_parse_year_maybe(_tags_get(tags, _YEAR_KEYS)),
        track=_parse_int_maybe(_tags_get(tags, _TRACK_KEYS)),
        duration=duration,
    )


def read_duration(path: Path) -> int | None:
    """Best-effort duration from the file's own container; None on any failure."""
    try:
        audio = mutagen_file(path)
    except Exception as e:
        logger.debug("Cannot read duration of %s: %s", path, e)
        return None
    if audio is None:
        return None
    return _duration_seconds(getattr(audio, "info", None))


# ---------------------------------------------------------------------------
# Path heuristic
# ---------------------------------------------------------------------------


def guess_from_path(path: Path) -> TrackMetadata:
    """
    Derive album/year/track/title (and sometimes artist) from the path.

    - A disc subdirectory ("Disc 2", "Digital Media 01") defers to its parent.
    - "<Album> (<year>)" splits into album and year.
    - A leading "<digits><sep>" on the filename gives the track number.
    - "Artist - Title" filenames give an artist.
    """
    album_dir = path.parent
    if is_disc_directory(album_dir.name) and album_dir.parent != album_dir:
        album_dir = album_dir.parent

    album: str | None = None
    year: int | None = None
    dir_name = album_dir.name.strip()
    if dir_name and dir_name.casefold() not in _GENERIC_DIR_NAMES:
        m = _ALBUM_YEAR_RE.match(dir_name)
        if m:
            album = _clean_str(m.group("album"))
            year = int(m.group("year"))
        else:
            album = dir_name

    stem = path.stem
    track: int | None = None
    rest = stem
    m = _TRACK_PREFIX_RE.match(stem)
    if m:
        track = int(m.group("track"))
        rest = m.group("rest")

    artist: str | None = None
    title = rest
    if " - " in rest:
        left, right = rest.split(" - ", 1)
        if _clean_str(left) and _clean_str(right):
            artist = _clean_str(left)
            title = right

    return TrackMetadata(
        title=_clean_str(title) or stem,
        artist=artist,
        album=album,
        year=year,
        track=track,
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class MetadataStrategy(Protocol):
    """One stage of the cascade. Returns None when it has nothing to offer."""

    name: str

    def extract(self, path: Path) -> TrackMetadata | None: ...


class ContainerTagStrategy:
    """Native tags through mutagen's format detection (the full format matrix)."""

    name = "container"

    def extract(self, path: Path) -> TrackMetadata | None:
        try:
            audio = mutagen_file(path)
        except Exception as e:
            logger.debug("Container tags unreadable for %s: %s", path, e)
            return None
        if audio is None:
            return None

        tags = _tags_as_dict(getattr(audio, "tags", None))
        meta = metadata_from_tags(tags, duration=_duration_seconds(getattr(audio, "info", None)))
        return meta if meta.has_identity else None


class SidecarStrategy:
    """
    A companion descriptor next to the audio file (`<stem>.xml`, `.nfo`, ...).

    Parsing is deliberately permissive: `<title>...</title>` style elements and
    `key: value` / `key=value` lines are both understood, anything else is
    ignored. A missing or unparseable sidecar is a silent miss.
    """

    name = "sidecar"

    _FIELD_ALIASES: dict[str, str] = {
        "title": "title",
        "artist": "artist",
        "album": "album",
        "albumartist": "album_artist",
        "album_artist": "album_artist",
        "album artist": "album_artist",
        "genre": "genre",
        "year": "year",
        "date": "year",
        "track": "track",
        "tracknumber": "track",
        "track_number": "track",
    }
    # Horizontal whitespace only: a blank "key:" line must not swallow the next line
    _LINE_RE = re.compile(
        r"^[ \t]*([A-Za-z][A-Za-z _]*?)[ \t]*[:=][ \t]*(\S.*?)[ \t\r]*$", re.MULTILINE
    )

    def __init__(self, extensions: Sequence[str] = DEFAULT_SIDECAR_EXTENSIONS) -> None:
        self.extensions = tuple(extensions)

    def find(self, path: Path) -> Path | None:
        for ext in self.extensions:
            candidate = path.with_suffix(ext)
            if candidate != path and candidate.is_file():
                return candidate
        return None

    def parse(self, text: str) -> dict[str, str]:
        values: dict[str, str] = {}
        for alias, field_name in self._FIELD_ALIASES.items():
            if field_name in values:
                continue
            tag = re.escape(alias)
            m = re.search(rf"<{tag}(?:\s[^>]*)?>(.*?)</{tag}\s*>", text, re.IGNORECASE | re.DOTALL)
            if m:
                raw = m.group(1)
                raw = re.sub(r"<!\[CDATA\[(.*?)\]\]>", r"\1", raw, flags=re.DOTALL)
                value = _clean_str(html.unescape(raw))
                if value:
                    values[field_name] = value

        for m in self._LINE_RE.finditer(text):
            field_name = self._FIELD_ALIASES.get(m.group(1).strip().lower())
            if field_name and field_name not in values:
                value = _clean_str(m.group(2))
                if value:
                    values[field_name] = value
        return values

    def extract(self, path: Path) -> TrackMetadata | None:
        sidecar = self.find(path)
        if sidecar is None:
            return None
        try:
            text = sidecar.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Sidecar unreadable for %s: %s", path, e)
            return None

        values = self.parse(text)
        meta = TrackMetadata(
            title=values.get("title"),
            artist=values.get("artist"),
            album=values.get("album"),
            album_artist=values.get("album_artist"),
            genre=values.get("genre"),
            year=_parse_year_maybe(values.get("year")),
            track=_parse_int_maybe(values.get("track")),
        )
        if not meta.has_identity:
            return None

        if meta.album is None:
            guessed = guess_from_path(path)
            meta = replace(meta, album=guessed.album, year=meta.year or guessed.year)
        return replace(meta, duration=read_duration(path))


class LegacyTagStrategy:
    """
    Raw ID3 and APEv2 blocks, read regardless of the container.

    Catches files whose container parser fails (truncated streams, tags
    glued onto WAV/FLAC by old taggers).
    """

    name = "legacy"

    def extract(self, path: Path) -> TrackMetadata | None:
        for reader in (ID3, APEv2):
            try:
                tags = reader(path)
            except Exception as e:
                logger.debug("%s block not readable for %s: %s", reader.__name__, path, e)
                continue
            meta = metadata_from_tags(_tags_as_dict(tags))
            if meta.has_identity:
                return meta
        return None


def default_strategies(
    sidecar_extensions: Sequence[str] = DEFAULT_SIDECAR_EXTENSIONS,
) -> list[MetadataStrategy]:
    """Precedence order: container tags win over the sidecar, which wins over legacy tags."""
    return [ContainerTagStrategy(), SidecarStrategy(sidecar_extensions), LegacyTagStrategy()]


class MetadataExtractor:
    """
    Cascade of extraction strategies.

    The first strategy returning an identifying result (title or artist) wins;
    the path heuristic then fills whatever is still missing. `extract` never
    raises: the worst case is a record holding only a filename-derived title.

    `album_artist_hints` maps album names (case-insensitive) to an artist that
    is assigned when no stage found one.
    """

    def __init__(
        self,
        strategies: Sequence[MetadataStrategy] | None = None,
        *,
        album_artist_hints: Mapping[str, str] | None = None,
    ) -> None:
        self._strategies = list(strategies) if strategies is not None else default_strategies()
        self._album_artist_hints = {
            k.casefold(): v for k, v in (album_artist_hints or {}).items() if k and v
        }

    @property
    def strategies(self) -> tuple[MetadataStrategy, ...]:
        return tuple(self._strategies)

    def extract(self, path: Path | str) -> TrackMetadata:
        path = Path(path)
        result = TrackMetadata()

        for strategy in self._strategies:
            try:
                found = strategy.extract(path)
            except Exception as e:  # noqa: BLE001 - a broken stage must not stop the cascade
                logger.warning("Metadata stage %s failed for %s: %s", strategy.name, path, e)
                continue
            if found is not None and found.has_identity:
                logger.debug("Metadata for %s from %s", path.name, strategy.name)
                result = found
                break

        try:
            result = result.fill_missing(guess_from_path(path))
        except Exception as e:  # noqa: BLE001
            logger.warning("Path heuristic failed for %s: %s", path, e)
            if result.title is None:
                result = replace(result, title=path.stem)

        # Untagged files still get a duration when the container parses
        if result.duration is None:
            result = replace(result, duration=read_duration(path))

        if result.album and not result.artist:
            hint = self._album_artist_hints.get(result.album.casefold())
            if hint:
                result = replace(result, artist=hint)

        return result
