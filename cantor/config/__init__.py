"""
Configuration management for Cantor.

Loads library paths, format allow-lists and tuning knobs from a TOML file.
The packaged `cantor.toml` holds the defaults; selected paths can be
overridden through environment variables.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Path to the config directory
CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_FILE = CONFIG_DIR / "cantor.toml"

ENV_MUSIC_PATH = "CANTOR_MUSIC_PATH"
ENV_DB_PATH = "CANTOR_DB_PATH"
ENV_CACHE_PATH = "CANTOR_CACHE_PATH"


@dataclass
class LibraryConfig:
    """Where the collection, catalog and cache live, and how hard to scan."""

    music_root: Path | None = None
    database: Path = Path("cantor.db")
    cache_dir: Path = Path(".cantor-cache")
    max_concurrency: int = 8
    delete_batch_size: int = 100
    scan_results_ttl: float = 3600.0


@dataclass
class FormatsConfig:
    audio: list[str] = field(default_factory=list)
    sidecar: list[str] = field(default_factory=lambda: [".xml", ".nfo", ".txt"])
    lyrics: list[str] = field(default_factory=lambda: [".lrc"])
    artwork_names: list[str] = field(default_factory=list)


@dataclass
class ArtworkConfig:
    size: int = 300
    quality: int = 85


@dataclass
class MetadataConfig:
    album_artist_hints: dict[str, str] = field(default_factory=dict)


@dataclass
class AppConfig:
    """Loaded application configuration."""

    library: LibraryConfig = field(default_factory=LibraryConfig)
    formats: FormatsConfig = field(default_factory=FormatsConfig)
    artwork: ArtworkConfig = field(default_factory=ArtworkConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)


def _dotted(extensions: list[str]) -> list[str]:
    cleaned = (str(x).strip().lower() for x in extensions)
    return [e if e.startswith(".") else f".{e}" for e in cleaned if e]


def _path(value: object) -> Path | None:
    if value is None or value == "":
        return None
    return Path(str(value)).expanduser()


def _positive_int(section: Mapping[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        logger.warning("Invalid config value %s=%r, using %r", key, value, default)
        return default
    return value


def _parse_library(data: Mapping[str, Any], env: Mapping[str, str]) -> LibraryConfig:
    defaults = LibraryConfig()
    music_root = _path(env.get(ENV_MUSIC_PATH) or data.get("music_root"))
    database = _path(env.get(ENV_DB_PATH) or data.get("database")) or defaults.database
    cache_dir = _path(env.get(ENV_CACHE_PATH) or data.get("cache_dir")) or defaults.cache_dir

    ttl = data.get("scan_results_ttl", defaults.scan_results_ttl)
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl < 0:
        logger.warning("Invalid config value scan_results_ttl=%r", ttl)
        ttl = defaults.scan_results_ttl

    return LibraryConfig(
        music_root=music_root,
        database=database,
        cache_dir=cache_dir,
        max_concurrency=_positive_int(data, "max_concurrency", defaults.max_concurrency),
        delete_batch_size=_positive_int(data, "delete_batch_size", defaults.delete_batch_size),
        scan_results_ttl=float(ttl),
    )


def load_config(
    config_path: Path | None = None, *, env: Mapping[str, str] | None = None
) -> AppConfig:
    """
    Load configuration from a TOML file.

    Args:
        config_path: Path to a TOML file. If None, uses the packaged defaults.
        env: Environment used for path overrides (defaults to `os.environ`).
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE
    if env is None:
        env = os.environ

    logger.debug("Loading config from %s", config_path)

    with config_path.open("rb") as f:
        data = tomllib.load(f)

    formats = data.get("formats", {})
    artwork = data.get("artwork", {})
    hints = data.get("metadata", {}).get("album_artist_hints", {})

    return AppConfig(
        library=_parse_library(data.get("library", {}), env),
        formats=FormatsConfig(
            audio=_dotted(list(formats.get("audio", []))),
            sidecar=_dotted(list(formats.get("sidecar", ["xml", "nfo", "txt"]))),
            lyrics=_dotted(list(formats.get("lyrics", ["lrc"]))),
            artwork_names=[str(n) for n in formats.get("artwork_names", [])],
        ),
        artwork=ArtworkConfig(
            size=_positive_int(artwork, "size", 300),
            quality=_positive_int(artwork, "quality", 85),
        ),
        metadata=MetadataConfig(
            album_artist_hints={str(k): str(v) for k, v in hints.items() if k and v},
        ),
    )


# Global singleton instance (lazy loaded)
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global configuration (lazy loaded singleton)."""
    global _config

    if _config is None:
        _config = load_config()

    return _config


def reload_config(config_path: Path | None = None) -> AppConfig:
    """Force reload of the global configuration."""
    global _config
    _config = load_config(config_path)
    return _config
