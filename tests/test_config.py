"""
Tests for cantor.config and the command line entry point.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

import cantor.config as config_module
from cantor.__main__ import main, parse_args
from cantor.config import (
    DEFAULT_CONFIG_FILE,
    ENV_CACHE_PATH,
    ENV_DB_PATH,
    ENV_MUSIC_PATH,
    get_config,
    load_config,
    reload_config,
)

from .conftest import touch_audio, write_flac


class TestLoadConfig:
    def test_packaged_defaults(self) -> None:
        config = load_config(env={})
        assert ".mp3" in config.formats.audio
        assert ".flac" in config.formats.audio
        assert all(ext.startswith(".") for ext in config.formats.audio)
        assert config.formats.sidecar == [".xml", ".nfo", ".txt"]
        assert config.formats.lyrics == [".lrc"]
        assert "folder.jpg" in config.formats.artwork_names
        assert config.metadata.album_artist_hints["Voyage"] == "ABBA"
        assert config.library.max_concurrency == 8
        assert config.library.delete_batch_size == 100
        assert config.library.scan_results_ttl == 3600.0
        assert config.artwork.size == 300
        assert config.library.music_root == Path("~/Music").expanduser()

    def test_env_overrides_paths(self, tmp_path: Path) -> None:
        env = {
            ENV_MUSIC_PATH: str(tmp_path / "music"),
            ENV_DB_PATH: str(tmp_path / "catalog.db"),
            ENV_CACHE_PATH: str(tmp_path / "cache"),
        }
        config = load_config(env=env)
        assert config.library.music_root == tmp_path / "music"
        assert config.library.database == tmp_path / "catalog.db"
        assert config.library.cache_dir == tmp_path / "cache"

    def test_custom_file_with_invalid_values(self, tmp_path: Path) -> None:
        path = tmp_path / "custom.toml"
        path.write_text(
            """
[library]
max_concurrency = 0
delete_batch_size = "lots"
scan_results_ttl = -5

[formats]
audio = ["MP3", ".Ogg", ""]

[artwork]
size = true
""",
            encoding="utf-8",
        )
        config = load_config(path, env={})
        assert config.library.music_root is None
        assert config.library.database == Path("cantor.db")
        assert config.library.max_concurrency == 8
        assert config.library.delete_batch_size == 100
        assert config.library.scan_results_ttl == 3600.0
        assert config.formats.audio == [".mp3", ".ogg"]
        assert config.formats.lyrics == [".lrc"]
        assert config.artwork.size == 300
        assert config.metadata.album_artist_hints == {}

    def test_global_singleton(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr(config_module, "_config", None)
        first = get_config()
        assert get_config() is first

        path = tmp_path / "other.toml"
        path.write_text("[library]\nmax_concurrency = 2\n", encoding="utf-8")
        reloaded = reload_config(path)
        assert reloaded is not first
        assert get_config() is reloaded
        assert reloaded.library.max_concurrency == 2

        reload_config(DEFAULT_CONFIG_FILE)


class TestCli:
    """`python -m cantor` end to end."""

    def test_parse_args(self) -> None:
        args = parse_args(["/music", "--db", "x.db", "--cached", "-v"])
        assert args.root == Path("/music")
        assert args.db == Path("x.db")
        assert args.cached is True
        assert args.verbose is True
        assert args.stats is False

    def test_scan_then_stats(
        self, tmp_path: Path, music_root: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        write_flac(music_root / "a.flac", title="A", artist="X")
        touch_audio(music_root / "Album" / "b.mp3")
        common = ["--db", str(tmp_path / "c.db"), "--cache-dir", str(tmp_path / "cache")]

        assert main([str(music_root), *common]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["new"] == 2
        assert payload["total_in_db"] == 2
        assert payload["errors"] == []

        assert main(["--stats", *common]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["catalog"]["total_tracks"] == 2
        assert set(payload["cache"]) == {"metadata", "artwork", "config", "temp"}

    def test_missing_root_exit_code(self, tmp_path: Path) -> None:
        args = [
            str(tmp_path / "nope"),
            "--db",
            str(tmp_path / "c.db"),
            "--cache-dir",
            str(tmp_path / "cache"),
        ]
        assert main(args) == 2
