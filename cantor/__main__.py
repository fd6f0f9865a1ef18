"""
Cantor - Entry Point

Run with: python -m cantor [ROOT]
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from cantor import __version__
from cantor.config import AppConfig, load_config
from cantor.core.cache import ExtractionCache
from cantor.core.library import MusicLibrary, MusicLibraryError
from cantor.core.library_db import LibraryDb


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="cantor",
        description="Scan a music collection into a SQLite catalog",
    )

    parser.add_argument(
        "root",
        nargs="?",
        type=Path,
        default=None,
        help="Directory to scan (default: library.music_root from the config)",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to a TOML config file (default: the packaged cantor.toml)",
    )

    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Catalog database path (overrides the config)",
    )

    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Extraction cache directory (overrides the config)",
    )

    parser.add_argument(
        "--cached",
        action="store_true",
        help="Reuse a recent scan result for the same root and settings",
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print catalog and cache statistics instead of scanning",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser.parse_args(argv)


async def run(args: argparse.Namespace, config: AppConfig) -> dict:
    """Open the catalog, run the requested command and return its JSON payload."""
    db = LibraryDb(args.db or config.library.database)
    cache = ExtractionCache(
        args.cache_dir or config.library.cache_dir,
        artwork_size=config.artwork.size,
        artwork_quality=config.artwork.quality,
        scan_results_ttl=config.library.scan_results_ttl,
    )

    await db.open()
    try:
        library = MusicLibrary.from_config(config, db=db, cache=cache)
        await library.initialize()

        if args.stats:
            cache_stats = await cache.stats()
            return {
                "catalog": asdict(await library.stats()),
                "cache": {name: asdict(s) for name, s in cache_stats.items()},
            }

        result = await library.scan(args.root, use_cached_results=args.cached)
        return result.to_dict()
    finally:
        await db.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the application."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
        payload = asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except MusicLibraryError as e:
        logger.error("%s", e)
        return 2
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1

    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
