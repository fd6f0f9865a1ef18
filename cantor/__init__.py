"""
Cantor - a music catalog scanning engine.

Cantor walks a local music collection, extracts per-file metadata through a
cascade of fallback strategies, and keeps a SQLite catalog in sync with what
is on disk, reusing cached extraction work across repeated scans.
"""

__version__ = "0.1.0"

from cantor.core.library import MusicLibrary, ScanResult

__all__ = ["MusicLibrary", "ScanResult", "__version__"]
