"""
Internal DB subpackage for the catalog.

Splits the persistence layer into focused units (models, schema/migrations
and query groups) while keeping `LibraryDb` as the single public interface.

External code should import `LibraryDb` from `cantor.core.library_db`.
"""

from __future__ import annotations

# Models / DTOs
from .models import CatalogStats, NewTrack, TrackRef, TrackRow

# Schema / migrations
from .schema import SCHEMA_VERSION, ensure_schema, migrate

__all__ = [
    # models
    "CatalogStats",
    "NewTrack",
    "TrackRef",
    "TrackRow",
    # schema
    "SCHEMA_VERSION",
    "ensure_schema",
    "migrate",
]
