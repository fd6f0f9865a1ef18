"""
Core domain package.

This package contains the scanning engine: filesystem walking, metadata
extraction, the extraction cache and catalog reconciliation. It has no
knowledge of any UI or network layer.

Consumers should import from the specific module they need
(e.g. `cantor.core.library`).
"""

from __future__ import annotations

__all__: list[str] = [
    "CoreError",
]


class CoreError(Exception):
    """Base class for core-layer exceptions."""
