"""
Read access to the typed `settings` table.

Each row stores its value as text plus a type tag (`string`, `number`,
`boolean`, `json`). Values are coerced here; a value that does not parse is
passed through as the raw string and left for the consumer's fallback logic.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import aiosqlite

logger = logging.getLogger(__name__)


def parse_setting_value(value: str | None, type_: str | None) -> Any:
    if value is None:
        return None
    if type_ == "boolean":
        return value.strip().lower() == "true"
    if type_ == "number":
        try:
            number = float(value)
        except ValueError:
            logger.warning("Invalid number setting value: %r", value)
            return value
        return int(number) if number.is_integer() else number
    if type_ == "json":
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON setting value: %r", value)
            return value
    return value


async def get_settings(conn: aiosqlite.Connection) -> dict[str, Any]:
    cursor = await conn.execute("SELECT key, value, type FROM settings ORDER BY key;")
    rows = await cursor.fetchall()
    return {str(r["key"]): parse_setting_value(r["value"], r["type"]) for r in rows}


def encode_setting_value(value: Any) -> tuple[str, str]:
    """Return `(text, type)` for storing a Python value."""
    if isinstance(value, bool):
        return ("true" if value else "false", "boolean")
    if isinstance(value, (int, float)):
        return (str(value), "number")
    if isinstance(value, str):
        return (value, "string")
    return (json.dumps(value), "json")


async def set_setting(
    conn: aiosqlite.Connection, key: str, value: Any, *, now: float
) -> None:
    text, type_ = encode_setting_value(value)
    await conn.execute(
        """
        INSERT INTO settings (key, value, type, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value      = excluded.value,
            type       = excluded.type,
            updated_at = excluded.updated_at
        """,
        (key, text, type_, now),
    )
