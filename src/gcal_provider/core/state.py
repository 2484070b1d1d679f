"""PostgreSQL preference storage.

Values live in a single JSONB column keyed by the full preference name
(``calendars.<id>.<name>``, ``settings.<name>``, ...).
"""

from __future__ import annotations

import json
import logging
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)

PREFERENCES_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS provider_preferences (
    key TEXT PRIMARY KEY,
    value JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_SELECT_SQL = "SELECT value FROM provider_preferences WHERE key = $1"
_UPSERT_SQL = """
INSERT INTO provider_preferences (key, value, updated_at)
VALUES ($1, $2::jsonb, now())
ON CONFLICT (key) DO UPDATE
    SET value = EXCLUDED.value, updated_at = now()
"""
_DELETE_SQL = "DELETE FROM provider_preferences WHERE key = $1"


def decode_jsonb(raw: Any) -> Any:
    """Turn a JSONB column value into Python data.

    Without a registered codec asyncpg hands JSONB back as text. A value that
    decodes to a string holding a JSON object or array was stored
    double-encoded and is unwrapped once more.
    """
    if not isinstance(raw, str):
        return raw
    value = json.loads(raw)
    if not isinstance(value, str):
        return value
    try:
        nested = json.loads(value)
    except ValueError:
        return value
    if isinstance(nested, dict | list):
        logger.warning("Unwrapping double-encoded JSONB preference value")
        return nested
    return value


async def fetch_preference(pool: asyncpg.Pool, key: str) -> Any | None:
    raw = await pool.fetchval(_SELECT_SQL, key)
    return None if raw is None else decode_jsonb(raw)


async def store_preference(pool: asyncpg.Pool, key: str, value: Any) -> None:
    await pool.execute(_UPSERT_SQL, key, json.dumps(value))


async def delete_preference(pool: asyncpg.Pool, key: str) -> None:
    await pool.execute(_DELETE_SQL, key)


class PostgresPreferenceStore:
    """``PreferenceStore`` over an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        await self._pool.execute(PREFERENCES_TABLE_DDL)

    async def get(self, key: str, default: Any = None) -> Any:
        value = await fetch_preference(self._pool, key)
        return default if value is None else value

    async def set(self, key: str, value: Any) -> None:
        await store_preference(self._pool, key, value)

    async def remove(self, key: str) -> None:
        await delete_preference(self._pool, key)
