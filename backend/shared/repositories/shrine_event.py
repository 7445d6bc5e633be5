"""Repository for the shrine_event_configs table."""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from shared.cache import ConfigCache
from shared.models.shrine_event import ShrineEventConfig

logger = logging.getLogger(__name__)

_SELECT_COLS = "id, guild_id, channel_id, sticker_id, role_id, active, created_at, updated_at"

# Columns callers may change through update_config()
UPDATABLE_FIELDS = frozenset({"channel_id", "sticker_id", "role_id", "active"})


def _row_to_config(row: asyncpg.Record) -> ShrineEventConfig:
    return ShrineEventConfig(**dict(row))


class ShrineEventConfigRepository:
    """Pure SQL operations for shrine_event_configs. Read-only to the scan engine."""

    def __init__(self, pool: asyncpg.Pool, cache: ConfigCache | None = None) -> None:
        self.pool = pool
        self._config_cache = cache or ConfigCache(maxsize=64, ttl=600)

    async def get_config(self, guild_id: int) -> ShrineEventConfig | None:
        """Get a guild's configuration (cached, last known value while the database is down)."""
        return await self._config_cache.load(guild_id, lambda: self._fetch_config(guild_id))

    async def _fetch_config(self, guild_id: int) -> ShrineEventConfig | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SELECT_COLS} FROM shrine_event_configs WHERE guild_id = $1",
                guild_id,
            )
            if not row:
                return None
            return _row_to_config(row)

    async def find_or_create_config(self, guild_id: int) -> ShrineEventConfig:
        """Return the guild's configuration, creating an empty inactive one if missing."""
        existing = await self.get_config(guild_id)
        if existing is not None:
            return existing

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO shrine_event_configs (guild_id)
                VALUES ($1)
                ON CONFLICT (guild_id) DO UPDATE SET guild_id = EXCLUDED.guild_id
                RETURNING {_SELECT_COLS}
                """,
                guild_id,
            )
        config = _row_to_config(row)
        self._config_cache.set(guild_id, config)
        logger.info(f"Created default shrine event config for guild {guild_id}")
        return config

    async def update_config(self, guild_id: int, /, **changes: Any) -> ShrineEventConfig:
        """Apply a partial update, creating the row first if needed. Invalidates cache."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown shrine config fields: {', '.join(sorted(unknown))}")
        if not changes:
            return await self.find_or_create_config(guild_id)

        columns = sorted(changes)
        assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(columns, start=2))
        insert_cols = ", ".join(["guild_id", *columns])
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 2))

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO shrine_event_configs ({insert_cols})
                VALUES ({placeholders})
                ON CONFLICT (guild_id) DO UPDATE SET
                    {assignments},
                    updated_at = NOW()
                RETURNING {_SELECT_COLS}
                """,
                guild_id,
                *(changes[col] for col in columns),
            )
        self._config_cache.invalidate(guild_id)
        return _row_to_config(row)
