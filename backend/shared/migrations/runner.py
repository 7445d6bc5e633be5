"""Migration runner for the shrine event schema."""

from __future__ import annotations

import logging
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"

# Arbitrary constant; serialises concurrent bot instances running migrations
_ADVISORY_LOCK_KEY = 0x5348524E


class MigrationRunner:
    """Apply ``versions/NNN_description.sql`` files once each.

    Applied versions are recorded in ``schema_migrations``. A Postgres
    advisory lock is held while migrating so that two instances starting at
    once do not both apply the same file.
    """

    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, migrations_dir: Path | None = None) -> None:
        self.pool = pool
        self.migrations_dir = migrations_dir or VERSIONS_DIR

    def pending_files(self, applied: set[str]) -> list[Path]:
        """SQL files not yet applied, ordered by their NNN_ prefix."""
        return [p for p in sorted(self.migrations_dir.glob("*.sql")) if p.stem not in applied]

    async def run_pending(self) -> list[str]:
        """Apply all pending migrations. Returns the newly-applied versions."""
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_advisory_lock($1)", _ADVISORY_LOCK_KEY)
            try:
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                        version    TEXT PRIMARY KEY,
                        name       TEXT NOT NULL,
                        applied_at TIMESTAMPTZ DEFAULT NOW()
                    )
                    """
                )
                rows = await conn.fetch(f"SELECT version FROM {self.TRACKING_TABLE}")  # noqa: S608
                applied = {row["version"] for row in rows}

                newly_applied: list[str] = []
                for sql_path in self.pending_files(applied):
                    logger.info("Applying migration: %s", sql_path.stem)
                    async with conn.transaction():
                        await conn.execute(sql_path.read_text(encoding="utf-8"))
                        await conn.execute(
                            f"INSERT INTO {self.TRACKING_TABLE} (version, name) VALUES ($1, $2)",
                            sql_path.stem,
                            sql_path.name,
                        )
                    newly_applied.append(sql_path.stem)
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", _ADVISORY_LOCK_KEY)

        if newly_applied:
            logger.info("Applied %d migration(s): %s", len(newly_applied), ", ".join(newly_applied))
        else:
            logger.info("Database schema is up to date")
        return newly_applied
