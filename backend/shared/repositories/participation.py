"""Repository for the shrine_event_participants table (the participation ledger)."""

from __future__ import annotations

import logging

import asyncpg

from shared.models.shrine_event import ParticipationRecord

logger = logging.getLogger(__name__)

_SELECT_COLS = "id, guild_id, user_id, event_id, granted_role, created_at, updated_at"


class LedgerError(Exception):
    """Base class for ledger failures."""


class DuplicateParticipationError(LedgerError):
    """A record for (guild_id, user_id, event_id) already exists."""

    def __init__(self, guild_id: int, user_id: int, event_id: str):
        super().__init__(f"Participation already recorded: {guild_id}/{user_id}/{event_id}")
        self.guild_id = guild_id
        self.user_id = user_id
        self.event_id = event_id


class LedgerValidationError(LedgerError):
    """Key values that cannot be stored as-is."""

    def __init__(self, fields: dict[str, str]):
        detail = ", ".join(f"{name}: {reason}" for name, reason in fields.items())
        super().__init__(f"Invalid participation key ({detail})")
        self.fields = fields


def validate_key(guild_id: object, user_id: object, event_id: object) -> None:
    """Raise LedgerValidationError unless the triple is storable verbatim."""
    problems: dict[str, str] = {}
    for name, value in (("guild_id", guild_id), ("user_id", user_id)):
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            problems[name] = f"expected a positive snowflake, got {value!r}"
    if not isinstance(event_id, str) or not event_id or event_id != event_id.strip():
        problems["event_id"] = f"expected a non-empty trimmed string, got {event_id!r}"
    if problems:
        raise LedgerValidationError(problems)


def clean_key(guild_id: object, user_id: object, event_id: object) -> tuple[int, int, str]:
    """Coerce loosely-typed key values (e.g. padded strings) into their stored form."""
    return int(str(guild_id).strip()), int(str(user_id).strip()), str(event_id).strip()


def _row_to_record(row: asyncpg.Record) -> ParticipationRecord:
    return ParticipationRecord(**dict(row))


class ParticipationRepository:
    """Pure SQL operations for shrine_event_participants.

    The UNIQUE (guild_id, user_id, event_id) constraint is the arbiter when
    more than one writer races on the same participant.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def find(self, guild_id: int, user_id: int, event_id: str) -> ParticipationRecord | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_SELECT_COLS} FROM shrine_event_participants
                WHERE guild_id = $1 AND user_id = $2 AND event_id = $3
                """,
                guild_id,
                user_id,
                event_id,
            )
            return _row_to_record(row) if row else None

    async def create(self, record: ParticipationRecord) -> ParticipationRecord:
        """Insert a new record. Raises DuplicateParticipationError if the key exists."""
        validate_key(record.guild_id, record.user_id, record.event_id)
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO shrine_event_participants (guild_id, user_id, event_id, granted_role)
                    VALUES ($1, $2, $3, $4)
                    RETURNING {_SELECT_COLS}
                    """,
                    record.guild_id,
                    record.user_id,
                    record.event_id,
                    record.granted_role,
                )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateParticipationError(
                record.guild_id, record.user_id, record.event_id
            ) from e
        except (asyncpg.CheckViolationError, asyncpg.DataError) as e:
            raise LedgerValidationError({"record": str(e)}) from e
        return _row_to_record(row)

    async def mark_granted(self, guild_id: int, user_id: int, event_id: str) -> bool:
        """Set granted_role = TRUE. Returns True if this call flipped it."""
        async with self.pool.acquire() as conn:
            result: str = await conn.execute(
                """
                UPDATE shrine_event_participants
                SET granted_role = TRUE, updated_at = NOW()
                WHERE guild_id = $1 AND user_id = $2 AND event_id = $3
                  AND granted_role = FALSE
                """,
                guild_id,
                user_id,
                event_id,
            )
        return result == "UPDATE 1"

    async def count_for_event(self, guild_id: int, event_id: str) -> tuple[int, int]:
        """Return (participants, participants granted) for an event."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT COUNT(*) AS total,
                       COUNT(*) FILTER (WHERE granted_role) AS granted
                FROM shrine_event_participants
                WHERE guild_id = $1 AND event_id = $2
                """,
                guild_id,
                event_id,
            )
        return int(row["total"]), int(row["granted"])
