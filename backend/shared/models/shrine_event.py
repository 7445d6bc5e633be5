"""Data models for shrine_event_configs and shrine_event_participants tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class ShrineEventConfig:
    """Per-guild shrine event configuration."""

    id: int
    guild_id: int
    channel_id: int | None = None
    sticker_id: int | None = None
    role_id: int | None = None
    active: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def event_id(self) -> str:
        """Ledger key of the event this configuration describes."""
        return str(self.id)

    @property
    def is_scannable(self) -> bool:
        return bool(self.channel_id and self.sticker_id)


@dataclass
class ParticipationRecord:
    """One qualifying participant of one event. ``granted_role`` only ever flips to True."""

    guild_id: int
    user_id: int
    event_id: str
    granted_role: bool = False
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
