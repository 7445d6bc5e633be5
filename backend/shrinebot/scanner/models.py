"""Library-independent views of the Discord objects the engine touches."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

CONTENT_PREVIEW_LENGTH = 50


@dataclass(frozen=True)
class ScannedMessage:
    """One channel message as the classifier sees it."""

    id: int
    guild_id: int
    channel_id: int
    author_id: int
    author_name: str
    created_at: datetime
    author_bot: bool = False
    sticker_ids: tuple[int, ...] = ()
    content: str = ""

    @property
    def link(self) -> str:
        return f"https://discord.com/channels/{self.guild_id}/{self.channel_id}/{self.id}"

    @property
    def preview(self) -> str:
        if len(self.content) > CONTENT_PREVIEW_LENGTH:
            return self.content[:CONTENT_PREVIEW_LENGTH] + "..."
        return self.content


@dataclass
class ScanMember:
    """A resolved guild member. ``handle`` is the library object used to grant roles."""

    user_id: int
    display_name: str
    role_ids: frozenset[int] = frozenset()
    handle: Any = field(default=None, repr=False, compare=False)

    def has_role(self, role_id: int) -> bool:
        return role_id in self.role_ids


@dataclass(frozen=True)
class Participant:
    """A qualifying author, keyed the way the ledger keys them."""

    guild_id: int
    user_id: int
    username: str
    message_link: str

    @classmethod
    def from_message(cls, message: ScannedMessage) -> Participant:
        return cls(
            guild_id=message.guild_id,
            user_id=message.author_id,
            username=message.author_name,
            message_link=message.link,
        )
