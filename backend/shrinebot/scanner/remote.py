"""Remote channel service: the engine's only view of Discord.

``ChannelService`` is what the engine needs; ``DiscordChannelService``
implements it with discord.py and is the single place where library
exceptions become scan errors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import aiohttp
import discord

from .errors import ChannelUnavailable, FetchTransient, GrantTransient, RateLimited, UnknownMember
from .models import ScanMember, ScannedMessage

logger = logging.getLogger(__name__)

UNKNOWN_MEMBER_CODE = 10007
GRANT_REASON = "Shrine event participation"


class ChannelService(Protocol):
    async def fetch_page(
        self, channel_id: int, *, before: int | None, limit: int
    ) -> list[ScannedMessage]:
        """Return up to ``limit`` messages older than ``before``, newest first."""
        ...

    async def fetch_member(self, guild_id: int, user_id: int) -> ScanMember:
        ...

    async def grant_role(self, member: ScanMember, role_id: int) -> None:
        ...


def _rate_limit_from_http(error: discord.HTTPException, scope: str) -> RateLimited:
    retry_after: float | None = None
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers:
        raw = headers.get("Retry-After") or headers.get("X-RateLimit-Reset-After")
        try:
            retry_after = float(raw) if raw is not None else None
        except ValueError:
            retry_after = None
    return RateLimited(retry_after=retry_after, scope=scope)


def to_scanned_message(message: discord.Message) -> ScannedMessage:
    return ScannedMessage(
        id=message.id,
        guild_id=message.guild.id if message.guild else 0,
        channel_id=message.channel.id,
        author_id=message.author.id,
        author_name=message.author.name,
        author_bot=message.author.bot,
        created_at=message.created_at,
        sticker_ids=tuple(sticker.id for sticker in message.stickers),
        content=message.content or "",
    )


def to_scan_member(member: discord.Member) -> ScanMember:
    return ScanMember(
        user_id=member.id,
        display_name=member.display_name,
        role_ids=frozenset(role.id for role in member.roles),
        handle=member,
    )


class DiscordChannelService:
    """ChannelService backed by a connected discord.py client."""

    def __init__(self, client: discord.Client):
        self.client = client

    async def _resolve_channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self.client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(channel_id)
            except (discord.NotFound, discord.Forbidden) as e:
                raise ChannelUnavailable(f"Channel {channel_id} is not reachable: {e}") from e
        if not isinstance(channel, discord.abc.Messageable):
            raise ChannelUnavailable(f"Channel {channel_id} has no message history")
        return channel

    async def fetch_page(
        self, channel_id: int, *, before: int | None, limit: int
    ) -> list[ScannedMessage]:
        try:
            channel = await self._resolve_channel(channel_id)
            before_obj = discord.Object(id=before) if before is not None else None
            return [
                to_scanned_message(message)
                async for message in channel.history(limit=limit, before=before_obj)
            ]
        except discord.RateLimited as e:
            raise RateLimited(retry_after=e.retry_after, scope="history") from e
        except (discord.Forbidden, discord.NotFound) as e:
            raise ChannelUnavailable(f"Channel {channel_id}: {e}") from e
        except discord.HTTPException as e:
            if e.status == 429:
                raise _rate_limit_from_http(e, "history") from e
            raise FetchTransient(f"HTTP {e.status}: {e.text or e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise FetchTransient(f"{type(e).__name__}: {e}") from e

    async def fetch_member(self, guild_id: int, user_id: int) -> ScanMember:
        guild = self.client.get_guild(guild_id)
        if guild is None:
            raise GrantTransient(f"Guild {guild_id} is not cached")

        if member := guild.get_member(user_id):
            return to_scan_member(member)
        try:
            return to_scan_member(await guild.fetch_member(user_id))
        except discord.NotFound as e:
            raise UnknownMember(user_id) from e
        except discord.RateLimited as e:
            raise RateLimited(retry_after=e.retry_after, scope="member") from e
        except discord.HTTPException as e:
            if e.code == UNKNOWN_MEMBER_CODE:
                raise UnknownMember(user_id) from e
            if e.status == 429:
                raise _rate_limit_from_http(e, "member") from e
            raise GrantTransient(f"Member fetch failed: HTTP {e.status}: {e.text or e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise GrantTransient(f"Member fetch failed: {type(e).__name__}: {e}") from e

    async def grant_role(self, member: ScanMember, role_id: int) -> None:
        target: discord.Member = member.handle
        try:
            await target.add_roles(discord.Object(id=role_id), reason=GRANT_REASON)
        except discord.RateLimited as e:
            raise RateLimited(retry_after=e.retry_after, scope="roles") from e
        except discord.NotFound as e:
            if e.code == UNKNOWN_MEMBER_CODE:
                raise UnknownMember(member.user_id) from e
            raise GrantTransient(f"HTTP {e.status}: {e.text or e}") from e
        except discord.HTTPException as e:
            if e.status == 429:
                raise _rate_limit_from_http(e, "roles") from e
            raise GrantTransient(f"HTTP {e.status}: {e.text or e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise GrantTransient(f"{type(e).__name__}: {e}") from e
