"""Shrine event feature module."""

from discord.ext import commands

from .cog import ShrineEventCog

__all__ = ["ShrineEventCog", "setup"]


async def setup(bot: commands.Bot) -> None:
    """Extension entry point."""
    await bot.add_cog(ShrineEventCog(bot, bot.services))  # type: ignore[attr-defined]
