"""
Shrine event bot
discord.py 2.x with slash commands
"""

import asyncio
import logging
from pathlib import Path

# .env must be loaded before config is imported
from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).parent / ".env", encoding="utf-8")

import discord  # noqa: E402
from discord.ext import commands  # noqa: E402

from .config import BotConfig  # noqa: E402
from .core import setup_logging  # noqa: E402
from .services import ShrineServices  # noqa: E402

logger = logging.getLogger("shrinebot")


class ShrineBotClient(commands.Bot):
    """Discord client hosting the shrine event commands."""

    def __init__(self, services: ShrineServices | None = None):
        intents = discord.Intents.default()
        intents.message_content = True  # check-sticker-id reads the next message
        intents.members = True  # role checks need member role lists

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )

        self.services = services or ShrineServices()
        self.initial_extensions = ["shrinebot.cogs.shrine_event"]

    async def setup_hook(self):
        await self.services.start()

        loaded = []
        failed = []
        for extension in self.initial_extensions:
            try:
                await self.load_extension(extension)
                loaded.append(extension.split(".")[-1])
            except Exception as e:
                failed.append(f"{extension.split('.')[-1]} ({e})")

        if loaded:
            logger.info(f"Loaded cogs: {', '.join(loaded)}")
        if failed:
            logger.error(f"Failed to load: {', '.join(failed)}")

        logger.info("Syncing slash commands...")
        if BotConfig.GUILD_ID:
            # Guild sync is immediate; global sync can take up to an hour
            guild = discord.Object(id=int(BotConfig.GUILD_ID))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info(f"Slash commands synced to guild {BotConfig.GUILD_ID}")
        else:
            await self.tree.sync()
            logger.info("Slash commands synced globally")

    async def on_ready(self):
        logger.info(f"Bot ready: {self.user} (ID: {self.user.id if self.user else '?'})")
        logger.info(f"Connected to {len(self.guilds)} guild(s) | discord.py {discord.__version__}")

    async def close(self):
        try:
            await self.services.close()
        finally:
            await super().close()


async def main():
    setup_logging()

    token = BotConfig.TOKEN
    if not token:
        logger.error("DISCORD_BOT_TOKEN is not set")
        logger.error("Add it to the .env file: DISCORD_BOT_TOKEN=your_token_here")
        return

    async with ShrineBotClient() as bot:
        try:
            await bot.start(token)
        except (KeyboardInterrupt, asyncio.CancelledError):
            if not bot.is_closed():
                await bot.close()


def run() -> None:
    """Console entry point."""
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Bot stopped manually")
    except Exception as e:
        logger.error(f"Bot crashed: {e}", exc_info=e)
        raise

