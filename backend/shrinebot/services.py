"""Explicit registry of the long-lived objects the shrine commands need."""

from __future__ import annotations

import logging

import discord

from shared.database import DatabaseManager, PoolConfig
from shared.migrations.runner import MigrationRunner
from shared.repositories import ParticipationRepository, ShrineEventConfigRepository

from .config import BotConfig, ScanSettings
from .scanner import DiscordChannelService, ScanEngine

logger = logging.getLogger(__name__)


class ShrineServices:
    """Owns the database pool, the repositories and the scan engine.

    Built once by the bot in ``setup_hook`` and handed to the cog; nothing
    here lives at module level.
    """

    def __init__(
        self,
        database_url: str | None = None,
        settings: ScanSettings | None = None,
        pool_config: PoolConfig | None = None,
    ):
        url = database_url if database_url is not None else BotConfig.DATABASE_URL
        if not url:
            raise RuntimeError("DATABASE_URL is not set")
        self.db = DatabaseManager(url, pool_config or PoolConfig.from_env())
        self.settings = settings or ScanSettings.from_env()
        self.config_repo: ShrineEventConfigRepository | None = None
        self.ledger: ParticipationRepository | None = None
        self._engine: ScanEngine | None = None

    @property
    def ready(self) -> bool:
        return self.config_repo is not None and self.ledger is not None

    async def start(self) -> None:
        """Connect, migrate, and build the repositories."""
        await self.db.connect()
        await MigrationRunner(self.db.pool).run_pending()

        self.config_repo = ShrineEventConfigRepository(self.db.pool)
        self.ledger = ParticipationRepository(self.db.pool)
        logger.info("Shrine services ready")

    def engine_for(self, client: discord.Client) -> ScanEngine:
        """The scan engine bound to ``client``. Created on first use and then reused."""
        if self.ledger is None:
            raise RuntimeError("ShrineServices.start() has not run")
        if self._engine is None:
            self._engine = ScanEngine(DiscordChannelService(client), self.ledger, self.settings)
        return self._engine

    async def close(self) -> None:
        self.config_repo = None
        self.ledger = None
        self._engine = None
        await self.db.disconnect()
