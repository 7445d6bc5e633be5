"""Scan & reconciliation engine: walk, classify, drain retries, report."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from shared.models.shrine_event import ShrineEventConfig

from ..config import ScanSettings
from .classifier import BatchClassifier
from .errors import ChannelUnavailable, ScanNotConfigured
from .grants import ParticipationLedger, RoleGranter
from .pacing import Pacer, SleepFunc
from .pager import HistoryPager
from .remote import ChannelService
from .report import ReportArtifact, ReportWriter
from .retry_queue import RoleGrantRetryQueue
from .session import ErrorKind, ScanSession, utcnow

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    async def notify(self, text: str) -> None:
        ...


def progress_text(session: ScanSession) -> str:
    return (
        f"📊 Progress update: Scanned {session.messages_scanned} messages, "
        f"found {session.matching_stickers} stickers, assigned {session.roles_assigned} roles, "
        f"encountered {session.errors} errors..."
    )


class ScanEngine:
    """Runs one scan at a time to completion.

    A run walks the configured channel backward, classifies every page in
    order, then drains the grant retry queue. It never raises for remote or
    ledger failures; those end up in the session's error log.
    """

    def __init__(
        self,
        service: ChannelService,
        ledger: ParticipationLedger,
        settings: ScanSettings | None = None,
        report_writer: ReportWriter | None = None,
        sleep: SleepFunc | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.service = service
        self.ledger = ledger
        self.settings = settings or ScanSettings()
        self.report_writer = report_writer or ReportWriter(self.settings.report_dir)
        self._sleep = sleep or asyncio.sleep
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run(
        self,
        config: ShrineEventConfig,
        event_id: str | None = None,
        *,
        channel_id: int | None = None,
        progress: ProgressSink | None = None,
    ) -> ScanSession:
        if not config.is_scannable:
            raise ScanNotConfigured(f"Guild {config.guild_id} has no channel or sticker configured")

        async with self._lock:
            return await self._run(
                config,
                event_id or config.event_id,
                channel_id or config.channel_id,  # type: ignore[arg-type]
                progress,
            )

    async def run_and_report(
        self,
        config: ShrineEventConfig,
        event_id: str | None = None,
        *,
        channel_id: int | None = None,
        progress: ProgressSink | None = None,
    ) -> tuple[ScanSession, ReportArtifact]:
        session = await self.run(config, event_id, channel_id=channel_id, progress=progress)
        return session, self.report_writer.write(session)

    async def _run(
        self,
        config: ShrineEventConfig,
        event_id: str,
        channel_id: int,
        progress: ProgressSink | None,
    ) -> ScanSession:
        cfg = self.settings
        pacer = Pacer(default_retry_after=cfg.rate_limit_default, sleep=self._sleep)
        session = ScanSession(
            guild_id=config.guild_id,
            channel_id=channel_id,
            event_id=event_id,
            sticker_id=config.sticker_id,  # type: ignore[arg-type]
            role_id=config.role_id,
            clock=self._clock,
        )
        pager = HistoryPager(
            self.service,
            pacer,
            page_size=cfg.page_size,
            fetch_delay=cfg.fetch_delay,
            backoff_max=cfg.backoff_max,
        )

        granter: RoleGranter | None = None
        retry_queue: RoleGrantRetryQueue | None = None
        if config.role_id:
            granter = RoleGranter(
                self.service,
                self.ledger,
                pacer,
                role_id=config.role_id,
                grant_delay=cfg.grant_delay,
            )
            retry_queue = RoleGrantRetryQueue(
                granter,
                pacer,
                max_attempts=cfg.max_retry_attempts,
                round_delay=cfg.grant_delay,
            )

        classifier = BatchClassifier(
            self.ledger,
            pacer,
            sticker_id=config.sticker_id,  # type: ignore[arg-type]
            event_id=event_id,
            granter=granter,
            retry_queue=retry_queue,
            process_delay=cfg.process_delay,
        )
        processed_users: set[int] = set()

        logger.info(
            f"Starting shrine scan | guild {config.guild_id} | channel {channel_id} | event {event_id}"
        )
        session.start()
        try:
            async for page in pager.walk(channel_id):
                session.pages_fetched += 1
                session.messages_scanned += len(page.messages)
                await classifier.classify_page(page.messages, session, processed_users)

                if session.pages_fetched % cfg.progress_every == 0:
                    await self._notify(progress, session)
        except ChannelUnavailable as e:
            logger.error(f"Stopping scan of channel {channel_id}: {e}")
            session.aborted = True
            session.record_error(ErrorKind.CHANNEL_UNAVAILABLE, str(e))
        except Exception as e:
            logger.exception(f"Scan of channel {channel_id} stopped by an unexpected error")
            session.aborted = True
            session.record_error(ErrorKind.FETCH, f"Scan stopped: {type(e).__name__}: {e}")

        if retry_queue is not None and len(retry_queue):
            await retry_queue.drain(session)

        session.fetch_retries = pager.fetch_retries
        session.rate_limits = pacer.summary()
        session.finish()
        logger.info(
            f"Shrine scan finished | scanned {session.messages_scanned} | "
            f"matching {session.matching_stickers} | assigned {session.roles_assigned} | "
            f"already processed {session.already_processed} | errors {session.errors}"
        )
        return session

    @staticmethod
    async def _notify(progress: ProgressSink | None, session: ScanSession) -> None:
        if progress is None:
            return
        try:
            await progress.notify(progress_text(session))
        except Exception as e:
            logger.debug(f"Progress notification failed: {e}")
