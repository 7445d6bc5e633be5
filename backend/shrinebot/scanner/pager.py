"""Backward walk over a channel's history in fixed-size pages."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from .errors import FetchTransient, RateLimited
from .models import ScannedMessage
from .pacing import Pacer
from .remote import ChannelService

logger = logging.getLogger(__name__)


@dataclass
class Page:
    """One fetched page, oldest message first."""

    messages: list[ScannedMessage]
    next_cursor: int | None
    exhausted: bool


class HistoryPager:
    """Fetch pages from newest to oldest, never skipping a page it failed to fetch.

    Rate limits are waited out and the identical request reissued. Other
    transient failures back off (doubling from ``fetch_delay`` up to
    ``backoff_max``) and retry the same cursor, with no retry cap.
    """

    def __init__(
        self,
        service: ChannelService,
        pacer: Pacer,
        page_size: int = 10,
        fetch_delay: float = 1.0,
        backoff_max: float = 60.0,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.service = service
        self.pacer = pacer
        self.page_size = page_size
        self.fetch_delay = fetch_delay
        self.backoff_max = backoff_max
        self.fetch_retries = 0

    async def _fetch(self, channel_id: int, before: int | None, limit: int) -> list[ScannedMessage]:
        backoff = self.fetch_delay
        while True:
            try:
                return await self.service.fetch_page(channel_id, before=before, limit=limit)
            except RateLimited as e:
                await self.pacer.honor(e)
            except FetchTransient as e:
                self.fetch_retries += 1
                backoff = min(backoff * 2, self.backoff_max)
                logger.error(
                    f"Error fetching messages before {before} in channel {channel_id}: {e}. "
                    f"Retrying in {backoff:.1f}s"
                )
                await self.pacer.pause(backoff)

    async def page_messages(
        self, channel_id: int, before: int | None, page_size: int | None = None
    ) -> Page:
        """Fetch the page strictly older than ``before`` (``None`` means newest)."""
        limit = page_size or self.page_size
        fetched = await self._fetch(channel_id, before, limit)
        logger.debug(f"Fetched {len(fetched)} messages before {before} in channel {channel_id}")

        exhausted = len(fetched) < limit
        next_cursor = fetched[-1].id if fetched else before
        return Page(messages=list(reversed(fetched)), next_cursor=next_cursor, exhausted=exhausted)

    async def walk(self, channel_id: int, start_before: int | None = None) -> AsyncIterator[Page]:
        """Yield pages until the channel origin, pacing between fetches."""
        cursor = start_before
        first = True
        while True:
            if not first:
                await self.pacer.pause(self.fetch_delay)
            first = False

            page = await self.page_messages(channel_id, cursor)
            yield page
            if page.exhausted:
                return
            cursor = page.next_cursor
