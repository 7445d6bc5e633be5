"""Suspension bookkeeping for a scan run.

Every wait the engine performs goes through a Pacer, so rate-limit hits
and total time spent waiting end up in the report.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import RateLimited

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass
class RateLimitStats:
    """Counters for one run."""

    rate_limited_count: int = 0
    total_wait_seconds: float = 0.0
    rate_limit_wait_seconds: float = 0.0
    # Most recent hits: {timestamp, scope, retry_after}
    rate_limit_events: deque[dict[str, Any]] = field(default_factory=lambda: deque(maxlen=50))


class Pacer:
    """Awaits fixed pacing delays and honours rate-limit signals."""

    def __init__(self, default_retry_after: float = 5.0, sleep: SleepFunc | None = None):
        self.default_retry_after = default_retry_after
        self._sleep = sleep or asyncio.sleep
        self.stats = RateLimitStats()

    async def pause(self, seconds: float) -> None:
        """Fixed pacing delay. Zero or negative delays do not suspend."""
        if seconds <= 0:
            return
        self.stats.total_wait_seconds += seconds
        await self._sleep(seconds)

    async def honor(self, signal: RateLimited) -> float:
        """Suspend for the duration the service asked for. Returns the wait used."""
        wait = signal.retry_after
        if wait is None or wait <= 0:
            wait = self.default_retry_after

        self.stats.rate_limited_count += 1
        self.stats.rate_limit_wait_seconds += wait
        self.stats.rate_limit_events.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "scope": signal.scope,
                "retry_after": wait,
            }
        )
        logger.warning(f"Rate limited ({signal.scope}). Waiting {wait:.2f}s before retrying...")

        self.stats.total_wait_seconds += wait
        await self._sleep(wait)
        return wait

    def summary(self) -> dict[str, Any]:
        return {
            "rate_limited_count": self.stats.rate_limited_count,
            "rate_limit_wait_seconds": round(self.stats.rate_limit_wait_seconds, 2),
            "total_wait_seconds": round(self.stats.total_wait_seconds, 2),
            "recent_rate_limits": list(self.stats.rate_limit_events)[-5:],
        }
