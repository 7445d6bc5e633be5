"""Read-through cache for guild configuration rows.

Each repository owns one ``ConfigCache``. Fresh entries live in a
cachetools ``TTLCache``; every value ever loaded is also kept in a bounded
``LRUCache`` so that a guild's last known configuration can still be served
while the database is unreachable.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Any

from cachetools import LRUCache, TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Distinguishes "not cached" from a cached None
MISSING = object()

Loader = Callable[[], Awaitable[Any]]


class ConfigCache:
    def __init__(
        self,
        maxsize: int = 128,
        ttl: float = 600.0,
        *,
        attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        self.attempts = max(1, attempts)
        self.retry_delay = retry_delay
        self._fresh: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._last_known: LRUCache = LRUCache(maxsize=maxsize)
        self._lock = asyncio.Lock()

    def get(self, key: Hashable) -> Any:
        return self._fresh.get(key, MISSING)

    def get_stale(self, key: Hashable) -> Any:
        return self._last_known.get(key, MISSING)

    def set(self, key: Hashable, value: Any) -> None:
        self._fresh[key] = value
        self._last_known[key] = value

    def invalidate(self, key: Hashable) -> None:
        """Force the next read to hit the database. The last known value is kept."""
        self._fresh.pop(key, None)

    @property
    def size(self) -> int:
        return len(self._fresh)

    @property
    def stale_size(self) -> int:
        return len(self._last_known)

    async def load(self, key: Hashable, loader: Loader) -> Any:
        """Return the cached value for ``key`` or await ``loader`` and cache its result.

        A failing loader is retried ``attempts`` times with a growing delay.
        When every attempt fails the last known value is returned; without
        one the last error propagates.
        """
        value = self.get(key)
        if value is not MISSING:
            return value

        async with self._lock:
            value = self.get(key)
            if value is not MISSING:
                return value

            error: Exception | None = None
            for attempt in range(1, self.attempts + 1):
                try:
                    value = await loader()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    error = e
                    if attempt < self.attempts:
                        delay = self.retry_delay * attempt
                        logger.warning(
                            f"Loading {key} failed ({type(e).__name__}), "
                            f"attempt {attempt}/{self.attempts}, retrying in {delay:.1f}s"
                        )
                        await asyncio.sleep(delay)
                    continue
                self.set(key, value)
                return value

        stale = self.get_stale(key)
        if stale is not MISSING:
            logger.warning(f"Serving last known value for {key} ({type(error).__name__})")
            return stale
        raise error  # type: ignore[misc]
