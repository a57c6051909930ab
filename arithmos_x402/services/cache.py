"""
In-memory key/value cache with a uniform time-to-live.

Entries become invisible once their expiry instant passes; a background
sweep removes them physically on its own schedule.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    expires_at: float


class ExpiringCache:
    """
    Thread-safe TTL cache.

    Every operation holds the lock for a single short critical section.
    Writes to an existing key replace the entry (last writer wins). There is
    no size bound and no LRU eviction.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize cache.

        Args:
            ttl_seconds: Lifetime applied to every entry at write time
            clock: Monotonic clock returning seconds
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._items: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def get(self, key: str) -> Tuple[Any, bool]:
        """
        Look up a key.

        Returns:
            (value, True) for a live entry, (None, False) otherwise
        """
        with self._lock:
            entry = self._items.get(key)

        if entry is None or self._clock() >= entry.expires_at:
            return None, False
        return entry.value, True

    def set(self, key: str, value: Any) -> None:
        entry = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
        with self._lock:
            self._items[key] = entry

    def purge_expired(self) -> int:
        """
        Physically remove expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._items.items() if now >= entry.expires_at]
            for key in expired:
                del self._items[key]

        if expired:
            logger.debug("cache_purged", removed=len(expired))
        return len(expired)

    def __len__(self) -> int:
        """Number of physically stored entries, expired or not."""
        with self._lock:
            return len(self._items)

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.purge_expired()

    def start_sweeper(self, interval_seconds: float) -> None:
        """
        Start the background sweep on the running event loop.

        Args:
            interval_seconds: Delay between sweeps, independent of the TTL
        """
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop(interval_seconds))
        logger.info("cache_sweeper_started", interval_seconds=interval_seconds, ttl_seconds=self.ttl_seconds)

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("cache_sweeper_stopped")


__all__ = ["ExpiringCache", "CacheEntry"]
