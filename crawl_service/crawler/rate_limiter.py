"""
Two-tier fixed-window rate limiting: one global budget and one budget per domain.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

from ..utils.cache import BoundedCache


class FixedWindowLimiter:
    """
    Permit counter replenished to ``capacity`` at every fixed window boundary.

    Bursts are possible right after a boundary. Waiters are served in
    arrival order because the lock is held while sleeping.
    """

    def __init__(self, capacity: int, interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.interval = interval
        self._clock = clock
        self._origin = clock()
        self._window = 0
        self._remaining = capacity
        self._pending_capacity: Optional[int] = None
        self._lock = asyncio.Lock()

    def _current_window(self, now: float) -> int:
        return int((now - self._origin) // self.interval)

    def _refresh(self, now: float):
        window = self._current_window(now)
        if window != self._window:
            if self._pending_capacity is not None:
                self.capacity = self._pending_capacity
                self._pending_capacity = None
            self._window = window
            self._remaining = self.capacity

    def resize(self, capacity: int):
        """Change capacity starting from the next window; the latest call wins."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._pending_capacity = None if capacity == self.capacity else capacity

    @property
    def remaining(self) -> int:
        self._refresh(self._clock())
        return self._remaining

    async def acquire(self):
        """Wait for a permit in the current window and consume it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._refresh(now)
                if self._remaining > 0:
                    self._remaining -= 1
                    return
                next_boundary = self._origin + (self._window + 1) * self.interval
                await asyncio.sleep(max(next_boundary - now, 0.001))


class RateLimiter:
    """
    Admission control for outbound fetches.

    Every fetch takes a permit from the global limiter and then from the
    limiter of the URL's host.
    """

    def __init__(self, global_rate: int = 10, per_domain_rate: int = 5,
                 interval: float = 1.0, max_domains: int = 10000):
        self.per_domain_rate = per_domain_rate
        self.interval = interval
        self.global_limiter = FixedWindowLimiter(global_rate, interval)
        self.domain_limiters: BoundedCache[FixedWindowLimiter] = BoundedCache(
            max_domains, name="domain limiters"
        )
        self.logger = logging.getLogger(__name__)

        self.stats = {
            'permits_granted': 0,
            'domains_seen': 0,
        }

    def _get_domain(self, url: str) -> str:
        return urlparse(url).netloc.lower()

    async def get_domain_limiter(self, domain: str,
                                 rate_limit: Optional[int] = None) -> FixedWindowLimiter:
        """Return the shared limiter for a domain, creating it on first use."""
        capacity = rate_limit or self.per_domain_rate

        def create() -> FixedWindowLimiter:
            self.stats['domains_seen'] += 1
            self.logger.debug(f"Created rate limiter for {domain}: {capacity}/window")
            return FixedWindowLimiter(capacity, self.interval)

        limiter = await self.domain_limiters.get_or_create(domain, create)
        limiter.resize(capacity)
        return limiter

    async def acquire(self, url: str, rate_limit: Optional[int] = None):
        """Block until both the global and the domain budget grant a permit."""
        await self.global_limiter.acquire()
        limiter = await self.get_domain_limiter(self._get_domain(url), rate_limit)
        await limiter.acquire()
        self.stats['permits_granted'] += 1

    def get_stats(self) -> Dict[str, int]:
        stats = self.stats.copy()
        stats['cached_domains'] = len(self.domain_limiters)
        return stats
