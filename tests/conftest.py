# File: tests/conftest.py
from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Dict, List, Optional, Set

import pytest
import pytest_asyncio
from aiohttp import web
from fakeredis import aioredis

from crawl_service.crawler.fetcher import FetchResult
from crawl_service.crawler.rate_limiter import RateLimiter
from crawl_service.crawler.retry import RetryPolicy
from crawl_service.errors import FetchError
from crawl_service.jobs.job_queue import RedisJobQueue
from crawl_service.storage.results import MemoryResultBackend, ResultStore
from crawl_service.utils.config import Config


class StubFetcher:
    """
    In-memory stand-in for WebFetcher.

    ``pages`` maps URL to HTML. ``failures`` maps URL to the number of
    initial fetch attempts that fail; URLs absent from ``pages`` always fail.
    """

    def __init__(self, pages: Dict[str, str], failures: Optional[Dict[str, int]] = None,
                 disallowed: Optional[Set[str]] = None):
        self.pages = pages
        self.failures = dict(failures or {})
        self.disallowed = disallowed or set()
        self.fetched: List[str] = []
        self.robots_checked: List[str] = []

    async def is_allowed(self, url: str) -> bool:
        self.robots_checked.append(url)
        return url not in self.disallowed

    async def fetch(self, url: str) -> FetchResult:
        self.fetched.append(url)
        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            raise FetchError(url, "HTTP 503", 503)
        if url not in self.pages:
            raise FetchError(url, "Client error: connection refused")
        return FetchResult(url=url, status_code=200, content=self.pages[url])


class SleepRecorder:
    """Replacement for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture()
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def fast_retry(sleep_recorder) -> RetryPolicy:
    """Production attempt budget and schedule without the waiting."""
    return RetryPolicy(max_attempts=4, delays=(10, 20, 60), sleep=sleep_recorder)


@pytest.fixture()
def fast_limiter() -> RateLimiter:
    return RateLimiter(global_rate=1000, per_domain_rate=1000)


@pytest.fixture()
def config() -> Config:
    cfg = Config()
    cfg.worker.concurrency = 2
    cfg.worker.stats_interval = 60
    cfg.redis.poll_interval = 0.01
    cfg.crawler.retry_delays = [0, 0, 0]
    return cfg


@pytest_asyncio.fixture
async def redis_client() -> AsyncIterator[aioredis.FakeRedis]:
    client = aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


class Clock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def queue(redis_client, clock) -> RedisJobQueue:
    return RedisJobQueue(redis_client, name="testQueue", attempts=4,
                         backoff=(10, 20, 60), clock=clock)


@pytest.fixture()
def store() -> ResultStore:
    return ResultStore(MemoryResultBackend(), ttl=86400)


async def serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on *port*, yield base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        await runner.cleanup()
