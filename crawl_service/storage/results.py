"""
Result storage for finished crawl jobs.
Supports Redis (shared across processes) and in-memory storage.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..crawler.traversal import CrawlResult
from ..errors import ResultStoreError
from ..utils.config import RedisConfig, StorageConfig


class ResultBackend:
    """Abstract base class for result storage backends."""

    async def set(self, key: str, value: str, ttl: int):
        """Store value under key, expiring after ttl seconds."""
        raise NotImplementedError

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None when absent or expired."""
        raise NotImplementedError

    async def close(self):
        """Close storage connections."""
        pass


class RedisResultBackend(ResultBackend):
    """Redis backend; entries expire through Redis key TTLs."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    async def set(self, key: str, value: str, ttl: int):
        try:
            await self.redis_client.set(key, value, ex=ttl)
        except RedisError as e:
            raise ResultStoreError(f"Failed to write {key}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis_client.get(key)
        except RedisError as e:
            raise ResultStoreError(f"Failed to read {key}: {e}") from e


class MemoryResultBackend(ResultBackend):
    """Process-local backend for single-process deployments and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}

    async def set(self, key: str, value: str, ttl: int):
        self._entries[key] = (value, self._clock() + ttl)

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value


class ResultStore:
    """Persists and loads the ordered result list of a job."""

    def __init__(self, backend: ResultBackend, prefix: str = "result:", ttl: int = 86400):
        self.backend = backend
        self.prefix = prefix
        self.ttl = ttl
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0,
        }

    @classmethod
    def from_config(cls, storage: StorageConfig, redis_config: RedisConfig,
                    redis_client: Optional[redis.Redis] = None) -> 'ResultStore':
        """Create a store for the configured backend type."""
        backend_type = storage.type.lower()

        if backend_type == 'redis':
            if redis_client is None:
                raise ResultStoreError("Redis result storage requires a Redis client")
            backend = RedisResultBackend(redis_client)
        elif backend_type == 'memory':
            backend = MemoryResultBackend()
        else:
            raise ResultStoreError(f"Unknown storage type: {backend_type}")

        logging.getLogger(__name__).info(f"Result store initialized with {backend_type} backend")
        return cls(backend, prefix=redis_config.result_prefix, ttl=redis_config.result_ttl)

    def _key(self, job_id: str) -> str:
        return f"{self.prefix}{job_id}"

    async def save(self, job_id: str, results: List[CrawlResult], ttl: Optional[int] = None):
        """Store the results of a job."""
        payload = json.dumps([result.to_dict() for result in results], ensure_ascii=False)
        try:
            await self.backend.set(self._key(job_id), payload, ttl or self.ttl)
        except ResultStoreError:
            self.stats['storage_errors'] += 1
            raise

        self.stats['total_stored'] += 1
        self.logger.debug(f"Stored {len(results)} results for job {job_id}")

    async def load(self, job_id: str) -> Optional[List[Dict[str, Any]]]:
        """Return the stored results of a job, or None if not (yet) available."""
        raw = await self.backend.get(self._key(job_id))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ResultStoreError(f"Corrupt result entry for job {job_id}: {e}") from e

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()

    async def close(self):
        await self.backend.close()
