"""
Redis-backed job queue with at-least-once delivery and job-level retries.

Layout under the queue name ``<name>``:

- ``<name>:id``       counter used to allocate job ids
- ``<name>:job:<id>`` JSON record of a job (payload, attempts, failure reason)
- ``<name>:waiting``  list of ids ready to run
- ``<name>:active``   list of ids taken by a worker and not yet finished
- ``<name>:delayed``  sorted set of ids waiting for a retry, scored by due time
- ``<name>:failed``   set of ids that exhausted their attempts
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..crawler.retry import RETRY_DELAYS
from ..errors import JobQueueError

EVENTS = ('completed', 'failed')


@dataclass
class QueuedJob:
    """A job record as handed to a worker."""
    id: str
    data: Dict[str, Any]
    attempts_made: int = 0
    timestamp: float = field(default_factory=time.time)
    failed_reason: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'data': self.data,
            'attempts_made': self.attempts_made,
            'timestamp': self.timestamp,
            'failed_reason': self.failed_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'QueuedJob':
        """Create QueuedJob from dictionary."""
        return cls(
            id=str(data['id']),
            data=data['data'],
            attempts_made=data.get('attempts_made', 0),
            timestamp=data.get('timestamp', time.time()),
            failed_reason=data.get('failed_reason'),
        )


class RedisJobQueue:
    """
    Job queue kept in Redis.

    Retry policy (attempt budget and backoff schedule) is fixed per queue
    instance. Listeners registered with ``on`` are called in-process.
    """

    def __init__(self, redis_client: redis.Redis, name: str = "crawlQueue",
                 attempts: int = 4, backoff: Sequence[float] = RETRY_DELAYS,
                 clock: Callable[[], float] = time.time):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.redis_client = redis_client
        self.name = name
        self.attempts = attempts
        self.backoff = tuple(backoff)
        self._clock = clock
        self.logger = logging.getLogger(__name__)
        self._listeners: Dict[str, List[Callable]] = {event: [] for event in EVENTS}

        # Redis keys
        self.id_key = f"{name}:id"
        self.waiting_key = f"{name}:waiting"
        self.active_key = f"{name}:active"
        self.delayed_key = f"{name}:delayed"
        self.failed_key = f"{name}:failed"

    def _job_key(self, job_id: str) -> str:
        return f"{self.name}:job:{job_id}"

    def on(self, event: str, listener: Callable):
        """Register a listener for 'completed' (job, result_count) or 'failed' (job, error, will_retry)."""
        if event not in self._listeners:
            raise ValueError(f"Unknown queue event: {event}")
        self._listeners[event].append(listener)

    def _emit(self, event: str, *args):
        for listener in self._listeners[event]:
            try:
                listener(*args)
            except Exception as e:
                self.logger.error(f"Queue listener for '{event}' raised: {e}", exc_info=True)

    def backoff_delay(self, attempts_made: int) -> float:
        """Delay before the retry that follows attempt number ``attempts_made``."""
        index = min(max(attempts_made, 1), len(self.backoff)) - 1
        return self.backoff[index]

    async def add(self, data: Dict[str, Any]) -> str:
        """Enqueue a job payload and return its id."""
        try:
            job_id = str(await self.redis_client.incr(self.id_key))
            job = QueuedJob(id=job_id, data=data, timestamp=self._clock())
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.set(self._job_key(job_id), json.dumps(job.to_dict()))
                pipe.lpush(self.waiting_key, job_id)
                await pipe.execute()
        except RedisError as e:
            raise JobQueueError(f"Failed to enqueue job: {e}") from e

        self.logger.debug(f"Enqueued job {job_id}")
        return job_id

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose retry time has come back to the waiting list."""
        due = await self.redis_client.zrangebyscore(self.delayed_key, '-inf', self._clock())
        promoted = 0
        for job_id in due:
            # Only the caller that removes the id may push it
            if await self.redis_client.zrem(self.delayed_key, job_id):
                await self.redis_client.lpush(self.waiting_key, job_id)
                promoted += 1
        if promoted:
            self.logger.debug(f"Promoted {promoted} delayed jobs")
        return promoted

    async def next_job(self) -> Optional[QueuedJob]:
        """Take the next ready job, or return None if nothing is waiting."""
        try:
            await self.promote_delayed()
            job_id = await self.redis_client.rpoplpush(self.waiting_key, self.active_key)
            if job_id is None:
                return None

            raw = await self.redis_client.get(self._job_key(job_id))
            if raw is None:
                self.logger.warning(f"Dropping job {job_id}: record missing")
                await self.redis_client.lrem(self.active_key, 1, job_id)
                return None

            return QueuedJob.from_dict(json.loads(raw))
        except RedisError as e:
            raise JobQueueError(f"Failed to fetch next job: {e}") from e

    async def complete(self, job: QueuedJob, result_count: int = 0):
        """Acknowledge a finished job and remove its record."""
        try:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.lrem(self.active_key, 1, job.id)
                pipe.delete(self._job_key(job.id))
                await pipe.execute()
        except RedisError as e:
            raise JobQueueError(f"Failed to complete job {job.id}: {e}") from e

        self._emit('completed', job, result_count)

    async def fail(self, job: QueuedJob, error: Exception, retryable: bool = True) -> bool:
        """
        Record a failed attempt.

        Returns:
            True if the job was scheduled for another attempt
        """
        job.attempts_made += 1
        job.failed_reason = str(error)
        will_retry = retryable and job.attempts_made < self.attempts

        try:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.lrem(self.active_key, 1, job.id)
                pipe.set(self._job_key(job.id), json.dumps(job.to_dict()))
                if will_retry:
                    due = self._clock() + self.backoff_delay(job.attempts_made)
                    pipe.zadd(self.delayed_key, {job.id: due})
                else:
                    pipe.sadd(self.failed_key, job.id)
                await pipe.execute()
        except RedisError as e:
            raise JobQueueError(f"Failed to record failure of job {job.id}: {e}") from e

        self._emit('failed', job, error, will_retry)
        return will_retry

    async def recover_stalled(self) -> int:
        """Return jobs left in the active list by a dead worker to the waiting list."""
        recovered = 0
        try:
            while await self.redis_client.rpoplpush(self.active_key, self.waiting_key) is not None:
                recovered += 1
        except RedisError as e:
            raise JobQueueError(f"Failed to recover stalled jobs: {e}") from e

        if recovered:
            self.logger.warning(f"Recovered {recovered} stalled jobs")
        return recovered

    async def get_job(self, job_id: str) -> Optional[QueuedJob]:
        raw = await self.redis_client.get(self._job_key(job_id))
        return QueuedJob.from_dict(json.loads(raw)) if raw else None

    async def counts(self) -> Dict[str, int]:
        """Get queue statistics."""
        return {
            'waiting': await self.redis_client.llen(self.waiting_key),
            'active': await self.redis_client.llen(self.active_key),
            'delayed': await self.redis_client.zcard(self.delayed_key),
            'failed': await self.redis_client.scard(self.failed_key),
        }
