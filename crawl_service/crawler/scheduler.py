"""
Worker pool that pulls crawl jobs from the queue, runs them and persists results.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import psutil

from .fetcher import WebFetcher
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .traversal import CrawlJob, CrawlTraversal
from ..errors import JobQueueError, ResultStoreError, TraversalError
from ..jobs.job_queue import QueuedJob, RedisJobQueue
from ..storage.results import ResultStore
from ..utils.config import Config
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlMetrics


@dataclass
class CrawlStats:
    """Statistics for the worker pool."""
    start_time: float
    jobs_completed: int = 0
    jobs_failed: int = 0
    results_stored: int = 0
    active_jobs: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time


def default_concurrency() -> int:
    """Number of workers: one per logical CPU."""
    return psutil.cpu_count(logical=True) or 1


class CrawlScheduler:
    """
    Fixed-size pool of workers.
    Each worker processes one job to completion before taking the next.
    """

    def __init__(self, config: Config, queue: RedisJobQueue, store: ResultStore,
                 fetcher: Optional[WebFetcher] = None,
                 traversal: Optional[CrawlTraversal] = None,
                 metrics: Optional[CrawlMetrics] = None):
        self.config = config
        self.queue = queue
        self.store = store
        self.metrics = metrics or CrawlMetrics()
        self.logger = logging.getLogger(__name__)

        crawler = config.crawler
        self.fetcher = fetcher or WebFetcher(
            user_agent=crawler.user_agent,
            request_timeout=crawler.request_timeout,
            max_content_bytes=crawler.max_content_bytes,
            robots_timeout=crawler.robots_timeout,
            max_cache_entries=crawler.max_cache_entries
        )
        self.rate_limiter = RateLimiter(
            global_rate=crawler.global_rate_limit,
            per_domain_rate=crawler.per_domain_rate_limit,
            max_domains=crawler.max_cache_entries
        )
        self.traversal = traversal or CrawlTraversal(
            fetcher=self.fetcher,
            rate_limiter=self.rate_limiter,
            retry_policy=RetryPolicy(
                max_attempts=crawler.retry_attempts,
                delays=crawler.retry_delays
            ),
            metrics=self.metrics,
            abort_on_link_failure=crawler.abort_on_link_failure
        )

        self.concurrency = config.worker.concurrency or default_concurrency()
        self.poll_interval = config.redis.poll_interval
        self.result_ttl = config.redis.result_ttl

        # Pool state
        self.stats = CrawlStats(start_time=time.time())
        self.is_running = False
        self.workers: List[asyncio.Task] = []
        self._stats_task: Optional[asyncio.Task] = None
        self._listeners_registered = False

    def _register_listeners(self):
        """Attach queue event listeners once per pool."""
        if self._listeners_registered:
            return

        def on_completed(job: QueuedJob, result_count: int):
            self.logger.info(f"Job {job.id} completed with {result_count} results.")

        def on_failed(job: QueuedJob, error: Exception, will_retry: bool):
            if will_retry:
                self.logger.warning(
                    f"Job {job.id} failed on attempt {job.attempts_made}. Retrying..."
                )
            else:
                self.logger.error(
                    f"Job {job.id} failed after {job.attempts_made} attempts: {error}"
                )

        self.queue.on('completed', on_completed)
        self.queue.on('failed', on_failed)
        self._listeners_registered = True

    async def start(self):
        """Start the fetcher session and the worker tasks."""
        if self.is_running:
            self.logger.warning("Worker pool is already running")
            return

        self._register_listeners()
        await self.fetcher.start()
        await self.queue.recover_stalled()

        self.is_running = True
        self.stats = CrawlStats(start_time=time.time())
        self.workers = [
            asyncio.create_task(self._worker(f"worker-{i}"))
            for i in range(self.concurrency)
        ]
        self._stats_task = asyncio.create_task(self._stats_reporter())
        self.logger.info(f"Started worker pool with {self.concurrency} workers")

    async def run(self):
        """Run until the workers stop."""
        await self.start()
        try:
            await asyncio.gather(*self.workers, return_exceptions=True)
        finally:
            await self.stop()

    async def _worker(self, worker_id: str):
        """
        Worker coroutine that processes jobs from the queue.
        """
        self.logger.debug(f"Worker {worker_id} started")

        while self.is_running:
            try:
                job = await self.queue.next_job()
                if not job:
                    # No jobs available, wait and try again
                    await asyncio.sleep(self.poll_interval)
                    continue

                await self.process_job(job)

            except asyncio.CancelledError:
                self.logger.debug(f"Worker {worker_id} cancelled")
                break
            except JobQueueError as e:
                self.logger.error(f"Worker {worker_id} queue error: {e}")
                await asyncio.sleep(self.poll_interval)

        self.logger.debug(f"Worker {worker_id} finished")

    async def process_job(self, queued: QueuedJob) -> bool:
        """
        Run one job attempt and report its outcome to the queue.

        Returns:
            True if the job completed and its results were stored
        """
        log = get_crawler_logger(__name__, job_id=queued.id)
        self.stats.active_jobs += 1
        start_time = time.time()

        try:
            job = CrawlJob.from_dict(queued.id, queued.data)
        except (KeyError, TypeError, ValueError) as e:
            log.error(f"Malformed job payload: {e}")
            await self._fail(queued, e, retryable=False, reason='malformed')
            self.stats.active_jobs -= 1
            return False

        try:
            log.info(f"Starting crawl of {job.seed_url} (attempt {queued.attempts_made + 1})")
            results = await self.traversal.traverse(job)
            await self.store.save(job.job_id, results, self.result_ttl)

        except TraversalError as e:
            log.error(f"Crawl failed: {e}")
            await self._fail(queued, e, retryable=True, reason='traversal')
            return False

        except ResultStoreError as e:
            log.error(f"Failed to persist results: {e}")
            await self._fail(queued, e, retryable=False, reason='storage')
            return False

        except Exception as e:
            log.error(f"Unexpected error: {e}", exc_info=True)
            await self._fail(queued, e, retryable=True, reason='unexpected')
            return False

        finally:
            self.metrics.job_duration.observe(time.time() - start_time)
            self.stats.active_jobs = max(self.stats.active_jobs - 1, 0)

        self.stats.results_stored += len(results)
        self.stats.jobs_completed += 1
        self.metrics.jobs_completed.inc()
        await self.queue.complete(queued, len(results))
        return True

    async def _fail(self, queued: QueuedJob, error: Exception, retryable: bool, reason: str):
        self.stats.jobs_failed += 1
        self.metrics.jobs_failed.labels(reason=reason).inc()
        await self.queue.fail(queued, error, retryable=retryable)

    async def _stats_reporter(self):
        """Periodically log pool statistics."""
        while self.is_running:
            try:
                await asyncio.sleep(self.config.worker.stats_interval)
                await self._log_current_stats()
            except asyncio.CancelledError:
                break
            except JobQueueError as e:
                self.logger.error(f"Error in stats reporter: {e}")

    async def _log_current_stats(self):
        """Log current pool statistics."""
        counts = await self.queue.counts()
        self.logger.info(
            f"Worker Progress: "
            f"Completed={self.stats.jobs_completed}, "
            f"Failed={self.stats.jobs_failed}, "
            f"Active={self.stats.active_jobs}, "
            f"Waiting={counts['waiting']}, "
            f"Delayed={counts['delayed']}, "
            f"Fetcher={self.fetcher.get_stats()}, "
            f"Limiter={self.rate_limiter.get_stats()}"
        )

    async def stop(self):
        """Stop taking jobs and cancel the workers."""
        self.is_running = False
        tasks = list(self.workers)
        if self._stats_task:
            tasks.append(self._stats_task)

        for task in tasks:
            if not task.done():
                task.cancel()

        # Wait for workers to finish
        await asyncio.gather(*tasks, return_exceptions=True)
        self.workers.clear()
        self._stats_task = None

        await self.fetcher.close()
        self.logger.info("Worker pool stopped")

    def get_stats(self) -> Dict:
        """Get current pool statistics."""
        return {
            'jobs_completed': self.stats.jobs_completed,
            'jobs_failed': self.stats.jobs_failed,
            'results_stored': self.stats.results_stored,
            'active_jobs': self.stats.active_jobs,
            'elapsed_time': self.stats.elapsed_time,
            'concurrency': self.concurrency,
            'is_running': self.is_running,
            'metrics': self.metrics.snapshot(),
        }
