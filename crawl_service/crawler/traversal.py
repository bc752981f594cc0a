"""
Depth-first crawl traversal for a single job.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .fetcher import WebFetcher
from .parser import ContentParser
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from ..errors import FetchError, TraversalError
from ..utils.monitoring import CrawlMetrics


@dataclass(frozen=True)
class CrawlJob:
    """One crawl request as accepted from the queue."""
    job_id: str
    seed_url: str
    recursive: bool = False
    max_depth: int = 0
    rate_limit: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to the queue payload format."""
        return {
            'url': self.seed_url,
            'recursive': self.recursive,
            'depth': self.max_depth,
            'rate_limit': self.rate_limit,
        }

    @classmethod
    def from_dict(cls, job_id: str, data: dict) -> 'CrawlJob':
        """Create CrawlJob from a queue payload."""
        rate_limit = data.get('rate_limit')
        return cls(
            job_id=str(job_id),
            seed_url=data['url'],
            recursive=bool(data.get('recursive', False)),
            max_depth=int(data.get('depth', 0)),
            rate_limit=int(rate_limit) if rate_limit else None,
        )


@dataclass
class CrawlResult:
    """Outcome of visiting one URL."""
    url: str
    content: Optional[str] = None
    failed: bool = False
    depth: int = field(default=0, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'url': self.url, 'content': self.content, 'failed': self.failed}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrawlResult':
        return cls(url=data['url'], content=data.get('content'), failed=bool(data.get('failed')))


class CrawlTraversal:
    """
    Runs the crawl for one job at a time: robots gate, rate permits, fetch
    with retry, then sequential depth-first descent into outbound links.
    """

    def __init__(self, fetcher: WebFetcher, rate_limiter: RateLimiter,
                 retry_policy: Optional[RetryPolicy] = None,
                 parser: Optional[ContentParser] = None,
                 metrics: Optional[CrawlMetrics] = None,
                 abort_on_link_failure: bool = True):
        self.fetcher = fetcher
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()
        self.parser = parser or ContentParser()
        self.metrics = metrics
        self.abort_on_link_failure = abort_on_link_failure
        self.logger = logging.getLogger(__name__)

    async def traverse(self, job: CrawlJob) -> List[CrawlResult]:
        """
        Crawl starting at the job's seed URL.

        Returns:
            Results in visitation order, one entry per distinct visited URL

        Raises:
            TraversalError: if any URL could not be fetched after all retries
                (only the seed URL when abort_on_link_failure is off)
        """
        visited = set()
        results: List[CrawlResult] = []
        # Explicit stack of (url, depth); children are pushed in reverse so
        # that they pop in document order.
        stack: List[Tuple[str, int]] = [(job.seed_url, 0)]

        while stack:
            url, depth = stack.pop()
            if url in visited or depth > job.max_depth:
                continue
            visited.add(url)

            if not await self.fetcher.is_allowed(url):
                self.logger.info(f"Crawling disallowed by robots.txt: {url}")
                if self.metrics:
                    self.metrics.robots_blocked.inc()
                results.append(CrawlResult(url=url, failed=True, depth=depth))
                continue

            await self.rate_limiter.acquire(url, job.rate_limit)

            try:
                content = await self._fetch_with_retry(url)
            except FetchError as e:
                results.append(CrawlResult(url=url, failed=True, depth=depth))
                if self.metrics:
                    self.metrics.fetch_failures.inc()
                if depth == 0 or self.abort_on_link_failure:
                    raise TraversalError(url, results, e) from e
                self.logger.warning(f"Giving up on {url} for job {job.job_id}: {e}")
                continue

            results.append(CrawlResult(url=url, content=content, depth=depth))
            if self.metrics:
                self.metrics.pages_fetched.inc()

            if job.recursive and depth < job.max_depth:
                links = self.parser.extract_links(url, content)
                for link in reversed(links):
                    if link not in visited:
                        stack.append((link, depth + 1))

        self.logger.info(f"Job {job.job_id} visited {len(results)} URLs")
        return results

    async def _fetch_with_retry(self, url: str) -> str:
        self.logger.info(f"Fetching URL: {url}")

        def on_retry(attempt: int, error: Exception):
            if self.metrics:
                self.metrics.fetch_retries.inc()

        result = await self.retry_policy.run(
            lambda: self.fetcher.fetch(url), description=f"Fetch {url}",
            on_retry=on_retry, retry_on=(FetchError,)
        )
        return result.content
