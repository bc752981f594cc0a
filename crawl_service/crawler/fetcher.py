"""
Web page fetcher and robots.txt compliance gate.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Optional, Dict
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError

from ..errors import FetchError
from ..utils.cache import BoundedCache


@dataclass
class FetchResult:
    """Result of a successful fetch operation."""
    url: str
    status_code: int
    content: str
    content_type: Optional[str] = None
    encoding: Optional[str] = None
    fetch_time: float = 0.0


class RobotsChecker:
    """
    Fetches and caches robots.txt policies per host.

    A policy is cached only after a successful fetch. Any failure is treated
    as "allowed" and the fetch is attempted again on the next check.
    """

    def __init__(self, user_agent: str, session: Optional[ClientSession] = None,
                 timeout: float = 5.0, max_hosts: int = 10000):
        self.user_agent = user_agent
        self.session = session
        self.timeout = timeout
        self.robots_cache: BoundedCache[RobotFileParser] = BoundedCache(
            max_hosts, name="robots policies"
        )
        self.logger = logging.getLogger(__name__)

        self.stats = {
            'robots_fetched': 0,
            'robots_errors': 0,
            'urls_blocked': 0,
        }

    def _get_host(self, url: str) -> str:
        """Extract host from URL."""
        return urlparse(url).netloc.lower()

    async def _fetch_policy(self, url: str) -> RobotFileParser:
        """Download and parse robots.txt for the URL's host; raises on any failure."""
        parsed = urlparse(url)
        robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"
        timeout = ClientTimeout(total=self.timeout)

        async with self.session.get(robots_url, timeout=timeout) as response:
            if response.status != 200:
                raise FetchError(robots_url, f"robots.txt returned HTTP {response.status}",
                                 response.status)
            robots_content = await response.text()

        rp = RobotFileParser()
        rp.set_url(robots_url)
        rp.parse(robots_content.splitlines())
        return rp

    async def is_allowed(self, url: str) -> bool:
        """Check if URL can be fetched according to robots.txt."""
        host = self._get_host(url)

        rp = self.robots_cache.get(host)
        if rp is None:
            try:
                rp = await self._fetch_policy(url)
            except Exception as e:
                self.stats['robots_errors'] += 1
                self.logger.warning(
                    f"Could not fetch robots.txt for {url}: {e}. Defaulting to allowed."
                )
                return True
            self.stats['robots_fetched'] += 1
            rp = await self.robots_cache.add_if_absent(host, rp)

        allowed = rp.can_fetch(self.user_agent, url)
        if not allowed:
            self.stats['urls_blocked'] += 1
        return allowed


class WebFetcher:
    """
    Fetches web pages over a shared aiohttp session.

    Non-success responses, timeouts and connection errors raise FetchError so
    that callers can apply their retry policy.
    """

    def __init__(self, user_agent: str, request_timeout: int = 10,
                 max_content_bytes: int = 10 * 1024 * 1024, robots_timeout: float = 5.0,
                 max_cache_entries: int = 10000):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_content_bytes = max_content_bytes

        self.logger = logging.getLogger(__name__)
        self.robots_checker = RobotsChecker(
            user_agent, timeout=robots_timeout, max_hosts=max_cache_entries
        )

        # Session management
        self.session: Optional[ClientSession] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=100,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.robots_checker.session = self.session
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.robots_checker.session = None
            self.logger.info("WebFetcher session closed")

    async def is_allowed(self, url: str) -> bool:
        """Robots gate for url."""
        return await self.robots_checker.is_allowed(url)

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult with the decoded body

        Raises:
            FetchError: on non-2xx status, timeout, connection or read errors
        """
        if self.session is None:
            raise RuntimeError("WebFetcher not started")

        start_time = time.time()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url) as response:
                if response.status >= 400:
                    raise FetchError(url, f"HTTP {response.status}", response.status)

                content = await self._read_content(response)
                fetch_time = time.time() - start_time

                self.stats['successful_requests'] += 1
                self.stats['total_bytes_downloaded'] += len(content)

                self.logger.debug(f"Fetched {url}: {response.status} ({len(content)} chars)")
                return FetchResult(
                    url=url,
                    status_code=response.status,
                    content=content,
                    content_type=response.headers.get('content-type', '').lower(),
                    encoding=response.charset,
                    fetch_time=fetch_time
                )

        except FetchError:
            self.stats['failed_requests'] += 1
            raise

        except asyncio.TimeoutError as e:
            self.stats['failed_requests'] += 1
            raise FetchError(url, "Request timeout") from e

        except ClientError as e:
            self.stats['failed_requests'] += 1
            raise FetchError(url, f"Client error: {e}") from e

    async def _read_content(self, response) -> str:
        """
        Read response content with size limit.

        Args:
            response: aiohttp response object

        Returns:
            Decoded content string
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_bytes:
            raise FetchError(str(response.url), f"Content too large ({content_length} bytes)")

        # Read content in chunks to respect size limit
        content_bytes = b''
        async for chunk in response.content.iter_chunked(8192):
            content_bytes += chunk
            if len(content_bytes) > self.max_content_bytes:
                raise FetchError(str(response.url), "Content exceeded size limit during reading")

        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            # Try common encodings
            for fallback_encoding in ['utf-8', 'cp1252']:
                try:
                    return content_bytes.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue

            return content_bytes.decode('utf-8', errors='ignore')

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        stats = self.stats.copy()
        stats.update(self.robots_checker.stats)
        return stats
