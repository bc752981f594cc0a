"""
Crawl worker core components.
"""

from .fetcher import WebFetcher, FetchResult, RobotsChecker
from .parser import ContentParser
from .rate_limiter import RateLimiter, FixedWindowLimiter
from .retry import RetryPolicy, RETRY_DELAYS
from .traversal import CrawlJob, CrawlResult, CrawlTraversal

__all__ = [
    'WebFetcher', 'FetchResult', 'RobotsChecker',
    'ContentParser',
    'RateLimiter', 'FixedWindowLimiter',
    'RetryPolicy', 'RETRY_DELAYS',
    'CrawlJob', 'CrawlResult', 'CrawlTraversal'
]
