"""
Exception types shared across the crawl service.
"""

from typing import Optional


class CrawlServiceError(Exception):
    """Base class for crawl service errors."""
    pass


class ConfigError(CrawlServiceError):
    """Raised when configuration is missing or invalid."""
    pass


class FetchError(CrawlServiceError):
    """Raised when a page cannot be fetched."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status_code = status_code


class TraversalError(CrawlServiceError):
    """Raised when a crawl traversal fails; carries the partial results."""

    def __init__(self, url: str, results: list, cause: Exception):
        super().__init__(f"Traversal failed at {url}: {cause}")
        self.url = url
        self.results = results
        self.cause = cause


class JobQueueError(CrawlServiceError):
    """Raised for job queue failures."""
    pass


class ResultStoreError(CrawlServiceError):
    """Raised for result persistence failures."""
    pass
