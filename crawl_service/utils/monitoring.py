"""
Monitoring and metrics collection for the crawl service.
"""

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


class CrawlMetrics:
    """Prometheus metrics for crawl workers, kept in a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()

        self.jobs_completed = Counter(
            'crawler_jobs_completed_total',
            'Crawl jobs completed and persisted',
            registry=self.registry
        )
        self.jobs_failed = Counter(
            'crawler_jobs_failed_total',
            'Crawl job attempts that failed',
            ['reason'],
            registry=self.registry
        )
        self.pages_fetched = Counter(
            'crawler_pages_fetched_total',
            'Pages fetched successfully',
            registry=self.registry
        )
        self.fetch_failures = Counter(
            'crawler_fetch_failures_total',
            'Fetches that failed after all retries',
            registry=self.registry
        )
        self.fetch_retries = Counter(
            'crawler_fetch_retries_total',
            'Fetch retries performed',
            registry=self.registry
        )
        self.robots_blocked = Counter(
            'crawler_robots_blocked_total',
            'URLs skipped because robots.txt disallows them',
            registry=self.registry
        )
        self.job_duration = Histogram(
            'crawler_job_duration_seconds',
            'Wall time spent traversing one job',
            registry=self.registry
        )

    def start_server(self, port: int):
        """Start Prometheus metrics HTTP server."""
        try:
            start_http_server(port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def snapshot(self) -> Dict[str, float]:
        """Current values of all counters, keyed by sample name."""
        values: Dict[str, float] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                if sample.name.endswith('_total'):
                    values[sample.name] = values.get(sample.name, 0.0) + sample.value
        return values
