#!/usr/bin/env python3
"""
Main entry point for the crawl service.
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from crawl_service.api.server import ApiServer, create_app
from crawl_service.crawler.fetcher import WebFetcher
from crawl_service.crawler.scheduler import CrawlScheduler
from crawl_service.jobs.job_queue import RedisJobQueue
from crawl_service.storage.results import ResultStore
from crawl_service.utils.config import Config, load_config
from crawl_service.utils.logger import setup_logging
from crawl_service.utils.monitoring import CrawlMetrics

ROLES = ('api', 'worker', 'all')


class CrawlerApp:
    """Main application class for the crawl service."""

    def __init__(self):
        self.scheduler: Optional[CrawlScheduler] = None
        self.api_server: Optional[ApiServer] = None
        self.redis_client: Optional[redis.Redis] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = asyncio.Event()

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            self._shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

    async def run(self, config_path: str, role: str = 'all', dry_run: bool = False) -> int:
        """Run the crawl service."""
        try:
            # Load configuration
            config = load_config(config_path)
            setup_logging(config.logging)
            self.setup_signal_handlers()

            self.logger.info("=== CRAWL SERVICE STARTING ===")
            self.logger.info(f"Configuration loaded from: {config_path}")
            self.logger.info(f"Role: {role}")
            self.logger.info(f"Global rate limit: {config.crawler.global_rate_limit}/s")
            self.logger.info(f"Per-domain rate limit: {config.crawler.per_domain_rate_limit}/s")
            self.logger.info(f"Storage type: {config.storage.type}")

            self.redis_client = redis.from_url(config.redis.url, decode_responses=True)

            if dry_run:
                self.logger.info("DRY RUN MODE: No jobs will be processed")
                await self._dry_run(config)
                return 0

            queue = RedisJobQueue(
                self.redis_client,
                name=config.redis.queue_name,
                attempts=config.redis.job_attempts,
                backoff=config.crawler.retry_delays
            )
            store = ResultStore.from_config(config.storage, config.redis, self.redis_client)

            if role in ('api', 'all'):
                self.api_server = ApiServer(create_app(queue, store), config.api.host, config.api.port)
                await self.api_server.start()

            if role in ('worker', 'all'):
                metrics = CrawlMetrics()
                if config.monitoring.metrics_enabled:
                    metrics.start_server(config.monitoring.prometheus_port)
                self.scheduler = CrawlScheduler(config, queue, store, metrics=metrics)
                await self.scheduler.start()

            await self._shutdown_event.wait()
            self.logger.info("Shutdown requested, stopping...")

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            await self.close()
            self.logger.info("=== CRAWL SERVICE FINISHED ===")

        return 0

    async def close(self):
        """Stop components and release connections."""
        if self.scheduler:
            await self.scheduler.stop()
            self.scheduler = None
        if self.api_server:
            await self.api_server.stop()
            self.api_server = None
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    async def _dry_run(self, config: Config):
        """Perform a dry run to test configuration and connections."""
        self.logger.info("Testing Redis connection...")
        try:
            await self.redis_client.ping()
            self.logger.info("✓ Redis connection successful")
        except RedisError as e:
            self.logger.error(f"✗ Redis connection failed: {e}")

        self.logger.info("Testing fetcher configuration...")
        async with WebFetcher(
            user_agent=config.crawler.user_agent,
            request_timeout=config.crawler.request_timeout,
            robots_timeout=config.crawler.robots_timeout
        ) as fetcher:
            probe_url = "https://example.com/"
            allowed = await fetcher.is_allowed(probe_url)
            self.logger.info(f"✓ Robots check for {probe_url}: allowed={allowed}")

        self.logger.info("Dry run completed")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Crawl Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # API and workers with config.yaml
  python main.py --role api                # Only accept and serve requests
  python main.py --role worker             # Only process queued jobs
  python main.py --config my_config.yaml   # Run with custom config
  python main.py --dry-run                 # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--role',
        choices=ROLES,
        default='all',
        help='Which components to run (default: all)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without processing jobs'
    )

    parser.add_argument(
        '--version',
        action='version',
        version='Crawl Service 1.0.0'
    )

    args = parser.parse_args()

    # Check if config file exists
    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(
            config_path=args.config,
            role=args.role,
            dry_run=args.dry_run
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
