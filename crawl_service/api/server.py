"""
HTTP front end: accepts crawl requests and serves stored results.
"""

import logging
import math
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from aiohttp import web

from ..errors import JobQueueError, ResultStoreError
from ..jobs.job_queue import RedisJobQueue
from ..storage.results import ResultStore

QUEUE_KEY = web.AppKey('queue', RedisJobQueue)
STORE_KEY = web.AppKey('store', ResultStore)

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def validate_crawl_request(body: Any) -> Optional[Dict[str, Any]]:
    """
    Validate a crawl request body.

    Returns:
        The queue payload, or None if the request is malformed
    """
    if not isinstance(body, dict):
        return None

    url = body.get('url')
    recursive = body.get('recursive')
    depth = body.get('depth')
    rate_limit = body.get('rate_limit')

    if not url or not isinstance(url, str):
        return None
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return None
    if not isinstance(recursive, bool):
        return None
    if not _is_number(depth) or depth < 0 or int(depth) != depth:
        return None
    if rate_limit is not None and (not _is_number(rate_limit) or rate_limit <= 0):
        return None

    return {
        'url': url,
        'recursive': recursive,
        'depth': int(depth),
        'rate_limit': math.ceil(rate_limit) if rate_limit is not None else None,
    }


async def submit_crawl(request: web.Request) -> web.Response:
    """POST /crawl"""
    try:
        body = await request.json()
    except ValueError:
        body = None

    payload = validate_crawl_request(body)
    if payload is None:
        return web.json_response({'error': 'Invalid request format.'}, status=400)

    try:
        job_id = await request.app[QUEUE_KEY].add(payload)
    except JobQueueError as e:
        logger.error(f"Failed to add job to queue: {e}")
        return web.json_response({'error': 'Failed to enqueue crawl request.'}, status=500)

    logger.info(f"Accepted crawl request for {payload['url']} as job {job_id}")
    return web.json_response({'queueId': job_id}, status=202)


async def get_queue_result(request: web.Request) -> web.Response:
    """GET /getQueueResult/{queueId}"""
    queue_id = request.match_info['queueId']

    try:
        results = await request.app[STORE_KEY].load(queue_id)
    except ResultStoreError as e:
        logger.error(f"Failed to retrieve results: {e}")
        return web.json_response({'error': 'Failed to retrieve crawl results.'}, status=500)

    if results is None:
        return web.json_response(
            {'error': 'Results not found or job is still in progress.'}, status=404
        )

    return web.json_response(results, status=200)


def create_app(queue: RedisJobQueue, store: ResultStore) -> web.Application:
    """Build the aiohttp application."""
    app = web.Application()
    app[QUEUE_KEY] = queue
    app[STORE_KEY] = store
    app.router.add_post('/crawl', submit_crawl)
    app.router.add_get('/getQueueResult/{queueId}', get_queue_result)
    return app


class ApiServer:
    """Runs the application on a TCP site."""

    def __init__(self, app: web.Application, host: str = "0.0.0.0", port: int = 3000):
        self.app = app
        self.host = host
        self.port = port
        self.runner: Optional[web.AppRunner] = None

    async def start(self):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info(f"API server listening on port {self.port}")

    async def stop(self):
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            logger.info("API server stopped")
