"""
Job queue for crawl requests.
"""

from .job_queue import RedisJobQueue, QueuedJob

__all__ = ['RedisJobQueue', 'QueuedJob']
