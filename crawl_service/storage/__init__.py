"""
Storage layer for crawl results.
"""

from .results import ResultStore, ResultBackend, RedisResultBackend, MemoryResultBackend

__all__ = ['ResultStore', 'ResultBackend', 'RedisResultBackend', 'MemoryResultBackend']
