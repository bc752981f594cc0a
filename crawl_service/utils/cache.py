"""
Process-wide bounded cache with LRU eviction.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, TypeVar

V = TypeVar('V')


class BoundedCache(Generic[V]):
    """
    LRU cache shared by all workers of a process.

    Lookups refresh recency; inserts beyond ``max_entries`` evict the least
    recently used entry. ``get_or_create`` and ``add_if_absent`` are atomic
    with respect to other coroutines on the same event loop.
    """

    def __init__(self, max_entries: int = 10000, name: str = "cache"):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.name = name
        self._entries: "OrderedDict[Hashable, V]" = OrderedDict()
        self._lock = asyncio.Lock()
        self.evictions = 0
        self.logger = logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable) -> Optional[V]:
        value = self._entries.get(key)
        if value is not None:
            self._entries.move_to_end(key)
        return value

    def _insert(self, key: Hashable, value: V):
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            self.logger.debug(f"Evicted {evicted} from {self.name}")

    async def add_if_absent(self, key: Hashable, value: V) -> V:
        """Insert value unless key is present; return the cached value."""
        async with self._lock:
            existing = self.get(key)
            if existing is not None:
                return existing
            self._insert(key, value)
            return value

    async def get_or_create(self, key: Hashable, factory: Callable[[], V]) -> V:
        """Return the cached value for key, creating it with factory if absent."""
        async with self._lock:
            existing = self.get(key)
            if existing is not None:
                return existing
            value = factory()
            self._insert(key, value)
            return value

    def clear(self):
        self._entries.clear()
