"""
Memory Tier

In-process LRU of CacheEntry objects. Fastest tier, lost on restart, never
shared across processes.
"""

import asyncio
from collections import OrderedDict

from taskboard_cache.core.config.constants import CacheTier
from taskboard_cache.infrastructure.cache.entry import CacheEntry


class MemoryStorage:
    """
    In-memory LRU cache storage.

    STAGE-2.1: Memory tier

    Implementation Details:
    - OrderedDict for O(1) access and LRU ordering
    - asyncio.Lock around every mutation
    - Evicts least recently used entries beyond ``max_entries``
    - Expired entries are not swept; CacheStore drops them when it reads them
    """

    tier = CacheTier.MEMORY

    def __init__(self, max_entries: int = 1000):
        self._max_entries = max_entries
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> CacheEntry | None:
        """Return the entry (possibly expired) and mark it recently used."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    async def set(self, entry: CacheEntry) -> None:
        """Store an entry, evicting the oldest ones when over capacity."""
        async with self._lock:
            if entry.key in self._entries:
                self._entries.move_to_end(entry.key)
            self._entries[entry.key] = entry

            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``."""
        async with self._lock:
            matching = [key for key in self._entries if key.startswith(prefix)]
            for key in matching:
                del self._entries[key]
            return len(matching)

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def get_size(self) -> int:
        """Get current number of entries (expired ones included until read)."""
        return len(self._entries)

    def get_max_size(self) -> int:
        return self._max_entries

    def get_keys(self) -> list[str]:
        """Keys in LRU order (oldest first)."""
        return list(self._entries.keys())
