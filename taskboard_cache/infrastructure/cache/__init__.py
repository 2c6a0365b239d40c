"""
Cache Module

Provides the tiered cache store (memory + Redis-backed structured/scalar tiers).
"""

from .cache_store import CacheObserver, CacheStore, epoch_ms
from .durable_storage import ScalarStorage, StructuredStorage
from .entry import CacheEntry
from .memory_storage import MemoryStorage
from .redis_client import RedisClient

__all__ = [
    "CacheEntry",
    "CacheObserver",
    "CacheStore",
    "MemoryStorage",
    "RedisClient",
    "ScalarStorage",
    "StructuredStorage",
    "epoch_ms",
]
