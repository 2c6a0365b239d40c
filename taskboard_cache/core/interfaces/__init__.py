"""
Core Interfaces Module

Protocols for the pluggable parts of the data layer:

- **cache.py**: CacheBackend (key-value transport) + InMemoryCacheBackend
- **storage.py**: DurableStorage (one durable cache tier)
- **data_source.py**: CollectionGateway and subscription callables

Interfaces follow the Protocol pattern (PEP 544) for structural subtyping,
so tests and alternative backends need no inheritance.
"""

from .cache import CacheBackend, InMemoryCacheBackend
from .data_source import CleanupFn, CollectionGateway, Record, SubscribeFn, UnsubscribeFn
from .storage import DurableStorage

__all__ = [
    "CacheBackend",
    "InMemoryCacheBackend",
    "DurableStorage",
    "CollectionGateway",
    "Record",
    "SubscribeFn",
    "UnsubscribeFn",
    "CleanupFn",
]
