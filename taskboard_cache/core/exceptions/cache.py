"""
Cache-Related Exceptions

All exceptions related to the tiered cache (memory, Redis-backed durable tiers).

Only CacheConnectionError and CacheKeyError are raised by the Redis transport;
the cache store catches them (and StorageUnavailableError) and degrades to
memory-only, so callers of CacheStore/CacheService never see them.
"""

from taskboard_cache.core.exceptions.base import TaskboardError


class CacheError(TaskboardError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to connect to the durable backend (Redis).

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Incorrect host/port configuration
    """
    pass


class CacheKeyError(CacheError):
    """
    Raised when a single durable-tier key operation fails.

    Common causes:
    - Operation timeout
    - Memory limit exceeded (OOM command not allowed)
    - Wrong value type stored under the key
    """
    pass


class StorageUnavailableError(CacheError):
    """
    Raised when a durable tier cannot be used at all (disabled, never
    connected, or timed out).

    Recovered locally by the cache store: warning logged, call continues
    memory-only.
    """
    pass
