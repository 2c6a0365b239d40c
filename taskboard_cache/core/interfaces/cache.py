"""
Cache Backend Protocol

This module defines the abstract protocol for the key-value transport that
backs the durable cache tiers, enabling dependency injection and testability.

Architectural Decision: Protocol-based abstraction
- RedisClient is the production implementation
- InMemoryCacheBackend serves development and unit tests
- The durable tiers only depend on this narrow surface
"""

import time
from fnmatch import fnmatchcase
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """
    Protocol defining the key-value operations the durable tiers need.

    Implementations:
    - RedisClient: Production Redis-backed transport
    - InMemoryCacheBackend: Development/testing transport

    All methods may raise CacheKeyError (operation failed) or
    CacheConnectionError (backend unreachable).
    """

    async def connect(self) -> None:
        """
        Establish connection to the backend.

        Raises:
            CacheConnectionError: If connection fails
        """
        ...

    async def disconnect(self) -> None:
        """Close connection to the backend."""
        ...

    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
        ...

    async def get(self, key: str) -> str | None:
        """Get a string value, None if absent."""
        ...

    async def set(self, key: str, value: str, ttl_ms: int | None = None) -> bool:
        """
        Set a string value.

        Args:
            key: Key
            value: Value to store
            ttl_ms: Physical expiry in milliseconds (optional)
        """
        ...

    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        ...

    async def scan_keys(self, pattern: str) -> list[str]:
        """Return every key matching a glob-style pattern."""
        ...

    # Hash operations (structured tier partitions)
    async def hget(self, name: str, key: str) -> str | None:
        """Get hash field value."""
        ...

    async def hset(self, name: str, key: str, value: str) -> int:
        """Set hash field value."""
        ...

    async def hkeys(self, name: str) -> list[str]:
        """List hash field names."""
        ...

    async def hdel(self, name: str, *keys: str) -> int:
        """Delete hash fields."""
        ...

    async def health_check(self) -> dict[str, Any]:
        """Return a health status dict."""
        ...


class InMemoryCacheBackend:
    """
    Simple in-memory backend implementation for development and testing.

    Implements the CacheBackend protocol without external dependencies.

    Note: This is NOT distributed and NOT persistent.
    """

    def __init__(self):
        self._store: dict[str, str] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._expiry: dict[str, float] = {}  # key -> monotonic deadline
        self._connected = False

    async def connect(self) -> None:
        """Simulate connection."""
        self._connected = True

    async def disconnect(self) -> None:
        """Simulate disconnection."""
        self._connected = False
        self._store.clear()
        self._hashes.clear()
        self._expiry.clear()

    async def ping(self) -> bool:
        """Check if connected."""
        return self._connected

    def _expire_if_due(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self._store.pop(key, None)
            self._expiry.pop(key, None)

    async def get(self, key: str) -> str | None:
        """Get value from in-memory store."""
        self._expire_if_due(key)
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_ms: int | None = None) -> bool:
        """Set value in in-memory store."""
        self._store[key] = value
        if ttl_ms:
            self._expiry[key] = time.monotonic() + ttl_ms / 1000
        else:
            self._expiry.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        """Delete plain keys and hashes."""
        count = 0
        for key in keys:
            self._expire_if_due(key)
            if key in self._store:
                del self._store[key]
                self._expiry.pop(key, None)
                count += 1
            if key in self._hashes:
                del self._hashes[key]
                count += 1
        return count

    async def scan_keys(self, pattern: str) -> list[str]:
        """Match keys with Redis-style glob semantics."""
        for key in list(self._store):
            self._expire_if_due(key)
        names = list(self._store) + list(self._hashes)
        return [name for name in names if fnmatchcase(name, pattern)]

    async def hget(self, name: str, key: str) -> str | None:
        """Get hash field."""
        return self._hashes.get(name, {}).get(key)

    async def hset(self, name: str, key: str, value: str) -> int:
        """Set hash field."""
        fields = self._hashes.setdefault(name, {})
        is_new = key not in fields
        fields[key] = value
        return 1 if is_new else 0

    async def hkeys(self, name: str) -> list[str]:
        """List hash fields."""
        return list(self._hashes.get(name, {}))

    async def hdel(self, name: str, *keys: str) -> int:
        """Delete hash fields."""
        fields = self._hashes.get(name)
        if not fields:
            return 0
        count = sum(1 for key in keys if fields.pop(key, None) is not None)
        if not fields:
            del self._hashes[name]
        return count

    async def health_check(self) -> dict[str, Any]:
        """Health check."""
        return {
            "status": "healthy" if self._connected else "unhealthy",
            "connected": self._connected,
            "keys_count": len(self._store) + len(self._hashes),
        }
