"""
Durable Cache Tiers

Two DurableStorage implementations sharing one CacheBackend (Redis in
production):

StructuredStorage:
    Collections and records. One Redis hash per namespace partition
    ("{prefix}:structured:{partition}"), field = full cache key, value = the
    orjson record. The partition is the first ":" segment of the cache key,
    so a pattern delete for "employees:" touches a single hash.

ScalarStorage:
    Small scalars. Flat Redis strings "{prefix}:scalar:{cache key}" with a PX
    expiry matching the entry TTL, so Redis reclaims them on its own.

Expiry is still checked by CacheStore on every read; the physical expiry of
the scalar tier is only cleanup.
"""

from typing import Any

from taskboard_cache.core.config.constants import (
    NAMESPACE_SEPARATOR,
    REDIS_SEGMENT_SCALAR,
    REDIS_SEGMENT_STRUCTURED,
    CacheTier,
)
from taskboard_cache.core.interfaces.cache import CacheBackend
from taskboard_cache.core.logging.logger import get_logger
from taskboard_cache.infrastructure.cache.entry import CacheEntry

logger = get_logger(__name__)

_GLOB_SPECIAL = "*?[]\\"


def glob_prefix(prefix: str) -> str:
    """
    Build a SCAN pattern that matches every key starting with ``prefix``.

    The pattern is cut at the first glob metacharacter, so it may match more
    than ``prefix`` does; callers re-check with ``str.startswith``.
    """
    for index, char in enumerate(prefix):
        if char in _GLOB_SPECIAL:
            return prefix[:index] + "*"
    return prefix + "*"


class StructuredStorage:
    """Namespace-partitioned durable tier (Redis hashes)."""

    tier = CacheTier.STRUCTURED

    def __init__(self, backend: CacheBackend, key_prefix: str = "cache"):
        self._backend = backend
        self._base = f"{key_prefix}:{REDIS_SEGMENT_STRUCTURED}"

    def partition_name(self, key: str) -> str:
        partition = key.split(NAMESPACE_SEPARATOR, 1)[0]
        return f"{self._base}:{partition}"

    async def connect(self) -> None:
        await self._backend.connect()

    async def read(self, key: str) -> CacheEntry | None:
        raw = await self._backend.hget(self.partition_name(key), key)
        if raw is None:
            return None
        return CacheEntry.from_record(raw, self.tier)

    async def write(self, entry: CacheEntry) -> None:
        await self._backend.hset(self.partition_name(entry.key), entry.key, entry.to_record())

    async def remove(self, key: str) -> None:
        await self._backend.hdel(self.partition_name(key), key)

    async def remove_prefix(self, prefix: str) -> int:
        """
        Remove every field whose cache key starts with ``prefix``.

        Partitions are found with SCAN on the first prefix segment; a prefix
        without a separator ("emp") may span several partitions.
        """
        first_segment = prefix.split(NAMESPACE_SEPARATOR, 1)[0]
        partition_prefix = f"{self._base}:{first_segment}"
        removed = 0

        for name in await self._backend.scan_keys(glob_prefix(partition_prefix)):
            if not name.startswith(partition_prefix):
                continue
            fields = [field for field in await self._backend.hkeys(name) if field.startswith(prefix)]
            if fields:
                removed += await self._backend.hdel(name, *fields)

        return removed

    async def clear(self) -> int:
        names = await self._backend.scan_keys(glob_prefix(f"{self._base}:"))
        if not names:
            return 0
        return await self._backend.delete(*names)

    async def health_check(self) -> dict[str, Any]:
        health = await self._backend.health_check()
        return {"tier": self.tier.value, **health}


class ScalarStorage:
    """Flat key -> record durable tier (Redis strings with PX expiry)."""

    tier = CacheTier.SCALAR

    def __init__(self, backend: CacheBackend, key_prefix: str = "cache"):
        self._backend = backend
        self._base = f"{key_prefix}:{REDIS_SEGMENT_SCALAR}:"

    def storage_key(self, key: str) -> str:
        return f"{self._base}{key}"

    async def connect(self) -> None:
        await self._backend.connect()

    async def read(self, key: str) -> CacheEntry | None:
        raw = await self._backend.get(self.storage_key(key))
        if raw is None:
            return None
        return CacheEntry.from_record(raw, self.tier)

    async def write(self, entry: CacheEntry) -> None:
        ttl_ms = max(entry.expires_at - entry.created_at, 1)
        await self._backend.set(self.storage_key(entry.key), entry.to_record(), ttl_ms=ttl_ms)

    async def remove(self, key: str) -> None:
        await self._backend.delete(self.storage_key(key))

    async def remove_prefix(self, prefix: str) -> int:
        full_prefix = self.storage_key(prefix)
        names = [
            name for name in await self._backend.scan_keys(glob_prefix(full_prefix))
            if name.startswith(full_prefix)
        ]
        if not names:
            return 0
        return await self._backend.delete(*names)

    async def clear(self) -> int:
        names = await self._backend.scan_keys(glob_prefix(self._base))
        if not names:
            return 0
        return await self._backend.delete(*names)

    async def health_check(self) -> dict[str, Any]:
        health = await self._backend.health_check()
        return {"tier": self.tier.value, **health}
