#!/usr/bin/env python3
"""
Tiered Cache Store

Architecture:
    CacheStore (Public API)
        ├── MemoryStorage (in-process LRU)
        ├── StructuredStorage (Redis hashes per namespace partition)
        ├── ScalarStorage (flat Redis strings)
        └── CacheObserver (metrics & logging)

Lookup order: memory → structured → scalar. The first live hit wins and is
promoted into every faster tier.

Failure semantics:
    Durable tiers are optional. Every durable call is bounded by
    CACHE_DURABLE_TIMEOUT_MS; timeouts and backend errors are logged as
    warnings, counted, and the operation continues memory-only. Callers of
    CacheStore never see a durable-tier error.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import orjson
from redis.exceptions import RedisError

from taskboard_cache.core.config.constants import CacheTier, Stage
from taskboard_cache.core.config.settings import Settings, get_settings
from taskboard_cache.core.exceptions import CacheError, StorageUnavailableError
from taskboard_cache.core.interfaces.cache import CacheBackend
from taskboard_cache.core.interfaces.storage import DurableStorage
from taskboard_cache.core.logging.logger import get_logger, log_stage
from taskboard_cache.infrastructure.cache.durable_storage import ScalarStorage, StructuredStorage
from taskboard_cache.infrastructure.cache.entry import CacheEntry
from taskboard_cache.infrastructure.cache.memory_storage import MemoryStorage
from taskboard_cache.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)

logger = get_logger(__name__)

Clock = Callable[[], float]

DURABLE_FAILURES = (asyncio.TimeoutError, CacheError, RedisError, OSError)


def epoch_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# OBSERVABILITY
# =============================================================================


class CacheObserver:
    """
    Tracks hit/miss counts and emits logs + prometheus metrics.

    Counters are per store instance; prometheus counters are process-wide.
    """

    def __init__(self, metrics: MetricsCollector | None = None):
        self._metrics = metrics or get_metrics_collector()
        self._hits: dict[str, int] = {tier.value: 0 for tier in CacheTier}
        self._misses = 0
        self._degradations = 0

    def record_hit(self, tier: CacheTier, key: str) -> None:
        self._hits[tier.value] += 1
        self._metrics.record_cache_hit(tier.value)
        log_stage(logger, Stage.CACHE_LOOKUP, "Cache hit", level="debug",
                  tier=tier.value, cache_key=key)

    def record_miss(self, key: str) -> None:
        self._misses += 1
        self._metrics.record_cache_miss()
        log_stage(logger, Stage.CACHE_LOOKUP, "Cache miss", level="debug", cache_key=key)

    def record_degradation(self, tier: CacheTier, operation: str, error: BaseException) -> None:
        self._degradations += 1
        self._metrics.record_durable_degradation(tier.value, operation)
        log_stage(
            logger,
            Stage.DURABLE_TIER,
            "Durable tier unavailable, continuing memory-only",
            level="warning",
            tier=tier.value,
            operation=operation,
            error_type=type(error).__name__,
            error=str(error) or "timeout",
        )

    def get_stats(self) -> dict[str, Any]:
        total_hits = sum(self._hits.values())
        total = total_hits + self._misses
        return {
            "hits": dict(self._hits),
            "misses": self._misses,
            "total_requests": total,
            "hit_rate": round(total_hits / total, 3) if total > 0 else 0.0,
            "durable_degradations": self._degradations,
        }


# =============================================================================
# PUBLIC API
# =============================================================================


class CacheStore:
    """
    Tiered key → value store with lazy TTL expiry.

    Usage:
        store = CacheStore(settings, backend=RedisClient(settings))
        await store.initialize()

        await store.set("employees:getAll", [{"id": 1}], ttl_ms=5000)
        value = await store.get("employees:getAll")

        await store.delete_pattern("employees:")
        await store.shutdown()

    Without a backend (or with CACHE_DURABLE_ENABLED=false) the store is
    memory-only. ``clock`` returns epoch milliseconds and exists so tests can
    move time forward.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        backend: CacheBackend | None = None,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize cache store.

        STAGE-2.0: Cache store initialization
        """
        self._settings = settings or get_settings()
        cache_settings = self._settings.cache

        self._clock = clock or epoch_ms
        self._default_ttl_ms = cache_settings.CACHE_DEFAULT_TTL_MS
        self._timeout_s = cache_settings.CACHE_DURABLE_TIMEOUT_MS / 1000
        self._scalar_max_bytes = cache_settings.CACHE_SCALAR_MAX_BYTES

        self._memory = MemoryStorage(max_entries=cache_settings.CACHE_MEMORY_MAX_ENTRIES)
        self._backend = backend if cache_settings.CACHE_DURABLE_ENABLED else None
        self._durable: list[DurableStorage] = []
        if self._backend is not None:
            self._durable = [
                StructuredStorage(self._backend, cache_settings.CACHE_KEY_PREFIX),
                ScalarStorage(self._backend, cache_settings.CACHE_KEY_PREFIX),
            ]
        self._available: dict[CacheTier, bool] = {storage.tier: True for storage in self._durable}
        self._observer = CacheObserver(metrics)
        self._initialized = False

        log_stage(
            logger,
            Stage.INITIALIZATION,
            "Cache store initialized",
            memory_max_entries=cache_settings.CACHE_MEMORY_MAX_ENTRIES,
            durable_tiers=[storage.tier.value for storage in self._durable],
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Connect the durable tiers.

        STAGE-2.0.1: Durable backend connection

        A tier that cannot connect is disabled for the lifetime of the store.
        """
        if self._initialized:
            return

        for storage in self._durable:
            try:
                await asyncio.wait_for(storage.connect(), timeout=self._timeout_s)
            except DURABLE_FAILURES as e:
                self._available[storage.tier] = False
                self._observer.record_degradation(
                    storage.tier,
                    "connect",
                    StorageUnavailableError.from_exception(e, tier=storage.tier.value),
                )

        self._initialized = True
        log_stage(logger, Stage.INITIALIZATION, "Cache store ready",
                  durable_tiers=self.available_tiers())

    async def shutdown(self) -> None:
        """
        Clear the memory tier and disconnect the durable backend.

        STAGE-6.0: Cache store shutdown
        """
        await self._memory.clear()
        if self._backend is not None:
            try:
                await self._backend.disconnect()
            except DURABLE_FAILURES as e:
                log_stage(logger, Stage.SHUTDOWN, "Durable backend disconnect failed",
                          level="warning", error=str(e))
        self._initialized = False
        log_stage(logger, Stage.SHUTDOWN, "Cache store shutdown")

    def available_tiers(self) -> list[str]:
        """Tiers currently in use, fastest first."""
        tiers = [CacheTier.MEMORY.value]
        tiers.extend(storage.tier.value for storage in self._durable if self._available[storage.tier])
        return tiers

    # -------------------------------------------------------------------------
    # Durable call guard
    # -------------------------------------------------------------------------

    async def _durable_call(
        self,
        storage: DurableStorage,
        operation: str,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
        default: Any = None,
    ) -> Any:
        """Run one durable-tier call with a timeout; failures return ``default``."""
        if not self._available.get(storage.tier):
            return default
        try:
            return await asyncio.wait_for(call(*args), timeout=self._timeout_s)
        except DURABLE_FAILURES as e:
            self._observer.record_degradation(storage.tier, operation, e)
            return default

    # -------------------------------------------------------------------------
    # Core Operations
    # -------------------------------------------------------------------------

    def now_ms(self) -> int:
        return int(self._clock())

    async def get_entry(self, key: str) -> CacheEntry | None:
        """
        Look up a live entry across tiers.

        STAGE-2.0: Cache lookup

        Expired entries found on the way are removed best-effort. A durable
        hit is written back into memory and every faster durable tier.
        """
        now = self.now_ms()

        entry = await self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                self._observer.record_hit(CacheTier.MEMORY, key)
                return entry
            await self._memory.delete(key)

        for index, storage in enumerate(self._durable):
            entry = await self._durable_call(storage, "read", storage.read, key)
            if entry is None:
                continue
            if entry.is_expired(now):
                await self._durable_call(storage, "remove", storage.remove, key)
                continue

            for faster in self._durable[:index]:
                await self._durable_call(faster, "promote", faster.write, entry.with_tier(faster.tier))
            await self._memory.set(entry)

            self._observer.record_hit(storage.tier, key)
            return entry

        self._observer.record_miss(key)
        return None

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired everywhere."""
        entry = await self.get_entry(key)
        return entry.value if entry is not None else None

    def select_tier(self, value: Any) -> CacheTier:
        """
        Default tier for a payload (see CacheTier.for_payload).

        Values orjson cannot serialize, containers included, stay in memory.
        """
        try:
            size = len(orjson.dumps(value))
        except TypeError:
            return CacheTier.MEMORY
        return CacheTier.for_payload(value, size, self._scalar_max_bytes)

    async def set(
        self,
        key: str,
        value: Any,
        tier: CacheTier | None = None,
        ttl_ms: int | None = None,
    ) -> CacheEntry:
        """
        Store a value in memory and in the chosen durable tier.

        STAGE-2.3: Cache population

        Copies of the key in the other durable tiers are removed so a lookup
        never finds an older value behind the new one.

        Args:
            key: Cache key
            value: Payload (must be orjson-serializable to reach a durable tier)
            tier: Target tier; None picks one from the payload shape
            ttl_ms: Time-to-live in milliseconds (default CACHE_DEFAULT_TTL_MS)
        """
        tier = tier or self.select_tier(value)
        ttl_ms = self._default_ttl_ms if ttl_ms is None else ttl_ms
        entry = CacheEntry.create(key, value, ttl_ms, self.now_ms(), tier)

        await self._memory.set(entry)

        for storage in self._durable:
            if storage.tier == tier:
                await self._durable_call(storage, "write", storage.write, entry)
            else:
                await self._durable_call(storage, "remove", storage.remove, key)

        log_stage(logger, Stage.CACHE_POPULATE, "Cache set", level="debug",
                  cache_key=key, tier=tier.value, ttl_ms=ttl_ms)
        return entry

    async def delete(self, key: str) -> None:
        """
        Remove a key from every tier.

        STAGE-2.4: Cache invalidation
        """
        await self._memory.delete(key)
        for storage in self._durable:
            await self._durable_call(storage, "remove", storage.remove, key)

        log_stage(logger, Stage.CACHE_INVALIDATE, "Cache key invalidated", cache_key=key)

    async def delete_pattern(self, prefix: str) -> int:
        """
        Remove every key starting with ``prefix`` from every tier.

        Returns:
            Number of entries removed (memory + durable)
        """
        removed = await self._memory.delete_prefix(prefix)
        for storage in self._durable:
            removed += await self._durable_call(
                storage, "remove_prefix", storage.remove_prefix, prefix, default=0
            )

        log_stage(logger, Stage.CACHE_INVALIDATE, "Cache prefix invalidated",
                  prefix=prefix, removed=removed)
        return removed

    async def clear(self) -> int:
        """Remove every entry this store owns, in every tier."""
        removed = await self._memory.clear()
        for storage in self._durable:
            removed += await self._durable_call(storage, "clear", storage.clear, default=0)

        log_stage(logger, Stage.CACHE_INVALIDATE, "Cache cleared", removed=removed)
        return removed

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def memory_entry_count(self) -> int:
        return self._memory.get_size()

    def memory_keys(self) -> list[str]:
        return self._memory.get_keys()

    def stats(self) -> dict[str, Any]:
        return {
            "memory_entry_count": self._memory.get_size(),
            "memory_max_entries": self._memory.get_max_size(),
            "tiers": self.available_tiers(),
            **self._observer.get_stats(),
        }

    async def health_check(self) -> dict[str, Any]:
        """
        Per-tier health.

        The store is "healthy" while memory works; a durable tier that is
        down only makes it "degraded".
        """
        health: dict[str, Any] = {
            "status": "healthy",
            CacheTier.MEMORY.value: {
                "status": "healthy",
                "entries": self._memory.get_size(),
                "max_entries": self._memory.get_max_size(),
            },
        }

        for storage in self._durable:
            if not self._available[storage.tier]:
                health[storage.tier.value] = {"status": "disabled"}
                health["status"] = "degraded"
                continue

            tier_health = await self._durable_call(
                storage,
                "health_check",
                storage.health_check,
                default={"status": "unhealthy", "error": "health check failed"},
            )
            health[storage.tier.value] = tier_health
            if tier_health.get("status") != "healthy":
                health["status"] = "degraded"

        return health
