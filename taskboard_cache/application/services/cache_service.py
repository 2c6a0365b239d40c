"""
Cache Service
=============

Namespaced read-through cache with per-key request coalescing.

WHAT IT DOES
------------
``get_or_fetch(namespace, params, fetcher)``:

1. Build the key ``namespace`` or ``namespace:{sorted-json(params)}``
2. Return the cached value on a hit (any tier)
3. On a miss, run ``fetcher`` once per key no matter how many callers are
   waiting, store the result, and hand the same value to every caller

COALESCING
----------
The fetch runs in its own asyncio.Task registered in ``_in_flight``. Every
caller (the first one included) awaits it through ``asyncio.shield`` so a
caller that is cancelled does not cancel the fetch; the result still lands in
the cache for the next caller.

A failed fetch stores nothing. Every waiter receives the very same exception
object; there is no retry here, retry policy belongs to the caller.

INVALIDATION
------------
Invalidating a key or prefix detaches the matching in-flight fetches: later
callers start a new fetch, while callers already waiting still receive the
detached result. A detached fetch never writes to the store, so data read
before a write cannot be cached after the write invalidated it.

One CacheService is built by the composition root (taskboard_cache.app) and
passed to every data service.
"""

import asyncio
import functools
import inspect
from collections.abc import Callable
from typing import Any

import orjson
from pydantic import BaseModel

from taskboard_cache.core.config.constants import NAMESPACE_SEPARATOR, CacheTier, Stage
from taskboard_cache.core.config.settings import Settings, get_settings
from taskboard_cache.core.logging.logger import get_logger, log_stage
from taskboard_cache.infrastructure.cache.cache_store import CacheStore
from taskboard_cache.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)

logger = get_logger(__name__)

Fetcher = Callable[[], Any]

_KEY_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS


def _encode_param(obj: Any) -> Any:
    """orjson fallback for values it cannot serialize natively."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", exclude_none=True)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    raise TypeError(f"Type is not cacheable as a key parameter: {type(obj).__name__}")


def stable_serialize(params: Any) -> str:
    """
    Canonical JSON for key building: dict keys sorted at every depth, sets
    sorted, pydantic models dumped without None fields.
    """
    if isinstance(params, BaseModel):
        params = params.model_dump(mode="json", exclude_none=True)
    return orjson.dumps(params, default=_encode_param, option=_KEY_OPTIONS).decode()


class CacheService:
    """
    Read-through cache facade over a CacheStore.

    USAGE:
    ------
    service = CacheService(store)

    tasks = await service.get_or_fetch(
        "tasks:getAll",
        {"status": "open"},
        lambda: gateway.fetch_many(query),
        ttl_ms=60_000,
    )

    await service.invalidate_pattern("tasks:")
    """

    def __init__(
        self,
        store: CacheStore,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        settings = settings or get_settings()
        self._store = store
        self._metrics = metrics or get_metrics_collector()
        self._enabled = settings.ENABLE_CACHING
        self._default_ttl_ms = settings.cache.CACHE_DEFAULT_TTL_MS
        self._in_flight: dict[str, asyncio.Task] = {}
        # Every unfinished fetch, detached ones included
        self._fetch_tasks: set[asyncio.Task] = set()
        self._fetch_count = 0
        self._coalesced_count = 0

        logger.info(
            "Cache service initialized",
            stage=Stage.INITIALIZATION.value,
            caching_enabled=self._enabled,
            default_ttl_ms=self._default_ttl_ms,
        )

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def enabled(self) -> bool:
        return self._enabled

    # ------------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------------

    @staticmethod
    def build_key(namespace: str, params: Any = None) -> str:
        """
        Build a cache key.

        Empty params (None, {}, a model with only None fields) yield the bare
        namespace, so ``build_key("employees:getAll")`` is "employees:getAll".
        """
        if isinstance(params, BaseModel):
            params = params.model_dump(mode="json", exclude_none=True)
        if params is None or params == {}:
            return namespace
        return f"{namespace}{NAMESPACE_SEPARATOR}{stable_serialize(params)}"

    # ------------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------------

    async def get_or_fetch(
        self,
        namespace: str,
        params: Any,
        fetcher: Fetcher,
        ttl_ms: int | None = None,
        tier: CacheTier | None = None,
        force_refresh: bool = False,
    ) -> Any:
        """
        Return the cached value for (namespace, params) or fetch it.

        Args:
            namespace: Query family, e.g. "employees:getAll"
            params: Query parameters (dict, pydantic model, scalar or None)
            fetcher: Zero-argument callable, sync or async, producing the value
            ttl_ms: Entry lifetime (default CACHE_DEFAULT_TTL_MS)
            tier: Durable tier for the result (default picked from its shape)
            force_refresh: Skip the read, fetch and overwrite (still coalesced)

        Raises:
            Whatever ``fetcher`` raises, unchanged, to every coalesced caller.
        """
        key = self.build_key(namespace, params)

        task = self._in_flight.get(key)
        if task is None and self._enabled and not force_refresh:
            entry = await self._store.get_entry(key)
            if entry is not None:
                return entry.value
            # Another caller may have started the fetch while we read the store
            task = self._in_flight.get(key)

        if task is None:
            task = self._start_fetch(key, namespace, fetcher, ttl_ms, tier)
        else:
            self._coalesced_count += 1
            self._metrics.record_coalesced_wait()
            log_stage(logger, Stage.CACHE_FETCH, "Joined in-flight fetch",
                      level="debug", cache_key=key)

        return await asyncio.shield(task)

    async def get_many(
        self,
        requests: list[tuple[str, Any, Fetcher]],
        ttl_ms: int | None = None,
        tier: CacheTier | None = None,
    ) -> list[Any]:
        """
        Read several (namespace, params, fetcher) requests concurrently.

        Results come back in request order. Duplicate keys share one fetch.
        The first failing fetcher's exception propagates; the other fetches
        still complete and populate the cache.
        """
        return list(await asyncio.gather(*(
            self.get_or_fetch(namespace, params, fetcher, ttl_ms=ttl_ms, tier=tier)
            for namespace, params, fetcher in requests
        )))

    def _start_fetch(
        self,
        key: str,
        namespace: str,
        fetcher: Fetcher,
        ttl_ms: int | None,
        tier: CacheTier | None,
    ) -> asyncio.Task:
        task = asyncio.ensure_future(self._fetch_and_store(key, namespace, fetcher, ttl_ms, tier))
        self._in_flight[key] = task
        self._fetch_tasks.add(task)
        task.add_done_callback(self._fetch_tasks.discard)
        task.add_done_callback(_retrieve_exception)
        self._fetch_count += 1
        return task

    async def _fetch_and_store(
        self,
        key: str,
        namespace: str,
        fetcher: Fetcher,
        ttl_ms: int | None,
        tier: CacheTier | None,
    ) -> Any:
        """
        STAGE-2.5: Remote fetch on miss

        The in-flight slot is released before waiters resume, so a caller
        arriving after this returns reads the fresh entry from the store.
        """
        current = asyncio.current_task()
        try:
            log_stage(logger, Stage.CACHE_FETCH, "Fetching on cache miss", cache_key=key)
            value = fetcher()
            if inspect.isawaitable(value):
                value = await value

            if not self._enabled:
                return value
            if self._in_flight.get(key) is not current:
                log_stage(logger, Stage.CACHE_FETCH, "Fetch detached by invalidation, result not cached",
                          level="debug", cache_key=key)
                return value

            await self._store.set(
                key,
                value,
                tier=tier,
                ttl_ms=self._default_ttl_ms if ttl_ms is None else ttl_ms,
            )
            # Invalidated while the write was in progress
            if self._in_flight.get(key) is not current:
                await self._store.delete(key)
            return value

        except Exception as e:
            self._metrics.record_fetch_failure(namespace)
            log_stage(
                logger,
                Stage.CACHE_FETCH,
                "Fetch failed, nothing cached",
                level="warning",
                cache_key=key,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        finally:
            if self._in_flight.get(key) is current:
                del self._in_flight[key]

    async def peek(self, namespace: str, params: Any = None) -> Any | None:
        """Cached value or None; never fetches."""
        if not self._enabled:
            return None
        return await self._store.get(self.build_key(namespace, params))

    async def set(
        self,
        namespace: str,
        params: Any,
        value: Any,
        ttl_ms: int | None = None,
        tier: CacheTier | None = None,
    ) -> None:
        """Write a value directly (e.g. after an optimistic local update)."""
        if not self._enabled:
            return
        await self._store.set(
            self.build_key(namespace, params),
            value,
            tier=tier,
            ttl_ms=self._default_ttl_ms if ttl_ms is None else ttl_ms,
        )

    # ------------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------------

    async def invalidate(self, namespace: str, params: Any = None) -> None:
        """
        Drop one key, or the whole namespace when ``params`` is None.

        STAGE-2.4: Cache invalidation
        """
        if params is None:
            await self.invalidate_pattern(namespace)
            return

        key = self.build_key(namespace, params)
        self._detach_in_flight(lambda k: k == key)
        await self._store.delete(key)
        self._metrics.record_invalidation("key")

    async def invalidate_pattern(self, prefix: str) -> int:
        """Drop every key starting with ``prefix`` (e.g. "employees:")."""
        self._detach_in_flight(lambda k: k.startswith(prefix))
        removed = await self._store.delete_pattern(prefix)
        self._metrics.record_invalidation("pattern")
        return removed

    async def clear_all(self) -> int:
        self._detach_in_flight(lambda k: True)
        removed = await self._store.clear()
        self._metrics.record_invalidation("clear")
        return removed

    def _detach_in_flight(self, matches: Callable[[str], bool]) -> int:
        """
        Forget in-flight fetches for matching keys.

        Their waiters still get the result; the next caller fetches again.
        """
        detached = [key for key in self._in_flight if matches(key)]
        for key in detached:
            del self._in_flight[key]
        if detached:
            log_stage(logger, Stage.CACHE_INVALIDATE, "Detached in-flight fetches",
                      level="debug", keys=detached)
        return len(detached)

    async def drain(self) -> None:
        """Wait for every in-flight fetch to settle; failures are not raised."""
        pending = list(self._fetch_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------------

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def get_stats(self) -> dict[str, Any]:
        store_stats = self._store.stats()
        return {
            "caching_enabled": self._enabled,
            "memory_entry_count": store_stats["memory_entry_count"],
            "memory_keys": self._store.memory_keys(),
            "in_flight_count": len(self._in_flight),
            "fetch_count": self._fetch_count,
            "coalesced_count": self._coalesced_count,
            "hits": store_stats["hits"],
            "misses": store_stats["misses"],
            "hit_rate": store_stats["hit_rate"],
        }


def _retrieve_exception(task: asyncio.Task) -> None:
    # Mark the exception retrieved when every waiter went away before it failed
    if not task.cancelled():
        task.exception()


def cached(
    namespace: str,
    ttl_ms: int | None = None,
    tier: CacheTier | None = None,
    service_attr: str = "cache_service",
):
    """
    Cache an async method's result through the instance's CacheService.

    A single positional argument after ``self`` is the key params. Any other
    call shape keys on ``{"args": [...], "kwargs": {...}}`` so calls that
    differ only in keyword arguments get separate entries. The service is
    looked up on ``self`` at call time, so instances receive it through
    their constructor.

    Usage:
        class ReportService:
            def __init__(self, cache_service: CacheService):
                self.cache_service = cache_service

            @cached("reports:monthly", ttl_ms=60_000)
            async def monthly(self, params: dict) -> dict:
                ...
    """
    def decorator(method):
        @functools.wraps(method)
        async def wrapper(self, *args, **kwargs):
            service: CacheService = getattr(self, service_attr)
            if kwargs or len(args) > 1:
                params = {"args": list(args), "kwargs": kwargs}
            else:
                params = args[0] if args else None
            return await service.get_or_fetch(
                namespace,
                params,
                lambda: method(self, *args, **kwargs),
                ttl_ms=ttl_ms,
                tier=tier,
            )
        return wrapper
    return decorator
