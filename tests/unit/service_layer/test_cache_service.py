"""
Unit Tests for CacheService

Covers key building, read-through caching, request coalescing, failure
propagation, invalidation of in-flight fetches, draining, batched reads and
the ``cached`` method decorator.
"""

import asyncio

import pytest
from pydantic import BaseModel

from taskboard_cache.application.services.cache_service import (
    CacheService,
    cached,
    stable_serialize,
)
from taskboard_cache.core.config.constants import CacheTier
from taskboard_cache.infrastructure.cache.cache_store import CacheStore


class CountingFetcher:
    """Async fetcher that counts calls and optionally sleeps or fails."""

    def __init__(self, value=None, delay_s: float = 0.0, error: Exception | None = None):
        self.value = value
        self.delay_s = delay_s
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return self.value


class StatusFilter(BaseModel):
    status: str
    assignee: str | None = None


@pytest.mark.unit
class TestKeyBuilding:
    def test_bare_namespace_for_empty_params(self):
        assert CacheService.build_key("employees:getAll") == "employees:getAll"
        assert CacheService.build_key("employees:getAll", {}) == "employees:getAll"

    def test_key_independent_of_param_order(self):
        first = CacheService.build_key("tasks:getAll", {"b": 1, "a": {"y": 2, "x": 1}})
        second = CacheService.build_key("tasks:getAll", {"a": {"x": 1, "y": 2}, "b": 1})

        assert first == second
        assert first == 'tasks:getAll:{"a":{"x":1,"y":2},"b":1}'

    def test_pydantic_params_drop_none_fields(self):
        key = CacheService.build_key("tasks:getAll", StatusFilter(status="open"))

        assert key == CacheService.build_key("tasks:getAll", {"status": "open"})

    def test_scalar_params(self):
        assert CacheService.build_key("employees:getById", "e1") == 'employees:getById:"e1"'

    def test_sets_are_sorted(self):
        assert stable_serialize({"ids": {"b", "a"}}) == '{"ids":["a","b"]}'

    def test_unserializable_param_rejected(self):
        with pytest.raises(TypeError):
            stable_serialize({"when": object()})


@pytest.mark.unit
class TestReadThrough:
    @pytest.mark.asyncio
    async def test_miss_fetches_and_caches(self, cache_service):
        fetcher = CountingFetcher([{"id": "e1"}])

        first = await cache_service.get_or_fetch("employees:getAll", None, fetcher)
        second = await cache_service.get_or_fetch("employees:getAll", None, fetcher)

        assert first == second == [{"id": "e1"}]
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_sync_fetcher(self, cache_service):
        value = await cache_service.get_or_fetch("presence:count", None, lambda: 12)

        assert value == 12
        assert await cache_service.peek("presence:count") == 12

    @pytest.mark.asyncio
    async def test_ttl_respected(self, cache_service, fake_clock):
        fetcher = CountingFetcher("v")

        await cache_service.get_or_fetch("k", None, fetcher, ttl_ms=1000)
        fake_clock.advance(1500)
        await cache_service.get_or_fetch("k", None, fetcher, ttl_ms=1000)

        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_tier_passed_to_store(self, cache_service, in_memory_backend):
        await cache_service.get_or_fetch("presence:count", None, lambda: 3, tier=CacheTier.STRUCTURED)

        assert await in_memory_backend.hkeys("test-cache:structured:presence") == ["presence:count"]

    @pytest.mark.asyncio
    async def test_cached_none_is_a_hit(self, cache_service):
        fetcher = CountingFetcher(None)

        await cache_service.get_or_fetch("employees:getById", "missing", fetcher)
        await cache_service.get_or_fetch("employees:getById", "missing", fetcher)

        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_force_refresh_overwrites(self, cache_service):
        await cache_service.set("tasks:getAll", None, ["old"])
        fetcher = CountingFetcher(["new"])

        value = await cache_service.get_or_fetch("tasks:getAll", None, fetcher, force_refresh=True)

        assert value == ["new"]
        assert await cache_service.peek("tasks:getAll") == ["new"]


@pytest.mark.unit
class TestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, cache_service):
        fetcher = CountingFetcher(value={"v": 1}, delay_s=0.1)

        first, second = await asyncio.gather(
            cache_service.get_or_fetch("k", None, fetcher),
            cache_service.get_or_fetch("k", None, fetcher),
        )

        assert first == second == {"v": 1}
        assert fetcher.calls == 1
        assert cache_service.in_flight_count() == 0
        assert cache_service.get_stats()["coalesced_count"] == 1

    @pytest.mark.asyncio
    async def test_different_params_are_not_coalesced(self, cache_service):
        fetcher = CountingFetcher(value=1, delay_s=0.05)

        await asyncio.gather(
            cache_service.get_or_fetch("tasks:getAll", {"status": "open"}, fetcher),
            cache_service.get_or_fetch("tasks:getAll", {"status": "done"}, fetcher),
        )

        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_failure_shared_by_every_waiter(self, cache_service):
        error = RuntimeError("backend down")
        fetcher = CountingFetcher(delay_s=0.05, error=error)

        results = await asyncio.gather(
            *(cache_service.get_or_fetch("k", None, fetcher) for _ in range(5)),
            return_exceptions=True,
        )

        assert fetcher.calls == 1
        assert all(result is error for result in results)
        assert await cache_service.peek("k") is None
        assert cache_service.in_flight_count() == 0

    @pytest.mark.asyncio
    async def test_failed_fetch_is_retried_by_next_caller(self, cache_service):
        failing = CountingFetcher(error=ValueError("nope"))
        with pytest.raises(ValueError):
            await cache_service.get_or_fetch("k", None, failing)

        assert await cache_service.get_or_fetch("k", None, CountingFetcher("ok")) == "ok"

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(self, cache_service):
        fetcher = CountingFetcher(value="done", delay_s=0.05)

        waiter = asyncio.ensure_future(cache_service.get_or_fetch("k", None, fetcher))
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        await asyncio.sleep(0.1)
        assert await cache_service.peek("k") == "done"
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_force_refresh_joins_in_flight_fetch(self, cache_service):
        fetcher = CountingFetcher(value=1, delay_s=0.05)

        first = asyncio.ensure_future(cache_service.get_or_fetch("k", None, fetcher))
        await asyncio.sleep(0.01)

        await cache_service.get_or_fetch("k", None, fetcher, force_refresh=True)
        await first

        assert fetcher.calls == 1


@pytest.mark.unit
class TestCachingDisabled:
    @pytest.fixture
    async def disabled_service(self, test_settings, fake_clock):
        settings = test_settings.model_copy(update={"ENABLE_CACHING": False})
        store = CacheStore(settings, clock=fake_clock)
        await store.initialize()
        yield CacheService(store, settings)
        await store.shutdown()

    @pytest.mark.asyncio
    async def test_always_fetches_never_stores(self, disabled_service):
        fetcher = CountingFetcher("v")

        await disabled_service.get_or_fetch("k", None, fetcher)
        await disabled_service.get_or_fetch("k", None, fetcher)

        assert fetcher.calls == 2
        assert disabled_service.store.memory_entry_count() == 0
        assert await disabled_service.peek("k") is None

    @pytest.mark.asyncio
    async def test_still_coalesces(self, disabled_service):
        fetcher = CountingFetcher("v", delay_s=0.05)

        await asyncio.gather(*(disabled_service.get_or_fetch("k", None, fetcher) for _ in range(3)))

        assert fetcher.calls == 1


@pytest.mark.unit
class TestInvalidation:
    @pytest.mark.asyncio
    async def test_invalidate_single_key(self, cache_service):
        await cache_service.set("tasks:getAll", {"status": "open"}, [1])
        await cache_service.set("tasks:getAll", {"status": "done"}, [2])

        await cache_service.invalidate("tasks:getAll", {"status": "open"})

        assert await cache_service.peek("tasks:getAll", {"status": "open"}) is None
        assert await cache_service.peek("tasks:getAll", {"status": "done"}) == [2]

    @pytest.mark.asyncio
    async def test_invalidate_without_params_drops_namespace(self, cache_service):
        await cache_service.set("tasks:getAll", None, [0])
        await cache_service.set("tasks:getAll", {"status": "open"}, [1])
        await cache_service.set("tasks:getById", "t1", {"id": "t1"})

        await cache_service.invalidate("tasks:getAll")

        assert await cache_service.peek("tasks:getAll") is None
        assert await cache_service.peek("tasks:getAll", {"status": "open"}) is None
        assert await cache_service.peek("tasks:getById", "t1") == {"id": "t1"}

    @pytest.mark.asyncio
    async def test_invalidate_pattern(self, cache_service):
        await cache_service.set("employees:getAll", None, [1], tier=CacheTier.MEMORY)
        await cache_service.set("employees:getById", "e1", {"id": "e1"}, tier=CacheTier.MEMORY)
        await cache_service.set("clients:getAll", None, [2], tier=CacheTier.MEMORY)

        removed = await cache_service.invalidate_pattern("employees:")

        assert removed == 2
        assert cache_service.get_stats()["memory_keys"] == ["clients:getAll"]

    @pytest.mark.asyncio
    async def test_clear_all(self, cache_service):
        await cache_service.set("a", None, 1)
        await cache_service.set("b", None, [2])

        await cache_service.clear_all()

        assert cache_service.get_stats()["memory_entry_count"] == 0

    @pytest.mark.asyncio
    async def test_invalidation_detaches_in_flight_fetch(self, cache_service):
        old = CountingFetcher(value=["before"], delay_s=0.05)
        new = CountingFetcher(value=["after"])

        waiting = asyncio.ensure_future(cache_service.get_or_fetch("tasks:getAll", None, old))
        await asyncio.sleep(0.01)
        await cache_service.invalidate_pattern("tasks:")

        assert cache_service.in_flight_count() == 0
        assert await cache_service.get_or_fetch("tasks:getAll", None, new) == ["after"]
        assert await waiting == ["before"]
        assert await cache_service.peek("tasks:getAll") == ["after"]
        assert (old.calls, new.calls) == (1, 1)

    @pytest.mark.asyncio
    async def test_detached_fetch_stores_nothing(self, cache_service):
        fetcher = CountingFetcher(value={"id": "t1"}, delay_s=0.03)

        waiting = asyncio.ensure_future(cache_service.get_or_fetch("tasks:getById", "t1", fetcher))
        await asyncio.sleep(0.01)
        await cache_service.invalidate("tasks:getById", "t1")

        assert await waiting == {"id": "t1"}
        assert await cache_service.peek("tasks:getById", "t1") is None

    @pytest.mark.asyncio
    async def test_invalidation_leaves_other_fetches_attached(self, cache_service):
        fetcher = CountingFetcher(value=[1], delay_s=0.03)

        waiting = asyncio.ensure_future(cache_service.get_or_fetch("clients:getAll", None, fetcher))
        await asyncio.sleep(0.01)
        await cache_service.invalidate_pattern("tasks:")

        assert cache_service.in_flight_count() == 1
        assert await waiting == [1]
        assert await cache_service.peek("clients:getAll") == [1]

    @pytest.mark.asyncio
    async def test_clear_all_detaches_everything(self, cache_service):
        waiting = [
            asyncio.ensure_future(cache_service.get_or_fetch(name, None, CountingFetcher(1, delay_s=0.03)))
            for name in ("a", "b")
        ]
        await asyncio.sleep(0.01)

        await cache_service.clear_all()
        await asyncio.gather(*waiting)

        assert cache_service.get_stats()["memory_entry_count"] == 0


@pytest.mark.unit
class TestDrain:
    @pytest.mark.asyncio
    async def test_waits_for_in_flight_fetches(self, cache_service):
        waiting = asyncio.ensure_future(
            cache_service.get_or_fetch("k", None, CountingFetcher(1, delay_s=0.03))
        )
        await asyncio.sleep(0.01)

        await cache_service.drain()

        assert await cache_service.peek("k") == 1
        assert await waiting == 1

    @pytest.mark.asyncio
    async def test_includes_detached_and_failed_fetches(self, cache_service):
        detached = asyncio.ensure_future(
            cache_service.get_or_fetch("k", None, CountingFetcher(1, delay_s=0.03))
        )
        failing = asyncio.ensure_future(
            cache_service.get_or_fetch("j", None, CountingFetcher(delay_s=0.03, error=TimeoutError()))
        )
        await asyncio.sleep(0.01)
        await cache_service.invalidate_pattern("k")

        await cache_service.drain()

        assert cache_service.get_stats()["memory_entry_count"] == 0
        assert await detached == 1
        with pytest.raises(TimeoutError):
            await failing

    @pytest.mark.asyncio
    async def test_nothing_in_flight(self, cache_service):
        await cache_service.drain()

        assert cache_service.in_flight_count() == 0


@pytest.mark.unit
class TestGetMany:
    @pytest.mark.asyncio
    async def test_results_in_request_order(self, cache_service):
        slow = CountingFetcher(value=["slow"], delay_s=0.03)
        fast = CountingFetcher(value=["fast"])

        results = await cache_service.get_many([
            ("tasks:getAll", None, slow),
            ("clients:getAll", None, fast),
        ])

        assert results == [["slow"], ["fast"]]
        assert await cache_service.peek("tasks:getAll") == ["slow"]

    @pytest.mark.asyncio
    async def test_duplicate_keys_share_one_fetch(self, cache_service):
        fetcher = CountingFetcher(value=[1], delay_s=0.02)

        results = await cache_service.get_many([
            ("tasks:getAll", {"status": "open"}, fetcher),
            ("tasks:getAll", {"status": "open"}, fetcher),
        ])

        assert results == [[1], [1]]
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_cached_entries_are_not_refetched(self, cache_service):
        await cache_service.set("tasks:getAll", None, ["cached"])
        fetcher = CountingFetcher(value=["fresh"])

        assert await cache_service.get_many([("tasks:getAll", None, fetcher)]) == [["cached"]]
        assert fetcher.calls == 0

    @pytest.mark.asyncio
    async def test_failure_propagates_others_still_cached(self, cache_service):
        ok = CountingFetcher(value=[1])
        broken = CountingFetcher(error=PermissionError("denied"))

        with pytest.raises(PermissionError):
            await cache_service.get_many([
                ("clients:getAll", None, ok),
                ("tasks:getAll", None, broken),
            ])
        await cache_service.drain()

        assert await cache_service.peek("clients:getAll") == [1]
        assert await cache_service.peek("tasks:getAll") is None


@pytest.mark.unit
class TestCachedDecorator:
    class ReportService:
        def __init__(self, cache_service):
            self.cache_service = cache_service
            self.calls = 0

        @cached("reports:monthly", ttl_ms=60_000)
        async def monthly(self, params):
            self.calls += 1
            return {"month": params["month"], "total": 10}

        @cached("reports:team")
        async def team(self, team_id, include_archived=False):
            self.calls += 1
            return {"team": team_id, "archived": include_archived}

    @pytest.mark.asyncio
    async def test_method_result_cached_per_params(self, cache_service):
        reports = self.ReportService(cache_service)

        await reports.monthly({"month": "2024-01"})
        await reports.monthly({"month": "2024-01"})
        await reports.monthly({"month": "2024-02"})

        assert reports.calls == 2
        assert await cache_service.peek("reports:monthly", {"month": "2024-01"}) == {
            "month": "2024-01",
            "total": 10,
        }

    @pytest.mark.asyncio
    async def test_keyword_arguments_are_part_of_the_key(self, cache_service):
        reports = self.ReportService(cache_service)

        active = await reports.team("t1")
        archived = await reports.team("t1", include_archived=True)
        again = await reports.team("t1", include_archived=True)

        assert active == {"team": "t1", "archived": False}
        assert archived == again == {"team": "t1", "archived": True}
        assert reports.calls == 2
        assert await cache_service.peek(
            "reports:team", {"args": ["t1"], "kwargs": {"include_archived": True}}
        ) == archived

    def test_wraps_preserves_name(self):
        assert self.ReportService.monthly.__name__ == "monthly"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stats(cache_service):
    await cache_service.get_or_fetch("k", None, lambda: 1)
    await cache_service.get_or_fetch("k", None, lambda: 1)

    stats = cache_service.get_stats()

    assert stats["caching_enabled"] is True
    assert stats["fetch_count"] == 1
    assert stats["memory_keys"] == ["k"]
    assert stats["hits"]["memory"] == 1
    assert stats["misses"] == 1
