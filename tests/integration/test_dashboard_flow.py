"""
Integration Tests: Dashboard Data Flow

A composed DataLayer over the in-memory backend, driven the way a dashboard
page drives it: concurrent first loads, a live listener feeding throttled
renders, a write from the same client, and a restart that finds the durable
tiers warm.
"""

import asyncio

import pytest

from taskboard_cache.app import DataLayer
from taskboard_cache.core.config.constants import DASHBOARD_NAMESPACES
from tests.test_fixtures.gateway_factory import FakeGateway


@pytest.fixture
async def layer(test_settings, in_memory_backend, fake_clock):
    data_layer = DataLayer(test_settings, backend=in_memory_backend, clock=fake_clock)
    await data_layer.initialize()
    yield data_layer
    await data_layer.shutdown()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_page_load_write_and_expiry(layer, employee_records, task_records, fake_clock):
    employee_gateway = FakeGateway(employee_records, delay_s=0.05)
    task_gateway = FakeGateway(task_records, delay_s=0.05)
    employees = layer.collection("employees", employee_gateway, derived_namespaces=DASHBOARD_NAMESPACES)
    layer.collection("tasks", task_gateway, derived_namespaces=DASHBOARD_NAMESPACES)
    dashboard = layer.dashboard()

    # Several widgets mount at once
    stats, ranking, roster, _ = await asyncio.gather(
        dashboard.get_overall_stats(),
        dashboard.get_team_performance(),
        employees.get_all(),
        employees.get_all(),
    )

    assert stats.total_tasks == 5
    assert [member.user_id for member in ranking] == ["e1", "e2"]
    assert len(roster) == 3
    assert employee_gateway.count("fetch_many") == 2  # unfiltered roster + active filter
    assert task_gateway.count("fetch_many") == 1

    await employees.create({"name": "New Hire", "status": "active"})

    assert len(await employees.get_all()) == 4
    assert await layer.cache_service.peek("dashboard:team-performance") is None

    fake_clock.advance(layer.settings.CACHE_DEFAULT_TTL_MS + 1)
    await dashboard.get_overall_stats()
    assert task_gateway.count("fetch_many") == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_live_listener_feeds_throttled_renders(layer, employee_records):
    employees = layer.collection("employees", FakeGateway(employee_records))
    renders = []
    handlers = {}

    def subscribe():
        handlers["on_snapshot"] = layer.listeners.create_throttled_callback(
            "employees-live", renders.append, 40,
        )
        return lambda: handlers.clear()

    cleanup = layer.listeners.register("employees-live", subscribe)

    for version in range(5):
        handlers["on_snapshot"](version)
        await employees.invalidate_cache()

    await asyncio.sleep(0.1)

    assert renders == [0, 4]
    assert layer.get_stats()["listener_ids"] == ["employees-live"]

    cleanup()
    assert handlers == {}
    assert layer.get_stats()["active_listener_count"] == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_restart_reads_durable_tiers(test_settings, in_memory_backend, fake_clock, client_gateway):
    first = DataLayer(test_settings, backend=in_memory_backend, clock=fake_clock)
    await first.initialize()
    await first.collection("clients", client_gateway).get_all()

    # Same backend, fresh process-level memory
    second = DataLayer(test_settings, backend=in_memory_backend, clock=fake_clock)
    await second.initialize()
    clients = await second.collection("clients", client_gateway).get_all()

    assert clients == [{"id": "c1", "name": "Acme Corp"}]
    assert client_gateway.count("fetch_many") == 1
    assert second.cache_store.stats()["hits"]["structured"] == 1

    await second.shutdown()
