"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from tests.test_fixtures.cache_factory import CacheTestFactory, FakeClock  # noqa: E402
from tests.test_fixtures.gateway_factory import FakeGateway  # noqa: E402


# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio runs in auto mode (see pyproject.toml), so async fixtures
# and tests need no extra decorator beyond @pytest.mark.asyncio for clarity.


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """
    Real Settings with test-friendly values.

    Durable-tier timeout is short so slow-backend tests finish quickly.
    """
    from taskboard_cache.core.config.settings import Settings

    return Settings(
        ENVIRONMENT="test",
        LOG_FORMAT="console",
        ENABLE_CACHING=True,
        CACHE_DEFAULT_TTL_MS=300_000,
        CACHE_MEMORY_MAX_ENTRIES=1000,
        CACHE_DURABLE_TIMEOUT_MS=50,
        CACHE_KEY_PREFIX="test-cache",
        CACHE_DURABLE_ENABLED=True,
        LISTENER_DEFAULT_THROTTLE_MS=50,
        LISTENER_DEFAULT_DEBOUNCE_MS=30,
    )


@pytest.fixture
def memory_only_settings(test_settings):
    """Settings with the durable tiers switched off."""
    return test_settings.model_copy(update={"CACHE_DURABLE_ENABLED": False})


# ============================================================================
# Infrastructure Fixtures
# ============================================================================


@pytest.fixture
def fake_clock():
    """Manually advanced epoch-ms clock for TTL tests."""
    return FakeClock()


@pytest.fixture
def in_memory_backend():
    """
    In-memory stand-in for the Redis client.

    Implements the CacheBackend protocol (strings, hashes, SCAN).
    """
    from taskboard_cache.core.interfaces.cache import InMemoryCacheBackend

    return InMemoryCacheBackend()


@pytest.fixture
def failing_backend():
    """Backend that refuses to connect and fails every call."""
    return CacheTestFactory.failing_backend()


@pytest.fixture
def flaky_backend():
    """Backend that can be broken mid-test (``backend.broken = True``)."""
    return CacheTestFactory.flaky_backend()


@pytest.fixture
async def cache_store(test_settings, in_memory_backend, fake_clock):
    """Initialized CacheStore over the in-memory backend and a fake clock."""
    from taskboard_cache.infrastructure.cache.cache_store import CacheStore

    store = CacheStore(test_settings, backend=in_memory_backend, clock=fake_clock)
    await store.initialize()
    yield store
    await store.shutdown()


@pytest.fixture
def cache_service(cache_store, test_settings):
    """CacheService over the shared ``cache_store`` fixture."""
    from taskboard_cache.application.services.cache_service import CacheService

    return CacheService(cache_store, test_settings)


@pytest.fixture
def listener_manager(test_settings):
    from taskboard_cache.realtime.listener_manager import ListenerManager

    manager = ListenerManager(test_settings)
    yield manager
    manager.unregister_all()


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def employee_records():
    return [
        {"id": "e1", "name": "Ada Lovelace", "email": "ada@example.com", "status": "active"},
        {"id": "e2", "name": "Alan Turing", "email": "alan@example.com", "status": "active"},
        {"id": "e3", "name": "Grace Hopper", "email": "grace@example.com", "status": "active"},
    ]


@pytest.fixture
def task_records():
    return [
        {"id": "t1", "status": "completed", "assignedTo": ["e1"], "dueDate": "2020-01-01T00:00:00Z"},
        {"id": "t2", "status": "in-progress", "assignedTo": ["e1", "e2"], "dueDate": "2020-01-01T00:00:00Z"},
        {"id": "t3", "status": "pending", "assignedTo": ["e2"], "dueDate": "2999-01-01T00:00:00Z"},
        {"id": "t4", "status": "todo", "assignedTo": ["e1"]},
        {"id": "t5", "status": "in-progress", "assignedTo": ["ghost"]},
    ]


@pytest.fixture
def employee_gateway(employee_records):
    return FakeGateway(employee_records)


@pytest.fixture
def task_gateway(task_records):
    return FakeGateway(task_records)


@pytest.fixture
def client_gateway():
    return FakeGateway([{"id": "c1", "name": "Acme Corp"}])
