#!/usr/bin/env python3
"""
Data Layer Composition Root

Builds exactly one CacheStore, one CacheService and one ListenerManager per
process and hands them to every data service by explicit reference.

Usage:
    async with data_layer_lifespan() as layer:
        employees = layer.collection(
            "employees", employee_gateway, derived_namespaces=DASHBOARD_NAMESPACES,
        )
        rows = await employees.get_all()
        print(layer.get_stats())
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from taskboard_cache.application.services.cache_service import CacheService
from taskboard_cache.application.services.dashboard_service import DashboardService
from taskboard_cache.application.services.optimized_data_service import OptimizedDataService
from taskboard_cache.core.config.constants import Stage
from taskboard_cache.core.config.settings import Settings, get_settings
from taskboard_cache.core.exceptions import ConfigurationError
from taskboard_cache.core.interfaces.cache import CacheBackend
from taskboard_cache.core.interfaces.data_source import CollectionGateway
from taskboard_cache.core.logging.logger import get_logger, log_stage, setup_logging
from taskboard_cache.infrastructure.cache.cache_store import CacheStore
from taskboard_cache.infrastructure.cache.redis_client import RedisClient
from taskboard_cache.infrastructure.monitoring.metrics_collector import (
    MetricsCollector,
    get_metrics_collector,
)
from taskboard_cache.realtime.listener_manager import ListenerManager

logger = get_logger(__name__)


class DataLayer:
    """
    Owns the cache and listener singletons-by-construction.

    ``backend`` defaults to a RedisClient when durable tiers are enabled.
    ``clock`` (epoch ms) drives cache expiry; ``listener_clock`` (monotonic
    ms) drives listener stats and throttling.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] | None = None,
        listener_clock: Callable[[], float] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.settings = settings or get_settings()
        metrics = metrics or get_metrics_collector()

        if backend is None and self.settings.CACHE_DURABLE_ENABLED:
            backend = RedisClient(self.settings)

        self.cache_store = CacheStore(self.settings, backend=backend, clock=clock, metrics=metrics)
        self.cache_service = CacheService(self.cache_store, self.settings, metrics=metrics)
        self.listeners = ListenerManager(self.settings, clock=listener_clock, metrics=metrics)
        self._collections: dict[str, OptimizedDataService] = {}
        self._initialized = False

    async def initialize(self) -> None:
        """
        STAGE-0: Data layer startup
        """
        if self._initialized:
            return
        await self.cache_store.initialize()
        self._initialized = True
        log_stage(logger, Stage.INITIALIZATION, "Data layer ready",
                  tiers=self.cache_store.available_tiers(),
                  caching_enabled=self.cache_service.enabled)

    async def shutdown(self) -> None:
        """
        STAGE-6.0: Data layer shutdown

        Listeners first (no callback may fire into a torn-down cache), then
        background revalidations and in-flight fetches, then the store.
        """
        log_stage(logger, Stage.SHUTDOWN, "Shutting down data layer")
        self.listeners.unregister_all()
        for service in self._collections.values():
            await service.wait_for_revalidation()
        await self.cache_service.drain()
        await self.cache_store.shutdown()
        self._initialized = False
        log_stage(logger, Stage.SHUTDOWN, "Data layer shutdown complete")

    async def __aenter__(self) -> "DataLayer":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------------
    # Service factories
    # ------------------------------------------------------------------------

    def collection(
        self,
        name: str,
        gateway: CollectionGateway,
        derived_namespaces: tuple[str, ...] | list[str] = (),
        default_ttl_ms: int | None = None,
    ) -> OptimizedDataService:
        """Cached service for one collection; a second call for ``name`` replaces the first."""
        service = OptimizedDataService(
            name,
            gateway,
            self.cache_service,
            derived_namespaces=derived_namespaces,
            default_ttl_ms=default_ttl_ms,
        )
        self._collections[name] = service
        return service

    def get_collection(self, name: str) -> OptimizedDataService:
        try:
            return self._collections[name]
        except KeyError:
            raise ConfigurationError(
                message=f"Collection not registered: {name}",
                details={"registered": sorted(self._collections)},
            )

    def dashboard(self, tasks: str = "tasks", employees: str | None = "employees") -> DashboardService:
        """Dashboard aggregates over already registered collections."""
        employee_service = None
        if employees is not None and employees in self._collections:
            employee_service = self._collections[employees]
        return DashboardService(self.cache_service, self.get_collection(tasks), employee_service)

    # ------------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        listener_stats = self.listeners.get_stats()
        return {
            "memory_entry_count": self.cache_store.memory_entry_count(),
            "active_listener_count": listener_stats["active_listener_count"],
            "listener_ids": listener_stats["listener_ids"],
        }

    async def health_check(self) -> dict[str, Any]:
        return {
            "cache": await self.cache_store.health_check(),
            "listeners": {"active": len(self.listeners.get_stats()["listener_ids"])},
        }


@asynccontextmanager
async def data_layer_lifespan(
    settings: Settings | None = None,
    backend: CacheBackend | None = None,
) -> AsyncIterator[DataLayer]:
    """
    Manage the data layer lifecycle (startup and shutdown), logging included.
    """
    settings = settings or get_settings()
    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting data layer",
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
    )

    layer = DataLayer(settings, backend=backend)
    await layer.initialize()
    try:
        yield layer
    finally:
        await layer.shutdown()
