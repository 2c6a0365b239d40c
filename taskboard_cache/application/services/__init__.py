"""
Application Services Package
=============================

Business-facing services built on the tiered cache:

- **CacheService**: namespaced read-through cache with request coalescing
- **OptimizedDataService**: cached reads / invalidating writes for one collection
- **DashboardService**: cached aggregates derived from task and employee data

ARCHITECTURE PATTERN:
---------------------
Business code → OptimizedDataService → CacheService → CacheStore
                                     → CollectionGateway (remote, on miss)

Services receive their dependencies through the constructor; the composition
root (taskboard_cache.app.DataLayer) wires one instance of each.
"""

from taskboard_cache.application.services.cache_service import CacheService, cached, stable_serialize
from taskboard_cache.application.services.dashboard_service import (
    DashboardService,
    DashboardStats,
    TeamMemberPerformance,
)
from taskboard_cache.application.services.optimized_data_service import (
    FilterParam,
    OptimizedDataService,
    QueryOptions,
)

__all__ = [
    "CacheService",
    "cached",
    "stable_serialize",
    "OptimizedDataService",
    "QueryOptions",
    "FilterParam",
    "DashboardService",
    "DashboardStats",
    "TeamMemberPerformance",
]
