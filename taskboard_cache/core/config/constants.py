"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the dashboard data layer.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for tier selection and stage tagging
- Namespace names shared by the data services and their invalidation rules
"""

from enum import Enum
from typing import Any

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Processing stages used as the ``stage`` field of every log entry.

    Format: {SEQUENCE}_{DESCRIPTIVE_NAME}

    Examples:
        log_stage(logger, Stage.CACHE_LOOKUP, "Memory hit", cache_key=key)
    """

    INITIALIZATION = "0.0_INITIALIZATION"
    CACHE_LOOKUP = "2.0_CACHE_LOOKUP"
    CACHE_POPULATE = "2.3_CACHE_POPULATE"
    CACHE_INVALIDATE = "2.4_CACHE_INVALIDATE"
    CACHE_FETCH = "2.5_CACHE_FETCH"
    DURABLE_TIER = "2.6_DURABLE_TIER"
    DATA_SERVICE = "3.0_DATA_SERVICE"
    DASHBOARD = "3.5_DASHBOARD_AGGREGATE"
    LISTENER = "RT_LISTENER"
    SHUTDOWN = "6.0_SHUTDOWN"


# ============================================================================
# Cache Tiers
# ============================================================================


class CacheTier(str, Enum):
    """
    Storage tiers of the cache.

    MEMORY: per-process LRU (fastest, lost on restart)
    STRUCTURED: durable, namespace-partitioned records (collections, objects)
    SCALAR: durable, flat key -> string pairs (small scalars)

    Lookup order is MEMORY -> STRUCTURED -> SCALAR.
    """

    MEMORY = "memory"
    STRUCTURED = "structured"
    SCALAR = "scalar"

    @classmethod
    def for_payload(cls, value: Any, serialized_size: int = 0,
                    scalar_max_bytes: int = 4096) -> "CacheTier":
        """
        Pick the durable tier for a payload when the caller did not choose one.

        Collections and records go to the structured tier; small scalars and
        strings go to the scalar tier unless their serialized form is larger
        than ``scalar_max_bytes``.
        """
        if isinstance(value, (list, tuple, dict)):
            return cls.STRUCTURED
        if serialized_size > scalar_max_bytes:
            return cls.STRUCTURED
        return cls.SCALAR


CACHE_TIER_ORDER = (CacheTier.MEMORY, CacheTier.STRUCTURED, CacheTier.SCALAR)


# ============================================================================
# Listener States
# ============================================================================


class ListenerState(str, Enum):
    """
    Registration lifecycle.

    UNREGISTERED -> ACTIVE -> UNREGISTERED (terminal for that handle)
    """

    ACTIVE = "active"
    UNREGISTERED = "unregistered"


# ============================================================================
# Defaults
# ============================================================================

DEFAULT_TTL_MS = 5 * 60 * 1000  # 5 minutes
DEFAULT_DURABLE_TIMEOUT_MS = 250
DEFAULT_THROTTLE_MS = 1000
DEFAULT_DEBOUNCE_MS = 500

# Page limit used when aggregating task collections for the dashboard
DASHBOARD_TASK_LIMIT = 50
DASHBOARD_TEAM_TOP_N = 20

# ============================================================================
# Namespaces
# ============================================================================

NAMESPACE_SEPARATOR = ":"

# Per-collection method namespaces: "{collection}:getAll" etc.
METHOD_GET_ALL = "getAll"
METHOD_GET_BY_ID = "getById"
METHOD_SEARCH = "search"

# Derived (aggregate) namespaces built from task/employee collections
NAMESPACE_DASHBOARD_STATS = "dashboard:stats"
NAMESPACE_DASHBOARD_PERSONAL_STATS = "dashboard:stats:personal"
NAMESPACE_DASHBOARD_TEAM_PERFORMANCE = "dashboard:team-performance"

DASHBOARD_NAMESPACES = (
    NAMESPACE_DASHBOARD_STATS,
    NAMESPACE_DASHBOARD_TEAM_PERFORMANCE,
)

# ============================================================================
# Redis Key Segments
# ============================================================================

REDIS_SEGMENT_STRUCTURED = "structured"
REDIS_SEGMENT_SCALAR = "scalar"
