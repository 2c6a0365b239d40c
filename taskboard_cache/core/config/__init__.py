"""
Configuration Module

Centralized, type-safe configuration for the dashboard data layer.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enums (Stage, CacheTier, ListenerState), namespaces, defaults

Usage:
------
```python
from taskboard_cache.core.config import get_settings, CacheTier

settings = get_settings()
ttl = settings.cache.CACHE_DEFAULT_TTL_MS
tier = CacheTier.for_payload([{"id": 1}])  # CacheTier.STRUCTURED
```

Environment Variables:
---------------------
```bash
ENABLE_CACHING=true
CACHE_DEFAULT_TTL_MS=300000
CACHE_DURABLE_TIMEOUT_MS=250
REDIS_HOST=localhost
LOG_LEVEL=INFO
LOG_FORMAT=json
```
"""

from taskboard_cache.core.config.constants import (
    CACHE_TIER_ORDER,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_DURABLE_TIMEOUT_MS,
    DEFAULT_THROTTLE_MS,
    DEFAULT_TTL_MS,
    CacheTier,
    ListenerState,
    Stage,
)
from taskboard_cache.core.config.settings import Settings, get_settings, reload_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "reload_settings",
    # Enums
    "Stage",
    "CacheTier",
    "ListenerState",
    "CACHE_TIER_ORDER",
    # Defaults
    "DEFAULT_TTL_MS",
    "DEFAULT_DURABLE_TIMEOUT_MS",
    "DEFAULT_THROTTLE_MS",
    "DEFAULT_DEBOUNCE_MS",
]
