"""
Exception Module

Structured exception hierarchy for the dashboard data layer.

Module Structure:
-----------------
- **base.py**: TaskboardError base class + ConfigurationError
- **cache.py**: Cache-related exceptions (Redis transport, durable tiers)
- **listener.py**: Real-time listener exceptions

Fetch failures (exceptions raised by a wrapped fetcher) and subscribe
failures (exceptions raised by a subscribe function) are deliberately not
part of this hierarchy: they are propagated to callers unchanged.

Usage:
------
```python
from taskboard_cache.core.exceptions import CacheError, SubscriptionError
```
"""

from taskboard_cache.core.exceptions.base import ConfigurationError, TaskboardError
from taskboard_cache.core.exceptions.cache import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    StorageUnavailableError,
)
from taskboard_cache.core.exceptions.listener import (
    ListenerError,
    ListenerScopeDisposedError,
    SubscriptionError,
)

__all__ = [
    # Base
    "TaskboardError",
    "ConfigurationError",
    # Cache
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "StorageUnavailableError",
    # Listener
    "ListenerError",
    "SubscriptionError",
    "ListenerScopeDisposedError",
]
