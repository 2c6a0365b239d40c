"""
Core Module

Foundational components: configuration, logging, exceptions, and interfaces.
"""

from .exceptions import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    ConfigurationError,
    ListenerError,
    ListenerScopeDisposedError,
    StorageUnavailableError,
    SubscriptionError,
    TaskboardError,
)
from .logging import (
    clear_correlation_id,
    get_correlation_id,
    get_logger,
    log_stage,
    set_correlation_id,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "log_stage",
    "TaskboardError",
    "ConfigurationError",
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "StorageUnavailableError",
    "ListenerError",
    "SubscriptionError",
    "ListenerScopeDisposedError",
]
