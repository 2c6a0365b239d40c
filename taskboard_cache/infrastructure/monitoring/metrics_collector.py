#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

Counters and gauges for the data layer:
- Cache hits by tier, misses
- Coalesced waits (callers that joined an in-flight fetch)
- Fetch failures, invalidations
- Durable-tier degradations (fell back to memory-only)
- Active real-time listeners, throttled callback deliveries

Architectural Decision: prometheus-client for industry-standard metrics
- Compatible with Grafana dashboards
- Process-wide registry, scraped by whatever HTTP surface embeds this layer
"""


from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Info,
    generate_latest,
)

from taskboard_cache.core.config.settings import get_settings
from taskboard_cache.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

# Cache metrics
CACHE_HITS = Counter(
    'taskboard_cache_hits_total',
    'Total cache hits',
    ['tier']  # memory, structured, scalar
)

CACHE_MISSES = Counter(
    'taskboard_cache_misses_total',
    'Total cache misses (absent or expired in every tier)'
)

CACHE_COALESCED = Counter(
    'taskboard_cache_coalesced_total',
    'Callers that awaited an already in-flight fetch'
)

CACHE_FETCH_FAILURES = Counter(
    'taskboard_cache_fetch_failures_total',
    'Fetcher invocations that raised',
    ['namespace']
)

CACHE_INVALIDATIONS = Counter(
    'taskboard_cache_invalidations_total',
    'Invalidations by kind',
    ['kind']  # key, pattern, clear
)

DURABLE_DEGRADATIONS = Counter(
    'taskboard_cache_durable_degradations_total',
    'Durable-tier calls that failed or timed out and fell back to memory-only',
    ['tier', 'operation']
)

# Listener metrics
ACTIVE_LISTENERS = Gauge(
    'taskboard_active_listeners',
    'Number of active real-time listener registrations'
)

LISTENER_DELIVERIES = Counter(
    'taskboard_listener_deliveries_total',
    'Callback deliveries through throttled/debounced wrappers',
    ['mode']  # leading, trailing, debounced
)

# App info
APP_INFO = Info(
    'taskboard_app',
    'Application information'
)


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = get_metrics_collector()
        metrics.record_cache_hit("memory")
        output = metrics.get_prometheus_metrics()
    """

    def __init__(self):
        """Initialize metrics collector."""
        self.settings = get_settings()

        APP_INFO.info({
            'version': self.settings.app.APP_VERSION,
            'environment': self.settings.app.ENVIRONMENT,
            'app_name': self.settings.app.APP_NAME
        })

        logger.info("Metrics collector initialized", stage="M.0")

    # =========================================================================
    # Cache Metrics
    # =========================================================================

    def record_cache_hit(self, tier: str) -> None:
        """Record cache hit."""
        CACHE_HITS.labels(tier=tier).inc()

    def record_cache_miss(self) -> None:
        """Record cache miss."""
        CACHE_MISSES.inc()

    def record_coalesced_wait(self) -> None:
        """Record a caller that joined an in-flight fetch."""
        CACHE_COALESCED.inc()

    def record_fetch_failure(self, namespace: str) -> None:
        """Record a failed fetcher invocation."""
        CACHE_FETCH_FAILURES.labels(namespace=namespace).inc()

    def record_invalidation(self, kind: str) -> None:
        """Record an invalidation (key, pattern, clear)."""
        CACHE_INVALIDATIONS.labels(kind=kind).inc()

    def record_durable_degradation(self, tier: str, operation: str) -> None:
        """Record a durable-tier fallback to memory-only."""
        DURABLE_DEGRADATIONS.labels(tier=tier, operation=operation).inc()

    # =========================================================================
    # Listener Metrics
    # =========================================================================

    def set_active_listeners(self, count: int) -> None:
        """Set active listener count."""
        ACTIVE_LISTENERS.set(count)

    def record_listener_delivery(self, mode: str) -> None:
        """Record a callback delivery (leading, trailing, debounced)."""
        LISTENER_DELIVERIES.labels(mode=mode).inc()

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """
        Get Prometheus metrics output.

        Returns:
            bytes: Prometheus text format metrics
        """
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        """Get Prometheus content type."""
        return CONTENT_TYPE_LATEST


# Global metrics collector
_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
