"""
Prometheus Metrics Module

Authorization and cache metrics, exposed at /metrics for Prometheus scraping.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# =============================================================================
# Application Info
# =============================================================================

APP_INFO = Info("authz_app", "Authorization service information")


def set_app_info(version: str, environment: str) -> None:
    """Set application info labels."""
    APP_INFO.info({"version": version, "environment": environment})


# =============================================================================
# Decision Metrics
# =============================================================================

AUTHZ_DECISIONS_TOTAL = Counter(
    "authz_decisions_total",
    "Authorization decisions computed or served from cache",
    ["source", "allowed", "cached"],
)

AUTHZ_DECISION_DURATION_SECONDS = Histogram(
    "authz_decision_duration_seconds",
    "Time to produce an authorization decision",
    ["cached"],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

AUTHZ_INDETERMINATE_TOTAL = Counter(
    "authz_indeterminate_total",
    "Authorization checks that failed because the store could not answer",
    ["error"],
)

# =============================================================================
# Cache Metrics
# =============================================================================

CACHE_HITS_TOTAL = Counter(
    "authz_cache_hits_total",
    "Total decision cache hits",
    ["tier"],
)

CACHE_MISSES_TOTAL = Counter(
    "authz_cache_misses_total",
    "Total decision cache misses",
    ["tier"],
)

CACHE_INVALIDATIONS_TOTAL = Counter(
    "authz_cache_invalidations_total",
    "Cache invalidations by event type",
    ["event_type"],
)

CACHE_L1_ENTRIES = Gauge(
    "authz_cache_l1_entries",
    "Entries currently held in the in-process decision cache",
)

REDIS_CONNECTED = Gauge(
    "authz_redis_connected",
    "Whether the Redis decision cache tier is connected (1) or not (0)",
)


def record_cache_hit(tier: str) -> None:
    CACHE_HITS_TOTAL.labels(tier=tier).inc()


def record_cache_miss(tier: str) -> None:
    CACHE_MISSES_TOTAL.labels(tier=tier).inc()


def record_decision(source: str, allowed: bool, cached: bool, duration: float) -> None:
    cached_label = "true" if cached else "false"
    AUTHZ_DECISIONS_TOTAL.labels(source=source, allowed="true" if allowed else "false", cached=cached_label).inc()
    AUTHZ_DECISION_DURATION_SECONDS.labels(cached=cached_label).observe(duration)


def record_indeterminate(error: str) -> None:
    AUTHZ_INDETERMINATE_TOTAL.labels(error=error).inc()


def record_invalidation(event_type: str) -> None:
    CACHE_INVALIDATIONS_TOTAL.labels(event_type=event_type).inc()
