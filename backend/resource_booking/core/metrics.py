"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking creation attempts',
    ['status']  # success, conflict, invalid, error
)

booking_latency = Histogram(
    'booking_latency_seconds',
    'Booking creation latency (validate, lock, check, commit)',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Conflict detection
conflict_checks = Counter(
    'conflict_checks_total',
    'Conflict detection runs',
    ['mode']  # locked, unlocked
)

storage_races = Counter(
    'booking_storage_races_total',
    'Exclusion-constraint violations at commit converted into conflicts'
)

# Recommendations
recommended_slots = Histogram(
    'recommended_slots_count',
    'Number of alternative slots returned per recommendation',
    buckets=[0, 1, 2, 3, 4, 5, 10]
)

# Cancellations
occurrence_cancellations = Counter(
    'occurrence_cancellations_total',
    'Occurrences cancelled',
    ['kind']  # materialized, virtual, repeat
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

# HTTP
http_request_latency = Histogram(
    'http_request_latency_seconds',
    'HTTP request latency',
    ['method', 'route', 'status_code'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_booking_attempt(status: str):
    """Record booking attempt. Status: success, conflict, invalid, error"""
    booking_attempts.labels(status=status).inc()


def record_conflict_check(locked: bool):
    conflict_checks.labels(mode="locked" if locked else "unlocked").inc()


def record_storage_race():
    storage_races.inc()


def record_cancellation(kind: str):
    occurrence_cancellations.labels(kind=kind).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
