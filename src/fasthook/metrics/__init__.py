"""FastHook Prometheus metrics."""

from fasthook.metrics.definitions import (
    EVENTS_SUBMITTED_TOTAL,
    QUEUE_DEPTH,
    REQUEST_DURATION,
    REQUEST_TOTAL,
    STALE_CLAIMS_TOTAL,
    STORAGE_ERRORS_TOTAL,
    WEBHOOK_ATTEMPT_DURATION,
    WEBHOOK_ATTEMPTS_TOTAL,
    WEBHOOK_DELIVERIES_TOTAL,
)
from fasthook.metrics.middleware import MetricsMiddleware

__all__ = [
    "MetricsMiddleware",
    "REQUEST_TOTAL",
    "REQUEST_DURATION",
    "WEBHOOK_ATTEMPTS_TOTAL",
    "WEBHOOK_ATTEMPT_DURATION",
    "WEBHOOK_DELIVERIES_TOTAL",
    "EVENTS_SUBMITTED_TOTAL",
    "STALE_CLAIMS_TOTAL",
    "STORAGE_ERRORS_TOTAL",
    "QUEUE_DEPTH",
]
