"""Prometheus metrics definitions for FastHook."""

from prometheus_client import Counter, Gauge, Histogram

# HTTP Request metrics
REQUEST_TOTAL = Counter(
    "fasthook_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "fasthook_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Webhook delivery metrics
WEBHOOK_ATTEMPTS_TOTAL = Counter(
    "fasthook_webhook_attempts_total",
    "Total webhook delivery attempts",
    ["outcome"],  # succeeded, retryable, terminal
)

WEBHOOK_ATTEMPT_DURATION = Histogram(
    "fasthook_webhook_attempt_duration_seconds",
    "Webhook attempt duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

WEBHOOK_DELIVERIES_TOTAL = Counter(
    "fasthook_webhook_deliveries_total",
    "Deliveries that reached a terminal state",
    ["status"],  # succeeded, failed_terminal
)

EVENTS_SUBMITTED_TOTAL = Counter(
    "fasthook_events_submitted_total",
    "Total events submitted for delivery",
    ["event_type"],
)

STALE_CLAIMS_TOTAL = Counter(
    "fasthook_stale_claims_recovered_total",
    "In-flight deliveries recovered after their worker stopped responding",
)

STORAGE_ERRORS_TOTAL = Counter(
    "fasthook_storage_errors_total",
    "Worker iterations aborted because the queue or log store was unavailable",
)

# Queue metrics
QUEUE_DEPTH = Gauge(
    "fasthook_queue_depth",
    "Number of deliveries by status",
    ["status"],
)
