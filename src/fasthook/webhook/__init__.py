"""Webhook delivery: registry, queue, dispatcher and delivery log."""

from fasthook.webhook.dispatcher import (
    WebhookWorker,
    WorkerPool,
    build_envelope,
    build_headers,
    process_delivery,
    send_test_webhook,
    send_webhook,
)
from fasthook.webhook.events import SubmittedEvent, get_event_deliveries, submit_event
from fasthook.webhook.log import append_attempt, get_history
from fasthook.webhook.queue import (
    check_queue_backpressure,
    claim_due_deliveries,
    enqueue_delivery,
    get_pending_count,
    get_queue_stats,
    mark_succeeded,
    mark_terminal,
    release_stale_claims,
    reschedule_delivery,
)
from fasthook.webhook.registry import SubscriptionRegistry
from fasthook.webhook.retry import RetryPolicy, classify_status
from fasthook.webhook.url_validator import (
    BlockedAddressError,
    create_delivery_client,
    is_url_safe,
    validate_endpoint_url,
)

__all__ = [
    "BlockedAddressError",
    "RetryPolicy",
    "SubmittedEvent",
    "SubscriptionRegistry",
    "WebhookWorker",
    "WorkerPool",
    "append_attempt",
    "build_envelope",
    "build_headers",
    "check_queue_backpressure",
    "claim_due_deliveries",
    "classify_status",
    "create_delivery_client",
    "enqueue_delivery",
    "get_event_deliveries",
    "get_history",
    "get_pending_count",
    "get_queue_stats",
    "is_url_safe",
    "mark_succeeded",
    "mark_terminal",
    "process_delivery",
    "release_stale_claims",
    "reschedule_delivery",
    "send_test_webhook",
    "send_webhook",
    "submit_event",
    "validate_endpoint_url",
]
