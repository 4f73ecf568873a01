"""Pydantic schemas for API requests and responses."""

from fasthook.schemas.common import (
    HealthResponse,
    QueueStats,
    ReadyResponse,
)
from fasthook.schemas.delivery import DeliveryAttemptResponse, DeliveryResponse
from fasthook.schemas.endpoint import (
    EndpointCreate,
    EndpointResponse,
    EndpointSecretResponse,
    EndpointUpdate,
    SecretRotateResponse,
    TestWebhookResponse,
)
from fasthook.schemas.event import EventAcceptedResponse, EventCreate

__all__ = [
    "DeliveryAttemptResponse",
    "DeliveryResponse",
    "EndpointCreate",
    "EndpointResponse",
    "EndpointSecretResponse",
    "EndpointUpdate",
    "EventAcceptedResponse",
    "EventCreate",
    "HealthResponse",
    "QueueStats",
    "ReadyResponse",
    "SecretRotateResponse",
    "TestWebhookResponse",
]
