"""Delivery and attempt Pydantic schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class DeliveryResponse(BaseModel):
    """Schema for delivery response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_id: uuid.UUID
    endpoint_id: uuid.UUID
    status: str
    attempts: int
    next_attempt_at: datetime | None
    last_error: str | None
    last_status_code: int | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class DeliveryAttemptResponse(BaseModel):
    """Schema for a single logged attempt."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    delivery_id: uuid.UUID
    attempt_number: int
    signature: str
    signed_at: int
    status_code: int | None
    error_kind: str | None
    error: str | None
    latency_ms: float
    response_excerpt: str | None
    outcome: str
    worker_id: str | None
    created_at: datetime
