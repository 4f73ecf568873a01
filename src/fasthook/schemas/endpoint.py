"""Endpoint-related Pydantic schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class EndpointCreate(BaseModel):
    """Schema for registering an endpoint."""

    url: str = Field(..., min_length=1, max_length=2048)
    event_types: list[str] = Field(..., min_length=1)
    secret: str | None = Field(None, description="Signing secret; generated when omitted")
    description: str | None = Field(None, max_length=255)
    owner: str | None = Field(None, max_length=255)


class EndpointUpdate(BaseModel):
    """Schema for updating an endpoint."""

    url: str | None = Field(None, min_length=1, max_length=2048)
    event_types: list[str] | None = Field(None, min_length=1)
    description: str | None = Field(None, max_length=255)


class EndpointResponse(BaseModel):
    """Schema for endpoint response (without the secret)."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    url: str
    event_types: list[str]
    description: str | None
    owner: str | None
    is_enabled: bool
    disabled_at: datetime | None
    secret_rotated_at: datetime | None
    created_at: datetime
    updated_at: datetime


class EndpointSecretResponse(EndpointResponse):
    """Endpoint response including the signing secret (shown on creation only)."""

    secret: str


class SecretRotateResponse(BaseModel):
    """Schema for a rotated signing secret."""

    endpoint_id: uuid.UUID
    secret: str
    rotated_at: datetime


class TestWebhookResponse(BaseModel):
    """Schema for test webhook response."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    response_time_ms: float | None = None
