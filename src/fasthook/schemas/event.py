"""Event intake Pydantic schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    """Schema for submitting an event."""

    event_type: str = Field(..., min_length=1, max_length=255)
    payload: Any = Field(default_factory=dict)
    occurred_at: datetime | None = None
    event_id: uuid.UUID | None = Field(
        None, description="Caller-supplied id; resubmitting the same id creates nothing"
    )


class EventAcceptedResponse(BaseModel):
    """Schema for an accepted event."""

    event_id: uuid.UUID
    event_type: str
    delivery_ids: list[uuid.UUID]
    created: bool = True
