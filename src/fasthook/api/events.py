"""Event intake API."""

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fasthook.auth import Auth
from fasthook.config import Settings, get_settings
from fasthook.db.session import get_session
from fasthook.schemas import DeliveryResponse, EventAcceptedResponse, EventCreate
from fasthook.webhook import get_event_deliveries, submit_event

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=EventAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_event(
    data: EventCreate,
    auth: Auth,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> EventAcceptedResponse:
    """Accept an event for delivery.

    Deliveries are made asynchronously by the workers; this only records
    the event and queues one delivery per subscribed endpoint.
    """
    submitted = await submit_event(
        session,
        data.event_type,
        data.payload,
        occurred_at=data.occurred_at,
        event_id=data.event_id,
        settings=settings,
    )
    return EventAcceptedResponse(
        event_id=submitted.event.id,
        event_type=submitted.event.event_type,
        delivery_ids=[d.id for d in submitted.deliveries],
        created=submitted.created,
    )


@router.get("/{event_id}/deliveries", response_model=list[DeliveryResponse])
async def list_event_deliveries(
    event_id: uuid.UUID,
    auth: Auth,
    session: AsyncSession = Depends(get_session),
) -> list[DeliveryResponse]:
    """Deliveries created for an event."""
    deliveries = await get_event_deliveries(session, event_id)
    return [DeliveryResponse.model_validate(d) for d in deliveries]
