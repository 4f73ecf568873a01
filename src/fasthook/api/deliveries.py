"""Delivery inspection API."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fasthook.auth import Auth
from fasthook.db.models import Delivery
from fasthook.db.session import get_session
from fasthook.errors import DeliveryNotFoundError
from fasthook.schemas import DeliveryAttemptResponse, DeliveryResponse
from fasthook.webhook import get_history

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: uuid.UUID,
    auth: Auth,
    session: AsyncSession = Depends(get_session),
) -> DeliveryResponse:
    """Get a delivery by ID."""
    delivery = await session.get(Delivery, delivery_id)
    if delivery is None:
        raise DeliveryNotFoundError(f"Delivery {delivery_id} not found")
    return DeliveryResponse.model_validate(delivery)


@router.get("/{delivery_id}/attempts", response_model=list[DeliveryAttemptResponse])
async def list_delivery_attempts(
    delivery_id: uuid.UUID,
    auth: Auth,
    session: AsyncSession = Depends(get_session),
) -> list[DeliveryAttemptResponse]:
    """Attempt history of a delivery, oldest first."""
    attempts = await get_history(session, delivery_id)
    return [DeliveryAttemptResponse.model_validate(a) for a in attempts]
