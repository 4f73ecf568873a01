"""Event intake: fan an event out into one delivery per subscribed endpoint."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fasthook.config import Settings, get_settings
from fasthook.db.models import Delivery, Event
from fasthook.errors import NotFoundError, StorageError, ValidationError
from fasthook.metrics.definitions import EVENTS_SUBMITTED_TOTAL
from fasthook.signing import canonicalize
from fasthook.webhook.queue import check_queue_backpressure, enqueue_delivery
from fasthook.webhook.registry import MAX_EVENT_TYPE_LENGTH, SubscriptionRegistry

logger = logging.getLogger(__name__)


@dataclass
class SubmittedEvent:
    """An accepted event and the deliveries created for it."""

    event: Event
    deliveries: list[Delivery] = field(default_factory=list)
    created: bool = True


async def submit_event(
    session: AsyncSession,
    event_type: str,
    payload: Any,
    occurred_at: datetime | None = None,
    event_id: uuid.UUID | None = None,
    registry: SubscriptionRegistry | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> SubmittedEvent:
    """Accept an event and create its deliveries.

    One pending delivery is created per endpoint that is enabled and
    subscribed to ``event_type`` right now. Submitting an ``event_id`` that
    already exists creates nothing and returns the existing deliveries.
    The caller commits.

    Raises:
        ValidationError: If the event type is empty or the payload is not
            JSON-serializable.
        QueueFullError: If queue backpressure is configured and reached.
    """
    settings = settings or get_settings()
    registry = registry or SubscriptionRegistry(session, settings)

    if not isinstance(event_type, str) or not event_type.strip():
        raise ValidationError("Event type must be a non-empty string")
    event_type = event_type.strip()
    if len(event_type) > MAX_EVENT_TYPE_LENGTH:
        raise ValidationError("Event type too long")
    try:
        canonicalize(payload)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    if event_id is not None:
        existing = await _get_event(session, event_id)
        if existing is not None:
            logger.info(f"Event {event_id} already submitted; nothing to do")
            return SubmittedEvent(
                event=existing,
                deliveries=await _deliveries_for(session, event_id),
                created=False,
            )

    await check_queue_backpressure(session, settings)

    now = now or datetime.now(UTC)
    event = Event(
        id=event_id or uuid.uuid4(),
        event_type=event_type,
        payload=payload,
        occurred_at=occurred_at or now,
        created_at=now,
    )
    session.add(event)
    try:
        await session.flush()
    except IntegrityError as e:
        await session.rollback()
        existing = await _get_event(session, event_id) if event_id is not None else None
        if existing is None:
            raise StorageError(f"Event store rejected event: {e}") from e
        logger.info(f"Event {event_id} submitted concurrently; nothing to do")
        return SubmittedEvent(
            event=existing,
            deliveries=await _deliveries_for(session, event_id),
            created=False,
        )
    except SQLAlchemyError as e:
        raise StorageError(f"Event store unavailable: {e}") from e

    endpoints = await registry.resolve(event_type)
    deliveries = [
        await enqueue_delivery(session, event, endpoint, now=now) for endpoint in endpoints
    ]

    EVENTS_SUBMITTED_TOTAL.labels(event_type=event_type).inc()
    logger.info(
        f"Event {event.id} ({event_type}) fanned out to {len(deliveries)} endpoint(s)"
    )
    return SubmittedEvent(event=event, deliveries=deliveries)


async def _get_event(session: AsyncSession, event_id: uuid.UUID) -> Event | None:
    try:
        return await session.get(Event, event_id)
    except SQLAlchemyError as e:
        raise StorageError(f"Event store unavailable: {e}") from e


async def _deliveries_for(session: AsyncSession, event_id: uuid.UUID) -> list[Delivery]:
    stmt = (
        select(Delivery)
        .where(Delivery.event_id == event_id)
        .order_by(Delivery.created_at, Delivery.id)
    )
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery queue unavailable: {e}") from e
    return list(result.scalars().all())


async def get_event_deliveries(session: AsyncSession, event_id: uuid.UUID) -> list[Delivery]:
    """Deliveries created for an event.

    Raises:
        NotFoundError: If the event does not exist.
    """
    if await _get_event(session, event_id) is None:
        raise NotFoundError(f"Event {event_id} not found")
    return await _deliveries_for(session, event_id)
