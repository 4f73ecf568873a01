"""Database-backed webhook delivery queue.

Every state change is a conditional UPDATE guarded on the expected current
status (and, for in-flight deliveries, on the claim token), so terminal
deliveries are never touched again and a superseded claim cannot overwrite
the work of the worker that replaced it.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fasthook.config import Settings, get_settings
from fasthook.db.enums import CLAIMABLE_STATUSES, AttemptOutcome, DeliveryStatus
from fasthook.db.models import Delivery, DeliveryAttempt, Endpoint, Event
from fasthook.errors import QueueFullError, StorageError
from fasthook.webhook.retry import RetryPolicy

logger = logging.getLogger(__name__)

_CLAIMABLE = [status.value for status in CLAIMABLE_STATUSES]


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(UTC)


def new_claim_token() -> str:
    return uuid.uuid4().hex


async def enqueue_delivery(
    session: AsyncSession,
    event: Event,
    endpoint: Endpoint,
    now: datetime | None = None,
) -> Delivery:
    """Create a pending delivery of an event to an endpoint, due immediately."""
    now = _now(now)
    delivery = Delivery(
        event_id=event.id,
        endpoint_id=endpoint.id,
        status=DeliveryStatus.PENDING.value,
        attempts=0,
        next_attempt_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(delivery)
    try:
        await session.flush()
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery queue unavailable: {e}") from e

    logger.debug(f"Enqueued delivery {delivery.id} of event {event.id} to {endpoint.id}")
    return delivery


async def claim_due_deliveries(
    session: AsyncSession,
    limit: int,
    worker_id: str,
    now: datetime | None = None,
) -> list[Delivery]:
    """Atomically claim up to ``limit`` due deliveries for one worker.

    A single UPDATE moves the rows to ``in_flight``; the inner SELECT uses
    FOR UPDATE SKIP LOCKED on PostgreSQL so concurrent workers skip rows
    another worker is claiming, and the outer status guard makes the
    transition a compare-and-swap on every backend. The caller commits.

    Returns:
        Claimed deliveries, oldest-due first.
    """
    now = _now(now)
    token = new_claim_token()

    due_ids = (
        select(Delivery.id)
        .where(
            Delivery.status.in_(_CLAIMABLE),
            Delivery.next_attempt_at <= now,
        )
        .order_by(Delivery.next_attempt_at, Delivery.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    claim_stmt = (
        update(Delivery)
        .where(
            Delivery.id.in_(due_ids),
            Delivery.status.in_(_CLAIMABLE),
        )
        .values(
            status=DeliveryStatus.IN_FLIGHT.value,
            claimed_by=worker_id,
            claimed_at=now,
            claim_token=token,
            updated_at=now,
        )
        .returning(Delivery.id)
        .execution_options(synchronize_session=False)
    )

    try:
        result = await session.execute(claim_stmt)
        claimed_ids = [row[0] for row in result.fetchall()]
        if not claimed_ids:
            return []

        fetch = (
            select(Delivery)
            .where(Delivery.id.in_(claimed_ids))
            .order_by(Delivery.next_attempt_at, Delivery.id)
            .execution_options(populate_existing=True)
        )
        deliveries = list((await session.execute(fetch)).scalars().all())
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery queue unavailable: {e}") from e

    logger.debug(f"Worker {worker_id} claimed {len(deliveries)} deliveries")
    return deliveries


async def _transition(
    session: AsyncSession,
    delivery_id: uuid.UUID,
    claim_token: str | None,
    values: dict,
) -> bool:
    """Apply an update to an in-flight delivery held under ``claim_token``."""
    conditions = [
        Delivery.id == delivery_id,
        Delivery.status == DeliveryStatus.IN_FLIGHT.value,
    ]
    if claim_token is not None:
        conditions.append(Delivery.claim_token == claim_token)

    stmt = (
        update(Delivery)
        .where(*conditions)
        .values(claimed_by=None, claimed_at=None, claim_token=None, **values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await session.execute(stmt)
        await session.flush()
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery queue unavailable: {e}") from e

    if result.rowcount != 1:
        logger.warning(
            f"Delivery {delivery_id} is no longer held by this claim; transition skipped"
        )
        return False
    return True


async def mark_succeeded(
    session: AsyncSession,
    delivery_id: uuid.UUID,
    claim_token: str | None,
    status_code: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Mark a delivery as succeeded (terminal)."""
    now = _now(now)
    done = await _transition(
        session,
        delivery_id,
        claim_token,
        {
            "status": DeliveryStatus.SUCCEEDED.value,
            "completed_at": now,
            "next_attempt_at": None,
            "last_error": None,
            "last_status_code": status_code,
            "updated_at": now,
        },
    )
    if done:
        logger.info(f"Delivery {delivery_id} succeeded")
    return done


async def mark_terminal(
    session: AsyncSession,
    delivery_id: uuid.UUID,
    claim_token: str | None,
    reason: str,
    status_code: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Give up on a delivery (terminal)."""
    now = _now(now)
    done = await _transition(
        session,
        delivery_id,
        claim_token,
        {
            "status": DeliveryStatus.FAILED_TERMINAL.value,
            "completed_at": now,
            "next_attempt_at": None,
            "last_error": reason,
            "last_status_code": status_code,
            "updated_at": now,
        },
    )
    if done:
        logger.warning(f"Delivery {delivery_id} failed permanently: {reason}")
    return done


async def reschedule_delivery(
    session: AsyncSession,
    delivery_id: uuid.UUID,
    claim_token: str | None,
    not_before: datetime,
    error: str,
    status_code: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Release a delivery for a later retry at ``not_before``."""
    now = _now(now)
    done = await _transition(
        session,
        delivery_id,
        claim_token,
        {
            "status": DeliveryStatus.FAILED_RETRYABLE.value,
            "next_attempt_at": not_before,
            "last_error": error,
            "last_status_code": status_code,
            "updated_at": now,
        },
    )
    if done:
        logger.info(f"Delivery {delivery_id} failed ({error}), next attempt at {not_before}")
    return done


async def release_stale_claims(
    session: AsyncSession,
    stale_after: float,
    policy: RetryPolicy,
    now: datetime | None = None,
    batch_size: int = 100,
) -> int:
    """Recover deliveries whose worker vanished while holding the claim.

    A delivery in flight for longer than ``stale_after`` seconds is either:

    - finished from its log, when an attempt was recorded after the claim
      (the worker crashed between logging and transitioning), or
    - released back to ``pending`` so any worker can claim it again.

    Returns:
        Number of deliveries recovered.
    """
    now = _now(now)
    cutoff = now - timedelta(seconds=stale_after)

    stmt = (
        select(Delivery)
        .where(
            Delivery.status == DeliveryStatus.IN_FLIGHT.value,
            Delivery.claimed_at <= cutoff,
        )
        .order_by(Delivery.claimed_at)
        .limit(batch_size)
        .with_for_update(skip_locked=True)
        .execution_options(populate_existing=True)
    )
    try:
        stale = list((await session.execute(stmt)).scalars().all())
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery queue unavailable: {e}") from e

    recovered = 0
    for delivery in stale:
        last = await _last_attempt(session, delivery.id)
        token = delivery.claim_token

        if last is None or delivery.claimed_at is None or last.created_at < delivery.claimed_at:
            released = await _release(session, delivery, now)
        elif last.outcome == AttemptOutcome.SUCCEEDED.value:
            released = await mark_succeeded(session, delivery.id, token, last.status_code, now)
        elif last.outcome == AttemptOutcome.RETRYABLE.value and policy.has_attempts_remaining(
            delivery.attempts
        ):
            not_before = policy.next_attempt_at(delivery.attempts, now, delivery.next_attempt_at)
            released = await reschedule_delivery(
                session, delivery.id, token, not_before, last.error or "", last.status_code, now
            )
        else:
            reason = last.error or "delivery failed"
            if last.outcome == AttemptOutcome.RETRYABLE.value:
                reason = f"max attempts exceeded: {reason}"
            released = await mark_terminal(
                session, delivery.id, token, reason, last.status_code, now
            )

        if released:
            recovered += 1

    if recovered:
        logger.warning(f"Recovered {recovered} stale in-flight deliveries")
    return recovered


async def _release(session: AsyncSession, delivery: Delivery, now: datetime) -> bool:
    previous = delivery.next_attempt_at
    not_before = now if previous is None or previous < now else previous
    return await _transition(
        session,
        delivery.id,
        delivery.claim_token,
        {
            "status": DeliveryStatus.PENDING.value,
            "next_attempt_at": not_before,
            "updated_at": now,
        },
    )


async def _last_attempt(session: AsyncSession, delivery_id: uuid.UUID) -> DeliveryAttempt | None:
    stmt = (
        select(DeliveryAttempt)
        .where(DeliveryAttempt.delivery_id == delivery_id)
        .order_by(DeliveryAttempt.attempt_number.desc())
        .limit(1)
    )
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery log unavailable: {e}") from e
    return result.scalar_one_or_none()


async def get_queue_stats(session: AsyncSession) -> dict[str, int]:
    """Count deliveries per status. Every status is present in the result."""
    stmt = select(Delivery.status, func.count(Delivery.id)).group_by(Delivery.status)
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery queue unavailable: {e}") from e
    counts = {row[0]: row[1] for row in result.fetchall()}
    return {status.value: counts.get(status.value, 0) for status in DeliveryStatus}


async def get_pending_count(session: AsyncSession) -> int:
    """Number of deliveries waiting to be attempted (first try or retry)."""
    stmt = select(func.count(Delivery.id)).where(Delivery.status.in_(_CLAIMABLE))
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery queue unavailable: {e}") from e
    return result.scalar() or 0


async def check_queue_backpressure(
    session: AsyncSession,
    settings: Settings | None = None,
) -> None:
    """Refuse new work when the pending queue is over its limit.

    Raises:
        QueueFullError: If ``queue_max_pending`` is set and reached.
    """
    settings = settings or get_settings()
    if settings.queue_max_pending is None:
        return

    pending = await get_pending_count(session)
    if pending >= settings.queue_max_pending:
        logger.warning(f"Queue backpressure: {pending} pending >= {settings.queue_max_pending}")
        raise QueueFullError(
            f"Delivery queue is full ({pending} pending, limit {settings.queue_max_pending})"
        )
