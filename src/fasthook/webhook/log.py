"""Append-only log of delivery attempts."""

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fasthook.db.enums import DeliveryStatus
from fasthook.db.models import Delivery, DeliveryAttempt
from fasthook.errors import DeliveryNotFoundError, StorageError

logger = logging.getLogger(__name__)


async def append_attempt(
    session: AsyncSession,
    attempt: DeliveryAttempt,
    claim_token: str | None = None,
) -> DeliveryAttempt | None:
    """Record one attempt and bump the delivery's attempt counter.

    The counter increment and the insert happen in the same transaction,
    and the attempt number is taken from the incremented counter, so
    ``Delivery.attempts`` always equals the number of attempt rows.
    Attempts are only recorded for in-flight deliveries (held under
    ``claim_token`` when given); a delivery that already reached a terminal
    state is never given more history.

    Returns:
        The stored attempt, or None if the delivery is no longer in flight.

    Raises:
        StorageError: If the log cannot be written.
    """
    conditions = [
        Delivery.id == attempt.delivery_id,
        Delivery.status == DeliveryStatus.IN_FLIGHT.value,
    ]
    if claim_token is not None:
        conditions.append(Delivery.claim_token == claim_token)

    stmt = (
        update(Delivery)
        .where(*conditions)
        .values(attempts=Delivery.attempts + 1)
        .returning(Delivery.attempts)
        .execution_options(synchronize_session=False)
    )
    try:
        result = await session.execute(stmt)
        number = result.scalar_one_or_none()
        if number is None:
            logger.warning(
                f"Delivery {attempt.delivery_id} is not in flight; attempt not recorded"
            )
            return None

        attempt.attempt_number = number
        session.add(attempt)
        await session.flush()
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery log unavailable: {e}") from e

    logger.debug(
        f"Logged attempt #{attempt.attempt_number} for delivery {attempt.delivery_id}: "
        f"{attempt.outcome}"
    )
    return attempt


async def get_history(session: AsyncSession, delivery_id: uuid.UUID) -> list[DeliveryAttempt]:
    """All attempts of a delivery in attempt-number order.

    Raises:
        DeliveryNotFoundError: If the delivery does not exist.
    """
    try:
        delivery = await session.get(Delivery, delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(f"Delivery {delivery_id} not found")

        stmt = (
            select(DeliveryAttempt)
            .where(DeliveryAttempt.delivery_id == delivery_id)
            .order_by(DeliveryAttempt.attempt_number)
        )
        result = await session.execute(stmt)
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery log unavailable: {e}") from e
    return list(result.scalars().all())
