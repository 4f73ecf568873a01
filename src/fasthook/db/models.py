"""SQLAlchemy database models."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite has no timezone support and hands back naive values; this
    normalizes both directions so comparisons never mix naive and aware.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all models."""

    # Use JSON with JSONB variant for PostgreSQL (works on SQLite too)
    type_annotation_map = {
        dict: JSON().with_variant(JSONB(), "postgresql"),
        list[str]: JSON().with_variant(JSONB(), "postgresql"),
        uuid.UUID: Uuid,
        datetime: UTCDateTime,
    }


def utcnow() -> datetime:
    return datetime.now(UTC)


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class Endpoint(Base, TimestampMixin):
    """A user-registered HTTP target receiving webhook deliveries.

    Endpoints are never deleted; disabling keeps delivery history intact.
    """

    __tablename__ = "endpoints"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    secret: Mapped[str] = mapped_column(Text, nullable=False)  # sealed when encryption is on
    event_types: Mapped[list[str]] = mapped_column(default=list)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    is_enabled: Mapped[bool] = mapped_column(default=True, nullable=False)
    disabled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    secret_rotated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    deliveries: Mapped[list["Delivery"]] = relationship(back_populates="endpoint")

    __table_args__ = (Index("ix_endpoints_enabled_created", "is_enabled", "created_at"),)

    def subscribes_to(self, event_type: str) -> bool:
        """Return True if this endpoint's filter includes the event type."""
        return "*" in self.event_types or event_type in self.event_types

    def __repr__(self) -> str:
        return f"<Endpoint {self.url} enabled={self.is_enabled}>"


class Event(Base):
    """An occurrence handed in by the host application. Immutable."""

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    event_type: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(default=dict)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    deliveries: Mapped[list["Delivery"]] = relationship(back_populates="event")

    def __repr__(self) -> str:
        return f"<Event {self.event_type} {self.id}>"


class Delivery(Base, TimestampMixin):
    """One notification of a single event to a single endpoint."""

    __tablename__ = "deliveries"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("events.id"),
        nullable=False,
        index=True,
    )
    endpoint_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("endpoints.id"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, index=True
    )  # pending, in_flight, succeeded, failed_retryable, failed_terminal
    attempts: Mapped[int] = mapped_column(default=0, nullable=False)
    next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_status_code: Mapped[int | None] = mapped_column(nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    claim_token: Mapped[str | None] = mapped_column(String(32), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    event: Mapped["Event"] = relationship(back_populates="deliveries")
    endpoint: Mapped["Endpoint"] = relationship(back_populates="deliveries")
    attempt_log: Mapped[list["DeliveryAttempt"]] = relationship(
        back_populates="delivery",
        order_by="DeliveryAttempt.attempt_number",
    )

    __table_args__ = (
        UniqueConstraint("event_id", "endpoint_id", name="uq_delivery_event_endpoint"),
        Index("ix_deliveries_status_next_attempt", "status", "next_attempt_at"),
        Index("ix_deliveries_endpoint_created", "endpoint_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Delivery {self.id} status={self.status} attempts={self.attempts}>"


class DeliveryAttempt(Base):
    """Immutable record of one HTTP call made for a delivery."""

    __tablename__ = "delivery_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    delivery_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("deliveries.id"),
        nullable=False,
    )
    attempt_number: Mapped[int] = mapped_column(nullable=False)
    signature: Mapped[str] = mapped_column(String(128), nullable=False)
    # Unix seconds sent in X-Webhook-Timestamp
    signed_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status_code: Mapped[int | None] = mapped_column(nullable=True)
    error_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    latency_ms: Mapped[float] = mapped_column(nullable=False)
    response_excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    worker_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    delivery: Mapped["Delivery"] = relationship(back_populates="attempt_log")

    __table_args__ = (
        UniqueConstraint("delivery_id", "attempt_number", name="uq_attempt_number"),
        Index("ix_delivery_attempts_delivery_number", "delivery_id", "attempt_number"),
    )

    def __repr__(self) -> str:
        return f"<DeliveryAttempt {self.delivery_id} #{self.attempt_number} {self.outcome}>"
