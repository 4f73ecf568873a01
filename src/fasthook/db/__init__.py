"""Database module."""

from fasthook.db.enums import AttemptOutcome, DeliveryStatus, TransportErrorKind
from fasthook.db.models import Base, Delivery, DeliveryAttempt, Endpoint, Event
from fasthook.db.session import async_session, close_engine, get_engine, get_session

__all__ = [
    "AttemptOutcome",
    "Base",
    "Delivery",
    "DeliveryAttempt",
    "DeliveryStatus",
    "Endpoint",
    "Event",
    "TransportErrorKind",
    "async_session",
    "close_engine",
    "get_engine",
    "get_session",
]
