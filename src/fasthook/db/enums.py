"""Database enum types for consistent status values."""

from enum import Enum


class DeliveryStatus(str, Enum):
    """Lifecycle states of a delivery."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


# Statuses a worker may claim
CLAIMABLE_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.FAILED_RETRYABLE)

# Statuses that are never left once reached
TERMINAL_STATUSES = frozenset({DeliveryStatus.SUCCEEDED, DeliveryStatus.FAILED_TERMINAL})


class AttemptOutcome(str, Enum):
    """What the dispatcher concluded from a single attempt."""

    SUCCEEDED = "succeeded"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


class TransportErrorKind(str, Enum):
    """Transport-level failure kinds recorded on attempts."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    DNS = "dns"
    PROTOCOL = "protocol"
    BLOCKED = "blocked"
