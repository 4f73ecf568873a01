"""Common Pydantic schemas."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    instance_id: str


class QueueStats(BaseModel):
    """Delivery counts per status."""

    pending: int = 0
    in_flight: int = 0
    succeeded: int = 0
    failed_retryable: int = 0
    failed_terminal: int = 0


class ReadyResponse(BaseModel):
    """Readiness check response."""

    status: str = "ok"
    database: str = "ok"
    queue: QueueStats | None = None  # Optional queue statistics

