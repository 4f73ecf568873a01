"""Operations API endpoints (health, ready)."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fasthook import __version__
from fasthook.config import Settings, get_settings
from fasthook.db.session import get_session
from fasthook.metrics.definitions import QUEUE_DEPTH
from fasthook.schemas import HealthResponse, QueueStats, ReadyResponse
from fasthook.webhook import get_queue_stats

router = APIRouter(tags=["operations"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings),
) -> HealthResponse:
    """Health check endpoint - returns server status."""
    return HealthResponse(
        status="ok",
        version=__version__,
        instance_id=settings.instance_id,
    )


@router.get("/ready", response_model=ReadyResponse)
async def ready_check(
    session: AsyncSession = Depends(get_session),
    include_queue: bool = Query(False, description="Include queue statistics"),
) -> ReadyResponse:
    """Readiness check endpoint - verifies database connectivity.

    Query parameters:
    - include_queue: Include delivery counts per status
    """
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not ready",
        ) from e

    response = ReadyResponse(status="ok", database="ok")

    if include_queue:
        counts = await get_queue_stats(session)
        for name, value in counts.items():
            QUEUE_DEPTH.labels(status=name).set(value)
        response.queue = QueueStats(**counts)

    return response
