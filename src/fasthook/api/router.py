"""Main API router combining all endpoints."""

from fastapi import APIRouter

from fasthook.api import deliveries, endpoints, events, operations

api_router = APIRouter(prefix="/api/v1")

# Include all routers
api_router.include_router(operations.router)
api_router.include_router(endpoints.router)
api_router.include_router(deliveries.router)
api_router.include_router(events.router)
