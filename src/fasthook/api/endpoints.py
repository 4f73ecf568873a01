"""Endpoint management API."""

import uuid
from collections.abc import AsyncGenerator

import httpx
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fasthook.auth import Auth
from fasthook.config import Settings, get_settings
from fasthook.db.enums import DeliveryStatus
from fasthook.db.models import Delivery
from fasthook.db.session import get_session
from fasthook.errors import ValidationError
from fasthook.schemas import (
    DeliveryResponse,
    EndpointCreate,
    EndpointResponse,
    EndpointSecretResponse,
    EndpointUpdate,
    SecretRotateResponse,
    TestWebhookResponse,
)
from fasthook.webhook import SubscriptionRegistry, send_test_webhook
from fasthook.webhook.url_validator import create_delivery_client

router = APIRouter(prefix="/endpoints", tags=["endpoints"])


async def get_registry(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> SubscriptionRegistry:
    """Registry bound to the request's session."""
    return SubscriptionRegistry(session, settings)


async def get_delivery_client(
    settings: Settings = Depends(get_settings),
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client for test pings, closed after the request."""
    client = create_delivery_client(
        settings.webhook_timeout,
        block_private=settings.webhook_block_private_networks,
        allowed_internal_domains=settings.webhook_allowed_internal_domains,
    )
    try:
        yield client
    finally:
        await client.aclose()


@router.post("", response_model=EndpointSecretResponse, status_code=status.HTTP_201_CREATED)
async def register_endpoint(
    data: EndpointCreate,
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
) -> EndpointSecretResponse:
    """Register an endpoint. The signing secret is only returned here."""
    endpoint = await registry.register(
        url=data.url,
        event_types=data.event_types,
        secret=data.secret,
        description=data.description,
        owner=data.owner,
    )
    response = EndpointResponse.model_validate(endpoint)
    return EndpointSecretResponse(**response.model_dump(), secret=registry.secret_for(endpoint))


@router.get("", response_model=list[EndpointResponse])
async def list_endpoints(
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
    include_disabled: bool = Query(True),
    owner: str | None = Query(None),
) -> list[EndpointResponse]:
    """List endpoints in registration order."""
    endpoints = await registry.list_endpoints(include_disabled=include_disabled, owner=owner)
    return [EndpointResponse.model_validate(e) for e in endpoints]


@router.get("/{endpoint_id}", response_model=EndpointResponse)
async def get_endpoint(
    endpoint_id: uuid.UUID,
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
) -> EndpointResponse:
    """Get an endpoint by ID."""
    return EndpointResponse.model_validate(await registry.get(endpoint_id))


@router.patch("/{endpoint_id}", response_model=EndpointResponse)
async def update_endpoint(
    endpoint_id: uuid.UUID,
    data: EndpointUpdate,
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
) -> EndpointResponse:
    """Update an endpoint's URL, event types or description."""
    endpoint = await registry.update(
        endpoint_id,
        url=data.url,
        event_types=data.event_types,
        description=data.description,
    )
    return EndpointResponse.model_validate(endpoint)


@router.post("/{endpoint_id}/disable", response_model=EndpointResponse)
async def disable_endpoint(
    endpoint_id: uuid.UUID,
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
) -> EndpointResponse:
    """Disable an endpoint. Queued retries to it end as failed."""
    return EndpointResponse.model_validate(await registry.disable(endpoint_id))


@router.post("/{endpoint_id}/enable", response_model=EndpointResponse)
async def enable_endpoint(
    endpoint_id: uuid.UUID,
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
) -> EndpointResponse:
    """Re-enable a disabled endpoint."""
    return EndpointResponse.model_validate(await registry.enable(endpoint_id))


@router.post("/{endpoint_id}/rotate-secret", response_model=SecretRotateResponse)
async def rotate_endpoint_secret(
    endpoint_id: uuid.UUID,
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
) -> SecretRotateResponse:
    """Generate a new signing secret for an endpoint."""
    secret = await registry.rotate_secret(endpoint_id)
    endpoint = await registry.get(endpoint_id)
    return SecretRotateResponse(
        endpoint_id=endpoint.id,
        secret=secret,
        rotated_at=endpoint.secret_rotated_at,
    )


@router.post("/{endpoint_id}/test", response_model=TestWebhookResponse)
async def test_endpoint(
    endpoint_id: uuid.UUID,
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_delivery_client),
) -> TestWebhookResponse:
    """Send a signed test ping to an endpoint without recording a delivery."""
    endpoint = await registry.get(endpoint_id)
    result = await send_test_webhook(endpoint, settings=settings, client=client)
    return TestWebhookResponse(
        success=result.success,
        status_code=result.status_code,
        error=result.error,
        response_time_ms=result.response_time_ms,
    )


@router.get("/{endpoint_id}/deliveries", response_model=list[DeliveryResponse])
async def list_endpoint_deliveries(
    endpoint_id: uuid.UUID,
    auth: Auth,
    registry: SubscriptionRegistry = Depends(get_registry),
    session: AsyncSession = Depends(get_session),
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> list[DeliveryResponse]:
    """List deliveries to an endpoint, newest first."""
    await registry.get(endpoint_id)

    stmt = (
        select(Delivery)
        .where(Delivery.endpoint_id == endpoint_id)
        .order_by(Delivery.created_at.desc(), Delivery.id)
    )
    if status_filter:
        if status_filter not in {s.value for s in DeliveryStatus}:
            raise ValidationError(f"Unknown delivery status: {status_filter}")
        stmt = stmt.where(Delivery.status == status_filter)

    stmt = stmt.limit(limit).offset(offset)

    result = await session.execute(stmt)
    deliveries = result.scalars().all()
    return [DeliveryResponse.model_validate(d) for d in deliveries]
