"""Subscription registry: which endpoints receive which event types."""

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fasthook.config import Settings, get_settings
from fasthook.crypto import open_secret, seal_secret
from fasthook.db.models import Endpoint
from fasthook.errors import EndpointNotFoundError, StorageError, ValidationError
from fasthook.signing import generate_secret
from fasthook.webhook.url_validator import validate_endpoint_url

logger = logging.getLogger(__name__)

MAX_EVENT_TYPE_LENGTH = 255
MIN_SECRET_LENGTH = 16


def normalize_event_types(event_types: Iterable[str] | None) -> list[str]:
    """Validate and de-duplicate a subscription filter, keeping order.

    Raises:
        ValidationError: If the filter is empty or contains invalid entries.
    """
    if event_types is None or isinstance(event_types, str):
        raise ValidationError("event_types must be a list of event type names")

    result: list[str] = []
    for event_type in event_types:
        if not isinstance(event_type, str) or not event_type.strip():
            raise ValidationError("Event types must be non-empty strings")
        event_type = event_type.strip()
        if len(event_type) > MAX_EVENT_TYPE_LENGTH:
            raise ValidationError(f"Event type too long: {event_type[:40]}...")
        if event_type not in result:
            result.append(event_type)

    if not result:
        raise ValidationError("At least one event type is required")
    return result


class SubscriptionRegistry:
    """Endpoint store backed by the ``endpoints`` table.

    Instances wrap a session and are cheap to create; callers own the
    transaction (commit/rollback).
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self.session = session
        self.settings = settings or get_settings()

    def _validate_url(self, url: str) -> str:
        return validate_endpoint_url(
            url,
            allowed_schemes=self.settings.webhook_allowed_schemes,
            block_private=self.settings.webhook_block_private_networks,
            allowed_internal_domains=self.settings.webhook_allowed_internal_domains,
        )

    def _validate_secret(self, secret: str) -> str:
        if not isinstance(secret, str) or len(secret) < MIN_SECRET_LENGTH:
            raise ValidationError(f"Secret must be at least {MIN_SECRET_LENGTH} characters")
        return secret

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise StorageError(f"Endpoint store unavailable: {e}") from e

    async def register(
        self,
        url: str,
        event_types: Iterable[str],
        secret: str | None = None,
        description: str | None = None,
        owner: str | None = None,
    ) -> Endpoint:
        """Register a new endpoint.

        Generates a signing secret when none is supplied.

        Raises:
            ValidationError: If the URL, event types or secret are invalid.
                Nothing is written in that case.
        """
        url = self._validate_url(url)
        types = normalize_event_types(event_types)
        plain_secret = self._validate_secret(secret) if secret is not None else generate_secret()

        endpoint = Endpoint(
            url=url,
            event_types=types,
            secret=seal_secret(plain_secret, self.settings.encryption_key),
            description=description,
            owner=owner,
            is_enabled=True,
        )
        self.session.add(endpoint)
        await self._flush()

        logger.info(f"Registered endpoint {endpoint.id} for {', '.join(types)}")
        return endpoint

    async def get(self, endpoint_id: uuid.UUID) -> Endpoint:
        """Fetch an endpoint by id.

        Raises:
            EndpointNotFoundError: If no such endpoint exists.
        """
        try:
            endpoint = await self.session.get(Endpoint, endpoint_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Endpoint store unavailable: {e}") from e
        if endpoint is None:
            raise EndpointNotFoundError(f"Endpoint {endpoint_id} not found")
        return endpoint

    async def list_endpoints(
        self,
        include_disabled: bool = True,
        owner: str | None = None,
    ) -> list[Endpoint]:
        """List endpoints in registration order."""
        stmt = select(Endpoint).order_by(Endpoint.created_at, Endpoint.id)
        if not include_disabled:
            stmt = stmt.where(Endpoint.is_enabled.is_(True))
        if owner is not None:
            stmt = stmt.where(Endpoint.owner == owner)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageError(f"Endpoint store unavailable: {e}") from e
        return list(result.scalars().all())

    async def resolve(self, event_type: str) -> list[Endpoint]:
        """Return enabled endpoints subscribed to an event type.

        Ordered by registration time, ties broken by id.
        """
        # Filter lists are JSON, so match in Python for portability across backends
        enabled = await self.list_endpoints(include_disabled=False)
        return [endpoint for endpoint in enabled if endpoint.subscribes_to(event_type)]

    async def update(
        self,
        endpoint_id: uuid.UUID,
        url: str | None = None,
        event_types: Iterable[str] | None = None,
        description: str | None = None,
    ) -> Endpoint:
        """Change an endpoint's URL, subscription filter or description.

        All values are validated before the endpoint is touched.
        """
        new_url = self._validate_url(url) if url is not None else None
        new_types = normalize_event_types(event_types) if event_types is not None else None

        endpoint = await self.get(endpoint_id)
        if new_url is not None:
            endpoint.url = new_url
        if new_types is not None:
            endpoint.event_types = new_types
        if description is not None:
            endpoint.description = description
        await self._flush()

        logger.info(f"Updated endpoint {endpoint_id}")
        return endpoint

    async def disable(self, endpoint_id: uuid.UUID) -> Endpoint:
        """Stop new deliveries to an endpoint.

        Deliveries already in flight finish their current attempt; pending
        retries become terminal the next time they are picked up.
        """
        endpoint = await self.get(endpoint_id)
        if endpoint.is_enabled:
            endpoint.is_enabled = False
            endpoint.disabled_at = datetime.now(UTC)
            await self._flush()
            logger.info(f"Disabled endpoint {endpoint_id}")
        return endpoint

    async def enable(self, endpoint_id: uuid.UUID) -> Endpoint:
        """Re-enable a disabled endpoint for future events."""
        endpoint = await self.get(endpoint_id)
        if not endpoint.is_enabled:
            endpoint.is_enabled = True
            endpoint.disabled_at = None
            await self._flush()
            logger.info(f"Enabled endpoint {endpoint_id}")
        return endpoint

    async def rotate_secret(self, endpoint_id: uuid.UUID) -> str:
        """Replace an endpoint's signing secret.

        Attempts already signed with the old secret are unaffected; every
        attempt signed after the change uses the new one.

        Returns:
            The new plaintext secret.
        """
        endpoint = await self.get(endpoint_id)
        new_secret = generate_secret()
        endpoint.secret = seal_secret(new_secret, self.settings.encryption_key)
        endpoint.secret_rotated_at = datetime.now(UTC)
        await self._flush()

        logger.info(f"Rotated secret for endpoint {endpoint_id}")
        return new_secret

    def secret_for(self, endpoint: Endpoint) -> str:
        """Plaintext signing secret of an endpoint."""
        return open_secret(endpoint.secret, self.settings.encryption_key)
