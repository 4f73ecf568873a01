"""Tests for the subscription registry."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from fasthook.config import Settings
from fasthook.crypto import is_sealed
from fasthook.db.models import Endpoint
from fasthook.errors import EndpointNotFoundError, ValidationError
from fasthook.signing import SECRET_PREFIX
from fasthook.webhook.registry import SubscriptionRegistry, normalize_event_types
from fasthook.webhook.url_validator import BlockedAddressError


REGISTERED_AT = datetime(2026, 1, 1, tzinfo=UTC)


async def stagger(session, *endpoints: Endpoint) -> None:
    """Give endpoints distinct, increasing registration times."""
    for index, endpoint in enumerate(endpoints):
        endpoint.created_at = REGISTERED_AT + timedelta(seconds=index)
    await session.flush()


async def count_endpoints(session) -> int:
    return (await session.execute(select(func.count(Endpoint.id)))).scalar()


class TestNormalizeEventTypes:
    """Tests for subscription filter validation."""

    def test_deduplicates_keeping_order(self):
        assert normalize_event_types(["b", "a", "b", " a "]) == ["b", "a"]

    def test_wildcard_allowed(self):
        assert normalize_event_types(["*"]) == ["*"]

    @pytest.mark.parametrize("value", [None, [], "order.created", ["", "x"], [42]])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            normalize_event_types(value)

    def test_too_long(self):
        with pytest.raises(ValidationError, match="too long"):
            normalize_event_types(["x" * 256])


class TestRegister:
    """Tests for endpoint registration."""

    @pytest.mark.asyncio
    async def test_register_with_generated_secret(self, registry):
        endpoint = await registry.register("https://example.com/hook", ["order.created"])

        assert endpoint.id is not None
        assert endpoint.is_enabled is True
        assert endpoint.event_types == ["order.created"]
        assert registry.secret_for(endpoint).startswith(SECRET_PREFIX)

    @pytest.mark.asyncio
    async def test_register_with_supplied_secret(self, registry):
        endpoint = await registry.register(
            "https://example.com/hook",
            ["order.created"],
            secret="my-very-long-secret-value",
            description="Orders",
            owner="team-a",
        )

        assert registry.secret_for(endpoint) == "my-very-long-secret-value"
        assert endpoint.description == "Orders"
        assert endpoint.owner == "team-a"

    @pytest.mark.asyncio
    async def test_short_secret_rejected(self, registry, test_session):
        with pytest.raises(ValidationError, match="Secret"):
            await registry.register("https://example.com/hook", ["a"], secret="short")
        assert await count_endpoints(test_session) == 0

    @pytest.mark.asyncio
    async def test_malformed_url_rejected_without_write(self, registry, test_session):
        with pytest.raises(ValidationError):
            await registry.register("not a url", ["order.created"])
        assert await count_endpoints(test_session) == 0

    @pytest.mark.asyncio
    async def test_private_url_rejected(self, registry):
        with pytest.raises(BlockedAddressError):
            await registry.register("http://127.0.0.1/hook", ["order.created"])

    @pytest.mark.asyncio
    async def test_empty_filter_rejected(self, registry):
        with pytest.raises(ValidationError):
            await registry.register("https://example.com/hook", [])

    @pytest.mark.asyncio
    async def test_secret_sealed_when_key_configured(self, test_session, test_settings):
        settings = test_settings.model_copy(update={"encryption_key": "k" * 32})
        registry = SubscriptionRegistry(test_session, settings)

        endpoint = await registry.register(
            "https://example.com/hook", ["a"], secret="plain-secret-value-123"
        )

        assert is_sealed(endpoint.secret)
        assert registry.secret_for(endpoint) == "plain-secret-value-123"


class TestResolve:
    """Tests for resolving subscribers of an event type."""

    @pytest.mark.asyncio
    async def test_only_matching_enabled_endpoints(self, registry):
        orders = await registry.register("https://a.example.com/hook", ["order.created"])
        everything = await registry.register("https://b.example.com/hook", ["*"])
        await registry.register("https://c.example.com/hook", ["user.created"])
        disabled = await registry.register("https://d.example.com/hook", ["order.created"])
        await registry.disable(disabled.id)

        resolved = await registry.resolve("order.created")

        assert {e.id for e in resolved} == {orders.id, everything.id}

    @pytest.mark.asyncio
    async def test_registration_order(self, registry):
        first = await registry.register("https://a.example.com/hook", ["*"])
        second = await registry.register("https://b.example.com/hook", ["*"])
        await stagger(registry.session, first, second)

        resolved = await registry.resolve("anything")

        assert [e.id for e in resolved] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_no_subscribers(self, registry):
        assert await registry.resolve("order.created") == []


class TestLifecycle:
    """Tests for update, disable, enable and rotate."""

    @pytest.mark.asyncio
    async def test_get_unknown(self, registry):
        with pytest.raises(EndpointNotFoundError):
            await registry.get(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_update(self, registry):
        endpoint = await registry.register("https://example.com/hook", ["a"])

        updated = await registry.update(
            endpoint.id, url="https://example.org/new", event_types=["b", "c"]
        )

        assert updated.url == "https://example.org/new"
        assert updated.event_types == ["b", "c"]

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_endpoint_untouched(self, registry):
        endpoint = await registry.register("https://example.com/hook", ["a"])

        with pytest.raises(ValidationError):
            await registry.update(endpoint.id, url="https://example.org/ok", event_types=[])

        assert endpoint.url == "https://example.com/hook"
        assert endpoint.event_types == ["a"]

    @pytest.mark.asyncio
    async def test_disable_and_enable(self, registry):
        endpoint = await registry.register("https://example.com/hook", ["a"])

        await registry.disable(endpoint.id)
        assert endpoint.is_enabled is False
        assert endpoint.disabled_at is not None
        assert await registry.resolve("a") == []

        await registry.enable(endpoint.id)
        assert endpoint.is_enabled is True
        assert endpoint.disabled_at is None
        assert [e.id for e in await registry.resolve("a")] == [endpoint.id]

    @pytest.mark.asyncio
    async def test_disable_is_idempotent(self, registry):
        endpoint = await registry.register("https://example.com/hook", ["a"])
        await registry.disable(endpoint.id)
        disabled_at = endpoint.disabled_at

        await registry.disable(endpoint.id)

        assert endpoint.disabled_at == disabled_at

    @pytest.mark.asyncio
    async def test_rotate_secret(self, registry):
        endpoint = await registry.register(
            "https://example.com/hook", ["a"], secret="original-secret-value"
        )

        new_secret = await registry.rotate_secret(endpoint.id)

        assert new_secret != "original-secret-value"
        assert registry.secret_for(endpoint) == new_secret
        assert endpoint.secret_rotated_at is not None

    @pytest.mark.asyncio
    async def test_list_filters(self, registry):
        a = await registry.register("https://a.example.com/hook", ["a"], owner="team-a")
        b = await registry.register("https://b.example.com/hook", ["a"], owner="team-b")
        await stagger(registry.session, a, b)
        await registry.disable(b.id)

        assert [e.id for e in await registry.list_endpoints()] == [a.id, b.id]
        assert [e.id for e in await registry.list_endpoints(include_disabled=False)] == [a.id]
        assert [e.id for e in await registry.list_endpoints(owner="team-b")] == [b.id]


class TestSettingsInRegistry:
    """Registry honors delivery settings."""

    @pytest.mark.asyncio
    async def test_allowed_schemes(self, test_session):
        settings = Settings(
            root_api_key="test_key_12345",
            webhook_allowed_schemes=["https"],
        )
        registry = SubscriptionRegistry(test_session, settings)

        with pytest.raises(ValidationError, match="scheme"):
            await registry.register("http://example.com/hook", ["a"])
