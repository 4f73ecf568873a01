"""Tests for event intake and fan-out."""

import math
import uuid

import pytest

from fasthook.db.enums import DeliveryStatus
from fasthook.errors import NotFoundError, QueueFullError, ValidationError
from fasthook.webhook import events
from fasthook.webhook.events import get_event_deliveries, submit_event


class TestSubmitEvent:
    """Tests for submit_event."""

    @pytest.mark.asyncio
    async def test_one_delivery_per_subscriber(
        self, test_session, test_settings, make_endpoint, clock
    ):
        a = await make_endpoint(url="https://a.example.com/hook")
        b = await make_endpoint(url="https://b.example.com/hook", event_types=["*"])
        await make_endpoint(url="https://c.example.com/hook", event_types=["user.created"])

        submitted = await submit_event(
            test_session, "order.created", {"order_id": 1}, settings=test_settings, now=clock()
        )
        await test_session.commit()

        assert submitted.created is True
        assert submitted.event.event_type == "order.created"
        assert submitted.event.occurred_at == clock()
        assert {d.endpoint_id for d in submitted.deliveries} == {a.id, b.id}
        for delivery in submitted.deliveries:
            assert delivery.status == DeliveryStatus.PENDING.value
            assert delivery.next_attempt_at == clock()

    @pytest.mark.asyncio
    async def test_no_subscribers(self, test_session, test_settings):
        submitted = await submit_event(test_session, "order.created", {}, settings=test_settings)
        assert submitted.deliveries == []

    @pytest.mark.asyncio
    async def test_disabled_endpoints_skipped(
        self, test_session, test_settings, make_endpoint, registry
    ):
        endpoint = await make_endpoint()
        await registry.disable(endpoint.id)

        submitted = await submit_event(test_session, "order.created", {}, settings=test_settings)

        assert submitted.deliveries == []

    @pytest.mark.asyncio
    async def test_later_subscribers_not_included(
        self, test_session, test_settings, make_endpoint
    ):
        """Subscriptions are resolved once, when the event is submitted."""
        first = await make_endpoint()
        submitted = await submit_event(test_session, "order.created", {}, settings=test_settings)
        await test_session.commit()
        await make_endpoint()

        deliveries = await get_event_deliveries(test_session, submitted.event.id)

        assert [d.endpoint_id for d in deliveries] == [first.id]

    @pytest.mark.asyncio
    async def test_resubmitting_event_id_is_idempotent(
        self, test_session, test_settings, make_endpoint
    ):
        await make_endpoint()
        event_id = uuid.uuid4()

        first = await submit_event(
            test_session, "order.created", {"n": 1}, event_id=event_id, settings=test_settings
        )
        await test_session.commit()
        again = await submit_event(
            test_session, "order.created", {"n": 1}, event_id=event_id, settings=test_settings
        )

        assert again.created is False
        assert [d.id for d in again.deliveries] == [d.id for d in first.deliveries]

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_event_id_is_idempotent(
        self, test_session, test_settings, session_factory, make_endpoint, monkeypatch
    ):
        await make_endpoint()
        event_id = uuid.uuid4()
        async with session_factory() as other:
            first = await submit_event(
                other, "order.created", {"n": 1}, event_id=event_id, settings=test_settings
            )
            await other.commit()

        # The existence check ran before the other submission committed
        real_get_event = events._get_event
        checks = 0

        async def stale_get_event(session, wanted):
            nonlocal checks
            checks += 1
            if checks == 1:
                return None
            return await real_get_event(session, wanted)

        monkeypatch.setattr(events, "_get_event", stale_get_event)

        again = await submit_event(
            test_session, "order.created", {"n": 1}, event_id=event_id, settings=test_settings
        )

        assert again.created is False
        assert again.event.id == event_id
        assert [d.id for d in again.deliveries] == [d.id for d in first.deliveries]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("event_type", ["", "   ", "x" * 256])
    async def test_invalid_event_type(self, test_session, test_settings, event_type):
        with pytest.raises(ValidationError):
            await submit_event(test_session, event_type, {}, settings=test_settings)

    @pytest.mark.asyncio
    async def test_payload_must_be_json(self, test_session, test_settings):
        with pytest.raises(ValidationError):
            await submit_event(test_session, "a", {"x": math.inf}, settings=test_settings)

    @pytest.mark.asyncio
    async def test_queue_full(self, test_session, test_settings, make_delivery):
        await make_delivery()
        settings = test_settings.model_copy(update={"queue_max_pending": 1})

        with pytest.raises(QueueFullError):
            await submit_event(test_session, "order.created", {}, settings=settings)


class TestGetEventDeliveries:
    """Tests for looking up an event's deliveries."""

    @pytest.mark.asyncio
    async def test_unknown_event(self, test_session):
        with pytest.raises(NotFoundError):
            await get_event_deliveries(test_session, uuid.uuid4())
