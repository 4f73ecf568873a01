"""Tests for event intake and delivery inspection API endpoints."""

import uuid
import warnings

import pytest
from httpx import AsyncClient
from starlette.requests import Request

from fasthook.config import get_settings
from fasthook.errors import ValidationError
from fasthook.main import _validation_error_handler
from fasthook.webhook.dispatcher import WebhookWorker


class TestSubmitEvent:
    """Tests for POST /events."""

    @pytest.mark.asyncio
    async def test_fan_out(self, auth_client: AsyncClient, make_endpoint):
        a = await make_endpoint(url="https://a.example.com/hook")
        b = await make_endpoint(url="https://b.example.com/hook", event_types=["*"])

        response = await auth_client.post(
            "/api/v1/events",
            json={"event_type": "order.created", "payload": {"order_id": 1}},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["event_type"] == "order.created"
        assert data["created"] is True
        assert len(data["delivery_ids"]) == 2

        deliveries = await auth_client.get(f"/api/v1/events/{data['event_id']}/deliveries")
        assert {d["endpoint_id"] for d in deliveries.json()} == {str(a.id), str(b.id)}
        assert all(d["status"] == "pending" for d in deliveries.json())

    @pytest.mark.asyncio
    async def test_idempotent_event_id(self, auth_client: AsyncClient, make_endpoint):
        await make_endpoint()
        body = {"event_type": "order.created", "payload": {}, "event_id": str(uuid.uuid4())}

        first = await auth_client.post("/api/v1/events", json=body)
        second = await auth_client.post("/api/v1/events", json=body)

        assert second.status_code == 202
        assert second.json()["created"] is False
        assert second.json()["delivery_ids"] == first.json()["delivery_ids"]

    @pytest.mark.asyncio
    async def test_missing_event_type(self, auth_client: AsyncClient):
        response = await auth_client.post("/api/v1/events", json={"payload": {}})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_blank_event_type(self, auth_client: AsyncClient):
        response = await auth_client.post(
            "/api/v1/events", json={"event_type": "   ", "payload": {}}
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "Event type must be a non-empty string"

    @pytest.mark.asyncio
    async def test_validation_handler_avoids_deprecated_status(self):
        request = Request({"type": "http", "method": "POST", "path": "/api/v1/events"})
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            response = await _validation_error_handler(request, ValidationError("bad event"))

        assert response.status_code == 422
        assert response.body == b'{"detail":"bad event"}'

    @pytest.mark.asyncio
    async def test_queue_full(self, app, auth_client: AsyncClient, test_settings, make_delivery):
        await make_delivery()
        limited = test_settings.model_copy(update={"queue_max_pending": 1})
        app.dependency_overrides[get_settings] = lambda: limited

        response = await auth_client.post(
            "/api/v1/events", json={"event_type": "order.created", "payload": {}}
        )

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"

    @pytest.mark.asyncio
    async def test_unknown_event(self, auth_client: AsyncClient):
        response = await auth_client.get(f"/api/v1/events/{uuid.uuid4()}/deliveries")
        assert response.status_code == 404


class TestDeliveryInspection:
    """Tests for GET /deliveries/{id} and its attempts."""

    @pytest.mark.asyncio
    async def test_delivery_and_attempts(
        self, auth_client: AsyncClient, make_delivery, test_settings, session_factory, scripted
    ):
        delivery = await make_delivery()
        async with scripted(500, body="try later").client() as client:
            worker = WebhookWorker(test_settings, session_factory=session_factory, client=client)
            await worker.process_batch()

        response = await auth_client.get(f"/api/v1/deliveries/{delivery.id}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "failed_retryable"
        assert data["attempts"] == 1
        assert data["last_status_code"] == 500
        assert data["next_attempt_at"] is not None

        attempts = await auth_client.get(f"/api/v1/deliveries/{delivery.id}/attempts")
        assert attempts.status_code == 200
        [attempt] = attempts.json()
        assert attempt["attempt_number"] == 1
        assert attempt["outcome"] == "retryable"
        assert attempt["response_excerpt"] == "try later"
        assert attempt["signature"].startswith("sha256=")

    @pytest.mark.asyncio
    async def test_unknown_delivery(self, auth_client: AsyncClient):
        delivery_id = uuid.uuid4()
        assert (await auth_client.get(f"/api/v1/deliveries/{delivery_id}")).status_code == 404
        response = await auth_client.get(f"/api/v1/deliveries/{delivery_id}/attempts")
        assert response.status_code == 404
