"""Tests for health and operations endpoints."""

import pytest
from httpx import AsyncClient

from fasthook import __version__


@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    """Test the health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == __version__
    assert data["instance_id"] == "test-instance"


@pytest.mark.asyncio
async def test_ready_endpoint(client: AsyncClient):
    """Readiness works without authentication and checks the database."""
    response = await client.get("/api/v1/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "ok", "queue": None}


@pytest.mark.asyncio
async def test_ready_with_queue_stats(client: AsyncClient, make_delivery):
    """Queue statistics are reported per status when requested."""
    await make_delivery()

    response = await client.get("/api/v1/ready", params={"include_queue": True})
    assert response.status_code == 200
    assert response.json()["queue"] == {
        "pending": 1,
        "in_flight": 0,
        "succeeded": 0,
        "failed_retryable": 0,
        "failed_terminal": 0,
    }

    metrics = await client.get("/metrics")
    assert 'fasthook_queue_depth{status="pending"} 1.0' in metrics.text


@pytest.mark.asyncio
async def test_metrics_endpoint(auth_client: AsyncClient):
    """Prometheus metrics are exposed at the root level."""
    await auth_client.get("/api/v1/endpoints")

    response = await auth_client.get("/metrics")
    assert response.status_code == 200
    assert "fasthook_requests_total" in response.text
    assert 'endpoint="/api/v1/endpoints"' in response.text


@pytest.mark.asyncio
async def test_metrics_label_uses_route_template(auth_client: AsyncClient):
    """Path parameters are collapsed into the route template."""
    await auth_client.get("/api/v1/endpoints/00000000-0000-0000-0000-000000000001")
    await auth_client.get("/api/v1/no-such-route/abc")

    response = await auth_client.get("/metrics")
    assert 'endpoint="/api/v1/endpoints/{endpoint_id}"' in response.text
    assert 'endpoint="<unmatched>"' in response.text
    assert "no-such-route" not in response.text


@pytest.mark.asyncio
async def test_request_id_echoed(client: AsyncClient):
    """Request ids are echoed back for correlation."""
    response = await client.get("/api/v1/health", headers={"X-Request-Id": "abc123"})
    assert response.headers["X-Request-Id"] == "abc123"
    assert "X-Process-Time-Ms" in response.headers


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient):
    response = await client.get("/api/v1/health")
    assert len(response.headers["X-Request-Id"]) == 32


class TestAuthentication:
    """Management routes require the API key."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("GET", "/api/v1/endpoints"),
            ("POST", "/api/v1/events"),
            ("GET", "/api/v1/deliveries/00000000-0000-0000-0000-000000000000"),
        ],
    )
    async def test_missing_key(self, client: AsyncClient, method, path):
        response = await client.request(method, path)
        assert response.status_code == 401
        assert response.json()["detail"] == "API key required"

    @pytest.mark.asyncio
    async def test_wrong_key(self, client: AsyncClient):
        response = await client.get("/api/v1/endpoints", headers={"X-API-Key": "nope"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"
        assert response.headers["WWW-Authenticate"] == "ApiKey"
