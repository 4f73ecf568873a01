"""Pytest configuration and fixtures for fasthook tests."""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Set required environment variables before any imports
os.environ.setdefault("FASTHOOK_ROOT_API_KEY", "test_root_api_key_12345")
os.environ.setdefault("FASTHOOK_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fasthook.config import Settings, clear_settings_cache, get_settings
from fasthook.db.models import Base, Delivery, Endpoint, Event
from fasthook.db.session import build_engine, build_session_factory, get_session
from fasthook.main import create_app
from fasthook.webhook.queue import enqueue_delivery
from fasthook.webhook.registry import SubscriptionRegistry

ROOT_API_KEY = "test_root_api_key_12345"
EPOCH = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = EPOCH):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now

    def set(self, when: datetime) -> datetime:
        self.now = when
        return self.now


class ScriptedEndpoint:
    """httpx handler answering with a fixed sequence of responses.

    Each item is a status code, or an exception instance to raise. The last
    item repeats once the script is exhausted. Received requests are kept
    for inspection.
    """

    def __init__(self, *script: int | Exception, body: str = ""):
        self.script = list(script) or [200]
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.script)) - 1
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step, text=self.body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scripted() -> Callable[..., ScriptedEndpoint]:
    return ScriptedEndpoint


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a file-backed SQLite database."""
    # Clear settings cache to ensure fresh settings
    clear_settings_cache()
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'fasthook.db'}",
        root_api_key=ROOT_API_KEY,
        api_host="127.0.0.1",
        api_port=18000,
        instance_id="test-instance",
        webhook_retry_jitter=0.0,
        webhook_max_attempts=5,
        worker_poll_interval=0.01,
        worker_batch_size=10,
    )


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with fresh tables."""
    engine = build_engine(test_settings)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def test_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def registry(test_session: AsyncSession, test_settings: Settings) -> SubscriptionRegistry:
    return SubscriptionRegistry(test_session, test_settings)


@pytest.fixture
def make_endpoint(
    registry: SubscriptionRegistry,
) -> Callable[..., Awaitable[Endpoint]]:
    """Factory registering an endpoint and committing it."""

    async def _make(
        url: str = "https://example.com/hook",
        event_types: list[str] | None = None,
        secret: str | None = "whsec_test_endpoint_secret",
    ) -> Endpoint:
        endpoint = await registry.register(url, event_types or ["order.created"], secret=secret)
        await registry.session.commit()
        return endpoint

    return _make


@pytest.fixture
def make_delivery(
    test_session: AsyncSession,
    make_endpoint: Callable[..., Awaitable[Endpoint]],
    clock: FakeClock,
) -> Callable[..., Awaitable[Delivery]]:
    """Factory creating an event and a pending delivery of it, due now."""

    async def _make(
        endpoint: Endpoint | None = None,
        event_type: str = "order.created",
        payload: dict | None = None,
    ) -> Delivery:
        endpoint = endpoint or await make_endpoint(event_types=[event_type])
        event = Event(
            event_type=event_type,
            payload=payload if payload is not None else {"order_id": 42},
            occurred_at=clock(),
            created_at=clock(),
        )
        test_session.add(event)
        await test_session.flush()
        delivery = await enqueue_delivery(test_session, event, endpoint, now=clock())
        await test_session.commit()
        return delivery

    return _make


@pytest_asyncio.fixture
async def app(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[FastAPI, None]:
    """Create test FastAPI application."""
    application = create_app(test_settings)

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_session] = override_get_session
    application.dependency_overrides[get_settings] = lambda: test_settings

    yield application

    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def auth_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create authenticated test HTTP client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-API-Key": ROOT_API_KEY},
    ) as ac:
        yield ac
