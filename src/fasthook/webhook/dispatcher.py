"""Webhook dispatcher worker."""

import asyncio
import contextlib
import logging
import socket
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fasthook import __version__
from fasthook.config import Settings, get_settings
from fasthook.crypto import open_secret
from fasthook.db.enums import AttemptOutcome, DeliveryStatus, TransportErrorKind
from fasthook.db.models import Delivery, DeliveryAttempt, Endpoint, Event
from fasthook.db.session import get_async_session_factory
from fasthook.errors import HTTPError, StorageError, TransportError
from fasthook.metrics.definitions import (
    STALE_CLAIMS_TOTAL,
    STORAGE_ERRORS_TOTAL,
    WEBHOOK_ATTEMPT_DURATION,
    WEBHOOK_ATTEMPTS_TOTAL,
    WEBHOOK_DELIVERIES_TOTAL,
)
from fasthook.signing import SIGNATURE_PREFIX, canonicalize, sign
from fasthook.webhook.log import append_attempt
from fasthook.webhook.queue import (
    claim_due_deliveries,
    mark_succeeded,
    mark_terminal,
    release_stale_claims,
    reschedule_delivery,
)
from fasthook.webhook.retry import RetryPolicy, classify_status
from fasthook.webhook.url_validator import BlockedAddressError, create_delivery_client

logger = logging.getLogger(__name__)

USER_AGENT = f"FastHook/{__version__}"
TEST_EVENT_TYPE = "webhook.test"
ENDPOINT_DISABLED = "endpoint disabled"

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "no address associated",
    "getaddrinfo failed",
)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def build_envelope(
    event_id: uuid.UUID | str,
    event_type: str,
    occurred_at: datetime,
    data: Any,
) -> dict[str, Any]:
    """Wrap an event payload in the body sent to endpoints.

    ``data`` is passed through unmodified.
    """
    return {
        "id": str(event_id),
        "type": event_type,
        "occurred_at": occurred_at.isoformat(),
        "data": data,
    }


def build_headers(
    signature: str,
    timestamp: int,
    event_type: str,
    delivery_id: uuid.UUID | str,
    event_id: uuid.UUID | str,
    attempt_number: int,
) -> dict[str, str]:
    """Headers for one delivery attempt."""
    return {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        "X-Webhook-Signature": signature,
        "X-Webhook-Timestamp": str(timestamp),
        "X-Webhook-Event": event_type,
        "X-Webhook-Delivery-Id": str(delivery_id),
        "X-Webhook-Event-Id": str(event_id),
        "X-Webhook-Attempt": str(attempt_number),
    }


def _is_dns_failure(exc: BaseException) -> bool:
    current: BaseException | None = exc
    for _ in range(10):
        if current is None:
            break
        if isinstance(current, socket.gaierror):
            return True
        current = current.__cause__ or current.__context__
    message = str(exc).lower()
    return any(marker in message for marker in _DNS_MARKERS)


async def send_webhook(
    client: httpx.AsyncClient,
    url: str,
    body: bytes,
    headers: dict[str, str],
    timeout: float,
) -> httpx.Response:
    """POST an already-serialized body to an endpoint.

    Any HTTP answer is returned as is, whatever its status; only failures
    to obtain an answer raise.

    Raises:
        TransportError: On timeouts, connection failures, DNS failures,
            protocol errors or a blocked target address.
    """
    try:
        return await client.post(url, content=body, headers=headers, timeout=timeout)
    except BlockedAddressError as e:
        logger.warning(f"Blocked webhook to {url}: {e}")
        raise TransportError(TransportErrorKind.BLOCKED.value, str(e)) from e
    except httpx.TimeoutException as e:
        raise TransportError(TransportErrorKind.TIMEOUT.value, "Request timed out") from e
    except httpx.ConnectError as e:
        if _is_dns_failure(e):
            raise TransportError(TransportErrorKind.DNS.value, f"DNS lookup failed: {e}") from e
        raise TransportError(TransportErrorKind.CONNECTION.value, f"Connection error: {e}") from e
    except (httpx.ProtocolError, httpx.DecodingError, httpx.UnsupportedProtocol) as e:
        raise TransportError(TransportErrorKind.PROTOCOL.value, f"Protocol error: {e}") from e
    except httpx.TransportError as e:
        raise TransportError(TransportErrorKind.CONNECTION.value, f"Connection error: {e}") from e


@dataclass
class AttemptResult:
    """What a single HTTP call produced."""

    outcome: AttemptOutcome
    status_code: int | None = None
    error_kind: str | None = None
    error: str | None = None
    response_excerpt: str | None = None
    latency_ms: float = 0.0


async def _attempt(
    client: httpx.AsyncClient,
    url: str,
    body: bytes,
    headers: dict[str, str],
    settings: Settings,
) -> AttemptResult:
    start_time = time.perf_counter()
    try:
        response = await send_webhook(client, url, body, headers, settings.webhook_timeout)
    except TransportError as e:
        result = AttemptResult(
            outcome=AttemptOutcome.RETRYABLE if e.retryable else AttemptOutcome.TERMINAL,
            error_kind=e.kind,
            error=e.summary(),
        )
    else:
        excerpt = response.text[: settings.webhook_response_excerpt_size] or None
        outcome = classify_status(response.status_code)
        error = None
        if outcome != AttemptOutcome.SUCCEEDED:
            error = HTTPError(response.status_code, excerpt or "").summary()
        result = AttemptResult(
            outcome=outcome,
            status_code=response.status_code,
            error=error,
            response_excerpt=excerpt,
        )

    duration = time.perf_counter() - start_time
    result.latency_ms = round(duration * 1000, 3)
    WEBHOOK_ATTEMPT_DURATION.observe(duration)
    WEBHOOK_ATTEMPTS_TOTAL.labels(outcome=result.outcome.value).inc()
    return result


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as e:
        raise StorageError(f"Delivery store unavailable: {e}") from e


async def _refresh_endpoint(session: AsyncSession, endpoint_id: uuid.UUID) -> Endpoint | None:
    try:
        return await session.get(Endpoint, endpoint_id, populate_existing=True)
    except SQLAlchemyError as e:
        raise StorageError(f"Endpoint store unavailable: {e}") from e


async def process_delivery(
    session: AsyncSession,
    delivery: Delivery,
    client: httpx.AsyncClient,
    settings: Settings,
    policy: RetryPolicy | None = None,
    worker_id: str | None = None,
    clock: Clock = utcnow,
) -> AttemptOutcome | None:
    """Run one claimed delivery through a single attempt.

    The attempt is appended to the log and committed before the delivery
    transitions, so a crash in between leaves a record the stale-claim
    sweep can finish from.

    Args:
        session: Session owned by this delivery
        delivery: An ``in_flight`` delivery claimed by this worker
        client: HTTP client used for the POST
        settings: Application settings
        policy: Retry policy (built from settings if omitted)
        worker_id: Recorded on the attempt
        clock: Source of the current time

    Returns:
        The attempt outcome, or None if the delivery was not attempted
        because this worker no longer holds the claim.

    Raises:
        StorageError: If the queue or log store is unavailable.
    """
    policy = policy or RetryPolicy.from_settings(settings)
    token = delivery.claim_token
    logger.debug(f"Processing delivery {delivery.id}")

    endpoint = await _refresh_endpoint(session, delivery.endpoint_id)
    if endpoint is None or not endpoint.is_enabled:
        if await mark_terminal(session, delivery.id, token, ENDPOINT_DISABLED, now=clock()):
            WEBHOOK_DELIVERIES_TOTAL.labels(status=DeliveryStatus.FAILED_TERMINAL.value).inc()
        await _commit(session)
        return AttemptOutcome.TERMINAL

    try:
        event = await session.get(Event, delivery.event_id)
    except SQLAlchemyError as e:
        raise StorageError(f"Event store unavailable: {e}") from e

    body = canonicalize(
        build_envelope(event.id, event.event_type, event.occurred_at, event.payload)
    )
    secret = open_secret(endpoint.secret, settings.encryption_key)
    signed_at = clock()
    signature = sign(
        secret,
        body,
        timestamp=int(signed_at.timestamp()),
        encoding=settings.signature_encoding,
    )
    header_value = f"{SIGNATURE_PREFIX}{signature.value}"
    headers = build_headers(
        signature=header_value,
        timestamp=signature.timestamp,
        event_type=event.event_type,
        delivery_id=delivery.id,
        event_id=event.id,
        attempt_number=delivery.attempts + 1,
    )

    result = await _attempt(client, endpoint.url, body, headers, settings)

    attempt = DeliveryAttempt(
        delivery_id=delivery.id,
        signature=header_value,
        signed_at=signature.timestamp,
        status_code=result.status_code,
        error_kind=result.error_kind,
        error=result.error,
        latency_ms=result.latency_ms,
        response_excerpt=result.response_excerpt,
        outcome=result.outcome.value,
        worker_id=worker_id,
        created_at=clock(),
    )
    stored = await append_attempt(session, attempt, claim_token=token)
    await _commit(session)
    if stored is None:
        return None

    now = clock()
    if result.outcome == AttemptOutcome.SUCCEEDED:
        done = await mark_succeeded(session, delivery.id, token, result.status_code, now=now)
        final_status = DeliveryStatus.SUCCEEDED
    elif result.outcome == AttemptOutcome.RETRYABLE:
        # Disabling may have happened while the request was in flight
        endpoint = await _refresh_endpoint(session, delivery.endpoint_id)
        if endpoint is None or not endpoint.is_enabled:
            done = await mark_terminal(
                session, delivery.id, token, ENDPOINT_DISABLED, result.status_code, now=now
            )
            final_status = DeliveryStatus.FAILED_TERMINAL
        elif policy.has_attempts_remaining(stored.attempt_number):
            not_before = policy.next_attempt_at(
                stored.attempt_number, now, previous=delivery.next_attempt_at
            )
            await reschedule_delivery(
                session,
                delivery.id,
                token,
                not_before,
                result.error or "",
                result.status_code,
                now=now,
            )
            done, final_status = False, None
        else:
            done = await mark_terminal(
                session,
                delivery.id,
                token,
                f"max attempts exceeded: {result.error}",
                result.status_code,
                now=now,
            )
            final_status = DeliveryStatus.FAILED_TERMINAL
    else:
        done = await mark_terminal(
            session,
            delivery.id,
            token,
            result.error or "delivery failed",
            result.status_code,
            now=now,
        )
        final_status = DeliveryStatus.FAILED_TERMINAL

    await _commit(session)
    if done and final_status is not None:
        WEBHOOK_DELIVERIES_TOTAL.labels(status=final_status.value).inc()
    return result.outcome


@dataclass
class PingResult:
    """Result of a test ping."""

    success: bool
    status_code: int | None
    error: str | None
    response_time_ms: float


async def send_test_webhook(
    endpoint: Endpoint,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
    clock: Clock = utcnow,
) -> PingResult:
    """Send a signed ``webhook.test`` ping to an endpoint.

    Nothing is persisted; the call is made even for disabled endpoints so
    they can be checked before being enabled again.
    """
    settings = settings or get_settings()
    now = clock()
    event_id = uuid.uuid4()
    body = canonicalize(
        build_envelope(event_id, TEST_EVENT_TYPE, now, {"endpoint_id": str(endpoint.id)})
    )
    signature = sign(
        open_secret(endpoint.secret, settings.encryption_key),
        body,
        timestamp=int(now.timestamp()),
        encoding=settings.signature_encoding,
    )
    headers = build_headers(
        signature=f"{SIGNATURE_PREFIX}{signature.value}",
        timestamp=signature.timestamp,
        event_type=TEST_EVENT_TYPE,
        delivery_id=uuid.uuid4(),
        event_id=event_id,
        attempt_number=1,
    )

    owns_client = client is None
    if client is None:
        client = create_delivery_client(
            settings.webhook_timeout,
            block_private=settings.webhook_block_private_networks,
            allowed_internal_domains=settings.webhook_allowed_internal_domains,
        )
    try:
        start_time = time.perf_counter()
        try:
            response = await send_webhook(
                client, endpoint.url, body, headers, settings.webhook_timeout
            )
        except TransportError as e:
            status_code, error = None, e.summary()
        else:
            status_code = response.status_code
            error = None if response.is_success else HTTPError(status_code, response.text).summary()
        elapsed_ms = (time.perf_counter() - start_time) * 1000
    finally:
        if owns_client:
            await client.aclose()

    return PingResult(
        success=error is None,
        status_code=status_code,
        error=error,
        response_time_ms=round(elapsed_ms, 2),
    )


class WebhookWorker:
    """Background worker that processes the webhook delivery queue."""

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        client: httpx.AsyncClient | None = None,
        worker_id: str | None = None,
        clock: Clock = utcnow,
        policy: RetryPolicy | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.worker_id = worker_id or f"{self.settings.instance_id}-{uuid.uuid4().hex[:6]}"
        self.clock = clock
        self.policy = policy or RetryPolicy.from_settings(self.settings)
        self._client = client
        self._owns_client = client is None
        self._running = False
        self._task: asyncio.Task | None = None

    def _session(self) -> AsyncSession:
        factory = self.session_factory or get_async_session_factory()
        return factory()

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = create_delivery_client(
                self.settings.webhook_timeout,
                block_private=self.settings.webhook_block_private_networks,
                allowed_internal_domains=self.settings.webhook_allowed_internal_domains,
            )
        return self._client

    async def _close_http_client(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _process_single_delivery(self, delivery_id: uuid.UUID, claim_token: str) -> None:
        """Process a single delivery with its own database session.

        Each delivery gets its own session to avoid SQLAlchemy session
        sharing issues during concurrent processing.
        """
        async with self._session() as session:
            try:
                delivery = await session.get(Delivery, delivery_id)
            except SQLAlchemyError as e:
                raise StorageError(f"Delivery queue unavailable: {e}") from e

            if delivery is None or delivery.claim_token != claim_token:
                logger.warning(f"Delivery {delivery_id} was reclaimed before processing")
                return

            await process_delivery(
                session,
                delivery,
                self._get_http_client(),
                self.settings,
                policy=self.policy,
                worker_id=self.worker_id,
                clock=self.clock,
            )

    async def sweep_stale_claims(self) -> int:
        """Recover deliveries left in flight by crashed workers."""
        async with self._session() as session:
            recovered = await release_stale_claims(
                session,
                self.settings.stale_claim_after,
                self.policy,
                now=self.clock(),
            )
            await _commit(session)
        if recovered:
            STALE_CLAIMS_TOTAL.inc(recovered)
        return recovered

    async def process_batch(self) -> int:
        """Process a batch of due deliveries.

        Returns:
            Number of deliveries processed

        Raises:
            StorageError: If the queue or log store is unavailable.
        """
        await self.sweep_stale_claims()

        # Claim deliveries in one session
        async with self._session() as session:
            deliveries = await claim_due_deliveries(
                session,
                limit=self.settings.worker_batch_size,
                worker_id=self.worker_id,
                now=self.clock(),
            )
            await _commit(session)

            if not deliveries:
                return 0

            claims = [(d.id, d.claim_token) for d in deliveries]

        logger.debug(f"Worker {self.worker_id} processing {len(claims)} deliveries")

        tasks = [self._process_single_delivery(delivery_id, token) for delivery_id, token in claims]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        storage_error: StorageError | None = None
        for (delivery_id, _), result in zip(claims, results, strict=True):
            if isinstance(result, StorageError):
                storage_error = storage_error or result
            elif isinstance(result, Exception):
                logger.error(
                    f"Delivery {delivery_id} processing failed: {result}",
                    exc_info=result,
                )

        if storage_error is not None:
            raise storage_error
        return len(claims)

    async def run(self) -> None:
        """Run the worker loop."""
        self._running = True
        logger.info(f"Webhook worker {self.worker_id} started")

        while self._running:
            try:
                processed = await self.process_batch()
                if processed == 0:
                    # No work available, wait before checking again
                    await asyncio.sleep(self.settings.worker_poll_interval)
            except StorageError as e:
                STORAGE_ERRORS_TOTAL.inc()
                logger.error(f"Storage unavailable in webhook worker {self.worker_id}: {e}")
                await asyncio.sleep(self.settings.worker_poll_interval)
            except Exception:
                logger.exception("Error in webhook worker loop")
                await asyncio.sleep(self.settings.worker_poll_interval)

        logger.info(f"Webhook worker {self.worker_id} stopped")

    def start(self) -> None:
        """Start the worker in the background."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop the worker and clean up resources."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
        await self.wait()
        await self._close_http_client()

    async def wait(self) -> None:
        """Wait for the worker to finish."""
        if self._task:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task


class WorkerPool:
    """Several webhook workers in one process sharing an HTTP client."""

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        count: int | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.count = count or self.settings.worker_count
        self._owns_client = client is None
        self._client = client or create_delivery_client(
            self.settings.webhook_timeout,
            block_private=self.settings.webhook_block_private_networks,
            allowed_internal_domains=self.settings.webhook_allowed_internal_domains,
        )
        self.workers = [
            WebhookWorker(
                self.settings,
                session_factory=session_factory,
                client=self._client,
                worker_id=f"{self.settings.instance_id}-{index}",
            )
            for index in range(self.count)
        ]

    def start(self) -> None:
        for worker in self.workers:
            worker.start()
        logger.info(f"Started {self.count} webhook workers")

    async def stop(self) -> None:
        await asyncio.gather(*(worker.stop() for worker in self.workers))
        if self._owns_client:
            await self._client.aclose()

    async def wait(self) -> None:
        await asyncio.gather(*(worker.wait() for worker in self.workers))
