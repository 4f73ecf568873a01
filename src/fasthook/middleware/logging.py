"""Request logging middleware for API observability."""

import logging
import time
import uuid
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("fasthook.access")

REQUEST_ID_HEADER = "X-Request-Id"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that writes one access log line per request.

    Logs the client address, method, path, status, duration and whether an
    API key was presented (never the key itself). A request id is taken
    from ``X-Request-Id`` or generated, and echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        client_ip = request.client.host if request.client else "unknown"
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # First address in the chain is the original client
            client_ip = forwarded_for.split(",")[0].strip()

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        has_key = "yes" if request.headers.get("X-API-Key") else "no"

        try:
            response: Response = await call_next(request)
        except Exception:
            process_time_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "%s %s %s 500 %.2fms key=%s rid=%s",
                client_ip,
                request.method,
                request.url.path,
                process_time_ms,
                has_key,
                request_id,
            )
            raise

        process_time_ms = (time.perf_counter() - start_time) * 1000

        # Format: IP METHOD PATH STATUS TIME_MS KEY RID
        logger.info(
            "%s %s %s %d %.2fms key=%s rid=%s",
            client_ip,
            request.method,
            request.url.path,
            response.status_code,
            process_time_ms,
            has_key,
            request_id,
        )

        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
