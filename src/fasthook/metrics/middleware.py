"""Prometheus metrics middleware for FastAPI."""

import time
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

from fasthook.metrics.definitions import REQUEST_DURATION, REQUEST_TOTAL

UNMATCHED_ROUTE = "<unmatched>"


def _route_label(request: Request) -> str:
    """Route template for labeling (``/api/v1/endpoints/{endpoint_id}``).

    Uses the route recorded in the scope when the router exposes it, and
    otherwise matches the request against the application's routes. Paths
    no route matches share one label so arbitrary URLs cannot blow up the
    label cardinality.
    """
    route = request.scope.get("route")
    if getattr(route, "path", None):
        return route.path

    app = request.scope.get("app")
    partial = None
    for candidate in getattr(app, "routes", []):
        match, _ = candidate.matches(request.scope)
        if match == Match.FULL:
            return candidate.path
        if match == Match.PARTIAL and partial is None:
            partial = candidate.path
    return partial or UNMATCHED_ROUTE


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that collects Prometheus metrics for API requests.

    Metrics collected:
    - fasthook_requests_total: requests by method, route and status
    - fasthook_request_duration_seconds: request durations by method and route
    """

    EXCLUDED_PATHS = {"/metrics", "/api/v1/health", "/api/v1/ready"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        status_code = 500
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = _route_label(request)
            REQUEST_TOTAL.labels(
                method=request.method,
                endpoint=route,
                status_code=status_code,
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=route,
            ).observe(time.perf_counter() - start_time)
