"""Prometheus metrics for signed link observability."""

import os
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    multiprocess,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match
from starlette.types import ASGIApp

# === Counters ===

SIGNATURE_CHECKS_TOTAL = Counter(
    "signedlinks_signature_checks_total",
    "Total signed URL checks",
    ["outcome"],  # outcome: valid, invalid, expired, misconfigured
)

HTTP_REQUESTS_TOTAL = Counter(
    "signedlinks_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

# === Histograms ===

HTTP_REQUEST_LATENCY = Histogram(
    "signedlinks_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)


# === Helper Functions ===


def record_signature_check(outcome: str) -> None:
    """Record the outcome of a signed URL check."""
    SIGNATURE_CHECKS_TOTAL.labels(outcome=outcome).inc()


def record_http_request(
    method: str,
    endpoint: str,
    status: int,
    latency: float,
) -> None:
    """Record an HTTP request."""
    HTTP_REQUESTS_TOTAL.labels(
        method=method,
        endpoint=endpoint,
        status=str(status),
    ).inc()
    HTTP_REQUEST_LATENCY.labels(
        method=method,
        endpoint=endpoint,
    ).observe(latency)


# === HTTP Endpoint ===

UNMATCHED_ENDPOINT = "unmatched"


def endpoint_label(request: Request) -> str:
    """Route template serving the request, so per-link paths share one series."""
    route = request.scope.get("route")
    if route is None:
        app = request.scope.get("app")
        routes = getattr(getattr(app, "router", None), "routes", ())
        for candidate in routes:
            match, _ = candidate.matches(request.scope)
            if match is not Match.NONE:
                route = candidate
                break

    path = getattr(route, "path", None)
    return path or UNMATCHED_ENDPOINT


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count and time requests per method, route template and status."""

    def __init__(self, app: ASGIApp, exclude_paths: list[str] | None = None) -> None:
        super().__init__(app)
        self._exclude_paths = set(exclude_paths or [])

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self._exclude_paths:
            return await call_next(request)

        endpoint = endpoint_label(request)
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            record_http_request(
                method=request.method,
                endpoint=endpoint,
                status=status,
                latency=time.perf_counter() - start,
            )


def _registry() -> CollectorRegistry:
    """Process registry, or one aggregating worker files under PROMETHEUS_MULTIPROC_DIR."""
    if not os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        return REGISTRY
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)  # type: ignore[no-untyped-call]
    return registry


async def metrics_endpoint(_request: Request) -> Response:
    """Signature check and request metrics in Prometheus text format."""
    return Response(generate_latest(_registry()), media_type=CONTENT_TYPE_LATEST)
