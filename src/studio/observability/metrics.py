"""Prometheus metrics for the Component Studio backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus generation latency and outcome series fed by the generation client.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "studio_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

GENERATION_LATENCY = Histogram(
    "studio_generation_latency_seconds",
    "Latency of generative backend calls in seconds",
    labelnames=("provider",),
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
)

GENERATION_OUTCOMES = Counter(
    "studio_generation_total",
    "Generative backend calls by outcome",
    labelnames=("outcome",),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /sessions/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 2 and segs[1] == "api":
        return "/api/" + segs[2]
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        if request.url.path in ("/metrics", "/api/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        REQUEST_LATENCY.labels(
            method=request.method,
            path=sanitize_path(request.url.path),
            status=str(response.status_code),
        ).observe(elapsed)
        return response

    return middleware
