from __future__ import annotations
import time
from fastapi import Response, Request
from prometheus_client import (
    Counter, Histogram, Gauge, CollectorRegistry,
    CONTENT_TYPE_LATEST, generate_latest
)
from ..config import get_settings

S = get_settings()

REGISTRY = CollectorRegistry(auto_describe=True)

# ---------- Metric definitions ----------
HTTP_REQS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"], registry=REGISTRY)
HTTP_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency", ["method", "path"], registry=REGISTRY)

ALLOCATIONS = Counter("allocations_total", "Allocation outcomes", ["outcome"], registry=REGISTRY)  # assigned|pending|rejected|exhausted|error
ALLOC_RETRIES = Counter("allocation_retries_total", "Contention retries", ["operation"], registry=REGISTRY)
PENDING_RESOLVED = Counter("pending_resolved_total", "Pending assignments completed by the sweeper", ["resource"], registry=REGISTRY)
RELEASES = Counter("releases_total", "Registrants released", registry=REGISTRY)
SWEEPS_REQUESTED = Counter("sweeps_requested_total", "Sweep triggers enqueued", ["reason"], registry=REGISTRY)
SWEEP_DURATION = Histogram("sweep_duration_seconds", "Reconciliation pass duration", registry=REGISTRY)
PENDING_GAUGE = Gauge("pending_registrants", "Registrants still waiting after the last sweep", ["resource"], registry=REGISTRY)

# ---------- /metrics endpoint factory ----------
def metrics_app():
    async def _metrics(_: Request):
        if not S.METRICS_ENABLED:
            return Response(status_code=404)
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)
    return _metrics

# ---------- HTTP middleware for latency/counters ----------
class MetricsHTTPMiddleware:
    def __init__(self, app):
        self.app = app
    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)
        method = scope["method"]
        t0 = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                # route template keeps label cardinality bounded (no ids in paths)
                path = getattr(scope.get("route"), "path", None) or scope["path"]
                HTTP_REQS.labels(method=method, path=path, status=message["status"]).inc()
                HTTP_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - t0)
            await send(message)

        await self.app(scope, receive, send_wrapper)
