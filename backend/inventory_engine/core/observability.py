r"""backend\inventory_engine\core\observability.py"""

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

from .config import get_settings


_REQUEST_COUNTER = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
_LATENCY_HISTOGRAM = Histogram(
    "http_request_latency_seconds", "Request latency", ["method", "path"]
)

ENGINE_SKU_OUTCOMES = Counter(
    "engine_sku_outcomes_total",
    "Per-SKU outcomes of engine batch runs",
    ["mode", "outcome"],
)
ENGINE_BATCH_SECONDS = Histogram(
    "engine_batch_seconds",
    "Wall-clock duration of engine batch runs",
    ["mode"],
)

# Routes whose JSON body is inspected to attach a SKU to the access log.
_SKU_BODY_PREFIXES: tuple[str, ...] = (
    "/api/v1/forecasts",
    "/api/v1/reorder",
    "/api/v1/analysis",
)


def _sku_from_body(data: object) -> str | None:
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("sku"), (str, int)) and str(data["sku"]).strip():
        return str(data["sku"])
    inventory = data.get("inventory")
    if isinstance(inventory, list) and inventory and isinstance(inventory[0], dict):
        first = inventory[0].get("sku")
        if isinstance(first, (str, int)):
            return str(first)
    return None


class TokenAndRateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware enforcing auth, rate limiting, logging, and Prometheus metrics."""

    _lock: threading.Lock = threading.Lock()
    _buckets: dict[str, deque[float]] = defaultdict(deque)
    _last_sweep: float = 0.0
    _per_minute: int = get_settings().rate_limit_per_min
    # Auth is off under pytest unless a test sets ``_token`` explicitly.
    _token: str | None = None if os.getenv("PYTEST_CURRENT_TEST") else get_settings().api_token
    _exempt_prefixes: tuple[str, ...] = (
        "/api/v1/health",
        "/metrics",
        "/docs",
        "/redoc",
        "/openapi.json",
    )

    @classmethod
    def _evict_idle(cls, now: float) -> None:
        """Drop windows of clients with no request in the last minute."""

        idle = [ip for ip, window in cls._buckets.items() if not window or now - window[-1] > 60.0]
        for ip in idle:
            del cls._buckets[ip]
        cls._last_sweep = now

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        method = request.method
        client_ip = request.client.host if request.client else "unknown"
        request_id = (
            request.headers.get("x-request-id")
            or request.headers.get("request-id")
            or str(uuid.uuid4())
        )
        sku = None

        # Reading the body consumes it; the request is rebuilt with a replaying
        # ``receive`` so the route still sees the original payload.
        if method in {"POST", "PUT", "PATCH"} and path.startswith(_SKU_BODY_PREFIXES):
            try:
                body_bytes = await request.body()
            except Exception:
                body_bytes = b""

            if body_bytes:
                try:
                    sku = _sku_from_body(json.loads(body_bytes.decode("utf-8")))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    pass

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
                "model_used": response.headers.get("model_used") if hasattr(response, "headers") else None,
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
                if now - self._last_sweep > 60.0:
                    self._evict_idle(now)
                window = self._buckets[client_ip]
                while window and now - window[0] > 60.0:
                    window.popleft()
                if len(window) >= self._per_minute:
                    return _finalize(PlainTextResponse("Too Many Requests", status_code=429))
                window.append(now)

        try:
            response = await call_next(request)
        except Exception:
            # Record the failure, then let the exception propagate.
            _finalize(PlainTextResponse("Internal Server Error", status_code=500))
            raise

        return _finalize(response)


def metrics_endpoint() -> Response:
    """Return Prometheus metrics payload."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
