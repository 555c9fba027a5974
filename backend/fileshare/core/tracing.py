import json
import logging
import os
import time
import uuid
from typing import Optional

import sentry_sdk
from fastapi import FastAPI, Request
from prometheus_client import Counter, Histogram
from sentry_sdk.integrations.fastapi import FastApiIntegration
from starlette.middleware.base import BaseHTTPMiddleware

from fileshare.core.config import get_settings


_REQ_COUNT = Counter(
    "fs_http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)
_REQ_LATENCY = Histogram(
    "fs_http_request_duration_seconds",
    "HTTP request duration (seconds)",
    ["method", "route"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)


def _release() -> Optional[str]:
    return os.getenv("RENDER_GIT_COMMIT") or os.getenv("GIT_SHA") or None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Lightweight middleware that adds a request ID and logs basic request/response
    information. This gives us a minimal level of observability in production.
    """

    async def dispatch(self, request: Request, call_next):
        # Propagate a request id if provided by upstream (e.g. CDN / proxy), else generate.
        request_id = (
            request.headers.get("x-request-id")
            or request.headers.get("x-requestid")
            or str(uuid.uuid4())
        )
        start = time.time()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = int((time.time() - start) * 1000)
            payload = self._payload(request, request_id, 500, duration_ms)
            payload["event"] = "http_exception"
            logging.getLogger("fs.http").exception(json.dumps(payload, ensure_ascii=False))
            raise

        duration_ms = int((time.time() - start) * 1000)
        payload = self._payload(request, request_id, response.status_code, duration_ms)

        # Log level by status family
        logger = logging.getLogger("fs.http")
        if response.status_code >= 500:
            logger.error(json.dumps(payload, ensure_ascii=False))
        elif response.status_code >= 400:
            logger.warning(json.dumps(payload, ensure_ascii=False))
        else:
            logger.info(json.dumps(payload, ensure_ascii=False))

        # Prometheus metrics (skip self-scrape + health)
        route = payload["route"]
        if route not in ("/metrics", "/health", "/healthz", "/readyz"):
            _REQ_COUNT.labels(request.method, route, str(response.status_code)).inc()
            _REQ_LATENCY.labels(request.method, route).observe((time.time() - start))

        response.headers["X-Request-ID"] = request_id
        return response

    @staticmethod
    def _payload(request: Request, request_id: str, status_code: int, duration_ms: int) -> dict:
        route_obj = request.scope.get("route")
        route = getattr(route_obj, "path", None) or request.url.path
        # Never log the share password passed as a query parameter.
        return {
            "event": "http_request",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "route": route,
            "status_code": status_code,
            "status_class": int(status_code // 100),
            "duration_ms": duration_ms,
            "client_ip": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
            "release": _release(),
        }


def configure_logging() -> None:
    """Configure a sane default logging setup for the backend."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    # Ensure our loggers are visible even if uvicorn already configured logging
    logging.getLogger("fs.http").setLevel(logging.INFO)
    logging.getLogger("fs.tracing").setLevel(logging.INFO)


def init_tracing(app: FastAPI) -> None:
    """
    Attach basic request logging and, if configured, error tracing (Sentry).
    """
    settings = get_settings()
    configure_logging()

    app.add_middleware(RequestLoggingMiddleware)

    dsn: Optional[str] = settings.sentry_dsn
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=(settings.sentry_env or settings.environment),
        release=_release(),
        integrations=[FastApiIntegration()],
        # Can be overridden in env; keep low by default
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.05")),
    )
    logging.getLogger("fs.tracing").info("Sentry tracing initialized")
