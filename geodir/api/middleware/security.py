"""Request-scoped middleware: request ids, HTTP metrics and response hardening."""

import secrets
import time
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from geodir.config import get_settings
from geodir.monitoring.metrics import get_metrics

logger = structlog.get_logger()

_LOCAL_DEV_PORTS = (3000, 5173, 8080)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, bind it into structlog and time the call.

    An inbound `X-Request-ID` is reused so ids line up with the upstream proxy.
    The id is echoed back and also appears in error bodies.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or secrets.token_hex(8)
        request.state.request_id = request_id
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)

        # Label by route template, not raw path, to keep label cardinality bounded.
        route = request.scope.get("route")
        get_metrics().track_http_request(
            request.method,
            getattr(route, "path", None) or "unmatched",
            response.status_code,
            time.perf_counter() - started,
        )
        response.headers["X-Request-ID"] = request_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        return response


def get_cors_origins() -> list[str]:
    settings = get_settings()
    origins = list(settings.cors_origins)
    if settings.environment != "production":
        for host in ("localhost", "127.0.0.1"):
            origins.extend(f"http://{host}:{port}" for port in _LOCAL_DEV_PORTS)
    return list(dict.fromkeys(origins))
