"""
identity_portal.observability.middleware

HTTP middleware for request-scoped context, access logging and recovery.

Responsibilities:
- Validate/propagate request IDs (generate one when absent or unsafe).
- Bind request metadata into structlog contextvars.
- Emit one access log line and HTTP metrics per request.
- Convert unhandled exceptions into the standard 500 envelope.
"""

from __future__ import annotations

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from identity_portal.errors import error_body
from identity_portal.observability.logging import get_logger
from identity_portal.observability.metrics import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL

REQUEST_ID_HEADER = "x-request-id"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

log = get_logger(__name__)


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path if isinstance(path, str) else "unmatched"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    - Ensures every request has a safe request id
    - Binds request-scoped contextvars for structured logs
    - Logs and measures each request
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        # Caller-provided ids are echoed into logs, so only accept a conservative charset.
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = incoming if _REQUEST_ID_RE.fullmatch(incoming) else uuid.uuid4().hex
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )
        started = time.perf_counter()
        status = 500
        try:
            response: Response = await call_next(request)
            status = response.status_code
        finally:
            elapsed = time.perf_counter() - started
            route = _route_template(request)
            HTTP_REQUESTS_TOTAL.labels(request.method, route, str(status)).inc()
            HTTP_REQUEST_DURATION.labels(request.method, route).observe(elapsed)
            log.info(
                "http_request",
                status=status,
                duration_ms=round(elapsed * 1000, 2),
                client=request.client.host if request.client else None,
            )
            # Avoid leaking context across requests under async concurrency.
            structlog.contextvars.clear_contextvars()

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RecoveryMiddleware(BaseHTTPMiddleware):
    """
    Last line of defence: anything not translated by the exception handlers
    becomes a generic 500 with the standard envelope. Details stay in the logs.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception:
            log.exception("unhandled_exception")
            request_id = getattr(request.state, "request_id", None)
            return JSONResponse(
                status_code=500,
                content=error_body("INTERNAL", "internal server error", request_id),
            )


# --- Module Notes -----------------------------------------------------------
# Install RecoveryMiddleware inside RequestContextMiddleware so the 500 it
# produces still carries the request id header and is counted in metrics.
