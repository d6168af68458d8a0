"""
identity_portal.api.errors

Exception handlers mapping the error taxonomy onto HTTP responses.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from identity_portal.errors import IdentityPortalError, UpstreamUnavailable, error_body
from identity_portal.observability.logging import get_logger

log = get_logger(__name__)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def _portal_error(request: Request, exc: IdentityPortalError) -> JSONResponse:
    headers: dict[str, str] = {}
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = 'Bearer realm="identity-portal"'
    if isinstance(exc, UpstreamUnavailable):
        headers["Retry-After"] = str(exc.retry_after)

    if exc.status_code >= 500:
        log.error("request_failed", code=exc.code, error=exc.message)
    else:
        log.info("request_rejected", code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, _request_id(request)),
        headers=headers,
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()))
    message = f"{loc}: {first.get('msg', 'invalid value')}" if loc else "invalid request"
    return JSONResponse(
        status_code=422,
        content=error_body("INVALID_REQUEST", message, _request_id(request)),
    )


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Routing-level errors (unknown path, wrong method) use the same envelope.
    if exc.status_code == 404:
        code = "NOT_FOUND"
    elif exc.status_code >= 500:
        code = "INTERNAL"
    else:
        code = "INVALID_REQUEST"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail), _request_id(request)),
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IdentityPortalError, _portal_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_error)  # type: ignore[arg-type]


# --- Module Notes -----------------------------------------------------------
# Anything that is not handled here falls through to RecoveryMiddleware.
