"""
identity_portal.errors

Shared error taxonomy.

Responsibilities:
- Define one exception type per failure class surfaced to callers.
- Carry a stable machine-readable code and the HTTP status each maps to.
- Render the JSON error envelope used by every endpoint.
"""

from __future__ import annotations

from typing import Any

from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)


class IdentityPortalError(Exception):
    """
    Base class for every error the service maps to an HTTP response.
    """

    code = "INTERNAL"
    status_code = HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(IdentityPortalError):
    code = "UNAUTHENTICATED"
    status_code = HTTP_401_UNAUTHORIZED
    default_message = "authentication required"


class MalformedToken(IdentityPortalError):
    code = "MALFORMED_TOKEN"
    status_code = HTTP_401_UNAUTHORIZED
    default_message = "token is missing required claims"


class Forbidden(IdentityPortalError):
    code = "FORBIDDEN"
    status_code = HTTP_403_FORBIDDEN
    default_message = "insufficient privilege"


class NoEligibleRole(IdentityPortalError):
    code = "NO_ELIGIBLE_ROLE"
    status_code = HTTP_403_FORBIDDEN
    default_message = "group membership does not grant any role"


class KeyMismatch(Forbidden):
    code = "KEY_MISMATCH"
    default_message = "submitted public key does not match your registered SSH key"


class InvalidPublicKey(IdentityPortalError):
    code = "INVALID_PUBLIC_KEY"
    status_code = HTTP_400_BAD_REQUEST
    default_message = "invalid SSH public key"


class InvalidRequest(IdentityPortalError):
    code = "INVALID_REQUEST"
    status_code = HTTP_400_BAD_REQUEST
    default_message = "invalid request"


class NotFound(IdentityPortalError):
    code = "NOT_FOUND"
    status_code = HTTP_404_NOT_FOUND
    default_message = "resource not found"


class Conflict(IdentityPortalError):
    code = "CONFLICT"
    status_code = HTTP_409_CONFLICT
    default_message = "resource already exists"


class UpstreamUnavailable(IdentityPortalError):
    """
    An upstream (identity provider, PKI backend, platform identity) is unreachable,
    sealed, or answered with something unusable. Callers may retry.
    """

    code = "UPSTREAM_UNAVAILABLE"
    status_code = HTTP_503_SERVICE_UNAVAILABLE
    default_message = "upstream service unavailable"

    def __init__(
        self,
        message: str | None = None,
        *,
        upstream: str = "unknown",
        sealed: bool = False,
        bad_response: bool = False,
        retry_after: int = 5,
    ) -> None:
        super().__init__(message)
        self.upstream = upstream
        self.sealed = sealed
        self.retry_after = retry_after
        # A reachable upstream that answered nonsense is a gateway error, not an outage.
        if bad_response:
            self.status_code = HTTP_502_BAD_GATEWAY


class AuditWriteFailed(IdentityPortalError):
    code = "AUDIT_WRITE_FAILED"
    status_code = HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "operation completed but the audit record could not be written"


class Internal(IdentityPortalError):
    code = "INTERNAL"
    status_code = HTTP_500_INTERNAL_SERVER_ERROR


def validate_path_segment(value: str) -> str:
    """Reject values that would change the upstream URL path they are interpolated into."""

    if value in ("", ".", "..") or "/" in value or "\\" in value:
        raise InvalidRequest(f"invalid path segment: {value!r}")
    return value


def error_body(code: str, message: str, request_id: str | None) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "request_id": request_id}}


# --- Module Notes -----------------------------------------------------------
# Handlers never build HTTP errors by hand; they raise one of these types and
# `api.errors` renders the envelope (plus WWW-Authenticate / Retry-After headers).
