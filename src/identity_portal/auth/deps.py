"""
identity_portal.auth.deps

FastAPI dependency functions for authentication and authorization.

Responsibilities:
- Convert a bearer token into a typed `Principal`.
- Enforce the admin-only gate for directory administration (denials are audited).
"""

from __future__ import annotations

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from identity_portal.api.deps import services_dep
from identity_portal.auth.models import Principal
from identity_portal.errors import Forbidden, NoEligibleRole, Unauthenticated
from identity_portal.observability.audit import AuditEvent, AuditResult
from identity_portal.services.container import Services

_bearer = HTTPBearer(auto_error=False)


async def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    services: Services = Depends(services_dep),
) -> Principal:
    # Authn: require a bearer token.
    if creds is None or not creds.credentials:
        raise Unauthenticated("missing bearer token")

    principal = await services.tokens.validate(creds.credentials)
    structlog.contextvars.bind_contextvars(user=principal.username)
    return principal


async def require_admin(
    request: Request,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Principal:
    # Authz: only the single top-precedence role may administer the directory.
    try:
        role = services.resolver.resolve(principal.groups)
    except NoEligibleRole:
        role = None
    if role is None or role != services.resolver.admin_role:
        await services.audit.emit_best_effort(
            AuditEvent(
                actor=principal.username,
                action="directory.access",
                target=request.url.path,
                result=AuditResult.denied,
                details={"method": request.method, "role": role.name if role else None},
            )
        )
        if role is None:
            raise NoEligibleRole()
        raise Forbidden("administrator role required")
    return principal


# --- Module Notes -----------------------------------------------------------
# `require_admin` resolves the role itself so a caller with no eligible group gets
# NO_ELIGIBLE_ROLE rather than a generic FORBIDDEN.
