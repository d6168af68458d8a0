"""
identity_portal.api.routers.auth

Browser login flow and session endpoints.

Responsibilities:
- Redirect to the identity provider with PKCE + state (`/login`).
- Complete the code exchange and hand tokens to the portal UI (`/callback`).
- Best-effort provider logout and caller introspection (`/logout`, `/userinfo`).
"""

from __future__ import annotations

import secrets
from datetime import datetime

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from identity_portal.api.deps import services_dep, settings_dep
from identity_portal.auth.deps import get_principal
from identity_portal.auth.models import Principal
from identity_portal.errors import IdentityPortalError, NoEligibleRole, Unauthenticated
from identity_portal.observability.audit import AuditEvent, AuditResult
from identity_portal.services.container import Services
from identity_portal.settings import Settings

router = APIRouter(prefix="/auth", tags=["auth"])

LOGIN_COOKIE = "idp_login"
LOGIN_COOKIE_PATH = "/api/v1/auth"
LOGIN_COOKIE_MAX_AGE = 600


class CallbackResponse(BaseModel):
    access_token: str
    refresh_token: str | None
    id_token: str | None
    expires_in: int
    token_type: str
    username: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class LogoutResponse(BaseModel):
    status: str
    session_revoked: bool


class UserInfoResponse(BaseModel):
    subject: str
    username: str
    email: str
    groups: list[str]
    role: str | None
    expires_at: datetime


@router.get("/login", response_class=RedirectResponse, status_code=302)
async def login(
    services: Services = Depends(services_dep),
    settings: Settings = Depends(settings_dep),
) -> RedirectResponse:
    req = await services.oidc.begin_login()
    resp = RedirectResponse(req.url, status_code=302)
    # The verifier never leaves the browser<->portal channel; the provider only sees the challenge.
    resp.set_cookie(
        LOGIN_COOKIE,
        f"{req.state}.{req.code_verifier}",
        max_age=LOGIN_COOKIE_MAX_AGE,
        path=LOGIN_COOKIE_PATH,
        httponly=True,
        secure=settings.env == "prod",
        samesite="lax",
    )
    return resp


@router.get("/callback", response_model=CallbackResponse)
async def callback(
    request: Request,
    response: Response,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    services: Services = Depends(services_dep),
) -> CallbackResponse:
    response.delete_cookie(LOGIN_COOKIE, path=LOGIN_COOKIE_PATH)
    try:
        if error:
            raise Unauthenticated(f"identity provider returned error: {error}")
        cookie = request.cookies.get(LOGIN_COOKIE, "")
        expected_state, _, verifier = cookie.partition(".")
        if not code or not state or not expected_state or not verifier:
            raise Unauthenticated("login session missing or expired")
        if not secrets.compare_digest(expected_state, state):
            raise Unauthenticated("login state mismatch")

        tokens = await services.oidc.exchange_code(code=code, code_verifier=verifier)
        principal = await services.tokens.validate(tokens.access_token)
    except IdentityPortalError as e:
        await services.audit.emit_best_effort(
            AuditEvent(
                actor="anonymous",
                action="auth.login",
                target="portal",
                result=AuditResult.failure,
                details={"error": e.code},
            )
        )
        raise

    await services.audit.emit_best_effort(
        AuditEvent(
            actor=principal.username,
            action="auth.login",
            target="portal",
            result=AuditResult.success,
        )
    )
    return CallbackResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        id_token=tokens.id_token,
        expires_in=tokens.expires_in,
        token_type=tokens.token_type,
        username=principal.username,
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    body: LogoutRequest | None = None,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> LogoutResponse:
    revoked = False
    if body is not None and body.refresh_token:
        revoked = await services.oidc.logout(body.refresh_token)
    await services.audit.emit_best_effort(
        AuditEvent(
            actor=principal.username,
            action="auth.logout",
            target="portal",
            result=AuditResult.success,
            details={"session_revoked": revoked},
        )
    )
    return LogoutResponse(status="logged_out", session_revoked=revoked)


@router.get("/userinfo", response_model=UserInfoResponse)
async def userinfo(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> UserInfoResponse:
    try:
        role: str | None = services.resolver.resolve(principal.groups).name
    except NoEligibleRole:
        role = None
    return UserInfoResponse(
        subject=principal.subject,
        username=principal.username,
        email=principal.email,
        groups=sorted(principal.groups),
        role=role,
        expires_at=principal.expires_at,
    )


# --- Module Notes -----------------------------------------------------------
# None of these endpoints touch the PKI backend; login keeps working while it is degraded.
