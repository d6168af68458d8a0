"""
identity_portal.auth.oidc

OIDC discovery and the browser login flow (authorization code + PKCE).

Responsibilities:
- Fetch and cache the provider's discovery document (issuer-checked).
- Build authorization redirects with state + S256 code challenge.
- Exchange authorization codes for tokens and revoke sessions on logout.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import secrets
from dataclasses import dataclass
from typing import Any

import httpx

from identity_portal.errors import Unauthenticated, UpstreamUnavailable
from identity_portal.observability.logging import get_logger
from identity_portal.observability.metrics import UPSTREAM_REQUESTS_TOTAL

log = get_logger(__name__)

_UPSTREAM = "oidc"
_REQUIRED_DISCOVERY_FIELDS = ("jwks_uri", "authorization_endpoint", "token_endpoint")


def derive_code_challenge(code_verifier: str) -> str:
    """
    RFC 7636 S256: BASE64URL(SHA256(code_verifier)) without padding.
    """

    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class OIDCDiscovery:
    """
    Lazily fetched `.well-known/openid-configuration`. A failed fetch is not cached;
    the next caller tries again.
    """

    def __init__(self, *, http: httpx.AsyncClient, issuer_url: str) -> None:
        self._http = http
        self._issuer = issuer_url.rstrip("/")
        self._document: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    @property
    def issuer(self) -> str:
        return self._issuer

    async def document(self) -> dict[str, Any]:
        if self._document is not None:
            return self._document
        async with self._lock:
            if self._document is None:
                self._document = await self._fetch()
        return self._document

    async def endpoint(self, name: str) -> str | None:
        value = (await self.document()).get(name)
        return str(value) if value else None

    async def _fetch(self) -> dict[str, Any]:
        url = f"{self._issuer}/.well-known/openid-configuration"
        try:
            resp = await self._http.get(url)
        except httpx.TransportError as e:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "discovery", "error").inc()
            raise UpstreamUnavailable("identity provider unreachable", upstream=_UPSTREAM) from e
        if resp.status_code != 200:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "discovery", "error").inc()
            raise UpstreamUnavailable(
                f"discovery returned HTTP {resp.status_code}", upstream=_UPSTREAM
            )
        try:
            doc = resp.json()
        except ValueError as e:
            raise UpstreamUnavailable(
                "discovery document is not JSON", upstream=_UPSTREAM, bad_response=True
            ) from e

        # Never trust keys published under a different issuer than the one we validate against.
        discovered = str(doc.get("issuer", "")).rstrip("/")
        if discovered != self._issuer:
            log.error("oidc_issuer_mismatch", expected=self._issuer, discovered=discovered)
            raise UpstreamUnavailable(
                "discovery issuer mismatch", upstream=_UPSTREAM, bad_response=True
            )
        missing = [f for f in _REQUIRED_DISCOVERY_FIELDS if not doc.get(f)]
        if missing:
            raise UpstreamUnavailable(
                f"discovery document missing {', '.join(missing)}",
                upstream=_UPSTREAM,
                bad_response=True,
            )
        UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "discovery", "ok").inc()
        log.info("oidc_discovery_loaded", jwks_uri=doc["jwks_uri"])
        return doc


@dataclass(frozen=True, slots=True)
class LoginRequest:
    url: str
    state: str
    code_verifier: str


@dataclass(frozen=True, slots=True)
class TokenSet:
    access_token: str
    refresh_token: str | None
    id_token: str | None
    expires_in: int
    token_type: str


class OIDCClient:
    def __init__(
        self,
        *,
        discovery: OIDCDiscovery,
        http: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str],
    ) -> None:
        self._discovery = discovery
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._scopes = scopes

    async def begin_login(self) -> LoginRequest:
        state = secrets.token_urlsafe(32)
        verifier = secrets.token_urlsafe(64)
        authorize = await self._discovery.endpoint("authorization_endpoint")
        url = httpx.URL(
            authorize or "",
            params={
                "response_type": "code",
                "client_id": self._client_id,
                "redirect_uri": self._redirect_uri,
                "scope": " ".join(self._scopes),
                "state": state,
                "code_challenge": derive_code_challenge(verifier),
                "code_challenge_method": "S256",
            },
        )
        return LoginRequest(url=str(url), state=state, code_verifier=verifier)

    async def exchange_code(self, *, code: str, code_verifier: str) -> TokenSet:
        token_endpoint = await self._discovery.endpoint("token_endpoint")
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._redirect_uri,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code_verifier": code_verifier,
        }
        try:
            resp = await self._http.post(token_endpoint or "", data=data)
        except httpx.TransportError as e:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "code_exchange", "error").inc()
            raise UpstreamUnavailable("identity provider unreachable", upstream=_UPSTREAM) from e

        if resp.status_code >= 500:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "code_exchange", "error").inc()
            raise UpstreamUnavailable(
                f"token endpoint returned HTTP {resp.status_code}", upstream=_UPSTREAM
            )
        if resp.status_code != 200:
            # invalid_grant and friends: the code is stale, reused, or the verifier is wrong.
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "code_exchange", "rejected").inc()
            error = _oauth_error(resp)
            log.info("oidc_code_exchange_rejected", status=resp.status_code, oauth_error=error)
            raise Unauthenticated(f"authorization code rejected: {error}")

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamUnavailable(
                "token response is not JSON", upstream=_UPSTREAM, bad_response=True
            ) from e
        access_token = body.get("access_token")
        if not access_token:
            raise UpstreamUnavailable(
                "token response missing access_token", upstream=_UPSTREAM, bad_response=True
            )
        UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "code_exchange", "ok").inc()
        return TokenSet(
            access_token=access_token,
            refresh_token=body.get("refresh_token"),
            id_token=body.get("id_token"),
            expires_in=int(body.get("expires_in", 0)),
            token_type=str(body.get("token_type", "Bearer")),
        )

    async def logout(self, refresh_token: str) -> bool:
        """
        Best-effort session termination at the provider. Returns whether the provider
        acknowledged it; the caller's local logout succeeds either way.
        """

        try:
            endpoint = await self._discovery.endpoint("end_session_endpoint")
        except UpstreamUnavailable as e:
            log.warning("oidc_logout_skipped", reason=e.message)
            return False
        if endpoint is None:
            log.info("oidc_logout_unsupported")
            return False

        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
        }
        try:
            resp = await self._http.post(endpoint, data=data)
        except httpx.TransportError as e:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "logout", "error").inc()
            log.warning("oidc_logout_failed", error=str(e))
            return False
        ok = resp.status_code in (200, 204)
        UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "logout", "ok" if ok else "rejected").inc()
        if not ok:
            log.warning("oidc_logout_rejected", status=resp.status_code)
        return ok


def _oauth_error(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("error", "unknown_error"))
    except ValueError:
        return "unknown_error"


# --- Module Notes -----------------------------------------------------------
# The code verifier travels in an HttpOnly cookie scoped to /api/v1/auth (see
# `api.routers.auth`); this module stays stateless apart from the discovery cache.
