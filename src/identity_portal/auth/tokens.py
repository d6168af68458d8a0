"""
identity_portal.auth.tokens

Bearer token validation.

Responsibilities:
- Verify signature (asymmetric algorithms only), expiry, issuer and audience.
- Normalize claims into a typed `Principal`.
- Map every failure onto `Unauthenticated` / `MalformedToken`.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError, MissingRequiredClaimError

from identity_portal.auth.jwks import SigningKeyCache
from identity_portal.auth.models import Principal
from identity_portal.errors import MalformedToken, Unauthenticated

# Never accept `none` or HMAC: a public JWKS key must not double as a shared secret.
ALLOWED_ALGORITHMS = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"}
)


class TokenValidator:
    def __init__(
        self,
        *,
        keys: SigningKeyCache,
        issuer: str,
        audience: str,
        groups_claim: str = "groups",
        leeway: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._keys = keys
        self._issuer = issuer.rstrip("/")
        self._audience = audience
        self._groups_claim = groups_claim
        self._leeway = leeway
        self._clock = clock

    async def validate(self, raw: str) -> Principal:
        try:
            header = jwt.get_unverified_header(raw)
        except InvalidTokenError as e:
            raise Unauthenticated("token is not a valid JWT") from e

        alg = header.get("alg")
        if alg not in ALLOWED_ALGORITHMS:
            raise Unauthenticated("token algorithm not allowed")
        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise Unauthenticated("token has no key id")

        key = await self._keys.get_signing_key(kid)
        try:
            claims = jwt.decode(
                raw,
                key.key,
                algorithms=[alg],
                audience=self._audience,
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": ["exp", "iat", "iss", "sub"]},
            )
        except MissingRequiredClaimError as e:
            raise MalformedToken(f"token is missing claim: {e.claim}") from e
        except ExpiredSignatureError as e:
            raise Unauthenticated("token has expired") from e
        except InvalidTokenError as e:
            raise Unauthenticated(f"invalid token: {e}") from e

        # Leeway covers iat/nbf skew only; an expired token is never accepted.
        if int(claims["exp"]) <= self._clock():
            raise Unauthenticated("token has expired")

        return self._principal(claims)

    def _principal(self, claims: dict[str, Any]) -> Principal:
        subject = claims.get("sub")
        username = claims.get("preferred_username")
        if not isinstance(subject, str) or not subject:
            raise MalformedToken("token is missing claim: sub")
        if not isinstance(username, str) or not username:
            raise MalformedToken("token is missing claim: preferred_username")

        raw_groups = claims.get(self._groups_claim, [])
        if not isinstance(raw_groups, list) or not all(isinstance(g, str) for g in raw_groups):
            raise MalformedToken(f"claim {self._groups_claim} must be a list of strings")
        # Keycloak emits full group paths ("/platform-admins") when full_path is on.
        groups = frozenset(g.lstrip("/") for g in raw_groups if g.strip("/"))

        email = claims.get("email")
        return Principal(
            subject=subject,
            username=username,
            email=email if isinstance(email, str) else "",
            groups=groups,
            expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=UTC),
        )


# --- Module Notes -----------------------------------------------------------
# Validation never touches the PKI backend; the only network side effect is a
# possible signing-key refresh.
