"""
identity_portal.directory.self_service

Caller-scoped directory operations: the caller's profile and registered SSH key.

Responsibilities:
- Look up the caller's own Keycloak user by exact username.
- Register, show and remove the caller's SSH public key (stored as user attributes).
- Answer "which key is this user bound to?" for the certificate issuer.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from identity_portal.auth.models import Principal
from identity_portal.auth.roles import GroupResolver
from identity_portal.directory.gateway import audited_mutation
from identity_portal.directory.keycloak import KeycloakAdminClient
from identity_portal.directory.models import Profile, SSHPublicKeyResponse
from identity_portal.errors import InvalidPublicKey, NoEligibleRole, NotFound, UpstreamUnavailable
from identity_portal.observability.audit import AuditEmitter
from identity_portal.observability.logging import get_logger
from identity_portal.ssh.keys import parse_public_key

log = get_logger(__name__)

ATTR_SSH_PUBLIC_KEY = "ssh_public_key"
ATTR_SSH_KEY_REGISTERED = "ssh_key_registered_at"


def _attribute(user: dict[str, Any], name: str) -> str | None:
    values = (user.get("attributes") or {}).get(name) or []
    return values[0] if values else None


def _fingerprint(public_key: str | None) -> str | None:
    if not public_key:
        return None
    try:
        return parse_public_key(public_key).fingerprint
    except InvalidPublicKey:
        return None


class SelfServiceDirectory:
    def __init__(
        self,
        *,
        client: KeycloakAdminClient,
        resolver: GroupResolver,
        audit: AuditEmitter,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._audit = audit
        self._now = now

    async def _user(self, principal: Principal) -> dict[str, Any]:
        user = await self._client.find_user(principal.username)
        if user is None:
            raise NotFound("user profile not found")
        return user

    async def profile(self, principal: Principal) -> Profile:
        user = await self._user(principal)
        try:
            groups = sorted(g.name for g in await self._client.user_groups(user["id"]))
        except UpstreamUnavailable as e:
            # The token's groups are a few minutes old at most; good enough for display.
            log.warning("profile_groups_fallback", username=principal.username, error=e.message)
            groups = sorted(principal.groups)
        try:
            role: str | None = self._resolver.resolve(principal.groups).name
        except NoEligibleRole:
            role = None
        return Profile(
            id=user["id"],
            username=user.get("username", principal.username),
            email=user.get("email"),
            first_name=user.get("firstName"),
            last_name=user.get("lastName"),
            email_verified=bool(user.get("emailVerified", False)),
            groups=groups,
            role=role,
            ssh_key_fingerprint=_fingerprint(_attribute(user, ATTR_SSH_PUBLIC_KEY)),
        )

    async def registered_key(self, username: str) -> str | None:
        user = await self._client.find_user(username)
        if user is None:
            return None
        return _attribute(user, ATTR_SSH_PUBLIC_KEY)

    async def get_key(self, principal: Principal) -> SSHPublicKeyResponse:
        user = await self._user(principal)
        public_key = _attribute(user, ATTR_SSH_PUBLIC_KEY)
        if not public_key:
            return SSHPublicKeyResponse()
        return SSHPublicKeyResponse(
            public_key=public_key,
            fingerprint=_fingerprint(public_key),
            registered_at=_attribute(user, ATTR_SSH_KEY_REGISTERED),
        )

    async def register_key(self, principal: Principal, public_key: str) -> SSHPublicKeyResponse:
        key = parse_public_key(public_key)
        user = await self._user(principal)
        line = public_key.strip()
        registered_at = self._now().astimezone(UTC).isoformat(timespec="seconds")
        await audited_mutation(
            self._audit,
            principal,
            "ssh_key.register",
            principal.username,
            lambda: self._client.set_user_attributes(
                user["id"],
                {ATTR_SSH_PUBLIC_KEY: line, ATTR_SSH_KEY_REGISTERED: registered_at},
            ),
            {"fingerprint": key.fingerprint},
        )
        log.info("ssh_key_registered", username=principal.username, fingerprint=key.fingerprint)
        return SSHPublicKeyResponse(
            public_key=line, fingerprint=key.fingerprint, registered_at=registered_at
        )

    async def delete_key(self, principal: Principal) -> None:
        user = await self._user(principal)
        await audited_mutation(
            self._audit,
            principal,
            "ssh_key.delete",
            principal.username,
            lambda: self._client.set_user_attributes(
                user["id"], {ATTR_SSH_PUBLIC_KEY: None, ATTR_SSH_KEY_REGISTERED: None}
            ),
        )


# --- Module Notes -----------------------------------------------------------
# Callers only ever reach their own user: the Keycloak id comes from the token's
# username, never from the request.
