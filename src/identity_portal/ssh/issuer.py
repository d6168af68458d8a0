"""
identity_portal.ssh.issuer

SSH certificate issuance workflow.

Responsibilities:
- Resolve the caller's role and enforce downgrade-only role/principal requests.
- Validate the public key, and its match with the caller's registered key, before
  any signing call.
- Bound the TTL by the role, sign via the credential-store client, and verify the
  returned certificate against what was requested.
- Audit every attempt (strictly on success) and record metrics.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol

from identity_portal.auth.models import Principal
from identity_portal.auth.roles import GroupResolver, Role
from identity_portal.errors import (
    AuditWriteFailed,
    Forbidden,
    IdentityPortalError,
    Internal,
    InvalidPublicKey,
    InvalidRequest,
    KeyMismatch,
    NoEligibleRole,
)
from identity_portal.observability.audit import (
    AuditEmitter,
    AuditEvent,
    AuditResult,
    AuditWriteError,
)
from identity_portal.observability.logging import get_logger
from identity_portal.observability.metrics import SSH_CERT_ERRORS_TOTAL, SSH_CERTS_ISSUED_TOTAL
from identity_portal.pki.client import CredentialStoreClient
from identity_portal.ssh.certificates import SSHCertificate, parse_certificate
from identity_portal.ssh.keys import PublicKeyInfo, parse_public_key

log = get_logger(__name__)

AUDIT_ACTION = "ssh.sign"


def make_key_id(username: str, now: datetime) -> str:
    return f"{username}-{now.astimezone(UTC):%Y%m%dT%H%M%SZ}-{secrets.token_hex(4)}"


class RegisteredKeys(Protocol):
    async def registered_key(self, username: str) -> str | None: ...


class SSHCertificateIssuer:
    """
    Not idempotent: every call is an independent grant with its own serial and expiry.
    """

    def __init__(
        self,
        *,
        resolver: GroupResolver,
        credentials: CredentialStoreClient,
        audit: AuditEmitter,
        clock_skew: timedelta = timedelta(seconds=30),
        registered_keys: RegisteredKeys | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(tz=UTC),
    ) -> None:
        self._resolver = resolver
        self._credentials = credentials
        self._audit = audit
        self._clock_skew = clock_skew
        self._registered_keys = registered_keys
        self._now = now

    def list_roles(self, principal: Principal) -> list[Role]:
        return self._resolver.requestable(self._resolver.resolve(principal.groups))

    async def ca_public_key(self) -> str:
        return await self._credentials.ca_public_key()

    def _target_role(self, resolved: Role, requested: str | None) -> Role:
        if requested is None or requested == resolved.name:
            return resolved
        target = self._resolver.get(requested)
        if target is None:
            raise InvalidRequest(f"unknown role {requested!r}")
        if not self._resolver.allows(resolved, target):
            raise Forbidden(f"role {requested!r} is above your privilege")
        return target

    def _principals(self, role: Role, requested: Sequence[str] | None) -> list[str]:
        if requested is None:
            return list(role.principals)
        wanted = list(dict.fromkeys(requested))
        if not wanted:
            raise InvalidRequest("principals must not be empty")
        outside = [p for p in wanted if p not in role.principals]
        if outside:
            raise Forbidden(f"principals not allowed for role {role.name}: {', '.join(outside)}")
        return wanted

    def _ttl(self, role: Role, requested: timedelta | None) -> timedelta:
        # The backend backdates valid_after by the skew; the whole window must fit max_ttl.
        ceiling = max(role.max_ttl - self._clock_skew, timedelta(seconds=1))
        if requested is None:
            return ceiling
        if requested < timedelta(seconds=1):
            raise InvalidRequest("ttl must be at least one second")
        return min(requested, ceiling)

    async def _check_registered(self, principal: Principal, key: PublicKeyInfo) -> None:
        # Users without a registered key may sign any acceptable key.
        if self._registered_keys is None:
            return
        registered = await self._registered_keys.registered_key(principal.username)
        if not registered:
            return
        try:
            bound = parse_public_key(registered)
        except InvalidPublicKey as e:
            raise Internal("registered SSH key is unreadable") from e
        if bound.normalized != key.normalized:
            raise KeyMismatch()

    def _verify(
        self,
        cert: SSHCertificate,
        key: PublicKeyInfo,
        principals: list[str],
        role: Role,
        issued_at: datetime,
    ) -> None:
        if cert.public_key != key.normalized:
            raise Internal("issued certificate does not match the submitted key")
        if not cert.principals or not set(cert.principals) <= set(principals):
            raise Internal("issued certificate carries unexpected principals")
        if cert.valid_until > issued_at + role.max_ttl + self._clock_skew:
            raise Internal("issued certificate outlives the role's maximum TTL")
        if cert.valid_until - cert.valid_after > role.max_ttl:
            raise Internal("issued certificate validity exceeds the role's maximum TTL")

    async def issue(
        self,
        principal: Principal,
        public_key: str,
        *,
        role: str | None = None,
        principals: Sequence[str] | None = None,
        ttl: timedelta | None = None,
    ) -> SSHCertificate:
        target: Role | None = None
        key: PublicKeyInfo | None = None
        try:
            resolved = self._resolver.resolve(principal.groups)
            target = self._target_role(resolved, role)
            allowed = self._principals(target, principals)
            key = parse_public_key(public_key)
            effective_ttl = self._ttl(target, ttl)
            await self._check_registered(principal, key)

            issued_at = self._now()
            key_id = make_key_id(principal.username, issued_at)
            signed = await self._credentials.sign(
                signing_role=target.signing_role,
                public_key=key.normalized,
                valid_principals=allowed,
                ttl=effective_ttl,
                key_id=key_id,
            )
            cert = parse_certificate(signed.signed_key, role=target.name, issued_at=issued_at)
            self._verify(cert, key, allowed, target, issued_at)
        except IdentityPortalError as e:
            label = target.name if target else "none"
            SSH_CERT_ERRORS_TOTAL.labels(label, e.code).inc()
            denied = isinstance(e, (Forbidden, NoEligibleRole))
            if isinstance(e, Internal):
                log.error("ssh_certificate_rejected", role=label, error=e.message)
            await self._audit.emit_best_effort(
                AuditEvent(
                    actor=principal.username,
                    action=AUDIT_ACTION,
                    target=label,
                    result=AuditResult.denied if denied else AuditResult.failure,
                    details={
                        "error": e.code,
                        "message": e.message,
                        "requested_role": role,
                        "fingerprint": key.fingerprint if key else None,
                    },
                )
            )
            raise

        try:
            await self._audit.emit(
                AuditEvent(
                    actor=principal.username,
                    action=AUDIT_ACTION,
                    target=target.name,
                    result=AuditResult.success,
                    details={
                        "serial": cert.serial,
                        "key_id": cert.key_id,
                        "principals": list(cert.principals),
                        "fingerprint": key.fingerprint,
                        "valid_until": cert.valid_until.isoformat(),
                    },
                )
            )
        except AuditWriteError as e:
            SSH_CERT_ERRORS_TOTAL.labels(target.name, AuditWriteFailed.code).inc()
            raise AuditWriteFailed() from e

        SSH_CERTS_ISSUED_TOTAL.labels(target.name).inc()
        log.info(
            "ssh_certificate_issued",
            role=target.name,
            serial=cert.serial,
            key_id=cert.key_id,
            valid_until=cert.valid_until.isoformat(),
        )
        return cert


# --- Module Notes -----------------------------------------------------------
# A certificate whose audit record cannot be written is never returned to the caller.
