"""
identity_portal.pki.client

Credential-store client for the Vault SSH secrets engine.

Responsibilities:
- Authenticate with the mounted platform identity (Kubernetes auth) and hold the
  resulting lease-bound `ServiceCredential`.
- Renew the credential in the background (fraction of the lease, bounded exponential
  backoff), falling back to a fresh login, then to a degraded state.
- Sign SSH public keys, and expose the CA public key and signing-role listing.
- Translate backend failures into the shared error taxonomy.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeVar

import httpx

from identity_portal.errors import (
    Forbidden,
    IdentityPortalError,
    Internal,
    UpstreamUnavailable,
    validate_path_segment,
)
from identity_portal.observability.logging import get_logger
from identity_portal.observability.metrics import (
    PKI_CREDENTIAL_EVENTS_TOTAL,
    UPSTREAM_REQUESTS_TOTAL,
)
from identity_portal.pki.models import ServiceCredential, SignedKey

log = get_logger(__name__)

_UPSTREAM = "vault"

T = TypeVar("T")


class CredentialStoreClient:
    """
    The current credential is a single immutable object; renew and login replace it
    with one assignment. Each backend call reads exactly one snapshot.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        ssh_mount: str = "ssh-client-signer",
        auth_path: str = "auth/kubernetes",
        auth_role: str = "identity-portal",
        sa_token_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/token",
        renew_fraction: float = 2 / 3,
        renew_max_retries: int = 5,
        renew_backoff_initial: float = 1.0,
        renew_backoff_max: float = 30.0,
        relogin_interval: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = http
        self._ssh_mount = ssh_mount.strip("/")
        self._auth_path = auth_path.strip("/")
        self._auth_role = auth_role
        self._sa_token_path = Path(sa_token_path)
        self._renew_fraction = renew_fraction
        self._renew_max_retries = renew_max_retries
        self._backoff_initial = renew_backoff_initial
        self._backoff_max = renew_backoff_max
        self._relogin_interval = relogin_interval
        self._clock = clock

        self._credential: ServiceCredential | None = None
        self._degraded = False
        self._login_generation = 0
        self._login_failure: UpstreamUnavailable | None = None
        self._login_lock = asyncio.Lock()
        self._ca_public_key: str | None = None
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    # -- state ---------------------------------------------------------------

    @property
    def credential(self) -> ServiceCredential | None:
        return self._credential

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def ready(self) -> bool:
        cred = self._credential
        return cred is not None and not self._degraded and cred.is_valid(self._clock())

    def _set_degraded(self, reason: str) -> None:
        if not self._degraded:
            PKI_CREDENTIAL_EVENTS_TOTAL.labels("degraded").inc()
            log.error("pki_credential_degraded", reason=reason)
        self._degraded = True

    # -- transport -----------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        token: str | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        text: bool = False,
        missing_ok: bool = False,
    ) -> Any:
        headers = {"X-Vault-Token": token} if token else {}
        try:
            resp = await self._http.request(method, path, headers=headers, json=json, params=params)
        except httpx.TransportError as e:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, operation, "error").inc()
            log.warning("vault_unreachable", operation=operation, error=str(e))
            raise UpstreamUnavailable("PKI backend unreachable", upstream=_UPSTREAM) from e

        status = resp.status_code
        if 200 <= status < 300:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, operation, "ok").inc()
            if text:
                return resp.text
            return resp.json() if resp.content else {}
        if status == 404 and missing_ok:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, operation, "ok").inc()
            return None

        UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, operation, "error").inc()
        errors = _vault_errors(resp)
        if status == 503 and "sealed" in errors.lower():
            # Needs an operator to unseal; retrying quickly does not help.
            log.error("vault_sealed", operation=operation)
            raise UpstreamUnavailable(
                "PKI backend is sealed", upstream=_UPSTREAM, sealed=True, retry_after=60
            )
        if status >= 500 or status == 429:
            raise UpstreamUnavailable(
                f"PKI backend returned HTTP {status}", upstream=_UPSTREAM
            )
        if operation in ("login", "renew"):
            # Without a credential nothing works; surface as an outage, not a caller error.
            log.error("vault_auth_rejected", operation=operation, status=status, errors=errors)
            raise UpstreamUnavailable(
                f"PKI backend rejected {operation}", upstream=_UPSTREAM
            )
        if status == 403:
            raise Forbidden("PKI backend denied the request for this role")
        log.error("vault_request_rejected", operation=operation, status=status, errors=errors)
        raise Internal(f"PKI backend rejected {operation} (HTTP {status})")

    def _credential_from(
        self, body: dict[str, Any], fallback_token: str | None = None
    ) -> ServiceCredential:
        auth = body.get("auth") or {}
        token = auth.get("client_token") or fallback_token
        lease = int(auth.get("lease_duration") or 0)
        if not token or lease <= 0:
            raise UpstreamUnavailable(
                "PKI backend returned no usable lease", upstream=_UPSTREAM, bad_response=True
            )
        return ServiceCredential(
            token=token,
            accessor=str(auth.get("accessor", "")),
            lease_seconds=lease,
            renewable=bool(auth.get("renewable", False)),
            obtained_at=self._clock(),
            renew_fraction=self._renew_fraction,
        )

    # -- credential lifecycle ------------------------------------------------

    async def login(self) -> ServiceCredential:
        try:
            sa_token = (await asyncio.to_thread(self._sa_token_path.read_text)).strip()
        except OSError as e:
            log.error("sa_token_unreadable", path=str(self._sa_token_path), error=str(e))
            raise UpstreamUnavailable(
                "platform identity token unavailable", upstream="platform-identity"
            ) from e

        body = await self._request(
            "POST",
            f"/v1/{self._auth_path}/login",
            operation="login",
            json={"role": self._auth_role, "jwt": sa_token},
        )
        cred = self._credential_from(body)
        self._credential = cred
        PKI_CREDENTIAL_EVENTS_TOTAL.labels("login").inc()
        if self._degraded:
            PKI_CREDENTIAL_EVENTS_TOTAL.labels("recovered").inc()
            log.info("pki_credential_recovered")
        self._degraded = False
        log.info(
            "vault_token_acquired",
            lease_seconds=cred.lease_seconds,
            renewable=cred.renewable,
            accessor=cred.accessor,
        )
        return cred

    async def renew(self) -> ServiceCredential:
        current = self._credential
        if current is None:
            raise UpstreamUnavailable("no credential to renew", upstream=_UPSTREAM)
        body = await self._request(
            "POST",
            "/v1/auth/token/renew-self",
            operation="renew",
            token=current.token,
            json={},
        )
        cred = self._credential_from(body, fallback_token=current.token)
        self._credential = cred
        PKI_CREDENTIAL_EVENTS_TOTAL.labels("renew").inc()
        log.info("vault_token_renewed", lease_seconds=cred.lease_seconds)
        return cred

    async def _login_serialized(self) -> ServiceCredential:
        # Single-flight: tasks that queued behind an attempt share its outcome.
        generation = self._login_generation
        async with self._login_lock:
            if self._login_generation != generation:
                failure = self._login_failure
                cred = self._credential
                if failure is None and cred is not None:
                    return cred
                raise UpstreamUnavailable(
                    failure.message if failure else "PKI backend login failed",
                    upstream=_UPSTREAM,
                    sealed=bool(failure and failure.sealed),
                    retry_after=failure.retry_after if failure else 5,
                )
            try:
                cred = await self.login()
            except UpstreamUnavailable as e:
                self._login_failure = e
                raise
            else:
                self._login_failure = None
                return cred
            finally:
                self._login_generation += 1

    async def _current_credential(self) -> ServiceCredential:
        cred = self._credential
        if cred is not None and not self._degraded and cred.is_valid(self._clock()):
            return cred
        try:
            return await self._login_serialized()
        except UpstreamUnavailable as e:
            self._set_degraded(e.message)
            raise

    async def _token_alive(self, cred: ServiceCredential) -> bool:
        try:
            await self._request(
                "GET", "/v1/auth/token/lookup-self", operation="lookup", token=cred.token
            )
        except Forbidden:
            return False
        return True

    async def _with_credential(
        self, call: Callable[[ServiceCredential], Awaitable[T]]
    ) -> T:
        """
        Run `call` with the current credential. Vault answers 403 both for a policy
        denial and for a token it no longer honours (revoked, lease cut short), so a
        403 is checked against lookup-self: a dead token is dropped, one fresh login
        is made, and the call is retried once.
        """

        cred = await self._current_credential()
        try:
            return await call(cred)
        except Forbidden:
            if await self._token_alive(cred):
                raise
        PKI_CREDENTIAL_EVENTS_TOTAL.labels("rejected").inc()
        log.warning("vault_token_rejected", accessor=cred.accessor)
        if self._credential is cred:
            self._credential = None
        return await call(await self._current_credential())

    async def _try_login(self) -> bool:
        try:
            await self._login_serialized()
        except UpstreamUnavailable as e:
            self._set_degraded(e.message)
            return False
        return True

    async def _renew_with_backoff(self) -> bool:
        delay = self._backoff_initial
        for attempt in range(1, self._renew_max_retries + 1):
            try:
                await self.renew()
                return True
            except UpstreamUnavailable as e:
                PKI_CREDENTIAL_EVENTS_TOTAL.labels("renew_failed").inc()
                log.warning(
                    "vault_token_renew_failed",
                    attempt=attempt,
                    max_attempts=self._renew_max_retries,
                    error=e.message,
                )
            if attempt == self._renew_max_retries or await self._wait(delay):
                break
            delay = min(delay * 2, self._backoff_max)
        return False

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if shutdown was requested."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=max(seconds, 0.0))
            return True
        except TimeoutError:
            return False

    async def _run(self) -> None:
        while not self._stop.is_set():
            cred = self._credential
            if cred is None or self._degraded:
                if await self._wait(self._relogin_interval):
                    return
                await self._try_login()
                continue

            if await self._wait(cred.renew_at - self._clock()):
                return
            if cred is not self._credential:
                # Replaced by an on-demand login while we slept; schedule from the new one.
                continue
            if cred.renewable and await self._renew_with_backoff():
                continue
            if self._stop.is_set():
                return
            # Renewal exhausted (or not renewable): never keep serving a dying token.
            await self._try_login()

    async def start(self) -> None:
        """
        Initial login, then the renewal task. A failed initial login starts the
        service degraded instead of refusing to boot; the task keeps retrying.
        """

        if not await self._try_login():
            log.warning("pki_starting_degraded")
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name="pki-credential-renewal")

    async def aclose(self) -> None:
        self._stop.set()
        task, self._task = self._task, None
        if task is not None:
            try:
                await task
            except Exception:
                log.exception("pki_renewal_task_crashed")

        cred, self._credential = self._credential, None
        if cred is not None and cred.is_valid(self._clock()):
            try:
                await self._request(
                    "POST", "/v1/auth/token/revoke-self", operation="revoke", token=cred.token
                )
                log.info("vault_token_revoked")
            except IdentityPortalError as e:
                log.warning("vault_token_revoke_failed", error=e.message)

    # -- operations ----------------------------------------------------------

    async def sign(
        self,
        *,
        signing_role: str,
        public_key: str,
        valid_principals: list[str],
        ttl: timedelta,
        key_id: str,
    ) -> SignedKey:
        role = validate_path_segment(signing_role)
        payload = {
            "public_key": public_key,
            "valid_principals": ",".join(valid_principals),
            "ttl": f"{int(ttl.total_seconds())}s",
            "cert_type": "user",
            "key_id": key_id,
        }

        async def _sign(cred: ServiceCredential) -> Any:
            return await self._request(
                "POST",
                f"/v1/{self._ssh_mount}/sign/{role}",
                operation="sign",
                token=cred.token,
                json=payload,
            )

        body = await self._with_credential(_sign)
        data = body.get("data") or {}
        signed_key = data.get("signed_key")
        if not signed_key:
            raise UpstreamUnavailable(
                "PKI backend returned no certificate", upstream=_UPSTREAM, bad_response=True
            )
        return SignedKey(signed_key=signed_key, serial_number=str(data.get("serial_number", "")))

    async def ca_public_key(self) -> str:
        if self._ca_public_key is None:
            text = await self._request(
                "GET", f"/v1/{self._ssh_mount}/public_key", operation="ca_public_key", text=True
            )
            key = text.strip()
            if not key:
                raise UpstreamUnavailable(
                    "PKI backend returned an empty CA key", upstream=_UPSTREAM, bad_response=True
                )
            self._ca_public_key = key
        return self._ca_public_key

    async def list_signing_roles(self) -> list[str]:
        async def _list(cred: ServiceCredential) -> Any:
            return await self._request(
                "GET",
                f"/v1/{self._ssh_mount}/roles",
                operation="list_roles",
                token=cred.token,
                params={"list": "true"},
                missing_ok=True,
            )

        body = await self._with_credential(_list)
        if body is None:
            return []
        return sorted(str(k) for k in (body.get("data") or {}).get("keys", []))


def _vault_errors(resp: httpx.Response) -> str:
    try:
        errors = resp.json().get("errors") or []
    except (ValueError, AttributeError):
        return resp.text[:200]
    return "; ".join(str(e) for e in errors)


# --- Module Notes -----------------------------------------------------------
# Revocation on shutdown is best-effort: a leaked token still expires with its lease.
