"""
identity_portal.auth.jwks

Signing-key cache for bearer token verification.

Responsibilities:
- Fetch the provider's JWKS (URI taken from OIDC discovery) and index keys by `kid`.
- Serve cached keys within a TTL; serve stale keys for a bounded window when the
  provider is unreachable.
- Refresh immediately on an unknown `kid` (key rotation), rate-limited.
- Run a background refresh task that is stopped and joined on shutdown.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import httpx
import jwt
from jwt.exceptions import PyJWKError, PyJWKSetError

from identity_portal.auth.oidc import OIDCDiscovery
from identity_portal.errors import Unauthenticated, UpstreamUnavailable
from identity_portal.observability.logging import get_logger
from identity_portal.observability.metrics import UPSTREAM_REQUESTS_TOTAL

log = get_logger(__name__)

_UPSTREAM = "oidc"


class SigningKeyCache:
    """
    Keys are replaced as a whole dict (one reference swap); readers never see a
    partially refreshed key set. Refreshes are single-flighted by an asyncio.Lock.
    """

    def __init__(
        self,
        *,
        discovery: OIDCDiscovery,
        http: httpx.AsyncClient,
        ttl: float = 300.0,
        max_stale: float = 3600.0,
        min_refresh_interval: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._discovery = discovery
        self._http = http
        self._ttl = ttl
        self._max_stale = max_stale
        self._min_refresh_interval = min_refresh_interval
        self._clock = clock

        self._keys: dict[str, jwt.PyJWK] = {}
        self._fetched_at: float | None = None
        self._last_attempt: float | None = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def ready(self) -> bool:
        age = self._age()
        return bool(self._keys) and age is not None and age < self._max_stale

    def _age(self) -> float | None:
        if self._fetched_at is None:
            return None
        return self._clock() - self._fetched_at

    async def get_signing_key(self, kid: str) -> jwt.PyJWK:
        age = self._age()
        if not self._keys or age is None or age >= self._ttl:
            try:
                await self.refresh()
            except UpstreamUnavailable:
                age = self._age()
                if not self._keys or age is None or age >= self._max_stale:
                    raise
                log.warning("jwks_serving_stale", age_seconds=round(age, 1))

        key = self._keys.get(kid)
        if key is not None:
            return key

        # Unknown kid: the provider may have rotated keys. Bound how often a caller
        # presenting garbage kids can make us hit the provider.
        now = self._clock()
        if self._last_attempt is None or now - self._last_attempt >= self._min_refresh_interval:
            await self.refresh()
            key = self._keys.get(kid)
            if key is not None:
                return key
        raise Unauthenticated("token signed with an unknown key")

    async def refresh(self) -> None:
        generation = self._generation
        async with self._lock:
            if self._generation != generation:
                # Another task refreshed while we waited on the lock.
                return
            self._last_attempt = self._clock()
            keys = await self._fetch()
            self._keys = keys
            self._fetched_at = self._clock()
            self._generation += 1
        log.info("jwks_refreshed", key_count=len(keys))

    async def _fetch(self) -> dict[str, jwt.PyJWK]:
        jwks_uri = await self._discovery.endpoint("jwks_uri")
        try:
            resp = await self._http.get(jwks_uri or "")
        except httpx.TransportError as e:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "jwks", "error").inc()
            raise UpstreamUnavailable("signing keys unreachable", upstream=_UPSTREAM) from e
        if resp.status_code != 200:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "jwks", "error").inc()
            raise UpstreamUnavailable(
                f"JWKS endpoint returned HTTP {resp.status_code}", upstream=_UPSTREAM
            )
        try:
            data = resp.json()
            # Keycloak also publishes `enc` keys; only `sig` keys verify tokens.
            data["keys"] = [k for k in data.get("keys", []) if k.get("use", "sig") == "sig"]
            key_set = jwt.PyJWKSet.from_dict(data)
        except (ValueError, AttributeError, PyJWKSetError, PyJWKError) as e:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "jwks", "invalid").inc()
            raise UpstreamUnavailable(
                "JWKS document is unusable", upstream=_UPSTREAM, bad_response=True
            ) from e
        UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "jwks", "ok").inc()
        return {k.key_id: k for k in key_set.keys if k.key_id}

    def start(self) -> None:
        if self._task is None:
            self._stop.clear()
            self._task = asyncio.create_task(self._run(), name="jwks-refresh")

    async def _run(self) -> None:
        interval = self._ttl * 0.8
        while True:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
                return
            except TimeoutError:
                pass
            try:
                await self.refresh()
            except UpstreamUnavailable as e:
                log.warning("jwks_background_refresh_failed", error=e.message)

    async def aclose(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None


# --- Module Notes -----------------------------------------------------------
# The first refresh happens lazily on the first token; startup does not block on
# the identity provider being reachable.
