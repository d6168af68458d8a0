"""
tests.test_jwks

Signing-key cache: TTL, rotation, rate limiting, stale serving, background task.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import httpx
import pytest

from fakes import ISSUER, FakeClock, FakeKeycloak
from identity_portal.auth.jwks import SigningKeyCache
from identity_portal.auth.oidc import OIDCDiscovery
from identity_portal.errors import Unauthenticated, UpstreamUnavailable


@pytest.fixture
async def http(transport: httpx.MockTransport) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=transport) as client:
        yield client


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(http: httpx.AsyncClient, clock: FakeClock) -> SigningKeyCache:
    return SigningKeyCache(
        discovery=OIDCDiscovery(http=http, issuer_url=ISSUER),
        http=http,
        ttl=300,
        max_stale=3600,
        min_refresh_interval=10,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_keys_are_cached_within_ttl(
    cache: SigningKeyCache, keycloak: FakeKeycloak, clock: FakeClock
) -> None:
    assert not cache.ready
    await cache.get_signing_key(keycloak.kid)
    clock.advance(299)
    await cache.get_signing_key(keycloak.kid)
    assert keycloak.jwks_calls == 1
    assert cache.ready

    clock.advance(2)
    await cache.get_signing_key(keycloak.kid)
    assert keycloak.jwks_calls == 2


@pytest.mark.asyncio
async def test_encryption_keys_are_ignored(cache: SigningKeyCache) -> None:
    with pytest.raises(Unauthenticated):
        await cache.get_signing_key("enc-key")


@pytest.mark.asyncio
async def test_rotated_key_is_picked_up_immediately(
    cache: SigningKeyCache, keycloak: FakeKeycloak, clock: FakeClock
) -> None:
    await cache.get_signing_key(keycloak.kid)
    clock.advance(11)
    keycloak.rotate("test-key-2")
    key = await cache.get_signing_key("test-key-2")
    assert key.key_id == "test-key-2"
    assert keycloak.jwks_calls == 2


@pytest.mark.asyncio
async def test_unknown_kid_refresh_is_rate_limited(
    cache: SigningKeyCache, keycloak: FakeKeycloak, clock: FakeClock
) -> None:
    await cache.get_signing_key(keycloak.kid)
    clock.advance(11)
    for _ in range(5):
        with pytest.raises(Unauthenticated):
            await cache.get_signing_key("bogus")
    assert keycloak.jwks_calls == 2

    clock.advance(10)
    with pytest.raises(Unauthenticated):
        await cache.get_signing_key("bogus")
    assert keycloak.jwks_calls == 3


@pytest.mark.asyncio
async def test_stale_keys_are_served_for_a_bounded_window(
    cache: SigningKeyCache, keycloak: FakeKeycloak, clock: FakeClock
) -> None:
    await cache.get_signing_key(keycloak.kid)
    keycloak.unreachable = True

    clock.advance(1800)
    key = await cache.get_signing_key(keycloak.kid)
    assert key.key_id == keycloak.kid
    assert cache.ready

    clock.advance(1801)
    assert not cache.ready
    with pytest.raises(UpstreamUnavailable):
        await cache.get_signing_key(keycloak.kid)

    keycloak.unreachable = False
    assert (await cache.get_signing_key(keycloak.kid)).key_id == keycloak.kid
    assert cache.ready


@pytest.mark.asyncio
async def test_cold_cache_with_unreachable_provider(
    cache: SigningKeyCache, keycloak: FakeKeycloak
) -> None:
    keycloak.unreachable = True
    with pytest.raises(UpstreamUnavailable) as exc:
        await cache.get_signing_key(keycloak.kid)
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_concurrent_cold_lookups_fetch_once(
    cache: SigningKeyCache, keycloak: FakeKeycloak
) -> None:
    await asyncio.gather(*(cache.get_signing_key(keycloak.kid) for _ in range(20)))
    assert keycloak.jwks_calls == 1


@pytest.mark.asyncio
async def test_background_refresh_runs_and_stops(
    http: httpx.AsyncClient, keycloak: FakeKeycloak
) -> None:
    cache = SigningKeyCache(
        discovery=OIDCDiscovery(http=http, issuer_url=ISSUER), http=http, ttl=0.05
    )
    cache.start()
    await asyncio.sleep(0.2)
    await cache.aclose()
    calls = keycloak.jwks_calls
    assert calls >= 2

    await asyncio.sleep(0.1)
    assert keycloak.jwks_calls == calls
