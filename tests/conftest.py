"""
tests.conftest

Shared fixtures: settings pointing at fake upstreams, the fakes themselves, and a
running app (lifespan entered) behind an ASGI test client.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from fakes import (
    ADMIN_CLIENT_ID,
    ADMIN_CLIENT_SECRET,
    CLIENT_ID,
    CLUSTER_CA_PEM,
    ISSUER,
    KEYCLOAK_URL,
    SA_JWT,
    VAULT_ADDR,
    FakeKeycloak,
    FakeVault,
    RecordingSink,
    make_transport,
)
from identity_portal.api.app import create_app
from identity_portal.observability.audit import AuditEmitter, LogAuditSink
from identity_portal.services.container import Services, build_services
from identity_portal.settings import Settings


@pytest.fixture
def sa_token_file(tmp_path: Path) -> Path:
    path = tmp_path / "token"
    path.write_text(SA_JWT + "\n")
    return path


@pytest.fixture
def settings(sa_token_file: Path) -> Settings:
    return Settings(
        env="test",
        log_level="WARNING",
        oidc_issuer_url=ISSUER,
        oidc_client_id=CLIENT_ID,
        oidc_client_secret="portal-secret",
        oidc_redirect_uri="http://test/api/v1/auth/callback",
        keycloak_url=KEYCLOAK_URL,
        keycloak_client_id=ADMIN_CLIENT_ID,
        keycloak_client_secret=ADMIN_CLIENT_SECRET,
        vault_addr=VAULT_ADDR,
        vault_sa_token_path=str(sa_token_file),
        vault_renew_backoff_initial=0.01,
        vault_renew_backoff_max=0.05,
        vault_relogin_interval=0.05,
        cluster_name="rke2-test",
        kube_api_server="https://api.rke2.test:6443",
        cluster_ca_pem=CLUSTER_CA_PEM,
        cluster_ca_path=None,
    )


@pytest.fixture
def keycloak() -> FakeKeycloak:
    return FakeKeycloak()


@pytest.fixture
def vault() -> FakeVault:
    return FakeVault()


@pytest.fixture
def transport(keycloak: FakeKeycloak, vault: FakeVault) -> httpx.MockTransport:
    return make_transport(keycloak, vault)


@dataclass
class Portal:
    app: FastAPI
    client: httpx.AsyncClient
    services: Services
    keycloak: FakeKeycloak
    vault: FakeVault
    audit: RecordingSink

    def bearer(self, **claims: Any) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.keycloak.mint(**claims)}"}


@pytest.fixture
async def portal(
    settings: Settings,
    transport: httpx.MockTransport,
    keycloak: FakeKeycloak,
    vault: FakeVault,
) -> AsyncIterator[Portal]:
    sink = RecordingSink()
    services = build_services(
        settings, transport=transport, audit=AuditEmitter([LogAuditSink(), sink])
    )

    app = create_app(settings=settings, services=services)
    # httpx ASGITransport does not manage lifespan automatically; do it explicitly.
    async with app.router.lifespan_context(app):
        asgi = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=asgi, base_url="http://test") as client:
            yield Portal(
                app=app,
                client=client,
                services=services,
                keycloak=keycloak,
                vault=vault,
                audit=sink,
            )
