"""
identity_portal.services.container

Composition of long-lived collaborators.

Responsibilities:
- Build one `httpx.AsyncClient` per upstream with bounded timeouts.
- Wire the token validator, credential-store client, issuer, directory gateway and
  self-service directory.
- Start background tasks and tear everything down in order on shutdown.
"""

from __future__ import annotations

import ssl
from dataclasses import dataclass, field
from datetime import timedelta

import httpx

from identity_portal.auth.jwks import SigningKeyCache
from identity_portal.auth.oidc import OIDCClient, OIDCDiscovery
from identity_portal.auth.roles import GroupResolver
from identity_portal.auth.tokens import TokenValidator
from identity_portal.directory.gateway import DirectoryAdminGateway
from identity_portal.directory.keycloak import KeycloakAdminClient
from identity_portal.directory.self_service import SelfServiceDirectory
from identity_portal.kubeconfig import ClusterConfig
from identity_portal.observability.audit import AuditEmitter, build_audit_emitter
from identity_portal.observability.logging import get_logger
from identity_portal.pki.client import CredentialStoreClient
from identity_portal.settings import Settings
from identity_portal.ssh.issuer import SSHCertificateIssuer

log = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    resolver: GroupResolver
    keys: SigningKeyCache
    tokens: TokenValidator
    oidc: OIDCClient
    credentials: CredentialStoreClient
    issuer: SSHCertificateIssuer
    directory: DirectoryAdminGateway
    self_service: SelfServiceDirectory
    audit: AuditEmitter
    cluster: ClusterConfig
    http_clients: list[httpx.AsyncClient] = field(default_factory=list)

    async def start(self) -> None:
        self.keys.start()
        await self.credentials.start()
        log.info("services_started", pki_ready=self.credentials.ready)

    async def aclose(self) -> None:
        # Join background tasks before closing the clients they use.
        await self.credentials.aclose()
        await self.keys.aclose()
        for client in self.http_clients:
            await client.aclose()
        log.info("services_stopped")


def _vault_verify(settings: Settings) -> ssl.SSLContext | bool:
    if settings.vault_ca_cert_path:
        return ssl.create_default_context(cafile=settings.vault_ca_cert_path)
    return True


def build_services(
    settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    audit: AuditEmitter | None = None,
) -> Services:
    """
    `transport` replaces the network for every upstream client and `audit` the
    configured sinks (tests pass an `httpx.MockTransport` and a recording sink).
    """

    timeout = httpx.Timeout(settings.upstream_timeout_seconds)
    idp_http = httpx.AsyncClient(timeout=timeout, transport=transport)
    keycloak_http = httpx.AsyncClient(
        base_url=settings.keycloak_url, timeout=timeout, transport=transport
    )
    vault_http = httpx.AsyncClient(
        base_url=settings.vault_addr,
        timeout=timeout,
        transport=transport,
        verify=_vault_verify(settings),
    )

    resolver = GroupResolver.from_settings(settings)
    audit = audit or build_audit_emitter(settings.audit_log_path)

    discovery = OIDCDiscovery(http=idp_http, issuer_url=settings.oidc_issuer_url)
    keys = SigningKeyCache(
        discovery=discovery,
        http=idp_http,
        ttl=settings.oidc_jwks_cache_ttl,
        max_stale=settings.oidc_jwks_max_stale,
        min_refresh_interval=settings.oidc_jwks_min_refresh_interval,
    )
    tokens = TokenValidator(
        keys=keys,
        issuer=settings.oidc_issuer_url,
        audience=settings.token_audience,
        groups_claim=settings.oidc_groups_claim,
        leeway=settings.oidc_leeway_seconds,
    )
    oidc = OIDCClient(
        discovery=discovery,
        http=idp_http,
        client_id=settings.oidc_client_id,
        client_secret=settings.oidc_client_secret,
        redirect_uri=settings.oidc_redirect_uri,
        scopes=settings.oidc_scopes,
    )

    credentials = CredentialStoreClient(
        http=vault_http,
        ssh_mount=settings.vault_ssh_mount,
        auth_path=settings.vault_auth_path,
        auth_role=settings.vault_auth_role,
        sa_token_path=settings.vault_sa_token_path,
        renew_fraction=settings.vault_renew_fraction,
        renew_max_retries=settings.vault_renew_max_retries,
        renew_backoff_initial=settings.vault_renew_backoff_initial,
        renew_backoff_max=settings.vault_renew_backoff_max,
        relogin_interval=settings.vault_relogin_interval,
    )
    keycloak_admin = KeycloakAdminClient(
        http=keycloak_http,
        realm=settings.keycloak_realm,
        client_id=settings.keycloak_client_id,
        client_secret=settings.keycloak_client_secret,
    )
    directory = DirectoryAdminGateway(client=keycloak_admin, resolver=resolver, audit=audit)
    self_service = SelfServiceDirectory(client=keycloak_admin, resolver=resolver, audit=audit)
    issuer = SSHCertificateIssuer(
        resolver=resolver,
        credentials=credentials,
        audit=audit,
        clock_skew=timedelta(seconds=settings.vault_clock_skew_seconds),
        registered_keys=self_service,
    )

    return Services(
        settings=settings,
        resolver=resolver,
        keys=keys,
        tokens=tokens,
        oidc=oidc,
        credentials=credentials,
        issuer=issuer,
        directory=directory,
        self_service=self_service,
        audit=audit,
        cluster=ClusterConfig.from_settings(settings),
        http_clients=[idp_http, keycloak_http, vault_http],
    )


# --- Module Notes -----------------------------------------------------------
# Nothing here is a module-level singleton; tests build their own container
# against fake upstreams.
