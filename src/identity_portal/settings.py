"""
identity_portal.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for every upstream (OIDC, Keycloak admin, Vault).
- Carry the group -> role precedence table as data, not code.
- Hide secrets from repr/logging (client secrets).
- Offer a cached settings instance for the process entrypoint.
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RoleConfig(BaseModel):
    """
    One authorization tier as loaded from configuration.
    Lower `precedence` means higher privilege.
    """

    name: str = Field(min_length=1)
    signing_role: str = Field(min_length=1)
    max_ttl: timedelta
    principals: list[str] = Field(min_length=1)
    precedence: int = Field(ge=0)

    @field_validator("max_ttl")
    @classmethod
    def _positive_ttl(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("max_ttl must be positive")
        return v


def _default_roles() -> list[RoleConfig]:
    return [
        RoleConfig(
            name="admin",
            signing_role="admin-role",
            max_ttl=timedelta(hours=12),
            principals=["root", "rocky"],
            precedence=0,
        ),
        RoleConfig(
            name="infra",
            signing_role="infra-role",
            max_ttl=timedelta(hours=8),
            principals=["rocky"],
            precedence=10,
        ),
        RoleConfig(
            name="developer",
            signing_role="developer-role",
            max_ttl=timedelta(hours=2),
            principals=["rocky"],
            precedence=20,
        ),
    ]


def _default_group_roles() -> dict[str, str]:
    return {
        "platform-admins": "admin",
        "infra-engineers": "infra",
        "network-engineers": "infra",
        "developers": "developer",
        "senior-developers": "developer",
    }


class Settings(BaseSettings):
    """
    Loaded once at process start; there is no hot reload.
    Complex fields (roles, group_roles, oidc_scopes) are read from env as JSON.
    """

    model_config = SettingsConfigDict(env_prefix="IDP_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "identity-portal"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080
    shutdown_grace_seconds: int = 30
    upstream_timeout_seconds: float = Field(default=10.0, gt=0)

    # OIDC (end-user authentication)
    oidc_issuer_url: str = "http://keycloak.keycloak.svc.cluster.local:8080/realms/platform"
    oidc_client_id: str = "identity-portal"
    oidc_client_secret: str = Field(default="", repr=False)
    oidc_audience: str | None = None
    oidc_groups_claim: str = "groups"
    oidc_redirect_uri: str = "http://localhost:8080/api/v1/auth/callback"
    oidc_scopes: list[str] = Field(default_factory=lambda: ["openid", "profile", "email", "groups"])
    oidc_leeway_seconds: int = 30  # iat/nbf skew; expiry is strict
    oidc_jwks_cache_ttl: float = Field(default=300.0, gt=0)
    oidc_jwks_max_stale: float = Field(default=3600.0, gt=0)
    oidc_jwks_min_refresh_interval: float = Field(default=10.0, ge=0)

    # Keycloak admin API (directory gateway)
    keycloak_url: str = "http://keycloak.keycloak.svc.cluster.local:8080"
    keycloak_realm: str = "platform"
    keycloak_client_id: str = "identity-portal-admin"
    keycloak_client_secret: str = Field(default="", repr=False)

    # Vault (SSH CA + service credential)
    vault_addr: str = "https://vault.vault.svc.cluster.local:8200"
    vault_ca_cert_path: str | None = None
    vault_ssh_mount: str = "ssh-client-signer"
    vault_auth_path: str = "auth/kubernetes"
    vault_auth_role: str = "identity-portal"
    vault_sa_token_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/token"
    vault_renew_fraction: float = Field(default=2 / 3, gt=0, lt=1)
    vault_renew_max_retries: int = Field(default=5, ge=1)
    vault_renew_backoff_initial: float = Field(default=1.0, gt=0)
    vault_renew_backoff_max: float = Field(default=30.0, gt=0)
    vault_relogin_interval: float = Field(default=15.0, gt=0)
    vault_clock_skew_seconds: int = Field(default=30, ge=0)

    # Cluster access (kubeconfig)
    cluster_name: str = "rke2"
    kube_api_server: str = "https://kubernetes.default.svc:6443"
    cluster_ca_pem: str | None = None
    cluster_ca_path: str | None = "/etc/ssl/certs/vault-root-ca.pem"

    # Authorization policy
    roles: list[RoleConfig] = Field(default_factory=_default_roles)
    group_roles: dict[str, str] = Field(default_factory=_default_group_roles)

    # Audit
    audit_log_path: str | None = None

    @model_validator(mode="after")
    def _check_role_table(self) -> Settings:
        names = [r.name for r in self.roles]
        if not names:
            raise ValueError("at least one role must be configured")
        if len(names) != len(set(names)):
            raise ValueError("role names must be unique")
        unknown = sorted(set(self.group_roles.values()) - set(names))
        if unknown:
            raise ValueError(f"group_roles references unknown roles: {', '.join(unknown)}")
        skew = timedelta(seconds=self.vault_clock_skew_seconds)
        short = [r.name for r in self.roles if r.max_ttl <= skew]
        if short:
            raise ValueError(f"max_ttl must exceed the clock skew for roles: {', '.join(short)}")
        return self

    @property
    def token_audience(self) -> str:
        return self.oidc_audience or self.oidc_client_id

    def cluster_ca_bytes(self) -> bytes:
        # Inline PEM wins; otherwise read the mounted root CA once at startup.
        if self.cluster_ca_pem:
            return self.cluster_ca_pem.encode("utf-8")
        if self.cluster_ca_path:
            try:
                return Path(self.cluster_ca_path).read_bytes()
            except OSError as e:
                raise ValueError(
                    f"cluster CA file {self.cluster_ca_path} is unreadable "
                    "(set IDP_CLUSTER_CA_PEM or IDP_CLUSTER_CA_PATH)"
                ) from e
        raise ValueError(
            "cluster CA is not configured (set IDP_CLUSTER_CA_PEM or IDP_CLUSTER_CA_PATH)"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars; the process treats settings as immutable.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Policy changes (new groups, TTLs, principals) are configuration changes: set
# IDP_ROLES / IDP_GROUP_ROLES as JSON and restart; no rebuild is required.
