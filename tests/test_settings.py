"""
tests.test_settings

Settings loading from the environment and role-table validation.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from identity_portal.settings import Settings


def test_defaults() -> None:
    s = Settings(env="test")
    assert s.token_audience == s.oidc_client_id
    assert [r.name for r in s.roles] == ["admin", "infra", "developer"]
    assert s.group_roles["network-engineers"] == "infra"
    assert s.vault_sa_token_path == "/var/run/secrets/kubernetes.io/serviceaccount/token"


def test_secrets_hidden_from_repr() -> None:
    s = Settings(env="test", oidc_client_secret="s3cr3t", keycloak_client_secret="adm1n")
    assert "s3cr3t" not in repr(s)
    assert "adm1n" not in repr(s)


def test_role_table_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    roles = [
        {
            "name": "oncall",
            "signing_role": "oncall-role",
            "max_ttl": "PT4H",
            "principals": ["rocky"],
            "precedence": 1,
        }
    ]
    monkeypatch.setenv("IDP_ROLES", json.dumps(roles))
    monkeypatch.setenv("IDP_GROUP_ROLES", json.dumps({"sre": "oncall"}))
    monkeypatch.setenv("IDP_OIDC_AUDIENCE", "portal-api")
    s = Settings()
    assert s.roles[0].max_ttl.total_seconds() == 4 * 3600
    assert s.group_roles == {"sre": "oncall"}
    assert s.token_audience == "portal-api"


def test_group_mapping_to_unknown_role_is_rejected() -> None:
    with pytest.raises(ValidationError, match="unknown roles"):
        Settings(env="test", group_roles={"devs": "superuser"})


def test_duplicate_role_names_are_rejected() -> None:
    role = {
        "name": "dev",
        "signing_role": "dev-role",
        "max_ttl": 3600,
        "principals": ["rocky"],
        "precedence": 1,
    }
    with pytest.raises(ValidationError, match="unique"):
        Settings(env="test", roles=[role, role], group_roles={})


def test_non_positive_ttl_is_rejected() -> None:
    role = {
        "name": "dev",
        "signing_role": "dev-role",
        "max_ttl": 0,
        "principals": ["rocky"],
        "precedence": 1,
    }
    with pytest.raises(ValidationError, match="max_ttl"):
        Settings(env="test", roles=[role], group_roles={})


def test_cluster_ca_sources(tmp_path: Path) -> None:
    pem = "-----BEGIN CERTIFICATE-----\nabc\n-----END CERTIFICATE-----\n"
    assert Settings(env="test", cluster_ca_pem=pem).cluster_ca_bytes() == pem.encode()

    path = tmp_path / "ca.pem"
    path.write_text(pem)
    assert Settings(env="test", cluster_ca_path=str(path)).cluster_ca_bytes() == pem.encode()

    with pytest.raises(ValueError, match="not configured"):
        Settings(env="test", cluster_ca_pem=None, cluster_ca_path=None).cluster_ca_bytes()


def test_missing_cluster_ca_file_names_the_settings(tmp_path: Path) -> None:
    s = Settings(env="test", cluster_ca_pem=None, cluster_ca_path=str(tmp_path / "absent.pem"))
    with pytest.raises(ValueError, match="IDP_CLUSTER_CA_PATH"):
        s.cluster_ca_bytes()


def test_role_ttl_must_exceed_clock_skew() -> None:
    role = {
        "name": "dev",
        "signing_role": "dev-role",
        "max_ttl": 20,
        "principals": ["rocky"],
        "precedence": 1,
    }
    with pytest.raises(ValidationError, match="clock skew"):
        Settings(env="test", roles=[role], group_roles={}, vault_clock_skew_seconds=30)
