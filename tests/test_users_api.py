"""
tests.test_users_api

Directory administration endpoints: admin gate, CRUD, memberships, error mapping.
"""

from __future__ import annotations

import pytest

from conftest import Portal
from fakes import FailingSink
from identity_portal.observability.audit import AuditEmitter

USERS = "/api/v1/users"
GROUPS = "/api/v1/groups"


def _admin(portal: Portal) -> dict[str, str]:
    return portal.bearer(username="root-admin", groups=["platform-admins"])


@pytest.mark.asyncio
async def test_non_admin_is_forbidden_and_audited(portal: Portal) -> None:
    r = await portal.client.get(USERS, headers=portal.bearer(groups=["infra-engineers"]))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "FORBIDDEN"
    assert portal.audit.actions() == [("directory.access", "denied")]
    assert portal.keycloak.admin_token_calls == 0


@pytest.mark.asyncio
async def test_caller_without_role_gets_no_eligible_role(portal: Portal) -> None:
    r = await portal.client.delete(f"{USERS}/u-1", headers=portal.bearer(groups=[]))
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "NO_ELIGIBLE_ROLE"


@pytest.mark.asyncio
async def test_anonymous_is_401(portal: Portal) -> None:
    r = await portal.client.get(USERS)
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_user_lifecycle(portal: Portal) -> None:
    headers = _admin(portal)
    r = await portal.client.post(
        USERS,
        json={"username": "bob", "email": "bob@example.com", "password": "initial-pass"},
        headers=headers,
    )
    assert r.status_code == 201
    user = r.json()
    assert user["username"] == "bob"
    assert "password" not in user
    uid = user["id"]

    r = await portal.client.get(USERS, params={"search": "bo", "max": 10}, headers=headers)
    assert [u["username"] for u in r.json()] == ["bob"]

    r = await portal.client.put(f"{USERS}/{uid}", json={"first_name": "Bob"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["first_name"] == "Bob"
    assert r.json()["email"] == "bob@example.com"

    r = await portal.client.post(
        f"{USERS}/{uid}/reset-password",
        json={"password": "rotated-pass", "temporary": True},
        headers=headers,
    )
    assert r.status_code == 204

    r = await portal.client.put(f"{USERS}/{uid}/groups/g-developers", headers=headers)
    assert r.status_code == 204
    r = await portal.client.get(f"{USERS}/{uid}/groups", headers=headers)
    assert [g["name"] for g in r.json()] == ["developers"]
    r = await portal.client.delete(f"{USERS}/{uid}/groups/g-developers", headers=headers)
    assert r.status_code == 204

    r = await portal.client.delete(f"{USERS}/{uid}", headers=headers)
    assert r.status_code == 204
    r = await portal.client.get(f"{USERS}/{uid}", headers=headers)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"

    assert [a for a, result in portal.audit.actions() if result == "success"] == [
        "user.create",
        "user.update",
        "user.reset_password",
        "group.add_member",
        "group.remove_member",
        "user.delete",
    ]
    assert "initial-pass" not in str(portal.audit.records)
    assert "rotated-pass" not in str(portal.audit.records)


@pytest.mark.asyncio
async def test_duplicate_username_is_409(portal: Portal) -> None:
    portal.keycloak.add_user("bob")
    r = await portal.client.post(USERS, json={"username": "bob"}, headers=_admin(portal))
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_short_password_is_rejected(portal: Portal) -> None:
    uid = portal.keycloak.add_user("bob")
    r = await portal.client.post(
        f"{USERS}/{uid}/reset-password", json={"password": "short"}, headers=_admin(portal)
    )
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "INVALID_REQUEST"
    assert uid not in portal.keycloak.passwords


@pytest.mark.asyncio
async def test_keycloak_outage_is_503(portal: Portal) -> None:
    headers = _admin(portal)
    await portal.client.get("/api/v1/auth/userinfo", headers=headers)
    portal.keycloak.unreachable = True
    r = await portal.client.get(USERS, headers=headers)
    assert r.status_code == 503
    assert "retry-after" in r.headers


@pytest.mark.asyncio
async def test_audit_failure_after_mutation_is_500_and_mutation_stands(
    portal: Portal, monkeypatch: pytest.MonkeyPatch
) -> None:
    uid = portal.keycloak.add_user("bob")
    monkeypatch.setattr(portal.services.directory, "_audit", AuditEmitter([FailingSink()]))
    r = await portal.client.delete(f"{USERS}/{uid}", headers=_admin(portal))
    assert r.status_code == 500
    assert r.json()["error"]["code"] == "AUDIT_WRITE_FAILED"
    assert uid not in portal.keycloak.users


@pytest.mark.asyncio
async def test_group_endpoints(portal: Portal) -> None:
    headers = _admin(portal)
    r = await portal.client.post(GROUPS, json={"name": "sre"}, headers=headers)
    assert r.status_code == 201
    gid = r.json()["id"]

    uid = portal.keycloak.add_user("bob")
    r = await portal.client.post(f"{GROUPS}/{gid}/members", json={"user_id": uid}, headers=headers)
    assert r.status_code == 204

    r = await portal.client.get(f"{GROUPS}/{gid}", headers=headers)
    assert r.json()["members"] == ["bob"]
    r = await portal.client.get(f"{GROUPS}/{gid}/members", headers=headers)
    assert [u["username"] for u in r.json()] == ["bob"]

    r = await portal.client.put(f"{GROUPS}/{gid}", json={"name": "oncall"}, headers=headers)
    assert r.json()["name"] == "oncall"

    r = await portal.client.delete(f"{GROUPS}/{gid}/members/{uid}", headers=headers)
    assert r.status_code == 204
    r = await portal.client.delete(f"{GROUPS}/{gid}", headers=headers)
    assert r.status_code == 204
    r = await portal.client.get(GROUPS, headers=headers)
    assert "oncall" not in [g["name"] for g in r.json()]


@pytest.mark.asyncio
async def test_group_name_with_slash_is_rejected(portal: Portal) -> None:
    r = await portal.client.post(GROUPS, json={"name": "a/b"}, headers=_admin(portal))
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_group_endpoints_require_admin(portal: Portal) -> None:
    r = await portal.client.get(GROUPS, headers=portal.bearer(groups=["developers"]))
    assert r.status_code == 403
    assert portal.audit.actions() == [("directory.access", "denied")]
