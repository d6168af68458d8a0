"""
tests.test_gateway

Directory admin gateway and Keycloak admin client against the fake Keycloak.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from fakes import (
    ADMIN_CLIENT_ID,
    ADMIN_CLIENT_SECRET,
    KEYCLOAK_URL,
    REALM,
    FailingSink,
    FakeClock,
    FakeKeycloak,
    RecordingSink,
)
from identity_portal.auth.models import Principal
from identity_portal.auth.roles import GroupResolver
from identity_portal.directory.gateway import DirectoryAdminGateway
from identity_portal.directory.keycloak import KeycloakAdminClient
from identity_portal.directory.models import (
    CreateGroupRequest,
    CreateUserRequest,
    ResetPasswordRequest,
    UpdateGroupRequest,
    UpdateUserRequest,
)
from identity_portal.errors import (
    AuditWriteFailed,
    Conflict,
    Forbidden,
    InvalidRequest,
    NotFound,
    UpstreamUnavailable,
)
from identity_portal.observability.audit import AuditEmitter, AuditSink
from identity_portal.settings import Settings

ADMIN = Principal(
    subject="sub-root",
    username="root-admin",
    email="root@example.com",
    groups=frozenset({"platform-admins"}),
    expires_at=datetime.now(tz=UTC) + timedelta(hours=1),
)
DEVELOPER = Principal(
    subject="sub-dev",
    username="dev",
    email="dev@example.com",
    groups=frozenset({"developers"}),
    expires_at=datetime.now(tz=UTC) + timedelta(hours=1),
)

GatewayFactory = Callable[..., DirectoryAdminGateway]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
async def make_gateway(
    transport: httpx.MockTransport, clock: FakeClock, sink: RecordingSink
) -> AsyncIterator[GatewayFactory]:
    async with httpx.AsyncClient(transport=transport, base_url=KEYCLOAK_URL) as http:

        def factory(
            *, secret: str = ADMIN_CLIENT_SECRET, sinks: list[AuditSink] | None = None
        ) -> DirectoryAdminGateway:
            client = KeycloakAdminClient(
                http=http,
                realm=REALM,
                client_id=ADMIN_CLIENT_ID,
                client_secret=secret,
                clock=clock,
            )
            return DirectoryAdminGateway(
                client=client,
                resolver=GroupResolver.from_settings(Settings(env="test")),
                audit=AuditEmitter(sinks if sinks is not None else [sink]),
            )

        yield factory


@pytest.fixture
def gateway(make_gateway: GatewayFactory) -> DirectoryAdminGateway:
    return make_gateway()


@pytest.mark.asyncio
async def test_create_user_with_initial_password(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, sink: RecordingSink
) -> None:
    req = CreateUserRequest(
        username="bob", email="bob@example.com", first_name="Bob", password="s3cret-pass"
    )
    user = await gateway.create_user(ADMIN, req)
    assert user.username == "bob"
    assert user.first_name == "Bob"
    assert user.enabled
    assert keycloak.passwords[user.id] == {
        "type": "password",
        "value": "s3cret-pass",
        "temporary": True,
    }
    assert sink.actions() == [("user.create", "success")]
    assert "s3cret-pass" not in str(sink.records)
    assert sink.records[0]["actor"] == "root-admin"


@pytest.mark.asyncio
async def test_non_admin_is_forbidden_and_nothing_is_called(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, sink: RecordingSink
) -> None:
    with pytest.raises(Forbidden):
        await gateway.create_user(DEVELOPER, CreateUserRequest(username="mallory"))
    with pytest.raises(Forbidden):
        await gateway.list_users(DEVELOPER)
    assert keycloak.users == {}
    assert keycloak.admin_token_calls == 0
    assert sink.actions() == [("user.create", "denied"), ("user.list", "denied")]


@pytest.mark.asyncio
async def test_duplicate_user_is_conflict(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, sink: RecordingSink
) -> None:
    keycloak.add_user("bob")
    with pytest.raises(Conflict, match="same username"):
        await gateway.create_user(ADMIN, CreateUserRequest(username="bob"))
    assert sink.actions() == [("user.create", "failure")]


@pytest.mark.asyncio
async def test_missing_user_is_not_found(gateway: DirectoryAdminGateway) -> None:
    with pytest.raises(NotFound):
        await gateway.get_user(ADMIN, "does-not-exist")
    with pytest.raises(NotFound):
        await gateway.delete_user(ADMIN, "does-not-exist")


@pytest.mark.asyncio
async def test_path_traversal_in_ids_is_rejected(gateway: DirectoryAdminGateway) -> None:
    with pytest.raises(InvalidRequest):
        await gateway.get_user(ADMIN, "..")
    with pytest.raises(InvalidRequest):
        await gateway.add_user_to_group(ADMIN, "u-1", "a/b")


@pytest.mark.asyncio
async def test_audit_failure_keeps_the_mutation(
    make_gateway: GatewayFactory, keycloak: FakeKeycloak
) -> None:
    gateway = make_gateway(sinks=[FailingSink()])
    uid = keycloak.add_user("bob")
    with pytest.raises(AuditWriteFailed) as exc:
        await gateway.delete_user(ADMIN, uid)
    assert exc.value.status_code == 500
    assert uid not in keycloak.users


@pytest.mark.asyncio
async def test_update_merges_supplied_fields_only(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, sink: RecordingSink
) -> None:
    uid = keycloak.add_user("bob", firstName="Bob", lastName="Builder", email="bob@example.com")
    user = await gateway.update_user(ADMIN, uid, UpdateUserRequest(last_name="Smith"))
    assert user.first_name == "Bob"
    assert user.last_name == "Smith"
    assert keycloak.users[uid]["email"] == "bob@example.com"
    assert sink.records[-1]["details"] == {"fields": ["last_name"]}


@pytest.mark.asyncio
async def test_reset_password(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, sink: RecordingSink
) -> None:
    uid = keycloak.add_user("bob")
    await gateway.reset_password(
        ADMIN, uid, ResetPasswordRequest(password="n3w-password", temporary=False)
    )
    assert keycloak.passwords[uid]["value"] == "n3w-password"
    assert keycloak.passwords[uid]["temporary"] is False
    assert sink.actions() == [("user.reset_password", "success")]
    assert "n3w-password" not in str(sink.records)


@pytest.mark.asyncio
async def test_group_membership(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, sink: RecordingSink
) -> None:
    uid = keycloak.add_user("bob")
    await gateway.add_user_to_group(ADMIN, uid, "g-developers")
    groups = await gateway.user_groups(ADMIN, uid)
    assert [(g.id, g.name, g.path) for g in groups] == [
        ("g-developers", "developers", "/developers")
    ]

    await gateway.remove_user_from_group(ADMIN, uid, "g-developers")
    assert await gateway.user_groups(ADMIN, uid) == []
    assert sink.actions() == [
        ("group.add_member", "success"),
        ("group.remove_member", "success"),
    ]

    with pytest.raises(NotFound):
        await gateway.add_user_to_group(ADMIN, uid, "g-missing")


@pytest.mark.asyncio
async def test_list_users_paging_and_search(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak
) -> None:
    for name in ("alice", "bob", "bobby", "carol"):
        keycloak.add_user(name)
    page = await gateway.list_users(ADMIN, first=1, max_results=2)
    assert [u.username for u in page] == ["bob", "bobby"]
    found = await gateway.list_users(ADMIN, search="bob")
    assert [u.username for u in found] == ["bob", "bobby"]


@pytest.mark.asyncio
async def test_admin_token_is_cached_until_near_expiry(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, clock: FakeClock
) -> None:
    await gateway.list_users(ADMIN)
    clock.advance(269)
    await gateway.list_users(ADMIN)
    assert keycloak.admin_token_calls == 1

    clock.advance(2)
    await gateway.list_users(ADMIN)
    assert keycloak.admin_token_calls == 2


@pytest.mark.asyncio
async def test_revoked_admin_token_is_retried_once(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak
) -> None:
    await gateway.list_users(ADMIN)
    keycloak.admin_tokens.clear()
    await gateway.list_users(ADMIN)
    assert keycloak.admin_token_calls == 2


@pytest.mark.asyncio
async def test_rejected_admin_credential_is_bad_gateway(make_gateway: GatewayFactory) -> None:
    gateway = make_gateway(secret="wrong")
    with pytest.raises(UpstreamUnavailable) as exc:
        await gateway.list_users(ADMIN)
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_unreachable_keycloak(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak
) -> None:
    keycloak.unreachable = True
    with pytest.raises(UpstreamUnavailable) as exc:
        await gateway.list_users(ADMIN)
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_group_lifecycle(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, sink: RecordingSink
) -> None:
    group = await gateway.create_group(ADMIN, CreateGroupRequest(name="sre"))
    assert group.name == "sre"
    assert group.path == "/sre"

    names = [g.name for g in await gateway.list_groups(ADMIN)]
    assert "sre" in names and "developers" in names
    assert [g.name for g in await gateway.list_groups(ADMIN, search="sr")] == ["sre"]

    uid = keycloak.add_user("bob")
    await gateway.add_user_to_group(ADMIN, uid, group.id)
    detail = await gateway.get_group(ADMIN, group.id)
    assert detail.members == ["bob"]
    assert [u.username for u in await gateway.group_members(ADMIN, group.id)] == ["bob"]

    renamed = await gateway.update_group(ADMIN, group.id, UpdateGroupRequest(name="oncall"))
    assert renamed.name == "oncall"

    await gateway.delete_group(ADMIN, group.id)
    with pytest.raises(NotFound):
        await gateway.get_group(ADMIN, group.id)
    assert keycloak.memberships[uid] == set()

    assert [a for a, result in sink.actions() if result == "success"] == [
        "group.create",
        "group.add_member",
        "group.update",
        "group.delete",
    ]


@pytest.mark.asyncio
async def test_duplicate_group_is_conflict(
    gateway: DirectoryAdminGateway, sink: RecordingSink
) -> None:
    with pytest.raises(Conflict, match="already exists"):
        await gateway.create_group(ADMIN, CreateGroupRequest(name="developers"))
    assert sink.actions() == [("group.create", "failure")]


@pytest.mark.asyncio
async def test_group_admin_requires_admin(
    gateway: DirectoryAdminGateway, keycloak: FakeKeycloak, sink: RecordingSink
) -> None:
    with pytest.raises(Forbidden):
        await gateway.list_groups(DEVELOPER)
    with pytest.raises(Forbidden):
        await gateway.delete_group(DEVELOPER, "g-developers")
    assert "g-developers" in keycloak.groups
    assert keycloak.admin_token_calls == 0
    assert sink.actions() == [("group.list", "denied"), ("group.delete", "denied")]
