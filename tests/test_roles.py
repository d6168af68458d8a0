"""
tests.test_roles

Group -> role resolution: precedence, determinism, downgrade rules, table validation.
"""

from __future__ import annotations

import itertools
from datetime import timedelta

import pytest

from identity_portal.auth.roles import GroupResolver, Role
from identity_portal.errors import NoEligibleRole
from identity_portal.settings import Settings


@pytest.fixture
def resolver() -> GroupResolver:
    return GroupResolver.from_settings(Settings(env="test"))


def test_platform_admins_resolve_to_admin_tier(resolver: GroupResolver) -> None:
    role = resolver.resolve({"platform-admins"})
    assert role.name == "admin"
    assert set(role.principals) == {"root", "rocky"}
    assert role.max_ttl == timedelta(hours=12)
    assert role.signing_role == "admin-role"


def test_developers_resolve_to_developer_tier(resolver: GroupResolver) -> None:
    role = resolver.resolve({"developers"})
    assert role.name == "developer"
    assert role.principals == ("rocky",)
    assert role.max_ttl == timedelta(hours=2)


def test_empty_group_set_has_no_role(resolver: GroupResolver) -> None:
    with pytest.raises(NoEligibleRole) as exc:
        resolver.resolve(set())
    assert exc.value.status_code == 403


def test_unmapped_groups_have_no_role(resolver: GroupResolver) -> None:
    with pytest.raises(NoEligibleRole):
        resolver.resolve({"marketing", "offline_access"})


def test_highest_privilege_wins(resolver: GroupResolver) -> None:
    assert resolver.resolve({"developers", "network-engineers"}).name == "infra"
    assert resolver.resolve({"developers", "platform-admins", "infra-engineers"}).name == "admin"


def test_resolution_is_deterministic_across_orderings(resolver: GroupResolver) -> None:
    groups = ["senior-developers", "network-engineers", "unmapped", "developers"]
    results = {resolver.resolve(p) for p in itertools.permutations(groups)}
    assert len(results) == 1
    assert results.pop().name == "infra"


def test_equal_precedence_breaks_ties_by_role_name() -> None:
    day = timedelta(days=1)
    resolver = GroupResolver(
        roles=[
            Role("ops", "ops-role", day, ("rocky",), 5),
            Role("dba", "dba-role", day, ("postgres",), 5),
        ],
        group_roles={"ops-team": "ops", "db-team": "dba"},
    )
    assert resolver.resolve({"ops-team", "db-team"}).name == "dba"
    assert resolver.admin_role.name == "dba"


def test_downgrade_only(resolver: GroupResolver) -> None:
    admin = resolver.get("admin")
    developer = resolver.get("developer")
    assert admin is not None and developer is not None
    assert resolver.allows(admin, developer)
    assert resolver.allows(developer, developer)
    assert not resolver.allows(developer, admin)


def test_requestable_lists_resolved_role_and_below(resolver: GroupResolver) -> None:
    infra = resolver.resolve({"infra-engineers"})
    assert [r.name for r in resolver.requestable(infra)] == ["infra", "developer"]


def test_is_admin(resolver: GroupResolver) -> None:
    assert resolver.is_admin({"platform-admins"})
    assert not resolver.is_admin({"developers"})
    assert not resolver.is_admin(set())


def test_table_rejects_unknown_role_mapping() -> None:
    with pytest.raises(ValueError, match="unknown role"):
        GroupResolver(
            roles=[Role("dev", "dev-role", timedelta(hours=1), ("rocky",), 1)],
            group_roles={"devs": "developer"},
        )


def test_table_rejects_duplicate_and_degenerate_roles() -> None:
    role = Role("dev", "dev-role", timedelta(hours=1), ("rocky",), 1)
    with pytest.raises(ValueError, match="duplicate"):
        GroupResolver(roles=[role, role], group_roles={})
    with pytest.raises(ValueError, match="max_ttl"):
        GroupResolver(roles=[Role("x", "x-role", timedelta(0), ("rocky",), 1)], group_roles={})
    with pytest.raises(ValueError, match="principals"):
        GroupResolver(roles=[Role("x", "x-role", timedelta(hours=1), (), 1)], group_roles={})
