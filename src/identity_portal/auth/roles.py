"""
identity_portal.auth.roles

Group -> role resolution.

Responsibilities:
- Hold the immutable role precedence table loaded from settings.
- Resolve a group set to exactly one `Role` (highest privilege wins).
- Answer downgrade-only questions (may this caller request that role?).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import timedelta

from identity_portal.errors import NoEligibleRole
from identity_portal.settings import RoleConfig, Settings


@dataclass(frozen=True, slots=True)
class Role:
    name: str
    signing_role: str
    max_ttl: timedelta
    principals: tuple[str, ...]
    precedence: int

    @property
    def sort_key(self) -> tuple[int, str]:
        # Lower precedence number = more privilege; equal ranks fall back to the role name.
        return (self.precedence, self.name)

    @classmethod
    def from_config(cls, cfg: RoleConfig) -> Role:
        return cls(
            name=cfg.name,
            signing_role=cfg.signing_role,
            max_ttl=cfg.max_ttl,
            principals=tuple(cfg.principals),
            precedence=cfg.precedence,
        )


class GroupResolver:
    """
    Pure function of (group set, table). Identical inputs always yield the same Role.
    """

    def __init__(self, roles: Iterable[Role], group_roles: Mapping[str, str]) -> None:
        by_name: dict[str, Role] = {}
        for role in roles:
            if role.name in by_name:
                raise ValueError(f"duplicate role name: {role.name}")
            if role.max_ttl <= timedelta(0):
                raise ValueError(f"role {role.name} has a non-positive max_ttl")
            if not role.principals:
                raise ValueError(f"role {role.name} has no principals")
            by_name[role.name] = role
        if not by_name:
            raise ValueError("role table is empty")
        for group, role_name in group_roles.items():
            if role_name not in by_name:
                raise ValueError(f"group {group!r} maps to unknown role {role_name!r}")

        self._roles = by_name
        self._group_roles = dict(group_roles)
        self._ordered = tuple(sorted(by_name.values(), key=lambda r: r.sort_key))

    @classmethod
    def from_settings(cls, settings: Settings) -> GroupResolver:
        return cls(
            roles=[Role.from_config(r) for r in settings.roles],
            group_roles=settings.group_roles,
        )

    @property
    def roles(self) -> tuple[Role, ...]:
        return self._ordered

    @property
    def admin_role(self) -> Role:
        return self._ordered[0]

    def get(self, name: str) -> Role | None:
        return self._roles.get(name)

    def resolve(self, groups: Iterable[str]) -> Role:
        matched = [
            self._roles[self._group_roles[g]] for g in set(groups) if g in self._group_roles
        ]
        if not matched:
            raise NoEligibleRole()
        return min(matched, key=lambda r: r.sort_key)

    def allows(self, resolved: Role, requested: Role) -> bool:
        # Downgrade-only: the requested tier must not outrank the resolved one.
        return requested.sort_key >= resolved.sort_key

    def requestable(self, resolved: Role) -> list[Role]:
        return [r for r in self._ordered if self.allows(resolved, r)]

    def is_admin(self, groups: Iterable[str]) -> bool:
        try:
            return self.resolve(groups) == self.admin_role
        except NoEligibleRole:
            return False


# --- Module Notes -----------------------------------------------------------
# Policy is data: adding a group or tier is a settings change (IDP_ROLES /
# IDP_GROUP_ROLES), not a code change.
