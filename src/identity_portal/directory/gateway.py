"""
identity_portal.directory.gateway

Admin-gated, audited front door to directory administration.

Responsibilities:
- Require the actor's resolved role to be the top-precedence (admin) role.
- Call the Keycloak admin client.
- Write an audit record for every mutation before reporting success.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from identity_portal.auth.models import Principal
from identity_portal.auth.roles import GroupResolver
from identity_portal.directory.keycloak import KeycloakAdminClient
from identity_portal.directory.models import (
    CreateGroupRequest,
    CreateUserRequest,
    Group,
    GroupDetail,
    ResetPasswordRequest,
    UpdateGroupRequest,
    UpdateUserRequest,
    User,
)
from identity_portal.errors import AuditWriteFailed, Forbidden, IdentityPortalError, NoEligibleRole
from identity_portal.observability.audit import (
    AuditEmitter,
    AuditEvent,
    AuditResult,
    AuditWriteError,
)
from identity_portal.observability.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


async def audited_mutation(
    audit: AuditEmitter,
    actor: Principal,
    action: str,
    target: str,
    call: Callable[[], Awaitable[T]],
    details: dict[str, Any] | None = None,
) -> T:
    """
    Run a directory mutation, then write its audit record. Failures are audited
    best-effort; success is audited strictly and `AuditWriteFailed` is raised if
    that write fails, with the mutation left in place.
    """

    try:
        result = await call()
    except IdentityPortalError as e:
        await audit.emit_best_effort(
            AuditEvent(
                actor=actor.username,
                action=action,
                target=target,
                result=AuditResult.failure,
                details={**(details or {}), "error": e.code},
            )
        )
        raise

    try:
        await audit.emit(
            AuditEvent(
                actor=actor.username,
                action=action,
                target=target,
                result=AuditResult.success,
                details=details or {},
            )
        )
    except AuditWriteError as e:
        log.error("directory_mutation_unaudited", action=action, target=target)
        raise AuditWriteFailed() from e
    return result


class DirectoryAdminGateway:
    def __init__(
        self,
        *,
        client: KeycloakAdminClient,
        resolver: GroupResolver,
        audit: AuditEmitter,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._audit = audit

    async def _authorize(self, actor: Principal, action: str, target: str) -> None:
        try:
            allowed = self._resolver.resolve(actor.groups) == self._resolver.admin_role
        except NoEligibleRole:
            allowed = False
        if allowed:
            return
        await self._audit.emit_best_effort(
            AuditEvent(
                actor=actor.username, action=action, target=target, result=AuditResult.denied
            )
        )
        raise Forbidden("administrator role required")

    async def _mutate(
        self,
        actor: Principal,
        action: str,
        target: str,
        call: Callable[[], Awaitable[T]],
        details: dict[str, Any] | None = None,
    ) -> T:
        await self._authorize(actor, action, target)
        return await audited_mutation(self._audit, actor, action, target, call, details)

    # -- reads ---------------------------------------------------------------

    async def list_users(
        self, actor: Principal, *, first: int = 0, max_results: int = 100, search: str | None = None
    ) -> list[User]:
        await self._authorize(actor, "user.list", "users")
        return await self._client.list_users(first=first, max_results=max_results, search=search)

    async def get_user(self, actor: Principal, user_id: str) -> User:
        await self._authorize(actor, "user.get", user_id)
        return await self._client.get_user(user_id)

    async def user_groups(self, actor: Principal, user_id: str) -> list[Group]:
        await self._authorize(actor, "user.groups", user_id)
        return await self._client.user_groups(user_id)

    async def list_groups(self, actor: Principal, *, search: str | None = None) -> list[Group]:
        await self._authorize(actor, "group.list", "groups")
        return await self._client.list_groups(search=search)

    async def get_group(self, actor: Principal, group_id: str) -> GroupDetail:
        await self._authorize(actor, "group.get", group_id)
        group = await self._client.get_group(group_id)
        members = await self._client.group_members(group_id)
        return GroupDetail(**group.model_dump(), members=sorted(m.username for m in members))

    async def group_members(self, actor: Principal, group_id: str) -> list[User]:
        await self._authorize(actor, "group.members", group_id)
        return await self._client.group_members(group_id)

    # -- mutations -----------------------------------------------------------

    async def create_user(self, actor: Principal, req: CreateUserRequest) -> User:
        return await self._mutate(
            actor,
            "user.create",
            req.username,
            lambda: self._client.create_user(req),
            {"initial_password": req.password is not None},
        )

    async def update_user(self, actor: Principal, user_id: str, req: UpdateUserRequest) -> User:
        return await self._mutate(
            actor,
            "user.update",
            user_id,
            lambda: self._client.update_user(user_id, req),
            {"fields": req.changed_fields()},
        )

    async def delete_user(self, actor: Principal, user_id: str) -> None:
        await self._mutate(actor, "user.delete", user_id, lambda: self._client.delete_user(user_id))

    async def reset_password(
        self, actor: Principal, user_id: str, req: ResetPasswordRequest
    ) -> None:
        await self._mutate(
            actor,
            "user.reset_password",
            user_id,
            lambda: self._client.reset_password(
                user_id, req.password.get_secret_value(), temporary=req.temporary
            ),
            {"temporary": req.temporary},
        )

    async def add_user_to_group(self, actor: Principal, user_id: str, group_id: str) -> None:
        await self._mutate(
            actor,
            "group.add_member",
            user_id,
            lambda: self._client.add_user_to_group(user_id, group_id),
            {"group_id": group_id},
        )

    async def remove_user_from_group(self, actor: Principal, user_id: str, group_id: str) -> None:
        await self._mutate(
            actor,
            "group.remove_member",
            user_id,
            lambda: self._client.remove_user_from_group(user_id, group_id),
            {"group_id": group_id},
        )

    async def create_group(self, actor: Principal, req: CreateGroupRequest) -> Group:
        return await self._mutate(
            actor, "group.create", req.name, lambda: self._client.create_group(req)
        )

    async def update_group(
        self, actor: Principal, group_id: str, req: UpdateGroupRequest
    ) -> Group:
        return await self._mutate(
            actor,
            "group.update",
            group_id,
            lambda: self._client.update_group(group_id, req),
            {"name": req.name},
        )

    async def delete_group(self, actor: Principal, group_id: str) -> None:
        await self._mutate(
            actor, "group.delete", group_id, lambda: self._client.delete_group(group_id)
        )


# --- Module Notes -----------------------------------------------------------
# There is no rollback: if the audit write fails after Keycloak accepted a change,
# the change stands and the caller gets AUDIT_WRITE_FAILED so an operator looks.
