"""
identity_portal.api.routers.groups

Group administration endpoints (admin role only).

Responsibilities:
- Group CRUD.
- Member listing and changes from the group side.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from starlette.status import HTTP_201_CREATED, HTTP_204_NO_CONTENT

from identity_portal.api.deps import services_dep
from identity_portal.auth.deps import get_principal, require_admin
from identity_portal.auth.models import Principal
from identity_portal.directory.models import (
    CreateGroupRequest,
    Group,
    GroupDetail,
    GroupMemberRequest,
    UpdateGroupRequest,
    User,
)
from identity_portal.services.container import Services

router = APIRouter(prefix="/groups", tags=["groups"], dependencies=[Depends(require_admin)])


@router.get("", response_model=list[Group])
async def list_groups(
    search: str | None = Query(default=None, max_length=255),
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> list[Group]:
    return await services.directory.list_groups(principal, search=search)


@router.post("", response_model=Group, status_code=HTTP_201_CREATED)
async def create_group(
    body: CreateGroupRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Group:
    return await services.directory.create_group(principal, body)


@router.get("/{group_id}", response_model=GroupDetail)
async def get_group(
    group_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> GroupDetail:
    return await services.directory.get_group(principal, group_id)


@router.put("/{group_id}", response_model=Group)
async def update_group(
    group_id: str,
    body: UpdateGroupRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Group:
    return await services.directory.update_group(principal, group_id, body)


@router.delete("/{group_id}", status_code=HTTP_204_NO_CONTENT, response_class=Response)
async def delete_group(
    group_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    await services.directory.delete_group(principal, group_id)
    return Response(status_code=HTTP_204_NO_CONTENT)


@router.get("/{group_id}/members", response_model=list[User])
async def group_members(
    group_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> list[User]:
    return await services.directory.group_members(principal, group_id)


@router.post("/{group_id}/members", status_code=HTTP_204_NO_CONTENT, response_class=Response)
async def add_member(
    group_id: str,
    body: GroupMemberRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    await services.directory.add_user_to_group(principal, body.user_id, group_id)
    return Response(status_code=HTTP_204_NO_CONTENT)


@router.delete(
    "/{group_id}/members/{user_id}", status_code=HTTP_204_NO_CONTENT, response_class=Response
)
async def remove_member(
    group_id: str,
    user_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    await services.directory.remove_user_from_group(principal, user_id, group_id)
    return Response(status_code=HTTP_204_NO_CONTENT)
