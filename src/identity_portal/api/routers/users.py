"""
identity_portal.api.routers.users

Directory administration endpoints (admin role only).

Responsibilities:
- User CRUD and password reset.
- Group membership listing and changes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from starlette.status import HTTP_201_CREATED, HTTP_204_NO_CONTENT

from identity_portal.api.deps import services_dep
from identity_portal.auth.deps import get_principal, require_admin
from identity_portal.auth.models import Principal
from identity_portal.directory.models import (
    CreateUserRequest,
    Group,
    ResetPasswordRequest,
    UpdateUserRequest,
    User,
)
from identity_portal.services.container import Services

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(require_admin)])


@router.get("", response_model=list[User])
async def list_users(
    first: int = Query(default=0, ge=0),
    max_results: int = Query(default=100, ge=1, le=1000, alias="max"),
    search: str | None = Query(default=None, max_length=255),
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> list[User]:
    return await services.directory.list_users(
        principal, first=first, max_results=max_results, search=search
    )


@router.post("", response_model=User, status_code=HTTP_201_CREATED)
async def create_user(
    body: CreateUserRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> User:
    return await services.directory.create_user(principal, body)


@router.get("/{user_id}", response_model=User)
async def get_user(
    user_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> User:
    return await services.directory.get_user(principal, user_id)


@router.put("/{user_id}", response_model=User)
async def update_user(
    user_id: str,
    body: UpdateUserRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> User:
    return await services.directory.update_user(principal, user_id, body)


@router.delete("/{user_id}", status_code=HTTP_204_NO_CONTENT, response_class=Response)
async def delete_user(
    user_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    await services.directory.delete_user(principal, user_id)
    return Response(status_code=HTTP_204_NO_CONTENT)


@router.post(
    "/{user_id}/reset-password", status_code=HTTP_204_NO_CONTENT, response_class=Response
)
async def reset_password(
    user_id: str,
    body: ResetPasswordRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    await services.directory.reset_password(principal, user_id, body)
    return Response(status_code=HTTP_204_NO_CONTENT)


@router.get("/{user_id}/groups", response_model=list[Group])
async def user_groups(
    user_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> list[Group]:
    return await services.directory.user_groups(principal, user_id)


@router.put(
    "/{user_id}/groups/{group_id}", status_code=HTTP_204_NO_CONTENT, response_class=Response
)
async def add_user_to_group(
    user_id: str,
    group_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    await services.directory.add_user_to_group(principal, user_id, group_id)
    return Response(status_code=HTTP_204_NO_CONTENT)


@router.delete(
    "/{user_id}/groups/{group_id}", status_code=HTTP_204_NO_CONTENT, response_class=Response
)
async def remove_user_from_group(
    user_id: str,
    group_id: str,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    await services.directory.remove_user_from_group(principal, user_id, group_id)
    return Response(status_code=HTTP_204_NO_CONTENT)


# --- Module Notes -----------------------------------------------------------
# The router-level `require_admin` dependency rejects early; the gateway re-checks
# so the rule holds for any other caller of `DirectoryAdminGateway`.
