"""
identity_portal.api.routers.self_service

Endpoints scoped to the authenticated caller.

Responsibilities:
- The caller's directory profile.
- Register, show and remove the SSH public key certificates are bound to.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from starlette.status import HTTP_204_NO_CONTENT

from identity_portal.api.deps import services_dep
from identity_portal.auth.deps import get_principal
from identity_portal.auth.models import Principal
from identity_portal.directory.models import Profile, SSHPublicKeyRequest, SSHPublicKeyResponse
from identity_portal.services.container import Services

router = APIRouter(prefix="/self", tags=["self"])


@router.get("/profile", response_model=Profile)
async def profile(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Profile:
    return await services.self_service.profile(principal)


@router.get("/ssh/public-key", response_model=SSHPublicKeyResponse)
async def get_public_key(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> SSHPublicKeyResponse:
    return await services.self_service.get_key(principal)


@router.put("/ssh/public-key", response_model=SSHPublicKeyResponse)
async def register_public_key(
    body: SSHPublicKeyRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> SSHPublicKeyResponse:
    return await services.self_service.register_key(principal, body.public_key)


@router.delete("/ssh/public-key", status_code=HTTP_204_NO_CONTENT, response_class=Response)
async def delete_public_key(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    await services.self_service.delete_key(principal)
    return Response(status_code=HTTP_204_NO_CONTENT)


# --- Module Notes -----------------------------------------------------------
# Once a key is registered, /ssh/sign only accepts that key (KEY_MISMATCH otherwise).
