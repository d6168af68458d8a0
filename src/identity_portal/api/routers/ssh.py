"""
identity_portal.api.routers.ssh

SSH certificate endpoints.

Responsibilities:
- Sign a caller-supplied public key for the caller's role (or a lower one).
- List the roles the caller may request.
- Publish the CA public key (unauthenticated) for `TrustedUserCAKeys`.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from identity_portal.api.deps import services_dep
from identity_portal.auth.deps import get_principal
from identity_portal.auth.models import Principal
from identity_portal.services.container import Services

router = APIRouter(prefix="/ssh", tags=["ssh"])


class SignRequest(BaseModel):
    public_key: str = Field(min_length=1, max_length=65536)
    role: str | None = Field(default=None, max_length=64)
    principals: list[str] | None = Field(default=None, max_length=32)
    ttl_seconds: int | None = Field(default=None, gt=0)


class SignResponse(BaseModel):
    signed_key: str
    serial: str
    key_id: str
    role: str
    principals: list[str]
    valid_after: datetime
    valid_until: datetime
    ttl_seconds: int


class RoleResponse(BaseModel):
    name: str
    principals: list[str]
    max_ttl_seconds: int
    default: bool


@router.post("/sign", response_model=SignResponse)
async def sign(
    body: SignRequest,
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> SignResponse:
    ttl = timedelta(seconds=body.ttl_seconds) if body.ttl_seconds is not None else None
    cert = await services.issuer.issue(
        principal,
        body.public_key,
        role=body.role,
        principals=body.principals,
        ttl=ttl,
    )
    return SignResponse(
        signed_key=cert.signed_key,
        serial=cert.serial,
        key_id=cert.key_id,
        role=cert.role,
        principals=list(cert.principals),
        valid_after=cert.valid_after,
        valid_until=cert.valid_until,
        ttl_seconds=cert.ttl_seconds,
    )


@router.get("/roles", response_model=list[RoleResponse])
async def roles(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> list[RoleResponse]:
    requestable = services.issuer.list_roles(principal)
    return [
        RoleResponse(
            name=r.name,
            principals=list(r.principals),
            max_ttl_seconds=int(r.max_ttl.total_seconds()),
            default=i == 0,
        )
        for i, r in enumerate(requestable)
    ]


@router.get("/ca-public-key", response_class=PlainTextResponse)
async def ca_public_key(services: Services = Depends(services_dep)) -> PlainTextResponse:
    key = await services.issuer.ca_public_key()
    return PlainTextResponse(key + "\n")


# --- Module Notes -----------------------------------------------------------
# Repeating a sign request is a new grant, not a replay: expect a new serial each time.
