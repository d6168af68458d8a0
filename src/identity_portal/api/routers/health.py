"""
identity_portal.api.routers.health

Health, readiness and metrics endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`) reporting upstream credential state.
- Expose Prometheus metrics (`/metrics`).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from identity_portal.api.deps import services_dep
from identity_portal.observability.metrics import render_latest
from identity_portal.services.container import Services

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    # Liveness: process is up and serving HTTP.
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(services: Services = Depends(services_dep)) -> dict[str, Any]:
    # Readiness stays 200 while PKI is degraded: login/userinfo must keep serving.
    pki = "ok" if services.credentials.ready else "degraded"
    jwks = "ok" if services.keys.ready else "cold"
    return {
        "status": "ok" if pki == "ok" else "degraded",
        "components": {"pki": pki, "jwks": jwks},
    }


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    body, content_type = render_latest()
    return Response(content=body, media_type=content_type)


# --- Module Notes -----------------------------------------------------------
# Kubernetes typically uses /healthz for liveness and /readyz for readiness gating.
