"""
identity_portal.api.routers.kubeconfig

Kubeconfig download endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from identity_portal.api.deps import services_dep
from identity_portal.auth.deps import get_principal
from identity_portal.auth.models import Principal
from identity_portal.errors import AuditWriteFailed
from identity_portal.kubeconfig import build_kubeconfig, render_kubeconfig
from identity_portal.observability.audit import AuditEvent, AuditResult, AuditWriteError
from identity_portal.observability.logging import get_logger
from identity_portal.observability.metrics import KUBECONFIGS_GENERATED_TOTAL
from identity_portal.services.container import Services

router = APIRouter(tags=["kubeconfig"])

log = get_logger(__name__)


@router.get("/kubeconfig", response_class=Response)
async def kubeconfig(
    principal: Principal = Depends(get_principal),
    services: Services = Depends(services_dep),
) -> Response:
    bundle = build_kubeconfig(principal, services.cluster)
    body = render_kubeconfig(bundle)
    try:
        await services.audit.emit(
            AuditEvent(
                actor=principal.username,
                action="kubeconfig.download",
                target=bundle.cluster_name,
                result=AuditResult.success,
            )
        )
    except AuditWriteError as e:
        raise AuditWriteFailed() from e

    KUBECONFIGS_GENERATED_TOTAL.inc()
    log.info("kubeconfig_generated", cluster=bundle.cluster_name)
    return Response(
        content=body,
        media_type="application/x-yaml",
        headers={"Content-Disposition": f'attachment; filename="{bundle.filename}"'},
    )
