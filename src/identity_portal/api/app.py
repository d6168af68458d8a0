"""
identity_portal.api.app

FastAPI app factory for the Identity Portal service.

Responsibilities:
- Build the FastAPI application and register routers/middleware/error handlers.
- Create, start and dispose the services container in the app lifespan.
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from identity_portal import __version__
from identity_portal.api.errors import register_exception_handlers
from identity_portal.api.routers.auth import router as auth_router
from identity_portal.api.routers.groups import router as groups_router
from identity_portal.api.routers.health import router as health_router
from identity_portal.api.routers.kubeconfig import router as kubeconfig_router
from identity_portal.api.routers.self_service import router as self_router
from identity_portal.api.routers.ssh import router as ssh_router
from identity_portal.api.routers.users import router as users_router
from identity_portal.observability.logging import configure_logging, get_logger
from identity_portal.observability.middleware import RecoveryMiddleware, RequestContextMiddleware
from identity_portal.services.container import Services, build_services
from identity_portal.settings import Settings

log = get_logger(__name__)

API_PREFIX = "/api/v1"


def create_app(*, settings: Settings, services: Services | None = None) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        container = services or build_services(settings)
        app.state.services = container
        await container.start()
        try:
            yield
        finally:
            # uvicorn has already drained connections (bounded by shutdown_grace_seconds);
            # this joins background tasks and closes upstream clients.
            await container.aclose()
            log.info("shutdown")

    app = FastAPI(
        title="Identity Portal",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Last added runs first: RequestContext wraps Recovery so 500s still get a request id.
    app.add_middleware(RecoveryMiddleware)
    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(ssh_router, prefix=API_PREFIX)
    app.include_router(kubeconfig_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)
    app.include_router(groups_router, prefix=API_PREFIX)
    app.include_router(self_router, prefix=API_PREFIX)
    return app


# --- Module Notes -----------------------------------------------------------
# This file is intentionally small: app composition stays here; business logic stays
# in the ssh/directory/kubeconfig modules.
