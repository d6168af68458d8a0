"""
identity_portal.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings and the services container.
- Encapsulate app.state access patterns.
"""

from __future__ import annotations

from fastapi import Request

from identity_portal.services.container import Services
from identity_portal.settings import Settings


def settings_dep(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]


def services_dep(request: Request) -> Services:
    # The container is created in the lifespan of `identity_portal.api.app.create_app`.
    return request.app.state.services  # type: ignore[no-any-return]


# --- Module Notes -----------------------------------------------------------
# Handlers never reach into app.state directly; swapping the container in tests
# is a matter of passing `services=` to `create_app`.
