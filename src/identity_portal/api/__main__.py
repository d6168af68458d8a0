"""
identity_portal.api.__main__

Entrypoint for running the FastAPI application via `python -m identity_portal.api`.

Responsibilities:
- Load settings.
- Create the app.
- Start uvicorn with structlog-compatible logging config and a bounded shutdown drain.
"""

from __future__ import annotations

import uvicorn

from identity_portal.api.app import create_app
from identity_portal.settings import get_settings


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # structlog
        timeout_graceful_shutdown=settings.shutdown_grace_seconds,
    )


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Behind Kubernetes, SIGTERM starts the drain; terminationGracePeriodSeconds should
# exceed IDP_SHUTDOWN_GRACE_SECONDS.
