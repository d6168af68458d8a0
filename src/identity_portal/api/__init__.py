"""
identity_portal.api

HTTP API package (FastAPI).

Responsibilities:
- App factory, middleware and exception handler wiring.
- Routers for auth, SSH, kubeconfig, user administration and health.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Run with `python -m identity_portal.api` or the `identity-portal` console script.
