"""
identity_portal.auth

Authentication/authorization package.

Responsibilities:
- OIDC discovery, login (authorization code + PKCE) and logout.
- Signing-key cache and bearer token validation.
- Group -> role resolution and FastAPI auth dependencies.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Nothing in this package talks to the PKI backend; auth keeps working while it is down.
