"""
identity_portal.directory

Directory administration (users, groups, memberships) and caller self-service,
backed by the Keycloak admin API.

Responsibilities:
- Typed request/response models for the admin endpoints.
- An admin REST client with its own client-credentials token.
- An admin-gated, audited gateway used by the API layer.
- Self-service profile and registered SSH key for the authenticated caller.
"""

# Package marker.
