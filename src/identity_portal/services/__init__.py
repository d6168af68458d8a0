"""
identity_portal.services

Service layer package.

Responsibilities:
- Compose the process-wide collaborators (caches, credential client, issuer,
  gateway) into one explicit container handed to the API layer.
"""

# Package marker.
