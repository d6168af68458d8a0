"""
identity_portal.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`) injected into endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity, rebuilt from a validated token on every request.
    """

    subject: str
    username: str
    email: str
    groups: frozenset[str]
    expires_at: datetime


# --- Module Notes -----------------------------------------------------------
# Keep this model minimal; authorization decisions go through `auth.roles`.
