"""
identity_portal.pki.models

Value types exchanged with the PKI backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class ServiceCredential:
    """
    This service's own backend token. Immutable: renewal and re-login build a new
    instance and swap the reference, so a reader holding one never sees it change.
    """

    token: str = field(repr=False)
    accessor: str
    lease_seconds: int
    renewable: bool
    obtained_at: float
    renew_fraction: float = 2 / 3

    @property
    def renew_at(self) -> float:
        return self.obtained_at + self.lease_seconds * self.renew_fraction

    @property
    def expires_at(self) -> float:
        return self.obtained_at + self.lease_seconds

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True, slots=True)
class SignedKey:
    signed_key: str
    serial_number: str
