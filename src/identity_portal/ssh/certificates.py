"""
identity_portal.ssh.certificates

Parsing of OpenSSH user certificates returned by the PKI backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import SSHCertificate as OpenSSHCertificate

from identity_portal.errors import UpstreamUnavailable

# OpenSSH encodes "forever" as 2**64 - 1; anything past year 9999 is unbounded for us.
_MAX_TIMESTAMP = int(datetime(9999, 12, 31, tzinfo=UTC).timestamp())


@dataclass(frozen=True, slots=True)
class SSHCertificate:
    serial: str
    signed_key: str
    public_key: str
    principals: tuple[str, ...]
    key_id: str
    role: str
    issued_at: datetime
    valid_after: datetime
    valid_until: datetime
    extensions: tuple[str, ...]

    @property
    def ttl_seconds(self) -> int:
        return int((self.valid_until - self.valid_after).total_seconds())


def _timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(min(value, _MAX_TIMESTAMP), tz=UTC)


def parse_certificate(signed_key: str, *, role: str, issued_at: datetime) -> SSHCertificate:
    text = signed_key.strip()
    try:
        identity = serialization.load_ssh_public_identity(text.encode("ascii"))
    except (ValueError, UnsupportedAlgorithm) as e:
        raise UpstreamUnavailable(
            "PKI backend returned an unparsable certificate", upstream="vault", bad_response=True
        ) from e
    if not isinstance(identity, OpenSSHCertificate):
        raise UpstreamUnavailable(
            "PKI backend returned a plain key instead of a certificate",
            upstream="vault",
            bad_response=True,
        )
    if identity.type != serialization.SSHCertificateType.USER:
        raise UpstreamUnavailable(
            "PKI backend returned a host certificate", upstream="vault", bad_response=True
        )

    public_key = identity.public_key().public_bytes(
        serialization.Encoding.OpenSSH, serialization.PublicFormat.OpenSSH
    )
    return SSHCertificate(
        serial=f"{identity.serial:016x}",
        signed_key=text,
        public_key=public_key.decode("ascii"),
        principals=tuple(p.decode("utf-8") for p in identity.valid_principals),
        key_id=identity.key_id.decode("utf-8"),
        role=role,
        issued_at=issued_at,
        valid_after=_timestamp(identity.valid_after),
        valid_until=_timestamp(identity.valid_before),
        extensions=tuple(sorted(k.decode("utf-8") for k in identity.extensions)),
    )
