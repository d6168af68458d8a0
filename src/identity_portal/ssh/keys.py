"""
identity_portal.ssh.keys

OpenSSH public key validation.

Responsibilities:
- Accept only single-line `ssh-ed25519` and `ssh-rsa` (>= 4096 bits) keys.
- Produce a normalized key (type + blob, comment dropped) and its SHA256 fingerprint.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from identity_portal.errors import InvalidPublicKey

MAX_PUBLIC_KEY_BYTES = 16 * 1024
MIN_RSA_BITS = 4096
ALLOWED_KEY_TYPES = ("ssh-ed25519", "ssh-rsa")


@dataclass(frozen=True, slots=True)
class PublicKeyInfo:
    key_type: str
    bits: int
    fingerprint: str
    normalized: str


def fingerprint(blob: bytes) -> str:
    digest = hashlib.sha256(blob).digest()
    return "SHA256:" + base64.b64encode(digest).rstrip(b"=").decode("ascii")


def parse_public_key(text: str) -> PublicKeyInfo:
    if len(text.encode("utf-8")) > MAX_PUBLIC_KEY_BYTES:
        raise InvalidPublicKey("public key exceeds 16 KiB")
    line = text.strip()
    if not line:
        raise InvalidPublicKey("public key is empty")
    if "\n" in line or "\r" in line:
        raise InvalidPublicKey("public key must be a single line")

    parts = line.split()
    if len(parts) < 2:
        raise InvalidPublicKey("public key must be '<type> <base64> [comment]'")
    key_type, b64 = parts[0], parts[1]
    if key_type not in ALLOWED_KEY_TYPES:
        raise InvalidPublicKey(f"unsupported key type {key_type!r}; use ssh-ed25519 or ssh-rsa")

    normalized = f"{key_type} {b64}"
    try:
        blob = base64.b64decode(b64, validate=True)
        key = serialization.load_ssh_public_key(normalized.encode("ascii"))
    except (binascii.Error, ValueError, UnsupportedAlgorithm) as e:
        raise InvalidPublicKey("public key could not be parsed") from e

    if isinstance(key, ed25519.Ed25519PublicKey):
        bits = 256
    elif isinstance(key, rsa.RSAPublicKey):
        bits = key.key_size
        if bits < MIN_RSA_BITS:
            raise InvalidPublicKey(f"RSA keys must be at least {MIN_RSA_BITS} bits (got {bits})")
    else:
        raise InvalidPublicKey("unsupported key algorithm")

    return PublicKeyInfo(
        key_type=key_type,
        bits=bits,
        fingerprint=fingerprint(blob),
        normalized=normalized,
    )


# --- Module Notes -----------------------------------------------------------
# Validation runs before any backend call so malformed input never costs a signing request.
