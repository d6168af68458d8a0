"""
identity_portal.ssh

SSH certificate issuance.

Responsibilities:
- Validate caller-supplied OpenSSH public keys.
- Parse and bound-check certificates returned by the PKI backend.
- Orchestrate role resolution, signing and auditing for one issuance.
"""

# Package marker.
