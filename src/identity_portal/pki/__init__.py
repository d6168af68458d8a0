"""
identity_portal.pki

Client for the PKI/secrets backend (Vault SSH secrets engine).

Responsibilities:
- Maintain this service's own lease-bound credential (login, renew, re-login).
- Issue SSH signing calls on behalf of the certificate issuer.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The backend is the CA; nothing in this package holds private key material.
