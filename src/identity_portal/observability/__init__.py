"""
identity_portal.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Request context propagation, request logging and panic recovery.
- Prometheus metrics and the append-only audit trail.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Log shipping and dashboards live outside this service; it only emits.
