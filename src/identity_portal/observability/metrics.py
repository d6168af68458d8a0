"""
identity_portal.observability.metrics

Prometheus metrics for the service.

Responsibilities:
- Declare every counter/histogram once, at import time, on the default registry.
- Render the exposition format for the `/metrics` endpoint.
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

HTTP_REQUESTS_TOTAL = Counter(
    "identity_portal_http_requests_total",
    "HTTP requests handled, by method, route and status.",
    ["method", "path", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "identity_portal_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

SSH_CERTS_ISSUED_TOTAL = Counter(
    "identity_portal_ssh_certs_issued_total",
    "SSH user certificates issued, by role.",
    ["role"],
)

SSH_CERT_ERRORS_TOTAL = Counter(
    "identity_portal_ssh_cert_errors_total",
    "SSH signing requests that failed, by role and error code.",
    ["role", "error_type"],
)

KUBECONFIGS_GENERATED_TOTAL = Counter(
    "identity_portal_kubeconfigs_generated_total",
    "Kubeconfig documents generated.",
)

UPSTREAM_REQUESTS_TOTAL = Counter(
    "identity_portal_upstream_requests_total",
    "Calls made to upstream services, by upstream, operation and outcome.",
    ["upstream", "operation", "outcome"],
)

PKI_CREDENTIAL_EVENTS_TOTAL = Counter(
    "identity_portal_pki_credential_events_total",
    "Service credential lifecycle events"
    " (login, renew, renew_failed, rejected, degraded, recovered).",
    ["event"],
)

AUDIT_EVENTS_TOTAL = Counter(
    "identity_portal_audit_events_total",
    "Audit records written, by action and result.",
    ["action", "result"],
)

AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "identity_portal_audit_write_failures_total",
    "Audit records that could not be written to a sink.",
)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST


# --- Module Notes -----------------------------------------------------------
# Label values are bounded: `path` is the route template, never the raw URL, and
# `error_type` is one of the codes in `identity_portal.errors`.
