"""
identity_portal.observability.logging

Structured logging configuration for the service.

Responsibilities:
- Configure `structlog` for JSON logs suitable for ELK/Splunk/Loki.
- Redact credential-bearing fields before they reach any sink.
- Provide a small wrapper for obtaining bound loggers.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Keys that may carry bearer tokens, Vault tokens, or passwords.
_SENSITIVE_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "client_secret",
        "password",
        "jwt",
        "token",
        "authorization",
    }
)


def configure_logging(*, service_name: str, level: str) -> None:
    """
    Structured JSON logs; one line per event, request context merged from contextvars.
    """

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    # httpx logs every upstream request at INFO; keep it at WARNING unless debugging.
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name(service_name),
            _redact_sensitive,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _add_service_name(service_name: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def _redact_sensitive(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in event_dict.keys() & _SENSITIVE_KEYS:
        event_dict[key] = "[REDACTED]"
    return event_dict


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# --- Module Notes -----------------------------------------------------------
# Request-scoped metadata (request_id, method, path) is bound via contextvars in
# `observability.middleware`; audit records reuse the same request_id.
