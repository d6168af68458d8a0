"""
identity_portal.observability.audit

Append-only audit trail for privileged and security-relevant actions.

Responsibilities:
- Define the `AuditEvent` record and the sink interface.
- Write every event to all configured sinks (structured log, optional JSONL file).
- Distinguish strict emission (failure must surface) from best-effort emission.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

import structlog

from identity_portal.observability.logging import get_logger
from identity_portal.observability.metrics import AUDIT_EVENTS_TOTAL, AUDIT_WRITE_FAILURES_TOTAL

log = get_logger(__name__)


class AuditResult(StrEnum):
    success = "success"
    failure = "failure"
    denied = "denied"


@dataclass(frozen=True, slots=True)
class AuditEvent:
    actor: str
    action: str
    target: str
    result: AuditResult
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    request_id: str | None = field(
        default_factory=lambda: structlog.contextvars.get_contextvars().get("request_id")
    )

    def to_record(self) -> dict[str, Any]:
        record = asdict(self)
        record["result"] = str(self.result)
        record["timestamp"] = self.timestamp.isoformat()
        return record


class AuditWriteError(Exception):
    pass


class AuditSink(Protocol):
    async def write(self, record: dict[str, Any]) -> None: ...


class LogAuditSink:
    """
    Writes audit records as structured log lines on a dedicated logger name
    so log routing can split them from operational logs.
    """

    def __init__(self) -> None:
        self._log = get_logger("identity_portal.audit")

    async def write(self, record: dict[str, Any]) -> None:
        self._log.info("audit", audit=record)


class JsonlAuditSink:
    """
    Appends one JSON document per line. Writes are serialized and run off the event loop.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    def _append(self, line: str) -> None:
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(line)
            fh.flush()

    async def write(self, record: dict[str, Any]) -> None:
        line = json.dumps(record, sort_keys=True, default=str) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, line)


class AuditEmitter:
    def __init__(self, sinks: Sequence[AuditSink]) -> None:
        self._sinks = tuple(sinks)

    async def emit(self, event: AuditEvent) -> None:
        """
        Strict emission: raises `AuditWriteError` if any sink fails. Callers that
        have already performed a privileged action must surface this to the client.
        """

        record = event.to_record()
        for sink in self._sinks:
            try:
                await sink.write(record)
            except Exception as e:
                AUDIT_WRITE_FAILURES_TOTAL.inc()
                log.error(
                    "audit_write_failed",
                    sink=type(sink).__name__,
                    action=event.action,
                    actor=event.actor,
                    error=str(e),
                )
                raise AuditWriteError(f"audit sink {type(sink).__name__} failed") from e
        AUDIT_EVENTS_TOTAL.labels(event.action, str(event.result)).inc()

    async def emit_best_effort(self, event: AuditEvent) -> None:
        # Used for denials/failures and login events: the response is already decided.
        try:
            await self.emit(event)
        except AuditWriteError:
            log.warning("audit_best_effort_dropped", action=event.action, actor=event.actor)


def build_audit_emitter(audit_log_path: str | None) -> AuditEmitter:
    sinks: list[AuditSink] = [LogAuditSink()]
    if audit_log_path:
        sinks.append(JsonlAuditSink(audit_log_path))
    return AuditEmitter(sinks)


# --- Module Notes -----------------------------------------------------------
# Records never carry secrets: no tokens, no passwords, no private material.
# Public keys are referenced by fingerprint only.
