"""
Audit sinks -- fire-and-forget recording of guard decisions and writes.

Responsibility:
    Accepts one AuditRecord per decision or guarded write and persists it
    somewhere durable.  The business outcome never depends on the sink:
    ``emit_audit`` catches every sink failure and routes it to the
    ``trade_kernel.audit.fallback`` log channel.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by ApprovalGuard (every branch), LedgerTransactionManager, and
    trade_services writes.

Implementations:
    DatabaseAuditSink  -- writes ``audit_log`` rows in their own session,
                          on a background thread, outside the business
                          transaction.
    LoggingAuditSink   -- emits one structured log line per record.
    RecordingAuditSink -- keeps records in memory (tests, dry runs).

Invariants enforced:
    - A sink failure is logged and swallowed, never raised to the caller.
    - Audit rows are never part of the business transaction, so a rolled
      back mutation can still leave its denial or attempt on record.

Audit relevance:
    The guard's security-relevant outcomes (critical bypass attempts,
    internal bypass with justification, approval consumption) are only
    visible through these records.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Protocol, runtime_checkable

from sqlalchemy.orm import Session, sessionmaker

from trade_kernel.db.engine import session_scope
from trade_kernel.domain.audit import AuditContext, AuditRecord, AuditSeverity
from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.exceptions import AuditSinkError
from trade_kernel.logging_config import get_fallback_logger, get_logger
from trade_kernel.models.audit_log import AuditLogModel

logger = get_logger("audit")

_SEVERITY_LEVELS = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARNING: logging.WARNING,
    AuditSeverity.ERROR: logging.ERROR,
    AuditSeverity.CRITICAL: logging.CRITICAL,
}


@runtime_checkable
class AuditSink(Protocol):
    def log_operation(self, audit_context: AuditContext, record: AuditRecord) -> None:
        ...


def emit_audit(
    sink: AuditSink | None,
    audit_context: AuditContext,
    record: AuditRecord,
) -> None:
    """Hand ``record`` to ``sink``; failures only reach the fallback log."""
    if sink is None:
        return
    try:
        sink.log_operation(audit_context, record)
    except Exception as exc:
        error = AuditSinkError(type(sink).__name__, str(exc))
        get_fallback_logger().error(
            "audit_sink_failed",
            extra={
                "error_code": error.code,
                "sink": error.sink,
                "reason": error.reason,
                "entity_type": record.entity_type,
                "entity_id": record.entity_id,
                "action": record.action.value,
                "operation_type": record.operation_type,
                "severity": record.severity.value,
                "user_id": audit_context.user_id,
            },
        )


class RecordingAuditSink:
    """In-memory sink.  ``fail_with`` makes every call raise, for tests."""

    def __init__(self, fail_with: Exception | None = None):
        self.records: list[tuple[AuditContext, AuditRecord]] = []
        self.fail_with = fail_with

    def log_operation(self, audit_context: AuditContext, record: AuditRecord) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.records.append((audit_context, record))

    def actions(self) -> list[str]:
        return [record.action.value for _, record in self.records]

    def clear(self) -> None:
        self.records.clear()


class LoggingAuditSink:
    """One ``audit_record`` log line per record, at the record's severity."""

    def log_operation(self, audit_context: AuditContext, record: AuditRecord) -> None:
        logger.log(
            _SEVERITY_LEVELS.get(record.severity, logging.INFO),
            "audit_record",
            extra={
                "entity_type": record.entity_type,
                "entity_id": record.entity_id,
                "action": record.action.value,
                "operation_type": record.operation_type,
                "description": record.description,
                "business_context": record.business_context,
                "approval_request_id": record.approval_request_id,
                "financial_impact": record.financial_impact,
                "currency": record.currency,
                "severity": record.severity.value,
                "user_id": audit_context.user_id,
                "source": audit_context.source,
                "ip_address": audit_context.ip_address,
                **record.extra,
            },
        )


class DatabaseAuditSink:
    """
    Persists records to ``audit_log`` from a background worker thread.

    Each record is written in a session of its own, after the caller has
    moved on.  ``drain()`` blocks until everything queued so far has been
    written (or failed into the fallback log).  With ``background=False``
    the write happens inline, still in its own session.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        background: bool = True,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._background = background
        self._queue: queue.Queue[tuple[AuditContext, AuditRecord] | None] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    def log_operation(self, audit_context: AuditContext, record: AuditRecord) -> None:
        if not self._background:
            self._write(audit_context, record)
            return
        self._ensure_worker()
        self._queue.put((audit_context, record))

    def drain(self) -> None:
        self._queue.join()

    def close(self) -> None:
        if self._worker is not None:
            self._queue.put(None)
            self._worker.join()
            self._worker = None

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run, name="audit-sink", daemon=True,
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                audit_context, record = item
                try:
                    self._write(audit_context, record)
                except Exception as exc:
                    get_fallback_logger().error(
                        "audit_write_failed",
                        extra={
                            "error_code": AuditSinkError.code,
                            "sink": type(self).__name__,
                            "reason": str(exc),
                            "entity_type": record.entity_type,
                            "entity_id": record.entity_id,
                            "action": record.action.value,
                            "severity": record.severity.value,
                        },
                    )
            finally:
                self._queue.task_done()

    def _write(self, audit_context: AuditContext, record: AuditRecord) -> None:
        with session_scope(self._session_factory) as session:
            session.add(AuditLogModel(
                recorded_at=self._clock.now_utc(),
                user_id=audit_context.user_id,
                correlation_id=audit_context.correlation_id,
                source=audit_context.source,
                severity=record.severity.value,
                entity_type=record.entity_type,
                entity_id=record.entity_id,
                action=record.action.value,
                operation_type=record.operation_type,
                description=record.description,
                business_context=record.business_context,
                approval_request_id=record.approval_request_id,
                financial_impact=record.financial_impact,
                currency=record.currency,
                old_values=_jsonable(record.old_values),
                new_values=_jsonable(record.new_values),
            ))


def _jsonable(values: dict | None) -> dict | None:
    if values is None:
        return None
    return {
        key: (value if isinstance(value, (str, int, float, bool, type(None))) else str(value))
        for key, value in values.items()
    }
