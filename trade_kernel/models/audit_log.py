"""
Module: trade_kernel.models.audit_log
Responsibility: ORM persistence for audit records written by DatabaseAuditSink.
Architecture position: Kernel > Models.

Invariants enforced:
    - Append-only: UPDATE and DELETE are rejected by ORM listeners.

Audit relevance:
    Records every guard decision (allow, deny, violation, bypass) and every
    guarded write.  Rows are written outside the business transaction, so
    their absence never implies the business write failed.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Index, Numeric, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import Base, UTCDateTime
from trade_kernel.exceptions import ImmutabilityViolationError


class AuditLogModel(Base):
    __tablename__ = "audit_log"

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
        Index("ix_audit_log_recorded_at", "recorded_at"),
    )

    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    operation_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    approval_request_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    financial_impact: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.entity_type}/{self.action} {self.severity}>"


@event.listens_for(AuditLogModel, "before_update")
def prevent_audit_log_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditLog",
        entity_id=str(target.id),
        reason="Audit records are append-only",
    )


@event.listens_for(AuditLogModel, "before_delete")
def prevent_audit_log_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditLog",
        entity_id=str(target.id),
        reason="Audit records are append-only",
    )
