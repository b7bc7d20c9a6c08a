"""
Module: trade_kernel.models.approval
Responsibility: ORM persistence for operation-bound approval requests.

Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Lifecycle: a check constraint limits status values; the workflow
      service enforces APPROVAL_TRANSITIONS; listeners refuse any ORM
      change to a consumed or rejected request.
    - Snapshot immutability: operation_data and operation_checksum are
      write-once.
    - Single use: consumed_operation_id is unique, so one operation id can
      never be bound to two approvals and one approval can never be bound
      to two operations.

Failure modes:
    - ImmutabilityViolationError on edits to terminal requests or to the
      operation snapshot, and on any DELETE.
    - IntegrityError on a duplicate request_number or consumed_operation_id.

Audit relevance:
    Each row is the authorization record for exactly one guarded mutation.
    consumed_at / consumed_by / consumed_operation_id tie it to the write.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from trade_kernel.db.base import Base, UTCDateTime
from trade_kernel.domain.approval import (
    ApprovalPriority,
    ApprovalRequest,
    ApprovalStatus,
    TERMINAL_APPROVAL_STATUSES,
)
from trade_kernel.exceptions import ImmutabilityViolationError


class ApprovalRequestModel(Base):
    """Persistent approval request."""

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'consumed')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "(status = 'consumed') = (consumed_operation_id IS NOT NULL)",
            name="ck_approval_requests_consumed_binding",
        ),
        Index("ix_approval_requests_status_type", "status", "operation_type"),
        Index("ix_approval_requests_requested_by", "requested_by"),
    )

    request_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    operation_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    operation_checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")
    business_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    current_approver: Mapped[str | None] = mapped_column(String(100), nullable=True)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    consumed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    consumed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    consumed_operation_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_number} "
            f"{self.operation_type} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalRequest(
            id=self.id,
            request_number=self.request_number,
            operation_type=self.operation_type,
            operation_data=dict(self.operation_data or {}),
            operation_checksum=self.operation_checksum,
            amount=self.amount,
            currency=self.currency,
            entity_id=self.entity_id,
            requested_by=self.requested_by,
            status=ApprovalStatus(self.status),
            total_steps=self.total_steps,
            current_step=self.current_step,
            priority=ApprovalPriority(self.priority),
            submitted_at=self.submitted_at,
            current_approver=self.current_approver,
            business_context=self.business_context,
            decided_at=self.decided_at,
            decided_by=self.decided_by,
            consumed_at=self.consumed_at,
            consumed_by=self.consumed_by,
            consumed_operation_id=self.consumed_operation_id,
        )


_WRITE_ONCE_FIELDS = ("operation_type", "operation_data", "operation_checksum",
                      "amount", "currency", "entity_id", "requested_by")


@event.listens_for(ApprovalRequestModel, "before_update")
def prevent_terminal_approval_update(mapper, connection, target):
    """Reject edits to the operation snapshot and to terminal requests."""
    state = inspect(target)
    previous_status = state.attrs.status.history.deleted
    if previous_status and ApprovalStatus(previous_status[0]) in TERMINAL_APPROVAL_STATUSES:
        raise ImmutabilityViolationError(
            entity_type="ApprovalRequest",
            entity_id=str(target.request_number),
            reason=f"Request is {previous_status[0]} -- cannot modify",
        )
    if not previous_status and ApprovalStatus(target.status) in TERMINAL_APPROVAL_STATUSES:
        changed = [a.key for a in state.attrs if a.history.has_changes()]
        if changed:
            raise ImmutabilityViolationError(
                entity_type="ApprovalRequest",
                entity_id=str(target.request_number),
                reason=f"Request is {target.status} -- cannot modify",
            )
    for name in _WRITE_ONCE_FIELDS:
        if getattr(state.attrs, name).history.deleted:
            raise ImmutabilityViolationError(
                entity_type="ApprovalRequest",
                entity_id=str(target.request_number),
                reason=f"{name} is write-once",
            )


@event.listens_for(ApprovalRequestModel, "before_delete")
def prevent_approval_delete(mapper, connection, target):
    """Approval requests are never deleted."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalRequest",
        entity_id=str(target.request_number),
        reason="Approval requests are immutable -- cannot delete",
    )
