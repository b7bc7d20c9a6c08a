"""
Approval domain types (``trade_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for operation-bound approvals: the lifecycle state
machine, the request snapshot, the submission payload handed back to
callers when an approval is required, and the validation / consumption
results exchanged with the workflow service.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_TRANSITIONS`` defines the only
  valid status transitions: pending -> approved | rejected, and
  approved -> consumed.  ``rejected`` and ``consumed`` are terminal.
* Consumption is single-use -- ``consumed`` has no outgoing edges.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Approval Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONSUMED = "consumed"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
    }),
    ApprovalStatus.APPROVED: frozenset({
        ApprovalStatus.CONSUMED,
    }),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.CONSUMED: frozenset(),
}

TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.REJECTED,
    ApprovalStatus.CONSUMED,
})


def can_transition(current: ApprovalStatus, target: ApprovalStatus) -> bool:
    return target in APPROVAL_TRANSITIONS.get(current, frozenset())


class ApprovalDecision(str, Enum):
    """Decision an approver records against a pending request."""

    APPROVE = "approve"
    REJECT = "reject"


class ApprovalPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Rough turnaround per approval step, used for the estimated wait shown
# to callers that hit ApprovalRequired.
HOURS_PER_STEP: dict[ApprovalPriority, int] = {
    ApprovalPriority.URGENT: 2,
    ApprovalPriority.HIGH: 6,
    ApprovalPriority.NORMAL: 24,
    ApprovalPriority.LOW: 48,
}


def estimate_approval_wait(total_steps: int, priority: ApprovalPriority) -> str:
    """Human-readable wait estimate, e.g. ``"6 hours"`` or ``"2 business days"``."""
    steps = max(total_steps, 1)
    total_hours = steps * HOURS_PER_STEP.get(priority, 24)
    if total_hours < 24:
        return f"{total_hours} hours"
    if total_hours < 168:
        days = math.ceil(total_hours / 24)
        return f"{days} business day{'s' if days > 1 else ''}"
    weeks = math.ceil(total_hours / 168)
    return f"{weeks} week{'s' if weeks > 1 else ''}"


# =========================================================================
# Request snapshot
# =========================================================================


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable view of a persisted approval request."""

    id: UUID
    request_number: str
    operation_type: str
    operation_data: dict[str, Any]
    operation_checksum: str
    amount: Decimal | None
    currency: str | None
    entity_id: str | None
    requested_by: str
    status: ApprovalStatus
    total_steps: int
    current_step: int
    priority: ApprovalPriority
    submitted_at: datetime
    current_approver: str | None = None
    business_context: str | None = None
    decided_at: datetime | None = None
    decided_by: str | None = None
    consumed_at: datetime | None = None
    consumed_by: str | None = None
    consumed_operation_id: str | None = None

    @property
    def is_consumed(self) -> bool:
        return self.status == ApprovalStatus.CONSUMED


@dataclass(frozen=True)
class ApprovalSubmission:
    """
    Everything needed to open a new approval request for a refused operation.

    Returned inside ``ApprovalRequiredError`` so the caller never loses the
    original operation input.
    """

    operation_type: str
    operation_data: dict[str, Any]
    amount: Decimal | None
    currency: str | None
    requested_by: str | None
    business_context: str | None
    priority: ApprovalPriority
    total_steps: int
    estimated_wait: str


# =========================================================================
# Validation / consumption contract
# =========================================================================


@dataclass(frozen=True)
class OperationContext:
    """The concrete operation an approval is being checked against."""

    operation_type: str
    operation_data: dict[str, Any]
    amount: Decimal | None = None
    currency: str | None = None
    user_id: str | None = None
    operation_id: str | None = None


@dataclass(frozen=True)
class ApprovalValidationResult:
    is_valid: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> ApprovalValidationResult:
        return cls(is_valid=True)

    @classmethod
    def fail(cls, reason: str) -> ApprovalValidationResult:
        return cls(is_valid=False, reason=reason)


@dataclass(frozen=True)
class ApprovalConsumptionResult:
    success: bool
    reason: str | None = None
    already_consumed: bool = False


@dataclass(frozen=True)
class ApprovalContext:
    """
    Approval-related inputs a caller attaches to a guarded write.

    ``service_token`` and ``bypass_justification`` are only consulted when
    ``skip_approval`` is set.
    """

    approval_request_id: UUID | str | None = None
    skip_approval: bool = False
    service_token: str | None = None
    bypass_justification: str | None = None


@dataclass(frozen=True)
class ApprovalChainStep:
    step: int
    role: str


@dataclass(frozen=True)
class ApprovalChain:
    """Configured approval chain for one operation type."""

    operation_type: str
    auto_approve_below: Decimal | None = None
    currency: str | None = None
    steps: tuple[ApprovalChainStep, ...] = field(default_factory=tuple)
    default_priority: ApprovalPriority = ApprovalPriority.NORMAL

    @property
    def total_steps(self) -> int:
        return max(len(self.steps), 1)
