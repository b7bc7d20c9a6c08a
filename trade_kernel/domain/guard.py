"""Inputs and outputs of ``ApprovalGuard.enforce``."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from trade_kernel.domain.audit import AuditContext


class GuardOutcome(str, Enum):
    """How a permitted operation got through the guard."""

    APPROVAL_CONSUMED = "approval_consumed"
    NOT_REQUIRED = "not_required"
    INTERNAL_BYPASS = "internal_bypass"


@dataclass(frozen=True)
class GuardContext:
    """
    One guarded operation as presented to the guard.

    ``amount`` and ``currency`` default to what the operation registry
    extracts from ``operation_data`` when left unset.  ``operation_id`` is
    the idempotency handle the consumed approval is bound to.
    """

    operation_type: str
    operation_data: dict[str, Any]
    operation_id: str
    amount: Decimal | None = None
    currency: str | None = None
    user_id: str | None = None
    approval_request_id: UUID | str | None = None
    skip_approval: bool = False
    service_token: str | None = None
    bypass_justification: str | None = None
    audit_context: AuditContext = field(default_factory=AuditContext)


@dataclass(frozen=True)
class GuardDecision:
    operation_type: str
    operation_id: str
    outcome: GuardOutcome
    approval_request_id: str | None = None
    entity_id: str | None = None
    service_identity: str | None = None
