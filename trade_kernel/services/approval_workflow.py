"""
trade_kernel.services.approval_workflow -- Operation-bound approval records.

Responsibility:
    Answers whether an operation needs approval, opens approval requests
    from a refused operation's submission, records approver decisions, and
    validates and consumes an approved request against the concrete
    operation that wants to use it.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/.
    ``ApprovalWorkflowClient`` is the seam ApprovalGuard depends on;
    ``ApprovalWorkflowService`` is the database-backed implementation.
    Chain construction, escalation and notification belong to the external
    workflow and are not modelled here; ``record_decision`` is the minimal
    stand-in that moves a request through its configured steps.

Invariants enforced:
    - Lifecycle: only APPROVAL_TRANSITIONS moves are persisted.
    - Binding: a request validates only for the same operation type,
      entity, original requester, amount within tolerance,
      currency, and core-field checksum it was submitted with.
    - Freshness: an approval older than the validity window is refused.
    - Single use: consumption is one conditional UPDATE
      (``status = 'approved'`` -> ``consumed``) in the caller's transaction;
      ``consumed_operation_id`` is unique.

Failure modes:
    - ApprovalNotFoundError, InvalidApprovalTransitionError from
      ``record_decision``.
    - Validation and consumption never raise for a bad request; they
      return a result with a reason so the guard can audit it.

Audit relevance:
    Creation and decisions emit audit records.  Consumption is audited by
    the guard, which knows the operation the approval authorised.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from trade_kernel.domain.approval import (
    ApprovalConsumptionResult,
    ApprovalDecision,
    ApprovalPriority,
    ApprovalRequest,
    ApprovalStatus,
    ApprovalSubmission,
    ApprovalValidationResult,
    OperationContext,
    can_transition,
)
from trade_kernel.domain.audit import AuditAction, AuditContext, AuditRecord
from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.domain.operation_registry import (
    core_field_snapshot,
    extract_entity_id,
    extract_money,
)
from trade_kernel.domain.policy import TradePolicySnapshot
from trade_kernel.exceptions import (
    ApprovalNotFoundError,
    InvalidApprovalTransitionError,
)
from trade_kernel.logging_config import get_logger
from trade_kernel.models.approval import ApprovalRequestModel
from trade_kernel.services.audit_sink import AuditSink, emit_audit
from trade_kernel.services.mutex import DistributedMutex
from trade_kernel.services.sequence_service import SequenceNumberGenerator
from trade_kernel.utils.hashing import canonicalize_json, hash_operation

logger = get_logger("services.approval_workflow")


@runtime_checkable
class ApprovalWorkflowClient(Protocol):
    """What ApprovalGuard needs from an approval workflow."""

    def requires_approval(
        self,
        operation_type: str,
        amount: Decimal | None,
        currency: str | None,
        user_id: str | None,
    ) -> bool:
        ...

    def create_approval_request(
        self, submission: ApprovalSubmission, audit_context: AuditContext,
    ) -> ApprovalRequest:
        ...

    def validate_approval_request(
        self, approval_request_id: UUID | str, operation_context: OperationContext,
    ) -> ApprovalValidationResult:
        ...

    def consume_approval_request(
        self, approval_request_id: UUID | str, operation_context: OperationContext,
    ) -> ApprovalConsumptionResult:
        ...

    def get_approval_by_id(self, approval_request_id: UUID | str) -> ApprovalRequest | None:
        ...


def _as_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _amounts_match(expected: Decimal, actual: Decimal | None, tolerance: Decimal) -> bool:
    if actual is None:
        return False
    return abs(Decimal(expected) - Decimal(actual)) <= tolerance


class ApprovalWorkflowService:
    """Database-backed approval workflow."""

    def __init__(
        self,
        session: Session,
        policy: TradePolicySnapshot,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        mutex: DistributedMutex | None = None,
    ):
        self._session = session
        self._policy = policy
        self._clock = clock or SystemClock()
        self._audit_sink = audit_sink
        self._sequences = SequenceNumberGenerator(session, policy, mutex)

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def requires_approval(
        self,
        operation_type: str,
        amount: Decimal | None,
        currency: str | None,
        user_id: str | None,
    ) -> bool:
        """
        True unless a configured chain auto-approves this amount.

        A type without a chain, or a chain without a threshold, always
        requires approval.  An amount in a currency other than the chain's
        cannot be compared and also requires approval.
        """
        chain = self._policy.chain_for(operation_type)
        if chain is None or chain.auto_approve_below is None or amount is None:
            return True
        if chain.currency and currency and chain.currency != currency.upper():
            return True
        return not Decimal(amount) < chain.auto_approve_below

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_approval_request(
        self,
        submission: ApprovalSubmission,
        audit_context: AuditContext,
    ) -> ApprovalRequest:
        requested_by = submission.requested_by or audit_context.user_id
        if not requested_by:
            raise ValueError("Approval requests need a requesting user")

        operation_type = submission.operation_type
        data = json.loads(canonicalize_json(submission.operation_data))
        amount, currency = submission.amount, submission.currency
        if amount is None and currency is None:
            amount, currency = extract_money(operation_type, data)

        chain = self._policy.chain_for(operation_type)
        total_steps = chain.total_steps if chain is not None else max(submission.total_steps, 1)
        priority = submission.priority or (
            chain.default_priority if chain is not None else ApprovalPriority.NORMAL
        )

        model = ApprovalRequestModel(
            request_number=self._sequences.next("approval_request"),
            operation_type=operation_type,
            operation_data=data,
            operation_checksum=hash_operation(
                operation_type, core_field_snapshot(operation_type, data),
            ),
            amount=amount,
            currency=currency.upper() if currency else None,
            entity_id=extract_entity_id(operation_type, data),
            requested_by=requested_by,
            status=ApprovalStatus.PENDING.value,
            priority=ApprovalPriority(priority).value,
            business_context=submission.business_context,
            current_step=1,
            total_steps=total_steps,
            submitted_at=self._clock.now_utc(),
        )
        self._session.add(model)
        self._session.flush()
        request = model.to_dto()

        logger.info(
            "approval_request_created",
            extra={
                "approval_request_id": str(request.id),
                "request_number": request.request_number,
                "operation_type": operation_type,
                "entity_id": request.entity_id,
                "priority": request.priority.value,
                "total_steps": request.total_steps,
            },
        )
        emit_audit(self._audit_sink, audit_context, AuditRecord(
            entity_type="approval_request",
            action=AuditAction.CREATE,
            entity_id=str(request.id),
            operation_type=operation_type,
            description=f"Approval request {request.request_number} submitted",
            new_values={"status": request.status.value, "priority": request.priority.value},
            financial_impact=request.amount,
            currency=request.currency,
            business_context=request.business_context,
            approval_request_id=str(request.id),
        ))
        return request

    def record_decision(
        self,
        approval_request_id: UUID | str,
        approver_id: str,
        decision: ApprovalDecision,
        audit_context: AuditContext | None = None,
    ) -> ApprovalRequest:
        """
        Record one approver's decision.

        Approve advances ``current_step``; the request becomes ``approved``
        once the last configured step approves.  Reject is final.
        """
        model = self._load_for_update(approval_request_id)
        current = ApprovalStatus(model.status)
        decision = ApprovalDecision(decision)

        if decision == ApprovalDecision.REJECT:
            target = ApprovalStatus.REJECTED
        elif model.current_step < model.total_steps:
            target = ApprovalStatus.PENDING
        else:
            target = ApprovalStatus.APPROVED

        if current != ApprovalStatus.PENDING or (
            target != current and not can_transition(current, target)
        ):
            raise InvalidApprovalTransitionError(
                str(approval_request_id), current.value, target.value,
            )

        now = self._clock.now_utc()
        model.current_approver = approver_id
        if target == ApprovalStatus.PENDING:
            model.current_step = model.current_step + 1
        else:
            model.status = target.value
            model.decided_at = now
            model.decided_by = approver_id
        self._session.flush()
        request = model.to_dto()

        logger.info(
            "approval_decision_recorded",
            extra={
                "approval_request_id": str(request.id),
                "approver_id": approver_id,
                "decision": decision.value,
                "new_status": request.status.value,
                "current_step": request.current_step,
            },
        )
        emit_audit(
            self._audit_sink,
            audit_context or AuditContext(user_id=approver_id),
            AuditRecord(
                entity_type="approval_request",
                action=(
                    AuditAction.REJECT if decision == ApprovalDecision.REJECT
                    else AuditAction.APPROVE
                ),
                entity_id=str(request.id),
                operation_type=request.operation_type,
                old_values={"status": current.value},
                new_values={"status": request.status.value, "current_step": request.current_step},
                approval_request_id=str(request.id),
            ),
        )
        return request

    # ------------------------------------------------------------------
    # Validation / consumption
    # ------------------------------------------------------------------

    def validate_approval_request(
        self,
        approval_request_id: UUID | str,
        operation_context: OperationContext,
    ) -> ApprovalValidationResult:
        request = self.get_approval_by_id(approval_request_id)
        if request is None:
            return ApprovalValidationResult.fail("Approval request not found")

        if request.status == ApprovalStatus.CONSUMED:
            return ApprovalValidationResult.fail("Approval request already consumed")
        if request.status != ApprovalStatus.APPROVED:
            return ApprovalValidationResult.fail(
                f"Approval request is {request.status.value}, not approved"
            )

        ctx = operation_context
        if request.operation_type != ctx.operation_type:
            return ApprovalValidationResult.fail(
                f"Approval is for {request.operation_type}, not {ctx.operation_type}"
            )

        entity_id = extract_entity_id(ctx.operation_type, ctx.operation_data)
        if request.entity_id is not None and entity_id != request.entity_id:
            return ApprovalValidationResult.fail(
                "Approval is bound to a different entity"
            )

        if not ctx.user_id or ctx.user_id != request.requested_by:
            return ApprovalValidationResult.fail(
                "Approval was requested by a different user"
            )

        amount, currency = ctx.amount, ctx.currency
        if amount is None and currency is None:
            amount, currency = extract_money(ctx.operation_type, ctx.operation_data)
        if request.amount is not None and not _amounts_match(
            request.amount, amount, self._policy.guard.amount_tolerance,
        ):
            return ApprovalValidationResult.fail(
                f"Amount {amount} does not match approved amount {request.amount}"
            )
        if request.currency is not None and (currency or "").upper() != request.currency:
            return ApprovalValidationResult.fail(
                f"Currency {currency} does not match approved currency {request.currency}"
            )

        approved_at = request.decided_at or request.submitted_at
        if self._clock.now_utc() > approved_at + self._policy.guard.approval_validity:
            return ApprovalValidationResult.fail("Approval has expired")

        checksum = hash_operation(
            ctx.operation_type, core_field_snapshot(ctx.operation_type, ctx.operation_data),
        )
        if checksum != request.operation_checksum:
            return ApprovalValidationResult.fail(
                "Operation data does not match the approved snapshot"
            )
        return ApprovalValidationResult.ok()

    def consume_approval_request(
        self,
        approval_request_id: UUID | str,
        operation_context: OperationContext,
    ) -> ApprovalConsumptionResult:
        """
        Mark the request consumed by ``operation_context.operation_id``.

        Exactly one caller can win: the UPDATE only matches while the row is
        still ``approved``.  Losers get ``already_consumed``.
        """
        operation_id = operation_context.operation_id
        if not operation_id:
            return ApprovalConsumptionResult(False, "operation id required for consumption")

        request = self.get_approval_by_id(approval_request_id)
        if request is None:
            return ApprovalConsumptionResult(False, "Approval request not found")

        bound = self._session.execute(
            select(ApprovalRequestModel.id).where(
                ApprovalRequestModel.consumed_operation_id == operation_id,
            )
        ).scalar_one_or_none()
        if bound is not None and bound != request.id:
            return ApprovalConsumptionResult(
                False, "operation already bound to another approval",
            )

        result = self._session.execute(
            update(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.id == request.id,
                ApprovalRequestModel.status == ApprovalStatus.APPROVED.value,
            )
            .values(
                status=ApprovalStatus.CONSUMED.value,
                consumed_at=self._clock.now_utc(),
                consumed_by=operation_context.user_id,
                consumed_operation_id=operation_id,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            logger.info(
                "approval_consumed",
                extra={
                    "approval_request_id": str(request.id),
                    "operation_id": operation_id,
                    "operation_type": operation_context.operation_type,
                },
            )
            return ApprovalConsumptionResult(True)

        current = self.get_approval_by_id(request.id)
        if current is not None and current.status == ApprovalStatus.CONSUMED:
            logger.warning(
                "approval_already_consumed",
                extra={
                    "approval_request_id": str(request.id),
                    "operation_id": operation_id,
                    "consumed_operation_id": current.consumed_operation_id,
                },
            )
            return ApprovalConsumptionResult(False, "already consumed", already_consumed=True)
        status = current.status.value if current is not None else "missing"
        return ApprovalConsumptionResult(False, f"approval request is {status}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_approval_by_id(self, approval_request_id: UUID | str) -> ApprovalRequest | None:
        model = self._find(approval_request_id)
        if model is None:
            return None
        self._session.refresh(model)
        return model.to_dto()

    def _find(self, approval_request_id: UUID | str) -> ApprovalRequestModel | None:
        request_uuid = _as_uuid(approval_request_id)
        if request_uuid is not None:
            return self._session.get(ApprovalRequestModel, request_uuid)
        return self._session.execute(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.request_number == str(approval_request_id),
            )
        ).scalar_one_or_none()

    def _load_for_update(self, approval_request_id: UUID | str) -> ApprovalRequestModel:
        model = self._find(approval_request_id)
        if model is None:
            raise ApprovalNotFoundError(str(approval_request_id))
        return self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == model.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
