"""
ApprovalGuard -- the single gate in front of every guarded mutation.

Responsibility:
    Decides, for one concrete operation, whether it may proceed.  Callers
    invoke ``enforce`` inside the transaction that will perform the write;
    an approval consumed here is rolled back together with the write if
    the write fails.

Architecture position:
    Kernel > Services -- imperative shell.
    Depends on an ApprovalWorkflowClient (policy, validation, consumption),
    a ServiceCredentialVerifier (internal bypass), and an AuditSink.
    Called by trade_services before every critical write.

Decision order:
    1. Critical type with ``skip_approval``      -> CriticalBypassError.
    2. ``skip_approval`` on any other type       -> allowed only for the
       internal-bypass allowlist, with a verified service token and a
       justification.  Otherwise SecurityViolationError.
    3. ``approval_request_id`` given             -> validate, then consume
       bound to ``operation_id``.  Any failure denies.
    4. Otherwise ask the workflow whether approval is required.
       Not required -> proceed.  Required (or the check itself failed)
       -> ApprovalRequiredError carrying an ApprovalSubmission.

Invariants enforced:
    - A critical operation never runs on a bypass flag, whoever asks.
    - An approval authorises exactly one operation.
    - Every branch is audited; sink failures never change the decision.

Failure modes:
    - SecurityViolationError and its subclasses (deny).
    - ApprovalRequiredError (submit for approval, then retry).

Audit relevance:
    Critical bypass attempts are recorded at CRITICAL, internal bypasses
    at WARNING with the justification, consumption and denials with the
    approval request id.
"""

from __future__ import annotations

from decimal import Decimal
from typing import NoReturn

from trade_kernel.domain.approval import (
    ApprovalSubmission,
    OperationContext,
    estimate_approval_wait,
)
from trade_kernel.domain.audit import (
    AuditAction,
    AuditContext,
    AuditRecord,
    AuditSeverity,
)
from trade_kernel.domain.guard import GuardContext, GuardDecision, GuardOutcome
from trade_kernel.domain.operation_registry import (
    derive_priority,
    describe_operation,
    extract_entity_id,
    extract_money,
)
from trade_kernel.domain.policy import GuardPolicy, TradePolicySnapshot
from trade_kernel.exceptions import (
    ApprovalBindingError,
    ApprovalConsumptionError,
    ApprovalRequiredError,
    CriticalBypassError,
    InvalidServiceCredentialError,
    SecurityViolationError,
)
from trade_kernel.logging_config import LogContext, get_logger
from trade_kernel.services.approval_workflow import ApprovalWorkflowClient
from trade_kernel.services.audit_sink import AuditSink, emit_audit
from trade_kernel.services.service_credentials import ServiceCredentialVerifier

logger = get_logger("services.approval_guard")


class ApprovalGuard:
    """
    Contract:
        ``enforce(context)`` returns a GuardDecision when the operation may
        proceed and raises otherwise.  It never creates approval requests.
    """

    def __init__(
        self,
        workflow: ApprovalWorkflowClient,
        policy: GuardPolicy | TradePolicySnapshot,
        audit_sink: AuditSink | None = None,
        credential_verifier: ServiceCredentialVerifier | None = None,
    ):
        self._workflow = workflow
        self._snapshot = policy if isinstance(policy, TradePolicySnapshot) else None
        self._policy = policy.guard if isinstance(policy, TradePolicySnapshot) else policy
        self._audit_sink = audit_sink
        self._verifier = credential_verifier

    def enforce(self, context: GuardContext) -> GuardDecision:
        amount, currency = self._resolve_money(context)
        entity_id = extract_entity_id(context.operation_type, context.operation_data)

        with LogContext.bind(
            operation_id=context.operation_id,
            actor_id=context.user_id,
            approval_request_id=(
                str(context.approval_request_id) if context.approval_request_id else None
            ),
        ):
            if context.skip_approval:
                return self._enforce_bypass(context, entity_id)
            if context.approval_request_id:
                return self._enforce_approval(context, entity_id, amount, currency)
            return self._enforce_policy(context, entity_id, amount, currency)

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _enforce_bypass(self, context: GuardContext, entity_id: str | None) -> GuardDecision:
        op_type = context.operation_type

        if self._policy.is_critical(op_type):
            logger.critical(
                "critical_bypass_attempt",
                extra={"operation_type": op_type, "user_id": context.user_id},
            )
            self._audit(context, AuditAction.DENY, AuditSeverity.CRITICAL, entity_id,
                        description=f"Attempted approval bypass of critical operation {op_type}")
            raise CriticalBypassError(op_type, context.user_id)

        if not self._policy.allows_internal_bypass(op_type):
            self._deny(context, entity_id,
                       SecurityViolationError(op_type, "operation type does not allow bypass"))

        if self._verifier is None:
            self._deny(context, entity_id,
                       InvalidServiceCredentialError(op_type, "no credential verifier configured"))
        try:
            credential = self._verifier.verify(context.service_token, op_type)
        except InvalidServiceCredentialError as exc:
            self._deny(context, entity_id, exc)

        if not (context.bypass_justification or "").strip():
            self._deny(context, entity_id,
                       SecurityViolationError(op_type, "bypass justification required"))

        logger.warning(
            "internal_bypass_granted",
            extra={
                "operation_type": op_type,
                "service_identity": credential.service_identity,
                "justification": context.bypass_justification,
            },
        )
        self._audit(
            context, AuditAction.BYPASS, AuditSeverity.WARNING, entity_id,
            description=f"Internal bypass: {context.bypass_justification}",
            extra={"service_identity": credential.service_identity},
        )
        return GuardDecision(
            operation_type=op_type,
            operation_id=context.operation_id,
            outcome=GuardOutcome.INTERNAL_BYPASS,
            entity_id=entity_id,
            service_identity=credential.service_identity,
        )

    def _enforce_approval(
        self,
        context: GuardContext,
        entity_id: str | None,
        amount: Decimal | None,
        currency: str | None,
    ) -> GuardDecision:
        op_type = context.operation_type
        approval_id = str(context.approval_request_id)
        operation = OperationContext(
            operation_type=op_type,
            operation_data=dict(context.operation_data),
            amount=amount,
            currency=currency,
            user_id=context.user_id,
            operation_id=context.operation_id,
        )

        validation = self._workflow.validate_approval_request(approval_id, operation)
        if not validation.is_valid:
            self._deny(context, entity_id,
                       ApprovalBindingError(op_type, approval_id, validation.reason or "invalid"))

        consumption = self._workflow.consume_approval_request(approval_id, operation)
        if not consumption.success:
            self._deny(context, entity_id,
                       ApprovalConsumptionError(op_type, approval_id,
                                                consumption.reason or "consumption failed"))

        logger.info(
            "approval_consumed_for_operation",
            extra={"operation_type": op_type, "entity_id": entity_id},
        )
        self._audit(
            context, AuditAction.CONSUME, AuditSeverity.INFO, entity_id,
            description=f"Approval {approval_id} consumed by {context.operation_id}",
            amount=amount, currency=currency,
        )
        return GuardDecision(
            operation_type=op_type,
            operation_id=context.operation_id,
            outcome=GuardOutcome.APPROVAL_CONSUMED,
            approval_request_id=approval_id,
            entity_id=entity_id,
        )

    def _enforce_policy(
        self,
        context: GuardContext,
        entity_id: str | None,
        amount: Decimal | None,
        currency: str | None,
    ) -> GuardDecision:
        op_type = context.operation_type
        try:
            required = self._workflow.requires_approval(op_type, amount, currency, context.user_id)
        except Exception:
            logger.exception("approval_policy_check_failed", extra={"operation_type": op_type})
            required = True

        if not required:
            self._audit(context, AuditAction.CREATE, AuditSeverity.INFO, entity_id,
                        description=f"{op_type} below approval threshold",
                        amount=amount, currency=currency)
            return GuardDecision(
                operation_type=op_type,
                operation_id=context.operation_id,
                outcome=GuardOutcome.NOT_REQUIRED,
                entity_id=entity_id,
            )

        submission = self._build_submission(context, amount, currency)
        logger.info(
            "approval_required",
            extra={
                "operation_type": op_type,
                "priority": submission.priority.value,
                "estimated_wait": submission.estimated_wait,
            },
        )
        self._audit(context, AuditAction.DENY, AuditSeverity.INFO, entity_id,
                    description=f"Approval required: {submission.business_context}",
                    amount=amount, currency=currency)
        raise ApprovalRequiredError(submission)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_money(self, context: GuardContext) -> tuple[Decimal | None, str | None]:
        if context.amount is not None or context.currency is not None:
            currency = context.currency.upper() if context.currency else None
            return context.amount, currency
        return extract_money(context.operation_type, context.operation_data)

    def _build_submission(
        self,
        context: GuardContext,
        amount: Decimal | None,
        currency: str | None,
    ) -> ApprovalSubmission:
        op_type = context.operation_type
        priority = derive_priority(op_type, context.operation_data, amount)
        chain = self._snapshot.chain_for(op_type) if self._snapshot is not None else None
        total_steps = chain.total_steps if chain is not None else 1
        return ApprovalSubmission(
            operation_type=op_type,
            operation_data=dict(context.operation_data),
            amount=amount,
            currency=currency,
            requested_by=context.user_id,
            business_context=describe_operation(op_type, context.operation_data),
            priority=priority,
            total_steps=total_steps,
            estimated_wait=estimate_approval_wait(total_steps, priority),
        )

    def _deny(
        self,
        context: GuardContext,
        entity_id: str | None,
        error: SecurityViolationError,
    ) -> NoReturn:
        logger.critical(
            "guard_denied",
            extra={
                "operation_type": context.operation_type,
                "error_code": error.code,
                "reason": error.reason,
            },
        )
        self._audit(context, AuditAction.DENY, AuditSeverity.CRITICAL, entity_id,
                    description=str(error), extra={"error_code": error.code})
        raise error

    def _audit(
        self,
        context: GuardContext,
        action: AuditAction,
        severity: AuditSeverity,
        entity_id: str | None,
        description: str,
        amount: Decimal | None = None,
        currency: str | None = None,
        extra: dict | None = None,
    ) -> None:
        audit_context: AuditContext = context.audit_context
        if audit_context.user_id is None and context.user_id is not None:
            audit_context = AuditContext(
                user_id=context.user_id,
                correlation_id=audit_context.correlation_id,
                ip_address=audit_context.ip_address,
                user_agent=audit_context.user_agent,
                source=audit_context.source,
            )
        emit_audit(self._audit_sink, audit_context.with_severity(severity), AuditRecord(
            entity_type=context.operation_type,
            action=action,
            entity_id=entity_id,
            operation_type=context.operation_type,
            description=description,
            financial_impact=amount,
            currency=currency,
            business_context=describe_operation(context.operation_type, context.operation_data),
            approval_request_id=(
                str(context.approval_request_id) if context.approval_request_id else None
            ),
            severity=severity,
            extra={"operation_id": context.operation_id, **(extra or {})},
        ))
