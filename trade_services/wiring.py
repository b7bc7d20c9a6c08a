"""
trade_services.wiring -- per-transaction composition of kernel services.

Responsibility:
    Creates every kernel service exactly once for one session and wires
    them together: policy snapshot, mutex, sequence generator, approval
    workflow, guard, ledger.  Domain services in trade_services receive a
    TradeCore and never construct kernel services themselves.

Architecture position:
    Services -- the only place kernel services are constructed.

Invariants enforced:
    - One policy snapshot per transaction: ``ConfigurationService`` is
      read once when the core is built.
    - All services share the same Session, Clock, mutex and audit sink.

Non-goals:
    - Does NOT manage transaction boundaries (caller's responsibility).

Usage:
    with session_scope() as session:
        core = TradeCore(session, policy, clock=clock, audit_sink=sink)
        core.enforce_approval_requirement(context)
        core.append_capital_entry(draft, audit_context)
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from trade_kernel.domain.approval import ApprovalContext
from trade_kernel.domain.audit import AuditContext
from trade_kernel.domain.capital import CapitalEntry, CapitalEntryDraft
from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.domain.guard import GuardContext, GuardDecision
from trade_kernel.domain.policy import TradePolicySnapshot
from trade_kernel.services.approval_guard import ApprovalGuard
from trade_kernel.services.approval_workflow import (
    ApprovalWorkflowClient,
    ApprovalWorkflowService,
)
from trade_kernel.services.audit_sink import AuditSink
from trade_kernel.services.configuration_service import ConfigurationService
from trade_kernel.services.ledger_service import LedgerTransactionManager
from trade_kernel.services.mutex import ResourceMutex, mutex_for_session
from trade_kernel.services.sequence_service import SequenceNumberGenerator
from trade_kernel.services.service_credentials import ServiceCredentialVerifier


def build_guard_context(
    operation_type: str,
    operation_data: dict[str, Any],
    audit_context: AuditContext,
    approval: ApprovalContext | None = None,
    operation_id: str | None = None,
) -> GuardContext:
    """GuardContext for a write by ``audit_context.user_id``."""
    approval = approval or ApprovalContext()
    return GuardContext(
        operation_type=operation_type,
        operation_data=operation_data,
        operation_id=operation_id or str(uuid4()),
        user_id=audit_context.user_id,
        approval_request_id=approval.approval_request_id,
        skip_approval=approval.skip_approval,
        service_token=approval.service_token,
        bypass_justification=approval.bypass_justification,
        audit_context=audit_context,
    )


class TradeCore:
    """Kernel services bound to one session.

    Contract:
        Construct inside an open transaction; discard when it ends.  The
        policy snapshot, and any mutex acquired through these services,
        belong to that transaction only.
    """

    def __init__(
        self,
        session: Session,
        policy: TradePolicySnapshot | None = None,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        credential_verifier: ServiceCredentialVerifier | None = None,
        workflow: ApprovalWorkflowClient | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink
        self.policy = ConfigurationService(session, policy).snapshot()

        self.mutex = mutex_for_session(session, self.policy.mutex)
        self.resource_mutex = ResourceMutex(self.mutex)
        self.sequences = SequenceNumberGenerator(session, self.policy, self.mutex)
        self.workflow = workflow or ApprovalWorkflowService(
            session, self.policy, clock=self.clock,
            audit_sink=audit_sink, mutex=self.mutex,
        )
        self.guard = ApprovalGuard(
            self.workflow, self.policy,
            audit_sink=audit_sink, credential_verifier=credential_verifier,
        )
        self.ledger = LedgerTransactionManager(
            session, self.policy, clock=self.clock,
            audit_sink=audit_sink, mutex=self.mutex,
        )

    def enforce_approval_requirement(self, context: GuardContext) -> GuardDecision:
        return self.guard.enforce(context)

    def append_capital_entry(
        self,
        draft: CapitalEntryDraft,
        audit_context: AuditContext | None = None,
    ) -> CapitalEntry:
        return self.ledger.append_entry(draft, audit_context)

    def next_sequence_number(self, entity_class: str) -> str:
        return self.sequences.next(entity_class)
