"""
trade_services.orchestrator -- Retrying entry point for composite writes.

Responsibility:
    Runs each guarded business operation as one unit of work: open a
    session, build a TradeCore, call the domain service, commit.  When the
    attempt fails with a transient conflict (deadlock, serialization
    failure, unique race, mutex timeout) the whole unit of work is re-run
    from scratch with a fresh session and a fresh policy snapshot.

Architecture position:
    Services -- outermost layer.  The only place in the system that
    retries; kernel primitives never retry themselves.

Invariants enforced:
    - All-or-nothing: a purchase, its capital funding entry and its stock
      lot commit together or not at all, on every attempt.
    - Retries never double-apply: creates are idempotent by
      ``client_reference`` and consumed approvals are bound to a unique
      ``operation_id``.

Failure modes:
    - TransientConflictError once ``RetryPolicy.max_attempts`` is spent.
    - Every other error (security, approval required, business rule)
      propagates on the first attempt without retry.

Usage:
    orchestrator = TradeOrchestrator.from_config(get_active_config(), factory)
    result = orchestrator.create_purchase(request, audit_context)
"""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from trade_config.bridges import build_credential_verifier, build_policy_snapshot
from trade_config.schema import TradeConfiguration
from trade_kernel.domain.approval import ApprovalContext
from trade_kernel.domain.audit import AuditContext
from trade_kernel.domain.capital import BalanceSnapshot, CapitalEntry, CapitalEntryDraft
from trade_kernel.domain.clock import Clock, SystemClock
from trade_kernel.domain.policy import TradePolicySnapshot
from trade_kernel.logging_config import LogContext, get_logger
from trade_kernel.services.audit_sink import AuditSink
from trade_kernel.services.retry_service import RetryService
from trade_kernel.services.service_credentials import ServiceCredentialVerifier
from trade_services.admin_service import AdminService
from trade_services.capital_service import CapitalService
from trade_services.purchase_service import PurchaseRequest, PurchaseResult, PurchaseService
from trade_services.sales_service import SaleOrderRequest, SaleOrderResult, SalesService
from trade_services.warehouse_service import FilterResult, WarehouseService
from trade_services.wiring import TradeCore

logger = get_logger("services.orchestrator")

T = TypeVar("T")


class TradeOrchestrator:
    """
    Contract:
        Every public method is one committed unit of work.  Results are
        returned only after the commit succeeded.

    Non-goals:
        - Does NOT submit approval requests on ApprovalRequiredError; the
          caller decides whether to open one with the carried submission.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: TradePolicySnapshot | None = None,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
        credential_verifier: ServiceCredentialVerifier | None = None,
        retry: RetryService | None = None,
    ):
        self._session_factory = session_factory
        self._policy = policy or TradePolicySnapshot()
        self._clock = clock or SystemClock()
        self._audit_sink = audit_sink
        self._verifier = credential_verifier
        self._retry = retry or RetryService(session_factory, self._policy.retry)

    @classmethod
    def from_config(
        cls,
        config: TradeConfiguration,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
    ) -> TradeOrchestrator:
        return cls(
            session_factory,
            policy=build_policy_snapshot(config),
            clock=clock,
            audit_sink=audit_sink,
            credential_verifier=build_credential_verifier(config, clock=clock),
        )

    @property
    def policy(self) -> TradePolicySnapshot:
        return self._policy

    def run(self, name: str, work: Callable[[TradeCore], T], audit_context: AuditContext) -> T:
        """Run ``work(core)`` in a retried transaction of its own."""

        def attempt(session: Session) -> T:
            core = TradeCore(
                session,
                self._policy,
                clock=self._clock,
                audit_sink=self._audit_sink,
                credential_verifier=self._verifier,
            )
            return work(core)

        with LogContext.bind(
            correlation_id=audit_context.correlation_id,
            actor_id=audit_context.user_id,
        ):
            logger.info("unit_of_work_started", extra={"operation": name})
            result = self._retry.run(name, attempt)
            logger.info("unit_of_work_committed", extra={"operation": name})
            return result

    # ------------------------------------------------------------------
    # Capital
    # ------------------------------------------------------------------

    def record_capital_entry(
        self,
        draft: CapitalEntryDraft,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
        operation_id: str | None = None,
    ) -> CapitalEntry:
        return self.run(
            "record_capital_entry",
            lambda core: CapitalService(core).record_entry(
                draft, audit_context, approval, operation_id,
            ),
            audit_context,
        )

    def reverse_capital_entry(
        self,
        entry_id: str,
        reason: str,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
        operation_id: str | None = None,
    ) -> CapitalEntry:
        return self.run(
            "reverse_capital_entry",
            lambda core: CapitalService(core).reverse_entry(
                entry_id, reason, audit_context, approval, operation_id,
            ),
            audit_context,
        )

    def get_balance(self) -> BalanceSnapshot:
        return self.run(
            "get_balance",
            lambda core: CapitalService(core).get_balance(),
            AuditContext(source="system"),
        )

    # ------------------------------------------------------------------
    # Purchases and warehouse
    # ------------------------------------------------------------------

    def create_purchase(
        self,
        request: PurchaseRequest,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
    ) -> PurchaseResult:
        return self.run(
            "create_purchase",
            lambda core: PurchaseService(core).create_purchase(request, audit_context, approval),
            audit_context,
        )

    def decide_for_filtering(
        self,
        purchase_id: UUID,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
    ) -> UUID:
        return self.run(
            "decide_for_filtering",
            lambda core: WarehouseService(core).decide_for_filtering(
                purchase_id, audit_context, approval,
            ),
            audit_context,
        )

    def execute_filter_operation(
        self,
        purchase_id: UUID,
        input_kg: Decimal,
        output_clean_kg: Decimal,
        output_non_clean_kg: Decimal,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
    ) -> FilterResult:
        return self.run(
            "execute_filter_operation",
            lambda core: WarehouseService(core).execute_filter_operation(
                purchase_id, input_kg, output_clean_kg, output_non_clean_kg,
                audit_context, approval,
            ),
            audit_context,
        )

    # ------------------------------------------------------------------
    # Sales and administration
    # ------------------------------------------------------------------

    def create_sale_order(
        self,
        request: SaleOrderRequest,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
    ) -> SaleOrderResult:
        return self.run(
            "create_sale_order",
            lambda core: SalesService(core).create_sale_order(request, audit_context, approval),
            audit_context,
        )

    def change_system_setting(
        self,
        key: str,
        value: str,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
        operation_id: str | None = None,
    ) -> str:
        return self.run(
            "change_system_setting",
            lambda core: AdminService(core).change_system_setting(
                key, value, audit_context, approval, operation_id,
            ).value,
            audit_context,
        )

    def change_user_role(
        self,
        user_id: str,
        role: str,
        audit_context: AuditContext,
        approval: ApprovalContext | None = None,
        operation_id: str | None = None,
    ) -> str:
        return self.run(
            "change_user_role",
            lambda core: AdminService(core).change_user_role(
                user_id, role, audit_context, approval, operation_id,
            ).role,
            audit_context,
        )
