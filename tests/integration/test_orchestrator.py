"""
Integration tests for TradeOrchestrator: committed units of work, retries,
and all-or-nothing composite writes.
"""

import sqlite3
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from trade_config import get_active_config
from trade_kernel.domain.approval import ApprovalContext, ApprovalDecision, ApprovalStatus
from trade_kernel.domain.audit import AuditContext
from trade_kernel.domain.capital import CapitalEntryDraft, CapitalEntryType
from trade_kernel.domain.policy import RetryPolicy
from trade_kernel.exceptions import (
    ApprovalRequiredError,
    NegativeBalanceError,
    TransientConflictError,
)
from trade_kernel.models.capital_entry import CapitalEntryModel
from trade_kernel.models.purchase import PurchaseModel, WarehouseStockModel
from trade_kernel.services.retry_service import RetryService
from trade_services import PurchaseRequest, PurchaseService, TradeOrchestrator

TREASURY = AuditContext(user_id="treasury", correlation_id="corr-treasury")


def opening(amount):
    return CapitalEntryDraft(
        entry_type=CapitalEntryType.OPENING,
        amount=Decimal(amount),
        payment_currency="USD",
        created_by="treasury",
    )


def count(session_factory, model):
    with session_factory() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


@pytest.fixture
def orchestrator(session_factory, policy, deterministic_clock, recording_audit_sink,
                 credential_verifier):
    return TradeOrchestrator(
        session_factory,
        policy,
        clock=deterministic_clock,
        audit_sink=recording_audit_sink,
        credential_verifier=credential_verifier,
        retry=RetryService(session_factory, RetryPolicy(max_attempts=3), sleep=lambda s: None),
    )


def approve(orchestrator, submission, audit_context):
    """Open and fully approve a request in its own committed transaction."""

    def work(core):
        request = core.workflow.create_approval_request(submission, audit_context)
        for approver in ("carol", "dave")[:request.total_steps]:
            request = core.workflow.record_decision(request.id, approver, ApprovalDecision.APPROVE)
        return request.id

    return ApprovalContext(approval_request_id=orchestrator.run("approve", work, audit_context))


class TestCapital:

    def test_entries_committed(self, orchestrator, session_factory):
        orchestrator.record_capital_entry(opening("500"), TREASURY)
        assert orchestrator.get_balance().balance == Decimal("500")
        assert count(session_factory, CapitalEntryModel) == 1

    def test_large_entry_needs_approval(self, orchestrator):
        with pytest.raises(ApprovalRequiredError) as exc_info:
            orchestrator.record_capital_entry(opening("5000"), TREASURY)
        approval = approve(orchestrator, exc_info.value.submission, TREASURY)
        entry = orchestrator.record_capital_entry(opening("5000"), TREASURY, approval)
        assert entry.entry_id == "CAP-000001"

    def test_reversal_always_needs_approval(self, orchestrator):
        entry = orchestrator.record_capital_entry(opening("100"), TREASURY)
        with pytest.raises(ApprovalRequiredError) as exc_info:
            orchestrator.reverse_capital_entry(entry.entry_id, "duplicate", TREASURY)
        assert exc_info.value.submission.total_steps == 2

        approval = approve(orchestrator, exc_info.value.submission, TREASURY)
        reversal = orchestrator.reverse_capital_entry(
            entry.entry_id, "duplicate", TREASURY, approval,
        )
        assert reversal.reverses_entry_id == entry.entry_id
        assert orchestrator.get_balance().balance == Decimal("0")

    def test_unit_of_work_logged_with_correlation(self, orchestrator, captured_logs):
        orchestrator.record_capital_entry(opening("10"), TREASURY)
        committed = [r for r in captured_logs() if r["message"] == "unit_of_work_committed"]
        assert committed[0]["correlation_id"] == "corr-treasury"
        assert committed[0]["actor_id"] == "treasury"
        assert committed[0]["operation"] == "record_capital_entry"


class TestAllOrNothing:

    def test_failed_funding_leaves_nothing(self, orchestrator, session_factory, audit_context):
        orchestrator.record_capital_entry(opening("100"), TREASURY)
        with pytest.raises(NegativeBalanceError):
            orchestrator.create_purchase(
                PurchaseRequest("SUP-1", Decimal("10"), Decimal("40"), "USD"), audit_context,
            )
        assert count(session_factory, PurchaseModel) == 0
        assert count(session_factory, WarehouseStockModel) == 0
        assert count(session_factory, CapitalEntryModel) == 1

    def test_denied_approval_not_consumed(self, orchestrator, session_factory, audit_context):
        orchestrator.record_capital_entry(opening("900"), TREASURY)
        request = PurchaseRequest("SUP-1", Decimal("100"), Decimal("60"), "USD")
        with pytest.raises(ApprovalRequiredError) as exc_info:
            orchestrator.create_purchase(request, audit_context)
        approval = approve(orchestrator, exc_info.value.submission, audit_context)

        # consumption and the failing funding entry roll back together
        with pytest.raises(NegativeBalanceError):
            orchestrator.create_purchase(request, audit_context, approval)

        def status(core):
            return core.workflow.get_approval_by_id(approval.approval_request_id).status

        assert orchestrator.run("read", status, audit_context) == ApprovalStatus.APPROVED


class TestRetry:

    def test_transient_conflict_retried(self, orchestrator, session_factory):
        attempts = []

        def work(core):
            attempts.append(1)
            core.append_capital_entry(opening("1"))
            if len(attempts) == 1:
                raise OperationalError("stmt", {}, sqlite3.OperationalError("database is locked"))
            return core.ledger.get_balance().balance

        assert orchestrator.run("flaky", work, TREASURY) == Decimal("1")
        assert len(attempts) == 2
        assert count(session_factory, CapitalEntryModel) == 1

    def test_retried_purchase_writes_once(self, orchestrator, session_factory, audit_context):
        with pytest.raises(ApprovalRequiredError) as exc_info:
            orchestrator.record_capital_entry(opening("10000"), TREASURY)
        funding = approve(orchestrator, exc_info.value.submission, TREASURY)
        orchestrator.record_capital_entry(opening("10000"), TREASURY, funding)

        request = PurchaseRequest(
            "SUP-1", Decimal("100"), Decimal("60"), "USD", client_reference="po-retry",
        )
        with pytest.raises(ApprovalRequiredError) as exc_info:
            orchestrator.create_purchase(request, audit_context)
        approval = approve(orchestrator, exc_info.value.submission, audit_context)

        attempts = []

        def work(core):
            attempts.append(1)
            result = PurchaseService(core).create_purchase(request, audit_context, approval)
            if len(attempts) == 1:
                # purchase, funding entry, stock lot and consumption are all flushed
                raise OperationalError("stmt", {}, sqlite3.OperationalError("database is locked"))
            return result

        result = orchestrator.run("create_purchase", work, audit_context)
        assert result.created
        assert len(attempts) == 2
        assert count(session_factory, PurchaseModel) == 1
        assert count(session_factory, WarehouseStockModel) == 1
        assert count(session_factory, CapitalEntryModel) == 2
        with session_factory() as session:
            outflows = session.execute(
                select(CapitalEntryModel).where(
                    CapitalEntryModel.entry_type == CapitalEntryType.CAPITAL_OUT.value
                )
            ).scalars().all()
        assert [entry.reference for entry in outflows] == [str(result.purchase_id)]

        def stored(core):
            return core.workflow.get_approval_by_id(approval.approval_request_id)

        consumed = orchestrator.run("read", stored, audit_context)
        assert consumed.status == ApprovalStatus.CONSUMED
        assert consumed.consumed_operation_id == "po-retry"
        assert orchestrator.get_balance().balance == Decimal("4000")

    def test_gives_up_after_max_attempts(self, orchestrator):
        def work(core):
            raise OperationalError("stmt", {}, sqlite3.OperationalError("database is locked"))

        with pytest.raises(TransientConflictError):
            orchestrator.run("always_locked", work, TREASURY)


class TestFromConfig:

    def test_builds_policy_and_verifier(self, session_factory, monkeypatch, deterministic_clock):
        monkeypatch.delenv("TRADE_CONFIG_PATH", raising=False)
        monkeypatch.setenv("TRADE_SERVICE_TOKEN_SECRET", "s3cret")
        orchestrator = TradeOrchestrator.from_config(
            get_active_config(), session_factory, clock=deterministic_clock,
        )
        assert orchestrator.policy.chain_for("purchase").total_steps == 2
        assert orchestrator.policy.guard.allows_internal_bypass("warehouse_operation")
        assert orchestrator._verifier is not None

    def test_no_secret_no_verifier(self, session_factory, monkeypatch):
        monkeypatch.delenv("TRADE_CONFIG_PATH", raising=False)
        monkeypatch.delenv("TRADE_SERVICE_TOKEN_SECRET", raising=False)
        orchestrator = TradeOrchestrator.from_config(get_active_config(), session_factory)
        assert orchestrator._verifier is None
