"""
Integration tests for guarded purchase creation.

A purchase writes three rows in one transaction: the purchase, the
CapitalOut funding entry and the FIRST-warehouse stock lot.  Purchases at
or above the auto-approve threshold need an approved, single-use request
bound to the same supplier, quantity and total.
"""

from decimal import Decimal

import pytest

from trade_kernel.domain.approval import ApprovalContext
from trade_kernel.domain.audit import AuditContext
from trade_kernel.domain.warehouse import StockStatus
from trade_kernel.exceptions import (
    ApprovalBindingError,
    ApprovalRequiredError,
    CriticalBypassError,
    IdempotencyConflictError,
    InvalidCapitalEntryError,
    InvalidQuantityError,
    NegativeBalanceError,
)
from trade_services import PurchaseRequest, PurchaseService, WarehouseService


def small_purchase(**overrides):
    fields = dict(
        supplier_id="SUP-1",
        weight_kg=Decimal("100"),
        price_per_kg=Decimal("40"),
        currency="USD",
    )
    fields.update(overrides)
    return PurchaseRequest(**fields)


def large_purchase(**overrides):
    return small_purchase(price_per_kg=Decimal("60"), **overrides)


@pytest.fixture
def purchases(core):
    return PurchaseService(core)


class TestBelowThreshold:

    def test_creates_purchase_funding_and_stock(self, core, purchases, fund_capital, audit_context):
        fund_capital("10000")
        result = purchases.create_purchase(small_purchase(), audit_context)

        assert result.created
        assert result.purchase_number == "PUR-000001"
        assert result.total == Decimal("4000")
        assert result.capital_entry_id == "CAP-000002"
        assert core.ledger.get_balance().balance == Decimal("6000")

        (stock,) = WarehouseService(core).stock_for_purchase(result.purchase_id)
        assert stock.status == StockStatus.AWAITING_DECISION.value
        assert stock.qty_kg_total == Decimal("100")
        assert stock.unit_cost_clean_usd == Decimal("40")

    def test_capital_out_references_purchase(self, core, purchases, fund_capital, audit_context):
        fund_capital()
        result = purchases.create_purchase(small_purchase(), audit_context)
        entry = core.ledger.get_entry(result.capital_entry_id)
        assert entry.reference == str(result.purchase_id)
        assert entry.signed_amount == Decimal("-4000")
        assert entry.created_by == "alice"

    def test_partial_payment(self, core, purchases, fund_capital, audit_context):
        fund_capital()
        result = purchases.create_purchase(
            small_purchase(amount_paid=Decimal("1500")), audit_context,
        )
        purchase = purchases.get_purchase(result.purchase_id)
        assert purchase.remaining == Decimal("2500")
        assert core.ledger.get_balance().balance == Decimal("8500")

    def test_external_funding_leaves_capital_alone(self, core, purchases, audit_context):
        result = purchases.create_purchase(
            small_purchase(funding_source="external"), audit_context,
        )
        assert result.capital_entry_id is None
        assert core.ledger.get_balance().entry_count == 0

    def test_foreign_currency_purchase(self, core, purchases, fund_capital, audit_context):
        fund_capital()
        result = purchases.create_purchase(
            small_purchase(
                weight_kg=Decimal("10"), price_per_kg=Decimal("110"),
                currency="ETB", exchange_rate=Decimal("55"),
            ),
            audit_context,
        )
        entry = core.ledger.get_entry(result.capital_entry_id)
        assert entry.amount == Decimal("20")
        assert entry.payment_currency == "ETB"
        (stock,) = WarehouseService(core).stock_for_purchase(result.purchase_id)
        assert stock.unit_cost_clean_usd == Decimal("2")

    def test_foreign_currency_needs_rate(self, purchases, audit_context):
        with pytest.raises(InvalidCapitalEntryError):
            purchases.create_purchase(small_purchase(currency="ETB"), audit_context)

    def test_insufficient_capital(self, purchases, fund_capital, audit_context):
        fund_capital("3999.99")
        with pytest.raises(NegativeBalanceError):
            purchases.create_purchase(small_purchase(), audit_context)

    @pytest.mark.parametrize("field,value", [
        ("weight_kg", Decimal("0")),
        ("price_per_kg", Decimal("-1")),
        ("amount_paid", Decimal("4000.01")),
    ])
    def test_invalid_quantities(self, purchases, audit_context, field, value):
        with pytest.raises(InvalidQuantityError) as exc_info:
            purchases.create_purchase(small_purchase(**{field: value}), audit_context)
        assert exc_info.value.field_name == field


class TestIdempotency:

    def test_repeat_returns_existing(self, core, purchases, fund_capital, audit_context):
        fund_capital()
        first = purchases.create_purchase(small_purchase(client_reference="po-1"), audit_context)
        second = purchases.create_purchase(small_purchase(client_reference="po-1"), audit_context)
        assert second.created is False
        assert second.purchase_id == first.purchase_id
        assert second.purchase_number == first.purchase_number
        assert core.ledger.get_balance().balance == Decimal("6000")

    @pytest.mark.parametrize("field,value", [
        ("supplier_id", "SUP-2"),
        ("weight_kg", Decimal("90")),
        ("price_per_kg", Decimal("41")),
        ("amount_paid", Decimal("1000")),
        ("funding_source", "external"),
    ])
    def test_reference_reused_with_different_fields(
        self, core, purchases, fund_capital, audit_context, field, value,
    ):
        fund_capital()
        purchases.create_purchase(small_purchase(client_reference="po-1"), audit_context)
        with pytest.raises(IdempotencyConflictError) as exc_info:
            purchases.create_purchase(
                small_purchase(client_reference="po-1", **{field: value}), audit_context,
            )
        assert field in exc_info.value.mismatched_fields
        assert exc_info.value.client_reference == "po-1"
        assert core.ledger.get_balance().balance == Decimal("6000")

    def test_repeat_with_explicit_full_payment_matches(self, purchases, fund_capital, audit_context):
        fund_capital()
        purchases.create_purchase(small_purchase(client_reference="po-1"), audit_context)
        second = purchases.create_purchase(
            small_purchase(client_reference="po-1", amount_paid=Decimal("4000")), audit_context,
        )
        assert second.created is False


class TestApprovalRequired:

    def test_refused_with_submission(self, purchases, fund_capital, audit_context, recording_audit_sink):
        fund_capital()
        with pytest.raises(ApprovalRequiredError) as exc_info:
            purchases.create_purchase(large_purchase(), audit_context)
        submission = exc_info.value.submission
        assert submission.operation_type == "purchase"
        assert submission.amount == Decimal("6000")
        assert submission.requested_by == "alice"
        assert submission.total_steps == 2
        assert recording_audit_sink.actions()[-1] == "deny"

    def test_approved_purchase_proceeds(
        self, core, purchases, fund_capital, audit_context, grant_approval, recording_audit_sink,
    ):
        fund_capital()
        with pytest.raises(ApprovalRequiredError) as exc_info:
            purchases.create_purchase(large_purchase(client_reference="po-9"), audit_context)
        approval = grant_approval(exc_info.value.submission, audit_context)

        result = purchases.create_purchase(
            large_purchase(client_reference="po-9"), audit_context, approval,
        )
        assert result.created
        assert core.ledger.get_balance().balance == Decimal("4000")

        stored = core.workflow.get_approval_by_id(approval.approval_request_id)
        assert stored.consumed_operation_id == "po-9"
        assert "consume" in recording_audit_sink.actions()

    def test_approval_is_single_use(self, purchases, fund_capital, audit_context, grant_approval):
        fund_capital("20000")
        with pytest.raises(ApprovalRequiredError) as exc_info:
            purchases.create_purchase(large_purchase(), audit_context)
        approval = grant_approval(exc_info.value.submission, audit_context)

        purchases.create_purchase(large_purchase(), audit_context, approval)
        with pytest.raises(ApprovalBindingError, match="already consumed"):
            purchases.create_purchase(large_purchase(), audit_context, approval)

    def test_approval_bound_to_supplier(self, purchases, fund_capital, audit_context, grant_approval):
        fund_capital()
        with pytest.raises(ApprovalRequiredError) as exc_info:
            purchases.create_purchase(large_purchase(), audit_context)
        approval = grant_approval(exc_info.value.submission, audit_context)

        with pytest.raises(ApprovalBindingError, match="different entity"):
            purchases.create_purchase(large_purchase(supplier_id="SUP-2"), audit_context, approval)

    def test_approval_bound_to_quantity(self, purchases, fund_capital, audit_context, grant_approval):
        fund_capital()
        with pytest.raises(ApprovalRequiredError) as exc_info:
            purchases.create_purchase(large_purchase(), audit_context)
        approval = grant_approval(exc_info.value.submission, audit_context)

        with pytest.raises(ApprovalBindingError):
            purchases.create_purchase(
                large_purchase(weight_kg=Decimal("120")), audit_context, approval,
            )

    def test_approval_bound_to_requester(
        self, purchases, fund_capital, audit_context, approver_context, grant_approval,
    ):
        fund_capital()
        with pytest.raises(ApprovalRequiredError) as exc_info:
            purchases.create_purchase(large_purchase(), audit_context)
        approval = grant_approval(exc_info.value.submission, audit_context)

        with pytest.raises(ApprovalBindingError, match="different user"):
            purchases.create_purchase(large_purchase(), approver_context, approval)

    def test_last_approver_cannot_execute(
        self, core, purchases, fund_capital, audit_context, grant_approval,
    ):
        fund_capital()
        with pytest.raises(ApprovalRequiredError) as exc_info:
            purchases.create_purchase(large_purchase(), audit_context)
        approval = grant_approval(exc_info.value.submission, audit_context)
        assert core.workflow.get_approval_by_id(
            approval.approval_request_id
        ).current_approver == "dave"

        with pytest.raises(ApprovalBindingError, match="different user"):
            purchases.create_purchase(
                large_purchase(), AuditContext(user_id="dave"), approval,
            )


class TestBypass:

    def test_critical_bypass_refused(self, purchases, fund_capital, audit_context, service_bypass):
        fund_capital()
        with pytest.raises(CriticalBypassError):
            purchases.create_purchase(small_purchase(), audit_context, service_bypass)

    def test_bare_skip_flag_refused(self, purchases, audit_context):
        with pytest.raises(CriticalBypassError):
            purchases.create_purchase(
                small_purchase(), audit_context, ApprovalContext(skip_approval=True),
            )
