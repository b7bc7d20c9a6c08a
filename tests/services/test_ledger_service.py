"""
Tests for LedgerTransactionManager.

Covers the balance aggregate, the negative-balance rule and its runtime
override, base-currency conversion, reversal rules, and append-only rows.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from trade_kernel.domain.capital import CapitalEntryDraft, CapitalEntryType
from trade_kernel.exceptions import (
    CapitalEntryNotFoundError,
    EntryAlreadyReversedError,
    ImmutabilityViolationError,
    InvalidCapitalEntryError,
    NegativeBalanceError,
    UnsupportedCurrencyError,
)
from trade_kernel.models.capital_entry import CapitalEntryModel
from trade_kernel.models.settings import SystemSettingModel
from trade_kernel.services.configuration_service import PREVENT_NEGATIVE_BALANCE
from trade_services.wiring import TradeCore


def draft(entry_type, amount, currency="USD", rate=None, created_by="treasury"):
    return CapitalEntryDraft(
        entry_type=entry_type,
        amount=Decimal(str(amount)),
        payment_currency=currency,
        created_by=created_by,
        exchange_rate=Decimal(str(rate)) if rate is not None else None,
    )


@pytest.fixture
def ledger(core):
    return core.ledger


class TestBalance:

    def test_empty_ledger(self, ledger):
        snapshot = ledger.get_balance()
        assert snapshot.balance == Decimal("0")
        assert snapshot.currency == "USD"
        assert snapshot.entry_count == 0

    def test_signed_sum(self, ledger):
        ledger.append_entry(draft(CapitalEntryType.OPENING, "1000"))
        ledger.append_entry(draft(CapitalEntryType.CAPITAL_IN, "250.50"))
        ledger.append_entry(draft(CapitalEntryType.CAPITAL_OUT, "300"))
        snapshot = ledger.get_balance()
        assert snapshot.balance == Decimal("950.50")
        assert snapshot.entry_count == 3


class TestAppendEntry:

    def test_entry_ids_sequential(self, ledger):
        first = ledger.append_entry(draft(CapitalEntryType.OPENING, "10"))
        second = ledger.append_entry(draft(CapitalEntryType.CAPITAL_IN, "10"))
        assert (first.entry_id, second.entry_id) == ("CAP-000001", "CAP-000002")

    def test_outflow_beyond_balance_rejected(self, ledger):
        ledger.append_entry(draft(CapitalEntryType.OPENING, "100"))
        with pytest.raises(NegativeBalanceError) as exc_info:
            ledger.append_entry(draft(CapitalEntryType.CAPITAL_OUT, "100.01"))
        assert exc_info.value.current_balance == Decimal("100")
        assert ledger.get_balance().entry_count == 1

    def test_outflow_to_exactly_zero_allowed(self, ledger):
        ledger.append_entry(draft(CapitalEntryType.OPENING, "100"))
        ledger.append_entry(draft(CapitalEntryType.CAPITAL_OUT, "100"))
        assert ledger.get_balance().balance == Decimal("0")

    def test_rejection_logged(self, ledger, captured_logs):
        with pytest.raises(NegativeBalanceError):
            ledger.append_entry(draft(CapitalEntryType.CAPITAL_OUT, "1"))
        assert any(r["message"] == "negative_balance_rejected" for r in captured_logs())

    def test_foreign_currency_converted(self, ledger):
        entry = ledger.append_entry(draft(CapitalEntryType.CAPITAL_IN, "5500", "ETB", rate="55"))
        assert entry.amount == Decimal("100")
        assert entry.payment_amount == Decimal("5500")
        assert entry.payment_currency == "ETB"
        assert ledger.get_balance().balance == Decimal("100")

    def test_foreign_currency_needs_rate(self, ledger):
        with pytest.raises(InvalidCapitalEntryError, match="Exchange rate required"):
            ledger.append_entry(draft(CapitalEntryType.CAPITAL_IN, "5500", "ETB"))

    def test_currency_lowercase_accepted(self, ledger):
        entry = ledger.append_entry(draft(CapitalEntryType.OPENING, "1", "usd"))
        assert entry.payment_currency == "USD"

    def test_unsupported_currency(self, ledger):
        with pytest.raises(UnsupportedCurrencyError):
            ledger.append_entry(draft(CapitalEntryType.CAPITAL_IN, "10", "EUR", rate="1"))

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount(self, ledger, amount):
        with pytest.raises(InvalidCapitalEntryError):
            ledger.append_entry(draft(CapitalEntryType.CAPITAL_IN, amount))

    def test_reverse_type_not_appendable(self, ledger):
        with pytest.raises(InvalidCapitalEntryError):
            ledger.append_entry(draft(CapitalEntryType.REVERSE, "10"))

    def test_unknown_type(self, ledger):
        with pytest.raises(InvalidCapitalEntryError, match="Unknown entry type"):
            ledger.append_entry(draft("Dividend", "10"))

    def test_append_audited(self, ledger, recording_audit_sink):
        entry = ledger.append_entry(draft(CapitalEntryType.OPENING, "10"))
        (_, record), = recording_audit_sink.records
        assert record.entity_id == entry.entry_id
        assert record.financial_impact == Decimal("10")


class TestNegativeBalanceOverride:

    def test_setting_disables_check(self, session, policy, deterministic_clock):
        session.add(SystemSettingModel(
            key=PREVENT_NEGATIVE_BALANCE,
            value="false",
            updated_by="admin",
            updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ))
        session.flush()
        core = TradeCore(session, policy, clock=deterministic_clock)
        assert core.policy.ledger.prevent_negative_balance is False

        core.ledger.append_entry(draft(CapitalEntryType.CAPITAL_OUT, "50"))
        assert core.ledger.get_balance().balance == Decimal("-50")

    def test_unparseable_setting_ignored(self, session, policy, captured_logs):
        session.add(SystemSettingModel(
            key=PREVENT_NEGATIVE_BALANCE,
            value="maybe",
            updated_by="admin",
            updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ))
        session.flush()
        core = TradeCore(session, policy)
        assert core.policy.ledger.prevent_negative_balance is True
        assert any(r["message"] == "setting_override_ignored" for r in captured_logs())


class TestReversal:

    def test_reverse_outflow_restores_balance(self, ledger):
        ledger.append_entry(draft(CapitalEntryType.OPENING, "100"))
        out = ledger.append_entry(draft(CapitalEntryType.CAPITAL_OUT, "40"))
        reversal = ledger.reverse_entry(out.entry_id, None, "treasury")
        assert reversal.entry_type == CapitalEntryType.REVERSE
        assert reversal.reversed_type == CapitalEntryType.CAPITAL_OUT
        assert reversal.reverses_entry_id == out.entry_id
        assert reversal.description == f"Reversal of {out.entry_id}"
        assert ledger.get_balance().balance == Decimal("100")

    def test_reverse_inflow_respects_balance(self, ledger):
        opening = ledger.append_entry(draft(CapitalEntryType.OPENING, "100"))
        ledger.append_entry(draft(CapitalEntryType.CAPITAL_OUT, "60"))
        with pytest.raises(NegativeBalanceError):
            ledger.reverse_entry(opening.entry_id, None, "treasury")

    def test_reverse_only_once(self, ledger):
        entry = ledger.append_entry(draft(CapitalEntryType.OPENING, "100"))
        ledger.reverse_entry(entry.entry_id, "typo", "treasury")
        with pytest.raises(EntryAlreadyReversedError):
            ledger.reverse_entry(entry.entry_id, "again", "treasury")

    def test_reversal_not_reversible(self, ledger):
        ledger.append_entry(draft(CapitalEntryType.OPENING, "100"))
        out = ledger.append_entry(draft(CapitalEntryType.CAPITAL_OUT, "10"))
        reversal = ledger.reverse_entry(out.entry_id, None, "treasury")
        with pytest.raises(InvalidCapitalEntryError):
            ledger.reverse_entry(reversal.entry_id, None, "treasury")

    def test_unknown_entry(self, ledger):
        with pytest.raises(CapitalEntryNotFoundError):
            ledger.reverse_entry("CAP-999999", None, "treasury")


class TestAppendOnly:

    def test_update_refused(self, session, ledger):
        entry = ledger.append_entry(draft(CapitalEntryType.OPENING, "100"))
        model = session.get(CapitalEntryModel, entry.id)
        model.description = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_refused(self, session, ledger):
        entry = ledger.append_entry(draft(CapitalEntryType.OPENING, "100"))
        session.delete(session.get(CapitalEntryModel, entry.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
