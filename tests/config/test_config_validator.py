"""Tests for trade_config.validator."""

from dataclasses import replace

import pytest

from trade_config import get_active_config
from trade_config.schema import (
    ApprovalChainDef,
    ApprovalChainStepDef,
    MutexSection,
    RetrySection,
    SequenceDef,
)
from trade_config.validator import validate_configuration


@pytest.fixture
def config(monkeypatch):
    monkeypatch.delenv("TRADE_CONFIG_PATH", raising=False)
    return get_active_config()


def errors_for(config):
    return validate_configuration(config).errors


class TestValidConfiguration:

    def test_defaults_valid_without_warnings(self, config):
        result = validate_configuration(config)
        assert result.is_valid, result.errors
        assert result.warnings == []


class TestGuardRules:

    def test_overlap_rejected(self, config):
        guard = replace(config.guard, internal_bypass_operations=("purchase",))
        (error,) = errors_for(replace(config, guard=guard))
        assert "both critical and bypass-eligible: purchase" in error

    def test_empty_critical_set_rejected(self, config):
        guard = replace(config.guard, critical_operations=())
        assert "guard.critical_operations must not be empty" in errors_for(replace(config, guard=guard))

    @pytest.mark.parametrize("tolerance", ["-0.01", "abc"])
    def test_bad_tolerance(self, config, tolerance):
        guard = replace(config.guard, amount_tolerance=tolerance)
        assert any("amount_tolerance" in e for e in errors_for(replace(config, guard=guard)))

    def test_validity_must_be_positive(self, config):
        guard = replace(config.guard, approval_validity_hours=0)
        assert "guard.approval_validity_hours must be > 0" in errors_for(replace(config, guard=guard))


class TestLedgerRules:

    def test_base_currency_must_be_supported(self, config):
        ledger = replace(config.ledger, base_currency="EUR")
        assert any("base_currency EUR" in e for e in errors_for(replace(config, ledger=ledger)))

    def test_currency_codes(self, config):
        ledger = replace(config.ledger, supported_currencies=("USD", "DOLLARS"))
        assert any("DOLLARS" in e for e in errors_for(replace(config, ledger=ledger)))


class TestSequenceRules:

    def test_duplicate_prefix(self, config):
        sequences = config.sequences + (SequenceDef("invoice", "PUR"),)
        assert "Duplicate sequence prefix: PUR" in errors_for(replace(config, sequences=sequences))

    def test_duplicate_class(self, config):
        sequences = config.sequences + (SequenceDef("purchase", "PO"),)
        assert "Duplicate sequence entity class: purchase" in errors_for(
            replace(config, sequences=sequences)
        )

    def test_width(self, config):
        sequences = (SequenceDef("purchase", "PUR", width=0),)
        assert "Sequence purchase width must be >= 1" in errors_for(
            replace(config, sequences=sequences)
        )


class TestChainRules:

    def test_unknown_priority(self, config):
        chains = (ApprovalChainDef("purchase", priority="asap"),)
        assert any("unknown priority" in e for e in errors_for(replace(config, approval_chains=chains)))

    def test_duplicate_steps(self, config):
        steps = (ApprovalChainStepDef(1, "a"), ApprovalChainStepDef(1, "b"))
        chains = (ApprovalChainDef("purchase", steps=steps),)
        assert any("duplicate step numbers" in e for e in errors_for(replace(config, approval_chains=chains)))

    def test_negative_threshold(self, config):
        chains = (ApprovalChainDef("purchase", auto_approve_below="-1"),)
        assert any("auto_approve_below" in e for e in errors_for(replace(config, approval_chains=chains)))

    def test_missing_chain_for_critical_type_warns(self, config):
        chains = tuple(c for c in config.approval_chains if c.operation_type != "sale_order")
        result = validate_configuration(replace(config, approval_chains=chains))
        assert result.is_valid
        assert any("sale_order has no approval chain" in w for w in result.warnings)


class TestOtherSections:

    def test_retry_attempts(self, config):
        assert "retry.max_attempts must be >= 1" in errors_for(
            replace(config, retry=RetrySection(max_attempts=0))
        )

    def test_mutex_timeout(self, config):
        assert "mutex.lock_timeout_ms must be >= 0" in errors_for(
            replace(config, mutex=MutexSection(lock_timeout_ms=-1))
        )
