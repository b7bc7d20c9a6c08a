"""Tests for the filter split arithmetic."""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from trade_kernel.domain.warehouse import compute_filter_split
from trade_kernel.exceptions import FilterOutputExceedsInputError, InvalidQuantityError


class TestComputeFilterSplit:

    def test_cost_moves_to_clean_output(self):
        split = compute_filter_split(
            "p1", Decimal("100"), Decimal("80"), Decimal("20"), Decimal("4"),
        )
        assert split.clean_unit_cost_usd == Decimal("5")
        assert split.filter_yield == Decimal("80.00")

    def test_loss_allowed(self):
        split = compute_filter_split(
            "p1", Decimal("100"), Decimal("70"), Decimal("20"), Decimal("7"),
        )
        assert split.output_clean_kg + split.output_non_clean_kg < split.input_kg

    def test_outputs_exceeding_input_rejected(self):
        with pytest.raises(FilterOutputExceedsInputError) as exc_info:
            compute_filter_split("p1", Decimal("100"), Decimal("90"), Decimal("11"), Decimal("1"))
        assert exc_info.value.purchase_id == "p1"

    def test_clean_output_must_be_positive(self):
        with pytest.raises(InvalidQuantityError):
            compute_filter_split("p1", Decimal("100"), Decimal("0"), Decimal("10"), Decimal("1"))

    def test_negative_non_clean_rejected(self):
        with pytest.raises(InvalidQuantityError):
            compute_filter_split("p1", Decimal("100"), Decimal("50"), Decimal("-1"), Decimal("1"))

    @given(
        st.integers(min_value=1, max_value=10_000),
        st.integers(min_value=1, max_value=100),
        st.integers(min_value=1, max_value=500),
    )
    @settings(max_examples=100)
    def test_total_cost_preserved(self, input_kg, clean_pct, unit_cost_cents):
        input_kg = Decimal(input_kg)
        clean = (input_kg * clean_pct / 100).quantize(Decimal("0.001"))
        if clean <= 0:
            return
        unit_cost = Decimal(unit_cost_cents) / 100
        split = compute_filter_split("p", input_kg, clean, Decimal("0"), unit_cost)
        original = unit_cost * input_kg
        assert abs(split.clean_unit_cost_usd * clean - original) <= clean * Decimal("0.000000001")
