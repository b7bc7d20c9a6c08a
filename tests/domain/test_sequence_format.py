"""
Tests for document-number formatting (trade_kernel/domain/sequence.py).

Covers:
- format()/parse() for the configured prefixes
- next_after() from empty, mid-range and the last representable value
- exhaustion at the padding width instead of widening
- lexicographic order equals numeric order (Hypothesis)
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from trade_kernel.domain.sequence import SequenceFormat
from trade_kernel.exceptions import SequenceExhaustedError, SequenceFormatError

PURCHASE = SequenceFormat("purchase", "PUR", 6)


class TestFormatting:

    def test_first_value(self):
        assert PURCHASE.next_after(None) == "PUR-000001"

    def test_next_after_existing(self):
        assert PURCHASE.next_after("PUR-000041") == "PUR-000042"

    def test_parse(self):
        assert PURCHASE.parse("PUR-001234") == 1234

    def test_custom_separator_and_width(self):
        fmt = SequenceFormat("sale_order", "SO", 4, separator="/")
        assert fmt.format(7) == "SO/0007"
        assert fmt.parse("SO/0007") == 7

    @pytest.mark.parametrize("value", ["PUR-12", "SO-000001", "PUR000001", "PUR-00000a", ""])
    def test_parse_rejects_foreign_values(self, value):
        with pytest.raises(SequenceFormatError):
            PURCHASE.parse(value)

    def test_zero_is_not_a_sequence_number(self):
        with pytest.raises(ValueError):
            PURCHASE.format(0)

    def test_invalid_width_rejected(self):
        with pytest.raises(ValueError, match="width"):
            SequenceFormat("purchase", "PUR", 0)

    def test_lock_name_is_per_class(self):
        assert PURCHASE.lock_name == "purchase_number_generation"


class TestExhaustion:

    def test_last_value_is_issued(self):
        fmt = SequenceFormat("tiny", "T", 2)
        assert fmt.next_after("T-98") == "T-99"

    def test_overflow_is_refused(self):
        fmt = SequenceFormat("tiny", "T", 2)
        with pytest.raises(SequenceExhaustedError) as exc_info:
            fmt.next_after("T-99")
        assert exc_info.value.max_number == 99
        assert exc_info.value.code == "SEQUENCE_EXHAUSTED"

    def test_format_past_width_is_refused(self):
        with pytest.raises(SequenceExhaustedError):
            SequenceFormat("tiny", "T", 2).format(100)


class TestOrderingProperties:

    @given(st.integers(min_value=1, max_value=999_999), st.integers(min_value=1, max_value=999_999))
    @settings(max_examples=200)
    def test_string_order_matches_numeric_order(self, a, b):
        assert (PURCHASE.format(a) < PURCHASE.format(b)) == (a < b)

    @given(st.integers(min_value=1, max_value=999_998))
    @settings(max_examples=200)
    def test_next_after_is_successor(self, n):
        assert PURCHASE.parse(PURCHASE.next_after(PURCHASE.format(n))) == n + 1

    @given(st.integers(min_value=1, max_value=999_999))
    def test_parse_inverts_format(self, n):
        assert PURCHASE.parse(PURCHASE.format(n)) == n
