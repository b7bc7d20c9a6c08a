"""Tests for mutex key derivation."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from trade_kernel.domain.mutex_key import (
    CAPITAL_BALANCE_LOCK,
    derive_mutex_key,
    resource_lock_name,
)


class TestDeriveMutexKey:

    def test_stable_across_calls(self):
        assert derive_mutex_key(CAPITAL_BALANCE_LOCK) == derive_mutex_key(CAPITAL_BALANCE_LOCK)

    def test_known_value(self):
        # Pinned so that every process, on every host, locks the same key.
        import hashlib

        digest = hashlib.sha256(b"capital_balance_operations").digest()
        unsigned = int.from_bytes(digest[:8], "big")
        expected = unsigned - (1 << 64) if unsigned >= (1 << 63) else unsigned
        assert derive_mutex_key(CAPITAL_BALANCE_LOCK) == expected

    def test_distinct_names_distinct_keys(self):
        assert derive_mutex_key("purchase_number_generation") != derive_mutex_key(
            "sale_order_number_generation"
        )

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError):
            derive_mutex_key("")

    @given(st.text(min_size=1, max_size=200))
    def test_fits_signed_int64(self, name):
        key = derive_mutex_key(name)
        assert -(1 << 63) <= key <= (1 << 63) - 1


class TestResourceLockName:

    def test_filter_operation_name(self):
        assert resource_lock_name("filter_operation", 42) == "filter_operation_42"
