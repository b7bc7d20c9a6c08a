"""Tests for SequenceNumberGenerator."""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from trade_kernel.domain.sequence import SequenceFormat
from trade_kernel.exceptions import SequenceExhaustedError, UnknownSequenceClassError
from trade_kernel.models.sale_order import SaleOrderModel
from trade_kernel.services.sequence_service import SequenceNumberGenerator

CREATED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


def add_order(session, number):
    order = SaleOrderModel(
        order_number=number,
        customer_id="CUST-1",
        total_amount=Decimal("10"),
        currency="USD",
        created_by="test",
        created_at=CREATED_AT,
    )
    session.add(order)
    return order


class TestNext:

    def test_first_value(self, core):
        assert core.sequences.next("sale_order") == "SO-000001"

    def test_follows_latest_row(self, session, core):
        add_order(session, "SO-000041")
        add_order(session, "SO-000007")
        assert core.sequences.next("sale_order") == "SO-000042"

    def test_pending_rows_autoflushed(self, session, core):
        add_order(session, core.sequences.next("sale_order"))
        assert core.sequences.next("sale_order") == "SO-000002"

    def test_classes_independent(self, session, core):
        add_order(session, "SO-000009")
        assert core.sequences.next("purchase") == "PUR-000001"

    def test_unknown_class(self, core):
        with pytest.raises(UnknownSequenceClassError):
            core.sequences.next("invoice")

    def test_exhausted_width(self, session, policy):
        narrow = replace(policy, sequences=(SequenceFormat("sale_order", "SO", 2),))
        add_order(session, "SO-99")
        with pytest.raises(SequenceExhaustedError):
            SequenceNumberGenerator(session, narrow).next("sale_order")

    def test_latest(self, session, core):
        assert core.sequences.latest("sale_order") is None
        add_order(session, "SO-000003")
        assert core.sequences.latest("sale_order") == "SO-000003"


class TestIssue:

    def test_issue_commits_row(self, session_factory, policy):
        number = SequenceNumberGenerator.issue(
            session_factory, policy, "sale_order",
            lambda s, n: add_order(s, n).order_number,
        )
        assert number == "SO-000001"

        with session_factory() as session:
            stored = session.execute(select(SaleOrderModel.order_number)).scalars().all()
        assert stored == ["SO-000001"]

    def test_issue_is_sequential(self, session_factory, policy):
        numbers = [
            SequenceNumberGenerator.issue(
                session_factory, policy, "sale_order",
                lambda s, n: add_order(s, n).order_number,
            )
            for _ in range(3)
        ]
        assert numbers == ["SO-000001", "SO-000002", "SO-000003"]
