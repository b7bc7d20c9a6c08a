"""Tests for approval lifecycle types and wait estimates."""

import pytest

from trade_kernel.domain.approval import (
    ApprovalChain,
    ApprovalChainStep,
    ApprovalPriority,
    ApprovalStatus,
    can_transition,
    estimate_approval_wait,
)


class TestLifecycle:

    @pytest.mark.parametrize("current,target,allowed", [
        (ApprovalStatus.PENDING, ApprovalStatus.APPROVED, True),
        (ApprovalStatus.PENDING, ApprovalStatus.REJECTED, True),
        (ApprovalStatus.APPROVED, ApprovalStatus.CONSUMED, True),
        (ApprovalStatus.PENDING, ApprovalStatus.CONSUMED, False),
        (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED, False),
        (ApprovalStatus.REJECTED, ApprovalStatus.APPROVED, False),
        (ApprovalStatus.CONSUMED, ApprovalStatus.APPROVED, False),
    ])
    def test_transitions(self, current, target, allowed):
        assert can_transition(current, target) is allowed


class TestEstimatedWait:

    def test_urgent_single_step_in_hours(self):
        assert estimate_approval_wait(1, ApprovalPriority.URGENT) == "2 hours"

    def test_high_two_steps(self):
        assert estimate_approval_wait(2, ApprovalPriority.HIGH) == "12 hours"

    def test_normal_one_step_is_a_day(self):
        assert estimate_approval_wait(1, ApprovalPriority.NORMAL) == "1 business day"

    def test_low_two_steps(self):
        assert estimate_approval_wait(2, ApprovalPriority.LOW) == "4 business days"

    def test_long_chains_in_weeks(self):
        assert estimate_approval_wait(4, ApprovalPriority.LOW) == "2 weeks"

    def test_zero_steps_counts_as_one(self):
        assert estimate_approval_wait(0, ApprovalPriority.HIGH) == "6 hours"


class TestChain:

    def test_total_steps(self):
        chain = ApprovalChain(
            operation_type="purchase",
            steps=(ApprovalChainStep(1, "purchasing"), ApprovalChainStep(2, "finance")),
        )
        assert chain.total_steps == 2

    def test_empty_chain_has_one_step(self):
        assert ApprovalChain(operation_type="purchase").total_steps == 1
