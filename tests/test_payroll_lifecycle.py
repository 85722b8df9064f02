"""
Payroll Core - Lifecycle Tests
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from payroll_core.models.payroll import Payroll, PayrollStatus
from payroll_core.services.payroll_lifecycle import (
    can_mutate,
    can_transition,
    ensure_mutable,
    is_pay_stub_eligible,
    transition,
)
from payroll_core.utils.error_handling import InvalidTransitionException, PayrollLockedException


def new_payroll(status=PayrollStatus.DRAFT) -> Payroll:
    return Payroll(
        worker_id="w-1",
        worker_name="Worker",
        month=5,
        year=2024,
        status=status,
        base_gross_salary=Decimal("1000.00"),
        adjustments=[],
    )


class TestTransitionTable:

    @pytest.mark.parametrize("current,target", [
        (PayrollStatus.DRAFT, PayrollStatus.PROCESSING),
        (PayrollStatus.DRAFT, PayrollStatus.COMPLETED),
        (PayrollStatus.DRAFT, PayrollStatus.CANCELED),
        (PayrollStatus.PROCESSING, PayrollStatus.COMPLETED),
        (PayrollStatus.PROCESSING, PayrollStatus.CANCELED),
        (PayrollStatus.COMPLETED, PayrollStatus.PROCESSING),
        (PayrollStatus.COMPLETED, PayrollStatus.CANCELED),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("target", list(PayrollStatus))
    def test_canceled_is_terminal(self, target):
        assert not can_transition(PayrollStatus.CANCELED, target)

    def test_processing_cannot_go_back_to_draft(self):
        assert not can_transition(PayrollStatus.PROCESSING, PayrollStatus.DRAFT)

    def test_mutable_statuses(self):
        assert can_mutate(PayrollStatus.DRAFT)
        assert can_mutate(PayrollStatus.COMPLETED)
        assert not can_mutate(PayrollStatus.PROCESSING)
        assert not can_mutate(PayrollStatus.CANCELED)

    def test_pay_stub_eligibility(self):
        assert is_pay_stub_eligible(PayrollStatus.COMPLETED)
        for status in (PayrollStatus.DRAFT, PayrollStatus.PROCESSING, PayrollStatus.CANCELED):
            assert not is_pay_stub_eligible(status)


class TestTransition:

    def test_processed_at_stamped_once(self):
        payroll = new_payroll()
        first = datetime(2024, 5, 31, tzinfo=timezone.utc)
        later = datetime(2024, 6, 15, tzinfo=timezone.utc)

        transition(payroll, PayrollStatus.COMPLETED, first)
        transition(payroll, PayrollStatus.PROCESSING)
        transition(payroll, PayrollStatus.COMPLETED, later)

        assert payroll.status == PayrollStatus.COMPLETED
        assert payroll.processed_at == first

    def test_invalid_transition_leaves_status(self):
        payroll = new_payroll(PayrollStatus.CANCELED)
        with pytest.raises(InvalidTransitionException):
            transition(payroll, PayrollStatus.COMPLETED)
        assert payroll.status == PayrollStatus.CANCELED
        assert payroll.processed_at is None

    def test_ensure_mutable(self):
        ensure_mutable(new_payroll(PayrollStatus.DRAFT))
        with pytest.raises(PayrollLockedException):
            ensure_mutable(new_payroll(PayrollStatus.CANCELED))
