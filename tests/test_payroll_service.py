"""
Payroll Core - Payroll Service Tests

Aggregate CRUD, line-item mutation, recalculation and status changes.
"""

import asyncio
import uuid
from decimal import Decimal

import pytest
from pydantic import ValidationError

from payroll_core.models.payroll import AdjustmentCategory, AdjustmentKind, PayrollStatus
from payroll_core.schemas.payroll import AdjustmentCreate, AdjustmentUpdate
from payroll_core.services.pay_stub_service import PayStubService
from payroll_core.services.payroll_calculator import totals_match
from payroll_core.services.payroll_service import PayrollService
from payroll_core.utils.error_handling import (
    AdjustmentNotFoundException,
    CannotDeleteException,
    ConcurrencyException,
    DuplicatePeriodException,
    InvalidAmountException,
    InvalidPeriodException,
    InvalidStatusException,
    PayrollLockedException,
    PayrollNotFoundException,
    PayrollRunNotFoundException,
)


def fixed(name: str, value: str) -> AdjustmentCreate:
    return AdjustmentCreate(name=name, kind=AdjustmentKind.FIXED, value=Decimal(value))


def percentage(name: str, value: str) -> AdjustmentCreate:
    return AdjustmentCreate(name=name, kind=AdjustmentKind.PERCENTAGE, value=Decimal(value))


def assert_net_invariant(payroll):
    assert payroll.net_salary == (
        payroll.base_gross_salary
        + payroll.total_additionals
        + payroll.total_benefits
        - payroll.total_deductions
    )


class TestCreatePayroll:

    @pytest.mark.asyncio
    async def test_created_in_draft_with_zero_totals(self, payroll_service: PayrollService):
        payroll = await payroll_service.create_payroll("w-1", "Ana", 5, 2024, Decimal("5000"))

        assert payroll.status == PayrollStatus.DRAFT
        assert payroll.base_gross_salary == Decimal("5000.00")
        assert payroll.total_deductions == Decimal("0.00")
        assert payroll.net_salary == Decimal("5000.00")
        assert payroll.processed_at is None
        assert payroll.version_id == 1

    @pytest.mark.asyncio
    async def test_duplicate_period_rejected(self, payroll_service: PayrollService):
        await payroll_service.create_payroll("w-1", "Ana", 5, 2024, Decimal("5000"))
        with pytest.raises(DuplicatePeriodException):
            await payroll_service.create_payroll("w-1", "Ana", 5, 2024, Decimal("5000"))

    @pytest.mark.asyncio
    async def test_invalid_month(self, payroll_service: PayrollService):
        with pytest.raises(InvalidPeriodException):
            await payroll_service.create_payroll("w-1", "Ana", 13, 2024, Decimal("5000"))

    @pytest.mark.asyncio
    async def test_negative_salary_rejected(self, payroll_service: PayrollService):
        with pytest.raises(InvalidAmountException):
            await payroll_service.create_payroll("w-1", "Ana", 5, 2024, Decimal("-1"))

    @pytest.mark.asyncio
    async def test_get_unknown_payroll(self, payroll_service: PayrollService):
        with pytest.raises(PayrollNotFoundException):
            await payroll_service.get_payroll(uuid.uuid4())


class TestAdjustments:

    @pytest.mark.asyncio
    async def test_scenario_fixed_deduction_and_percentage_benefit(self, payroll_service, make_payroll):
        """5000 base, 200 fixed deduction, 10% benefit -> 5300 net."""
        payroll = await make_payroll(base_gross_salary=Decimal("5000"))

        await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.DEDUCTION, fixed("Union dues", "200"))
        payroll = await payroll_service.add_adjustment(
            payroll.id, AdjustmentCategory.BENEFIT, percentage("Health plan", "10"),
        )

        assert payroll.total_deductions == Decimal("200.00")
        assert payroll.total_benefits == Decimal("500.00")
        assert payroll.total_additionals == Decimal("0.00")
        assert payroll.net_salary == Decimal("5300.00")
        assert_net_invariant(payroll)

    @pytest.mark.asyncio
    async def test_update_adjustment_recalculates(self, payroll_service, make_payroll):
        payroll = await make_payroll(base_gross_salary=Decimal("4000"))
        payroll = await payroll_service.add_adjustment(
            payroll.id, AdjustmentCategory.ADDITIONAL, percentage("Overtime", "5"),
        )
        adjustment = payroll.additionals[0]

        payroll = await payroll_service.update_adjustment(
            payroll.id, adjustment.id, AdjustmentUpdate(value=Decimal("10")),
        )

        assert payroll.total_additionals == Decimal("400.00")
        assert payroll.net_salary == Decimal("4400.00")
        assert payroll.additionals[0].name == "Overtime"

    @pytest.mark.asyncio
    async def test_remove_adjustment_recalculates(self, payroll_service, make_payroll):
        payroll = await make_payroll(base_gross_salary=Decimal("4000"))
        payroll = await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.DEDUCTION, fixed("Loan", "300"))
        payroll = await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.DEDUCTION, fixed("Fine", "50"))
        loan = payroll.deductions[0]

        payroll = await payroll_service.remove_adjustment(payroll.id, loan.id, AdjustmentCategory.DEDUCTION)

        assert [a.name for a in payroll.deductions] == ["Fine"]
        assert payroll.total_deductions == Decimal("50.00")
        assert payroll.net_salary == Decimal("3950.00")

    @pytest.mark.asyncio
    async def test_unknown_adjustment(self, payroll_service, make_payroll):
        payroll = await make_payroll()
        with pytest.raises(AdjustmentNotFoundException):
            await payroll_service.remove_adjustment(payroll.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_adjustment_in_other_category_not_found(self, payroll_service, make_payroll):
        payroll = await make_payroll()
        payroll = await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.BENEFIT, fixed("Meal", "100"))

        with pytest.raises(AdjustmentNotFoundException):
            await payroll_service.remove_adjustment(
                payroll.id, payroll.benefits[0].id, AdjustmentCategory.DEDUCTION,
            )

    def test_percentage_above_hundred_rejected_by_schema(self):
        with pytest.raises(ValidationError):
            percentage("Commission", "150")
        with pytest.raises(ValidationError):
            AdjustmentUpdate(kind=AdjustmentKind.PERCENTAGE, value=Decimal("100.01"))

        assert fixed("Bonus", "150").value == Decimal("150")
        assert percentage("Full", "100").value == Decimal("100")

    @pytest.mark.asyncio
    async def test_percentage_update_above_hundred_rejected(self, payroll_service, make_payroll):
        payroll = await make_payroll(base_gross_salary=Decimal("4000"))
        payroll = await payroll_service.add_adjustment(
            payroll.id, AdjustmentCategory.BENEFIT, percentage("Health plan", "10"),
        )

        with pytest.raises(InvalidAmountException):
            await payroll_service.update_adjustment(
                payroll.id, payroll.benefits[0].id, AdjustmentUpdate(value=Decimal("150")),
            )

        payroll = await payroll_service.get_payroll(payroll.id)
        assert payroll.benefits[0].value == Decimal("10")
        assert payroll.total_benefits == Decimal("400.00")

    @pytest.mark.asyncio
    async def test_unknown_payroll(self, payroll_service):
        with pytest.raises(PayrollNotFoundException):
            await payroll_service.add_adjustment(uuid.uuid4(), AdjustmentCategory.BENEFIT, fixed("Meal", "100"))

    @pytest.mark.asyncio
    async def test_completed_payroll_accepts_corrections(self, payroll_service, make_completed_payroll):
        payroll = await make_completed_payroll(base_gross_salary=Decimal("3000"))
        payroll = await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.BENEFIT, fixed("Bonus", "250"))

        assert payroll.status == PayrollStatus.COMPLETED
        assert payroll.net_salary == Decimal("3250.00")

    @pytest.mark.asyncio
    async def test_canceled_payroll_is_locked(self, payroll_service, make_payroll):
        payroll = await make_payroll()
        await payroll_service.set_status(payroll.id, PayrollStatus.CANCELED)

        with pytest.raises(PayrollLockedException):
            await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.BENEFIT, fixed("Meal", "100"))
        with pytest.raises(PayrollLockedException):
            await payroll_service.update_payroll(payroll.id, base_gross_salary=Decimal("1"))


class TestRecalculation:

    @pytest.mark.asyncio
    async def test_base_salary_change_rescales_percentages(self, payroll_service, make_payroll):
        payroll = await make_payroll(base_gross_salary=Decimal("5000"))
        await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.DEDUCTION, percentage("Pension", "8"))

        payroll = await payroll_service.update_payroll(payroll.id, base_gross_salary=Decimal("6000"))

        assert payroll.total_deductions == Decimal("480.00")
        assert payroll.net_salary == Decimal("5520.00")
        assert_net_invariant(payroll)

    @pytest.mark.asyncio
    async def test_recalculate_is_idempotent(self, payroll_service, make_payroll):
        payroll = await make_payroll(base_gross_salary=Decimal("3333.33"))
        await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.DEDUCTION, percentage("A", "7.77"))
        await payroll_service.add_adjustment(payroll.id, AdjustmentCategory.BENEFIT, percentage("B", "3.33"))

        first = await payroll_service.recalculate_payroll(payroll.id)
        snapshot = (first.total_deductions, first.total_benefits, first.total_additionals, first.net_salary)
        second = await payroll_service.recalculate_payroll(payroll.id)

        assert (second.total_deductions, second.total_benefits, second.total_additionals, second.net_salary) == snapshot
        assert totals_match(second)

    @pytest.mark.asyncio
    async def test_invariant_after_every_mutation(self, payroll_service, make_payroll):
        payroll = await make_payroll(base_gross_salary=Decimal("2718.28"))
        steps = [
            (AdjustmentCategory.DEDUCTION, percentage("INSS", "9")),
            (AdjustmentCategory.BENEFIT, fixed("Transport", "180.50")),
            (AdjustmentCategory.ADDITIONAL, percentage("Night shift", "20")),
        ]
        for category, data in steps:
            payroll = await payroll_service.add_adjustment(payroll.id, category, data)
            assert_net_invariant(payroll)

        payroll = await payroll_service.update_payroll(payroll.id, base_gross_salary=Decimal("3141.59"))
        assert_net_invariant(payroll)


class TestStatusAndDeletion:

    @pytest.mark.asyncio
    async def test_complete_stamps_processed_at_once(self, payroll_service, make_payroll):
        payroll = await make_payroll()
        payroll = await payroll_service.set_status(payroll.id, PayrollStatus.COMPLETED)
        stamped = payroll.processed_at
        assert stamped is not None

        payroll = await payroll_service.set_status(payroll.id, PayrollStatus.COMPLETED)
        # SQLite hands datetimes back without tzinfo
        assert payroll.processed_at.replace(tzinfo=None) == stamped.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_only_completed_or_canceled_accepted(self, payroll_service, make_payroll):
        payroll = await make_payroll()
        with pytest.raises(InvalidStatusException):
            await payroll_service.set_status(payroll.id, PayrollStatus.PROCESSING)

    @pytest.mark.asyncio
    async def test_set_status_unknown_payroll(self, payroll_service):
        with pytest.raises(PayrollNotFoundException):
            await payroll_service.set_status(uuid.uuid4(), PayrollStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_delete(self, payroll_service, make_payroll):
        payroll = await make_payroll()
        await payroll_service.delete_payroll(payroll.id)

        with pytest.raises(PayrollNotFoundException):
            await payroll_service.get_payroll(payroll.id)

    @pytest.mark.asyncio
    async def test_delete_with_issued_pay_stub_rejected(self, db_session, locks, payroll_service, make_completed_payroll):
        payroll = await make_completed_payroll()
        await PayStubService(db_session, locks=locks).generate(payroll.id)

        with pytest.raises(CannotDeleteException):
            await payroll_service.delete_payroll(payroll.id)


class TestListing:

    @pytest.mark.asyncio
    async def test_filters_and_pagination(self, payroll_service, make_payroll):
        for index in range(3):
            await make_payroll(worker_id=f"w-{index}", month=5, year=2024)
        await make_payroll(worker_id="w-0", month=6, year=2024)

        payrolls, total = await payroll_service.list_payrolls(month=5, year=2024, per_page=2)
        assert total == 3
        assert len(payrolls) == 2

        payrolls, total = await payroll_service.list_payrolls(worker_id="w-0")
        assert total == 2


class TestPayrollRuns:

    @pytest.mark.asyncio
    async def test_one_run_per_period(self, payroll_service):
        run = await payroll_service.create_payroll_run(5, 2024)
        assert run.status == PayrollStatus.DRAFT
        assert run.employee_count == 0

        with pytest.raises(DuplicatePeriodException):
            await payroll_service.create_payroll_run(5, 2024)

    @pytest.mark.asyncio
    async def test_run_lookup(self, payroll_service):
        run = await payroll_service.create_payroll_run(5, 2024)
        found = await payroll_service.get_payroll_run_by_period(5, 2024)
        assert found.id == run.id

        with pytest.raises(PayrollRunNotFoundException):
            await payroll_service.get_payroll_run_by_period(6, 2024)
        with pytest.raises(PayrollRunNotFoundException):
            await payroll_service.get_payroll_run(uuid.uuid4())


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_mutations_all_apply(self, session_factory, locks, make_payroll):
        """Parallel additions on one payroll through separate sessions lose nothing."""
        payroll = await make_payroll(base_gross_salary=Decimal("1000"))

        async def add(index: int):
            async with session_factory() as session:
                service = PayrollService(session, locks=locks)
                await service.add_adjustment(
                    payroll.id, AdjustmentCategory.BENEFIT, fixed(f"Bonus {index}", "10"),
                )

        await asyncio.gather(*(add(i) for i in range(5)))

        async with session_factory() as session:
            result = await PayrollService(session, locks=locks).get_payroll(payroll.id)
        assert len(result.benefits) == 5
        assert result.total_benefits == Decimal("50.00")
        assert result.net_salary == Decimal("1050.00")

    @pytest.mark.asyncio
    async def test_stale_write_rejected(self, session_factory, make_payroll):
        """A write based on an outdated version fails instead of overwriting."""
        payroll = await make_payroll(base_gross_salary=Decimal("1000"))

        async with session_factory() as first, session_factory() as second:
            stale = await PayrollService(first).get_payroll(payroll.id)
            await PayrollService(second).update_payroll(payroll.id, base_gross_salary=Decimal("2000"))

            stale.base_gross_salary = Decimal("3000.00")
            with pytest.raises(ConcurrencyException):
                await PayrollService(first)._commit(stale)
