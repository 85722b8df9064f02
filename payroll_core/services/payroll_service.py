"""
Payroll Core - Payroll Service

Single-aggregate operations on payrolls and payroll runs.

Every mutation:
1. runs under the payroll's in-process lock,
2. reloads the aggregate from the database,
3. checks the lifecycle allows it,
4. applies the change and recalculates all totals,
5. commits with a version check (stale writes raise ConcurrencyException).

Not-found and invalid-state errors are raised before anything is written.
"""

import logging
import uuid
from decimal import Decimal
from typing import List, Optional, Tuple, Any, Dict

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from payroll_core.models.payroll import (
    AdjustmentCategory,
    AdjustmentSource,
    ContractType,
    Payroll,
    PayrollAdjustment,
    PayrollRun,
    PayrollStatus,
)
from payroll_core.models.pay_stub import PayStub
from payroll_core.schemas.payroll import AdjustmentCreate, AdjustmentUpdate
from payroll_core.services.adjustment_resolver import validate_adjustment_value
from payroll_core.services.payroll_calculator import recalculate
from payroll_core.services.payroll_lifecycle import (
    CALLER_TARGETS,
    ensure_mutable,
    transition,
)
from payroll_core.utils.error_handling import (
    AdjustmentNotFoundException,
    CannotDeleteException,
    ConcurrencyException,
    DuplicatePeriodException,
    InvalidAmountException,
    InvalidStatusException,
    PayrollNotFoundException,
    PayrollRunNotFoundException,
    validate_period,
)
from payroll_core.utils.locks import KeyedLockRegistry, payroll_key, payroll_locks
from payroll_core.utils.money import ZERO, quantize, to_decimal


logger = logging.getLogger(__name__)


class PayrollService:
    """Service for payroll aggregates and payroll runs."""

    def __init__(self, db: AsyncSession, locks: KeyedLockRegistry = None):
        self.db = db
        self.locks = locks if locks is not None else payroll_locks

    # ===========================================
    # PAYROLL RUNS
    # ===========================================

    async def create_payroll_run(
        self,
        month: int,
        year: int,
        notes: Optional[str] = None,
    ) -> PayrollRun:
        """Create the payroll run for a period in draft."""
        validate_period(month, year)

        existing = await self.find_payroll_run_by_period(month, year)
        if existing:
            raise DuplicatePeriodException("PayrollRun", month, year)

        run = PayrollRun(
            month=month,
            year=year,
            status=PayrollStatus.DRAFT,
            notes=notes,
            entries=[],
        )
        self.db.add(run)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicatePeriodException("PayrollRun", month, year) from e

        logger.info(f"Created payroll run {run.id} for {run.period}")
        return run

    async def find_payroll_run_by_period(self, month: int, year: int) -> Optional[PayrollRun]:
        result = await self.db.execute(
            select(PayrollRun).where(
                and_(
                    PayrollRun.month == month,
                    PayrollRun.year == year,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_payroll_run(self, run_id: uuid.UUID) -> PayrollRun:
        """Get payroll run by ID."""
        result = await self.db.execute(
            select(PayrollRun)
            .where(PayrollRun.id == run_id)
            .execution_options(populate_existing=True)
        )
        run = result.scalar_one_or_none()
        if not run:
            raise PayrollRunNotFoundException(run_id)
        return run

    async def get_payroll_run_by_period(self, month: int, year: int) -> PayrollRun:
        validate_period(month, year)
        run = await self.find_payroll_run_by_period(month, year)
        if not run:
            raise PayrollRunNotFoundException(period=f"{year:04d}-{month:02d}")
        return run

    async def list_payroll_runs(
        self,
        year: Optional[int] = None,
        status: Optional[PayrollStatus] = None,
        page: int = 1,
        per_page: int = 10,
    ) -> Tuple[List[PayrollRun], int]:
        """List payroll runs with filters."""
        query = select(PayrollRun)

        if year:
            query = query.where(PayrollRun.year == year)
        if status:
            query = query.where(PayrollRun.status == status)

        count_result = await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar()

        query = query.order_by(PayrollRun.year.desc(), PayrollRun.month.desc())
        query = query.offset((page - 1) * per_page).limit(per_page)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_payroll_run_summary(self, run_id: uuid.UUID) -> Dict[str, Any]:
        """Totals of a run broken down by contract type."""
        run = await self.get_payroll_run(run_id)

        by_contract: Dict[str, Dict[str, Any]] = {}
        for entry in run.entries:
            bucket = by_contract.setdefault(entry.contract_type.value, {
                "employee_count": 0,
                "total_gross_salary": ZERO,
                "total_deductions": ZERO,
                "total_net_salary": ZERO,
            })
            bucket["employee_count"] += 1
            bucket["total_gross_salary"] += entry.gross_salary
            bucket["total_deductions"] += entry.total_deductions
            bucket["total_net_salary"] += entry.net_salary

        return {
            "run_id": str(run.id),
            "period": run.period,
            "status": run.status.value,
            "employee_count": run.employee_count,
            "skipped_count": run.skipped_count,
            "fallback_count": run.fallback_count,
            "total_gross_salary": run.total_gross_salary,
            "total_deductions": run.total_deductions,
            "total_benefits": run.total_benefits,
            "total_net_salary": run.total_net_salary,
            "total_employer_contributions": run.total_employer_contributions,
            "by_contract_type": by_contract,
            "processed_at": run.processed_at,
        }

    # ===========================================
    # PAYROLL CRUD
    # ===========================================

    async def create_payroll(
        self,
        worker_id: str,
        worker_name: str,
        month: int,
        year: int,
        base_gross_salary=0,
        contract_type: Optional[ContractType] = None,
        notes: Optional[str] = None,
    ) -> Payroll:
        """Create a draft payroll for one worker and period."""
        validate_period(month, year)
        base = self._validated_salary(base_gross_salary if base_gross_salary is not None else 0)

        existing = await self.find_payroll(worker_id, month, year)
        if existing:
            raise DuplicatePeriodException("Payroll", month, year, worker_id=worker_id)

        payroll = Payroll(
            worker_id=worker_id,
            worker_name=worker_name,
            contract_type=contract_type,
            month=month,
            year=year,
            status=PayrollStatus.DRAFT,
            base_gross_salary=base,
            notes=notes,
            adjustments=[],
        )
        recalculate(payroll)
        self.db.add(payroll)

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise DuplicatePeriodException("Payroll", month, year, worker_id=worker_id) from e

        logger.info(f"Created payroll {payroll.id} for worker {worker_id} ({payroll.period})")
        return payroll

    async def find_payroll(self, worker_id: str, month: int, year: int) -> Optional[Payroll]:
        result = await self.db.execute(
            select(Payroll)
            .where(
                and_(
                    Payroll.worker_id == worker_id,
                    Payroll.month == month,
                    Payroll.year == year,
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_payroll(self, payroll_id: uuid.UUID) -> Payroll:
        """Get payroll by ID, reloaded from the database."""
        result = await self.db.execute(
            select(Payroll)
            .where(Payroll.id == payroll_id)
            .execution_options(populate_existing=True)
        )
        payroll = result.scalar_one_or_none()
        if not payroll:
            raise PayrollNotFoundException(payroll_id)
        return payroll

    async def list_payrolls(
        self,
        worker_id: Optional[str] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
        status: Optional[PayrollStatus] = None,
        page: int = 1,
        per_page: int = 10,
    ) -> Tuple[List[Payroll], int]:
        """List payrolls with filters and pagination."""
        query = select(Payroll)

        if worker_id:
            query = query.where(Payroll.worker_id == worker_id)
        if month:
            query = query.where(Payroll.month == month)
        if year:
            query = query.where(Payroll.year == year)
        if status:
            query = query.where(Payroll.status == status)

        count_result = await self.db.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar()

        query = query.order_by(Payroll.year.desc(), Payroll.month.desc(), Payroll.worker_name)
        query = query.offset((page - 1) * per_page).limit(per_page)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def update_payroll(
        self,
        payroll_id: uuid.UUID,
        base_gross_salary=None,
        worker_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payroll:
        """Update base salary, name or notes and recalculate."""
        async with self.locks.hold(payroll_key(payroll_id)):
            payroll = await self.get_payroll(payroll_id)
            ensure_mutable(payroll)

            if base_gross_salary is not None:
                payroll.base_gross_salary = self._validated_salary(base_gross_salary)
            if worker_name is not None:
                payroll.worker_name = worker_name
            if notes is not None:
                payroll.notes = notes

            recalculate(payroll)
            await self._commit(payroll)
            return payroll

    async def delete_payroll(self, payroll_id: uuid.UUID) -> None:
        """Delete a payroll. Blocked once a pay stub has been issued for it."""
        async with self.locks.hold(payroll_key(payroll_id)):
            payroll = await self.get_payroll(payroll_id)
            document_number = await self.db.scalar(
                select(PayStub.document_number).where(PayStub.payroll_id == payroll_id)
            )
            if document_number:
                raise CannotDeleteException(
                    "Payroll", payroll_id, f"pay stub {document_number} has been issued",
                )

            await self.db.delete(payroll)
            await self._commit(payroll)
            logger.info(f"Deleted payroll {payroll_id}")

    # ===========================================
    # ADJUSTMENTS
    # ===========================================

    async def add_adjustment(
        self,
        payroll_id: uuid.UUID,
        category: AdjustmentCategory,
        data: AdjustmentCreate,
        source: AdjustmentSource = AdjustmentSource.MANUAL,
    ) -> Payroll:
        """Append a deduction, benefit or additional and recalculate."""
        category = AdjustmentCategory(category)
        validate_adjustment_value(data.kind, data.value)
        async with self.locks.hold(payroll_key(payroll_id)):
            payroll = await self.get_payroll(payroll_id)
            ensure_mutable(payroll)

            payroll.adjustments.append(PayrollAdjustment(
                id=uuid.uuid4(),
                category=category,
                name=data.name,
                description=data.description,
                kind=data.kind,
                value=data.value,
                source=source,
                position=payroll.next_position(),
            ))

            recalculate(payroll)
            await self._commit(payroll)
            return payroll

    async def update_adjustment(
        self,
        payroll_id: uuid.UUID,
        adjustment_id: uuid.UUID,
        data: AdjustmentUpdate,
        category: Optional[AdjustmentCategory] = None,
    ) -> Payroll:
        """Change fields of one adjustment, addressed by id, and recalculate."""
        async with self.locks.hold(payroll_key(payroll_id)):
            payroll = await self.get_payroll(payroll_id)
            adjustment = self._find_adjustment(payroll, adjustment_id, category)
            ensure_mutable(payroll)

            changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
            validate_adjustment_value(
                changes.get("kind", adjustment.kind),
                changes.get("value", adjustment.value),
            )
            for field, value in changes.items():
                setattr(adjustment, field, value)

            recalculate(payroll)
            await self._commit(payroll)
            return payroll

    async def remove_adjustment(
        self,
        payroll_id: uuid.UUID,
        adjustment_id: uuid.UUID,
        category: Optional[AdjustmentCategory] = None,
    ) -> Payroll:
        """Remove one adjustment, addressed by id, and recalculate."""
        async with self.locks.hold(payroll_key(payroll_id)):
            payroll = await self.get_payroll(payroll_id)
            adjustment = self._find_adjustment(payroll, adjustment_id, category)
            ensure_mutable(payroll)

            payroll.adjustments.remove(adjustment)

            recalculate(payroll)
            await self._commit(payroll)
            return payroll

    @staticmethod
    def _find_adjustment(
        payroll: Payroll,
        adjustment_id: uuid.UUID,
        category: Optional[AdjustmentCategory],
    ) -> PayrollAdjustment:
        adjustment = payroll.find_adjustment(adjustment_id)
        if adjustment is None or (category is not None and adjustment.category != AdjustmentCategory(category)):
            raise AdjustmentNotFoundException(payroll.id, adjustment_id)
        return adjustment

    # ===========================================
    # RECALCULATION & STATUS
    # ===========================================

    async def recalculate_payroll(self, payroll_id: uuid.UUID) -> Payroll:
        """Recompute totals from the stored line items."""
        async with self.locks.hold(payroll_key(payroll_id)):
            payroll = await self.get_payroll(payroll_id)
            recalculate(payroll)
            await self._commit(payroll)
            return payroll

    async def set_status(self, payroll_id: uuid.UUID, status: PayrollStatus) -> Payroll:
        """
        Complete or cancel a payroll.

        processed_at is stamped on the first completion only.
        """
        status = PayrollStatus(status)
        if status not in CALLER_TARGETS:
            raise InvalidStatusException(status.value, [s.value for s in CALLER_TARGETS])

        async with self.locks.hold(payroll_key(payroll_id)):
            payroll = await self.get_payroll(payroll_id)
            transition(payroll, status)
            await self._commit(payroll)
            return payroll

    # ===========================================
    # HELPERS
    # ===========================================

    @staticmethod
    def _validated_salary(amount) -> Decimal:
        base = to_decimal(amount)
        if not base.is_finite() or base < 0:
            raise InvalidAmountException(amount, field="base_gross_salary")
        return quantize(base)

    async def _commit(self, payroll: Payroll) -> None:
        try:
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning(f"Concurrent modification of payroll {payroll.id}")
            raise ConcurrencyException("Payroll", payroll.id) from e
