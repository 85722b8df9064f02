"""
Payroll Core - Batch Payroll Service

Processes a worker roster for one month:

1. The period's run is fetched or created and moved to processing. Entries
   from any previous pass are discarded.
2. Each worker's pay is calculated independently on a bounded worker pool.
   A worker with no id, an invalid record or a failed calculation is
   skipped with a reason. The batch is never aborted for one worker.
3. Results are written serially: each worker's payroll is upserted, its
   batch-generated line items are replaced (manual ones are kept), totals
   are recalculated and a run entry is recorded.
4. Succeeded payrolls are completed and the run totals are replaced with
   this pass's sums. Everything is committed once.

Running the same roster again for the same period gives the same totals.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from payroll_core.config import settings
from payroll_core.models.payroll import (
    AdjustmentSource,
    Payroll,
    PayrollAdjustment,
    PayrollRun,
    PayrollRunEntry,
    PayrollStatus,
)
from payroll_core.schemas.payroll import WorkerCompensation
from payroll_core.services.payroll_calculator import recalculate
from payroll_core.services.payroll_lifecycle import ensure_mutable, transition
from payroll_core.services.salary_calculator import SalaryCalculation, SalaryCalculator
from payroll_core.services.worker_directory import (
    HttpWorkerDirectory,
    WorkerDirectory,
    parse_worker,
)
from payroll_core.utils.error_handling import (
    AppException,
    ComputationFallback,
    ConcurrencyException,
    InvalidStateException,
    PayrollRunNotFoundException,
    validate_period,
)
from payroll_core.utils.locks import (
    KeyedLockRegistry,
    payroll_key,
    payroll_locks,
    period_key,
)
from payroll_core.utils.money import ZERO


logger = logging.getLogger(__name__)


WorkerInput = Union[WorkerCompensation, Dict[str, Any]]


@dataclass
class SkippedWorker:
    """A roster member left out of a batch."""
    worker_id: Optional[str]
    name: Optional[str]
    reason: str


def _raw_identity(raw: Any) -> Tuple[Optional[str], Optional[str]]:
    """Best-effort id and name of a worker record that failed validation."""
    if not isinstance(raw, dict):
        return None, None
    worker_id = next((raw[k] for k in ("worker_id", "workerId", "id", "_id") if raw.get(k) not in (None, "")), None)
    name = raw.get("name") or raw.get("nome")
    return (
        str(worker_id) if worker_id is not None else None,
        str(name) if name else None,
    )


@dataclass
class BatchResult:
    """Outcome of one batch pass."""
    run: PayrollRun
    succeeded: List[Payroll] = field(default_factory=list)
    skipped: List[SkippedWorker] = field(default_factory=list)
    fallbacks: List[ComputationFallback] = field(default_factory=list)


@dataclass
class _RunTotals:
    gross: Decimal = ZERO
    deductions: Decimal = ZERO
    benefits: Decimal = ZERO
    net: Decimal = ZERO
    employer: Decimal = ZERO

    def add(self, entry: PayrollRunEntry) -> None:
        self.gross += entry.gross_salary
        self.deductions += entry.total_deductions
        self.benefits += entry.total_benefits
        self.net += entry.net_salary
        self.employer += entry.employer_contribution


class BatchPayrollService:
    """Batch payroll processing for a month."""

    def __init__(
        self,
        db: AsyncSession,
        directory: WorkerDirectory = None,
        calculator: SalaryCalculator = None,
        locks: KeyedLockRegistry = None,
        max_concurrency: int = None,
    ):
        self.db = db
        self.directory = directory
        self.calculator = calculator or SalaryCalculator()
        self.locks = locks if locks is not None else payroll_locks
        self.max_concurrency = max(1, max_concurrency or settings.batch_max_concurrency)

    # ===========================================
    # ENTRY POINTS
    # ===========================================

    async def process_batch(
        self,
        month: int,
        year: int,
        workers: Optional[Sequence[WorkerInput]] = None,
    ) -> BatchResult:
        """
        Run payroll for every worker in the roster.

        Args:
            month: 1-12
            year: Payroll year
            workers: Roster; fetched from the worker directory when None

        Returns:
            BatchResult with the run, succeeded payrolls, skipped workers
            and any computation fallbacks
        """
        validate_period(month, year)
        if workers is None:
            workers = await self._directory().fetch_roster()

        async with self.locks.hold(period_key(month, year)):
            run = await self._get_or_create_run(month, year)
            return await self._process(run, workers)

    async def process_run(self, run_id: uuid.UUID, workers: Sequence[WorkerInput]) -> BatchResult:
        """Process an existing run with an explicit roster."""
        run = await self._load_run(run_id)
        if run is None:
            raise PayrollRunNotFoundException(run_id)

        async with self.locks.hold(period_key(run.month, run.year)):
            run = await self._load_run(run_id)
            return await self._process(run, workers)

    async def process_worker(self, worker_id: str, month: int, year: int) -> Payroll:
        """
        Calculate one worker's payroll from the worker directory.

        The payroll is created in draft if it does not exist. Run totals
        are not touched.
        """
        validate_period(month, year)
        worker = await self._directory().get_worker(worker_id)

        calculation = await asyncio.to_thread(self.calculator.calculate, worker)

        async with self.locks.hold(period_key(month, year)):
            payroll = await self._find_payroll(worker_id, month, year)
            if payroll is None:
                payroll = await self._store_worker(None, calculation, month, year)
            else:
                async with self.locks.hold(payroll_key(payroll.id)):
                    # Reload: an edit may have committed while waiting for the lock
                    payroll = await self._find_payroll(worker_id, month, year)
                    if payroll is not None:
                        ensure_mutable(payroll)
                    payroll = await self._store_worker(payroll, calculation, month, year)

        logger.info(f"Calculated payroll {payroll.id} for worker {worker_id} ({payroll.period})")
        return payroll

    # ===========================================
    # PROCESSING
    # ===========================================

    async def _process(self, run: PayrollRun, workers: Sequence[WorkerInput]) -> BatchResult:
        if run.status == PayrollStatus.CANCELED:
            raise InvalidStateException(
                f"Payroll run for {run.period} is canceled and cannot be processed",
                resource_type="PayrollRun",
            )

        now = datetime.now(timezone.utc)
        transition(run, PayrollStatus.PROCESSING)
        run.started_at = now
        # Replace, never merge, the previous pass
        run.entries = []

        result = BatchResult(run=run)
        valid = self._validate_roster(workers, result.skipped)

        logger.info(
            f"Processing payroll run {run.period}: {len(valid)} workers, "
            f"{len(result.skipped)} rejected before calculation"
        )

        calculations = await self._calculate_all(valid, result.skipped)

        totals = _RunTotals()
        for worker, calculation in calculations:
            payroll = await self._find_payroll(worker.worker_id, run.month, run.year)
            if payroll is not None and payroll.status == PayrollStatus.CANCELED:
                self._skip(result.skipped, worker, "payroll for this period is canceled")
                continue

            payroll = self._apply_calculation(payroll, calculation, run.month, run.year)
            payroll.payroll_run_id = run.id
            if payroll.status != PayrollStatus.PROCESSING:
                transition(payroll, PayrollStatus.PROCESSING)
            recalculate(payroll)

            entry = self._entry(payroll, calculation)
            run.entries.append(entry)
            totals.add(entry)

            result.succeeded.append(payroll)
            result.fallbacks.extend(calculation.fallbacks)

        for payroll in result.succeeded:
            transition(payroll, PayrollStatus.COMPLETED, now)
        await self._unlink_previous(run, result.succeeded)

        run.employee_count = len(result.succeeded)
        run.skipped_count = len(result.skipped)
        run.fallback_count = len(result.fallbacks)
        run.total_gross_salary = totals.gross
        run.total_deductions = totals.deductions
        run.total_benefits = totals.benefits
        run.total_net_salary = totals.net
        run.total_employer_contributions = totals.employer
        transition(run, PayrollStatus.COMPLETED, now)

        await self._commit(run.id, "PayrollRun")

        logger.info(
            f"Payroll run {run.period} completed: {run.employee_count} processed, "
            f"{run.skipped_count} skipped, {run.fallback_count} fallbacks, "
            f"net total {run.total_net_salary}"
        )
        return result

    def _validate_roster(
        self,
        workers: Sequence[WorkerInput],
        skipped: List[SkippedWorker],
    ) -> List[WorkerCompensation]:
        valid: List[WorkerCompensation] = []
        seen = set()

        for raw in workers:
            if isinstance(raw, WorkerCompensation):
                worker = raw
            else:
                try:
                    worker = parse_worker(raw)
                except AppException as e:
                    worker_id, name = _raw_identity(raw)
                    skipped.append(SkippedWorker(worker_id=worker_id, name=name, reason=e.message))
                    logger.warning(f"Skipping invalid worker record {worker_id or '<no id>'}: {e.details}")
                    continue

            if not worker.worker_id:
                self._skip(skipped, worker, "missing worker id")
                continue
            if worker.worker_id in seen:
                self._skip(skipped, worker, "duplicate worker id in roster")
                continue

            seen.add(worker.worker_id)
            valid.append(worker)

        return valid

    async def _calculate_all(
        self,
        workers: List[WorkerCompensation],
        skipped: List[SkippedWorker],
    ) -> List[Tuple[WorkerCompensation, SalaryCalculation]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def calculate(worker: WorkerCompensation) -> SalaryCalculation:
            async with semaphore:
                return await asyncio.to_thread(self.calculator.calculate, worker)

        outcomes = await asyncio.gather(
            *(calculate(worker) for worker in workers),
            return_exceptions=True,
        )

        calculations = []
        for worker, outcome in zip(workers, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                reason = outcome.message if isinstance(outcome, AppException) else str(outcome)
                logger.error(
                    f"Salary calculation failed for worker {worker.worker_id}: {reason}",
                    exc_info=outcome,
                )
                self._skip(skipped, worker, f"calculation failed: {reason}")
                continue
            calculations.append((worker, outcome))
        return calculations

    # ===========================================
    # PERSISTENCE HELPERS
    # ===========================================

    def _apply_calculation(
        self,
        payroll: Optional[Payroll],
        calculation: SalaryCalculation,
        month: int,
        year: int,
    ) -> Payroll:
        """Upsert the payroll and swap in the calculation's line items."""
        if payroll is None:
            payroll = Payroll(
                id=uuid.uuid4(),
                worker_id=calculation.worker_id,
                worker_name=calculation.name,
                month=month,
                year=year,
                status=PayrollStatus.DRAFT,
                adjustments=[],
            )
            self.db.add(payroll)

        payroll.worker_name = calculation.name
        payroll.contract_type = calculation.contract_type
        payroll.base_gross_salary = calculation.base_salary
        payroll.employer_contribution = calculation.employer_contribution

        for adjustment in [a for a in payroll.adjustments if a.source == AdjustmentSource.BATCH]:
            payroll.adjustments.remove(adjustment)

        for draft in calculation.adjustments:
            payroll.adjustments.append(PayrollAdjustment(
                id=uuid.uuid4(),
                category=draft.category,
                name=draft.name,
                description=draft.description,
                kind=draft.kind,
                value=draft.value,
                source=AdjustmentSource.BATCH,
                position=payroll.next_position(),
            ))
        return payroll

    async def _store_worker(
        self,
        payroll: Optional[Payroll],
        calculation: SalaryCalculation,
        month: int,
        year: int,
    ) -> Payroll:
        payroll = self._apply_calculation(payroll, calculation, month, year)
        recalculate(payroll)
        await self._commit(payroll.id, "Payroll")
        return payroll

    @staticmethod
    def _entry(payroll: Payroll, calculation: SalaryCalculation) -> PayrollRunEntry:
        gross = payroll.base_gross_salary + payroll.total_benefits + payroll.total_additionals
        return PayrollRunEntry(
            id=uuid.uuid4(),
            payroll=payroll,
            worker_id=payroll.worker_id,
            worker_name=payroll.worker_name,
            contract_type=calculation.contract_type,
            base_salary=payroll.base_gross_salary,
            gross_salary=gross,
            statutory_withholding=calculation.statutory_withholding,
            income_tax=calculation.income_tax,
            total_deductions=payroll.total_deductions,
            total_benefits=payroll.total_benefits,
            total_additionals=payroll.total_additionals,
            net_salary=payroll.net_salary,
            employer_contribution=calculation.employer_contribution,
            fallback_count=len(calculation.fallbacks),
        )

    async def _unlink_previous(self, run: PayrollRun, succeeded: List[Payroll]) -> None:
        """Detach payrolls linked by an earlier pass that this pass did not produce."""
        kept = {payroll.id for payroll in succeeded}
        result = await self.db.execute(select(Payroll).where(Payroll.payroll_run_id == run.id))
        stale = [payroll for payroll in result.scalars().all() if payroll.id not in kept]
        for payroll in stale:
            payroll.payroll_run_id = None
        if stale:
            logger.info(f"Unlinked {len(stale)} payrolls from run {run.period} left out of this pass")

    async def _get_or_create_run(self, month: int, year: int) -> PayrollRun:
        result = await self.db.execute(
            select(PayrollRun)
            .where(and_(PayrollRun.month == month, PayrollRun.year == year))
            .execution_options(populate_existing=True)
        )
        run = result.scalar_one_or_none()
        if run is None:
            run = PayrollRun(
                id=uuid.uuid4(),
                month=month,
                year=year,
                status=PayrollStatus.DRAFT,
                entries=[],
            )
            self.db.add(run)
            logger.info(f"Created payroll run for {run.period}")
        return run

    async def _load_run(self, run_id: uuid.UUID) -> Optional[PayrollRun]:
        result = await self.db.execute(
            select(PayrollRun)
            .where(PayrollRun.id == run_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_payroll(self, worker_id: str, month: int, year: int) -> Optional[Payroll]:
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

    async def _commit(self, resource_id: uuid.UUID, resource_type: str) -> None:
        try:
            await self.db.commit()
        except (StaleDataError, IntegrityError) as e:
            await self.db.rollback()
            logger.warning(f"Concurrent modification while committing {resource_type} {resource_id}: {e}")
            raise ConcurrencyException(resource_type, resource_id) from e

    def _directory(self) -> WorkerDirectory:
        if self.directory is None:
            self.directory = HttpWorkerDirectory()
        return self.directory

    @staticmethod
    def _skip(skipped: List[SkippedWorker], worker: WorkerCompensation, reason: str) -> None:
        logger.warning(f"Skipping worker {worker.worker_id or '<no id>'} ({worker.name}): {reason}")
        skipped.append(SkippedWorker(worker_id=worker.worker_id, name=worker.name or None, reason=reason))
