"""
Payroll Core - Salary Calculator

Per-worker calculation used by batch processing. Pure: no session, no I/O,
so batches can run it on a worker pool.

Contract types:
- employee (CLT): INSS and IRRF withheld as fixed deductions, FGTS computed
  as the employer contribution
- contractor (CNPJ): no withholding at source

Non-finite amounts are replaced here and nowhere else. Every replacement is
returned as a ComputationFallback.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from payroll_core.models.payroll import (
    AdjustmentCategory,
    AdjustmentKind,
    ContractType,
)
from payroll_core.schemas.payroll import WorkerAdjustment, WorkerCompensation
from payroll_core.services.adjustment_resolver import resolve, validate_adjustment_value
from payroll_core.services.tax_calculators import StatutoryCalculator
from payroll_core.utils.error_handling import (
    ComputationFallback,
    InvalidAmountException,
    ValidationException,
    record_fallback,
)
from payroll_core.utils.money import ZERO, finite_or, is_finite, quantize


STATUTORY_WITHHOLDING_NAME = "INSS"
INCOME_TAX_NAME = "IRRF"
MEAL_ALLOWANCE_NAME = "Meal allowance"


@dataclass
class AdjustmentDraft:
    """Line item produced by a calculation, not yet attached to a payroll."""
    category: AdjustmentCategory
    name: str
    kind: AdjustmentKind
    value: Decimal
    description: Optional[str] = None


@dataclass
class SalaryCalculation:
    """Result of one worker's salary calculation."""
    worker_id: str
    name: str
    contract_type: ContractType
    base_salary: Decimal
    dependents: int = 0
    statutory_withholding: Decimal = ZERO
    income_tax: Decimal = ZERO
    employer_contribution: Decimal = ZERO
    adjustments: List[AdjustmentDraft] = field(default_factory=list)
    total_deductions: Decimal = ZERO
    total_benefits: Decimal = ZERO
    total_additionals: Decimal = ZERO
    gross_salary: Decimal = ZERO
    net_salary: Decimal = ZERO
    fallbacks: List[ComputationFallback] = field(default_factory=list)

    def items(self, category: AdjustmentCategory) -> List[AdjustmentDraft]:
        return [a for a in self.adjustments if a.category == category]


class SalaryCalculator:
    """
    Calculates one worker's monthly pay.

    The statutory calculator is injectable so bracket tables can change
    without touching this dispatch.
    """

    def __init__(self, statutory: StatutoryCalculator = None):
        self.statutory = statutory or StatutoryCalculator()

    # ===========================================
    # ENTRY POINT
    # ===========================================

    def calculate(self, worker: WorkerCompensation) -> SalaryCalculation:
        if not worker.worker_id:
            raise ValidationException("Worker has no identifier", field="worker_id")

        fallbacks: List[ComputationFallback] = []
        base = self._finite(worker.worker_id, "base_salary", worker.base_salary, ZERO, fallbacks)
        if base < 0:
            raise InvalidAmountException(worker.base_salary, field="base_salary")
        base = quantize(base)

        result = SalaryCalculation(
            worker_id=worker.worker_id,
            name=worker.name or worker.worker_id,
            contract_type=worker.contract_type,
            base_salary=base,
            dependents=worker.dependents,
            fallbacks=fallbacks,
        )

        if worker.contract_type == ContractType.EMPLOYEE:
            self._apply_withholding(result)

        self._add_worker_items(result, AdjustmentCategory.DEDUCTION, worker.deductions)
        self._add_worker_items(result, AdjustmentCategory.BENEFIT, worker.benefits)
        self._add_worker_items(result, AdjustmentCategory.ADDITIONAL, worker.additionals)
        self._add_meal_allowance(result, worker.meal_allowance)

        self._totals(result)
        return result

    # ===========================================
    # CONTRACT-SPECIFIC RULES
    # ===========================================

    def _apply_withholding(self, result: SalaryCalculation) -> None:
        inss = self.statutory.statutory_withholding(result.base_salary)
        irrf = self.statutory.income_tax_withholding(result.base_salary, inss, result.dependents)

        result.statutory_withholding = inss
        result.income_tax = irrf
        result.employer_contribution = self.statutory.employer_contribution(result.base_salary)

        result.adjustments.append(AdjustmentDraft(
            category=AdjustmentCategory.DEDUCTION,
            name=STATUTORY_WITHHOLDING_NAME,
            kind=AdjustmentKind.FIXED,
            value=inss,
            description="Social security contribution",
        ))
        result.adjustments.append(AdjustmentDraft(
            category=AdjustmentCategory.DEDUCTION,
            name=INCOME_TAX_NAME,
            kind=AdjustmentKind.FIXED,
            value=irrf,
            description="Income tax withheld at source",
        ))

    # ===========================================
    # LINE ITEMS
    # ===========================================

    def _add_worker_items(
        self,
        result: SalaryCalculation,
        category: AdjustmentCategory,
        items: List[WorkerAdjustment],
    ) -> None:
        for index, item in enumerate(items):
            value = self._finite(
                result.worker_id,
                f"{category.value}[{index}].{item.name}",
                item.value,
                ZERO,
                result.fallbacks,
            )
            validate_adjustment_value(item.kind, value, field=f"{category.value}s.{index}.value")
            result.adjustments.append(AdjustmentDraft(
                category=category,
                name=item.name,
                kind=item.kind,
                value=value,
                description=item.description or item.name,
            ))

    def _add_meal_allowance(self, result: SalaryCalculation, allowance: Optional[Decimal]) -> None:
        if allowance is None:
            return
        value = self._finite(result.worker_id, "meal_allowance", allowance, ZERO, result.fallbacks)
        if value <= 0:
            return
        result.adjustments.append(AdjustmentDraft(
            category=AdjustmentCategory.BENEFIT,
            name=MEAL_ALLOWANCE_NAME,
            kind=AdjustmentKind.FIXED,
            value=quantize(value),
            description="Monthly meal allowance",
        ))

    # ===========================================
    # TOTALS
    # ===========================================

    def _totals(self, result: SalaryCalculation) -> None:
        base = result.base_salary
        _, deductions = resolve(result.items(AdjustmentCategory.DEDUCTION), base)
        _, benefits = resolve(result.items(AdjustmentCategory.BENEFIT), base)
        _, additionals = resolve(result.items(AdjustmentCategory.ADDITIONAL), base)

        result.total_deductions = deductions
        result.total_benefits = benefits
        result.total_additionals = additionals

        gross = base + benefits + additionals
        result.gross_salary = self._finite(result.worker_id, "gross_salary", gross, base, result.fallbacks)
        net = result.gross_salary - deductions
        result.net_salary = self._finite(result.worker_id, "net_salary", net, ZERO, result.fallbacks)

    @staticmethod
    def _finite(
        worker_id: str,
        field_name: str,
        amount: Optional[Decimal],
        fallback: Decimal,
        fallbacks: List[ComputationFallback],
    ) -> Decimal:
        if is_finite(amount):
            return amount
        fallbacks.append(record_fallback(worker_id, field_name, amount, fallback))
        return finite_or(amount, fallback)


_default_calculator = SalaryCalculator()


def calculate_salary(worker: WorkerCompensation) -> SalaryCalculation:
    """Calculate one worker's pay with the default bracket tables."""
    return _default_calculator.calculate(worker)
