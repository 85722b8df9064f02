"""
Payroll Core - Payroll Recalculation

Totals are always derived from line items and the current base salary.
Callers never supply totals.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from payroll_core.models.payroll import AdjustmentCategory, Payroll
from payroll_core.services.adjustment_resolver import resolve_by_category
from payroll_core.utils.money import quantize


@dataclass(frozen=True)
class PayrollTotals:
    """Derived totals of a payroll aggregate."""
    total_deductions: Decimal
    total_benefits: Decimal
    total_additionals: Decimal
    net_salary: Decimal


def compute_totals(base_gross_salary: Decimal, adjustments: Iterable[Any]) -> PayrollTotals:
    """
    Pure totals calculation.

    net = base + additionals + benefits - deductions
    """
    base = quantize(base_gross_salary)
    resolved = resolve_by_category(adjustments, base)

    deductions = resolved[AdjustmentCategory.DEDUCTION][1]
    benefits = resolved[AdjustmentCategory.BENEFIT][1]
    additionals = resolved[AdjustmentCategory.ADDITIONAL][1]

    return PayrollTotals(
        total_deductions=deductions,
        total_benefits=benefits,
        total_additionals=additionals,
        net_salary=quantize(base + additionals + benefits - deductions),
    )


def apply_totals(payroll: Payroll, totals: PayrollTotals) -> Payroll:
    payroll.total_deductions = totals.total_deductions
    payroll.total_benefits = totals.total_benefits
    payroll.total_additionals = totals.total_additionals
    payroll.net_salary = totals.net_salary
    # Always dirty the row so the version counter moves with every recalculation
    payroll.updated_at = datetime.now(timezone.utc)
    return payroll


def recalculate(payroll: Payroll) -> Payroll:
    """Refresh the four derived totals of ``payroll`` from its adjustments."""
    return apply_totals(payroll, compute_totals(payroll.base_gross_salary, payroll.adjustments))


def totals_match(payroll: Payroll) -> bool:
    """Whether the stored totals equal a fresh calculation."""
    fresh = compute_totals(payroll.base_gross_salary, payroll.adjustments)
    return (
        payroll.total_deductions == fresh.total_deductions
        and payroll.total_benefits == fresh.total_benefits
        and payroll.total_additionals == fresh.total_additionals
        and payroll.net_salary == fresh.net_salary
    )
