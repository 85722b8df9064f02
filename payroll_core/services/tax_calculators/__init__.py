"""
Payroll Core - Tax Calculators Package

Statutory withholding for monthly payroll.

Modules:
- statutory_service: INSS (progressive 7.5%/9%/12%/14%), IRRF (exempt up to
  R$ 3,036.00) and FGTS (8% employer deposit)
"""

from decimal import Decimal

from payroll_core.services.tax_calculators.statutory_service import (
    StatutoryBracket,
    IncomeTaxBracket,
    StatutoryCalculator,
    INSS_2025_BRACKETS,
    IRRF_2025_BRACKETS,
    IRRF_EXEMPTION_THRESHOLD,
    FGTS_RATE,
)


_default_calculator = StatutoryCalculator()


# ===========================================
# CONVENIENCE FUNCTIONS
# ===========================================

def statutory_withholding(base_salary: Decimal) -> Decimal:
    """
    Calculate INSS on a monthly gross salary.

    Args:
        base_salary: Gross monthly salary

    Returns:
        Contribution rounded to cents, capped at the ceiling bracket
    """
    return _default_calculator.statutory_withholding(base_salary)


def income_tax_withholding(
    base_salary: Decimal,
    prior_withholding: Decimal,
    dependents: int = 0,
) -> Decimal:
    """
    Calculate IRRF on a monthly gross salary.

    Args:
        base_salary: Gross monthly salary
        prior_withholding: INSS withheld from the same salary
        dependents: Number of dependents

    Returns:
        Income tax (0 at or below the exemption threshold)
    """
    return _default_calculator.income_tax_withholding(base_salary, prior_withholding, dependents)


def employer_contribution(base_salary: Decimal) -> Decimal:
    """Calculate the employer FGTS deposit (8% of gross)."""
    return _default_calculator.employer_contribution(base_salary)


__all__ = [
    "StatutoryBracket",
    "IncomeTaxBracket",
    "StatutoryCalculator",
    "INSS_2025_BRACKETS",
    "IRRF_2025_BRACKETS",
    "IRRF_EXEMPTION_THRESHOLD",
    "FGTS_RATE",
    "statutory_withholding",
    "income_tax_withholding",
    "employer_contribution",
]
