"""
Payroll Core - Statutory Withholding Calculator

Social-security contribution (INSS), income tax withheld at source (IRRF)
and the employer's severance-fund deposit (FGTS), using the 2025 tables.

INSS progressive brackets (monthly):
- Up to R$ 1,518.00: 7.5%
- R$ 1,518.01 - R$ 2,793.88: 9%
- R$ 2,793.89 - R$ 4,190.83: 12%
- R$ 4,190.84 - R$ 8,157.41: 14%
- Above R$ 8,157.41: ceiling (no further contribution)

IRRF:
- Gross up to R$ 3,036.00 is exempt
- Taxable base = gross - INSS - R$ 189.59 per dependent - R$ 607.20
- Brackets over the taxable base apply rate minus a fixed deduction

FGTS: 8% of gross, paid by the employer. Never deducted from net pay.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from payroll_core.utils.money import ZERO, quantize


@dataclass
class StatutoryBracket:
    """Progressive bracket: ``rate`` applies to the slice between ``lower`` and ``upper``."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal

    def slice_of(self, base: Decimal) -> Decimal:
        """Portion of ``base`` that falls inside this bracket."""
        if base <= self.lower:
            return Decimal("0")
        top = base if self.upper is None else min(base, self.upper)
        return top - self.lower

    def contribution(self, base: Decimal) -> Decimal:
        return self.slice_of(base) * (self.rate / 100)


@dataclass
class IncomeTaxBracket:
    """Flat bracket over the taxable base: ``base * rate - deduction``."""
    upper: Optional[Decimal]
    rate: Decimal
    deduction: Decimal

    def contains(self, taxable: Decimal) -> bool:
        return self.upper is None or taxable <= self.upper

    def tax(self, taxable: Decimal) -> Decimal:
        return taxable * (self.rate / 100) - self.deduction


# INSS 2025
INSS_2025_BRACKETS = [
    StatutoryBracket(Decimal("0"), Decimal("1518.00"), Decimal("7.5")),
    StatutoryBracket(Decimal("1518.00"), Decimal("2793.88"), Decimal("9")),
    StatutoryBracket(Decimal("2793.88"), Decimal("4190.83"), Decimal("12")),
    StatutoryBracket(Decimal("4190.83"), Decimal("8157.41"), Decimal("14")),
    StatutoryBracket(Decimal("8157.41"), None, Decimal("0")),
]

# IRRF 2025
IRRF_2025_BRACKETS = [
    IncomeTaxBracket(Decimal("2428.80"), Decimal("0"), Decimal("0")),
    IncomeTaxBracket(Decimal("2826.65"), Decimal("7.5"), Decimal("182.16")),
    IncomeTaxBracket(Decimal("3751.05"), Decimal("15"), Decimal("394.16")),
    IncomeTaxBracket(Decimal("4664.68"), Decimal("22.5"), Decimal("675.49")),
    IncomeTaxBracket(None, Decimal("27.5"), Decimal("908.73")),
]

IRRF_EXEMPTION_THRESHOLD = Decimal("3036.00")
IRRF_DEPENDENT_DEDUCTION = Decimal("189.59")
IRRF_SIMPLIFIED_DEDUCTION = Decimal("607.20")

FGTS_RATE = Decimal("8")


class StatutoryCalculator:
    """
    Withholding calculator driven entirely by its bracket tables.

    The base offset of every INSS bracket is the sum of the full brackets
    below it, so the function is continuous at each boundary.
    """

    def __init__(
        self,
        brackets: List[StatutoryBracket] = None,
        income_tax_brackets: List[IncomeTaxBracket] = None,
        exemption_threshold: Decimal = IRRF_EXEMPTION_THRESHOLD,
        dependent_deduction: Decimal = IRRF_DEPENDENT_DEDUCTION,
        simplified_deduction: Decimal = IRRF_SIMPLIFIED_DEDUCTION,
        employer_rate: Decimal = FGTS_RATE,
    ):
        self.brackets = brackets or INSS_2025_BRACKETS
        self.income_tax_brackets = income_tax_brackets or IRRF_2025_BRACKETS
        self.exemption_threshold = exemption_threshold
        self.dependent_deduction = dependent_deduction
        self.simplified_deduction = simplified_deduction
        self.employer_rate = employer_rate
        self._offsets = self._build_offsets(self.brackets)

    @staticmethod
    def _build_offsets(brackets: List[StatutoryBracket]) -> List[Decimal]:
        offsets = []
        running = Decimal("0")
        for bracket in brackets:
            offsets.append(running)
            if bracket.upper is not None:
                running += (bracket.upper - bracket.lower) * (bracket.rate / 100)
        return offsets

    def find_bracket(self, base: Decimal) -> Tuple[int, StatutoryBracket]:
        """Index and bracket that ``base`` falls into."""
        for index, bracket in enumerate(self.brackets):
            if bracket.upper is None or base <= bracket.upper:
                return index, bracket
        return len(self.brackets) - 1, self.brackets[-1]

    def statutory_withholding(self, base: Decimal) -> Decimal:
        """INSS due on a monthly gross salary."""
        if base <= 0:
            return ZERO
        index, bracket = self.find_bracket(base)
        return quantize(self._offsets[index] + bracket.contribution(base))

    def taxable_base(
        self,
        base: Decimal,
        prior_withholding: Decimal,
        dependents: int = 0,
    ) -> Decimal:
        return (
            base
            - prior_withholding
            - self.dependent_deduction * dependents
            - self.simplified_deduction
        )

    def income_tax_withholding(
        self,
        base: Decimal,
        prior_withholding: Decimal,
        dependents: int = 0,
    ) -> Decimal:
        """
        IRRF due on a monthly gross salary.

        Args:
            base: Gross monthly salary
            prior_withholding: INSS already withheld from the same gross
            dependents: Number of declared dependents

        Returns:
            Tax amount, never negative
        """
        if dependents < 0:
            raise ValueError("dependents cannot be negative")
        if base <= self.exemption_threshold:
            return ZERO

        taxable = self.taxable_base(base, prior_withholding, dependents)
        for bracket in self.income_tax_brackets:
            if bracket.contains(taxable):
                return quantize(max(Decimal("0"), bracket.tax(taxable)))
        return ZERO

    def employer_contribution(self, base: Decimal) -> Decimal:
        """FGTS deposit. Informational; not part of net salary."""
        if base <= 0:
            return ZERO
        return quantize(base * (self.employer_rate / 100))

    def calculate(self, base: Decimal, dependents: int = 0) -> Dict[str, Decimal]:
        """Full statutory breakdown for one gross salary."""
        inss = self.statutory_withholding(base)
        irrf = self.income_tax_withholding(base, inss, dependents)
        fgts = self.employer_contribution(base)
        return {
            "statutory_withholding": inss,
            "income_tax": irrf,
            "employer_contribution": fgts,
            "total_withholding": inss + irrf,
        }
