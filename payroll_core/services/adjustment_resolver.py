"""
Payroll Core - Adjustment Resolver

Turns percentage/fixed line items into currency amounts against a base
salary. The same resolver serves deductions, benefits and additionals.

Rounding: every resolved item is rounded half-up to cents for display and
snapshots, while the collection total is the rounded exact sum.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from payroll_core.models.payroll import AdjustmentCategory, AdjustmentKind
from payroll_core.utils.error_handling import InvalidAmountException
from payroll_core.utils.money import HUNDRED, quantize


@dataclass(frozen=True)
class ResolvedAdjustment:
    """An adjustment together with its currency amount."""
    name: str
    kind: AdjustmentKind
    value: Decimal
    resolved_value: Decimal
    description: Optional[str] = None
    category: Optional[AdjustmentCategory] = None
    source_id: Any = None


def validate_adjustment_value(kind: AdjustmentKind, value: Decimal, field: str = "value") -> None:
    """
    Reject negative values and percentages above 100.

    Raises:
        InvalidAmountException: value outside the range of its kind
    """
    if value < 0:
        raise InvalidAmountException(value, field=field)
    if AdjustmentKind(kind) == AdjustmentKind.PERCENTAGE and value > HUNDRED:
        raise InvalidAmountException(
            value,
            field=field,
            message=f"Invalid percentage: {value}. Percentages must be between 0 and 100.",
        )


def resolve_value(kind: AdjustmentKind, value: Decimal, base: Decimal) -> Decimal:
    """
    Unrounded currency amount of one adjustment.

    Args:
        kind: percentage or fixed
        value: Percentage points (0-100) or currency amount
        base: Base salary the percentage applies to

    Returns:
        ``base * value / 100`` for percentage items, ``value`` otherwise
    """
    if AdjustmentKind(kind) == AdjustmentKind.PERCENTAGE:
        return base * value / HUNDRED
    return value


def resolve(items: Iterable[Any], base: Decimal) -> Tuple[List[ResolvedAdjustment], Decimal]:
    """
    Resolve a collection of adjustments.

    ``items`` may be ORM adjustments or any object exposing ``name``,
    ``kind`` and ``value`` (``description``, ``category`` and ``id`` are
    picked up when present).

    Returns:
        Tuple of (resolved items, total rounded to cents)
    """
    resolved = []
    exact_total = Decimal("0")

    for item in items:
        amount = resolve_value(item.kind, item.value, base)
        exact_total += amount
        resolved.append(ResolvedAdjustment(
            name=item.name,
            kind=AdjustmentKind(item.kind),
            value=item.value,
            resolved_value=quantize(amount),
            description=getattr(item, "description", None),
            category=getattr(item, "category", None),
            source_id=getattr(item, "id", None),
        ))

    return resolved, quantize(exact_total)


def resolve_by_category(
    items: Iterable[Any],
    base: Decimal,
) -> Dict[AdjustmentCategory, Tuple[List[ResolvedAdjustment], Decimal]]:
    """Split mixed adjustments by category and resolve each collection."""
    grouped: Dict[AdjustmentCategory, List[Any]] = {category: [] for category in AdjustmentCategory}
    for item in items:
        grouped[AdjustmentCategory(item.category)].append(item)
    return {category: resolve(group, base) for category, group in grouped.items()}
