"""
Payroll Core - Money Helpers

Every amount that enters the engine from outside (worker directory payloads,
request bodies) goes through ``to_decimal`` exactly once. Amounts that come
back non-finite are replaced through ``finite_or`` so a NaN can never reach
a comparison or a persisted column.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional


CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

_NAN = Decimal("NaN")
_CURRENCY_NOISE = re.compile(r"[^\d,.\-]")


def quantize(amount: Decimal) -> Decimal:
    """Round half-up to cents."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def is_finite(amount: Optional[Decimal]) -> bool:
    return amount is not None and amount.is_finite()


def finite_or(amount: Optional[Decimal], fallback: Decimal) -> Decimal:
    """Return ``amount`` when it is a finite Decimal, otherwise ``fallback``."""
    if is_finite(amount):
        return amount
    return fallback


def _normalize_text(text: str) -> str:
    cleaned = _CURRENCY_NOISE.sub("", text.strip())
    if "," in cleaned and "." in cleaned:
        # "1.234,56" (pt-BR) versus "1,234.56" (en-US): the last separator is decimal
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")
    return cleaned


def to_decimal(value: Any) -> Decimal:
    """
    Convert an external amount into a Decimal.

    Accepts Decimal, int, float and text such as ``"3500"``, ``"3.500,00"``
    or ``"R$ 1.234,56"``. Anything that cannot be read as a number becomes
    ``Decimal("NaN")`` so the caller decides the fallback.
    """
    if value is None:
        return _NAN
    if isinstance(value, bool):
        return _NAN
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        text = _normalize_text(value)
        if not text:
            return _NAN
        try:
            return Decimal(text)
        except InvalidOperation:
            return _NAN
    return _NAN
