"""
Payroll Engine - Money Helpers

Fixed-point helpers shared by the calculators and the ledger.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional


ZERO = Decimal("0.00")
TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Convert a stored or user value to Decimal without going through binary floats."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def to_optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return to_decimal(value)


def round_money(value: Any) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Any]) -> Decimal:
    total = Decimal("0")
    for value in values:
        total += to_decimal(value)
    return round_money(total)


def percent_of(amount: Any, rate: Any) -> Decimal:
    """amount x rate / 100, rounded to 2 decimal places."""
    return round_money(to_decimal(amount) * to_decimal(rate) / HUNDRED)
