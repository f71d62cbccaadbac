"""
Payroll Engine - PAYE Calculator

Progressive PAYE (Pay As You Earn) calculation over configured brackets.

Brackets are walked in ascending order of their lower bound. Each bracket
taxes the part of the income that falls inside it, capped by the bracket
width measured from the previous bracket's upper bound. A flat relief is
subtracted once from the total and the result is floored at zero.

Example (monthly taxable income 50,000, relief 2,400):
- 0 - 24,000 at 10%:         24,000 x 10% = 2,400.00
- 24,001 - 32,333 at 25%:     8,333 x 25% = 2,083.25
- 32,334 and above at 30%:   17,666 x 30% = 5,299.80
- Total 9,783.05 less relief 2,400 = 7,383.05
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from payroll_engine.services.tax_calculators.statutory_config import PayeBracket
from payroll_engine.utils.error_handling import ConfigurationGap, MISSING_STATUTORY_CONFIG
from payroll_engine.utils.money import ZERO, HUNDRED, round_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayeBracketTax:
    """Tax attributed to one bracket."""
    bracket: PayeBracket
    taxable_amount: Decimal
    tax: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.bracket.to_dict(),
            "taxable_amount": str(self.taxable_amount),
            "tax": str(self.tax),
        }


@dataclass(frozen=True)
class PayeResult:
    """PAYE amount with the bracket trail used to derive it."""
    amount: Decimal
    gross_tax: Decimal
    relief_applied: Decimal
    taxable_income: Decimal
    breakdown: Tuple[PayeBracketTax, ...] = ()
    gap: Optional[ConfigurationGap] = None

    def to_details(self) -> Dict[str, Any]:
        return {
            "taxable_income": str(self.taxable_income),
            "gross_tax": str(self.gross_tax),
            "relief": str(self.relief_applied),
            "brackets": [entry.to_dict() for entry in self.breakdown],
        }


def compute_paye(
    taxable_income: Any,
    brackets: Sequence[PayeBracket],
    relief: Any = ZERO,
) -> PayeResult:
    """
    Compute PAYE for a taxable income.

    Args:
        taxable_income: Income subject to PAYE for the period
        brackets: Configured tax brackets (any order)
        relief: Flat relief subtracted once from the total tax

    Returns:
        PayeResult rounded half-up to 2 decimal places. With no brackets the
        amount is zero and a MissingStatutoryConfig gap is attached.
    """
    income = to_decimal(taxable_income)
    relief_amount = to_decimal(relief)

    if not brackets:
        gap = ConfigurationGap(
            kind=MISSING_STATUTORY_CONFIG,
            message="No PAYE brackets configured; PAYE computed as zero",
            context={"rate_type": "paye"},
        )
        logger.warning(gap.message)
        return PayeResult(
            amount=ZERO,
            gross_tax=ZERO,
            relief_applied=ZERO,
            taxable_income=round_money(income),
            gap=gap,
        )

    tax = Decimal("0")
    remaining = income
    previous_max: Optional[Decimal] = None
    breakdown: List[PayeBracketTax] = []

    for bracket in sorted(brackets, key=lambda b: b.min):
        if remaining <= 0:
            break

        lower_edge = bracket.min if previous_max is None else previous_max
        candidates = [remaining, income - bracket.min]
        if bracket.max is not None:
            candidates.append(bracket.max - lower_edge)
        portion = min(candidates)

        if portion > 0:
            bracket_tax = portion * bracket.rate / HUNDRED
            tax += bracket_tax
            remaining -= portion
            breakdown.append(PayeBracketTax(
                bracket=bracket,
                taxable_amount=round_money(portion),
                tax=round_money(bracket_tax),
            ))

        if bracket.max is None:
            break
        previous_max = bracket.max

    relief_applied = min(relief_amount, tax) if relief_amount > 0 else ZERO
    net_tax = max(tax - relief_amount, Decimal("0"))

    return PayeResult(
        amount=round_money(net_tax),
        gross_tax=round_money(tax),
        relief_applied=round_money(relief_applied),
        taxable_income=round_money(income),
        breakdown=tuple(breakdown),
    )
