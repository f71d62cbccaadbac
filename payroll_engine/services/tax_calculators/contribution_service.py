"""
Payroll Engine - Pension and Health Contribution Calculators

Pension fund (NSSF-style): rate% of gross pay, with the pensionable base
capped at a configured amount.

Health fund (NHIF-style): fixed amount taken from the tier whose inclusive
[min, max] range contains gross pay. Gross pay outside every tier falls back
to the nearest tier instead of failing: above the table the top tier applies,
below it the lowest tier applies.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from payroll_engine.services.tax_calculators.statutory_config import HealthTier
from payroll_engine.utils.error_handling import ConfigurationGap, MISSING_STATUTORY_CONFIG
from payroll_engine.utils.money import ZERO, percent_of, round_money, to_decimal

logger = logging.getLogger(__name__)


# Health tier match outcomes
TIER_MATCHED = "matched"
TIER_ABOVE_TABLE = "above_table"
TIER_BETWEEN_TIERS = "between_tiers"
TIER_BELOW_TABLE = "below_table"


@dataclass(frozen=True)
class PensionResult:
    amount: Decimal
    gross_pay: Decimal
    pensionable_base: Decimal
    rate: Decimal
    cap: Optional[Decimal]

    def to_details(self) -> Dict[str, Any]:
        return {
            "gross_pay": str(self.gross_pay),
            "pensionable_base": str(self.pensionable_base),
            "rate": str(self.rate),
            "cap": str(self.cap) if self.cap is not None else None,
            "capped": self.cap is not None and self.gross_pay > self.cap,
        }


@dataclass(frozen=True)
class HealthResult:
    amount: Decimal
    gross_pay: Decimal
    tier: Optional[HealthTier] = None
    match: Optional[str] = None
    gap: Optional[ConfigurationGap] = None

    def to_details(self) -> Dict[str, Any]:
        return {
            "gross_pay": str(self.gross_pay),
            "tier": self.tier.to_dict() if self.tier else None,
            "match": self.match,
        }


def compute_pension_contribution(gross_pay: Any, rate: Any, cap_amount: Any = None) -> PensionResult:
    """
    Pension contribution = min(gross pay, cap) x rate / 100.

    A cap of None leaves the base uncapped.
    """
    gross = to_decimal(gross_pay)
    rate_value = to_decimal(rate)
    cap = to_decimal(cap_amount) if cap_amount is not None else None

    base = gross if cap is None else min(gross, cap)
    base = max(base, Decimal("0"))

    return PensionResult(
        amount=percent_of(base, rate_value),
        gross_pay=round_money(gross),
        pensionable_base=round_money(base),
        rate=rate_value,
        cap=cap,
    )


def compute_health_contribution(gross_pay: Any, tiers: Sequence[HealthTier]) -> HealthResult:
    """
    Health contribution from the tier table.

    The first tier (ascending min) with min <= gross <= max wins. Otherwise
    the highest tier starting at or below gross applies; gross below every
    tier uses the lowest tier. An empty table yields zero and a gap.
    """
    gross = to_decimal(gross_pay)

    if not tiers:
        gap = ConfigurationGap(
            kind=MISSING_STATUTORY_CONFIG,
            message="No health contribution tiers configured; contribution computed as zero",
            context={"rate_type": "health"},
        )
        logger.warning(gap.message)
        return HealthResult(amount=ZERO, gross_pay=round_money(gross), gap=gap)

    ordered = sorted(tiers, key=lambda t: t.min)

    for tier in ordered:
        if tier.contains(gross):
            return HealthResult(
                amount=round_money(tier.amount),
                gross_pay=round_money(gross),
                tier=tier,
                match=TIER_MATCHED,
            )

    below = [tier for tier in ordered if tier.min <= gross]
    if below:
        tier = below[-1]
        match = TIER_ABOVE_TABLE if tier is ordered[-1] else TIER_BETWEEN_TIERS
    else:
        tier = ordered[0]
        match = TIER_BELOW_TABLE

    logger.debug(f"Health tier fallback ({match}) for gross pay {gross}")
    return HealthResult(
        amount=round_money(tier.amount),
        gross_pay=round_money(gross),
        tier=tier,
        match=match,
    )
