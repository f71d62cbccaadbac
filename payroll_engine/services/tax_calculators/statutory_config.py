"""
Payroll Engine - Statutory Configuration Variants

Typed views of the statutory rate configuration blobs. Storage keeps one JSON
blob per rate row tagged by rate type; this module turns a blob into the
variant the calculators expect:

- PayeConfig:    ordered brackets {min, max, rate%} plus a flat relief
- PensionConfig: {rate%, cap}
- HealthConfig:  ordered tiers {min, max, fixed amount}

Legacy rate-type names (nssf, nhif) and camelCase blob keys are accepted.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from payroll_engine.models.statutory import StatutoryRateType


class StatutoryConfigError(ValueError):
    """Raised when a stored configuration blob cannot be interpreted."""


RATE_TYPE_ALIASES = {
    "paye": StatutoryRateType.PAYE,
    "pension": StatutoryRateType.PENSION,
    "nssf": StatutoryRateType.PENSION,
    "health": StatutoryRateType.HEALTH,
    "nhif": StatutoryRateType.HEALTH,
}


@dataclass(frozen=True)
class PayeBracket:
    """PAYE bracket; max None means unbounded."""
    min: Decimal
    max: Optional[Decimal]
    rate: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": str(self.min),
            "max": str(self.max) if self.max is not None else None,
            "rate": str(self.rate),
        }


@dataclass(frozen=True)
class PayeConfig:
    brackets: Tuple[PayeBracket, ...]
    relief: Decimal = Decimal("0")

    rate_type = StatutoryRateType.PAYE


@dataclass(frozen=True)
class PensionConfig:
    rate: Decimal
    cap: Optional[Decimal] = None

    rate_type = StatutoryRateType.PENSION


@dataclass(frozen=True)
class HealthTier:
    """Health contribution tier; bounds are inclusive, max None means unbounded."""
    min: Decimal
    max: Optional[Decimal]
    amount: Decimal

    def contains(self, value: Decimal) -> bool:
        return self.min <= value and (self.max is None or value <= self.max)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": str(self.min),
            "max": str(self.max) if self.max is not None else None,
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class HealthConfig:
    tiers: Tuple[HealthTier, ...]

    rate_type = StatutoryRateType.HEALTH


StatutoryConfig = Union[PayeConfig, PensionConfig, HealthConfig]


# ===========================================
# PARSING
# ===========================================

def normalize_rate_type(rate_type: Union[str, StatutoryRateType]) -> StatutoryRateType:
    """Map a rate type or one of its aliases onto StatutoryRateType."""
    if isinstance(rate_type, StatutoryRateType):
        return rate_type
    try:
        return RATE_TYPE_ALIASES[str(rate_type).strip().lower()]
    except KeyError:
        raise StatutoryConfigError(f"Unknown statutory rate type: {rate_type}")


def _pick(blob: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in blob:
            return blob[key]
    return None


def _decimal(value: Any, field: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise StatutoryConfigError(f"Missing or invalid value for '{field}'")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise StatutoryConfigError(f"Invalid number for '{field}': {value!r}")
    if not result.is_finite():
        raise StatutoryConfigError(f"Invalid number for '{field}': {value!r}")
    return result


def _optional_decimal(value: Any, field: str) -> Optional[Decimal]:
    if value is None:
        return None
    return _decimal(value, field)


def _entries(blob: Dict[str, Any], key: str) -> Iterable[Dict[str, Any]]:
    entries = blob.get(key, [])
    if not isinstance(entries, list):
        raise StatutoryConfigError(f"'{key}' must be a list")
    for entry in entries:
        if not isinstance(entry, dict):
            raise StatutoryConfigError(f"Entries of '{key}' must be objects")
        yield entry


def parse_paye_config(blob: Dict[str, Any]) -> PayeConfig:
    brackets = []
    for entry in _entries(blob, "brackets"):
        bracket = PayeBracket(
            min=_decimal(entry.get("min", 0), "brackets.min"),
            max=_optional_decimal(entry.get("max"), "brackets.max"),
            rate=_decimal(entry.get("rate"), "brackets.rate"),
        )
        if bracket.max is not None and bracket.max < bracket.min:
            raise StatutoryConfigError("PAYE bracket max is below its min")
        brackets.append(bracket)
    relief = _pick(blob, "relief", "personal_relief", "personalRelief")
    return PayeConfig(
        brackets=tuple(sorted(brackets, key=lambda b: b.min)),
        relief=_decimal(relief, "relief") if relief is not None else Decimal("0"),
    )


def parse_pension_config(blob: Dict[str, Any]) -> PensionConfig:
    cap = _pick(blob, "cap", "cap_amount", "capAmount", "max_amount", "maxAmount")
    return PensionConfig(
        rate=_decimal(blob.get("rate"), "rate"),
        cap=_optional_decimal(cap, "cap"),
    )


def parse_health_config(blob: Dict[str, Any]) -> HealthConfig:
    tiers = []
    for entry in _entries(blob, "tiers"):
        amount = _pick(entry, "amount", "fixed_amount", "fixedAmount")
        tier = HealthTier(
            min=_decimal(entry.get("min", 0), "tiers.min"),
            max=_optional_decimal(entry.get("max"), "tiers.max"),
            amount=_decimal(amount, "tiers.amount"),
        )
        if tier.max is not None and tier.max < tier.min:
            raise StatutoryConfigError("Health tier max is below its min")
        tiers.append(tier)
    return HealthConfig(tiers=tuple(sorted(tiers, key=lambda t: t.min)))


_PARSERS = {
    StatutoryRateType.PAYE: parse_paye_config,
    StatutoryRateType.PENSION: parse_pension_config,
    StatutoryRateType.HEALTH: parse_health_config,
}


def parse_statutory_config(
    rate_type: Union[str, StatutoryRateType],
    blob: Any,
) -> StatutoryConfig:
    """
    Parse a stored configuration blob into its typed variant.

    Raises:
        StatutoryConfigError: If the rate type is unknown or the blob is malformed
    """
    if not isinstance(blob, dict):
        raise StatutoryConfigError("Statutory configuration must be an object")
    return _PARSERS[normalize_rate_type(rate_type)](blob)
