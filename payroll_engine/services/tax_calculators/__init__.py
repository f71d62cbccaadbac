"""
Payroll Engine - Tax Calculators Package

Pure statutory calculation functions over Decimal.

Modules:
- statutory_config: typed configuration variants parsed from stored blobs
- paye_service: progressive PAYE over brackets with flat relief
- contribution_service: capped pension and tiered health contributions
"""

from payroll_engine.services.tax_calculators.statutory_config import (
    PayeBracket,
    PayeConfig,
    PensionConfig,
    HealthTier,
    HealthConfig,
    StatutoryConfig,
    StatutoryConfigError,
    normalize_rate_type,
    parse_statutory_config,
)
from payroll_engine.services.tax_calculators.paye_service import (
    PayeResult,
    PayeBracketTax,
    compute_paye,
)
from payroll_engine.services.tax_calculators.contribution_service import (
    PensionResult,
    HealthResult,
    compute_pension_contribution,
    compute_health_contribution,
)

__all__ = [
    "PayeBracket",
    "PayeConfig",
    "PensionConfig",
    "HealthTier",
    "HealthConfig",
    "StatutoryConfig",
    "StatutoryConfigError",
    "normalize_rate_type",
    "parse_statutory_config",
    "PayeResult",
    "PayeBracketTax",
    "compute_paye",
    "PensionResult",
    "HealthResult",
    "compute_pension_contribution",
    "compute_health_contribution",
]
