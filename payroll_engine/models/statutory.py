"""
Payroll Engine - Statutory Models

Statutory rate configuration (PAYE, pension fund, health fund) versioned by
effective dates, and the statutory remittance obligations emitted when a
payroll period is locked.

Configuration blob shapes by rate type:
- paye:    {"brackets": [{"min", "max", "rate"}], "relief"}
- pension: {"rate", "cap"}
- health:  {"tiers": [{"min", "max", "amount"}]}
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Numeric, String, Text, Uuid,
    Enum as SQLEnum, JSON, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_engine.models.base import BaseModel, AuditMixin


class StatutoryRateType(str, Enum):
    """Statutory deduction types."""
    PAYE = "paye"
    PENSION = "pension"
    HEALTH = "health"


class RemittanceStatus(str, Enum):
    """Remittance payment status."""
    PENDING = "pending"
    REMITTED = "remitted"


# ===========================================
# STATUTORY RATES
# ===========================================

class StatutoryRate(BaseModel, AuditMixin):
    """
    Country statutory rate configuration.

    Resolution picks the active row with the latest effective_from on or
    before the calculation date.
    """

    __tablename__ = "statutory_rates"

    country: Mapped[str] = mapped_column(String(2), nullable=False)
    rate_type: Mapped[StatutoryRateType] = mapped_column(
        SQLEnum(StatutoryRateType),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    config: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index('ix_statutory_rates_lookup', 'country', 'rate_type', 'effective_from'),
    )

    def __repr__(self) -> str:
        return f"<StatutoryRate(country={self.country}, type={self.rate_type}, from={self.effective_from})>"


# ===========================================
# STATUTORY REMITTANCE TRACKING
# ===========================================

class StatutoryRemittance(BaseModel):
    """
    Statutory remittance owed for a locked payroll period.

    One row per (period, tax type); emission on lock is an upsert on that key.
    """

    __tablename__ = "statutory_remittances"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    period_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_periods.id", ondelete="CASCADE"),
        nullable=False,
    )
    tax_type: Mapped[StatutoryRateType] = mapped_column(
        SQLEnum(StatutoryRateType),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[RemittanceStatus] = mapped_column(
        SQLEnum(RemittanceStatus),
        default=RemittanceStatus.PENDING,
        nullable=False,
    )
    remitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    remitted_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    remittance_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('period_id', 'tax_type', name='uq_remittance_period_tax_type'),
    )

    def __repr__(self) -> str:
        return f"<StatutoryRemittance(type={self.tax_type}, amount={self.amount}, due={self.due_date})>"
