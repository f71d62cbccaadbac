"""
Payroll Engine - Payroll Models

Payroll periods, per-employee payroll records and their line items.

Period lifecycle:
    draft -> processing -> pending_approval -> approved -> (paid) -> locked

Cached totals on the period are a materialised view of the child Payroll
rows and are recomputed after processing and before approval. Once a period
is locked every Payroll carries locked_at and the session guard below
rejects further ORM changes to it or its items.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, JSON, UniqueConstraint, CheckConstraint, event, inspect,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship
from sqlalchemy.orm.util import identity_key

from payroll_engine.models.base import BaseModel, AuditMixin
from payroll_engine.utils.error_handling import PeriodLockedException


# ===========================================
# ENUMS
# ===========================================

class PayrollPeriodStatus(str, Enum):
    """Payroll period lifecycle status."""
    DRAFT = "draft"
    PROCESSING = "processing"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PAID = "paid"
    LOCKED = "locked"


class PayrollStatus(str, Enum):
    """Per-employee payroll status."""
    CALCULATED = "calculated"
    APPROVED = "approved"
    PAID = "paid"
    FAILED = "failed"


class PayItemType(str, Enum):
    """Type of payroll line."""
    EARNING = "earning"
    DEDUCTION = "deduction"


# Statuses in which a period holds loan ledger rows that are not yet final
IN_FLIGHT_PERIOD_STATUSES = (
    PayrollPeriodStatus.PROCESSING,
    PayrollPeriodStatus.PENDING_APPROVAL,
    PayrollPeriodStatus.APPROVED,
    PayrollPeriodStatus.PAID,
)


# ===========================================
# PAYROLL PERIOD
# ===========================================

class PayrollPeriod(BaseModel, AuditMixin):
    """
    Tenant-scoped payroll period.

    Dates are inclusive; no two periods of a tenant may overlap.
    """

    __tablename__ = "payroll_periods"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PayrollPeriodStatus] = mapped_column(
        SQLEnum(PayrollPeriodStatus),
        default=PayrollPeriodStatus.DRAFT,
        nullable=False,
    )

    # Cached totals (derived from non-failed payrolls)
    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_gross: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False)
    total_net: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False)
    total_paye: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False)
    total_pension: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False)
    total_health: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), default=Decimal("0.00"), nullable=False)

    # Operation lease guarding process/approve/lock
    operation_token: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    active_operation: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    operation_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Workflow timestamps
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    # Set once the period_locked event has been published
    lock_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint('start_date <= end_date', name='period_dates_ordered'),
    )

    def __repr__(self) -> str:
        return f"<PayrollPeriod(name={self.name}, {self.start_date} - {self.end_date}, status={self.status})>"


# ===========================================
# PAYROLL (one per period and employee)
# ===========================================

class Payroll(BaseModel):
    """
    Payroll result for one employee in one period.

    net_pay = total_earnings - total_deductions, where total_deductions is
    paye + pension + health + loan_deductions + other_deductions.
    """

    __tablename__ = "payrolls"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    period_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_periods.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Earnings
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)
    total_earnings: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)
    taxable_income: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)

    # Deductions
    paye_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)
    pension_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)
    health_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)
    loan_deductions: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)
    other_deductions: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)

    net_pay: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False)

    status: Mapped[PayrollStatus] = mapped_column(
        SQLEnum(PayrollStatus),
        default=PayrollStatus.CALCULATED,
        nullable=False,
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    warnings: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    # Payment
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_account: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[List["PayrollItem"]] = relationship(
        "PayrollItem",
        back_populates="payroll",
        cascade="all, delete-orphan",
        order_by="PayrollItem.sort_order",
    )

    __table_args__ = (
        UniqueConstraint('period_id', 'employee_id', name='uq_payroll_period_employee'),
    )

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def __repr__(self) -> str:
        return f"<Payroll(employee_id={self.employee_id}, net={self.net_pay}, status={self.status})>"


class PayrollItem(BaseModel):
    """
    One earning or deduction line of a payroll.

    component_id is null for synthetic statutory and loan lines;
    calculation_details explains how the amount was derived.
    """

    __tablename__ = "payroll_items"

    payroll_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payrolls.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    component_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_components.id", ondelete="SET NULL"),
        nullable=True,
    )
    loan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee_loans.id", ondelete="SET NULL"),
        nullable=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    item_type: Mapped[PayItemType] = mapped_column(SQLEnum(PayItemType), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    is_taxable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    calculation_details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    payroll: Mapped["Payroll"] = relationship("Payroll", back_populates="items")

    def __repr__(self) -> str:
        return f"<PayrollItem(type={self.item_type}, code={self.code}, amount={self.amount})>"


# ===========================================
# LOCKED PAYROLL GUARD
# ===========================================

def _previous_locked_at(payroll: Payroll) -> Optional[datetime]:
    history = inspect(payroll).attrs.locked_at.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


@event.listens_for(Session, "before_flush")
def reject_locked_payroll_changes(session: Session, flush_context, instances) -> None:
    """Refuse ORM updates or deletes of payroll data belonging to a locked period."""
    changed = [obj for obj in session.dirty if session.is_modified(obj)]
    for obj in changed + list(session.deleted):
        if isinstance(obj, Payroll):
            if _previous_locked_at(obj) is not None:
                raise PeriodLockedException(obj.period_id, operation="payroll change")
        elif isinstance(obj, PayrollItem):
            parent = session.identity_map.get(identity_key(Payroll, obj.payroll_id))
            if parent is not None and _previous_locked_at(parent) is not None:
                raise PeriodLockedException(parent.period_id, operation="payroll item change")
