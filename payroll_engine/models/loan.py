"""
Payroll Engine - Employee Loan Models

Employee loans with a running balance and an immutable repayment ledger.
remaining_balance always equals total_amount - total_paid.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Date, DateTime, ForeignKey, Numeric, String, Text, Uuid,
    Enum as SQLEnum, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_engine.models.base import BaseModel, AuditMixin


# ===========================================
# EMPLOYEE LOAN ENUMS
# ===========================================

class LoanStatus(str, Enum):
    """Loan lifecycle status."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    WRITTEN_OFF = "written_off"


class RepaymentType(str, Enum):
    """Source of a loan repayment."""
    PAYROLL_DEDUCTION = "payroll_deduction"
    MANUAL = "manual"


# ===========================================
# EMPLOYEE LOANS
# ===========================================

class EmployeeLoan(BaseModel, AuditMixin):
    """
    Track employee loans and salary advances with deduction schedules.
    """

    __tablename__ = "employee_loans"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    loan_number: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="Loan reference e.g., LN-2026-0A1B2C",
    )
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Loan Amount
    principal_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    interest_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        default=Decimal("0.00"),
        nullable=False,
        comment="Flat interest percentage on principal",
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        comment="Principal x (1 + interest rate / 100)",
    )

    # Deduction Schedule
    monthly_deduction: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    repayment_start_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Balance Tracking
    total_paid: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    remaining_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )

    # Status
    status: Mapped[LoanStatus] = mapped_column(
        SQLEnum(LoanStatus),
        default=LoanStatus.PENDING,
        nullable=False,
    )

    # Approval
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Write-off
    written_off_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    written_off_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    written_off_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    repayments: Mapped[List["LoanRepayment"]] = relationship(
        "LoanRepayment",
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="LoanRepayment.repayment_date",
    )

    __table_args__ = (
        UniqueConstraint('tenant_id', 'loan_number', name='uq_employee_loan_tenant_number'),
    )

    def __repr__(self) -> str:
        return f"<EmployeeLoan(number={self.loan_number}, total={self.total_amount}, balance={self.remaining_balance})>"


# ===========================================
# LOAN REPAYMENTS
# ===========================================

class LoanRepayment(BaseModel):
    """
    Individual loan repayment records (from payroll or manual).
    Rows are never updated; payroll-linked rows are only removed when the
    generating payroll is reprocessed.
    """

    __tablename__ = "loan_repayments"

    loan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employee_loans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payroll_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payrolls.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Link to the payroll that generated the deduction",
    )

    repayment_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    payment_type: Mapped[RepaymentType] = mapped_column(
        SQLEnum(RepaymentType),
        nullable=False,
    )
    balance_after: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    loan: Mapped["EmployeeLoan"] = relationship(
        "EmployeeLoan", back_populates="repayments",
    )

    def __repr__(self) -> str:
        return f"<LoanRepayment(loan_id={self.loan_id}, amount={self.amount}, date={self.repayment_date})>"
