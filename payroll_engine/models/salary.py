"""
Payroll Engine - Salary Structure Models

Salary components are tenant-scoped definitions (basic pay, allowances,
deductions). Employees receive components through dated assignments that
are append-only: a revision closes the previous row and opens a new one,
and the change is captured in the salary revision history.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean, Date, ForeignKey, Numeric, String, Text, Uuid,
    Enum as SQLEnum, UniqueConstraint, Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from payroll_engine.models.base import BaseModel, AuditMixin


# ===========================================
# ENUMS
# ===========================================

class ComponentKind(str, Enum):
    """Whether a component adds to or subtracts from pay."""
    EARNING = "earning"
    DEDUCTION = "deduction"


class ComponentCategory(str, Enum):
    """Reporting category of a salary component."""
    # Earnings
    BASIC = "basic"
    ALLOWANCE = "allowance"
    BONUS = "bonus"
    OVERTIME = "overtime"
    OTHER_EARNING = "other_earning"

    # Deductions
    STATUTORY = "statutory"
    LOAN = "loan"
    OTHER_DEDUCTION = "other_deduction"


class CalculationMode(str, Enum):
    """How the component amount is derived."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"


# ===========================================
# SALARY COMPONENT
# ===========================================

class SalaryComponent(BaseModel, AuditMixin):
    """
    Tenant-scoped salary component definition.

    A percentage component references exactly one fixed component as its
    base; chains of percentage components are rejected when configured.
    """

    __tablename__ = "salary_components"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    kind: Mapped[ComponentKind] = mapped_column(
        SQLEnum(ComponentKind),
        nullable=False,
    )
    category: Mapped[ComponentCategory] = mapped_column(
        SQLEnum(ComponentCategory),
        nullable=False,
    )

    calculation_mode: Mapped[CalculationMode] = mapped_column(
        SQLEnum(CalculationMode),
        default=CalculationMode.FIXED,
        nullable=False,
    )
    percentage_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_components.id", ondelete="RESTRICT"),
        nullable=True,
        comment="Base component for percentage mode",
    )
    percentage_value: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=7, scale=4),
        nullable=True,
    )

    is_taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_statutory: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    statutory_type: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True,
        comment="paye, pension or health for statutory components",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'code', name='uq_salary_component_tenant_code'),
    )

    def __repr__(self) -> str:
        return f"<SalaryComponent(code={self.code}, kind={self.kind}, mode={self.calculation_mode})>"


# ===========================================
# EMPLOYEE ASSIGNMENTS
# ===========================================

class EmployeeSalaryComponent(BaseModel, AuditMixin):
    """
    Dated assignment of a component to an employee.

    Active on a date when effective_from <= date < effective_to (open ended
    when effective_to is null).
    """

    __tablename__ = "employee_salary_components"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    component_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_components.id", ondelete="RESTRICT"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    percentage_override: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=7, scale=4),
        nullable=True,
    )

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    __table_args__ = (
        Index('ix_employee_salary_component_pair', 'employee_id', 'component_id'),
    )

    def is_active_on(self, as_of: date) -> bool:
        return self.effective_from <= as_of and (self.effective_to is None or as_of < self.effective_to)

    def __repr__(self) -> str:
        return (
            f"<EmployeeSalaryComponent(employee_id={self.employee_id}, component_id={self.component_id}, "
            f"amount={self.amount}, from={self.effective_from}, to={self.effective_to})>"
        )


class SalaryRevisionHistory(BaseModel):
    """Record of a salary assignment revision."""

    __tablename__ = "salary_revision_history"

    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    component_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_components.id", ondelete="RESTRICT"),
        nullable=False,
    )
    previous_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    new_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    change_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=9, scale=2),
        nullable=True,
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    revised_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    def __repr__(self) -> str:
        return f"<SalaryRevisionHistory(employee_id={self.employee_id}, {self.previous_amount} -> {self.new_amount})>"
