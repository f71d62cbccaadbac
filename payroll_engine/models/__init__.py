"""
Payroll Engine - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from payroll_engine.models.base import BaseModel, TimestampMixin, AuditMixin
from payroll_engine.models.employee import Employee, EmploymentStatus, PaymentMethod
from payroll_engine.models.salary import (
    SalaryComponent,
    EmployeeSalaryComponent,
    SalaryRevisionHistory,
    ComponentKind,
    ComponentCategory,
    CalculationMode,
)
from payroll_engine.models.statutory import (
    StatutoryRate,
    StatutoryRateType,
    StatutoryRemittance,
    RemittanceStatus,
)
from payroll_engine.models.loan import (
    EmployeeLoan,
    LoanRepayment,
    LoanStatus,
    RepaymentType,
)
from payroll_engine.models.payroll import (
    PayrollPeriod,
    Payroll,
    PayrollItem,
    PayrollPeriodStatus,
    PayrollStatus,
    PayItemType,
    IN_FLIGHT_PERIOD_STATUSES,
)

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    # Employee
    "Employee",
    "EmploymentStatus",
    "PaymentMethod",
    # Salary structure
    "SalaryComponent",
    "EmployeeSalaryComponent",
    "SalaryRevisionHistory",
    "ComponentKind",
    "ComponentCategory",
    "CalculationMode",
    # Statutory
    "StatutoryRate",
    "StatutoryRateType",
    "StatutoryRemittance",
    "RemittanceStatus",
    # Loans
    "EmployeeLoan",
    "LoanRepayment",
    "LoanStatus",
    "RepaymentType",
    # Payroll
    "PayrollPeriod",
    "Payroll",
    "PayrollItem",
    "PayrollPeriodStatus",
    "PayrollStatus",
    "PayItemType",
    "IN_FLIGHT_PERIOD_STATUSES",
]
