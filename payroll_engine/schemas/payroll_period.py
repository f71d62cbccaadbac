"""
Payroll Engine - Payroll Period Schemas

Pydantic schemas for payroll period requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from payroll_engine.models.employee import PaymentMethod


# ===========================================
# PERIOD SCHEMAS
# ===========================================

class PayrollPeriodCreate(BaseModel):
    """Create payroll period request."""
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    pay_date: date
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_dates(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class PayrollPeriodUpdate(BaseModel):
    """Edit a draft payroll period; omitted fields are unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    pay_date: Optional[date] = None
    notes: Optional[str] = None
    actor_id: Optional[UUID] = None

    @model_validator(mode="after")
    def validate_dates(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class PayrollPeriodSummary(BaseModel):
    """Payroll period summary for lists."""
    id: UUID
    tenant_id: UUID
    name: str
    status: str
    start_date: date
    end_date: date
    pay_date: date
    employee_count: int
    failed_count: int
    total_gross: Decimal
    total_net: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class PayrollPeriodResponse(PayrollPeriodSummary):
    """Full payroll period response."""
    total_deductions: Decimal
    total_paye: Decimal
    total_pension: Decimal
    total_health: Decimal
    active_operation: Optional[str] = None
    processed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by_id: Optional[UUID] = None
    paid_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    locked_by_id: Optional[UUID] = None
    notes: Optional[str] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class PeriodApproveRequest(BaseModel):
    """Approve payroll period request."""
    actor_id: Optional[UUID] = None
    acknowledge_failures: bool = False


class PeriodMarkPaidRequest(BaseModel):
    """Mark payroll period paid request."""
    payment_reference: Optional[str] = Field(None, max_length=100)
    actor_id: Optional[UUID] = None


class PeriodLockRequest(BaseModel):
    """Lock payroll period request."""
    actor_id: Optional[UUID] = None


class PeriodSummaryResponse(BaseModel):
    """Succeeded/failed counts of a period with failure reasons."""
    period_id: UUID
    status: str
    employee_count: int
    succeeded: int
    failed: int
    failures: List[Dict[str, Any]] = []
    totals: Dict[str, Any] = {}


# ===========================================
# PAYROLL SCHEMAS
# ===========================================

class PayrollItemResponse(BaseModel):
    """Payroll line item."""
    id: UUID
    component_id: Optional[UUID] = None
    loan_id: Optional[UUID] = None
    name: str
    code: str
    item_type: str
    category: str
    amount: Decimal
    is_taxable: bool
    calculation_details: Dict[str, Any] = {}
    sort_order: int

    class Config:
        from_attributes = True


class PayrollSummary(BaseModel):
    """Per-employee payroll for lists."""
    id: UUID
    period_id: UUID
    employee_id: UUID
    status: str
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    failure_reason: Optional[str] = None

    class Config:
        from_attributes = True


class PayrollResponse(PayrollSummary):
    """Full per-employee payroll with its items."""
    total_earnings: Decimal
    taxable_income: Decimal
    paye_amount: Decimal
    pension_amount: Decimal
    health_amount: Decimal
    loan_deductions: Decimal
    other_deductions: Decimal
    warnings: List[Dict[str, Any]] = []
    payment_method: Optional[str] = None
    bank_account: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    items: List[PayrollItemResponse] = []

    class Config:
        from_attributes = True


class PayrollPaymentUpdate(BaseModel):
    """Correct how one employee payroll is disbursed."""
    payment_method: Optional[PaymentMethod] = None
    bank_account: Optional[str] = Field(None, min_length=1, max_length=100)
    actor_id: Optional[UUID] = None


# ===========================================
# REMITTANCE SCHEMAS
# ===========================================

class StatutoryRemittanceResponse(BaseModel):
    """Statutory remittance response."""
    id: UUID
    period_id: UUID
    tax_type: str
    amount: Decimal
    due_date: date
    status: str
    remitted_on: Optional[date] = None
    remittance_reference: Optional[str] = None

    class Config:
        from_attributes = True
