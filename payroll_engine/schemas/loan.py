"""
Payroll Engine - Loan Schemas

Pydantic schemas for employee loan requests and responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class LoanCreate(BaseModel):
    """Create employee loan request."""
    employee_id: UUID
    principal_amount: Decimal = Field(..., gt=0)
    interest_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    monthly_deduction: Decimal = Field(..., gt=0)
    repayment_start_date: date
    description: Optional[str] = Field(None, max_length=500)
    loan_number: Optional[str] = Field(None, max_length=30)


class LoanUpdate(BaseModel):
    """Amend the terms of a pending loan; omitted fields are unchanged."""
    principal_amount: Optional[Decimal] = Field(None, gt=0)
    interest_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    monthly_deduction: Optional[Decimal] = Field(None, gt=0)
    repayment_start_date: Optional[date] = None
    description: Optional[str] = Field(None, max_length=500)
    actor_id: Optional[UUID] = None


class LoanWriteOff(BaseModel):
    """Write off loan request."""
    reason: str = Field(..., min_length=1, max_length=500)
    actor_id: Optional[UUID] = None


class LoanApprove(BaseModel):
    """Approve loan request."""
    actor_id: Optional[UUID] = None


class ManualRepaymentCreate(BaseModel):
    """Manual loan repayment request."""
    amount: Decimal = Field(..., gt=0)
    repayment_date: Optional[date] = None
    notes: Optional[str] = None
    actor_id: Optional[UUID] = None


class LoanResponse(BaseModel):
    """Employee loan response."""
    id: UUID
    tenant_id: UUID
    employee_id: UUID
    loan_number: str
    description: Optional[str] = None
    principal_amount: Decimal
    interest_rate: Decimal
    total_amount: Decimal
    monthly_deduction: Decimal
    repayment_start_date: date
    total_paid: Decimal
    remaining_balance: Decimal
    status: str
    approved_at: Optional[datetime] = None
    written_off_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LoanRepaymentResponse(BaseModel):
    """Loan repayment response."""
    id: UUID
    loan_id: UUID
    payroll_id: Optional[UUID] = None
    repayment_date: date
    amount: Decimal
    payment_type: str
    balance_after: Decimal
    notes: Optional[str] = None

    class Config:
        from_attributes = True
