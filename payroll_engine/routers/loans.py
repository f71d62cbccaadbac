"""
Payroll Engine - Loans Router

API endpoints for employee loans and their repayment ledger.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.dependencies import get_db, get_audit_sink
from payroll_engine.models.loan import LoanStatus
from payroll_engine.services.interfaces import AuditSink
from payroll_engine.services.loan_ledger_service import LoanLedgerService
from payroll_engine.schemas.loan import (
    LoanApprove,
    LoanCreate,
    LoanRepaymentResponse,
    LoanResponse,
    LoanUpdate,
    LoanWriteOff,
    ManualRepaymentCreate,
)


router = APIRouter()


def get_loan_service(
    db: AsyncSession = Depends(get_db),
    audit_sink: AuditSink = Depends(get_audit_sink),
) -> LoanLedgerService:
    return LoanLedgerService(db, audit_sink)


@router.post(
    "",
    response_model=LoanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an employee loan",
)
async def create_loan(
    data: LoanCreate,
    tenant_id: uuid.UUID = Path(...),
    service: LoanLedgerService = Depends(get_loan_service),
):
    """Create a pending loan; it must be approved before payroll deducts from it."""
    loan = await service.create_loan(
        tenant_id=tenant_id,
        employee_id=data.employee_id,
        principal_amount=data.principal_amount,
        monthly_deduction=data.monthly_deduction,
        repayment_start_date=data.repayment_start_date,
        interest_rate=data.interest_rate,
        description=data.description,
        loan_number=data.loan_number,
    )
    await service.db.commit()
    return LoanResponse.model_validate(loan)


@router.get(
    "",
    response_model=List[LoanResponse],
    summary="List employee loans",
)
async def list_loans(
    tenant_id: uuid.UUID = Path(...),
    employee_id: Optional[uuid.UUID] = Query(None),
    loan_status: Optional[LoanStatus] = Query(None, alias="status"),
    service: LoanLedgerService = Depends(get_loan_service),
):
    loans = await service.list_loans(tenant_id, employee_id=employee_id, status=loan_status)
    return [LoanResponse.model_validate(loan) for loan in loans]


@router.get(
    "/{loan_id}",
    response_model=LoanResponse,
    summary="Get an employee loan",
)
async def get_loan(
    tenant_id: uuid.UUID = Path(...),
    loan_id: uuid.UUID = Path(...),
    service: LoanLedgerService = Depends(get_loan_service),
):
    loan = await service.get_loan(loan_id, tenant_id=tenant_id)
    return LoanResponse.model_validate(loan)


@router.patch(
    "/{loan_id}",
    response_model=LoanResponse,
    summary="Amend a pending loan",
)
async def update_loan(
    data: LoanUpdate,
    tenant_id: uuid.UUID = Path(...),
    loan_id: uuid.UUID = Path(...),
    service: LoanLedgerService = Depends(get_loan_service),
):
    """Change principal, rate, instalment or start date before approval."""
    await service.get_loan(loan_id, tenant_id=tenant_id)
    loan = await service.update_loan(
        loan_id,
        principal_amount=data.principal_amount,
        interest_rate=data.interest_rate,
        monthly_deduction=data.monthly_deduction,
        repayment_start_date=data.repayment_start_date,
        description=data.description,
        actor_id=data.actor_id,
    )
    await service.db.commit()
    return LoanResponse.model_validate(loan)


@router.post(
    "/{loan_id}/approve",
    response_model=LoanResponse,
    summary="Approve a pending loan",
)
async def approve_loan(
    data: LoanApprove,
    tenant_id: uuid.UUID = Path(...),
    loan_id: uuid.UUID = Path(...),
    service: LoanLedgerService = Depends(get_loan_service),
):
    await service.get_loan(loan_id, tenant_id=tenant_id)
    loan = await service.approve_loan(loan_id, actor_id=data.actor_id)
    await service.db.commit()
    return LoanResponse.model_validate(loan)


@router.post(
    "/{loan_id}/write-off",
    response_model=LoanResponse,
    summary="Write off an active loan",
)
async def write_off_loan(
    data: LoanWriteOff,
    tenant_id: uuid.UUID = Path(...),
    loan_id: uuid.UUID = Path(...),
    service: LoanLedgerService = Depends(get_loan_service),
):
    await service.get_loan(loan_id, tenant_id=tenant_id)
    loan = await service.write_off_loan(loan_id, reason=data.reason, actor_id=data.actor_id)
    await service.db.commit()
    return LoanResponse.model_validate(loan)


@router.post(
    "/{loan_id}/repayments",
    response_model=LoanRepaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a manual repayment",
)
async def record_repayment(
    data: ManualRepaymentCreate,
    tenant_id: uuid.UUID = Path(...),
    loan_id: uuid.UUID = Path(...),
    service: LoanLedgerService = Depends(get_loan_service),
):
    await service.get_loan(loan_id, tenant_id=tenant_id)
    repayment = await service.record_manual_repayment(
        loan_id,
        amount=data.amount,
        repayment_date=data.repayment_date,
        notes=data.notes,
        actor_id=data.actor_id,
    )
    await service.db.commit()
    return LoanRepaymentResponse.model_validate(repayment)


@router.get(
    "/{loan_id}/repayments",
    response_model=List[LoanRepaymentResponse],
    summary="List repayments of a loan",
)
async def list_repayments(
    tenant_id: uuid.UUID = Path(...),
    loan_id: uuid.UUID = Path(...),
    service: LoanLedgerService = Depends(get_loan_service),
):
    await service.get_loan(loan_id, tenant_id=tenant_id)
    repayments = await service.get_repayments(loan_id)
    return [LoanRepaymentResponse.model_validate(repayment) for repayment in repayments]
