"""
Payroll Engine - Payroll Periods Router

API endpoints for the payroll period lifecycle: create, process, approve,
mark paid and lock, plus per-employee payroll results and remittances.

Domain errors are translated to JSON responses by the shared exception
handlers.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.dependencies import get_db, get_period_service
from payroll_engine.models.payroll import PayrollPeriodStatus, PayrollStatus
from payroll_engine.services.loan_ledger_service import LoanLedgerService
from payroll_engine.services.payroll_period_service import PayrollPeriodService
from payroll_engine.services.remittance_service import RemittanceService
from payroll_engine.utils.error_handling import NotFoundException
from payroll_engine.schemas.loan import LoanRepaymentResponse
from payroll_engine.schemas.payroll_period import (
    PayrollPaymentUpdate,
    PayrollPeriodCreate,
    PayrollPeriodResponse,
    PayrollPeriodSummary,
    PayrollPeriodUpdate,
    PeriodApproveRequest,
    PeriodMarkPaidRequest,
    PeriodLockRequest,
    PeriodSummaryResponse,
    PayrollResponse,
    PayrollSummary,
    StatutoryRemittanceResponse,
)


router = APIRouter()


# ===========================================
# PERIOD ENDPOINTS
# ===========================================

@router.post(
    "",
    response_model=PayrollPeriodResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payroll period",
)
async def create_period(
    data: PayrollPeriodCreate,
    tenant_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    """Create a draft period; dates may not overlap another period of the tenant."""
    period = await service.create_period(
        tenant_id=tenant_id,
        name=data.name,
        start_date=data.start_date,
        end_date=data.end_date,
        pay_date=data.pay_date,
        notes=data.notes,
    )
    return PayrollPeriodResponse.model_validate(period)


@router.get(
    "",
    response_model=List[PayrollPeriodSummary],
    summary="List payroll periods",
)
async def list_periods(
    tenant_id: uuid.UUID = Path(...),
    period_status: Optional[PayrollPeriodStatus] = Query(None, alias="status"),
    service: PayrollPeriodService = Depends(get_period_service),
):
    periods = await service.list_periods(tenant_id, status=period_status)
    return [PayrollPeriodSummary.model_validate(period) for period in periods]


@router.get(
    "/{period_id}",
    response_model=PayrollPeriodResponse,
    summary="Get a payroll period",
)
async def get_period(
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    period = await service.get_period(period_id, tenant_id=tenant_id)
    return PayrollPeriodResponse.model_validate(period)


@router.delete(
    "/{period_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a draft payroll period",
)
async def delete_period(
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    await service.get_period(period_id, tenant_id=tenant_id)
    await service.delete_period(period_id)


@router.patch(
    "/{period_id}",
    response_model=PayrollPeriodResponse,
    summary="Edit a draft payroll period",
)
async def update_period(
    data: PayrollPeriodUpdate,
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    """Rename or re-date a draft period; new dates are re-checked for overlap."""
    await service.get_period(period_id, tenant_id=tenant_id)
    period = await service.update_period(
        period_id,
        name=data.name,
        start_date=data.start_date,
        end_date=data.end_date,
        pay_date=data.pay_date,
        notes=data.notes,
        actor_id=data.actor_id,
    )
    return PayrollPeriodResponse.model_validate(period)


# ===========================================
# LIFECYCLE ENDPOINTS
# ===========================================

@router.post(
    "/{period_id}/process",
    response_model=PeriodSummaryResponse,
    summary="Process payroll for all active employees",
)
async def process_period(
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    """Calculate every employee's payroll; failures are reported, not raised."""
    await service.get_period(period_id, tenant_id=tenant_id)
    summary = await service.process(period_id)
    return PeriodSummaryResponse(**summary.to_dict())


@router.post(
    "/{period_id}/approve",
    response_model=PayrollPeriodResponse,
    summary="Approve a processed payroll period",
)
async def approve_period(
    data: PeriodApproveRequest,
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    await service.get_period(period_id, tenant_id=tenant_id)
    period = await service.approve(
        period_id,
        actor_id=data.actor_id,
        acknowledge_failures=data.acknowledge_failures,
    )
    return PayrollPeriodResponse.model_validate(period)


@router.post(
    "/{period_id}/mark-paid",
    response_model=PayrollPeriodResponse,
    summary="Mark an approved payroll period as paid",
)
async def mark_period_paid(
    data: PeriodMarkPaidRequest,
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    await service.get_period(period_id, tenant_id=tenant_id)
    period = await service.mark_paid(
        period_id,
        payment_reference=data.payment_reference,
        actor_id=data.actor_id,
    )
    return PayrollPeriodResponse.model_validate(period)


@router.post(
    "/{period_id}/lock",
    response_model=PayrollPeriodResponse,
    summary="Lock a payroll period",
    description="Freezes all payrolls and emits statutory remittances. Safe to retry.",
)
async def lock_period(
    data: PeriodLockRequest,
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    await service.get_period(period_id, tenant_id=tenant_id)
    period = await service.lock(period_id, actor_id=data.actor_id)
    return PayrollPeriodResponse.model_validate(period)


@router.get(
    "/{period_id}/summary",
    response_model=PeriodSummaryResponse,
    summary="Get succeeded/failed counts for a period",
)
async def get_period_summary(
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    await service.get_period(period_id, tenant_id=tenant_id)
    summary = await service.get_period_summary(period_id)
    return PeriodSummaryResponse(**summary.to_dict())


# ===========================================
# PAYROLL & REMITTANCE ENDPOINTS
# ===========================================

async def _period_payroll(service: PayrollPeriodService, tenant_id, period_id, payroll_id):
    await service.get_period(period_id, tenant_id=tenant_id)
    payroll = await service.calculation_service.get_payroll(payroll_id)
    if payroll.period_id != period_id:
        raise NotFoundException("Payroll", payroll_id)
    return payroll


@router.get(
    "/{period_id}/payrolls",
    response_model=List[PayrollSummary],
    summary="List employee payrolls of a period",
)
async def list_period_payrolls(
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    payroll_status: Optional[PayrollStatus] = Query(None, alias="status"),
    service: PayrollPeriodService = Depends(get_period_service),
):
    await service.get_period(period_id, tenant_id=tenant_id)
    payrolls = await service.calculation_service.list_period_payrolls(period_id, status=payroll_status)
    return [PayrollSummary.model_validate(payroll) for payroll in payrolls]


@router.get(
    "/{period_id}/payrolls/{payroll_id}",
    response_model=PayrollResponse,
    summary="Get an employee payroll with its line items",
)
async def get_payroll(
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    payroll_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    payroll = await _period_payroll(service, tenant_id, period_id, payroll_id)
    return PayrollResponse.model_validate(payroll)


@router.patch(
    "/{period_id}/payrolls/{payroll_id}",
    response_model=PayrollResponse,
    summary="Correct the payment details of an employee payroll",
)
async def update_payroll_payment(
    data: PayrollPaymentUpdate,
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    payroll_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
):
    """Refused once the payroll is paid or its period is locked."""
    await _period_payroll(service, tenant_id, period_id, payroll_id)
    payroll = await service.calculation_service.update_payroll_payment(
        payroll_id,
        payment_method=data.payment_method,
        bank_account=data.bank_account,
        actor_id=data.actor_id,
    )
    return PayrollResponse.model_validate(payroll)


@router.get(
    "/{period_id}/payrolls/{payroll_id}/loan-repayments",
    response_model=List[LoanRepaymentResponse],
    summary="List loan repayments deducted by an employee payroll",
)
async def list_payroll_loan_repayments(
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    payroll_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
    db: AsyncSession = Depends(get_db),
):
    await _period_payroll(service, tenant_id, period_id, payroll_id)
    repayments = await LoanLedgerService(db).get_repayments_by_payroll(payroll_id)
    return [LoanRepaymentResponse.model_validate(repayment) for repayment in repayments]


@router.get(
    "/{period_id}/remittances",
    response_model=List[StatutoryRemittanceResponse],
    summary="List statutory remittances emitted for a period",
)
async def list_period_remittances(
    tenant_id: uuid.UUID = Path(...),
    period_id: uuid.UUID = Path(...),
    service: PayrollPeriodService = Depends(get_period_service),
    db: AsyncSession = Depends(get_db),
):
    await service.get_period(period_id, tenant_id=tenant_id)
    remittances = await RemittanceService(db).list_period_remittances(period_id)
    return [StatutoryRemittanceResponse.model_validate(remittance) for remittance in remittances]
