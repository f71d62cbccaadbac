"""
Payroll Engine - Payroll Calculation Service

Per-employee payroll pipeline:
1. Resolve the salary structure on the period end date
2. Gross pay = sum of earnings; taxable income = sum of taxable earnings
3. PAYE on taxable income; pension and health on gross pay
4. Loan deductions due on the pay date (capped at the remaining balance)
5. Other deductions from non-statutory deduction components
6. Total deductions = PAYE + pension + health + loans + other
7. Net pay = gross - total deductions; negative net fails the employee
8. Persist the Payroll and its items
9. Record loan repayments in the same transaction

Each employee runs in its own session and transaction so that one failure
never aborts the rest of the period.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from payroll_engine.models.employee import PaymentMethod
from payroll_engine.models.payroll import (
    PayItemType,
    Payroll,
    PayrollItem,
    PayrollPeriod,
    PayrollStatus,
)
from payroll_engine.services.audit_service import record_field_change
from payroll_engine.services.interfaces import AuditSink, EmployeeRecord
from payroll_engine.services.loan_ledger_service import LoanDeduction, LoanLedgerService
from payroll_engine.services.salary_structure_service import ResolvedComponent, SalaryStructureService
from payroll_engine.services.statutory_rate_service import ResolvedStatutoryConfig, StatutoryRateService
from payroll_engine.services.tax_calculators import (
    compute_health_contribution,
    compute_paye,
    compute_pension_contribution,
)
from payroll_engine.utils.error_handling import (
    AppException,
    ConfigurationGap,
    InvalidTransitionException,
    LedgerInconsistencyException,
    NotFoundException,
    PeriodLockedException,
    ValidationException,
)
from payroll_engine.utils.money import ZERO, round_money, sum_money

logger = logging.getLogger(__name__)


PAYROLL_NAMESPACE = uuid.UUID("6f1c2a4e-3b7d-5e8f-9a0b-1c2d3e4f5a6b")


def payroll_id_for(period_id: uuid.UUID, employee_id: uuid.UUID) -> uuid.UUID:
    """Payroll ids are stable per (period, employee) so reprocessing rebuilds the same rows."""
    return uuid.uuid5(PAYROLL_NAMESPACE, f"{period_id}:{employee_id}")


def payroll_item_id_for(payroll_id: uuid.UUID, sort_order: int, code: str) -> uuid.UUID:
    return uuid.uuid5(payroll_id, f"{sort_order}:{code}")


# ===========================================
# CALCULATION RESULT
# ===========================================

@dataclass(frozen=True)
class PayrollLine:
    """One earning or deduction line of a calculated payroll."""
    code: str
    name: str
    item_type: PayItemType
    category: str
    amount: Decimal
    is_taxable: bool = False
    component_id: Optional[uuid.UUID] = None
    loan_id: Optional[uuid.UUID] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PayrollCalculation:
    """Figures for one employee before persistence."""
    gross_pay: Decimal
    total_earnings: Decimal
    taxable_income: Decimal
    paye: Decimal
    pension: Decimal
    health: Decimal
    loan_deductions: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    lines: List[PayrollLine] = field(default_factory=list)
    gaps: List[ConfigurationGap] = field(default_factory=list)

    @property
    def statutory_total(self) -> Decimal:
        return round_money(self.paye + self.pension + self.health)

    @property
    def has_negative_net(self) -> bool:
        return self.net_pay < 0

    @property
    def warnings(self) -> List[Dict[str, Any]]:
        return [gap.to_dict() for gap in self.gaps]


def calculate_employee_payroll(
    components: Sequence[ResolvedComponent],
    statutory: ResolvedStatutoryConfig,
    loan_deductions: Sequence[LoanDeduction] = (),
    structure_gaps: Sequence[ConfigurationGap] = (),
) -> PayrollCalculation:
    """
    Calculate one employee's payroll from a resolved structure.

    Pure function: no I/O. Statutory deduction components in the structure
    are not counted; the statutory amounts come from the configured rates.
    """
    gaps: List[ConfigurationGap] = list(structure_gaps) + list(statutory.gaps)
    lines: List[PayrollLine] = []

    earnings = [c for c in components if c.is_earning]
    gross_pay = sum_money(c.amount for c in earnings)
    taxable_income = sum_money(c.amount for c in earnings if c.is_taxable)

    for component in earnings:
        lines.append(PayrollLine(
            code=component.code,
            name=component.name,
            item_type=PayItemType.EARNING,
            category=component.category.value,
            amount=round_money(component.amount),
            is_taxable=component.is_taxable,
            component_id=component.component_id,
            details=dict(component.details),
        ))

    # Statutory
    paye = pension = health = ZERO
    if statutory.paye is not None:
        paye_result = compute_paye(taxable_income, statutory.paye.brackets, statutory.paye.relief)
        paye = paye_result.amount
        if paye_result.gap is not None:
            gaps.append(paye_result.gap)
        lines.append(PayrollLine(
            code="PAYE", name="PAYE", item_type=PayItemType.DEDUCTION, category="statutory",
            amount=paye, details=paye_result.to_details(),
        ))

    if statutory.pension is not None:
        pension_result = compute_pension_contribution(gross_pay, statutory.pension.rate, statutory.pension.cap)
        pension = pension_result.amount
        lines.append(PayrollLine(
            code="PENSION", name="Pension Contribution", item_type=PayItemType.DEDUCTION, category="statutory",
            amount=pension, details=pension_result.to_details(),
        ))

    if statutory.health is not None:
        health_result = compute_health_contribution(gross_pay, statutory.health.tiers)
        health = health_result.amount
        if health_result.gap is not None:
            gaps.append(health_result.gap)
        lines.append(PayrollLine(
            code="HEALTH", name="Health Contribution", item_type=PayItemType.DEDUCTION, category="statutory",
            amount=health, details=health_result.to_details(),
        ))

    # Loans
    loan_total = ZERO
    for deduction in loan_deductions:
        loan = deduction.loan
        loan_total += deduction.amount
        lines.append(PayrollLine(
            code=f"LOAN-{loan.loan_number}",
            name=f"Loan Repayment {loan.loan_number}",
            item_type=PayItemType.DEDUCTION,
            category="loan",
            amount=round_money(deduction.amount),
            loan_id=loan.id,
            details={
                "monthly_deduction": str(round_money(loan.monthly_deduction)),
                "remaining_balance_before": str(round_money(loan.remaining_balance)),
            },
        ))
    loan_total = round_money(loan_total)

    # Other deductions
    other = [c for c in components if not c.is_earning and not c.is_statutory]
    other_total = sum_money(c.amount for c in other)
    for component in other:
        lines.append(PayrollLine(
            code=component.code,
            name=component.name,
            item_type=PayItemType.DEDUCTION,
            category=component.category.value,
            amount=round_money(component.amount),
            component_id=component.component_id,
            details=dict(component.details),
        ))

    total_deductions = round_money(paye + pension + health + loan_total + other_total)
    return PayrollCalculation(
        gross_pay=gross_pay,
        total_earnings=gross_pay,
        taxable_income=taxable_income,
        paye=paye,
        pension=pension,
        health=health,
        loan_deductions=loan_total,
        other_deductions=other_total,
        total_deductions=total_deductions,
        net_pay=round_money(gross_pay - total_deductions),
        lines=lines,
        gaps=gaps,
    )


# ===========================================
# PERSISTENCE
# ===========================================

@dataclass(frozen=True)
class PeriodContext:
    """Detached view of the period being processed."""
    id: uuid.UUID
    tenant_id: uuid.UUID
    start_date: date
    end_date: date
    pay_date: date

    @classmethod
    def from_period(cls, period: PayrollPeriod) -> "PeriodContext":
        return cls(
            id=period.id,
            tenant_id=period.tenant_id,
            start_date=period.start_date,
            end_date=period.end_date,
            pay_date=period.pay_date,
        )


@dataclass(frozen=True)
class EmployeeOutcome:
    """Result of one employee pipeline."""
    employee_id: uuid.UUID
    payroll_id: Optional[uuid.UUID]
    status: PayrollStatus
    reason: Optional[str] = None
    net_pay: Optional[Decimal] = None

    @property
    def failed(self) -> bool:
        return self.status == PayrollStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "payroll_id": str(self.payroll_id) if self.payroll_id else None,
            "status": self.status.value,
            "reason": self.reason,
            "net_pay": str(self.net_pay) if self.net_pay is not None else None,
        }


class PayrollCalculationService:
    """Runs the per-employee pipeline and reads payroll results."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.session_factory = session_factory
        self.audit_sink = audit_sink

    async def process_employee(
        self,
        period: PeriodContext,
        employee: EmployeeRecord,
        statutory: Optional[ResolvedStatutoryConfig] = None,
    ) -> EmployeeOutcome:
        """
        Calculate and persist one employee's payroll.

        Never raises for employee-level problems: failures are written as a
        failed Payroll and reported in the outcome.
        """
        payroll_id = payroll_id_for(period.id, employee.id)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    return await self._calculate_and_persist(session, period, employee, statutory, payroll_id)
        except LedgerInconsistencyException as e:
            logger.error(f"Ledger inconsistency for employee {employee.employee_number}: {e.message}")
            reason = f"Loan ledger inconsistency: {e.message}"
        except AppException as e:
            logger.warning(f"Payroll failed for employee {employee.employee_number}: {e.message}")
            reason = e.message
        except Exception as e:
            logger.exception(f"Unexpected error processing employee {employee.employee_number}")
            reason = f"Unexpected error: {e}"

        return await self._record_failure(period, employee, payroll_id, reason)

    async def _clear_existing(self, session: AsyncSession, payroll_id: uuid.UUID) -> None:
        existing = await session.get(Payroll, payroll_id)
        if existing is None:
            return
        if existing.locked_at is not None:
            raise PeriodLockedException(existing.period_id, operation="reprocess")

        ledger = LoanLedgerService(session, self.audit_sink)
        await ledger.reverse_payroll_repayments([payroll_id])
        await session.execute(
            delete(PayrollItem)
            .where(PayrollItem.payroll_id == payroll_id)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(Payroll)
            .where(Payroll.id == payroll_id)
            .execution_options(synchronize_session=False)
        )
        session.expunge(existing)

    async def _calculate_and_persist(
        self,
        session: AsyncSession,
        period: PeriodContext,
        employee: EmployeeRecord,
        statutory: Optional[ResolvedStatutoryConfig],
        payroll_id: uuid.UUID,
    ) -> EmployeeOutcome:
        await self._clear_existing(session, payroll_id)

        if statutory is None:
            statutory = await StatutoryRateService(session).resolve(employee.country, period.end_date)

        components, structure_gaps = await SalaryStructureService(session).resolve_structure(
            employee.id, period.end_date,
        )
        ledger = LoanLedgerService(session, self.audit_sink)
        loan_deductions = await ledger.due_deductions(employee.id, period.pay_date)

        calculation = calculate_employee_payroll(components, statutory, loan_deductions, structure_gaps)

        payroll = Payroll(
            id=payroll_id,
            tenant_id=period.tenant_id,
            period_id=period.id,
            employee_id=employee.id,
            gross_pay=calculation.gross_pay,
            total_earnings=calculation.total_earnings,
            taxable_income=calculation.taxable_income,
            paye_amount=calculation.paye,
            pension_amount=calculation.pension,
            health_amount=calculation.health,
            loan_deductions=calculation.loan_deductions,
            other_deductions=calculation.other_deductions,
            total_deductions=calculation.total_deductions,
            net_pay=calculation.net_pay,
            warnings=calculation.warnings,
            payment_method=employee.payment_method,
            bank_account=employee.bank_account,
        )

        if calculation.has_negative_net:
            reason = f"Negative net pay: {calculation.net_pay}"
            logger.warning(f"Employee {employee.employee_number} flagged failed: {reason}")
            payroll.status = PayrollStatus.FAILED
            payroll.failure_reason = reason
            session.add(payroll)
            await session.flush()
            return EmployeeOutcome(employee.id, payroll_id, PayrollStatus.FAILED, reason, calculation.net_pay)

        payroll.status = PayrollStatus.CALCULATED
        session.add(payroll)
        await session.flush()

        for sort_order, line in enumerate(calculation.lines):
            session.add(PayrollItem(
                id=payroll_item_id_for(payroll_id, sort_order, line.code),
                payroll_id=payroll_id,
                component_id=line.component_id,
                loan_id=line.loan_id,
                name=line.name,
                code=line.code,
                item_type=line.item_type,
                category=line.category,
                amount=line.amount,
                is_taxable=line.is_taxable,
                calculation_details=line.details,
                sort_order=sort_order,
            ))
        await session.flush()

        for deduction in loan_deductions:
            await ledger.apply_payroll_deduction(deduction.loan, deduction.amount, payroll_id, period.pay_date)

        logger.debug(
            f"Calculated payroll for {employee.employee_number}: gross {calculation.gross_pay}, "
            f"deductions {calculation.total_deductions}, net {calculation.net_pay}"
        )
        return EmployeeOutcome(employee.id, payroll_id, PayrollStatus.CALCULATED, None, calculation.net_pay)

    async def _record_failure(
        self,
        period: PeriodContext,
        employee: EmployeeRecord,
        payroll_id: uuid.UUID,
        reason: str,
    ) -> EmployeeOutcome:
        """Write a failed Payroll in a fresh transaction after the pipeline rolled back."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._clear_existing(session, payroll_id)
                    session.add(Payroll(
                        id=payroll_id,
                        tenant_id=period.tenant_id,
                        period_id=period.id,
                        employee_id=employee.id,
                        status=PayrollStatus.FAILED,
                        failure_reason=reason,
                        warnings=[],
                        payment_method=employee.payment_method,
                        bank_account=employee.bank_account,
                    ))
        except Exception:
            logger.exception(f"Could not record failed payroll for employee {employee.employee_number}")
            return EmployeeOutcome(employee.id, None, PayrollStatus.FAILED, reason)

        return EmployeeOutcome(employee.id, payroll_id, PayrollStatus.FAILED, reason)

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_payroll(self, payroll_id: uuid.UUID) -> Payroll:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Payroll)
                .options(selectinload(Payroll.items))
                .where(Payroll.id == payroll_id)
            )
            payroll = result.scalar_one_or_none()
        if payroll is None:
            raise NotFoundException("Payroll", payroll_id)
        return payroll

    async def list_period_payrolls(
        self,
        period_id: uuid.UUID,
        status: Optional[PayrollStatus] = None,
    ) -> List[Payroll]:
        query = select(Payroll).where(Payroll.period_id == period_id)
        if status is not None:
            query = query.where(Payroll.status == status)
        async with self.session_factory() as session:
            result = await session.execute(query.order_by(Payroll.employee_id))
            return list(result.scalars().all())

    async def update_payroll_payment(
        self,
        payroll_id: uuid.UUID,
        payment_method: Optional[str] = None,
        bank_account: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Payroll:
        """
        Correct the disbursement details of one payroll before it is paid.

        Reprocessing the period copies the details from the employee record
        again, so a correction only lasts until the next process run.

        Raises:
            PeriodLockedException: If the payroll is locked
            InvalidTransitionException: If the payroll is already paid
        """
        if payment_method is not None:
            try:
                payment_method = PaymentMethod(payment_method).value
            except ValueError:
                raise ValidationException(f"Unknown payment method: {payment_method}", field="payment_method")

        payroll = await self.get_payroll(payroll_id)
        if payroll.is_locked:
            raise PeriodLockedException(payroll.period_id, operation="payment details change")
        if payroll.status == PayrollStatus.PAID:
            raise InvalidTransitionException("Payroll", payroll.status.value, "change payment details of")

        changes = {
            key: (getattr(payroll, key), value)
            for key, value in (("payment_method", payment_method), ("bank_account", bank_account))
            if value is not None and value != getattr(payroll, key)
        }
        if not changes:
            return payroll

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Payroll)
                    .where(
                        and_(
                            Payroll.id == payroll_id,
                            Payroll.locked_at.is_(None),
                            Payroll.status != PayrollStatus.PAID,
                        )
                    )
                    .values(**{key: new for key, (_, new) in changes.items()})
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise PeriodLockedException(payroll.period_id, operation="payment details change")

        for key, (old, new) in changes.items():
            record_field_change(self.audit_sink, "Payroll", payroll_id, key, old, new, actor_id)

        logger.info(f"Updated payment details of payroll {payroll_id}: {', '.join(sorted(changes))}")
        return await self.get_payroll(payroll_id)
