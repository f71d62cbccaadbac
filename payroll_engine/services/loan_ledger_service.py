"""
Payroll Engine - Loan Ledger Service

Employee loans and their repayment ledger.

Ledger rules:
- total_amount = principal x (1 + interest_rate / 100)
- remaining_balance = total_amount - total_paid at all times
- remaining_balance never increases except when a payroll deduction is
  reversed for reprocessing, and never goes below zero
- a loan completes exactly when its balance reaches zero

Payroll deductions are written in the caller's transaction so the loan
balance and the Payroll that produced the deduction commit together.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.models.employee import Employee
from payroll_engine.models.loan import EmployeeLoan, LoanRepayment, LoanStatus, RepaymentType
from payroll_engine.services.audit_service import record_field_change
from payroll_engine.services.interfaces import AuditSink
from payroll_engine.utils.error_handling import (
    InvalidAmountException,
    InvalidTransitionException,
    LedgerInconsistencyException,
    LoanNotFoundException,
    NotFoundException,
    ValidationException,
    validate_amount,
)
from payroll_engine.utils.money import HUNDRED, ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoanDeduction:
    """Amount to deduct from one loan in a payroll run."""
    loan: EmployeeLoan
    amount: Decimal

    @property
    def loan_id(self) -> uuid.UUID:
        return self.loan.id


def payroll_repayment_id(payroll_id: uuid.UUID, loan_id: uuid.UUID) -> uuid.UUID:
    """Stable id of the repayment a payroll makes against a loan."""
    return uuid.uuid5(payroll_id, str(loan_id))


class LoanLedgerService:
    """Service for the employee loan ledger."""

    def __init__(self, db: AsyncSession, audit_sink: Optional[AuditSink] = None):
        self.db = db
        self.audit_sink = audit_sink

    def _audit(self, loan: EmployeeLoan, field: str, old, new, actor=None) -> None:
        record_field_change(self.audit_sink, "EmployeeLoan", loan.id, field, old, new, actor)

    # ===========================================
    # LOAN LIFECYCLE
    # ===========================================

    async def create_loan(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        principal_amount: Decimal,
        monthly_deduction: Decimal,
        repayment_start_date: date,
        interest_rate: Decimal = Decimal("0"),
        description: Optional[str] = None,
        loan_number: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> EmployeeLoan:
        """Create a pending loan; interest is a flat percentage of principal."""
        employee = await self.db.get(Employee, employee_id)
        if employee is None or employee.tenant_id != tenant_id:
            raise NotFoundException("Employee", employee_id)

        principal = validate_amount(principal_amount, field="principal_amount")
        monthly = validate_amount(monthly_deduction, field="monthly_deduction")
        rate = validate_amount(interest_rate, field="interest_rate", allow_zero=True)

        total = round_money(principal * (1 + rate / HUNDRED))

        loan = EmployeeLoan(
            tenant_id=tenant_id,
            employee_id=employee_id,
            loan_number=loan_number or f"LN-{repayment_start_date.year}-{uuid.uuid4().hex[:6].upper()}",
            description=description,
            principal_amount=round_money(principal),
            interest_rate=rate,
            total_amount=total,
            monthly_deduction=round_money(monthly),
            repayment_start_date=repayment_start_date,
            total_paid=ZERO,
            remaining_balance=total,
            status=LoanStatus.PENDING,
            created_by_id=created_by_id,
        )
        self.db.add(loan)
        await self.db.flush()

        logger.info(f"Created loan {loan.loan_number} for employee {employee_id}: total {total}")
        return loan

    async def get_loan(self, loan_id: uuid.UUID, tenant_id: Optional[uuid.UUID] = None) -> EmployeeLoan:
        loan = await self.db.get(EmployeeLoan, loan_id)
        if loan is None or (tenant_id is not None and loan.tenant_id != tenant_id):
            raise LoanNotFoundException(loan_id)
        return loan

    async def list_loans(
        self,
        tenant_id: uuid.UUID,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LoanStatus] = None,
    ) -> List[EmployeeLoan]:
        query = select(EmployeeLoan).where(EmployeeLoan.tenant_id == tenant_id)
        if employee_id is not None:
            query = query.where(EmployeeLoan.employee_id == employee_id)
        if status is not None:
            query = query.where(EmployeeLoan.status == status)
        result = await self.db.execute(query.order_by(EmployeeLoan.repayment_start_date, EmployeeLoan.loan_number))
        return list(result.scalars().all())

    async def get_repayments(self, loan_id: uuid.UUID) -> List[LoanRepayment]:
        result = await self.db.execute(
            select(LoanRepayment)
            .where(LoanRepayment.loan_id == loan_id)
            .order_by(LoanRepayment.repayment_date, LoanRepayment.created_at)
        )
        return list(result.scalars().all())

    async def get_repayments_by_payroll(self, payroll_id: uuid.UUID) -> List[LoanRepayment]:
        """Repayments a payroll made, one per loan it deducted from."""
        result = await self.db.execute(
            select(LoanRepayment)
            .where(LoanRepayment.payroll_id == payroll_id)
            .order_by(LoanRepayment.created_at, LoanRepayment.loan_id)
        )
        return list(result.scalars().all())

    async def update_loan(
        self,
        loan_id: uuid.UUID,
        principal_amount: Optional[Decimal] = None,
        interest_rate: Optional[Decimal] = None,
        monthly_deduction: Optional[Decimal] = None,
        repayment_start_date: Optional[date] = None,
        description: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeLoan:
        """
        Amend the terms of a pending loan.

        The total and remaining balance are recomputed from the new
        principal and interest rate. Terms are fixed once the loan is approved.
        """
        loan = await self.get_loan(loan_id)
        if loan.status != LoanStatus.PENDING:
            raise InvalidTransitionException("EmployeeLoan", loan.status.value, "update")

        principal = to_decimal(loan.principal_amount)
        rate = to_decimal(loan.interest_rate)
        changes = {}

        if principal_amount is not None:
            principal = round_money(validate_amount(principal_amount, field="principal_amount"))
            changes["principal_amount"] = principal
        if interest_rate is not None:
            rate = validate_amount(interest_rate, field="interest_rate", allow_zero=True)
            changes["interest_rate"] = rate
        if monthly_deduction is not None:
            changes["monthly_deduction"] = round_money(
                validate_amount(monthly_deduction, field="monthly_deduction")
            )
        if repayment_start_date is not None:
            changes["repayment_start_date"] = repayment_start_date
        if description is not None:
            changes["description"] = description

        if "principal_amount" in changes or "interest_rate" in changes:
            total = round_money(principal * (1 + rate / HUNDRED))
            changes["total_amount"] = total
            changes["remaining_balance"] = round_money(total - to_decimal(loan.total_paid))

        applied = []
        for key, value in changes.items():
            old = getattr(loan, key)
            if old != value:
                setattr(loan, key, value)
                applied.append((key, old, value))
        loan.updated_by_id = actor_id
        await self.db.flush()

        for key, old, value in applied:
            self._audit(loan, key, old, value, actor_id)
        logger.info(f"Updated loan {loan.loan_number}: total {loan.total_amount}")
        return loan

    async def approve_loan(self, loan_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> EmployeeLoan:
        """pending -> active"""
        loan = await self.get_loan(loan_id)
        if loan.status != LoanStatus.PENDING:
            raise InvalidTransitionException("EmployeeLoan", loan.status.value, "approve")

        loan.status = LoanStatus.ACTIVE
        loan.approved_by_id = actor_id
        loan.approved_at = datetime.now(timezone.utc)
        await self.db.flush()

        self._audit(loan, "status", LoanStatus.PENDING.value, LoanStatus.ACTIVE.value, actor_id)
        return loan

    async def write_off_loan(
        self,
        loan_id: uuid.UUID,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeLoan:
        """active -> written_off; a reason is mandatory."""
        if not reason or not reason.strip():
            raise ValidationException("A reason is required to write off a loan", field="reason")

        loan = await self.get_loan(loan_id)
        if loan.status != LoanStatus.ACTIVE:
            raise InvalidTransitionException("EmployeeLoan", loan.status.value, "write off")

        loan.status = LoanStatus.WRITTEN_OFF
        loan.written_off_reason = reason.strip()
        loan.written_off_at = datetime.now(timezone.utc)
        loan.written_off_by_id = actor_id
        await self.db.flush()

        self._audit(loan, "status", LoanStatus.ACTIVE.value, LoanStatus.WRITTEN_OFF.value, actor_id)
        return loan

    # ===========================================
    # REPAYMENTS
    # ===========================================

    def _check_balance(self, loan: EmployeeLoan) -> None:
        expected = round_money(to_decimal(loan.total_amount) - to_decimal(loan.total_paid))
        if round_money(loan.remaining_balance) != expected:
            raise LedgerInconsistencyException(
                loan.id,
                f"Loan {loan.loan_number} balance does not reconcile",
                remaining_balance=loan.remaining_balance,
                total_amount=loan.total_amount,
                total_paid=loan.total_paid,
            )

    def _apply(self, loan: EmployeeLoan, amount: Decimal, actor=None) -> Decimal:
        old_balance = round_money(loan.remaining_balance)
        new_balance = round_money(old_balance - amount)
        if new_balance < 0:
            raise LedgerInconsistencyException(
                loan.id,
                f"Repayment of {amount} exceeds remaining balance {old_balance} on loan {loan.loan_number}",
                amount=amount,
                remaining_balance=old_balance,
            )

        loan.remaining_balance = new_balance
        loan.total_paid = round_money(to_decimal(loan.total_paid) + amount)
        self._audit(loan, "remaining_balance", old_balance, new_balance, actor)

        if new_balance == 0:
            loan.status = LoanStatus.COMPLETED
            self._audit(loan, "status", LoanStatus.ACTIVE.value, LoanStatus.COMPLETED.value, actor)
        return new_balance

    async def record_manual_repayment(
        self,
        loan_id: uuid.UUID,
        amount: Decimal,
        repayment_date: Optional[date] = None,
        notes: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LoanRepayment:
        """Record a repayment made outside payroll."""
        loan = await self.get_loan(loan_id)
        if loan.status != LoanStatus.ACTIVE:
            raise InvalidTransitionException("EmployeeLoan", loan.status.value, "record a repayment on")

        amount = round_money(validate_amount(amount))
        if amount > round_money(loan.remaining_balance):
            raise InvalidAmountException(
                amount,
                message=f"Repayment of {amount} exceeds the remaining balance of {round_money(loan.remaining_balance)}",
            )

        self._check_balance(loan)
        balance_after = self._apply(loan, amount, actor_id)

        repayment = LoanRepayment(
            loan_id=loan.id,
            amount=amount,
            repayment_date=repayment_date or date.today(),
            payment_type=RepaymentType.MANUAL,
            balance_after=balance_after,
            notes=notes,
        )
        self.db.add(repayment)
        await self.db.flush()
        return repayment

    async def due_deductions(self, employee_id: uuid.UUID, pay_date: date) -> List[LoanDeduction]:
        """
        Deductions owed by an employee for a pay date.

        Active loans whose repayment has started; the final installment is
        capped at the remaining balance.
        """
        result = await self.db.execute(
            select(EmployeeLoan)
            .where(
                and_(
                    EmployeeLoan.employee_id == employee_id,
                    EmployeeLoan.status == LoanStatus.ACTIVE,
                    EmployeeLoan.repayment_start_date <= pay_date,
                    EmployeeLoan.remaining_balance > 0,
                )
            )
            .order_by(EmployeeLoan.repayment_start_date, EmployeeLoan.loan_number)
        )
        deductions = []
        for loan in result.scalars().all():
            amount = min(round_money(loan.monthly_deduction), round_money(loan.remaining_balance))
            if amount > 0:
                deductions.append(LoanDeduction(loan=loan, amount=amount))
        return deductions

    async def apply_payroll_deduction(
        self,
        loan: EmployeeLoan,
        amount: Decimal,
        payroll_id: uuid.UUID,
        repayment_date: date,
    ) -> LoanRepayment:
        """
        Record a payroll deduction against a loan in the current transaction.

        Raises:
            LedgerInconsistencyException: If the loan is not active, the
                balance does not reconcile, or the deduction would overdraw it
        """
        amount = round_money(amount)
        if loan.status != LoanStatus.ACTIVE:
            raise LedgerInconsistencyException(
                loan.id, f"Loan {loan.loan_number} is {loan.status.value}, not active", status=loan.status.value,
            )
        if amount <= 0:
            raise LedgerInconsistencyException(loan.id, "Payroll deduction must be positive", amount=amount)

        self._check_balance(loan)
        balance_after = self._apply(loan, amount)

        repayment = LoanRepayment(
            id=payroll_repayment_id(payroll_id, loan.id),
            loan_id=loan.id,
            payroll_id=payroll_id,
            amount=amount,
            repayment_date=repayment_date,
            payment_type=RepaymentType.PAYROLL_DEDUCTION,
            balance_after=balance_after,
        )
        self.db.add(repayment)
        await self.db.flush()
        return repayment

    async def reverse_payroll_repayments(self, payroll_ids: Iterable[uuid.UUID]) -> int:
        """
        Undo the loan deductions made by the given payrolls.

        Balances are restored, completed loans reopen, and the repayment rows
        are removed. Returns the number of repayments reversed.

        Raises:
            LedgerInconsistencyException: If a loan is missing or the restored
                balance would exceed the loan total
        """
        payroll_ids = list(payroll_ids)
        if not payroll_ids:
            return 0

        result = await self.db.execute(
            select(LoanRepayment)
            .where(
                and_(
                    LoanRepayment.payroll_id.in_(payroll_ids),
                    LoanRepayment.payment_type == RepaymentType.PAYROLL_DEDUCTION,
                )
            )
            .order_by(LoanRepayment.loan_id)
        )
        repayments = list(result.scalars().all())

        for repayment in repayments:
            loan = await self.db.get(EmployeeLoan, repayment.loan_id)
            if loan is None:
                raise LedgerInconsistencyException(
                    repayment.loan_id,
                    f"Loan for repayment {repayment.id} not found",
                    repayment_id=repayment.id,
                )

            self._check_balance(loan)
            amount = round_money(repayment.amount)
            old_balance = round_money(loan.remaining_balance)
            restored = round_money(old_balance + amount)
            total_paid = round_money(to_decimal(loan.total_paid) - amount)
            if restored > round_money(loan.total_amount) or total_paid < 0:
                raise LedgerInconsistencyException(
                    loan.id,
                    f"Reversing repayment {repayment.id} would exceed loan {loan.loan_number} total",
                    amount=amount,
                    remaining_balance=old_balance,
                    total_amount=loan.total_amount,
                )

            loan.remaining_balance = restored
            loan.total_paid = total_paid
            self._audit(loan, "remaining_balance", old_balance, restored)
            if loan.status == LoanStatus.COMPLETED and restored > 0:
                loan.status = LoanStatus.ACTIVE
                self._audit(loan, "status", LoanStatus.COMPLETED.value, LoanStatus.ACTIVE.value)

            await self.db.delete(repayment)

        await self.db.flush()
        if repayments:
            logger.info(f"Reversed {len(repayments)} payroll loan repayments")
        return len(repayments)
