"""
Payroll Engine - Payroll Period Service

Period lifecycle: create, process, approve, mark paid and lock.

    draft -> processing -> pending_approval -> approved -> (paid) -> locked

process, approve, mark_paid and lock each take an operation lease on the
period row with a status-guarded UPDATE. A lease left behind by a crashed
worker expires after PERIOD_OPERATION_STALE_SECONDS. Period totals are a
cache of the child Payroll rows and are recomputed after processing and
verified again before approval.

Reprocessing is all-or-nothing per period: every Payroll of the period is
removed (reversing its loan repayments) before employees are recalculated.
"""

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update, delete, exists, func, and_, or_, case
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from payroll_engine.config import settings
from payroll_engine.models.payroll import (
    IN_FLIGHT_PERIOD_STATUSES,
    Payroll,
    PayrollItem,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollStatus,
)
from payroll_engine.models.statutory import StatutoryRateType
from payroll_engine.services import interfaces
from payroll_engine.services.audit_service import record_field_change
from payroll_engine.services.interfaces import (
    AuditSink,
    EmployeeDirectory,
    EmployeeRecord,
    NotificationSink,
    RemittanceSink,
)
from payroll_engine.services.loan_ledger_service import LoanLedgerService
from payroll_engine.services.notification_service import EventOutbox
from payroll_engine.services.payroll_calculation_service import (
    EmployeeOutcome,
    PayrollCalculationService,
    PeriodContext,
)
from payroll_engine.services.remittance_service import calculate_due_date
from payroll_engine.services.statutory_rate_service import ResolvedStatutoryConfig, StatutoryRateService
from payroll_engine.utils.error_handling import (
    BusinessRuleException,
    ConcurrencyConflictException,
    ErrorCode,
    InvalidDateRangeException,
    InvalidTransitionException,
    PeriodNotFoundException,
    PeriodOverlapException,
    ValidationException,
)
from payroll_engine.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


PROCESSABLE_STATUSES = (
    PayrollPeriodStatus.DRAFT,
    PayrollPeriodStatus.PROCESSING,
    PayrollPeriodStatus.PENDING_APPROVAL,
)
LOCKABLE_STATUSES = (PayrollPeriodStatus.APPROVED, PayrollPeriodStatus.PAID)


# ===========================================
# RESULT TYPES
# ===========================================

@dataclass(frozen=True)
class PeriodTotals:
    """Aggregates recomputed from the non-failed Payroll rows of a period."""
    employee_count: int = 0
    failed_count: int = 0
    total_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net: Decimal = ZERO
    total_paye: Decimal = ZERO
    total_pension: Decimal = ZERO
    total_health: Decimal = ZERO

    @classmethod
    def from_period(cls, period: PayrollPeriod) -> "PeriodTotals":
        return cls(
            employee_count=period.employee_count or 0,
            failed_count=period.failed_count or 0,
            total_gross=round_money(period.total_gross),
            total_deductions=round_money(period.total_deductions),
            total_net=round_money(period.total_net),
            total_paye=round_money(period.total_paye),
            total_pension=round_money(period.total_pension),
            total_health=round_money(period.total_health),
        )

    def as_values(self) -> Dict[str, Any]:
        """Column values for the cached totals on the period row."""
        return {
            "employee_count": self.employee_count,
            "failed_count": self.failed_count,
            "total_gross": self.total_gross,
            "total_deductions": self.total_deductions,
            "total_net": self.total_net,
            "total_paye": self.total_paye,
            "total_pension": self.total_pension,
            "total_health": self.total_health,
        }

    def tax_totals(self) -> Dict[StatutoryRateType, Decimal]:
        return {
            StatutoryRateType.PAYE: self.total_paye,
            StatutoryRateType.PENSION: self.total_pension,
            StatutoryRateType.HEALTH: self.total_health,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: value if isinstance(value, int) else str(value)
            for key, value in self.as_values().items()
        }


@dataclass
class PeriodProcessSummary:
    """Outcome of a process run, or the current state of a period."""
    period_id: uuid.UUID
    status: PayrollPeriodStatus
    employee_count: int
    succeeded: int
    failed: int
    failures: List[Dict[str, Any]] = field(default_factory=list)
    totals: PeriodTotals = field(default_factory=PeriodTotals)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period_id": str(self.period_id),
            "status": self.status.value,
            "employee_count": self.employee_count,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": self.failures,
            "totals": self.totals.to_dict(),
        }


# ===========================================
# SERVICE
# ===========================================

class PayrollPeriodService:
    """Service driving the payroll period state machine."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        directory: EmployeeDirectory,
        notification_sink: Optional[NotificationSink] = None,
        remittance_sink: Optional[RemittanceSink] = None,
        audit_sink: Optional[AuditSink] = None,
        outbox: Optional[EventOutbox] = None,
    ):
        self.session_factory = session_factory
        self.directory = directory
        self.remittance_sink = remittance_sink
        self.audit_sink = audit_sink
        self.outbox = outbox or EventOutbox(notification_sink)
        self.calculation_service = PayrollCalculationService(session_factory, audit_sink)

    # ===========================================
    # PERIOD CRUD
    # ===========================================

    async def create_period(
        self,
        tenant_id: uuid.UUID,
        name: str,
        start_date: date,
        end_date: date,
        pay_date: date,
        notes: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> PayrollPeriod:
        """
        Create a draft period.

        Raises:
            InvalidDateRangeException: If start_date is after end_date
            PeriodOverlapException: If the dates overlap another period of the tenant
        """
        if start_date > end_date:
            raise InvalidDateRangeException(start_date, end_date)
        if pay_date < start_date:
            raise ValidationException("Pay date cannot be before the period start date", field="pay_date")

        # Insert first, then look for overlaps: the write lock taken by the
        # INSERT (or the tenant advisory lock) is held until commit.
        async with self.session_factory() as session:
            async with session.begin():
                await self._lock_tenant(session, tenant_id)
                period = PayrollPeriod(
                    tenant_id=tenant_id,
                    name=name,
                    start_date=start_date,
                    end_date=end_date,
                    pay_date=pay_date,
                    status=PayrollPeriodStatus.DRAFT,
                    notes=notes,
                    created_by_id=created_by_id,
                )
                session.add(period)
                await session.flush()
                await self._check_overlap(session, tenant_id, start_date, end_date, exclude_id=period.id)

        logger.info(f"Created payroll period {name} ({start_date} - {end_date}) for tenant {tenant_id}")
        return period

    async def _check_overlap(
        self,
        session: AsyncSession,
        tenant_id: uuid.UUID,
        start_date: date,
        end_date: date,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(PayrollPeriod).where(
            and_(
                PayrollPeriod.tenant_id == tenant_id,
                PayrollPeriod.start_date <= end_date,
                PayrollPeriod.end_date >= start_date,
            )
        )
        if exclude_id is not None:
            query = query.where(PayrollPeriod.id != exclude_id)
        result = await session.execute(query.order_by(PayrollPeriod.start_date).limit(1))
        existing = result.scalar_one_or_none()
        if existing is not None:
            raise PeriodOverlapException(existing.id, existing.start_date, existing.end_date)

    async def update_period(
        self,
        period_id: uuid.UUID,
        name: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        pay_date: Optional[date] = None,
        notes: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayrollPeriod:
        """
        Edit a draft period.

        Omitted fields keep their value. New dates are validated like on
        creation and re-checked for overlap against the tenant's other periods.

        Raises:
            InvalidTransitionException: If the period has left draft
            InvalidDateRangeException: If start_date ends up after end_date
            PeriodOverlapException: If the new dates overlap another period
        """
        period = await self.get_period(period_id)
        if period.status != PayrollPeriodStatus.DRAFT:
            raise InvalidTransitionException("PayrollPeriod", period.status.value, "update")

        new_start = start_date or period.start_date
        new_end = end_date or period.end_date
        new_pay = pay_date or period.pay_date
        if new_start > new_end:
            raise InvalidDateRangeException(new_start, new_end)
        if new_pay < new_start:
            raise ValidationException("Pay date cannot be before the period start date", field="pay_date")

        requested = {
            "name": name,
            "start_date": start_date,
            "end_date": end_date,
            "pay_date": pay_date,
            "notes": notes,
        }
        changes = {
            key: (getattr(period, key), value)
            for key, value in requested.items()
            if value is not None and value != getattr(period, key)
        }
        if not changes:
            return period

        async with self.session_factory() as session:
            async with session.begin():
                await self._lock_tenant(session, period.tenant_id)
                result = await session.execute(
                    update(PayrollPeriod)
                    .where(
                        and_(
                            PayrollPeriod.id == period_id,
                            PayrollPeriod.status == PayrollPeriodStatus.DRAFT,
                            PayrollPeriod.operation_token.is_(None),
                        )
                    )
                    .values(updated_by_id=actor_id, **{key: new for key, (_, new) in changes.items()})
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ConcurrencyConflictException(
                        "Could not update period: it left draft or another operation is running",
                        period_id=period_id,
                    )
                await self._check_overlap(session, period.tenant_id, new_start, new_end, exclude_id=period_id)

        for key, (old, new) in changes.items():
            record_field_change(self.audit_sink, "PayrollPeriod", period_id, key, old, new, actor_id)

        logger.info(f"Updated payroll period {period_id}: {', '.join(sorted(changes))}")
        return await self.get_period(period_id)

    async def get_period(self, period_id: uuid.UUID, tenant_id: Optional[uuid.UUID] = None) -> PayrollPeriod:
        async with self.session_factory() as session:
            period = await session.get(PayrollPeriod, period_id)
        if period is None or (tenant_id is not None and period.tenant_id != tenant_id):
            raise PeriodNotFoundException(period_id)
        return period

    async def list_periods(
        self,
        tenant_id: uuid.UUID,
        status: Optional[PayrollPeriodStatus] = None,
    ) -> List[PayrollPeriod]:
        query = select(PayrollPeriod).where(PayrollPeriod.tenant_id == tenant_id)
        if status is not None:
            query = query.where(PayrollPeriod.status == status)
        async with self.session_factory() as session:
            result = await session.execute(query.order_by(PayrollPeriod.start_date.desc()))
            return list(result.scalars().all())

    async def delete_period(self, period_id: uuid.UUID) -> None:
        """Delete a draft period."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(PayrollPeriod)
                    .where(
                        and_(
                            PayrollPeriod.id == period_id,
                            PayrollPeriod.status == PayrollPeriodStatus.DRAFT,
                            PayrollPeriod.operation_token.is_(None),
                        )
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    logger.info(f"Deleted payroll period {period_id}")
                    return

        period = await self.get_period(period_id)
        raise InvalidTransitionException("PayrollPeriod", period.status.value, "delete")

    # ===========================================
    # OPERATION LEASE
    # ===========================================

    async def _lock_tenant(self, session: AsyncSession, tenant_id: uuid.UUID) -> None:
        """
        Serialise period writes of one tenant until the transaction ends.

        PostgreSQL takes a transaction-scoped advisory lock keyed on the
        tenant. SQLite already admits a single writer at a time.
        """
        if session.get_bind().dialect.name != "postgresql":
            return
        key = int.from_bytes(tenant_id.bytes[:8], "big", signed=True)
        await session.execute(select(func.pg_advisory_xact_lock(key)))

    async def _acquire(
        self,
        period_id: uuid.UUID,
        operation: str,
        allowed: Sequence[PayrollPeriodStatus],
        new_status: Optional[PayrollPeriodStatus] = None,
        exclusive_tenant_id: Optional[uuid.UUID] = None,
    ) -> uuid.UUID:
        """
        Take the period lease when the status is one of allowed and no live lease exists.

        With exclusive_tenant_id the same UPDATE also requires that no other
        period of that tenant is in flight.
        """
        token = uuid.uuid4()
        now = datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=settings.period_operation_stale_seconds)

        values: Dict[str, Any] = {
            "operation_token": token,
            "active_operation": operation,
            "operation_started_at": now,
        }
        if new_status is not None:
            values["status"] = new_status

        conditions = [
            PayrollPeriod.id == period_id,
            PayrollPeriod.status.in_(allowed),
            or_(
                PayrollPeriod.operation_token.is_(None),
                PayrollPeriod.operation_started_at < stale_before,
            ),
        ]
        if exclusive_tenant_id is not None:
            other = aliased(PayrollPeriod)
            conditions.append(
                ~exists().where(
                    and_(
                        other.tenant_id == exclusive_tenant_id,
                        other.id != period_id,
                        other.status.in_(IN_FLIGHT_PERIOD_STATUSES),
                    )
                )
            )

        async with self.session_factory() as session:
            async with session.begin():
                if exclusive_tenant_id is not None:
                    await self._lock_tenant(session, exclusive_tenant_id)
                result = await session.execute(
                    update(PayrollPeriod)
                    .where(and_(*conditions))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    reason = "period status changed or another operation is running"
                    if exclusive_tenant_id is not None:
                        reason += ", or another period of the tenant is in flight"
                    raise ConcurrencyConflictException(
                        f"Could not start {operation}: {reason}",
                        period_id=period_id,
                    )

        logger.debug(f"Acquired {operation} lease {token} on period {period_id}")
        return token

    async def _release(
        self,
        session: AsyncSession,
        period_id: uuid.UUID,
        token: uuid.UUID,
        **values: Any,
    ) -> None:
        result = await session.execute(
            update(PayrollPeriod)
            .where(
                and_(
                    PayrollPeriod.id == period_id,
                    PayrollPeriod.operation_token == token,
                )
            )
            .values(operation_token=None, active_operation=None, operation_started_at=None, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictException(
                "Operation lease was lost before the period could be updated",
                period_id=period_id,
            )

    async def _abandon(self, period_id: uuid.UUID, token: uuid.UUID) -> None:
        """Release a lease after a failed operation, leaving the status as it is."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(PayrollPeriod)
                        .where(
                            and_(
                                PayrollPeriod.id == period_id,
                                PayrollPeriod.operation_token == token,
                            )
                        )
                        .values(operation_token=None, active_operation=None, operation_started_at=None)
                        .execution_options(synchronize_session=False)
                    )
        except Exception as e:
            logger.error(f"Failed to release lease {token} on period {period_id}: {e}")

    # ===========================================
    # TOTALS
    # ===========================================

    async def _compute_totals(self, session: AsyncSession, period_id: uuid.UUID) -> PeriodTotals:
        succeeded = Payroll.status != PayrollStatus.FAILED

        def total(column):
            return func.coalesce(func.sum(case((succeeded, column), else_=0)), 0)

        result = await session.execute(
            select(
                func.count(case((succeeded, Payroll.id))),
                func.count(case((Payroll.status == PayrollStatus.FAILED, Payroll.id))),
                total(Payroll.gross_pay),
                total(Payroll.total_deductions),
                total(Payroll.net_pay),
                total(Payroll.paye_amount),
                total(Payroll.pension_amount),
                total(Payroll.health_amount),
            ).where(Payroll.period_id == period_id)
        )
        row = result.one()
        return PeriodTotals(
            employee_count=row[0] or 0,
            failed_count=row[1] or 0,
            total_gross=round_money(row[2]),
            total_deductions=round_money(row[3]),
            total_net=round_money(row[4]),
            total_paye=round_money(row[5]),
            total_pension=round_money(row[6]),
            total_health=round_money(row[7]),
        )

    async def _failures(self, session: AsyncSession, period_id: uuid.UUID) -> List[Dict[str, Any]]:
        result = await session.execute(
            select(Payroll.id, Payroll.employee_id, Payroll.failure_reason)
            .where(
                and_(
                    Payroll.period_id == period_id,
                    Payroll.status == PayrollStatus.FAILED,
                )
            )
            .order_by(Payroll.employee_id)
        )
        return [
            {"payroll_id": str(payroll_id), "employee_id": str(employee_id), "reason": reason}
            for payroll_id, employee_id, reason in result.all()
        ]

    async def get_period_summary(self, period_id: uuid.UUID) -> PeriodProcessSummary:
        """Succeeded/failed counts with failure reasons, always recomputed."""
        period = await self.get_period(period_id)
        async with self.session_factory() as session:
            totals = await self._compute_totals(session, period_id)
            failures = await self._failures(session, period_id)

        return PeriodProcessSummary(
            period_id=period.id,
            status=period.status,
            employee_count=totals.employee_count + totals.failed_count,
            succeeded=totals.employee_count,
            failed=totals.failed_count,
            failures=failures,
            totals=totals,
        )

    # ===========================================
    # PROCESS
    # ===========================================

    def _worker_limit(self, employee_count: int) -> int:
        if settings.payroll_max_workers > 0:
            return settings.payroll_max_workers
        cpu_count = os.cpu_count() or 1
        return max(1, min(employee_count, cpu_count * settings.payroll_workers_per_cpu))

    async def _ensure_no_other_active_period(self, period: PayrollPeriod) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PayrollPeriod.id, PayrollPeriod.name, PayrollPeriod.status)
                .where(
                    and_(
                        PayrollPeriod.tenant_id == period.tenant_id,
                        PayrollPeriod.id != period.id,
                        PayrollPeriod.status.in_(IN_FLIGHT_PERIOD_STATUSES),
                    )
                )
                .limit(1)
            )
            other = result.first()
        if other is not None:
            raise ConcurrencyConflictException(
                f"Period '{other.name}' is {other.status.value}; lock it before processing another period",
                period_id=period.id,
                details={"active_period_id": str(other.id)},
            )

    async def _wipe(self, period_id: uuid.UUID) -> int:
        """Remove every Payroll of the period, reversing its loan repayments first."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(select(Payroll.id).where(Payroll.period_id == period_id))
                payroll_ids = list(result.scalars().all())
                if not payroll_ids:
                    return 0

                ledger = LoanLedgerService(session, self.audit_sink)
                reversed_count = await ledger.reverse_payroll_repayments(payroll_ids)

                await session.execute(
                    delete(PayrollItem)
                    .where(PayrollItem.payroll_id.in_(payroll_ids))
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    delete(Payroll)
                    .where(Payroll.period_id == period_id)
                    .execution_options(synchronize_session=False)
                )

        logger.info(
            f"Cleared {len(payroll_ids)} payrolls and reversed {reversed_count} loan repayments "
            f"for period {period_id}"
        )
        return len(payroll_ids)

    async def _resolve_statutory(
        self,
        employees: Sequence[EmployeeRecord],
        as_of: date,
    ) -> Dict[str, ResolvedStatutoryConfig]:
        countries = sorted({employee.country.upper() for employee in employees})
        resolved: Dict[str, ResolvedStatutoryConfig] = {}
        async with self.session_factory() as session:
            rate_service = StatutoryRateService(session)
            for country in countries:
                resolved[country] = await rate_service.resolve(country, as_of)
        return resolved

    async def _fan_out(
        self,
        context: PeriodContext,
        employees: Sequence[EmployeeRecord],
        statutory: Dict[str, ResolvedStatutoryConfig],
    ) -> List[EmployeeOutcome]:
        semaphore = asyncio.Semaphore(self._worker_limit(len(employees)))

        async def run(employee: EmployeeRecord) -> EmployeeOutcome:
            async with semaphore:
                return await self.calculation_service.process_employee(
                    context, employee, statutory.get(employee.country.upper()),
                )

        return list(await asyncio.gather(*(run(employee) for employee in employees)))

    async def process(self, period_id: uuid.UUID) -> PeriodProcessSummary:
        """
        Calculate payroll for every active employee of the tenant.

        Allowed from draft, from processing after a crashed run and from
        pending_approval for reprocessing after a correction. Employee
        failures are isolated and reported in the summary.

        Raises:
            InvalidTransitionException: If the period is approved or later
            ConcurrencyConflictException: If another operation holds the
                period or another period of the tenant is in flight
        """
        period = await self.get_period(period_id)
        if period.status not in PROCESSABLE_STATUSES:
            raise InvalidTransitionException("PayrollPeriod", period.status.value, "process")

        await self._ensure_no_other_active_period(period)

        previous_status = period.status
        token = await self._acquire(
            period_id, "process", PROCESSABLE_STATUSES,
            new_status=PayrollPeriodStatus.PROCESSING,
            exclusive_tenant_id=period.tenant_id,
        )
        logger.info(f"Processing payroll period {period.name} ({period_id})")

        try:
            await self._wipe(period_id)

            employees = await self.directory.list_active_employees(period.tenant_id, period.end_date)
            statutory = await self._resolve_statutory(employees, period.end_date)
            outcomes = await self._fan_out(PeriodContext.from_period(period), employees, statutory)

            async with self.session_factory() as session:
                async with session.begin():
                    totals = await self._compute_totals(session, period_id)
                    await self._release(
                        session, period_id, token,
                        status=PayrollPeriodStatus.PENDING_APPROVAL,
                        processed_at=datetime.now(timezone.utc),
                        **totals.as_values(),
                    )
        except Exception:
            await self._abandon(period_id, token)
            raise

        failures = [outcome for outcome in outcomes if outcome.failed]
        record_field_change(
            self.audit_sink, "PayrollPeriod", period_id, "status",
            previous_status.value, PayrollPeriodStatus.PENDING_APPROVAL.value,
        )

        for outcome in failures:
            self.outbox.publish(interfaces.EMPLOYEE_PAYROLL_FAILED, {
                "period_id": period_id,
                "tenant_id": period.tenant_id,
                **outcome.to_dict(),
            })
        summary = PeriodProcessSummary(
            period_id=period_id,
            status=PayrollPeriodStatus.PENDING_APPROVAL,
            employee_count=len(outcomes),
            succeeded=len(outcomes) - len(failures),
            failed=len(failures),
            failures=[outcome.to_dict() for outcome in failures],
            totals=totals,
        )
        self.outbox.publish(interfaces.PERIOD_PROCESSED, {"tenant_id": period.tenant_id, **summary.to_dict()})
        await self.outbox.dispatch_pending()

        logger.info(
            f"Processed period {period.name}: {summary.succeeded} succeeded, {summary.failed} failed, "
            f"net {totals.total_net}"
        )
        return summary

    # ===========================================
    # APPROVE / PAY / LOCK
    # ===========================================

    async def approve(
        self,
        period_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        acknowledge_failures: bool = False,
    ) -> PayrollPeriod:
        """
        Approve a processed period.

        Totals are recomputed from the Payroll rows first. A stale cache is
        refreshed and reported as a retryable conflict. Failed payrolls block
        approval unless acknowledged.
        """
        period = await self.get_period(period_id)
        if period.status != PayrollPeriodStatus.PENDING_APPROVAL:
            raise InvalidTransitionException("PayrollPeriod", period.status.value, "approve")

        token = await self._acquire(period_id, "approve", (PayrollPeriodStatus.PENDING_APPROVAL,))
        stale: Optional[PeriodTotals] = None
        blocked = 0
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    totals = await self._compute_totals(session, period_id)
                    cached = PeriodTotals.from_period(await session.get(PayrollPeriod, period_id))
                    if totals != cached:
                        stale = totals
                        await self._release(session, period_id, token, **totals.as_values())
                    elif totals.failed_count and not acknowledge_failures:
                        blocked = totals.failed_count
                        await self._release(session, period_id, token)
                    else:
                        await self._release(
                            session, period_id, token,
                            status=PayrollPeriodStatus.APPROVED,
                            approved_at=datetime.now(timezone.utc),
                            approved_by_id=actor_id,
                        )
                        await session.execute(
                            update(Payroll)
                            .where(
                                and_(
                                    Payroll.period_id == period_id,
                                    Payroll.status == PayrollStatus.CALCULATED,
                                )
                            )
                            .values(status=PayrollStatus.APPROVED)
                            .execution_options(synchronize_session=False)
                        )
        except Exception:
            await self._abandon(period_id, token)
            raise

        if stale is not None:
            logger.warning(f"Cached totals for period {period_id} were stale; refreshed")
            raise ConcurrencyConflictException(
                "Period totals changed since processing; review the refreshed totals and retry",
                period_id=period_id,
                code=ErrorCode.STALE_TOTALS,
                details={"totals": stale.to_dict()},
            )
        if blocked:
            raise BusinessRuleException(
                f"{blocked} employee payroll(s) failed; resolve them or acknowledge the failures to approve",
                rule="FAILED_PAYROLLS_PRESENT",
                code=ErrorCode.FAILED_PAYROLLS_PRESENT,
                details={"failed_count": blocked},
            )

        record_field_change(
            self.audit_sink, "PayrollPeriod", period_id, "status",
            PayrollPeriodStatus.PENDING_APPROVAL.value, PayrollPeriodStatus.APPROVED.value, actor_id,
        )
        self.outbox.publish(interfaces.PERIOD_APPROVED, {
            "period_id": period_id,
            "tenant_id": period.tenant_id,
            "approved_by_id": actor_id,
            "total_net": totals.total_net,
        })
        await self.outbox.dispatch_pending()

        logger.info(f"Approved payroll period {period.name} ({period_id})")
        return await self.get_period(period_id)

    async def mark_paid(
        self,
        period_id: uuid.UUID,
        payment_reference: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayrollPeriod:
        """approved -> paid; approved payrolls are marked paid."""
        period = await self.get_period(period_id)
        if period.status != PayrollPeriodStatus.APPROVED:
            raise InvalidTransitionException("PayrollPeriod", period.status.value, "mark paid")

        token = await self._acquire(period_id, "mark_paid", (PayrollPeriodStatus.APPROVED,))
        now = datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._release(session, period_id, token, status=PayrollPeriodStatus.PAID, paid_at=now)
                    await session.execute(
                        update(Payroll)
                        .where(
                            and_(
                                Payroll.period_id == period_id,
                                Payroll.status == PayrollStatus.APPROVED,
                            )
                        )
                        .values(status=PayrollStatus.PAID, paid_at=now, payment_reference=payment_reference)
                        .execution_options(synchronize_session=False)
                    )
        except Exception:
            await self._abandon(period_id, token)
            raise

        record_field_change(
            self.audit_sink, "PayrollPeriod", period_id, "status",
            PayrollPeriodStatus.APPROVED.value, PayrollPeriodStatus.PAID.value, actor_id,
        )
        self.outbox.publish(interfaces.PERIOD_PAID, {
            "period_id": period_id,
            "tenant_id": period.tenant_id,
            "payment_reference": payment_reference,
        })
        await self.outbox.dispatch_pending()
        return await self.get_period(period_id)

    async def _emit_remittances(self, period: PayrollPeriod) -> int:
        if self.remittance_sink is None:
            logger.warning(f"No remittance sink configured; skipping remittances for period {period.id}")
            return 0

        async with self.session_factory() as session:
            totals = await self._compute_totals(session, period.id)

        emitted = 0
        for tax_type, amount in totals.tax_totals().items():
            if amount <= 0:
                continue
            await self.remittance_sink.record_remittance(
                period.id,
                tax_type.value,
                amount,
                calculate_due_date(period.end_date, tax_type),
                tenant_id=period.tenant_id,
            )
            emitted += 1
        return emitted

    async def _announce_lock(
        self,
        period: PayrollPeriod,
        actor_id: Optional[uuid.UUID],
        emitted: int,
    ) -> bool:
        """Publish period_locked once per period, on whichever lock call gets there first."""
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(PayrollPeriod)
                    .where(
                        and_(
                            PayrollPeriod.id == period.id,
                            PayrollPeriod.status == PayrollPeriodStatus.LOCKED,
                            PayrollPeriod.lock_notified_at.is_(None),
                        )
                    )
                    .values(lock_notified_at=datetime.now(timezone.utc))
                    .execution_options(synchronize_session=False)
                )
        if result.rowcount != 1:
            return False

        self.outbox.publish(interfaces.PERIOD_LOCKED, {
            "period_id": period.id,
            "tenant_id": period.tenant_id,
            "locked_by_id": actor_id or period.locked_by_id,
            "remittances": emitted,
        })
        await self.outbox.dispatch_pending()
        return True

    async def lock(self, period_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> PayrollPeriod:
        """
        Lock an approved or paid period.

        Every Payroll is frozen and one remittance per nonzero statutory
        total is emitted. Locking a locked period re-emits remittances,
        which the sink de-duplicates, and publishes period_locked if no
        earlier call got that far, so a lock interrupted after the status
        change can be retried.
        """
        period = await self.get_period(period_id)
        if period.status == PayrollPeriodStatus.LOCKED:
            emitted = await self._emit_remittances(period)
            announced = await self._announce_lock(period, actor_id, emitted)
            logger.info(
                f"Period {period_id} already locked; {emitted} remittances confirmed"
                + ("; lock event published" if announced else "")
            )
            return await self.get_period(period_id)

        if period.status not in LOCKABLE_STATUSES:
            raise InvalidTransitionException("PayrollPeriod", period.status.value, "lock")

        previous_status = period.status
        token = await self._acquire(period_id, "lock", LOCKABLE_STATUSES)
        now = datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await self._release(
                        session, period_id, token,
                        status=PayrollPeriodStatus.LOCKED,
                        locked_at=now,
                        locked_by_id=actor_id,
                    )
                    await session.execute(
                        update(Payroll)
                        .where(Payroll.period_id == period_id)
                        .values(locked_at=now)
                        .execution_options(synchronize_session=False)
                    )
        except Exception:
            await self._abandon(period_id, token)
            raise

        record_field_change(
            self.audit_sink, "PayrollPeriod", period_id, "status",
            previous_status.value, PayrollPeriodStatus.LOCKED.value, actor_id,
        )

        period = await self.get_period(period_id)
        emitted = await self._emit_remittances(period)
        await self._announce_lock(period, actor_id, emitted)

        logger.info(f"Locked payroll period {period.name} ({period_id}); {emitted} remittances emitted")
        return await self.get_period(period_id)
