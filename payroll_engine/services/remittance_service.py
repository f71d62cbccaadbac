"""
Payroll Engine - Remittance Service

Statutory remittance obligations created when a payroll period is locked.

Due dates fall on a configured day of the month after the period end
(the 9th unless overridden per tax type). Emission is an upsert keyed on
(period, tax type) so that lock can be retried safely.
"""

import logging
import uuid
from calendar import monthrange
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Union

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_engine.config import settings
from payroll_engine.models.statutory import RemittanceStatus, StatutoryRateType, StatutoryRemittance
from payroll_engine.services.tax_calculators.statutory_config import normalize_rate_type
from payroll_engine.utils.error_handling import (
    InvalidTransitionException,
    NotFoundException,
)
from payroll_engine.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


def calculate_due_date(period_end: date, tax_type: Union[str, StatutoryRateType]) -> date:
    """Due date on the configured day of the month following period_end."""
    rate_type = normalize_rate_type(tax_type)
    next_month = period_end.month + 1
    next_year = period_end.year
    if next_month > 12:
        next_month = 1
        next_year += 1
    due_day = settings.remittance_due_day_for(rate_type.value)
    last_day = monthrange(next_year, next_month)[1]
    return date(next_year, next_month, min(due_day, last_day))


class DatabaseRemittanceSink:
    """Idempotent remittance sink writing statutory_remittances rows."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _find(self, session: AsyncSession, period_id: uuid.UUID, tax_type: StatutoryRateType):
        result = await session.execute(
            select(StatutoryRemittance).where(
                and_(
                    StatutoryRemittance.period_id == period_id,
                    StatutoryRemittance.tax_type == tax_type,
                )
            )
        )
        return result.scalar_one_or_none()

    async def record_remittance(
        self,
        period_id: uuid.UUID,
        tax_type: Union[str, StatutoryRateType],
        amount: Decimal,
        due_date: date,
        tenant_id: Optional[uuid.UUID] = None,
    ) -> StatutoryRemittance:
        """Insert the remittance or refresh a still-pending one for the same period and tax type."""
        rate_type = normalize_rate_type(tax_type)
        amount = round_money(amount)

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    existing = await self._find(session, period_id, rate_type)
                    if existing is not None:
                        if existing.status == RemittanceStatus.PENDING and (
                            round_money(existing.amount) != amount or existing.due_date != due_date
                        ):
                            existing.amount = amount
                            existing.due_date = due_date
                        return existing

                    remittance = StatutoryRemittance(
                        tenant_id=tenant_id,
                        period_id=period_id,
                        tax_type=rate_type,
                        amount=amount,
                        due_date=due_date,
                    )
                    session.add(remittance)
                logger.info(f"Recorded {rate_type.value} remittance of {amount} for period {period_id}, due {due_date}")
                return remittance
        except IntegrityError:
            # Concurrent emission for the same key won the insert
            async with self.session_factory() as session:
                existing = await self._find(session, period_id, rate_type)
                if existing is None:
                    raise
                return existing


class RemittanceService:
    """Queries and settlement of statutory remittances."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_remittance(self, remittance_id: uuid.UUID) -> StatutoryRemittance:
        remittance = await self.db.get(StatutoryRemittance, remittance_id)
        if remittance is None:
            raise NotFoundException("StatutoryRemittance", remittance_id)
        return remittance

    async def list_period_remittances(self, period_id: uuid.UUID) -> List[StatutoryRemittance]:
        result = await self.db.execute(
            select(StatutoryRemittance)
            .where(StatutoryRemittance.period_id == period_id)
            .order_by(StatutoryRemittance.tax_type)
        )
        return list(result.scalars().all())

    async def list_pending(self, tenant_id: uuid.UUID) -> List[StatutoryRemittance]:
        result = await self.db.execute(
            select(StatutoryRemittance)
            .where(
                and_(
                    StatutoryRemittance.tenant_id == tenant_id,
                    StatutoryRemittance.status == RemittanceStatus.PENDING,
                )
            )
            .order_by(StatutoryRemittance.due_date)
        )
        return list(result.scalars().all())

    async def list_overdue(
        self,
        as_of: date,
        tenant_id: Optional[uuid.UUID] = None,
    ) -> List[StatutoryRemittance]:
        """Pending remittances whose due date has passed."""
        query = select(StatutoryRemittance).where(
            and_(
                StatutoryRemittance.status == RemittanceStatus.PENDING,
                StatutoryRemittance.due_date < as_of,
            )
        )
        if tenant_id is not None:
            query = query.where(StatutoryRemittance.tenant_id == tenant_id)
        result = await self.db.execute(query.order_by(StatutoryRemittance.due_date))
        return list(result.scalars().all())

    async def mark_remitted(
        self,
        remittance_id: uuid.UUID,
        reference: str,
        remitted_on: Optional[date] = None,
    ) -> StatutoryRemittance:
        """Mark a pending remittance as paid to the authority."""
        remittance = await self.get_remittance(remittance_id)
        if remittance.status != RemittanceStatus.PENDING:
            raise InvalidTransitionException("StatutoryRemittance", remittance.status.value, "mark remitted")

        remittance.status = RemittanceStatus.REMITTED
        remittance.remittance_reference = reference
        remittance.remitted_on = remitted_on or date.today()
        remittance.remitted_at = datetime.now(timezone.utc)

        await self.db.commit()
        return remittance

    async def get_totals(self, tenant_id: uuid.UUID) -> Dict[str, Dict[str, Decimal]]:
        """Totals per tax type split by pending/remitted."""
        result = await self.db.execute(
            select(
                StatutoryRemittance.tax_type,
                StatutoryRemittance.status,
                func.sum(StatutoryRemittance.amount),
            )
            .where(StatutoryRemittance.tenant_id == tenant_id)
            .group_by(StatutoryRemittance.tax_type, StatutoryRemittance.status)
        )

        totals: Dict[str, Dict[str, Decimal]] = {
            rate_type.value: {status.value: ZERO for status in RemittanceStatus}
            for rate_type in StatutoryRateType
        }
        for tax_type, status, amount in result.all():
            totals[tax_type.value][status.value] = round_money(amount or 0)
        return totals
