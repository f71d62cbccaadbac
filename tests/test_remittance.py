"""
Payroll Engine - Remittance Tests
"""

import uuid
import pytest
from datetime import date
from decimal import Decimal

from payroll_engine.config import settings
from payroll_engine.models.statutory import RemittanceStatus, StatutoryRateType
from payroll_engine.services.remittance_service import (
    DatabaseRemittanceSink,
    RemittanceService,
    calculate_due_date,
)
from payroll_engine.tasks.celery_tasks import _check_overdue_remittances
from payroll_engine.utils.error_handling import InvalidTransitionException

from factories import OTHER_TENANT_ID, TENANT_ID


class TestDueDate:
    """Remittances fall due in the month after the period ends."""

    def test_ninth_of_next_month(self):
        assert calculate_due_date(date(2024, 1, 31), "paye") == date(2024, 2, 9)

    def test_year_rollover(self):
        assert calculate_due_date(date(2024, 12, 31), StatutoryRateType.HEALTH) == date(2025, 1, 9)

    def test_alias_accepted(self):
        assert calculate_due_date(date(2024, 3, 31), "nssf") == date(2024, 4, 9)

    def test_due_day_clamped_to_month_end(self, monkeypatch):
        monkeypatch.setattr(settings, "remittance_due_day", 31)

        assert calculate_due_date(date(2024, 1, 31), "paye") == date(2024, 2, 29)

    def test_per_type_override(self, monkeypatch):
        monkeypatch.setattr(settings, "pension_remittance_due_day", 15)

        assert calculate_due_date(date(2024, 1, 31), "pension") == date(2024, 2, 15)
        assert calculate_due_date(date(2024, 1, 31), "paye") == date(2024, 2, 9)


class TestRemittanceSink:
    """Emission is an upsert on (period, tax type)."""

    @pytest.mark.asyncio
    async def test_repeat_emission_does_not_duplicate(self, session_factory, db_session):
        sink = DatabaseRemittanceSink(session_factory)
        period_id = uuid.uuid4()

        first = await sink.record_remittance(
            period_id, "paye", Decimal("7383.05"), date(2024, 2, 9), tenant_id=TENANT_ID,
        )
        second = await sink.record_remittance(
            period_id, "paye", Decimal("7383.05"), date(2024, 2, 9), tenant_id=TENANT_ID,
        )

        assert first.id == second.id
        assert len(await RemittanceService(db_session).list_period_remittances(period_id)) == 1

    @pytest.mark.asyncio
    async def test_pending_remittance_is_refreshed(self, session_factory, db_session):
        sink = DatabaseRemittanceSink(session_factory)
        period_id = uuid.uuid4()

        await sink.record_remittance(period_id, "pension", Decimal("1080"), date(2024, 2, 9), tenant_id=TENANT_ID)
        updated = await sink.record_remittance(
            period_id, "pension", Decimal("2160"), date(2024, 2, 9), tenant_id=TENANT_ID,
        )

        assert updated.amount == Decimal("2160.00")
        assert updated.status == RemittanceStatus.PENDING


class TestRemittanceService:
    """Settlement and overdue tracking."""

    @pytest.mark.asyncio
    async def test_mark_remitted_once(self, session_factory, db_session):
        remittance = await DatabaseRemittanceSink(session_factory).record_remittance(
            uuid.uuid4(), "health", Decimal("1900"), date(2024, 2, 9), tenant_id=TENANT_ID,
        )
        service = RemittanceService(db_session)

        remitted = await service.mark_remitted(remittance.id, "KRA-12345", date(2024, 2, 8))

        assert remitted.status == RemittanceStatus.REMITTED
        assert remitted.remittance_reference == "KRA-12345"
        with pytest.raises(InvalidTransitionException):
            await service.mark_remitted(remittance.id, "KRA-12345")

    @pytest.mark.asyncio
    async def test_list_overdue_and_totals(self, session_factory, db_session):
        sink = DatabaseRemittanceSink(session_factory)
        period_id = uuid.uuid4()
        await sink.record_remittance(period_id, "paye", Decimal("500"), date(2024, 2, 9), tenant_id=TENANT_ID)
        await sink.record_remittance(period_id, "health", Decimal("300"), date(2024, 3, 9), tenant_id=TENANT_ID)
        await sink.record_remittance(
            uuid.uuid4(), "paye", Decimal("700"), date(2024, 2, 9), tenant_id=OTHER_TENANT_ID,
        )
        service = RemittanceService(db_session)

        overdue = await service.list_overdue(date(2024, 2, 10))
        tenant_overdue = await service.list_overdue(date(2024, 2, 10), tenant_id=TENANT_ID)
        totals = await service.get_totals(TENANT_ID)

        assert len(overdue) == 2
        assert [r.amount for r in tenant_overdue] == [Decimal("500.00")]
        assert totals["paye"]["pending"] == Decimal("500.00")
        assert totals["pension"]["pending"] == Decimal("0")

    @pytest.mark.asyncio
    async def test_overdue_check_notifies(self, session_factory, notification_sink, monkeypatch):
        sink = DatabaseRemittanceSink(session_factory)
        await sink.record_remittance(uuid.uuid4(), "paye", Decimal("500"), date(2024, 2, 9), tenant_id=TENANT_ID)
        monkeypatch.setattr(
            "payroll_engine.tasks.celery_tasks.CeleryNotificationSink", lambda: notification_sink,
        )
        monkeypatch.setattr("payroll_engine.tasks.celery_tasks.async_session_maker", session_factory)

        result = await _check_overdue_remittances(date(2024, 2, 10))

        assert result["overdue"] == 1
        assert notification_sink.names() == ["payroll.remittance_overdue"]
