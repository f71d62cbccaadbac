"""
Payroll Engine - Celery Tasks

Out-of-band delivery of payroll notifications and scheduled remittance checks.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Dict, Optional

from celery import shared_task

from payroll_engine.database import async_session_maker
from payroll_engine.services.interfaces import REMITTANCE_OVERDUE
from payroll_engine.services.notification_service import CeleryNotificationSink, LoggingNotificationSink
from payroll_engine.services.remittance_service import RemittanceService

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ===========================================
# NOTIFICATION TASKS
# ===========================================

@shared_task(name='payroll_engine.tasks.celery_tasks.deliver_payroll_notification_task')
def deliver_payroll_notification_task(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Worker side of CeleryNotificationSink.

    Events are written to the worker's notification log. No email or
    webhook channel is attached.
    """
    LoggingNotificationSink().notify(event, payload)
    return {"event": event, "logged": True}


# ===========================================
# REMITTANCE TASKS
# ===========================================

@shared_task(name='payroll_engine.tasks.celery_tasks.check_overdue_remittances_task')
def check_overdue_remittances_task(as_of: Optional[str] = None) -> Dict[str, Any]:
    """Report pending statutory remittances whose due date has passed."""
    return run_async(_check_overdue_remittances(date.fromisoformat(as_of) if as_of else date.today()))


async def _check_overdue_remittances(as_of: date) -> Dict[str, Any]:
    """Async implementation of the overdue remittance check."""
    async with async_session_maker() as db:
        overdue = await RemittanceService(db).list_overdue(as_of)

    sink = CeleryNotificationSink()
    for remittance in overdue:
        days_overdue = (as_of - remittance.due_date).days
        logger.warning(
            f"{remittance.tax_type.value} remittance {remittance.id} of {remittance.amount} "
            f"is {days_overdue} days overdue"
        )
        sink.notify(REMITTANCE_OVERDUE, {
            "remittance_id": remittance.id,
            "period_id": remittance.period_id,
            "tenant_id": remittance.tenant_id,
            "tax_type": remittance.tax_type,
            "amount": remittance.amount,
            "due_date": remittance.due_date,
            "days_overdue": days_overdue,
        })

    logger.info(f"Overdue remittance check complete: {len(overdue)} overdue")
    return {"overdue": len(overdue), "as_of": as_of.isoformat()}
