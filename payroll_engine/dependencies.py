"""
Payroll Engine - FastAPI Dependencies

Shared dependencies for database sessions and payroll collaborators.

Services that run their own per-unit transactions take the session factory;
request-scoped services take a session from get_db.
"""

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_engine.database import async_session_maker
from payroll_engine.services.audit_service import LoggingAuditSink
from payroll_engine.services.employee_directory import DatabaseEmployeeDirectory
from payroll_engine.services.interfaces import AuditSink, NotificationSink
from payroll_engine.services.notification_service import CeleryNotificationSink
from payroll_engine.services.payroll_period_service import PayrollPeriodService
from payroll_engine.services.remittance_service import DatabaseRemittanceSink


def get_session_factory() -> async_sessionmaker:
    """Session factory for services that manage their own transactions."""
    return async_session_maker


async def get_db(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session for services working in the caller's transaction.
    Routers commit explicitly after a successful change.
    """
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_notification_sink() -> NotificationSink:
    return CeleryNotificationSink()


def get_audit_sink() -> AuditSink:
    return LoggingAuditSink()


def get_period_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    notification_sink: NotificationSink = Depends(get_notification_sink),
    audit_sink: AuditSink = Depends(get_audit_sink),
) -> PayrollPeriodService:
    return PayrollPeriodService(
        session_factory,
        directory=DatabaseEmployeeDirectory(session_factory),
        notification_sink=notification_sink,
        remittance_sink=DatabaseRemittanceSink(session_factory),
        audit_sink=audit_sink,
    )
