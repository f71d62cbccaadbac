"""
Payroll Engine - Test Configuration

Pytest fixtures and configuration.

Every test gets its own SQLite database file so that services which open
their own sessions see the same data as the test.
"""

import os

os.environ["DATABASE_URL_ASYNC"] = "sqlite+aiosqlite://"
os.environ["PAYROLL_MAX_WORKERS"] = "1"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_engine.database import Base, build_engine, build_session_factory
from payroll_engine.dependencies import get_audit_sink, get_notification_sink, get_session_factory
from payroll_engine.models.salary import SalaryComponent
from payroll_engine.services.employee_directory import DatabaseEmployeeDirectory
from payroll_engine.services.notification_service import EventOutbox
from payroll_engine.services.payroll_period_service import PayrollPeriodService
from payroll_engine.services.remittance_service import DatabaseRemittanceSink
from main import app

from factories import (
    RecordingAuditSink,
    RecordingNotificationSink,
    create_component,
    seed_statutory_rates,
)


# ===========================================
# DATABASE FIXTURES
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh SQLite database per test."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return build_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging data; commit before calling services that open their own sessions."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def notification_sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def period_service(session_factory, notification_sink, audit_sink) -> PayrollPeriodService:
    return PayrollPeriodService(
        session_factory,
        directory=DatabaseEmployeeDirectory(session_factory),
        notification_sink=notification_sink,
        remittance_sink=DatabaseRemittanceSink(session_factory),
        audit_sink=audit_sink,
        outbox=EventOutbox(notification_sink),
    )


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, notification_sink, audit_sink) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client bound to the per-test database."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notification_sink] = lambda: notification_sink
    app.dependency_overrides[get_audit_sink] = lambda: audit_sink

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def basic_component(db_session: AsyncSession) -> SalaryComponent:
    return await create_component(db_session, "BASIC")


@pytest_asyncio.fixture
async def statutory_rates(db_session: AsyncSession) -> None:
    await seed_statutory_rates(db_session)
