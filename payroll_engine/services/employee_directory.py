"""
Payroll Engine - Employee Directory

Read-only lookup of employees eligible for a payroll run.
"""

import uuid
from datetime import date
from typing import List

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import async_sessionmaker

from payroll_engine.models.employee import Employee, EmploymentStatus
from payroll_engine.services.interfaces import EmployeeRecord


class DatabaseEmployeeDirectory:
    """Employee directory backed by the employees table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def list_active_employees(self, tenant_id: uuid.UUID, as_of: date) -> List[EmployeeRecord]:
        """Active employees hired on or before as_of and not terminated before it."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Employee)
                .where(
                    and_(
                        Employee.tenant_id == tenant_id,
                        Employee.status == EmploymentStatus.ACTIVE,
                        or_(Employee.hire_date.is_(None), Employee.hire_date <= as_of),
                        or_(Employee.termination_date.is_(None), Employee.termination_date >= as_of),
                    )
                )
                .order_by(Employee.employee_number)
            )
            employees = result.scalars().all()

        return [
            EmployeeRecord(
                id=employee.id,
                tenant_id=employee.tenant_id,
                employee_number=employee.employee_number,
                full_name=employee.full_name,
                country=employee.country,
                payment_method=employee.payment_method.value if employee.payment_method else None,
                bank_account=(
                    f"{employee.bank_name} {employee.bank_account_number}"
                    if employee.bank_account_number else None
                ),
            )
            for employee in employees
        ]
