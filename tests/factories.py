"""
Payroll Engine - Test Factories

Shared constants, recording collaborators and data builders for tests.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.models.employee import Employee
from payroll_engine.models.loan import EmployeeLoan, LoanStatus
from payroll_engine.models.salary import (
    CalculationMode,
    ComponentCategory,
    ComponentKind,
    EmployeeSalaryComponent,
    SalaryComponent,
)
from payroll_engine.models.statutory import StatutoryRate, StatutoryRateType


TENANT_ID = uuid.UUID("11111111-1111-4111-8111-111111111111")
OTHER_TENANT_ID = uuid.UUID("22222222-2222-4222-8222-222222222222")
EFFECTIVE_FROM = date(2024, 1, 1)

PAYE_CONFIG = {
    "brackets": [
        {"min": 0, "max": 24000, "rate": 10},
        {"min": 24001, "max": 32333, "rate": 25},
        {"min": 32334, "max": None, "rate": 30},
    ],
    "relief": 2400,
}
PENSION_CONFIG = {"rate": 6, "cap": 18000}
HEALTH_CONFIG = {
    "tiers": [
        {"min": 0, "max": 5999, "amount": 150},
        {"min": 6000, "max": 7999, "amount": 300},
        {"min": 8000, "max": 11999, "amount": 400},
        {"min": 12000, "max": 14999, "amount": 500},
        {"min": 15000, "max": 19999, "amount": 600},
        {"min": 20000, "max": 24999, "amount": 750},
        {"min": 25000, "max": 29999, "amount": 850},
        {"min": 30000, "max": 34999, "amount": 900},
        {"min": 35000, "max": 39999, "amount": 950},
        {"min": 40000, "max": 44999, "amount": 1000},
    ],
}


# ===========================================
# RECORDING COLLABORATORS
# ===========================================

class RecordingNotificationSink:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append({"event": event, "payload": payload})

    def names(self) -> List[str]:
        return [entry["event"] for entry in self.events]


class RecordingAuditSink:
    def __init__(self):
        self.changes: List[Dict[str, Any]] = []

    def record_field_change(self, entity_type, entity_id, field, old, new, actor=None) -> None:
        self.changes.append({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "field": field,
            "old": old,
            "new": new,
            "actor": actor,
        })


class StaticEmployeeDirectory:
    """Directory returning a fixed employee list, for orchestration tests."""

    def __init__(self, employees):
        self.employees = list(employees)

    async def list_active_employees(self, tenant_id, as_of):
        return [employee for employee in self.employees if employee.tenant_id == tenant_id]


# ===========================================
# DATA HELPERS
# ===========================================

async def seed_statutory_rates(
    session: AsyncSession,
    country: str = "KE",
    paye: Optional[Dict[str, Any]] = PAYE_CONFIG,
    pension: Optional[Dict[str, Any]] = PENSION_CONFIG,
    health: Optional[Dict[str, Any]] = HEALTH_CONFIG,
) -> None:
    for rate_type, config in (
        (StatutoryRateType.PAYE, paye),
        (StatutoryRateType.PENSION, pension),
        (StatutoryRateType.HEALTH, health),
    ):
        if config is None:
            continue
        session.add(StatutoryRate(
            country=country,
            rate_type=rate_type,
            name=f"{country} {rate_type.value.upper()} {EFFECTIVE_FROM.year}",
            config=config,
            effective_from=EFFECTIVE_FROM,
        ))
    await session.commit()


async def create_employee(
    session: AsyncSession,
    employee_number: str,
    tenant_id: uuid.UUID = TENANT_ID,
    country: str = "KE",
    **kwargs,
) -> Employee:
    employee = Employee(
        tenant_id=tenant_id,
        employee_number=employee_number,
        first_name=kwargs.pop("first_name", "Test"),
        last_name=kwargs.pop("last_name", employee_number),
        country=country,
        hire_date=kwargs.pop("hire_date", date(2023, 1, 1)),
        bank_name=kwargs.pop("bank_name", "Equity"),
        bank_account_number=kwargs.pop("bank_account_number", f"00{employee_number}"),
        **kwargs,
    )
    session.add(employee)
    await session.commit()
    return employee


async def create_component(
    session: AsyncSession,
    code: str,
    kind: ComponentKind = ComponentKind.EARNING,
    category: ComponentCategory = ComponentCategory.BASIC,
    tenant_id: uuid.UUID = TENANT_ID,
    **kwargs,
) -> SalaryComponent:
    component = SalaryComponent(
        tenant_id=tenant_id,
        name=kwargs.pop("name", code.title()),
        code=code,
        kind=kind,
        category=category,
        calculation_mode=kwargs.pop("calculation_mode", CalculationMode.FIXED),
        is_taxable=kwargs.pop("is_taxable", kind == ComponentKind.EARNING),
        **kwargs,
    )
    session.add(component)
    await session.commit()
    return component


async def assign(
    session: AsyncSession,
    employee: Employee,
    component: SalaryComponent,
    amount: str,
    effective_from: date = EFFECTIVE_FROM,
    **kwargs,
) -> EmployeeSalaryComponent:
    row = EmployeeSalaryComponent(
        tenant_id=employee.tenant_id,
        employee_id=employee.id,
        component_id=component.id,
        amount=Decimal(amount),
        effective_from=effective_from,
        **kwargs,
    )
    session.add(row)
    await session.commit()
    return row


async def create_active_loan(
    session: AsyncSession,
    employee: Employee,
    total: str,
    monthly: str,
    loan_number: str = "LN-TEST-1",
    repayment_start_date: date = date(2024, 1, 1),
) -> EmployeeLoan:
    loan = EmployeeLoan(
        tenant_id=employee.tenant_id,
        employee_id=employee.id,
        loan_number=loan_number,
        principal_amount=Decimal(total),
        interest_rate=Decimal("0"),
        total_amount=Decimal(total),
        monthly_deduction=Decimal(monthly),
        repayment_start_date=repayment_start_date,
        total_paid=Decimal("0"),
        remaining_balance=Decimal(total),
        status=LoanStatus.ACTIVE,
    )
    session.add(loan)
    await session.commit()
    return loan

