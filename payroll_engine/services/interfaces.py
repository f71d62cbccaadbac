"""
Payroll Engine - Collaborator Contracts

Narrow contracts between the payroll core and the subsystems it does not
own: the employee directory, remittance bookkeeping, notification delivery
and audit logging.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class EmployeeRecord:
    """Active employee as seen by payroll processing."""
    id: uuid.UUID
    tenant_id: uuid.UUID
    employee_number: str
    full_name: str
    country: str
    payment_method: Optional[str] = None
    bank_account: Optional[str] = None


@dataclass(frozen=True)
class DomainEvent:
    """Event emitted by the payroll core for out-of-band delivery."""
    name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# Event names
PERIOD_PROCESSED = "payroll.period_processed"
PERIOD_APPROVED = "payroll.period_approved"
PERIOD_PAID = "payroll.period_paid"
PERIOD_LOCKED = "payroll.period_locked"
EMPLOYEE_PAYROLL_FAILED = "payroll.employee_failed"
REMITTANCE_OVERDUE = "payroll.remittance_overdue"


class EmployeeDirectory(Protocol):
    async def list_active_employees(self, tenant_id: uuid.UUID, as_of: date) -> List[EmployeeRecord]:
        ...


class RemittanceSink(Protocol):
    async def record_remittance(
        self,
        period_id: uuid.UUID,
        tax_type: str,
        amount: Decimal,
        due_date: date,
        tenant_id: Optional[uuid.UUID] = None,
    ) -> Any:
        ...


class NotificationSink(Protocol):
    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class AuditSink(Protocol):
    def record_field_change(
        self,
        entity_type: str,
        entity_id: Any,
        field: str,
        old: Any,
        new: Any,
        actor: Optional[Any] = None,
    ) -> None:
        ...
