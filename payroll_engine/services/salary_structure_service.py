"""
Payroll Engine - Salary Structure Service

Salary component configuration, dated employee assignments and resolution
of an employee's structure for a pay date.

Percentage components take a single hop: they reference one fixed base
component and are applied after all fixed amounts are known. The one-hop
rule is enforced when components are defined and when they are assigned,
so resolution stays a linear pass.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.models.employee import Employee
from payroll_engine.models.salary import (
    CalculationMode,
    ComponentCategory,
    ComponentKind,
    EmployeeSalaryComponent,
    SalaryComponent,
    SalaryRevisionHistory,
)
from payroll_engine.services.audit_service import record_field_change
from payroll_engine.services.interfaces import AuditSink
from payroll_engine.utils.error_handling import (
    AMBIGUOUS_SALARY_COMPONENT,
    MISSING_BASE_COMPONENT,
    ConfigurationGap,
    DuplicateEntryException,
    InvalidComponentReferenceException,
    InvalidDateRangeException,
    NotFoundException,
    ValidationException,
    validate_amount,
)
from payroll_engine.utils.money import HUNDRED, percent_of, round_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedComponent:
    """A salary component with its amount for the as-of date."""
    component_id: uuid.UUID
    name: str
    code: str
    kind: ComponentKind
    category: ComponentCategory
    amount: Decimal
    is_taxable: bool
    is_statutory: bool
    calculation_mode: CalculationMode = CalculationMode.FIXED
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_earning(self) -> bool:
        return self.kind == ComponentKind.EARNING


class SalaryStructureService:
    """Service for salary components, assignments and structure resolution."""

    def __init__(self, db: AsyncSession, audit_sink: Optional[AuditSink] = None):
        self.db = db
        self.audit_sink = audit_sink

    # ===========================================
    # COMPONENT DEFINITIONS
    # ===========================================

    async def get_component(self, tenant_id: uuid.UUID, component_id: uuid.UUID) -> SalaryComponent:
        result = await self.db.execute(
            select(SalaryComponent).where(
                and_(
                    SalaryComponent.id == component_id,
                    SalaryComponent.tenant_id == tenant_id,
                )
            )
        )
        component = result.scalar_one_or_none()
        if component is None:
            raise NotFoundException("SalaryComponent", component_id)
        return component

    async def list_components(self, tenant_id: uuid.UUID, include_inactive: bool = False) -> List[SalaryComponent]:
        query = select(SalaryComponent).where(SalaryComponent.tenant_id == tenant_id)
        if not include_inactive:
            query = query.where(SalaryComponent.is_active == True)  # noqa: E712
        result = await self.db.execute(query.order_by(SalaryComponent.kind, SalaryComponent.code))
        return list(result.scalars().all())

    async def _validate_percentage_base(
        self,
        tenant_id: uuid.UUID,
        base_id: Optional[uuid.UUID],
        code: str,
        component_id: Optional[uuid.UUID] = None,
    ) -> SalaryComponent:
        if base_id is None:
            raise InvalidComponentReferenceException(
                "Percentage components must reference a base component", component_code=code,
            )
        if component_id is not None and base_id == component_id:
            raise InvalidComponentReferenceException(
                "A component cannot be a percentage of itself", component_code=code,
            )

        base = await self.get_component(tenant_id, base_id)
        if base.calculation_mode == CalculationMode.PERCENTAGE:
            # Chains (and therefore cycles) are not allowed
            raise InvalidComponentReferenceException(
                f"Base component '{base.code}' is itself a percentage component",
                component_code=code,
            )
        return base

    async def create_component(
        self,
        tenant_id: uuid.UUID,
        name: str,
        code: str,
        kind: ComponentKind,
        category: ComponentCategory,
        calculation_mode: CalculationMode = CalculationMode.FIXED,
        percentage_of_id: Optional[uuid.UUID] = None,
        percentage_value: Optional[Decimal] = None,
        is_taxable: bool = True,
        is_statutory: bool = False,
        statutory_type: Optional[str] = None,
        description: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> SalaryComponent:
        """Define a salary component for a tenant."""
        code = code.strip().upper()
        existing = await self.db.execute(
            select(SalaryComponent.id).where(
                and_(
                    SalaryComponent.tenant_id == tenant_id,
                    SalaryComponent.code == code,
                )
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateEntryException("SalaryComponent", "code", code)

        if calculation_mode == CalculationMode.PERCENTAGE:
            await self._validate_percentage_base(tenant_id, percentage_of_id, code)
            if percentage_value is None:
                raise ValidationException("Percentage components need a percentage value", field="percentage_value")
            percentage_value = validate_amount(percentage_value, field="percentage_value")
        elif percentage_of_id is not None:
            raise InvalidComponentReferenceException(
                "Only percentage components may reference a base component", component_code=code,
            )

        component = SalaryComponent(
            tenant_id=tenant_id,
            name=name,
            code=code,
            kind=kind,
            category=category,
            calculation_mode=calculation_mode,
            percentage_of_id=percentage_of_id,
            percentage_value=percentage_value,
            is_taxable=is_taxable if kind == ComponentKind.EARNING else False,
            is_statutory=is_statutory,
            statutory_type=statutory_type,
            description=description,
            created_by_id=created_by_id,
        )
        self.db.add(component)
        await self.db.flush()

        logger.info(f"Created salary component {code} ({calculation_mode.value}) for tenant {tenant_id}")
        return component

    async def deactivate_component(self, tenant_id: uuid.UUID, component_id: uuid.UUID) -> SalaryComponent:
        component = await self.get_component(tenant_id, component_id)
        dependants = await self.db.execute(
            select(SalaryComponent.code).where(
                and_(
                    SalaryComponent.percentage_of_id == component_id,
                    SalaryComponent.is_active == True,  # noqa: E712
                )
            )
        )
        codes = list(dependants.scalars().all())
        if codes:
            raise ValidationException(
                f"Component '{component.code}' is the base of active components: {', '.join(codes)}",
                field="component_id",
            )
        component.is_active = False
        await self.db.flush()
        return component

    # ===========================================
    # EMPLOYEE ASSIGNMENTS
    # ===========================================

    async def _assignments_for(self, employee_id: uuid.UUID, component_id: uuid.UUID) -> List[EmployeeSalaryComponent]:
        result = await self.db.execute(
            select(EmployeeSalaryComponent)
            .where(
                and_(
                    EmployeeSalaryComponent.employee_id == employee_id,
                    EmployeeSalaryComponent.component_id == component_id,
                )
            )
            .order_by(EmployeeSalaryComponent.effective_from)
        )
        return list(result.scalars().all())

    async def assign_component(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        component_id: uuid.UUID,
        amount: Decimal,
        effective_from: date,
        percentage_override: Optional[Decimal] = None,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeSalaryComponent:
        """
        Assign a component to an employee from effective_from onwards.

        An assignment already open on that date is closed at effective_from
        and a revision history row is written. Assignments starting on or
        after effective_from cannot be superseded retroactively.
        """
        employee = await self.db.get(Employee, employee_id)
        if employee is None or employee.tenant_id != tenant_id:
            raise NotFoundException("Employee", employee_id)

        component = await self.get_component(tenant_id, component_id)
        if not component.is_active:
            raise ValidationException(f"Component '{component.code}' is inactive", field="component_id")

        amount = validate_amount(amount, allow_zero=True)
        if component.calculation_mode == CalculationMode.PERCENTAGE:
            await self._validate_percentage_base(
                tenant_id, component.percentage_of_id, component.code, component_id=component.id,
            )
            if percentage_override is not None:
                percentage_override = validate_amount(percentage_override, field="percentage_override")
        elif percentage_override is not None:
            raise ValidationException(
                "Percentage override only applies to percentage components", field="percentage_override",
            )

        history = await self._assignments_for(employee_id, component_id)
        later = [row for row in history if row.effective_from >= effective_from]
        if later:
            raise InvalidDateRangeException(
                effective_from,
                later[0].effective_from,
                message=(
                    f"An assignment of '{component.code}' already starts on {later[0].effective_from}; "
                    "revisions must start after the latest assignment"
                ),
            )

        previous = next((row for row in history if row.is_active_on(effective_from)), None)
        if previous is not None:
            previous.effective_to = effective_from
            previous.updated_by_id = actor_id

            previous_amount = round_money(previous.amount)
            new_amount = round_money(amount)
            change_percentage = None
            if previous_amount:
                change_percentage = round_money((new_amount - previous_amount) / previous_amount * HUNDRED)

            self.db.add(SalaryRevisionHistory(
                tenant_id=tenant_id,
                employee_id=employee_id,
                component_id=component_id,
                previous_amount=previous_amount,
                new_amount=new_amount,
                change_percentage=change_percentage,
                effective_date=effective_from,
                reason=reason,
                revised_by_id=actor_id,
            ))
            record_field_change(
                self.audit_sink, "EmployeeSalaryComponent", previous.id, "amount",
                previous_amount, new_amount, actor_id,
            )

        assignment = EmployeeSalaryComponent(
            tenant_id=tenant_id,
            employee_id=employee_id,
            component_id=component_id,
            amount=round_money(amount),
            percentage_override=percentage_override,
            effective_from=effective_from,
            created_by_id=actor_id,
        )
        self.db.add(assignment)
        await self.db.flush()
        return assignment

    async def end_assignment(self, assignment_id: uuid.UUID, effective_to: date) -> EmployeeSalaryComponent:
        assignment = await self.db.get(EmployeeSalaryComponent, assignment_id)
        if assignment is None:
            raise NotFoundException("EmployeeSalaryComponent", assignment_id)
        if effective_to <= assignment.effective_from:
            raise InvalidDateRangeException(assignment.effective_from, effective_to)
        if assignment.effective_to is not None and assignment.effective_to <= effective_to:
            raise ValidationException("Assignment already ends on or before that date", field="effective_to")
        assignment.effective_to = effective_to
        await self.db.flush()
        return assignment

    async def get_revision_history(self, employee_id: uuid.UUID) -> List[SalaryRevisionHistory]:
        result = await self.db.execute(
            select(SalaryRevisionHistory)
            .where(SalaryRevisionHistory.employee_id == employee_id)
            .order_by(SalaryRevisionHistory.effective_date)
        )
        return list(result.scalars().all())

    # ===========================================
    # RESOLUTION
    # ===========================================

    async def resolve_structure(
        self,
        employee_id: uuid.UUID,
        as_of: date,
    ) -> Tuple[List[ResolvedComponent], List[ConfigurationGap]]:
        """
        Resolve an employee's active components and their amounts on as_of.

        Returns:
            (components, gaps); earnings first, then deductions, each by code.
        """
        result = await self.db.execute(
            select(EmployeeSalaryComponent, SalaryComponent)
            .join(SalaryComponent, SalaryComponent.id == EmployeeSalaryComponent.component_id)
            .where(
                and_(
                    EmployeeSalaryComponent.employee_id == employee_id,
                    EmployeeSalaryComponent.effective_from <= as_of,
                    or_(
                        EmployeeSalaryComponent.effective_to.is_(None),
                        EmployeeSalaryComponent.effective_to > as_of,
                    ),
                    SalaryComponent.is_active == True,  # noqa: E712
                )
            )
            .order_by(EmployeeSalaryComponent.effective_from.desc())
        )
        gaps: List[ConfigurationGap] = []
        active: Dict[uuid.UUID, Tuple[EmployeeSalaryComponent, SalaryComponent]] = {}
        for row, component in result.all():
            if component.id in active:
                gap = ConfigurationGap(
                    kind=AMBIGUOUS_SALARY_COMPONENT,
                    message=f"Overlapping assignments of '{component.code}'; using the latest",
                    context={"employee_id": str(employee_id), "component_id": str(component.id)},
                )
                logger.warning(gap.message)
                gaps.append(gap)
                continue
            active[component.id] = (row, component)

        fixed: Dict[uuid.UUID, ResolvedComponent] = {}
        resolved: List[ResolvedComponent] = []

        # Tier 1: fixed amounts
        for row, component in active.values():
            if component.calculation_mode != CalculationMode.FIXED:
                continue
            item = self._resolved(component, round_money(row.amount), {"source": "fixed"})
            fixed[component.id] = item
            resolved.append(item)

        # Tier 2: one-hop percentage of a fixed base
        for row, component in active.values():
            if component.calculation_mode != CalculationMode.PERCENTAGE:
                continue
            percentage = to_decimal(
                row.percentage_override if row.percentage_override is not None else component.percentage_value
            )
            base = fixed.get(component.percentage_of_id)
            if base is None:
                gap = ConfigurationGap(
                    kind=MISSING_BASE_COMPONENT,
                    message=f"Base component for '{component.code}' is not assigned; amount set to zero",
                    context={
                        "employee_id": str(employee_id),
                        "component_id": str(component.id),
                        "base_component_id": str(component.percentage_of_id),
                    },
                )
                logger.warning(gap.message)
                gaps.append(gap)
                amount = round_money(0)
                details = {"source": "percentage", "percentage": str(percentage), "base_component": None}
            else:
                amount = percent_of(base.amount, percentage)
                details = {
                    "source": "percentage",
                    "percentage": str(percentage),
                    "base_component": base.code,
                    "base_amount": str(base.amount),
                }
            resolved.append(self._resolved(component, amount, details))

        resolved.sort(key=lambda item: (0 if item.is_earning else 1, item.code))
        return resolved, gaps

    @staticmethod
    def _resolved(component: SalaryComponent, amount: Decimal, details: Dict[str, Any]) -> ResolvedComponent:
        return ResolvedComponent(
            component_id=component.id,
            name=component.name,
            code=component.code,
            kind=component.kind,
            category=component.category,
            amount=amount,
            is_taxable=component.is_taxable,
            is_statutory=component.is_statutory,
            calculation_mode=component.calculation_mode,
            details=details,
        )
