"""
Payroll Engine - Salary Structure Tests
"""

import pytest
from datetime import date
from decimal import Decimal

from payroll_engine.models.salary import CalculationMode, ComponentCategory, ComponentKind
from payroll_engine.services.salary_structure_service import SalaryStructureService
from payroll_engine.utils.error_handling import (
    MISSING_BASE_COMPONENT,
    DuplicateEntryException,
    InvalidComponentReferenceException,
    InvalidDateRangeException,
    ValidationException,
)

from factories import TENANT_ID, create_employee


async def _basic_and_housing(service, percentage="15"):
    basic = await service.create_component(
        TENANT_ID, "Basic Salary", "basic", ComponentKind.EARNING, ComponentCategory.BASIC,
    )
    housing = await service.create_component(
        TENANT_ID,
        "Housing Allowance",
        "HOUSING",
        ComponentKind.EARNING,
        ComponentCategory.ALLOWANCE,
        calculation_mode=CalculationMode.PERCENTAGE,
        percentage_of_id=basic.id,
        percentage_value=Decimal(percentage),
    )
    return basic, housing


class TestComponentDefinitions:
    """Component codes and percentage references."""

    @pytest.mark.asyncio
    async def test_code_is_normalised_and_unique(self, db_session):
        service = SalaryStructureService(db_session)
        basic, _ = await _basic_and_housing(service)

        assert basic.code == "BASIC"
        with pytest.raises(DuplicateEntryException):
            await service.create_component(
                TENANT_ID, "Basic again", "Basic", ComponentKind.EARNING, ComponentCategory.BASIC,
            )

    @pytest.mark.asyncio
    async def test_percentage_chain_rejected(self, db_session):
        service = SalaryStructureService(db_session)
        _, housing = await _basic_and_housing(service)

        with pytest.raises(InvalidComponentReferenceException):
            await service.create_component(
                TENANT_ID,
                "Commuter",
                "COMMUTER",
                ComponentKind.EARNING,
                ComponentCategory.ALLOWANCE,
                calculation_mode=CalculationMode.PERCENTAGE,
                percentage_of_id=housing.id,
                percentage_value=Decimal("5"),
            )

    @pytest.mark.asyncio
    async def test_percentage_needs_base(self, db_session):
        service = SalaryStructureService(db_session)

        with pytest.raises(InvalidComponentReferenceException):
            await service.create_component(
                TENANT_ID,
                "Orphan",
                "ORPHAN",
                ComponentKind.EARNING,
                ComponentCategory.ALLOWANCE,
                calculation_mode=CalculationMode.PERCENTAGE,
                percentage_value=Decimal("5"),
            )

    @pytest.mark.asyncio
    async def test_fixed_component_cannot_reference_base(self, db_session):
        service = SalaryStructureService(db_session)
        basic, _ = await _basic_and_housing(service)

        with pytest.raises(InvalidComponentReferenceException):
            await service.create_component(
                TENANT_ID, "Bonus", "BONUS", ComponentKind.EARNING, ComponentCategory.BONUS,
                percentage_of_id=basic.id,
            )

    @pytest.mark.asyncio
    async def test_deductions_are_never_taxable(self, db_session):
        service = SalaryStructureService(db_session)

        union = await service.create_component(
            TENANT_ID, "Union Dues", "UNION", ComponentKind.DEDUCTION, ComponentCategory.OTHER_DEDUCTION,
        )

        assert union.is_taxable is False

    @pytest.mark.asyncio
    async def test_base_with_dependants_cannot_be_deactivated(self, db_session):
        service = SalaryStructureService(db_session)
        basic, housing = await _basic_and_housing(service)

        with pytest.raises(ValidationException):
            await service.deactivate_component(TENANT_ID, basic.id)

        await service.deactivate_component(TENANT_ID, housing.id)
        deactivated = await service.deactivate_component(TENANT_ID, basic.id)
        assert deactivated.is_active is False


class TestStructureResolution:
    """Resolving an employee's components for a pay date."""

    @pytest.mark.asyncio
    async def test_percentage_of_fixed_base(self, db_session):
        service = SalaryStructureService(db_session)
        basic, housing = await _basic_and_housing(service)
        employee = await create_employee(db_session, "E001")

        await service.assign_component(TENANT_ID, employee.id, basic.id, Decimal("50000"), date(2024, 1, 1))
        await service.assign_component(TENANT_ID, employee.id, housing.id, Decimal("0"), date(2024, 1, 1))

        components, gaps = await service.resolve_structure(employee.id, date(2024, 1, 31))

        assert gaps == []
        assert [(c.code, c.amount) for c in components] == [
            ("BASIC", Decimal("50000.00")),
            ("HOUSING", Decimal("7500.00")),
        ]
        assert components[1].details["base_component"] == "BASIC"

    @pytest.mark.asyncio
    async def test_percentage_override(self, db_session):
        service = SalaryStructureService(db_session)
        basic, housing = await _basic_and_housing(service)
        employee = await create_employee(db_session, "E001")

        await service.assign_component(TENANT_ID, employee.id, basic.id, Decimal("40000"), date(2024, 1, 1))
        await service.assign_component(
            TENANT_ID, employee.id, housing.id, Decimal("0"), date(2024, 1, 1),
            percentage_override=Decimal("20"),
        )

        components, _ = await service.resolve_structure(employee.id, date(2024, 1, 31))

        assert components[1].amount == Decimal("8000.00")

    @pytest.mark.asyncio
    async def test_missing_base_yields_zero_and_gap(self, db_session):
        service = SalaryStructureService(db_session)
        _, housing = await _basic_and_housing(service)
        employee = await create_employee(db_session, "E001")

        await service.assign_component(TENANT_ID, employee.id, housing.id, Decimal("0"), date(2024, 1, 1))

        components, gaps = await service.resolve_structure(employee.id, date(2024, 1, 31))

        assert components[0].amount == Decimal("0.00")
        assert [gap.kind for gap in gaps] == [MISSING_BASE_COMPONENT]

    @pytest.mark.asyncio
    async def test_earnings_before_deductions(self, db_session):
        service = SalaryStructureService(db_session)
        basic, _ = await _basic_and_housing(service)
        union = await service.create_component(
            TENANT_ID, "Union Dues", "AAA-UNION", ComponentKind.DEDUCTION, ComponentCategory.OTHER_DEDUCTION,
        )
        employee = await create_employee(db_session, "E001")

        await service.assign_component(TENANT_ID, employee.id, union.id, Decimal("500"), date(2024, 1, 1))
        await service.assign_component(TENANT_ID, employee.id, basic.id, Decimal("30000"), date(2024, 1, 1))

        components, _ = await service.resolve_structure(employee.id, date(2024, 1, 31))

        assert [c.code for c in components] == ["BASIC", "AAA-UNION"]

    @pytest.mark.asyncio
    async def test_assignment_outside_window_is_ignored(self, db_session):
        service = SalaryStructureService(db_session)
        basic, _ = await _basic_and_housing(service)
        employee = await create_employee(db_session, "E001")

        await service.assign_component(TENANT_ID, employee.id, basic.id, Decimal("30000"), date(2024, 3, 1))

        components, _ = await service.resolve_structure(employee.id, date(2024, 2, 29))

        assert components == []


class TestSalaryRevisions:
    """Dated revisions close the previous assignment."""

    @pytest.mark.asyncio
    async def test_revision_closes_previous_and_records_history(self, db_session, audit_sink):
        service = SalaryStructureService(db_session, audit_sink=audit_sink)
        basic, _ = await _basic_and_housing(service)
        employee = await create_employee(db_session, "E001")

        first = await service.assign_component(TENANT_ID, employee.id, basic.id, Decimal("50000"), date(2024, 1, 1))
        await service.assign_component(
            TENANT_ID, employee.id, basic.id, Decimal("55000"), date(2024, 7, 1), reason="Annual review",
        )

        assert first.effective_to == date(2024, 7, 1)

        history = await service.get_revision_history(employee.id)
        assert len(history) == 1
        assert history[0].previous_amount == Decimal("50000.00")
        assert history[0].new_amount == Decimal("55000.00")
        assert history[0].change_percentage == Decimal("10.00")
        assert audit_sink.changes[0]["field"] == "amount"

        june, _ = await service.resolve_structure(employee.id, date(2024, 6, 30))
        july, _ = await service.resolve_structure(employee.id, date(2024, 7, 31))
        assert june[0].amount == Decimal("50000.00")
        assert july[0].amount == Decimal("55000.00")

    @pytest.mark.asyncio
    async def test_retroactive_revision_rejected(self, db_session):
        service = SalaryStructureService(db_session)
        basic, _ = await _basic_and_housing(service)
        employee = await create_employee(db_session, "E001")

        await service.assign_component(TENANT_ID, employee.id, basic.id, Decimal("50000"), date(2024, 7, 1))

        with pytest.raises(InvalidDateRangeException):
            await service.assign_component(TENANT_ID, employee.id, basic.id, Decimal("45000"), date(2024, 3, 1))

    @pytest.mark.asyncio
    async def test_end_assignment_validates_date(self, db_session):
        service = SalaryStructureService(db_session)
        basic, _ = await _basic_and_housing(service)
        employee = await create_employee(db_session, "E001")
        assignment = await service.assign_component(
            TENANT_ID, employee.id, basic.id, Decimal("50000"), date(2024, 1, 1),
        )

        with pytest.raises(InvalidDateRangeException):
            await service.end_assignment(assignment.id, date(2023, 12, 31))

        ended = await service.end_assignment(assignment.id, date(2024, 6, 1))
        assert ended.effective_to == date(2024, 6, 1)
