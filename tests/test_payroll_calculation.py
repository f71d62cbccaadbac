"""
Payroll Engine - Payroll Calculation Tests

Covers the pure per-employee calculation and the persisted pipeline that
writes Payroll rows, items and loan repayments.
"""

import uuid
import pytest
from datetime import date
from decimal import Decimal

from payroll_engine.models.loan import EmployeeLoan, LoanStatus
from payroll_engine.models.payroll import PayItemType, PayrollStatus
from payroll_engine.models.salary import (
    CalculationMode,
    ComponentCategory,
    ComponentKind,
)
from payroll_engine.services.employee_directory import DatabaseEmployeeDirectory
from payroll_engine.services.loan_ledger_service import LoanDeduction, LoanLedgerService, payroll_repayment_id
from payroll_engine.services.payroll_calculation_service import (
    PayrollCalculationService,
    PeriodContext,
    calculate_employee_payroll,
    payroll_id_for,
    payroll_item_id_for,
)
from payroll_engine.services.salary_structure_service import ResolvedComponent
from payroll_engine.services.statutory_rate_service import ResolvedStatutoryConfig
from payroll_engine.services.tax_calculators import parse_statutory_config
from payroll_engine.utils.error_handling import MISSING_STATUTORY_CONFIG, ConfigurationGap, NotFoundException

from factories import (
    HEALTH_CONFIG,
    PAYE_CONFIG,
    PENSION_CONFIG,
    TENANT_ID,
    assign,
    create_active_loan,
    create_component,
    create_employee,
)


STATUTORY = ResolvedStatutoryConfig(
    country="KE",
    as_of=date(2024, 1, 31),
    paye=parse_statutory_config("paye", PAYE_CONFIG),
    pension=parse_statutory_config("pension", PENSION_CONFIG),
    health=parse_statutory_config("health", HEALTH_CONFIG),
)


def component(code, amount, kind=ComponentKind.EARNING, category=ComponentCategory.BASIC, **kwargs):
    return ResolvedComponent(
        component_id=uuid.uuid4(),
        name=code.title(),
        code=code,
        kind=kind,
        category=category,
        amount=Decimal(amount),
        is_taxable=kwargs.pop("is_taxable", kind == ComponentKind.EARNING),
        is_statutory=kwargs.pop("is_statutory", False),
        calculation_mode=CalculationMode.FIXED,
    )


def loan(total, monthly, loan_number="LN-2024-0001"):
    return EmployeeLoan(
        id=uuid.uuid4(),
        tenant_id=TENANT_ID,
        employee_id=uuid.uuid4(),
        loan_number=loan_number,
        principal_amount=Decimal(total),
        interest_rate=Decimal("0"),
        total_amount=Decimal(total),
        monthly_deduction=Decimal(monthly),
        repayment_start_date=date(2024, 1, 1),
        total_paid=Decimal("0"),
        remaining_balance=Decimal(total),
        status=LoanStatus.ACTIVE,
    )


class TestCalculateEmployeePayroll:
    """Pure calculation over a resolved structure."""

    def test_statutory_worked_example(self):
        result = calculate_employee_payroll([component("BASIC", "50000")], STATUTORY)

        assert result.gross_pay == Decimal("50000.00")
        assert result.paye == Decimal("7383.05")
        assert result.pension == Decimal("1080.00")
        assert result.health == Decimal("1000.00")
        assert result.total_deductions == Decimal("9463.05")
        assert result.net_pay == Decimal("40536.95")
        assert [line.code for line in result.lines] == ["BASIC", "PAYE", "PENSION", "HEALTH"]

    def test_net_equals_earnings_minus_deductions(self):
        components = [
            component("BASIC", "42000"),
            component("HOUSING", "6300", category=ComponentCategory.ALLOWANCE),
            component("MEAL", "2000", category=ComponentCategory.ALLOWANCE, is_taxable=False),
            component("UNION", "750", kind=ComponentKind.DEDUCTION, category=ComponentCategory.OTHER_DEDUCTION),
        ]

        result = calculate_employee_payroll(
            components, STATUTORY, [LoanDeduction(loan=loan("10000", "2500"), amount=Decimal("2500"))],
        )

        earnings = sum(line.amount for line in result.lines if line.item_type == PayItemType.EARNING)
        deductions = sum(line.amount for line in result.lines if line.item_type == PayItemType.DEDUCTION)
        assert result.gross_pay == earnings == Decimal("50300.00")
        assert result.taxable_income == Decimal("48300.00")
        assert result.total_deductions == deductions
        assert result.total_deductions >= result.statutory_total
        assert result.net_pay == result.total_earnings - result.total_deductions
        assert result.loan_deductions == Decimal("2500.00")
        assert result.other_deductions == Decimal("750.00")

    def test_line_order(self):
        components = [
            component("BASIC", "30000"),
            component("UNION", "500", kind=ComponentKind.DEDUCTION, category=ComponentCategory.OTHER_DEDUCTION),
        ]

        result = calculate_employee_payroll(
            components, STATUTORY, [LoanDeduction(loan=loan("5000", "1000"), amount=Decimal("1000"))],
        )

        assert [line.code for line in result.lines] == [
            "BASIC", "PAYE", "PENSION", "HEALTH", "LOAN-LN-2024-0001", "UNION",
        ]

    def test_statutory_components_in_structure_are_ignored(self):
        components = [
            component("BASIC", "30000"),
            component(
                "NSSF-FIXED", "200",
                kind=ComponentKind.DEDUCTION, category=ComponentCategory.STATUTORY, is_statutory=True,
            ),
        ]

        result = calculate_employee_payroll(components, STATUTORY)

        assert "NSSF-FIXED" not in [line.code for line in result.lines]
        assert result.other_deductions == Decimal("0.00")

    def test_negative_net_is_flagged(self):
        components = [
            component("BASIC", "1000"),
            component("ADVANCE", "5000", kind=ComponentKind.DEDUCTION, category=ComponentCategory.OTHER_DEDUCTION),
        ]

        result = calculate_employee_payroll(components, STATUTORY)

        assert result.has_negative_net
        assert result.net_pay < 0

    def test_missing_statutory_config_yields_zero_with_warnings(self):
        gap = ConfigurationGap(kind=MISSING_STATUTORY_CONFIG, message="No paye rate configured")
        statutory = ResolvedStatutoryConfig(country="KE", as_of=date(2024, 1, 31), gaps=(gap,))

        result = calculate_employee_payroll([component("BASIC", "50000")], statutory)

        assert result.statutory_total == Decimal("0.00")
        assert result.net_pay == Decimal("50000.00")
        assert [line.code for line in result.lines] == ["BASIC"]
        assert result.warnings[0]["kind"] == MISSING_STATUTORY_CONFIG


class TestProcessEmployee:
    """Persisted per-employee pipeline."""

    async def _context(self, period_service):
        period = await period_service.create_period(
            TENANT_ID, "January 2024", date(2024, 1, 1), date(2024, 1, 31), date(2024, 1, 28),
        )
        return PeriodContext.from_period(period)

    async def _record(self, session_factory, employee_number):
        records = await DatabaseEmployeeDirectory(session_factory).list_active_employees(TENANT_ID, date(2024, 1, 31))
        return next(record for record in records if record.employee_number == employee_number)

    @pytest.mark.asyncio
    async def test_payroll_items_and_repayment_persisted(
        self, session_factory, db_session, period_service, basic_component, statutory_rates,
    ):
        employee = await create_employee(db_session, "E001")
        await assign(db_session, employee, basic_component, "50000")
        active_loan = await create_active_loan(db_session, employee, "3000", "1000")
        context = await self._context(period_service)
        record = await self._record(session_factory, "E001")
        service = PayrollCalculationService(session_factory)

        outcome = await service.process_employee(context, record)

        payroll_id = payroll_id_for(context.id, employee.id)
        assert outcome.status == PayrollStatus.CALCULATED
        assert outcome.payroll_id == payroll_id
        assert outcome.net_pay == Decimal("39536.95")

        payroll = await service.get_payroll(payroll_id)
        assert payroll.loan_deductions == Decimal("1000.00")
        assert payroll.bank_account == "Equity 00E001"
        assert [item.code for item in payroll.items] == ["BASIC", "PAYE", "PENSION", "HEALTH", "LOAN-LN-TEST-1"]
        assert payroll.items[0].id == payroll_item_id_for(payroll_id, 0, "BASIC")

        async with session_factory() as session:
            ledger = LoanLedgerService(session)
            reloaded = await ledger.get_loan(active_loan.id)
            repayments = await ledger.get_repayments(active_loan.id)
        assert reloaded.remaining_balance == Decimal("2000.00")
        assert [r.id for r in repayments] == [payroll_repayment_id(payroll_id, active_loan.id)]

    @pytest.mark.asyncio
    async def test_rerun_replaces_payroll_without_double_deducting(
        self, session_factory, db_session, period_service, basic_component, statutory_rates,
    ):
        employee = await create_employee(db_session, "E001")
        await assign(db_session, employee, basic_component, "50000")
        active_loan = await create_active_loan(db_session, employee, "3000", "1000")
        context = await self._context(period_service)
        record = await self._record(session_factory, "E001")
        service = PayrollCalculationService(session_factory)

        first = await service.process_employee(context, record)
        second = await service.process_employee(context, record)

        assert first.payroll_id == second.payroll_id
        assert len(await service.list_period_payrolls(context.id)) == 1
        async with session_factory() as session:
            reloaded = await LoanLedgerService(session).get_loan(active_loan.id)
        assert reloaded.remaining_balance == Decimal("2000.00")
        assert reloaded.total_paid == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_negative_net_fails_without_touching_loans(
        self, session_factory, db_session, period_service, basic_component, statutory_rates,
    ):
        employee = await create_employee(db_session, "E001")
        advance = await create_component(
            db_session, "ADVANCE", kind=ComponentKind.DEDUCTION, category=ComponentCategory.OTHER_DEDUCTION,
        )
        await assign(db_session, employee, basic_component, "10000")
        await assign(db_session, employee, advance, "20000")
        active_loan = await create_active_loan(db_session, employee, "3000", "1000")
        context = await self._context(period_service)
        record = await self._record(session_factory, "E001")
        service = PayrollCalculationService(session_factory)

        outcome = await service.process_employee(context, record)

        assert outcome.failed
        assert "Negative net pay" in outcome.reason

        payroll = await service.get_payroll(outcome.payroll_id)
        assert payroll.status == PayrollStatus.FAILED
        assert payroll.items == []
        async with session_factory() as session:
            reloaded = await LoanLedgerService(session).get_loan(active_loan.id)
        assert reloaded.remaining_balance == Decimal("3000.00")

    @pytest.mark.asyncio
    async def test_missing_rates_recorded_as_warnings(
        self, session_factory, db_session, period_service, basic_component,
    ):
        employee = await create_employee(db_session, "E001")
        await assign(db_session, employee, basic_component, "50000")
        context = await self._context(period_service)
        record = await self._record(session_factory, "E001")
        service = PayrollCalculationService(session_factory)

        outcome = await service.process_employee(context, record)

        payroll = await service.get_payroll(outcome.payroll_id)
        assert outcome.status == PayrollStatus.CALCULATED
        assert payroll.net_pay == Decimal("50000.00")
        assert {warning["kind"] for warning in payroll.warnings} == {MISSING_STATUTORY_CONFIG}

    @pytest.mark.asyncio
    async def test_unknown_payroll(self, session_factory):
        with pytest.raises(NotFoundException):
            await PayrollCalculationService(session_factory).get_payroll(uuid.uuid4())
