"""
Payroll Engine - Services Package

Business logic services.
"""

from payroll_engine.services.statutory_rate_service import StatutoryRateService
from payroll_engine.services.salary_structure_service import SalaryStructureService
from payroll_engine.services.loan_ledger_service import LoanLedgerService
from payroll_engine.services.payroll_calculation_service import PayrollCalculationService
from payroll_engine.services.payroll_period_service import PayrollPeriodService
from payroll_engine.services.remittance_service import RemittanceService, DatabaseRemittanceSink

__all__ = [
    "StatutoryRateService",
    "SalaryStructureService",
    "LoanLedgerService",
    "PayrollCalculationService",
    "PayrollPeriodService",
    "RemittanceService",
    "DatabaseRemittanceSink",
]
