"""
Payroll Engine - API Routers
"""

from payroll_engine.routers import loans, payroll_periods, statutory_rates

__all__ = ["loans", "payroll_periods", "statutory_rates"]
