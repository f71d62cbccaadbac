"""
Payroll Engine

Payroll batch calculation engine and payroll period lifecycle.
"""

__version__ = "1.0.0"
