"""
Payroll Engine - Utilities Package
"""
