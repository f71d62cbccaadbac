"""
Payroll Engine - Schemas Package

Pydantic request and response schemas for the HTTP API.
"""
