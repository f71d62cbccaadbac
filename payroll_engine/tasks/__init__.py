"""
Payroll Engine - Background Tasks Package

Celery background tasks. Importing the package configures the Celery app
so that shared tasks bind to the Redis broker.
"""

from payroll_engine.celery_app import celery_app

__all__ = ["celery_app"]
