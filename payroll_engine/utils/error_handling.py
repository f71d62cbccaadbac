"""
Error Handling Module for Payroll Engine

This module provides centralized error handling with:
- Custom exception hierarchy
- Standardized error responses
- Non-fatal configuration gaps collected during calculation
- Database error handling
"""

from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logger = logging.getLogger("payroll_engine.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    PERIOD_OVERLAP = "PERIOD_OVERLAP"
    INVALID_COMPONENT_REFERENCE = "INVALID_COMPONENT_REFERENCE"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    PERIOD_NOT_FOUND = "PERIOD_NOT_FOUND"
    LOAN_NOT_FOUND = "LOAN_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    STALE_TOTALS = "STALE_TOTALS"

    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PERIOD_LOCKED = "PERIOD_LOCKED"
    FAILED_PAYROLLS_PRESENT = "FAILED_PAYROLLS_PRESENT"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"
    LEDGER_INCONSISTENCY = "LEDGER_INCONSISTENCY"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Configuration Gaps (non-fatal)
# ============================================================================

@dataclass(frozen=True)
class ConfigurationGap:
    """
    A missing or ambiguous piece of configuration found during calculation.

    Gaps never abort a payroll; they are logged and stored on the Payroll
    row so the period summary can surface them.
    """
    kind: str
    message: str
    context: Dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "context": self.context}


MISSING_STATUTORY_CONFIG = "MissingStatutoryConfig"
AMBIGUOUS_STATUTORY_CONFIG = "AmbiguousStatutoryConfig"
MISSING_BASE_COMPONENT = "MissingBaseComponent"
AMBIGUOUS_SALARY_COMPONENT = "AmbiguousSalaryComponent"


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidDateRangeException(ValidationException):
    """Invalid date range"""

    def __init__(self, start_date: Any, end_date: Any, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. Start date must not be after end date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": str(start_date), "end_date": str(end_date)},
        )


class InvalidAmountException(ValidationException):
    """Invalid monetary amount"""

    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}. Amount must be a positive number.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class PeriodOverlapException(ValidationException):
    """Payroll period dates overlap an existing period"""

    def __init__(self, existing_period_id: Union[str, UUID], start_date: Any, end_date: Any):
        super().__init__(
            message=f"Payroll period {start_date} to {end_date} overlaps an existing period",
            code=ErrorCode.PERIOD_OVERLAP,
            details={
                "existing_period_id": str(existing_period_id),
                "start_date": str(start_date),
                "end_date": str(end_date),
            },
        )


class InvalidComponentReferenceException(ValidationException):
    """Percentage component references a component it may not use as a base"""

    def __init__(self, message: str, component_code: Optional[str] = None):
        super().__init__(
            message=message,
            field="percentage_of_id",
            code=ErrorCode.INVALID_COMPONENT_REFERENCE,
            details={"component_code": component_code} if component_code else None,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class PeriodNotFoundException(NotFoundException):
    """Payroll period not found"""

    def __init__(self, period_id: Union[str, UUID]):
        super().__init__(
            resource_type="PayrollPeriod",
            resource_id=period_id,
            code=ErrorCode.PERIOD_NOT_FOUND,
        )


class LoanNotFoundException(NotFoundException):
    """Employee loan not found"""

    def __init__(self, loan_id: Union[str, UUID]):
        super().__init__(
            resource_type="EmployeeLoan",
            resource_id=loan_id,
            code=ErrorCode.LOAN_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


class DuplicateEntryException(ConflictException):
    """Duplicate entry exception"""

    def __init__(
        self,
        resource_type: str,
        field: str,
        value: str,
    ):
        super().__init__(
            message=f"{resource_type} with {field} '{value}' already exists",
            resource_type=resource_type,
            code=ErrorCode.DUPLICATE_ENTRY,
            details={"field": field, "value": value},
        )


class ConcurrencyConflictException(ConflictException):
    """
    A status guard on the period row did not hold.

    Another operation won the race or the cached state was stale; the caller
    may retry.
    """

    def __init__(
        self,
        message: str,
        period_id: Optional[Union[str, UUID]] = None,
        code: ErrorCode = ErrorCode.CONCURRENCY_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        _details["retryable"] = True
        if period_id:
            _details["period_id"] = str(period_id)
        super().__init__(
            message=message,
            resource_type="PayrollPeriod",
            code=code,
            details=_details,
        )

    @property
    def retryable(self) -> bool:
        return True


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


class InvalidTransitionException(BusinessRuleException):
    """Requested status transition is not allowed from the current status"""

    def __init__(self, entity_type: str, current_status: str, operation: str):
        super().__init__(
            message=f"Cannot {operation} {entity_type} in {current_status} status",
            rule="FORWARD_TRANSITIONS_ONLY",
            code=ErrorCode.INVALID_TRANSITION,
            details={"entity_type": entity_type, "current_status": current_status, "operation": operation},
        )


class PeriodLockedException(BusinessRuleException):
    """Locked payroll data cannot change"""

    def __init__(self, period_id: Optional[Union[str, UUID]] = None, operation: str = "modification"):
        super().__init__(
            message=f"Cannot perform {operation} on a locked payroll period",
            rule="PERIOD_LOCKED",
            code=ErrorCode.PERIOD_LOCKED,
            details={"period_id": str(period_id) if period_id else None, "operation": operation},
        )


# ============================================================================
# Database Exceptions
# ============================================================================

class DatabaseException(AppException):
    """Database error exception"""

    def __init__(
        self,
        message: str = "A database error occurred",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            original_error=original_error,
            details=details,
        )


class DataIntegrityException(DatabaseException):
    """Data integrity error"""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        code: ErrorCode = ErrorCode.DATA_INTEGRITY_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=code,
            original_error=original_error,
            details=details,
        )


class LedgerInconsistencyException(DataIntegrityException):
    """Loan ledger arithmetic does not reconcile"""

    def __init__(self, loan_id: Optional[Union[str, UUID]], message: str, **details: Any):
        _details = {key: str(value) for key, value in details.items()}
        _details["loan_id"] = str(loan_id) if loan_id else None
        super().__init__(
            message=message,
            code=ErrorCode.LEDGER_INCONSISTENCY,
            details=_details,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
        elif "foreign key" in error_str:
            error_message = "Referenced record does not exist"
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Utility Functions
# ============================================================================

def validate_amount(amount: Any, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """Validate a monetary amount and return it as a Decimal"""
    try:
        value = Decimal(str(amount))
    except (TypeError, ValueError, InvalidOperation):
        raise InvalidAmountException(amount, field)
    if not value.is_finite() or value < 0 or (not allow_zero and value == 0):
        raise InvalidAmountException(amount, field)
    return value


__all__ = [
    # Base
    "AppException",
    "ErrorCode",

    # Configuration gaps
    "ConfigurationGap",
    "MISSING_STATUTORY_CONFIG",
    "AMBIGUOUS_STATUTORY_CONFIG",
    "MISSING_BASE_COMPONENT",
    "AMBIGUOUS_SALARY_COMPONENT",

    # Validation
    "ValidationException",
    "InvalidDateRangeException",
    "InvalidAmountException",
    "PeriodOverlapException",
    "InvalidComponentReferenceException",

    # Resource
    "NotFoundException",
    "PeriodNotFoundException",
    "LoanNotFoundException",
    "ConflictException",
    "DuplicateEntryException",
    "ConcurrencyConflictException",

    # Business Logic
    "BusinessRuleException",
    "InvalidTransitionException",
    "PeriodLockedException",

    # Database
    "DatabaseException",
    "DataIntegrityException",
    "LedgerInconsistencyException",

    # Handlers
    "setup_exception_handlers",
    "create_error_response",

    # Utilities
    "validate_amount",
]
