"""
Error Handling Module for Payroll Core

This module provides centralized error handling with:
- Custom exception hierarchy (not found, invalid state, validation, conflicts)
- Computation fallback records for tolerated numeric failures
- Standardized error responses
- FastAPI exception handlers
"""

from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from decimal import Decimal
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
logger = logging.getLogger("payroll_core.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_STATUS = "INVALID_STATUS"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    PAYROLL_NOT_FOUND = "PAYROLL_NOT_FOUND"
    PAYROLL_RUN_NOT_FOUND = "PAYROLL_RUN_NOT_FOUND"
    ADJUSTMENT_NOT_FOUND = "ADJUSTMENT_NOT_FOUND"
    PAY_STUB_NOT_FOUND = "PAY_STUB_NOT_FOUND"
    WORKER_NOT_FOUND = "WORKER_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Lifecycle Errors (409)
    INVALID_STATE = "INVALID_STATE"
    DUPLICATE_PERIOD = "DUPLICATE_PERIOD"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    ALREADY_SIGNED = "ALREADY_SIGNED"
    CANNOT_MODIFY = "CANNOT_MODIFY"
    CANNOT_DELETE = "CANNOT_DELETE"

    # External Service Errors (502/503)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    WORKER_SERVICE_ERROR = "WORKER_SERVICE_ERROR"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


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
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


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


class InvalidPeriodException(ValidationException):
    """Month outside 1-12 or a non-positive year"""

    def __init__(self, month: Any, year: Any):
        super().__init__(
            message=f"Invalid payroll period: {month}/{year}. Month must be between 1 and 12.",
            field="month",
            code=ErrorCode.INVALID_PERIOD,
            details={"month": month, "year": year},
        )


class InvalidAmountException(ValidationException):
    """Invalid monetary amount"""

    def __init__(self, amount: Any, field: str = "value", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}. Amount must be a finite, non-negative number.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class InvalidStatusException(ValidationException):
    """Status value the operation does not accept"""

    def __init__(self, requested: str, allowed: list):
        super().__init__(
            message=f"Status '{requested}' is not accepted. Allowed: {', '.join(allowed)}",
            field="status",
            code=ErrorCode.INVALID_STATUS,
            details={"requested": requested, "allowed": allowed},
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


class PayrollNotFoundException(NotFoundException):
    """Payroll not found"""

    def __init__(self, payroll_id: Union[str, UUID]):
        super().__init__(
            resource_type="Payroll",
            resource_id=payroll_id,
            code=ErrorCode.PAYROLL_NOT_FOUND,
        )


class PayrollRunNotFoundException(NotFoundException):
    """Payroll run not found"""

    def __init__(self, run_id: Optional[Union[str, UUID]] = None, period: Optional[str] = None):
        if period:
            super().__init__(
                resource_type="PayrollRun",
                message=f"Payroll run for period {period} not found",
                code=ErrorCode.PAYROLL_RUN_NOT_FOUND,
            )
        else:
            super().__init__(
                resource_type="PayrollRun",
                resource_id=run_id,
                code=ErrorCode.PAYROLL_RUN_NOT_FOUND,
            )


class AdjustmentNotFoundException(NotFoundException):
    """Adjustment not found within a payroll"""

    def __init__(self, payroll_id: Union[str, UUID], adjustment_id: Union[str, UUID]):
        super().__init__(
            resource_type="Adjustment",
            resource_id=adjustment_id,
            message=f"Adjustment '{adjustment_id}' not found in payroll '{payroll_id}'",
            code=ErrorCode.ADJUSTMENT_NOT_FOUND,
        )


class PayStubNotFoundException(NotFoundException):
    """Pay stub not found"""

    def __init__(self, pay_stub_id: Union[str, UUID]):
        super().__init__(
            resource_type="PayStub",
            resource_id=pay_stub_id,
            code=ErrorCode.PAY_STUB_NOT_FOUND,
        )


class WorkerNotFoundException(NotFoundException):
    """Worker not found in the worker directory"""

    def __init__(self, worker_id: str):
        super().__init__(
            resource_type="Worker",
            resource_id=worker_id,
            code=ErrorCode.WORKER_NOT_FOUND,
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


class ConcurrencyException(ConflictException):
    """The record changed underneath this write"""

    def __init__(self, resource_type: str, resource_id: Union[str, UUID]):
        super().__init__(
            message=f"{resource_type} '{resource_id}' was modified concurrently. Reload and retry.",
            resource_type=resource_type,
            code=ErrorCode.VERSION_CONFLICT,
            details={"resource_id": str(resource_id)},
        )


# ============================================================================
# Lifecycle Exceptions
# ============================================================================

class InvalidStateException(ConflictException):
    """Operation attempted outside its required lifecycle status"""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.INVALID_STATE,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            resource_type=resource_type,
            code=code,
            details=details,
        )


class DuplicatePeriodException(InvalidStateException):
    """A record already exists for the period"""

    def __init__(self, resource_type: str, month: int, year: int, worker_id: Optional[str] = None):
        details = {"month": month, "year": year}
        if worker_id:
            details["worker_id"] = worker_id
            message = f"{resource_type} for worker '{worker_id}' in {month:02d}/{year} already exists"
        else:
            message = f"{resource_type} for {month:02d}/{year} already exists"
        super().__init__(
            message=message,
            resource_type=resource_type,
            code=ErrorCode.DUPLICATE_PERIOD,
            details=details,
        )


class InvalidTransitionException(InvalidStateException):
    """Lifecycle transition not allowed"""

    def __init__(self, resource_type: str, current: str, target: str):
        super().__init__(
            message=f"Cannot move {resource_type} from '{current}' to '{target}'",
            resource_type=resource_type,
            code=ErrorCode.INVALID_TRANSITION,
            details={"current_status": current, "target_status": target},
        )


class PayrollLockedException(InvalidStateException):
    """Payroll cannot be modified in its current status"""

    def __init__(self, payroll_id: Union[str, UUID], current: str):
        super().__init__(
            message=f"Payroll '{payroll_id}' cannot be modified while '{current}'",
            resource_type="Payroll",
            code=ErrorCode.CANNOT_MODIFY,
            details={"payroll_id": str(payroll_id), "current_status": current},
        )


class PayStubNotEligibleException(InvalidStateException):
    """Pay stubs are only issued for completed payrolls"""

    def __init__(self, payroll_id: Union[str, UUID], current: str):
        super().__init__(
            message=f"Payroll '{payroll_id}' is '{current}'; a pay stub requires a completed payroll",
            resource_type="PayStub",
            code=ErrorCode.NOT_ELIGIBLE,
            details={"payroll_id": str(payroll_id), "current_status": current},
        )


class PayStubAlreadySignedException(InvalidStateException):
    """Signature fields are written once"""

    def __init__(self, pay_stub_id: Union[str, UUID], signed_at: Optional[datetime] = None):
        super().__init__(
            message=f"Pay stub '{pay_stub_id}' is already signed",
            resource_type="PayStub",
            code=ErrorCode.ALREADY_SIGNED,
            details={
                "pay_stub_id": str(pay_stub_id),
                "signature_date": signed_at.isoformat() if signed_at else None,
            },
        )


class CannotDeleteException(InvalidStateException):
    """Deletion blocked by a dependent or finalized record"""

    def __init__(self, resource_type: str, resource_id: Union[str, UUID], reason: str):
        super().__init__(
            message=f"Cannot delete {resource_type} '{resource_id}': {reason}",
            resource_type=resource_type,
            code=ErrorCode.CANNOT_DELETE,
            details={"resource_id": str(resource_id), "reason": reason},
        )


# ============================================================================
# Computation Fallbacks
# ============================================================================

@dataclass
class ComputationFallback:
    """
    A non-finite numeric result that was replaced with a defined fallback.

    Fallbacks never abort a calculation. They are logged when recorded and
    counted on the payroll run so substituted values stay visible.
    """
    worker_id: str
    field: str
    original: str
    substituted: Decimal
    recorded_at: datetime = dataclass_field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "field": self.field,
            "original": self.original,
            "substituted": str(self.substituted),
        }


def record_fallback(
    worker_id: str,
    field: str,
    original: Any,
    substituted: Decimal,
) -> ComputationFallback:
    """Create a fallback record and emit the warning for it."""
    fallback = ComputationFallback(
        worker_id=worker_id,
        field=field,
        original=str(original),
        substituted=substituted,
    )
    logging.getLogger("payroll_core.payroll").warning(
        f"Computation fallback for worker {worker_id}: {field}={original!s} replaced with {substituted}",
        extra=fallback.to_dict(),
    )
    return fallback


# ============================================================================
# External Service Exceptions
# ============================================================================

class ExternalServiceException(AppException):
    """External service error exception"""

    def __init__(
        self,
        service_name: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        _details["service"] = service_name
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=_details,
            original_error=original_error,
        )


class WorkerServiceException(ExternalServiceException):
    """Worker directory error"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            service_name="Worker Service",
            message=f"Worker service error: {message}",
            code=ErrorCode.WORKER_SERVICE_ERROR,
            original_error=original_error,
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
            "timestamp": datetime.utcnow().isoformat() + "Z",
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
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.EXTERNAL_SERVICE_ERROR,
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

def validate_period(month: int, year: int) -> None:
    """Raise InvalidPeriodException unless month is 1-12 and year is positive."""
    if not isinstance(month, int) or not isinstance(year, int) or not 1 <= month <= 12 or year < 1:
        raise InvalidPeriodException(month, year)
