"""
Error Handling Module for LedgerSeal

This module provides centralized error handling with:
- Custom exception hierarchy
- Standardized error responses
- Error logging and tracking
- Invoicing and credit note business rule errors
"""

from datetime import datetime
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
logger = logging.getLogger("ledgerseal.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"

    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"
    INVOICE_NOT_FOUND = "INVOICE_NOT_FOUND"
    CREDIT_NOTE_NOT_FOUND = "CREDIT_NOTE_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    DRAFT_INVOICE = "DRAFT_INVOICE"
    INVOICE_FULLY_CREDITED = "INVOICE_FULLY_CREDITED"
    INVOICE_ALREADY_CANCELLED = "INVOICE_ALREADY_CANCELLED"
    INVOICE_NOT_CANCELLABLE = "INVOICE_NOT_CANCELLABLE"
    CREDIT_AMOUNT_EXCEEDED = "CREDIT_AMOUNT_EXCEEDED"
    COMPLIANCE_FIELD_MISSING = "COMPLIANCE_FIELD_MISSING"

    # External Service Errors (502/503)
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    DOCUMENT_UNAVAILABLE = "DOCUMENT_UNAVAILABLE"
    LEDGER_EXPORT_ERROR = "LEDGER_EXPORT_ERROR"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"
    IMMUTABLE_RECORD = "IMMUTABLE_RECORD"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


def _money(value: Any) -> str:
    """Render an amount for error payloads."""
    return f"{Decimal(str(value)):.2f}"


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


class InvalidDateRangeException(ValidationException):
    """Invalid date range"""

    def __init__(self, start_date: str, end_date: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. Start date must be before end date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": start_date, "end_date": end_date},
        )


class MissingComplianceFieldException(ValidationException):
    """A mandatory legal mention is missing on the issuer, client or invoice"""

    def __init__(self, issues: list, subject: str = "invoice"):
        first = issues[0]["field"] if issues else None
        super().__init__(
            message=f"The {subject} is missing mandatory information ({len(issues)} issue(s))",
            field=first,
            code=ErrorCode.COMPLIANCE_FIELD_MISSING,
            details={"subject": subject, "issues": issues},
        )


# ============================================================================
# Authentication/Authorization Exceptions
# ============================================================================

class AuthenticationException(AppException):
    """Base authentication exception"""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.UNAUTHORIZED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
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


class TenantNotFoundException(NotFoundException):
    """Tenant not found"""

    def __init__(self, tenant_id: Union[str, UUID]):
        super().__init__(
            resource_type="Tenant",
            resource_id=tenant_id,
            code=ErrorCode.TENANT_NOT_FOUND,
        )


class ClientNotFoundException(NotFoundException):
    """Client not found"""

    def __init__(self, client_id: Union[str, UUID]):
        super().__init__(
            resource_type="Client",
            resource_id=client_id,
            code=ErrorCode.CLIENT_NOT_FOUND,
        )


class InvoiceNotFoundException(NotFoundException):
    """Invoice not found"""

    def __init__(self, invoice_id: Union[str, UUID]):
        super().__init__(
            resource_type="Invoice",
            resource_id=invoice_id,
            code=ErrorCode.INVOICE_NOT_FOUND,
        )


class CreditNoteNotFoundException(NotFoundException):
    """Credit note not found"""

    def __init__(self, credit_note_id: Union[str, UUID]):
        super().__init__(
            resource_type="CreditNote",
            resource_id=credit_note_id,
            code=ErrorCode.CREDIT_NOTE_NOT_FOUND,
        )


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


class InvalidStatusTransitionException(BusinessRuleException):
    """A document cannot move from its current status to the requested one"""

    def __init__(self, document_type: str, current_status: str, target_status: str):
        super().__init__(
            message=f"Cannot move {document_type} from '{current_status}' to '{target_status}'",
            rule="STATUS_LIFECYCLE",
            code=ErrorCode.INVALID_STATUS_TRANSITION,
            details={
                "document_type": document_type,
                "current_status": current_status,
                "target_status": target_status,
            },
        )


class DraftInvoiceException(BusinessRuleException):
    """Draft invoices cannot be credited or cancelled"""

    def __init__(self, invoice_id: Union[str, UUID], operation: str = "credit"):
        super().__init__(
            message=f"Cannot {operation} a draft invoice",
            rule="INVOICE_FINALIZED",
            code=ErrorCode.DRAFT_INVOICE,
            details={"invoice_id": str(invoice_id), "operation": operation},
        )


class InvoiceFullyCreditedException(BusinessRuleException):
    """Nothing remains to be credited on the invoice"""

    def __init__(self, invoice_number: str, total: Any):
        super().__init__(
            message=f"Invoice {invoice_number} has already been fully credited",
            rule="REMAINING_AMOUNT_POSITIVE",
            code=ErrorCode.INVOICE_FULLY_CREDITED,
            details={"invoice_number": invoice_number, "invoice_total": _money(total)},
        )


class InvoiceAlreadyCancelledException(BusinessRuleException):
    """Cancellation is terminal and single-shot"""

    def __init__(self, invoice_number: str):
        super().__init__(
            message=f"Invoice {invoice_number} is already cancelled",
            rule="CANCELLATION_SINGLE_SHOT",
            code=ErrorCode.INVOICE_ALREADY_CANCELLED,
            details={"invoice_number": invoice_number},
        )


class InvoiceNotCancellableException(BusinessRuleException):
    """Invoice status or prior credits forbid a full cancellation"""

    def __init__(self, invoice_number: str, reason: str):
        super().__init__(
            message=f"Invoice {invoice_number} cannot be cancelled: {reason}",
            rule="CANCELLATION_ALLOWED",
            code=ErrorCode.INVOICE_NOT_CANCELLABLE,
            details={"invoice_number": invoice_number, "reason": reason},
        )


class CreditAmountExceededException(BusinessRuleException):
    """Credit note total larger than what remains to be credited"""

    def __init__(self, requested: Any, remaining: Any, currency: str = "EUR"):
        self.requested = Decimal(str(requested))
        self.remaining = Decimal(str(remaining))
        super().__init__(
            message=(
                f"Credit amount ({_money(requested)} {currency}) exceeds the remaining "
                f"creditable amount ({_money(remaining)} {currency})"
            ),
            rule="NO_OVER_CREDITING",
            code=ErrorCode.CREDIT_AMOUNT_EXCEEDED,
            details={
                "requested_amount": _money(requested),
                "remaining_amount": _money(remaining),
                "currency": currency,
            },
        )


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


class DocumentUnavailableException(ExternalServiceException):
    """The rendered invoice document could not be produced"""

    def __init__(self, invoice_id: Union[str, UUID], original_error: Optional[Exception] = None):
        super().__init__(
            service_name="Document renderer",
            message=f"Rendered document unavailable for invoice {invoice_id}",
            code=ErrorCode.DOCUMENT_UNAVAILABLE,
            original_error=original_error,
            details={"invoice_id": str(invoice_id)},
        )


class LedgerExportException(ExternalServiceException):
    """The ledger file could not be built or written"""

    def __init__(self, message: str, original_error: Optional[Exception] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            service_name="Ledger export",
            message=f"Ledger export failed: {message}",
            code=ErrorCode.LEDGER_EXPORT_ERROR,
            original_error=original_error,
            details=details,
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
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            original_error=original_error,
        )


class DataIntegrityException(DatabaseException):
    """Data integrity error"""

    def __init__(self, message: str, original_error: Optional[Exception] = None, code: ErrorCode = ErrorCode.DATA_INTEGRITY_ERROR):
        super().__init__(
            message=message,
            code=code,
            original_error=original_error,
        )


class ImmutableRecordException(DataIntegrityException):
    """Attempt to change a sealed document or an audit entry"""

    def __init__(self, record_type: str, record_id: Any, fields: Optional[list] = None):
        message = f"{record_type} {record_id} is immutable"
        if fields:
            message += f" (attempted change: {', '.join(fields)})"
        super().__init__(message=message, code=ErrorCode.IMMUTABLE_RECORD)
        self.details = {"record_type": record_type, "record_id": str(record_id), "fields": fields or []}


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
    logger.error(
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
    # Map status codes to error codes
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
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
        # Check for specific constraints
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
# Error Tracking Middleware
# ============================================================================

class ErrorTrackingMiddleware:
    """Middleware for tracking and logging all errors"""

    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            logger.error(
                f"Request failed: {scope.get('path', 'unknown')}",
                extra={
                    "path": scope.get("path"),
                    "method": scope.get("method"),
                    "exception_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise
