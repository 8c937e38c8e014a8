"""
Custom exceptions and error handlers for consistent error responses.

Provides the tracking error taxonomy and global exception handlers.
"""

import logging
from datetime import datetime, timezone
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, Optional

logger = logging.getLogger("shipment_tracking")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class TrackingError(AppException):
    """
    Base class for tracking engine errors.

    Carries a machine-readable code plus optional trip/load context.
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Dict[str, Any] = None,
        trip_id: Optional[int] = None,
        load_id: Optional[int] = None
    ):
        self.trip_id = trip_id
        self.load_id = load_id
        self.timestamp = datetime.now(timezone.utc)
        details = dict(details or {})
        if trip_id is not None:
            details.setdefault("trip_id", trip_id)
        if load_id is not None:
            details.setdefault("load_id", load_id)
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class LocationValidationError(TrackingError):
    """Raised when an incoming location sample fails a range or enum check."""

    def __init__(self, error_code: str, message: str, field: str, value: Any, trip_id: Optional[int] = None):
        self.field = field
        self.value = value
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"field": field, "value": value},
            trip_id=trip_id
        )


class InvalidStatusError(TrackingError):
    """Raised for a status name outside the known vocabulary."""

    def __init__(self, status_value: Any, trip_id: Optional[int] = None, load_id: Optional[int] = None):
        super().__init__(
            error_code="INVALID_STATUS",
            message=f"Unknown status: {status_value}",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"status": status_value},
            trip_id=trip_id,
            load_id=load_id
        )


class InvalidStatusTransitionError(TrackingError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, from_status: str, to_status: str, trip_id: Optional[int] = None, load_id: Optional[int] = None):
        super().__init__(
            error_code="INVALID_STATUS_TRANSITION",
            message="Status transition not allowed",
            status_code=status.HTTP_409_CONFLICT,
            details={"from": from_status, "to": to_status},
            trip_id=trip_id,
            load_id=load_id
        )


class TransientTrackingError(TrackingError):
    """Storage or network failure that may succeed when retried."""

    def __init__(self, message: str, error_code: str = "STORAGE_ERROR", trip_id: Optional[int] = None):
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            trip_id=trip_id
        )


class UpdateFailedAfterRetriesError(TrackingError):
    """Raised when every retry attempt of a location update failed."""

    def __init__(self, attempts: int, last_error: str, trip_id: Optional[int] = None):
        super().__init__(
            error_code="UPDATE_FAILED_AFTER_RETRIES",
            message="Location update failed after multiple attempts",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"attempts": attempts, "last_error": last_error},
            trip_id=trip_id
        )


class RecoveryError(TrackingError):
    """Raised when a recovery action cannot be dispatched or fails."""

    def __init__(self, error_code: str, message: str, trip_id: Optional[int] = None, details: Dict[str, Any] = None):
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            trip_id=trip_id
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
