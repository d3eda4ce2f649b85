"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes for every domain failure kind and the
global exception handlers that render them.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List

logger = logging.getLogger("parcel_tracking.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InvalidParamError(AppException):
    """Raised when a required input is missing or empty."""

    def __init__(self, message: str = "Invalid parameter", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PARAM_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


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


class PackageNotBoundError(AppException):
    """Raised when a parcel has no live binding to the given task."""

    def __init__(self, task_id: str, parcel_id: str):
        super().__init__(
            message=f"Parcel {parcel_id} is not bound to task {task_id}",
            error_code="ERR_NOT_FOUND_002",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"task_id": task_id, "parcel_id": parcel_id}
        )


class InvalidTransitionError(AppException):
    """Raised when a requested status is not a legal successor of the current one."""

    def __init__(self, domain: str, current: str, requested: str, allowed: List[str] = None):
        super().__init__(
            message=f"Illegal {domain} task transition: {current} -> {requested}",
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "domain": domain,
                "current": current,
                "requested": requested,
                "allowed": allowed or [],
            }
        )


class TaskNotAbnormalError(AppException):
    """Raised when handling an abnormal condition on a task that is not abnormal."""

    def __init__(self, task_id: str, current: str):
        super().__init__(
            message=f"Task {task_id} is not abnormal (current status: {current})",
            error_code="ERR_STATE_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"task_id": task_id, "current": current}
        )


class NotBindableError(AppException):
    """Raised when the task status forbids binding parcels."""

    def __init__(self, task_id: str, current: str):
        super().__init__(
            message=f"Task {task_id} cannot bind parcels in status {current}",
            error_code="ERR_BIND_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"task_id": task_id, "current": current}
        )


class InvalidBindingError(AppException):
    """Raised when a candidate parcel's status forbids binding to this task type."""

    def __init__(self, parcel_id: str, current: str, required: str):
        super().__init__(
            message=f"Parcel {parcel_id} is {current}; only {required} parcels can be bound",
            error_code="ERR_BIND_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"parcel_id": parcel_id, "current": current, "required": required}
        )


class NotOwnedError(AppException):
    """Raised when the requester is not the task's assigned driver or courier."""

    def __init__(self, task_id: str, requester_id: str):
        super().__init__(
            message=f"Task {task_id} is not assigned to {requester_id}",
            error_code="ERR_OWNER_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details={"task_id": task_id, "requester_id": requester_id}
        )


class UnsignedPackageError(AppException):
    """Raised when completing a delivery task that still has unsigned parcels."""

    def __init__(self, task_id: str, unsigned: List[str]):
        super().__init__(
            message=f"Task {task_id} has unsigned parcels: {', '.join(unsigned)}",
            error_code="ERR_SIGN_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"task_id": task_id, "unsigned": unsigned}
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
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
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
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
