"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


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


class MatchAlreadyDecidedError(AppException):
    """Raised when accepting or rejecting a match that already has a decision."""

    def __init__(self, match_id: int, decision: str):
        super().__init__(
            message=f"Match {match_id} already decided with status: {decision}",
            error_code="ERR_MATCH_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"match_id": match_id, "decision": decision}
        )


class RequestAlreadyMatchedError(AppException):
    """Raised when a client request already holds an accepted match."""

    def __init__(self, client_request_id: int):
        super().__init__(
            message=f"Client request {client_request_id} already has an accepted match",
            error_code="ERR_MATCH_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"client_request_id": client_request_id}
        )


class InsufficientCapacityError(AppException):
    """Raised when a move cannot absorb the requested volume."""

    def __init__(self, move_id: int, requested_volume: float, available_volume: float):
        super().__init__(
            message=(
                f"Move {move_id} has {available_volume:g} m3 available, "
                f"{requested_volume:g} m3 requested"
            ),
            error_code="ERR_CAPACITY_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "move_id": move_id,
                "requested_volume": requested_volume,
                "available_volume": available_volume
            }
        )


class PersistenceConflictError(AppException):
    """Raised when the store rejects a write (duplicate or stale update)."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class InvalidStateTransitionError(AppException):
    """Raised when a lifecycle transition is not allowed from the current state."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_STATE_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InvalidReferenceError(AppException):
    """Raised when a human reference string cannot be parsed."""

    def __init__(self, reference: str):
        super().__init__(
            message=f"Invalid reference: {reference}",
            error_code="ERR_REFERENCE_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"reference": reference}
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
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
