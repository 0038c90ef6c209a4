"""
championship/errors.py
Centralized error taxonomy

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input / malformed request
- 401: Caller token missing or invalid
- 403: Caller lacks the capability for the operation
- 404: Resource does not exist, or nothing to show
- 409: State conflict (already initialized, sync running, closed)
- 503: A scoring source failed during synchronization
- 504: Synchronization aborted (timeout or cancellation)
- 500: Internal only, never caused by caller input

No error kind is retried internally; retry is a caller decision.
"""

import logging
import uuid
from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_INPUT = "INVALID_INPUT"
    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"
    FORBIDDEN = "FORBIDDEN"

    NOT_FOUND = "NOT_FOUND"
    CHAMPIONSHIP_NOT_FOUND = "CHAMPIONSHIP_NOT_FOUND"
    UNIT_NOT_FOUND = "UNIT_NOT_FOUND"
    DEMERIT_NOT_FOUND = "DEMERIT_NOT_FOUND"
    EVALUATION_NOT_FOUND = "EVALUATION_NOT_FOUND"
    NO_ACTIVE_CHAMPIONSHIP = "NO_ACTIVE_CHAMPIONSHIP"

    INVALID_STATE = "INVALID_STATE"
    ALREADY_INITIALIZED = "ALREADY_INITIALIZED"
    SYNC_IN_PROGRESS = "SYNC_IN_PROGRESS"
    CHAMPIONSHIP_CLOSED = "CHAMPIONSHIP_CLOSED"

    PARTIAL_SOURCE_FAILURE = "PARTIAL_SOURCE_FAILURE"
    SYNC_ABORTED = "SYNC_ABORTED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(APIError):
    """400 Bad Request - malformed or missing fields, with field-level detail"""
    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None, code: str = ErrorCode.VALIDATION_ERROR):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Validation Error",
            message=message,
            code=code,
            details={"fields": fields} if fields else None
        )
        self.fields = fields or {}


class UnknownCategoryError(APIError):
    """400 - scoring category not present in the catalog"""
    def __init__(self, category: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Unknown Category",
            message=f"Unknown scoring category '{category}'",
            code=ErrorCode.UNKNOWN_CATEGORY,
            details={"category": category}
        )
        self.category = category


class UnauthorizedError(APIError):
    """401/403 - caller missing or lacking the required capability"""
    def __init__(
        self,
        message: str = "Authentication required",
        code: str = ErrorCode.AUTH_REQUIRED,
        status_code: int = status.HTTP_401_UNAUTHORIZED
    ):
        super().__init__(
            status_code=status_code,
            error="Unauthorized",
            message=message,
            code=code
        )


class ForbiddenError(UnauthorizedError):
    """403 Forbidden - authenticated, but the capability is not held"""
    def __init__(self, capability: str):
        super().__init__(
            message=f"Missing capability: {capability}",
            code=ErrorCode.FORBIDDEN,
            status_code=status.HTTP_403_FORBIDDEN
        )
        self.capability = capability


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class NoActiveChampionshipError(APIError):
    """404 - nothing to show: no active championship / no published ranking"""
    def __init__(self, message: str = "No active championship"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="No Active Championship",
            message=message,
            code=ErrorCode.NO_ACTIVE_CHAMPIONSHIP
        )


class InvalidStateError(APIError):
    """409 - operation not valid in the current lifecycle state"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_STATE, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Invalid State",
            message=message,
            code=code,
            details=details
        )


class AlreadyInitializedError(InvalidStateError):
    def __init__(self, championship_id: int, current_version: Optional[int] = None):
        super().__init__(
            f"Championship {championship_id} already has a ranking snapshot",
            code=ErrorCode.ALREADY_INITIALIZED,
            details={"current_version": current_version} if current_version else None
        )


class SyncInProgressError(InvalidStateError):
    def __init__(self, championship_id: int):
        super().__init__(
            f"A ranking synchronization is already running for championship {championship_id}",
            code=ErrorCode.SYNC_IN_PROGRESS
        )


class ChampionshipClosedError(InvalidStateError):
    def __init__(self, championship_id: int):
        super().__init__(
            f"Championship {championship_id} is closed",
            code=ErrorCode.CHAMPIONSHIP_CLOSED
        )


class PartialSourceFailureError(APIError):
    """503 - one scoring source could not be read; nothing was published"""
    def __init__(self, source: str, reason: str = ""):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="Partial Source Failure",
            message=f"Scoring source '{source}' is unavailable; ranking was not updated",
            code=ErrorCode.PARTIAL_SOURCE_FAILURE,
            details={"source": source}
        )
        self.source = source
        self.reason = reason


class SyncAbortedError(APIError):
    """504 - synchronization timed out or was cancelled; nothing was published"""
    def __init__(self, championship_id: int, reason: str = "timeout"):
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            error="Sync Aborted",
            message=f"Ranking synchronization for championship {championship_id} was aborted ({reason})",
            code=ErrorCode.SYNC_ABORTED,
            details={"reason": reason}
        )


class InternalError(APIError):
    """500 Internal Server Error - Use sparingly, only for true internal failures"""
    def __init__(self, message: str = "An internal error occurred", log_id: Optional[str] = None):
        details = {"log_id": log_id} if log_id else None
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Internal Error",
            message=message,
            code=ErrorCode.INTERNAL_ERROR,
            details=details
        )


def require_fields(**fields: Any) -> None:
    """Raise ValidationError listing every field that is None or blank."""
    missing = {
        name: "This field is required"
        for name, value in fields.items()
        if value is None or (isinstance(value, str) and value.strip() == "")
    }
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(sorted(missing))}",
            fields=missing,
            code=ErrorCode.MISSING_FIELD
        )


def internal_error_from(error: Exception, context: str = "") -> InternalError:
    """Log an unexpected exception and wrap it without leaking its detail."""
    log_id = str(uuid.uuid4())[:8]
    logger.error(f"[{log_id}] Internal error in {context}: {type(error).__name__}: {str(error)}")
    return InternalError("An internal error occurred. Please try again later.", log_id=log_id)
