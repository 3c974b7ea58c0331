"""
Standardized Error Codes and Custom Exceptions

- Machine-readable error codes for programmatic handling
- Human-readable messages for debugging
- Consistent HTTP status code mapping
- Local store and replay failures share the same base type, so the HTTP layer
  renders them like any other API error
"""

from enum import Enum
from typing import Optional, Any, Dict, List
from fastapi import status


class ErrorCode(str, Enum):
    """
    Machine-readable error codes.

    Categories:
    - VALIDATION_*: Input validation errors (400)
    - AUTH_*: Authentication errors (401)
    - NOT_FOUND_*: Resource not found errors (404)
    - CONFLICT_*: Resource conflict errors (409)
    - EXTERNAL_*: External service errors (502)
    - STORAGE_*: Device-local store errors (500)
    - REPLAY_*: Guest work replay errors (502)
    - INTERNAL_*: Internal server errors (500)
    """

    # Validation Errors (400)
    VALIDATION_FAILED = "validation_failed"
    VALIDATION_INVALID_VALUE = "invalid_value"
    VALIDATION_UNMAPPABLE_PAYLOAD = "unmappable_payload"

    # Authentication Errors (401)
    AUTH_REQUIRED = "authentication_required"
    AUTH_INVALID_TOKEN = "invalid_auth_token"
    AUTH_SESSION_UNAVAILABLE = "session_unavailable"

    # Not Found Errors (404)
    NOT_FOUND_RESOURCE = "resource_not_found"
    NOT_FOUND_PENDING_ACTION = "pending_action_not_found"

    # Conflict Errors (409)
    CONFLICT_VERSION_MISMATCH = "version_mismatch"
    CONFLICT_REPLAY_IN_PROGRESS = "replay_in_progress"

    # External Service Errors (502)
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    EXTERNAL_RECORDS_FAILED = "records_service_failed"
    EXTERNAL_AUTH_FAILED = "auth_service_failed"

    # Local store Errors (500)
    STORAGE_WRITE_FAILED = "storage_write_failed"
    STORAGE_READ_FAILED = "storage_read_failed"

    # Replay Errors (502)
    REPLAY_ITEM_FAILED = "replay_item_failed"

    # Internal Errors (500)
    INTERNAL_ERROR = "internal_server_error"


# HTTP Status Code Mapping
ERROR_CODE_STATUS_MAP: Dict[ErrorCode, int] = {
    # Validation (400)
    ErrorCode.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.VALIDATION_INVALID_VALUE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.VALIDATION_UNMAPPABLE_PAYLOAD: status.HTTP_422_UNPROCESSABLE_ENTITY,

    # Authentication (401)
    ErrorCode.AUTH_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTH_INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTH_SESSION_UNAVAILABLE: status.HTTP_401_UNAUTHORIZED,

    # Not Found (404)
    ErrorCode.NOT_FOUND_RESOURCE: status.HTTP_404_NOT_FOUND,
    ErrorCode.NOT_FOUND_PENDING_ACTION: status.HTTP_404_NOT_FOUND,

    # Conflict (409)
    ErrorCode.CONFLICT_VERSION_MISMATCH: status.HTTP_409_CONFLICT,
    ErrorCode.CONFLICT_REPLAY_IN_PROGRESS: status.HTTP_409_CONFLICT,

    # External Service (502)
    ErrorCode.EXTERNAL_SERVICE_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.EXTERNAL_RECORDS_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.EXTERNAL_AUTH_FAILED: status.HTTP_502_BAD_GATEWAY,

    # Local store (500)
    ErrorCode.STORAGE_WRITE_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.STORAGE_READ_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,

    # Replay (502)
    ErrorCode.REPLAY_ITEM_FAILED: status.HTTP_502_BAD_GATEWAY,

    # Internal (500)
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class APIError(Exception):
    """
    Base exception for all API errors.

    - code: Machine-readable error code
    - message: Human-readable error message
    - param: Parameter that caused the error (optional)
    - details: Additional error details (optional)

    Example:
        raise APIError(
            code=ErrorCode.VALIDATION_INVALID_VALUE,
            message="Unknown screen id",
            param="target_screen"
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        param: Optional[str] = None,
        details: Optional[List[str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.param = param
        self.details = details or []
        self.headers = headers or {}
        self.status_code = ERROR_CODE_STATUS_MAP.get(
            code, status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON response."""
        error_dict = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.param:
            error_dict["param"] = self.param
        if self.details:
            error_dict["details"] = self.details
        return error_dict


# Convenience exception classes for common error types

class ValidationError(APIError):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        param: Optional[str] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[List[str]] = None,
    ):
        super().__init__(code=code, message=message, param=param, details=details)


class NotFoundError(APIError):
    """Raised when a requested resource is not found."""

    def __init__(
        self,
        resource: str,
        identifier: Optional[str] = None,
        code: Optional[ErrorCode] = None,
    ):
        if code is None:
            code_map = {
                "pending_action": ErrorCode.NOT_FOUND_PENDING_ACTION,
            }
            code = code_map.get(resource.lower(), ErrorCode.NOT_FOUND_RESOURCE)

        label = resource.replace("_", " ").capitalize()
        message = f"{label} not found"
        if identifier:
            message = f"{label} with ID '{identifier}' not found"

        super().__init__(code=code, message=message, param=f"{resource.lower()}_id")


class ConflictError(APIError):
    """Raised when a versioned write loses a compare-and-swap."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFLICT_VERSION_MISMATCH,
        param: Optional[str] = None,
    ):
        super().__init__(code=code, message=message, param=param)


class AuthenticationError(APIError):
    """Raised when authentication fails."""

    def __init__(
        self,
        message: str = "Authentication required",
        code: ErrorCode = ErrorCode.AUTH_REQUIRED,
    ):
        super().__init__(code=code, message=message)


class ExternalServiceError(APIError):
    """Raised when an external service fails."""

    def __init__(
        self,
        service: str,
        message: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
    ):
        if code is None:
            code_map = {
                "records": ErrorCode.EXTERNAL_RECORDS_FAILED,
                "auth": ErrorCode.EXTERNAL_AUTH_FAILED,
            }
            code = code_map.get(service.lower(), ErrorCode.EXTERNAL_SERVICE_ERROR)

        if message is None:
            message = f"{service.capitalize()} service temporarily unavailable"

        self.service = service
        self.upstream_status = status_code
        super().__init__(code=code, message=message)


class StorageWriteError(APIError):
    """Local persistence of guest data failed."""

    def __init__(
        self,
        message: str = "Could not save your work on this device",
        key: Optional[str] = None,
    ):
        self.key = key
        super().__init__(code=ErrorCode.STORAGE_WRITE_FAILED, message=message)


class StorageReadError(APIError):
    """Local guest data could not be read. Callers treat it as "nothing stored"."""

    def __init__(
        self,
        message: str = "Could not read saved work on this device",
        key: Optional[str] = None,
    ):
        self.key = key
        super().__init__(code=ErrorCode.STORAGE_READ_FAILED, message=message)


class ReplayItemError(APIError):
    """One fanned-out create call failed while replaying guest work."""

    def __init__(
        self,
        action_id: str,
        item_key: str,
        message: str,
        retryable: bool = True,
    ):
        self.action_id = action_id
        self.item_key = item_key
        self.retryable = retryable
        super().__init__(
            code=ErrorCode.REPLAY_ITEM_FAILED,
            message=message,
            param="item_key",
            details=[f"{action_id}:{item_key}"],
        )


class InternalError(APIError):
    """Raised for internal server errors. Never expose details to clients."""

    def __init__(
        self,
        message: str = "An internal error occurred. Please try again later.",
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        log_message: Optional[str] = None,
    ):
        self.log_message = log_message  # For internal logging only
        super().__init__(code=code, message=message)
