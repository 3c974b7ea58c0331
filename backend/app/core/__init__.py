"""Core utilities and shared components."""
from app.core.errors import (
    ErrorCode,
    APIError,
    ValidationError,
    NotFoundError,
    ConflictError,
    AuthenticationError,
    ExternalServiceError,
    StorageWriteError,
    StorageReadError,
    ReplayItemError,
    InternalError,
)
from app.core.responses import (
    ErrorResponse,
    ErrorDetail,
    MessageResponse,
    ResponseMessages,
)

__all__ = [
    # Error codes and exceptions
    "ErrorCode",
    "APIError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "AuthenticationError",
    "ExternalServiceError",
    "StorageWriteError",
    "StorageReadError",
    "ReplayItemError",
    "InternalError",
    # Response schemas
    "ErrorResponse",
    "ErrorDetail",
    "MessageResponse",
    "ResponseMessages",
]
