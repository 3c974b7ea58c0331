"""
Standardized Response Schemas

- Consistent error response structure
- Consistent message response structure
- Request tracking
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """
    Detailed error information.

    Example:
        {
            "code": "unmappable_payload",
            "message": "Note payload is missing a title",
            "param": "payload",
            "details": ["title: Field required"]
        }
    """
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    param: Optional[str] = Field(None, description="Parameter that caused the error")
    details: Optional[List[str]] = Field(None, description="Additional error details")


class ErrorResponse(BaseModel):
    """
    Standard error response structure.

    Example:
        {
            "error": {
                "code": "version_mismatch",
                "message": "Pending work changed since it was read",
                "param": "expected_version"
            },
            "request_id": "req_abc123",
            "timestamp": "2024-01-15T10:30:00Z"
        }
    """
    error: ErrorDetail
    request_id: str = Field(..., description="Unique request identifier for debugging")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class MessageResponse(BaseModel):
    """
    Simple success response with message.

    Use for operations that don't return data (e.g., discard, sign-out).
    """
    message: str
    request_id: Optional[str] = None


# Common response messages
class ResponseMessages:
    """Standard response messages for consistency."""

    DISCARDED = "Saved guest work discarded"
    SIGNED_OUT = "Session cleared"
    PREFILL_CONSUMED = "Prefill signal cleared"
    SAVED_LOCALLY = "Your work is saved on this device. Sign in to sync it."
    SAVE_FAILED_LOCALLY = (
        "We couldn't keep a copy of your work on this device. "
        "Sign in now to avoid losing it."
    )
