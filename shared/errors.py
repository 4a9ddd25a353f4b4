"""
Shared error handling for the workspace sync client.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard user-visible error payload."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False


class SyncClientError(Exception):
    """Base exception for the sync client."""

    retryable = False

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details,
            retryable=self.retryable,
        )


class AuthenticationError(SyncClientError):
    """Authentication-related errors."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(SyncClientError):
    """Validation-related errors raised for invalid user actions."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(SyncClientError):
    """Requested remote resource does not exist."""

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ExternalServiceError(SyncClientError):
    """Backend or transport failures."""

    retryable = True

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
        self.service = service


class SyncFailedError(SyncClientError):
    """A hydration step failed; carries the step to resume from."""

    retryable = True

    def __init__(self, step: str, message: str = "Failed to synchronize workspace", details: Optional[Dict[str, Any]] = None):
        merged = {"step": step}
        merged.update(details or {})
        super().__init__("SYNC_FAILED", message, merged)
        self.step = step
