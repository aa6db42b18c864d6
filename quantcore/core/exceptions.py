"""Custom exceptions for the analytics core."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base exception with a structured error payload."""

    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a problem-style payload."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class ValidationError(AppException):
    """Malformed engine input."""

    error_code = "VALIDATION_ERROR"
    message = "Validation failed"


class InsufficientDataError(AppException):
    """Series shorter than an algorithm's minimum sample size."""

    error_code = "INSUFFICIENT_DATA"
    message = "Not enough data points for this analysis"

    def __init__(
        self,
        message: str | None = None,
        *,
        required: int | None = None,
        available: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if required is not None:
            details["required"] = required
        if available is not None:
            details["available"] = available
        super().__init__(message, details=details)
        self.required = required
        self.available = available


class AnalysisUnavailableError(AppException):
    """An analysis could not be produced for the requested input."""

    error_code = "ANALYSIS_UNAVAILABLE"
    message = "Analysis unavailable"


class ExternalServiceError(AppException):
    """External collaborator failed, timed out or exhausted retries."""

    error_code = "EXTERNAL_SERVICE_ERROR"
    message = "External service temporarily unavailable"
