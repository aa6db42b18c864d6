"""Core infrastructure: settings, logging, exceptions, rate limiting."""

from .config import Settings, get_settings, settings
from .exceptions import (
    AnalysisUnavailableError,
    AppException,
    ExternalServiceError,
    InsufficientDataError,
    ValidationError,
)
from .logging import get_logger, setup_logging
from .rate_limiter import RateLimiter


__all__ = [
    "AnalysisUnavailableError",
    "AppException",
    "ExternalServiceError",
    "InsufficientDataError",
    "RateLimiter",
    "Settings",
    "ValidationError",
    "get_logger",
    "get_settings",
    "settings",
    "setup_logging",
]
