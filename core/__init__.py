# Core module - error taxonomy shared by every layer
# Callers branch on the exception class or ErrorCategory, never on message text

from .errors import (
    ErrorCategory, ErrorSummary, D2LError,
    ConfigurationError, ApiError, AuthenticationError,
    RateLimitError, NetworkError, parse_retry_after
)

__all__ = [
    "ErrorCategory", "ErrorSummary", "D2LError",
    "ConfigurationError", "ApiError", "AuthenticationError",
    "RateLimitError", "NetworkError", "parse_retry_after"
]
