"""
Error Handling Module
---------------------
Typed errors for the D2L client runtime.

Every failure a caller can see is one of five kinds. Callers branch on
the exception class or on ``error.category``, never on message text.
The client itself never retries anything except a single 401; the
``retryable`` flag is a hint for callers that run their own backoff.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum, auto
from typing import Any, ClassVar, Dict, Optional


class ErrorCategory(Enum):
    """Categories of errors for handling decisions."""
    CONFIGURATION = auto()   # Misconfigured or uninitialized client
    AUTHENTICATION = auto()  # No usable credential, or the server rejected it
    RATE_LIMIT = auto()      # Server (or local limiter) said slow down
    API = auto()             # Any other non-2xx response
    NETWORK = auto()         # No HTTP status was obtained


class D2LError(Exception):
    """
    Base error with classification metadata.

    Attributes:
        message: Human-readable description
        details: Extra structured context (status, path, ...)
        timestamp: When the error was raised (UTC)
    """

    category: ClassVar[ErrorCategory] = ErrorCategory.API
    retryable: ClassVar[bool] = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for logs and CLI output."""
        return {
            "category": self.category.name,
            "message": self.message,
            "retryable": self.retryable,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.category.name}: {self.message})"


class ConfigurationError(D2LError):
    """Client used against a non-HTTPS URL or before initialize()."""
    category = ErrorCategory.CONFIGURATION


class ApiError(D2LError):
    """Non-2xx response from the API."""
    category = ErrorCategory.API

    def __init__(
        self,
        message: str,
        status: int,
        body: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        merged = {"status": status}
        merged.update(details or {})
        super().__init__(message, merged)
        self.status = status
        self.body = body


class AuthenticationError(ApiError):
    """No valid credential, or the API rejected the credential twice."""
    category = ErrorCategory.AUTHENTICATION

    def __init__(
        self,
        message: str = "Not authenticated. Re-authentication is required.",
        body: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, status=401, body=body, details=details)


class RateLimitError(D2LError):
    """
    Request was throttled.

    ``retry_after`` is the server's hint in seconds, or None when the
    response carried no usable Retry-After header.
    """
    category = ErrorCategory.RATE_LIMIT
    retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        merged = {"retry_after": retry_after}
        merged.update(details or {})
        super().__init__(message, merged)
        self.retry_after = retry_after


class NetworkError(D2LError):
    """Transport failure (DNS, reset, timeout) before any HTTP status."""
    category = ErrorCategory.NETWORK
    retryable = True

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.cause = cause


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header value into seconds.

    Accepts delta-seconds ("60") or an HTTP-date. Returns None when the
    header is absent or unparsable; past dates clamp to 0.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        seconds = None

    if seconds is not None:
        return seconds if seconds >= 0 else None

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


@dataclass
class ErrorSummary:
    """Flattened view of an error for exit-code mapping and display."""
    category: ErrorCategory
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    EXIT_CODES: ClassVar[Dict[ErrorCategory, int]] = {
        ErrorCategory.CONFIGURATION: 2,
        ErrorCategory.AUTHENTICATION: 3,
        ErrorCategory.RATE_LIMIT: 4,
        ErrorCategory.API: 5,
        ErrorCategory.NETWORK: 6,
    }

    @classmethod
    def from_exception(cls, error: D2LError) -> "ErrorSummary":
        """Create a summary from a raised client error."""
        return cls(category=error.category, message=error.message, details=dict(error.details))

    @property
    def exit_code(self) -> int:
        return self.EXIT_CODES.get(self.category, 1)

    def __str__(self) -> str:
        return f"{self.category.name.lower()}: {self.message}"
