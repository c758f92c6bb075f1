"""
Phozos API Client Error Classes

Every failure surfaced by the request pipeline is a PhozosError (or one of
its subclasses), classified from the HTTP status and the server error code.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class PhozosError(Exception):
    """Base error class for the Phozos API client."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 0,
        details: Any = None,
        field: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.field = field
        self.hint = hint
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def is_auth_error(self) -> bool:
        """Check if error is authentication related."""
        return self.code.startswith("AUTH_") or self.status_code == 401

    def is_validation_error(self) -> bool:
        """Check if error is validation related."""
        return self.code == "VALIDATION_ERROR" or self.status_code == 422

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "field": self.field,
            "hint": self.hint,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r}, "
            f"status_code={self.status_code!r})"
        )


class NetworkError(PhozosError):
    """Network error (connection issues, timeouts). No response was received."""

    def __init__(self, message: str = "Network request failed", details: Any = None):
        super().__init__("NETWORK_ERROR", message, 0, details)


class AuthenticationError(PhozosError):
    """Authentication error (missing, invalid or expired bearer token)."""

    def __init__(
        self,
        message: str,
        code: str = "AUTH_REQUIRED",
        status_code: int = 401,
        details: Any = None,
        hint: Optional[str] = None,
    ):
        super().__init__(code, message, status_code, details, hint=hint)


class AuthorizationError(PhozosError):
    """Authorization error (insufficient permissions)."""

    def __init__(
        self,
        message: str,
        code: str = "FORBIDDEN",
        details: Any = None,
        hint: Optional[str] = None,
    ):
        super().__init__(code, message, 403, details, hint=hint)


class ValidationError(PhozosError):
    """Validation error (invalid input), optionally naming the offending field."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        status_code: int = 422,
        details: Any = None,
        field: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(code, message, status_code, details, field, hint)


class RateLimitError(PhozosError):
    """Rate limit error."""

    def __init__(
        self,
        message: str = "Too many requests",
        hint: Optional[str] = None,
        retry_after: Optional[int] = None,
        code: str = "RATE_LIMITED",
        details: Any = None,
    ):
        super().__init__(code, message, 429, details, hint=hint)
        self.retry_after = retry_after


class CsrfError(PhozosError):
    """Server rejected the CSRF token (missing, mismatched or invalid)."""

    def __init__(self, message: str, code: str = "CSRF_TOKEN_INVALID", details: Any = None):
        super().__init__(code, message, 403, details)


class CsrfNotReadyError(PhozosError):
    """No CSRF token could be obtained for a mutating request."""

    def __init__(self, message: str = "CSRF protection not ready"):
        super().__init__("CSRF_NOT_READY", message, 403)


class CsrfRefreshError(PhozosError):
    """The CSRF bootstrap endpoint failed or returned no token."""

    def __init__(self, message: str, status_code: int = 0, details: Any = None):
        super().__init__("CSRF_REFRESH_FAILED", message, status_code, details)


class ResponseParseError(PhozosError):
    """A successful response did not carry valid JSON."""

    def __init__(self, status_code: int, message: str = "Invalid JSON response from server"):
        super().__init__("INVALID_RESPONSE", message, status_code)


class ResponseShapeError(PhozosError):
    """A successful response did not match the expected schema."""

    def __init__(self, details: Any, message: str = "API response does not match expected schema"):
        super().__init__("RESPONSE_VALIDATION_ERROR", message, 200, details)


class TokenStorageError(PhozosError):
    """The auth token could not be persisted or read back."""

    def __init__(self, message: str, details: Any = None):
        super().__init__("TOKEN_STORAGE_FAILED", message, 0, details)


class ConfigurationError(PhozosError):
    """Configuration error."""

    def __init__(self, message: str, details: Any = None):
        super().__init__("CONFIGURATION_ERROR", message, 0, details)


def error_from_response(
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    field: Optional[str] = None,
    hint: Optional[str] = None,
    retry_after: Optional[int] = None,
) -> PhozosError:
    """Classify a failed HTTP response into the matching error class."""
    if not isinstance(code, str) or not code:
        code = "REQUEST_FAILED"
    if not isinstance(message, str):
        message = str(message)
    if status_code == 401 or code.startswith("AUTH_"):
        return AuthenticationError(message, code, status_code, details, hint)
    if code == "VALIDATION_ERROR" or status_code == 422:
        return ValidationError(message, code, status_code, details, field, hint)
    if status_code == 429 or code == "RATE_LIMITED":
        return RateLimitError(message, hint, retry_after, code, details)
    if code.startswith("CSRF_"):
        return CsrfError(message, code, details)
    if status_code == 403:
        return AuthorizationError(message, code, details, hint)
    return PhozosError(code, message, status_code, details, field, hint)


def is_csrf_stale_error(error: Any) -> bool:
    """
    Default policy for spotting a stale CSRF token.

    Matches the server's CSRF_TOKEN_* codes, or any 403 whose message
    mentions csrf.
    """
    if not isinstance(error, PhozosError):
        return False
    code = error.code if isinstance(error.code, str) else ""
    # A failed bootstrap is not a stale token
    if code == "CSRF_REFRESH_FAILED":
        return False
    if code.startswith("CSRF_TOKEN_"):
        return True
    message = error.message if isinstance(error.message, str) else ""
    return error.status_code == 403 and "csrf" in message.lower()


def is_phozos_error(error: Any) -> bool:
    """Check if error is a PhozosError."""
    return isinstance(error, PhozosError)


def is_retryable_error(error: Any) -> bool:
    """Check if a read may be retried: network failures and server errors (5xx)."""
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, PhozosError):
        if error.is_auth_error() or error.is_validation_error():
            return False
        return 500 <= error.status_code < 600
    return False
