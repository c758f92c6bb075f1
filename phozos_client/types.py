"""
Phozos API Client Type Definitions

Configuration, request options, and the response envelope shapes shared by
the sync and async clients.
"""

import os
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from .errors import ConfigurationError, PhozosError, is_csrf_stale_error


# Well-known durable storage key for the bearer token
TOKEN_STORAGE_KEY = "auth_token"

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Successful responses with these content types are returned as raw text
RAW_CONTENT_TYPES = ("text/csv", "application/octet-stream")
RAW_CONTENT_TYPE_PREFIXES = ("image/",)


@runtime_checkable
class TokenStorage(Protocol):
    """Durable key/value storage for the bearer token."""

    def get_item(self, key: str) -> Optional[str]:
        """Read a stored value."""
        ...

    def set_item(self, key: str, value: str) -> None:
        """Persist a value. Failures must raise."""
        ...

    def remove_item(self, key: str) -> None:
        """Remove a stored value."""
        ...


@dataclass
class PhozosConfig:
    """Client configuration."""

    # Origin that relative URLs resolve against
    base_url: str = "http://localhost:5000"
    # API prefix for split frontend/backend deployments ("" = same origin)
    api_url: str = ""
    # Request timeout in seconds (default: 30)
    timeout: float = 30.0
    # Durable storage for the auth token (default: None, uses MemoryStorage)
    storage: Optional[TokenStorage] = None
    # Enable debug logging (default: False)
    debug: bool = False
    # Custom headers to include in requests
    headers: Optional[Dict[str, str]] = None
    # CSRF bootstrap endpoint, cookie and header names
    csrf_endpoint: str = "/api/auth/csrf-token"
    csrf_cookie_name: str = "_csrf"
    csrf_header_name: str = "x-csrf-token"
    # Decides whether a failed request should be retried with a fresh CSRF token
    csrf_stale_matcher: Callable[[PhozosError], bool] = is_csrf_stale_error
    # Read retries for server errors and their cache lifetime in seconds
    max_query_retries: int = 3
    stale_time: float = 300.0

    @classmethod
    def from_env(cls, **overrides: Any) -> "PhozosConfig":
        """Build a config from PHOZOS_* environment variables."""
        values: Dict[str, Any] = {}
        if os.environ.get("PHOZOS_BASE_URL"):
            values["base_url"] = os.environ["PHOZOS_BASE_URL"]
        if os.environ.get("PHOZOS_API_URL"):
            values["api_url"] = os.environ["PHOZOS_API_URL"]
        if os.environ.get("PHOZOS_TIMEOUT"):
            try:
                values["timeout"] = float(os.environ["PHOZOS_TIMEOUT"])
            except ValueError:
                raise ConfigurationError(
                    "PHOZOS_TIMEOUT must be a number",
                    {"value": os.environ["PHOZOS_TIMEOUT"]},
                )
        if os.environ.get("PHOZOS_DEBUG"):
            values["debug"] = os.environ["PHOZOS_DEBUG"].lower() in ("1", "true", "yes")
        values.update(overrides)
        return cls(**values)


def validate_config(config: PhozosConfig) -> None:
    """Validate configuration."""
    if not config.base_url.startswith(("http://", "https://")):
        raise ConfigurationError(
            "base_url must be an absolute http(s) URL",
            {"base_url": config.base_url},
        )
    if config.api_url and not config.api_url.startswith(("http://", "https://", "/")):
        raise ConfigurationError(
            "api_url must be empty, a path, or an absolute http(s) URL",
            {"api_url": config.api_url},
        )
    if config.timeout <= 0:
        raise ConfigurationError("timeout must be positive", {"timeout": config.timeout})
    if config.max_query_retries < 0:
        raise ConfigurationError("max_query_retries must not be negative")


@dataclass(frozen=True)
class RequestOptions:
    """Options for a single API request. Immutable; a retry is a modified copy."""

    method: str = "GET"
    body: Any = None
    headers: Optional[Mapping[str, str]] = None
    # Multipart uploads; the transport sets the content type
    files: Optional[Mapping[str, Any]] = None
    params: Optional[Mapping[str, Any]] = None
    skip_csrf: bool = False
    include_credentials: bool = False
    # Set on the single CSRF retry
    retried: bool = False

    @property
    def normalized_method(self) -> str:
        return self.method.upper()

    @property
    def needs_csrf(self) -> bool:
        return not self.skip_csrf and self.normalized_method in MUTATING_METHODS

    @property
    def sends_json(self) -> bool:
        return self.files is None and not isinstance(self.body, (bytes, bytearray))

    def as_retry(self) -> "RequestOptions":
        return replace(self, retried=True)


def _string_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


@dataclass
class ErrorBody:
    """Structured error carried by a failed response."""

    code: Optional[str] = None
    message: Optional[str] = None
    details: Any = None
    field: Optional[str] = None
    hint: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ErrorBody":
        """Read the error from a nested `error` object or from flat fields."""
        error = data.get("error")
        source = error if isinstance(error, Mapping) else data
        message = source.get("message")
        if message is None and isinstance(error, str):
            message = error
        elif message is not None and not isinstance(message, str):
            message = str(message)
        return cls(
            code=_string_or_none(source.get("code")),
            message=message or None,
            details=source.get("details"),
            field=_string_or_none(source.get("field")),
            hint=_string_or_none(source.get("hint")),
        )


@dataclass
class EnvelopeSuccess:
    """`{success: true, data}`"""
    data: Any = None


@dataclass
class EnvelopeFailure:
    """`{success: false, error}`"""
    error: ErrorBody = field(default_factory=ErrorBody)


Envelope = Union[EnvelopeSuccess, EnvelopeFailure]


def decode_envelope(payload: Any) -> Optional[Envelope]:
    """Decode the server envelope, or None for a bare body."""
    if not isinstance(payload, Mapping):
        return None
    success = payload.get("success")
    if success is True:
        return EnvelopeSuccess(payload.get("data"))
    if success is False and "error" in payload:
        return EnvelopeFailure(ErrorBody.from_dict(payload))
    return None


def unwrap_envelope(payload: Any) -> Any:
    """Return `data` for a success envelope, anything else unchanged."""
    envelope = decode_envelope(payload)
    if isinstance(envelope, EnvelopeSuccess):
        return envelope.data
    return payload
