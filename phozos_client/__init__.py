"""
Phozos API Client

A Python client for the Phozos API with sync and async support,
CSRF token synchronization, bearer authentication, response envelope
unwrapping and pydantic response validation.
"""

from .client import PhozosClient, PhozosAsyncClient, create_phozos_client, create_async_phozos_client
from .types import (
    PhozosConfig,
    TokenStorage,
    RequestOptions,
    ErrorBody,
    EnvelopeSuccess,
    EnvelopeFailure,
    decode_envelope,
    unwrap_envelope,
    TOKEN_STORAGE_KEY,
)
from .errors import (
    PhozosError,
    NetworkError,
    AuthenticationError,
    AuthorizationError,
    ValidationError,
    RateLimitError,
    CsrfError,
    CsrfNotReadyError,
    CsrfRefreshError,
    ResponseParseError,
    ResponseShapeError,
    TokenStorageError,
    ConfigurationError,
    error_from_response,
    is_csrf_stale_error,
    is_phozos_error,
    is_retryable_error,
)
from .storage import MemoryStorage, FileStorage, EnvironmentStorage
from .token_store import TokenStore, parse_cookie_header
from .query import (
    QueryClient,
    AsyncQueryClient,
    MutationRunner,
    AsyncMutationRunner,
    Notification,
    describe_error,
    should_retry_query,
    query_retry_delay,
)

__version__ = "1.0.0"
__all__ = [
    # Clients
    "PhozosClient",
    "PhozosAsyncClient",
    "create_phozos_client",
    "create_async_phozos_client",
    # Types
    "PhozosConfig",
    "TokenStorage",
    "RequestOptions",
    "ErrorBody",
    "EnvelopeSuccess",
    "EnvelopeFailure",
    "decode_envelope",
    "unwrap_envelope",
    "TOKEN_STORAGE_KEY",
    # Errors
    "PhozosError",
    "NetworkError",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "RateLimitError",
    "CsrfError",
    "CsrfNotReadyError",
    "CsrfRefreshError",
    "ResponseParseError",
    "ResponseShapeError",
    "TokenStorageError",
    "ConfigurationError",
    "error_from_response",
    "is_csrf_stale_error",
    "is_phozos_error",
    "is_retryable_error",
    # Storage
    "MemoryStorage",
    "FileStorage",
    "EnvironmentStorage",
    "TokenStore",
    "parse_cookie_header",
    # Queries and mutations
    "QueryClient",
    "AsyncQueryClient",
    "MutationRunner",
    "AsyncMutationRunner",
    "Notification",
    "describe_error",
    "should_retry_query",
    "query_retry_delay",
]
