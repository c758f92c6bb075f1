"""
Phozos API Client

Main client classes for the Phozos API. Provides both synchronous and
asynchronous clients that attach the bearer token, keep the CSRF token
synchronized for mutating requests, unwrap the response envelope and
retry once when the server rejects a stale CSRF token.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx
from pydantic import TypeAdapter

from .csrf import AsyncCsrfManager, CsrfManager
from .errors import (
    CsrfNotReadyError,
    NetworkError,
    PhozosError,
    TokenStorageError,
)
from .response import handle_response, resolve_schema
from .storage import MemoryStorage
from .token_store import TokenStore
from .types import PhozosConfig, RequestOptions, validate_config


logger = logging.getLogger("phozos_client")

LOGOUT_ENDPOINT = "/api/auth/logout"
CURRENT_USER_ENDPOINT = "/api/auth/me"


class _BaseClient:
    """Request assembly shared by the sync and async clients."""

    def __init__(self, config: Optional[PhozosConfig] = None) -> None:
        config = config or PhozosConfig()
        validate_config(config)

        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._api_url = config.api_url.rstrip("/")
        self._timeout = config.timeout
        self._debug = config.debug
        self._custom_headers = config.headers or {}
        self._csrf_header_name = config.csrf_header_name
        self._csrf_stale_matcher = config.csrf_stale_matcher

        self._store = TokenStore(config.storage if config.storage else MemoryStorage())

    @property
    def config(self) -> PhozosConfig:
        return self._config

    @property
    def tokens(self) -> TokenStore:
        """The token store backing this client."""
        return self._store

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug("[Phozos] " + message, *args)

    def _resolve_url(self, url: str) -> str:
        """Absolute URLs pass through; anything else gets the API prefix."""
        if url.startswith("http"):
            return url
        return f"{self._api_url}{url}"

    def _build_headers(self, options: RequestOptions) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if options.sends_json:
            headers["Content-Type"] = "application/json"
        headers.update(self._custom_headers)
        if options.headers:
            headers.update(options.headers)

        token = self._store.get_auth_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _attach_csrf(self, headers: Dict[str, str]) -> None:
        csrf = self._store.get_csrf_token()
        if not csrf:
            raise CsrfNotReadyError()
        headers[self._csrf_header_name] = csrf

    def _build_request(
        self,
        http_client: Any,
        url: str,
        options: RequestOptions,
        headers: Dict[str, str],
    ) -> httpx.Request:
        kwargs: Dict[str, Any] = {"headers": headers, "params": options.params}
        if options.files is not None:
            kwargs["files"] = options.files
            if isinstance(options.body, Mapping):
                kwargs["data"] = options.body
        elif isinstance(options.body, (bytes, bytearray)):
            kwargs["content"] = bytes(options.body)
        elif options.body is not None:
            kwargs["json"] = options.body

        request = http_client.build_request(options.normalized_method, self._resolve_url(url), **kwargs)

        # Cookies only travel with CSRF-protected or explicitly credentialed calls
        if not (options.needs_csrf or options.include_credentials):
            request.headers.pop("Cookie", None)
        return request

    def _should_retry_csrf(self, error: PhozosError, options: RequestOptions) -> bool:
        return not options.retried and self._csrf_stale_matcher(error)

    def _network_error(self, error: httpx.RequestError, url: str) -> NetworkError:
        if isinstance(error, httpx.TimeoutException):
            return NetworkError("Request timeout", {"timeout": self._timeout, "url": url})
        return NetworkError(str(error) or "Network request failed", {"url": url})

    def _store_login_token(self, token: Optional[str]) -> None:
        if not token:
            return
        self._store.set_auth_token(token)
        if self._store.get_auth_token() != token:
            raise TokenStorageError("Authentication token storage failed")

    def is_authenticated(self) -> bool:
        """Check if a bearer token is held."""
        return self._store.get_auth_token() is not None

    def get_auth_token(self) -> Optional[str]:
        return self._store.get_auth_token()

    def set_auth_token(self, token: Optional[str]) -> None:
        self._store.set_auth_token(token)

    def clear_auth_token(self) -> None:
        self._store.clear_auth_token()


class PhozosClient(_BaseClient):
    """
    Phozos API Client - Synchronous entry point.

    Safe to share between threads: concurrent mutating requests share a
    single CSRF refresh.
    """

    def __init__(self, config: Optional[PhozosConfig] = None) -> None:
        """Initialize the Phozos API client."""
        super().__init__(config)

        # HTTP client
        self._http_client = httpx.Client(base_url=self._base_url, timeout=self._timeout)
        self._store.attach_cookies(self._http_client.cookies)

        self._csrf = CsrfManager(
            self._store,
            self._http_client,
            self._resolve_url(self._config.csrf_endpoint),
            self._config.csrf_cookie_name,
        )

        self._log("PhozosClient initialized (base_url=%s, api_url=%r)", self._base_url, self._api_url)

    @property
    def csrf(self) -> CsrfManager:
        return self._csrf

    @property
    def cookies(self) -> httpx.Cookies:
        """Cookie jar shared by every request, including the CSRF bootstrap."""
        return self._http_client.cookies

    # =========================================================================
    # Request Pipeline
    # =========================================================================

    def request(
        self,
        url: str,
        options: Optional[RequestOptions] = None,
        response_schema: Any = None,
    ) -> Any:
        """
        Make an API request.

        Args:
            url: Relative (prefixed with api_url) or absolute URL
            options: Method, body, headers and CSRF/credential flags
            response_schema: Optional pydantic model, type or TypeAdapter
                the unwrapped payload must satisfy

        Returns:
            Raw text for file downloads, otherwise the unwrapped
            (and validated) JSON payload

        Raises:
            PhozosError: Classified failure
        """
        options = options or RequestOptions()
        adapter = resolve_schema(response_schema)

        try:
            return self._execute_request(url, options, adapter)
        except PhozosError as error:
            if not self._should_retry_csrf(error, options):
                raise

            self._log("CSRF token rejected (%s), retrying %s once", error.code, url)
            try:
                self._csrf.ensure_ready(force=True)
            except Exception as refresh_error:
                raise error from refresh_error

            return self.request(url, options.as_retry(), adapter)
        except Exception as e:
            raise PhozosError("UNKNOWN_ERROR", str(e) or "Unknown error occurred") from e

    def _execute_request(
        self,
        url: str,
        options: RequestOptions,
        adapter: Optional[TypeAdapter],
    ) -> Any:
        """Execute a single HTTP request."""
        headers = self._build_headers(options)

        if options.needs_csrf:
            self._csrf.ensure_ready()
            self._attach_csrf(headers)

        request = self._build_request(self._http_client, url, options, headers)
        self._log("%s %s", request.method, request.url)

        try:
            response = self._http_client.send(request)
        except httpx.RequestError as e:
            raise self._network_error(e, str(request.url))

        return handle_response(response, url, adapter)

    def get(self, url: str, response_schema: Any = None, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.request(url, RequestOptions(method="GET", params=params), response_schema)

    def post(self, url: str, body: Any = None, response_schema: Any = None) -> Any:
        return self.request(url, RequestOptions(method="POST", body=body), response_schema)

    def put(self, url: str, body: Any = None, response_schema: Any = None) -> Any:
        return self.request(url, RequestOptions(method="PUT", body=body), response_schema)

    def patch(self, url: str, body: Any = None, response_schema: Any = None) -> Any:
        return self.request(url, RequestOptions(method="PATCH", body=body), response_schema)

    def delete(self, url: str, response_schema: Any = None) -> Any:
        return self.request(url, RequestOptions(method="DELETE"), response_schema)

    # =========================================================================
    # Session Methods
    # =========================================================================

    def login(self, token: Optional[str] = None) -> None:
        """
        Store the bearer token issued at login and bind a fresh CSRF token
        to the authenticated session.

        Raises:
            TokenStorageError: If the token could not be read back
        """
        self._store_login_token(token)
        self._csrf.ensure_ready(force=True)
        self._log("Login complete")

    def logout(self) -> None:
        """Logout the current user and re-bind CSRF to the anonymous session."""
        self._log("Logout")
        try:
            self.post(LOGOUT_ENDPOINT)
        except PhozosError as e:
            logger.warning("Logout request failed: %s", e.message)

        self._store.clear_auth_token()

        try:
            self._csrf.ensure_ready(force=True)
        except PhozosError as e:
            logger.warning("CSRF refresh after logout failed: %s", e.message)

    def check_auth_status(self) -> Optional[Any]:
        """Fetch the current user, or None. A 401 clears the stored token."""
        try:
            return self.get(CURRENT_USER_ENDPOINT)
        except PhozosError as e:
            if e.status_code == 401:
                self._store.clear_auth_token()
            self._log("Auth status check failed: %s", e.code)
            return None

    def close(self) -> None:
        """Close the HTTP client."""
        self._http_client.close()

    def __enter__(self) -> "PhozosClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


# =============================================================================
# Async Client
# =============================================================================

class PhozosAsyncClient(_BaseClient):
    """
    Phozos API Client - Asynchronous entry point.

    Concurrent tasks issuing mutating requests await one shared CSRF
    refresh.
    """

    def __init__(self, config: Optional[PhozosConfig] = None) -> None:
        """Initialize the async Phozos API client."""
        super().__init__(config)

        self._http_client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        self._store.attach_cookies(self._http_client.cookies)

        self._csrf = AsyncCsrfManager(
            self._store,
            self._http_client,
            self._resolve_url(self._config.csrf_endpoint),
            self._config.csrf_cookie_name,
        )

        self._log("PhozosAsyncClient initialized (base_url=%s, api_url=%r)", self._base_url, self._api_url)

    @property
    def csrf(self) -> AsyncCsrfManager:
        return self._csrf

    @property
    def cookies(self) -> httpx.Cookies:
        return self._http_client.cookies

    # =========================================================================
    # Request Pipeline
    # =========================================================================

    async def request(
        self,
        url: str,
        options: Optional[RequestOptions] = None,
        response_schema: Any = None,
    ) -> Any:
        """Make an API request. See PhozosClient.request."""
        options = options or RequestOptions()
        adapter = resolve_schema(response_schema)

        try:
            return await self._execute_request(url, options, adapter)
        except PhozosError as error:
            if not self._should_retry_csrf(error, options):
                raise

            self._log("CSRF token rejected (%s), retrying %s once", error.code, url)
            try:
                await self._csrf.ensure_ready(force=True)
            except Exception as refresh_error:
                raise error from refresh_error

            return await self.request(url, options.as_retry(), adapter)
        except Exception as e:
            raise PhozosError("UNKNOWN_ERROR", str(e) or "Unknown error occurred") from e

    async def _execute_request(
        self,
        url: str,
        options: RequestOptions,
        adapter: Optional[TypeAdapter],
    ) -> Any:
        """Execute a single HTTP request."""
        headers = self._build_headers(options)

        if options.needs_csrf:
            await self._csrf.ensure_ready()
            self._attach_csrf(headers)

        request = self._build_request(self._http_client, url, options, headers)
        self._log("%s %s", request.method, request.url)

        try:
            response = await self._http_client.send(request)
        except httpx.RequestError as e:
            raise self._network_error(e, str(request.url))

        return handle_response(response, url, adapter)

    async def get(self, url: str, response_schema: Any = None, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request(url, RequestOptions(method="GET", params=params), response_schema)

    async def post(self, url: str, body: Any = None, response_schema: Any = None) -> Any:
        return await self.request(url, RequestOptions(method="POST", body=body), response_schema)

    async def put(self, url: str, body: Any = None, response_schema: Any = None) -> Any:
        return await self.request(url, RequestOptions(method="PUT", body=body), response_schema)

    async def patch(self, url: str, body: Any = None, response_schema: Any = None) -> Any:
        return await self.request(url, RequestOptions(method="PATCH", body=body), response_schema)

    async def delete(self, url: str, response_schema: Any = None) -> Any:
        return await self.request(url, RequestOptions(method="DELETE"), response_schema)

    # =========================================================================
    # Session Methods
    # =========================================================================

    async def login(self, token: Optional[str] = None) -> None:
        """Store the login token and bind a fresh CSRF token to the session."""
        self._store_login_token(token)
        await self._csrf.ensure_ready(force=True)
        self._log("Login complete")

    async def logout(self) -> None:
        """Logout the current user and re-bind CSRF to the anonymous session."""
        self._log("Logout")
        try:
            await self.post(LOGOUT_ENDPOINT)
        except PhozosError as e:
            logger.warning("Logout request failed: %s", e.message)

        self._store.clear_auth_token()

        try:
            await self._csrf.ensure_ready(force=True)
        except PhozosError as e:
            logger.warning("CSRF refresh after logout failed: %s", e.message)

    async def check_auth_status(self) -> Optional[Any]:
        """Fetch the current user, or None. A 401 clears the stored token."""
        try:
            return await self.get(CURRENT_USER_ENDPOINT)
        except PhozosError as e:
            if e.status_code == 401:
                self._store.clear_auth_token()
            self._log("Auth status check failed: %s", e.code)
            return None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def __aenter__(self) -> "PhozosAsyncClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


# =============================================================================
# Factory Functions
# =============================================================================

def create_phozos_client(config: Optional[PhozosConfig] = None) -> PhozosClient:
    """Create a new synchronous Phozos client."""
    return PhozosClient(config)


def create_async_phozos_client(config: Optional[PhozosConfig] = None) -> PhozosAsyncClient:
    """Create a new asynchronous Phozos client."""
    return PhozosAsyncClient(config)
