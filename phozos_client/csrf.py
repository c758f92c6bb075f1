"""
CSRF readiness protocol.

Before a mutating request the in-memory CSRF token must exist and agree
with any visible CSRF cookie. A refresh fetches a new token from the
bootstrap endpoint; concurrent callers share a single in-flight refresh
instead of issuing duplicate network calls.
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any, Optional

import httpx

from .errors import CsrfRefreshError, NetworkError
from .token_store import TokenStore


logger = logging.getLogger("phozos_client.csrf")


def extract_csrf_token(response: httpx.Response) -> str:
    """Read the token from `{csrfToken}` or `{data: {csrfToken}}`."""
    if not response.is_success:
        raise CsrfRefreshError("Failed to obtain CSRF token", response.status_code)

    try:
        data: Any = response.json()
    except ValueError:
        data = None

    token = None
    if isinstance(data, dict):
        token = data.get("csrfToken")
        nested = data.get("data")
        if not token and isinstance(nested, dict):
            token = nested.get("csrfToken")

    if not token or not isinstance(token, str):
        raise CsrfRefreshError("Invalid CSRF token response", response.status_code)
    return token


class _CsrfState:
    """Decision logic shared by the sync and async managers."""

    def __init__(self, store: TokenStore, endpoint: str, cookie_name: str) -> None:
        self._store = store
        self._endpoint = endpoint
        self._cookie_name = cookie_name

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def needs_refresh(self) -> bool:
        """No token, or a visible cookie that disagrees with it."""
        memory_token = self._store.get_csrf_token()
        cookie_token = self._store.get_cookie_value(self._cookie_name)
        if not memory_token:
            return True
        # An unreadable cookie (HttpOnly deployments) is not a mismatch
        return bool(cookie_token) and cookie_token != memory_token

    def accept(self, token: str) -> None:
        self._store.set_csrf_token(token)
        cookie_token = self._store.get_cookie_value(self._cookie_name)
        if cookie_token and cookie_token != token:
            logger.warning(
                "CSRF cookie verification failed - may indicate cookie policy issue"
            )


class CsrfManager(_CsrfState):
    """Thread-safe CSRF readiness for the synchronous client."""

    def __init__(
        self,
        store: TokenStore,
        http_client: httpx.Client,
        endpoint: str,
        cookie_name: str = "_csrf",
    ) -> None:
        super().__init__(store, endpoint, cookie_name)
        self._http_client = http_client
        self._lock = threading.Lock()
        self._refresh: Optional["Future[None]"] = None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh is not None

    def ensure_ready(self, force: bool = False) -> None:
        """Make sure a synchronized CSRF token is held, refreshing at most once."""
        with self._lock:
            pending = self._refresh
            owner = False
            if pending is None:
                if not force and not self.needs_refresh():
                    return
                pending = Future()
                self._refresh = pending
                owner = True

        if not owner:
            # Re-raises the refresh failure, if any
            pending.result()
            return

        try:
            self._fetch()
            pending.set_result(None)
        except BaseException as e:
            pending.set_exception(e)
            raise
        finally:
            with self._lock:
                self._refresh = None

    def _fetch(self) -> None:
        logger.debug("Refreshing CSRF token from %s", self._endpoint)
        try:
            response = self._http_client.get(self._endpoint)
        except httpx.TimeoutException:
            raise NetworkError("CSRF token request timed out", {"endpoint": self._endpoint})
        except httpx.RequestError as e:
            raise NetworkError(str(e), {"endpoint": self._endpoint})
        self.accept(extract_csrf_token(response))


class AsyncCsrfManager(_CsrfState):
    """CSRF readiness for the asyncio client."""

    def __init__(
        self,
        store: TokenStore,
        http_client: httpx.AsyncClient,
        endpoint: str,
        cookie_name: str = "_csrf",
    ) -> None:
        super().__init__(store, endpoint, cookie_name)
        self._http_client = http_client
        self._refresh: Optional["asyncio.Task[None]"] = None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh is not None

    async def ensure_ready(self, force: bool = False) -> None:
        """Make sure a synchronized CSRF token is held, refreshing at most once."""
        if self._refresh is None:
            if not force and not self.needs_refresh():
                return
            self._refresh = asyncio.ensure_future(self._run_refresh())
        refresh = self._refresh

        # A cancelled caller must not cancel the refresh other callers share
        await asyncio.shield(refresh)

    async def _run_refresh(self) -> None:
        try:
            await self._fetch()
        finally:
            self._refresh = None

    async def _fetch(self) -> None:
        logger.debug("Refreshing CSRF token from %s", self._endpoint)
        try:
            response = await self._http_client.get(self._endpoint)
        except httpx.TimeoutException:
            raise NetworkError("CSRF token request timed out", {"endpoint": self._endpoint})
        except httpx.RequestError as e:
            raise NetworkError(str(e), {"endpoint": self._endpoint})
        self.accept(extract_csrf_token(response))
