"""
Phozos API Client Token Store

Single source of truth for the bearer auth token and the CSRF token.
The auth token is mirrored to durable storage; the CSRF token lives in
memory only.
"""

import logging
from http.cookies import CookieError, SimpleCookie
from typing import Optional, Union

import httpx

from .storage import MemoryStorage
from .types import TOKEN_STORAGE_KEY, TokenStorage


logger = logging.getLogger("phozos_client.token_store")


def parse_cookie_header(header: Optional[str], name: str) -> Optional[str]:
    """Read a named value from a `Cookie:` style header string."""
    if not header:
        return None
    cookie = SimpleCookie()
    try:
        cookie.load(header)
    except CookieError:
        return None
    morsel = cookie.get(name)
    if morsel is None or not morsel.value:
        return None
    return morsel.value


class TokenStore:
    """Holds the auth and CSRF tokens for one client instance."""

    def __init__(
        self,
        storage: Optional[TokenStorage] = None,
        cookies: Union[httpx.Cookies, str, None] = None,
        storage_key: str = TOKEN_STORAGE_KEY,
    ) -> None:
        self._storage = storage if storage is not None else MemoryStorage()
        self._cookies = cookies
        self._storage_key = storage_key
        self._auth_token: Optional[str] = None
        self._csrf_token: Optional[str] = None

    def attach_cookies(self, cookies: Union[httpx.Cookies, str, None]) -> None:
        """
        Point cookie lookups at a client's cookie jar, or at a raw
        `Cookie:` header forwarded from a browser request.
        """
        self._cookies = cookies

    # =========================================================================
    # Auth Token
    # =========================================================================

    def set_auth_token(self, token: Optional[str]) -> None:
        """
        Set the bearer token.

        Persisting a token must succeed, so storage errors are re-raised.
        Removing it is best-effort cleanup and only logs.
        """
        self._auth_token = token

        if token:
            try:
                self._storage.set_item(self._storage_key, token)
            except Exception:
                logger.error("Failed to persist auth token", exc_info=True)
                raise
        else:
            try:
                self._storage.remove_item(self._storage_key)
            except Exception as e:
                logger.warning("Failed to clear auth token from storage: %s", e)

    def get_auth_token(self) -> Optional[str]:
        """Get the bearer token, loading it from storage once if needed."""
        if self._auth_token:
            return self._auth_token

        try:
            stored = self._storage.get_item(self._storage_key)
        except Exception as e:
            logger.warning("Failed to read auth token from storage: %s", e)
            return None

        if stored:
            self._auth_token = stored
            return stored
        return None

    def clear_auth_token(self) -> None:
        """Clear the bearer token."""
        self.set_auth_token(None)

    # =========================================================================
    # CSRF Token
    # =========================================================================

    def set_csrf_token(self, token: Optional[str]) -> None:
        self._csrf_token = token

    def get_csrf_token(self) -> Optional[str]:
        return self._csrf_token

    def get_cookie_value(self, name: str) -> Optional[str]:
        """Get a cookie value, or None if no jar is attached or it is unset."""
        if self._cookies is None:
            return None
        if isinstance(self._cookies, str):
            return parse_cookie_header(self._cookies, name)
        for cookie in self._cookies.jar:
            if cookie.name == name and cookie.value:
                return cookie.value
        return None
