"""
Caller-facing query and mutation adapters.

Reads go through a small per-key cache and retry server failures with
capped exponential backoff. Writes turn a failure into one user-facing
notification, unless the caller handles the error itself.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlencode

from .errors import PhozosError, RateLimitError, is_retryable_error


logger = logging.getLogger("phozos_client.query")

# Backoff for read retries, in seconds
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 30.0

QueryKey = Sequence[Any]


def should_retry_query(failure_count: int, error: Exception, max_retries: int = 3) -> bool:
    """Never retry auth, validation or other 4xx failures; retry the rest a bounded number of times."""
    if not is_retryable_error(error):
        return False
    return failure_count < max_retries


def query_retry_delay(attempt: int) -> float:
    return min(RETRY_BASE_DELAY * 2 ** attempt, RETRY_MAX_DELAY)


def url_from_query_key(query_key: QueryKey) -> str:
    """
    Derive a GET URL from a query key.

    The first element must be a URL-like string; an optional dict in the
    second position becomes the query string (None values are dropped).
    """
    first = query_key[0] if query_key else None
    if not isinstance(first, str) or not (first.startswith("/api") or first.startswith("http")):
        raise ValueError(
            "Default query URL requires a query key starting with '/api' or 'http'. "
            f"Got: {list(query_key)!r}. Pass an explicit url instead."
        )

    url = first
    if len(query_key) > 1 and isinstance(query_key[1], dict):
        params = {k: str(v) for k, v in query_key[1].items() if v is not None}
        if params:
            url += ("&" if "?" in url else "?") + urlencode(params)
    return url


def paginated_url(url: str, page: int, limit: int) -> str:
    return url + ("&" if "?" in url else "?") + urlencode({"page": page, "limit": limit})


@dataclass
class Notification:
    """A user-facing error message."""
    title: str
    description: str
    variant: str = "destructive"


Notifier = Callable[[Notification], None]


def log_notifier(notification: Notification) -> None:
    """Default notifier: log the notification."""
    logger.warning("%s: %s", notification.title, notification.description)


def describe_error(error: PhozosError) -> str:
    """Map an error classification to an actionable message."""
    if error.is_auth_error():
        return "Please log in again to continue."
    if error.is_validation_error():
        return f"{error.field}: {error.message}" if error.field else error.message
    if isinstance(error, RateLimitError) or error.code == "RATE_LIMITED":
        return error.hint or "Too many requests. Please wait before trying again."
    return error.message


# =============================================================================
# Query Cache
# =============================================================================

class _QueryCache:
    """Per-key cache of query results."""

    def __init__(self, stale_time: float, max_retries: int) -> None:
        self._stale_time = stale_time
        self._max_retries = max_retries
        self._entries: Dict[str, Tuple[List[Any], float, Any]] = {}

    @staticmethod
    def _hash_key(query_key: QueryKey) -> str:
        return json.dumps(list(query_key), sort_keys=True, default=str)

    def _cached(self, query_key: QueryKey) -> Tuple[bool, Any]:
        entry = self._entries.get(self._hash_key(query_key))
        if entry is None:
            return False, None
        _, fetched_at, value = entry
        if time.monotonic() - fetched_at >= self._stale_time:
            return False, None
        return True, value

    def _prune(self) -> None:
        """Drop entries that are past their stale time."""
        now = time.monotonic()
        expired = [
            hashed for hashed, (_, fetched_at, _) in self._entries.items()
            if now - fetched_at >= self._stale_time
        ]
        for hashed in expired:
            del self._entries[hashed]

    def _remember(self, query_key: QueryKey, value: Any) -> None:
        self._prune()
        self._entries[self._hash_key(query_key)] = (list(query_key), time.monotonic(), value)

    def get_query_data(self, query_key: QueryKey) -> Any:
        """Return cached data for a key, fresh or stale, or None."""
        entry = self._entries.get(self._hash_key(query_key))
        return entry[2] if entry else None

    def set_query_data(self, query_key: QueryKey, value: Any) -> None:
        self._remember(query_key, value)

    def invalidate(self, prefix: QueryKey) -> int:
        """Drop every entry whose key starts with prefix. Returns the count dropped."""
        prefix = list(prefix)
        stale = [
            hashed for hashed, (key, _, _) in self._entries.items()
            if key[: len(prefix)] == prefix
        ]
        for hashed in stale:
            del self._entries[hashed]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()


class QueryClient(_QueryCache):
    """Cached, retrying reads over a PhozosClient."""

    def __init__(
        self,
        client: Any,
        stale_time: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        config = client.config
        super().__init__(
            config.stale_time if stale_time is None else stale_time,
            config.max_query_retries if max_retries is None else max_retries,
        )
        self._client = client

    def fetch(
        self,
        query_key: QueryKey,
        url: Optional[str] = None,
        response_schema: Any = None,
        enabled: bool = True,
    ) -> Any:
        """Fetch a query, serving fresh cached data when available."""
        if not enabled:
            return None

        hit, value = self._cached(query_key)
        if hit:
            return value

        url = url or url_from_query_key(query_key)
        failure_count = 0
        while True:
            try:
                value = self._client.get(url, response_schema)
                break
            except PhozosError as error:
                if not should_retry_query(failure_count, error, self._max_retries):
                    raise
                delay = query_retry_delay(failure_count)
                logger.debug("Query %s failed (%s), retrying in %.1fs", url, error.code, delay)
                time.sleep(delay)
                failure_count += 1

        self._remember(query_key, value)
        return value

    def fetch_paginated(
        self,
        query_key: QueryKey,
        url: str,
        page: int,
        limit: int,
        response_schema: Any = None,
        enabled: bool = True,
    ) -> Any:
        return self.fetch(
            [*query_key, "paginated", page, limit],
            paginated_url(url, page, limit),
            response_schema,
            enabled,
        )


class AsyncQueryClient(_QueryCache):
    """Cached, retrying reads over a PhozosAsyncClient."""

    def __init__(
        self,
        client: Any,
        stale_time: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> None:
        config = client.config
        super().__init__(
            config.stale_time if stale_time is None else stale_time,
            config.max_query_retries if max_retries is None else max_retries,
        )
        self._client = client

    async def fetch(
        self,
        query_key: QueryKey,
        url: Optional[str] = None,
        response_schema: Any = None,
        enabled: bool = True,
    ) -> Any:
        """Fetch a query, serving fresh cached data when available."""
        if not enabled:
            return None

        hit, value = self._cached(query_key)
        if hit:
            return value

        url = url or url_from_query_key(query_key)
        failure_count = 0
        while True:
            try:
                value = await self._client.get(url, response_schema)
                break
            except PhozosError as error:
                if not should_retry_query(failure_count, error, self._max_retries):
                    raise
                delay = query_retry_delay(failure_count)
                logger.debug("Query %s failed (%s), retrying in %.1fs", url, error.code, delay)
                await asyncio.sleep(delay)
                failure_count += 1

        self._remember(query_key, value)
        return value

    async def fetch_paginated(
        self,
        query_key: QueryKey,
        url: str,
        page: int,
        limit: int,
        response_schema: Any = None,
        enabled: bool = True,
    ) -> Any:
        return await self.fetch(
            [*query_key, "paginated", page, limit],
            paginated_url(url, page, limit),
            response_schema,
            enabled,
        )


# =============================================================================
# Mutations
# =============================================================================

class _MutationBase:
    def __init__(self, notifier: Optional[Notifier] = None, query_client: Optional[_QueryCache] = None) -> None:
        self._notifier = notifier or log_notifier
        self._query_client = query_client

    def _report(self, error: PhozosError, on_error: Optional[Callable[[PhozosError], Any]]) -> None:
        if on_error is None:
            self._notifier(Notification(title="Error", description=describe_error(error)))
        else:
            on_error(error)

    def _invalidate(self, keys: Optional[Iterable[QueryKey]]) -> None:
        if keys and self._query_client is not None:
            for key in keys:
                self._query_client.invalidate(key)


class MutationRunner(_MutationBase):
    """Runs writes, notifying once per failed attempt."""

    def run(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_error: Optional[Callable[[PhozosError], Any]] = None,
        invalidate: Optional[Iterable[QueryKey]] = None,
        **kwargs: Any,
    ) -> Any:
        try:
            result = fn(*args, **kwargs)
        except PhozosError as error:
            self._report(error, on_error)
            raise
        self._invalidate(invalidate)
        return result


class AsyncMutationRunner(_MutationBase):
    """Runs async writes, notifying once per failed attempt."""

    async def run(
        self,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        on_error: Optional[Callable[[PhozosError], Any]] = None,
        invalidate: Optional[Iterable[QueryKey]] = None,
        **kwargs: Any,
    ) -> Any:
        try:
            result = await fn(*args, **kwargs)
        except PhozosError as error:
            self._report(error, on_error)
            raise
        self._invalidate(invalidate)
        return result
