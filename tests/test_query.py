"""
Tests for the query and mutation adapters.
"""

from typing import List

import httpx
import pytest
import respx

from phozos_client import PhozosAsyncClient, PhozosClient, PhozosConfig, MemoryStorage
from phozos_client.errors import (
    AuthenticationError,
    NetworkError,
    PhozosError,
    RateLimitError,
    ValidationError,
)
from phozos_client.query import (
    AsyncMutationRunner,
    AsyncQueryClient,
    MutationRunner,
    Notification,
    QueryClient,
    describe_error,
    paginated_url,
    query_retry_delay,
    should_retry_query,
    url_from_query_key,
)


BASE = "https://app.phozos.com"
CSRF_URL = f"{BASE}/api/auth/csrf-token"


@pytest.fixture
def config() -> PhozosConfig:
    return PhozosConfig(base_url=BASE, storage=MemoryStorage())


@pytest.fixture
def client(config: PhozosConfig) -> PhozosClient:
    return PhozosClient(config)


@pytest.fixture
def sleeps(monkeypatch) -> List[float]:
    """Record backoff delays instead of sleeping."""
    recorded: List[float] = []
    monkeypatch.setattr("phozos_client.query.time.sleep", recorded.append)
    return recorded


def universities_route():
    return respx.route(method="GET", host="app.phozos.com", path="/api/universities")


# =============================================================================
# Retry Policy Tests
# =============================================================================

class TestRetryPolicy:
    """Tests for the read retry predicate and backoff."""

    def test_network_errors_retry(self):
        assert should_retry_query(0, NetworkError("down"))
        assert should_retry_query(2, NetworkError("down"))
        assert not should_retry_query(3, NetworkError("down"))

    def test_server_errors_retry(self):
        assert should_retry_query(0, PhozosError("INTERNAL", "boom", 500))

    @pytest.mark.parametrize("error", [
        AuthenticationError("Session expired"),
        ValidationError("bad input"),
        PhozosError("NOT_FOUND", "missing", 404),
        RateLimitError(),
    ])
    def test_client_errors_never_retry(self, error):
        assert not should_retry_query(0, error)

    def test_unknown_exceptions_never_retry(self):
        assert not should_retry_query(0, RuntimeError("?"))

    def test_custom_limit(self):
        assert not should_retry_query(1, NetworkError("down"), max_retries=1)

    def test_backoff_is_capped(self):
        assert query_retry_delay(0) == 1.0
        assert query_retry_delay(1) == 2.0
        assert query_retry_delay(4) == 16.0
        assert query_retry_delay(5) == 30.0
        assert query_retry_delay(10) == 30.0


class TestQueryKeys:
    """Tests for URL derivation from query keys."""

    def test_path_key(self):
        assert url_from_query_key(["/api/universities"]) == "/api/universities"

    def test_params_appended(self):
        url = url_from_query_key(["/api/universities", {"country": "DE", "page": 2, "q": None}])
        assert url == "/api/universities?country=DE&page=2"

    def test_params_join_existing_query(self):
        url = url_from_query_key(["/api/search?type=course", {"q": "math"}])
        assert url == "/api/search?type=course&q=math"

    def test_absolute_url(self):
        assert url_from_query_key(["https://cdn.phozos.com/x"]) == "https://cdn.phozos.com/x"

    @pytest.mark.parametrize("key", [[], ["universities"], [42]])
    def test_invalid_key(self, key):
        with pytest.raises(ValueError):
            url_from_query_key(key)

    def test_paginated_url(self):
        assert paginated_url("/api/courses", 2, 20) == "/api/courses?page=2&limit=20"
        assert paginated_url("/api/courses?q=x", 1, 10) == "/api/courses?q=x&page=1&limit=10"


class TestDescribeError:
    """Tests for user-facing error messages."""

    def test_auth(self):
        assert describe_error(AuthenticationError("Session expired")) == "Please log in again to continue."

    def test_validation_with_field(self):
        assert describe_error(ValidationError("is required", field="email")) == "email: is required"

    def test_validation_without_field(self):
        assert describe_error(ValidationError("is required")) == "is required"

    def test_rate_limit_hint(self):
        assert describe_error(RateLimitError(hint="Try again in 5 minutes")) == "Try again in 5 minutes"

    def test_rate_limit_default(self):
        assert describe_error(RateLimitError()) == "Too many requests. Please wait before trying again."

    def test_other(self):
        assert describe_error(PhozosError("NOT_FOUND", "No such course", 404)) == "No such course"


# =============================================================================
# QueryClient Tests
# =============================================================================

class TestQueryClient:
    """Tests for cached, retrying reads."""

    @respx.mock
    def test_fetch_caches_fresh_data(self, client: PhozosClient):
        route = universities_route().mock(
            return_value=httpx.Response(200, json={"success": True, "data": [{"id": 1}]})
        )
        queries = QueryClient(client)

        assert queries.fetch(["/api/universities"]) == [{"id": 1}]
        assert queries.fetch(["/api/universities"]) == [{"id": 1}]
        assert route.call_count == 1
        assert queries.get_query_data(["/api/universities"]) == [{"id": 1}]

    @respx.mock
    def test_stale_data_refetched(self, client: PhozosClient):
        route = universities_route().mock(return_value=httpx.Response(200, json=[]))
        queries = QueryClient(client, stale_time=0)

        queries.fetch(["/api/universities"])
        queries.fetch(["/api/universities"])

        assert route.call_count == 2

    @respx.mock
    def test_query_params_from_key(self, client: PhozosClient):
        route = universities_route().mock(return_value=httpx.Response(200, json=[]))

        QueryClient(client).fetch(["/api/universities", {"country": "DE"}])

        assert route.calls.last.request.url.params["country"] == "DE"

    @respx.mock
    def test_retries_server_errors(self, client: PhozosClient, sleeps: List[float]):
        route = universities_route().mock(side_effect=[
            httpx.Response(503),
            httpx.Response(500),
            httpx.Response(200, json=["ok"]),
        ])

        assert QueryClient(client).fetch(["/api/universities"]) == ["ok"]
        assert route.call_count == 3
        assert sleeps == [1.0, 2.0]

    @respx.mock
    def test_gives_up_after_max_retries(self, client: PhozosClient, sleeps: List[float]):
        route = universities_route().mock(return_value=httpx.Response(500))

        with pytest.raises(PhozosError) as exc_info:
            QueryClient(client, max_retries=2).fetch(["/api/universities"])

        assert exc_info.value.status_code == 500
        assert route.call_count == 3
        assert sleeps == [1.0, 2.0]

    @respx.mock
    def test_auth_error_not_retried(self, client: PhozosClient, sleeps: List[float]):
        route = universities_route().mock(return_value=httpx.Response(401))

        with pytest.raises(AuthenticationError):
            QueryClient(client).fetch(["/api/universities"])

        assert route.call_count == 1
        assert sleeps == []

    def test_disabled_query_does_nothing(self, client: PhozosClient):
        assert QueryClient(client).fetch(["/api/universities"], enabled=False) is None

    @respx.mock
    def test_paginated(self, client: PhozosClient):
        route = respx.route(method="GET", host="app.phozos.com", path="/api/courses").mock(
            return_value=httpx.Response(200, json={"success": True, "data": {"items": [], "total": 0}})
        )
        queries = QueryClient(client)

        result = queries.fetch_paginated(["/api/courses"], "/api/courses", page=3, limit=25)

        assert result == {"items": [], "total": 0}
        params = route.calls.last.request.url.params
        assert params["page"] == "3"
        assert params["limit"] == "25"
        assert queries.get_query_data(["/api/courses", "paginated", 3, 25]) is not None

    def test_expired_entries_pruned_on_store(self, client: PhozosClient, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr("phozos_client.query.time.monotonic", lambda: clock[0])
        queries = QueryClient(client, stale_time=60)
        queries.set_query_data(["/api/universities"], [1])

        clock[0] += 61
        queries.set_query_data(["/api/courses"], [2])

        assert queries.get_query_data(["/api/universities"]) is None
        assert queries.get_query_data(["/api/courses"]) == [2]

    def test_invalidate_by_prefix(self, client: PhozosClient):
        queries = QueryClient(client)
        queries.set_query_data(["/api/universities"], [1])
        queries.set_query_data(["/api/universities", {"country": "DE"}], [2])
        queries.set_query_data(["/api/courses"], [3])

        assert queries.invalidate(["/api/universities"]) == 2
        assert queries.get_query_data(["/api/universities"]) is None
        assert queries.get_query_data(["/api/courses"]) == [3]

        queries.clear()
        assert queries.get_query_data(["/api/courses"]) is None


# =============================================================================
# Mutation Tests
# =============================================================================

class TestMutationRunner:
    """Tests for write error reporting."""

    @respx.mock
    def test_success_invalidates_queries(self, client: PhozosClient):
        respx.get(CSRF_URL).mock(return_value=httpx.Response(200, json={"csrfToken": "t"}))
        respx.post(f"{BASE}/api/applications").mock(
            return_value=httpx.Response(201, json={"success": True, "data": {"id": 9}})
        )
        queries = QueryClient(client)
        queries.set_query_data(["/api/applications"], [])
        runner = MutationRunner(query_client=queries)

        result = runner.run(
            client.post, "/api/applications", {"course": 1},
            invalidate=[["/api/applications"]],
        )

        assert result == {"id": 9}
        assert queries.get_query_data(["/api/applications"]) is None

    def test_failure_notifies_once(self):
        notifications: List[Notification] = []
        runner = MutationRunner(notifier=notifications.append)

        def failing():
            raise ValidationError("must be positive", field="amount")

        with pytest.raises(ValidationError):
            runner.run(failing)

        assert notifications == [Notification(title="Error", description="amount: must be positive")]

    def test_custom_handler_replaces_notification(self):
        notifications: List[Notification] = []
        handled: List[PhozosError] = []
        runner = MutationRunner(notifier=notifications.append)

        def failing():
            raise AuthenticationError("Session expired")

        with pytest.raises(AuthenticationError):
            runner.run(failing, on_error=handled.append)

        assert notifications == []
        assert len(handled) == 1

    def test_default_notifier_logs(self, caplog):
        def failing():
            raise PhozosError("CONFLICT", "Already applied", 409)

        with pytest.raises(PhozosError):
            MutationRunner().run(failing)

        assert "Already applied" in caplog.text

    def test_non_phozos_errors_pass_through(self):
        notifications: List[Notification] = []

        def failing():
            raise KeyError("x")

        with pytest.raises(KeyError):
            MutationRunner(notifier=notifications.append).run(failing)
        assert notifications == []


# =============================================================================
# Async Adapter Tests
# =============================================================================

class TestAsyncAdapters:
    """Tests for the asyncio query and mutation adapters."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_retries_and_caches(self, config: PhozosConfig, monkeypatch):
        delays: List[float] = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr("phozos_client.query.asyncio.sleep", fake_sleep)
        route = universities_route().mock(side_effect=[
            httpx.ConnectError("refused"),
            httpx.Response(200, json=["ok"]),
        ])

        async with PhozosAsyncClient(config) as client:
            queries = AsyncQueryClient(client)
            assert await queries.fetch(["/api/universities"]) == ["ok"]
            assert await queries.fetch(["/api/universities"]) == ["ok"]

        assert route.call_count == 2
        assert delays == [1.0]

    @pytest.mark.asyncio
    async def test_mutation_notifies(self):
        notifications: List[Notification] = []

        async def failing():
            raise RateLimitError(hint="Wait an hour")

        with pytest.raises(RateLimitError):
            await AsyncMutationRunner(notifier=notifications.append).run(failing)

        assert notifications[0].description == "Wait an hour"
        assert notifications[0].variant == "destructive"
