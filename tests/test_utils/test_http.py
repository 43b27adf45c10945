from __future__ import annotations

import httpx
import pytest
from typing import Any, Callable, Generator, List
from unittest.mock import AsyncMock, patch

from versolver.utils.http import HTTPClient, _retry_after
from versolver.exceptions import NetworkError

URL = "https://registry.test/api/packages/foo"

Handler = Callable[[httpx.Request], httpx.Response]


def make_client(handler: Handler, **kwargs: Any) -> HTTPClient:
    """Build an HTTPClient whose transport is served by *handler*."""
    client = HTTPClient(**kwargs)
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def sequence(*responses: Any) -> Handler:
    """Handler returning (or raising) each item in turn, repeating the last."""
    items: List[Any] = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise item
        return item

    return handler


@pytest.fixture
def no_sleep() -> Generator[AsyncMock, None, None]:
    """Replace backoff sleeps with an instant mock.

    Yields:
        The mock standing in for ``asyncio.sleep``.
    """
    with patch("versolver.utils.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# ============================================================================
# Construction and lifecycle
# ============================================================================


@pytest.mark.unit
class TestHTTPClientInit:
    """Tests for HTTPClient initialization and configuration."""

    def test_default_values(self) -> None:
        """Defaults match the package constants."""
        client = HTTPClient()

        assert client.timeout == 30
        assert client.max_retries == 3
        assert client.rate_limit_delay == 0.0
        assert client.verify_ssl is True
        assert client.max_concurrency == 10
        assert client.user_agent.startswith("versolver/")
        assert client._client is None

    def test_custom_user_agent(self) -> None:
        """A custom User-Agent replaces the default."""
        assert HTTPClient(user_agent="Custom/1.0").user_agent == "Custom/1.0"


@pytest.mark.unit
class TestHTTPClientLifecycle:
    """Tests for creating and closing the underlying httpx client."""

    @pytest.mark.asyncio
    async def test_context_manager(self) -> None:
        """The client exists inside the block and is closed after it."""
        async with HTTPClient(user_agent="Test/1.0") as client:
            assert client._client is not None
            assert client._client.headers["User-Agent"] == "Test/1.0"
            assert client._client.headers["Accept"] == "application/json"

        assert client._client is None

    @pytest.mark.asyncio
    async def test_ensure_client_reuses_instance(self) -> None:
        """Repeated calls keep the same httpx client."""
        client = HTTPClient()
        await client._ensure_client()
        first = client._client

        await client._ensure_client()

        assert client._client is first
        await client.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        """Closing twice, or without a client, is harmless."""
        client = HTTPClient()
        await client.close()
        await client._ensure_client()
        await client.close()
        await client.close()

        assert client._client is None


# ============================================================================
# Requests
# ============================================================================


@pytest.mark.unit
class TestGetJson:
    """Tests for JSON fetching."""

    @pytest.mark.asyncio
    async def test_returns_object(self) -> None:
        """A JSON object body is returned as a dict."""
        client = make_client(sequence(httpx.Response(200, json={"name": "foo"})))

        async with client:
            assert await client.get_json(URL) == {"name": "foo"}

    @pytest.mark.asyncio
    async def test_strips_url(self) -> None:
        """Surrounding whitespace in the URL is ignored."""
        seen: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={})

        async with make_client(handler) as client:
            await client.get_json(f"  {URL}\n")

        assert seen == [URL]

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        """A body that is not JSON raises NetworkError."""
        client = make_client(sequence(httpx.Response(200, text="<html>")))

        async with client:
            with pytest.raises(NetworkError, match="Invalid JSON response"):
                await client.get_json(URL)

    @pytest.mark.asyncio
    async def test_non_object_json(self) -> None:
        """A JSON array is rejected."""
        client = make_client(sequence(httpx.Response(200, json=[1, 2])))

        async with client:
            with pytest.raises(NetworkError, match="Expected JSON object"):
                await client.get_json(URL)


@pytest.mark.unit
class TestRetries:
    """Tests for retry and backoff behaviour."""

    @pytest.mark.asyncio
    async def test_not_found_is_final(self, no_sleep: AsyncMock) -> None:
        """404 raises immediately without retrying."""
        calls: List[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            return httpx.Response(404)

        async with make_client(handler) as client:
            with pytest.raises(NetworkError, match="Resource not found") as exc_info:
                await client.get(URL)

        assert exc_info.value.status_code == 404
        assert len(calls) == 1
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_error_is_final(self, no_sleep: AsyncMock) -> None:
        """Other 4xx responses raise with the body attached."""
        client = make_client(sequence(httpx.Response(403, text="forbidden")))

        async with client:
            with pytest.raises(NetworkError, match="HTTP 403") as exc_info:
                await client.get(URL)

        assert exc_info.value.response_body == "forbidden"
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, no_sleep: AsyncMock) -> None:
        """A 5xx followed by success returns the successful response."""
        client = make_client(
            sequence(httpx.Response(502), httpx.Response(200, json={"ok": True}))
        )

        async with client:
            assert await client.get_json(URL) == {"ok": True}

        assert no_sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, no_sleep: AsyncMock) -> None:
        """Timeouts count as retryable failures."""
        request = httpx.Request("GET", URL)
        client = make_client(
            sequence(httpx.ReadTimeout("slow", request=request), httpx.Response(200, json={}))
        )

        async with client:
            assert await client.get_json(URL) == {}

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, no_sleep: AsyncMock) -> None:
        """Persistent failures raise after max_retries + 1 attempts."""
        request = httpx.Request("GET", URL)
        error = httpx.ConnectError("refused", request=request)
        client = make_client(sequence(error), max_retries=2)

        async with client:
            with pytest.raises(NetworkError, match="after 3 attempts") as exc_info:
                await client.get(URL)

        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        # Backoff between attempts only, not after the last one.
        assert no_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limited_honours_retry_after(self, no_sleep: AsyncMock) -> None:
        """429 waits for Retry-After instead of the exponential backoff."""
        client = make_client(
            sequence(
                httpx.Response(429, headers={"Retry-After": "2"}),
                httpx.Response(200, json={}),
            )
        )

        async with client:
            assert await client.get_json(URL) == {}

        no_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_rate_limited_forever(self, no_sleep: AsyncMock) -> None:
        """Too many 429 responses raise."""
        client = make_client(sequence(httpx.Response(429)), max_retries=10)

        async with client:
            with pytest.raises(NetworkError, match="Rate limit exceeded") as exc_info:
                await client.get(URL)

        assert exc_info.value.status_code == 429


@pytest.mark.unit
class TestRateLimit:
    """Tests for the minimum delay between requests."""

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, no_sleep: AsyncMock) -> None:
        """No delay is configured unless asked for."""
        client = HTTPClient()

        await client._rate_limit()
        await client._rate_limit()

        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_request_waits(self, no_sleep: AsyncMock) -> None:
        """Back-to-back requests are spaced by the delay."""
        client = HTTPClient(rate_limit_delay=10.0)

        await client._rate_limit()
        await client._rate_limit()

        no_sleep.assert_awaited_once()
        assert 9.0 < no_sleep.await_args.args[0] <= 10.0


@pytest.mark.unit
class TestRetryAfter:
    """Tests for Retry-After parsing."""

    @pytest.mark.parametrize(
        "headers,expected",
        [
            ({}, 1.0),
            ({"Retry-After": "3"}, 3.0),
            ({"Retry-After": "0.5"}, 0.5),
            ({"Retry-After": "-4"}, 0.0),
            ({"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}, 1.0),
        ],
    )
    def test_values(self, headers: dict, expected: float) -> None:
        """Numeric values are used; anything else falls back to one second."""
        assert _retry_after(httpx.Response(429, headers=headers)) == expected
