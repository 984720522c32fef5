"""
D2L Client Tests
----------------
Request lifecycle of the API client against a fake HTTP transport.

Tests cover:
- HTTPS enforcement
- Version discovery and path builders
- Auth header selection and User-Agent
- Caching rules
- 401 single retry, 429 fail-fast, API and network errors
"""

from datetime import timedelta
from pathlib import Path
from typing import List, Union
import sys

import httpx
import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).parent.parent))

from api.cache import DEFAULT_CACHE_TTLS
from api.client import D2LClient, D2LClientConfig
from api.rate_limiter import RateLimitConfig, RateLimiter
from auth.credentials import AuthScheme
from auth.token_manager import CredentialManager
from core.errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    ErrorCategory,
    NetworkError,
    RateLimitError,
)
from conftest import StubCredentialManager, make_record


BASE_URL = "https://purdue.brightspace.com"
WHOAMI = "/d2l/api/lp/1.56/users/whoami"

VERSIONS_PAYLOAD = [
    {"ProductCode": "lp", "LatestVersion": "1.56"},
    {"ProductCode": "le", "LatestVersion": "1.91"},
    {"ProductCode": "other", "LatestVersion": "1.0"},
]


class BrokenStream(httpx.AsyncByteStream):
    """Body stream that fails after the status line was received."""

    async def __aiter__(self):
        raise httpx.ReadError("connection reset while reading body")
        yield b""  # pragma: no cover


class FakeServer:
    """
    Scripted HTTP backend.

    The versions endpoint always answers; every other request consumes the
    next scripted response (or raises the scripted exception).
    """

    def __init__(self):
        self.script: List[Union[httpx.Response, Exception]] = []
        self.requests: List[httpx.Request] = []
        self.versions_payload = VERSIONS_PAYLOAD

    def queue(self, *items: Union[httpx.Response, Exception]) -> None:
        self.script.extend(items)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/d2l/api/versions/":
            return httpx.Response(200, json=self.versions_payload)

        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def api_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path != "/d2l/api/versions/"]


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def make_client(server):
    def _make(credentials, **config_kwargs):
        config = D2LClientConfig(base_url=BASE_URL, **config_kwargs)
        return D2LClient(config, credentials, transport=httpx.MockTransport(server.handler))

    return _make


@pytest_asyncio.fixture
async def client(make_client, stub_credentials):
    c = make_client(stub_credentials)
    await c.initialize()
    yield c
    await c.close()


class TestHttpsEnforcement:
    """Construction-time checks."""

    def test_http_base_url_rejected(self, stub_credentials):
        with pytest.raises(ConfigurationError, match="HTTPS is required"):
            D2LClient(D2LClientConfig(base_url="http://purdue.brightspace.com"), stub_credentials)

    def test_https_base_url_accepted(self, stub_credentials):
        client = D2LClient(D2LClientConfig(base_url=BASE_URL), stub_credentials)

        assert not client.is_initialized

    def test_error_is_configuration_kind(self, stub_credentials):
        with pytest.raises(ConfigurationError) as exc_info:
            D2LClient(D2LClientConfig(base_url="ftp://example.com"), stub_credentials)

        assert exc_info.value.category is ErrorCategory.CONFIGURATION

    @pytest.mark.asyncio
    async def test_plain_http_absolute_path_rejected(self, client):
        with pytest.raises(ConfigurationError):
            await client.get("http://purdue.brightspace.com/d2l/api/lp/1.56/users/whoami")

    @pytest.mark.asyncio
    async def test_foreign_host_rejected(self, client):
        with pytest.raises(ConfigurationError):
            await client.get("https://evil.example.com/d2l/api/lp/1.56/users/whoami")


class TestVersionDiscovery:
    """initialize() and path builders."""

    @pytest.mark.asyncio
    async def test_discovers_lp_and_le(self, make_client, server, stub_credentials):
        client = make_client(stub_credentials)
        versions = await client.initialize()

        assert versions.as_dict() == {"lp": "1.56", "le": "1.91"}
        assert client.api_versions.lp == "1.56"
        request = server.requests[0]
        assert str(request.url) == f"{BASE_URL}/d2l/api/versions/"
        assert "Mozilla" in request.headers["User-Agent"]

    @pytest.mark.asyncio
    async def test_discovery_works_without_credential(self, make_client):
        client = make_client(StubCredentialManager(None))
        await client.initialize()

        assert client.is_initialized

    def test_versions_before_initialize(self, make_client, stub_credentials):
        client = make_client(stub_credentials)

        with pytest.raises(ConfigurationError, match="not initialized"):
            _ = client.api_versions

    def test_path_builders_before_initialize(self, make_client, stub_credentials):
        client = make_client(stub_credentials)

        with pytest.raises(ConfigurationError):
            client.lp("/users/whoami")
        with pytest.raises(ConfigurationError):
            client.le(123456, "/content/root/")
        with pytest.raises(ConfigurationError):
            client.le_global("/enrollments/myenrollments/")

    @pytest.mark.asyncio
    async def test_initialize_twice_rejected(self, client):
        with pytest.raises(ConfigurationError):
            await client.initialize()

    @pytest.mark.asyncio
    async def test_missing_product_rejected(self, make_client, server, stub_credentials):
        server.versions_payload = [{"ProductCode": "lp", "LatestVersion": "1.56"}]
        client = make_client(stub_credentials)

        with pytest.raises(ConfigurationError, match="le"):
            await client.initialize()
        assert not client.is_initialized

    @pytest.mark.asyncio
    async def test_path_builders(self, client):
        assert client.lp("/users/whoami") == "/d2l/api/lp/1.56/users/whoami"
        assert client.le(123456, "/content/root/") == "/d2l/api/le/1.91/123456/content/root/"
        assert client.le_global("/enrollments/myenrollments/") == "/d2l/api/le/1.91/enrollments/myenrollments/"


class TestHeaders:
    """Authentication and identification headers."""

    @pytest.mark.asyncio
    async def test_bearer_header(self, client, server, stub_credentials):
        server.queue(httpx.Response(200, json={"Items": []}))

        await client.get(WHOAMI)

        request = server.api_requests[-1]
        assert str(request.url) == f"{BASE_URL}{WHOAMI}"
        assert request.headers["Authorization"] == f"Bearer {stub_credentials.current.secret}"
        assert "Cookie" not in request.headers

    @pytest.mark.asyncio
    async def test_cookie_header(self, make_client, server):
        credentials = StubCredentialManager(make_record(secret="d2lSessionVal=abc", scheme=AuthScheme.COOKIE))
        client = make_client(credentials)
        await client.initialize()
        server.queue(httpx.Response(200, json={"Items": []}))

        await client.get(WHOAMI)

        request = server.api_requests[-1]
        assert request.headers["Cookie"] == "d2lSessionVal=abc"
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_browser_user_agent(self, client, server):
        server.queue(httpx.Response(200, json={}))

        await client.get(WHOAMI)

        assert "Chrome/131.0.0.0" in server.api_requests[-1].headers["User-Agent"]


class TestCaching:
    """Cache population rules."""

    @pytest.mark.asyncio
    async def test_ttl_response_served_from_cache(self, client, server):
        payload = {"Items": [{"id": 1}]}
        server.queue(httpx.Response(200, json=payload))

        first = await client.get(WHOAMI, ttl=60)
        second = await client.get(WHOAMI, ttl=60)

        assert first == payload
        assert second == payload
        assert len(server.api_requests) == 1
        assert client.cache_size == 1

    @pytest.mark.asyncio
    async def test_no_ttl_never_cached(self, client, server):
        server.queue(
            httpx.Response(200, json={"Items": [{"id": 1}]}),
            httpx.Response(200, json={"Items": [{"id": 2}]}),
        )

        first = await client.get(WHOAMI)
        second = await client.get(WHOAMI)

        assert first == {"Items": [{"id": 1}]}
        assert second == {"Items": [{"id": 2}]}
        assert client.cache_size == 0

    @pytest.mark.asyncio
    async def test_cache_hit_consumes_no_permit(self, server, stub_credentials):
        limiter = RateLimiter(RateLimitConfig(capacity=2, refill_per_second=0.01))
        client = D2LClient(
            D2LClientConfig(base_url=BASE_URL), stub_credentials,
            transport=httpx.MockTransport(server.handler), rate_limiter=limiter
        )
        await client.initialize()
        server.queue(httpx.Response(200, json={"ok": True}))

        await client.get(WHOAMI, ttl=60)
        for _ in range(5):
            await client.get(WHOAMI, ttl=60)

        assert limiter.available_tokens < 1.0
        assert len(server.api_requests) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_failed_request_not_cached(self, client, server):
        server.queue(httpx.Response(500, text="boom"), httpx.Response(200, json={"ok": True}))

        with pytest.raises(ApiError):
            await client.get(WHOAMI, ttl=60)
        assert client.cache_size == 0

        assert await client.get(WHOAMI, ttl=60) == {"ok": True}

    @pytest.mark.asyncio
    async def test_clear_cache(self, client, server):
        server.queue(httpx.Response(200, json={"data": "a"}), httpx.Response(200, json={"data": "b"}))

        await client.get("/path1", ttl=60)
        await client.get("/path2", ttl=60)
        assert client.cache_size == 2

        client.clear_cache()
        assert client.cache_size == 0

    @pytest.mark.asyncio
    async def test_invalidate_single_path(self, client, server):
        server.queue(httpx.Response(200, json={"v": 1}), httpx.Response(200, json={"v": 2}))

        await client.get(WHOAMI, ttl=60)
        assert client.invalidate(WHOAMI) is True

        assert await client.get(WHOAMI, ttl=60) == {"v": 2}

    @pytest.mark.asyncio
    async def test_default_resource_ttl_caches(self, client, server):
        path = client.le(123456, "/content/root/")
        server.queue(httpx.Response(200, json=[{"Id": 1, "Title": "Week 1"}]))

        first = await client.get(path, ttl=DEFAULT_CACHE_TTLS.course_content)
        second = await client.get(path, ttl=DEFAULT_CACHE_TTLS.course_content)

        assert first == second == [{"Id": 1, "Title": "Week 1"}]
        assert len(server.api_requests) == 1

    @pytest.mark.asyncio
    async def test_caller_mutation_does_not_change_cached_payload(self, client, server):
        server.queue(httpx.Response(200, json={"Items": [{"id": 1}]}))

        first = await client.get(WHOAMI, ttl=60)
        first["Items"].clear()

        assert await client.get(WHOAMI, ttl=60) == {"Items": [{"id": 1}]}

    @pytest.mark.asyncio
    async def test_payload_returned_verbatim(self, client, server):
        raw = {
            "Items": [{
                "Id": 123,
                "Name": "<b>HTML Content</b>",
                "Description": {"Html": "<p>Description</p>"},
                "CreatedDate": "2024-01-15T10:30:00.000Z",
                "NullField": None,
            }]
        }
        server.queue(httpx.Response(200, json=raw))

        assert await client.get("/d2l/api/lp/1.56/test") == raw


class TestAuthentication:
    """Missing credentials and the single 401 retry."""

    @pytest.mark.asyncio
    async def test_no_credential_fails_without_request(self, make_client, server):
        client = make_client(StubCredentialManager(None))
        await client.initialize()

        with pytest.raises(AuthenticationError) as exc_info:
            await client.get(WHOAMI)

        assert exc_info.value.status == 401
        assert server.api_requests == []

    @pytest.mark.asyncio
    async def test_401_then_success_with_new_credential(self, client, server, stub_credentials):
        stale = make_record(secret="stale-token-12345678")
        fresh = make_record(secret="fresh-token-87654321")
        stub_credentials.queued = [stale, fresh]
        server.queue(httpx.Response(401, text="Unauthorized"), httpx.Response(200, json={"success": True}))

        result = await client.get(WHOAMI)

        assert result == {"success": True}
        assert len(server.api_requests) == 2
        assert server.api_requests[0].headers["Authorization"] == "Bearer stale-token-12345678"
        assert server.api_requests[1].headers["Authorization"] == "Bearer fresh-token-87654321"
        assert stub_credentials.clear_calls == 0

    @pytest.mark.asyncio
    async def test_double_401_clears_credential(self, client, server, stub_credentials):
        server.queue(httpx.Response(401, text="Unauthorized"), httpx.Response(401, text="Unauthorized"))

        with pytest.raises(AuthenticationError) as exc_info:
            await client.get(WHOAMI)

        assert exc_info.value.status == 401
        assert exc_info.value.category is ErrorCategory.AUTHENTICATION
        assert len(server.api_requests) == 2
        assert stub_credentials.get_credential() is None
        assert stub_credentials.needs_refresh()

    @pytest.mark.asyncio
    async def test_401_with_no_replacement_credential(self, client, server, stub_credentials):
        stub_credentials.queued = [make_record(), None]
        server.queue(httpx.Response(401, text="Unauthorized"))

        with pytest.raises(AuthenticationError):
            await client.get(WHOAMI)

        assert len(server.api_requests) == 1

    @pytest.mark.asyncio
    async def test_retry_consumes_its_own_permit(self, server, stub_credentials):
        limiter = RateLimiter(RateLimitConfig(capacity=3, refill_per_second=0.01))
        client = D2LClient(
            D2LClientConfig(base_url=BASE_URL), stub_credentials,
            transport=httpx.MockTransport(server.handler), rate_limiter=limiter
        )
        await client.initialize()  # one permit
        server.queue(httpx.Response(401), httpx.Response(200, json={}))

        await client.get(WHOAMI)  # two permits

        assert limiter.available_tokens < 1.0
        await client.close()

    @pytest.mark.asyncio
    async def test_double_401_with_real_manager(self, make_client, server, manager):
        manager.set_credential(make_record(expires_in=timedelta(hours=1)))
        client = make_client(manager)
        await client.initialize()
        server.queue(httpx.Response(401), httpx.Response(401))

        with pytest.raises(AuthenticationError):
            await client.get(WHOAMI)

        assert manager.get_credential() is None
        assert not manager.store.exists()
        await client.close()


class TestRateLimiting:
    """Server 429 handling."""

    @pytest.mark.asyncio
    async def test_429_with_retry_after(self, client, server):
        server.queue(httpx.Response(429, headers={"Retry-After": "60"}, text="Rate limited"))

        with pytest.raises(RateLimitError) as exc_info:
            await client.get(WHOAMI)

        assert exc_info.value.retry_after == 60
        assert exc_info.value.retryable
        assert len(server.api_requests) == 1

    @pytest.mark.asyncio
    async def test_429_without_retry_after(self, client, server):
        server.queue(httpx.Response(429))

        with pytest.raises(RateLimitError) as exc_info:
            await client.get(WHOAMI)

        assert exc_info.value.retry_after is None


class TestFailures:
    """Other statuses and transport failures."""

    @pytest.mark.asyncio
    async def test_non_2xx_carries_status_and_body(self, client, server):
        server.queue(httpx.Response(404, text="Not Found: org unit"))

        with pytest.raises(ApiError) as exc_info:
            await client.get(WHOAMI)

        assert exc_info.value.status == 404
        assert exc_info.value.body == "Not Found: org unit"
        assert not isinstance(exc_info.value, AuthenticationError)

    @pytest.mark.asyncio
    async def test_body_read_failure_keeps_status(self, client, server):
        server.queue(httpx.Response(503, stream=BrokenStream()))

        with pytest.raises(ApiError) as exc_info:
            await client.get(WHOAMI)

        assert exc_info.value.status == 503
        assert exc_info.value.body == ""

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self, client, server, stub_credentials):
        cause = httpx.ConnectError("Name or service not known")
        server.queue(cause)

        with pytest.raises(NetworkError) as exc_info:
            await client.get(WHOAMI, ttl=60)

        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause
        assert exc_info.value.category is ErrorCategory.NETWORK
        assert client.cache_size == 0
        assert stub_credentials.clear_calls == 0

    @pytest.mark.asyncio
    async def test_timeout_wrapped(self, client, server):
        server.queue(httpx.ReadTimeout("timed out"))

        with pytest.raises(NetworkError, match="timed out"):
            await client.get(WHOAMI)

    @pytest.mark.asyncio
    async def test_invalid_json_is_api_error(self, client, server):
        server.queue(httpx.Response(200, text="<html>login</html>"))

        with pytest.raises(ApiError) as exc_info:
            await client.get(WHOAMI)

        assert exc_info.value.status == 200


class TestSharedManager:
    """One credential manager serving two clients."""

    @pytest.mark.asyncio
    async def test_two_clients_share_credentials(self, server, manager):
        manager.set_credential(make_record(secret="shared-token-abcdef"))
        transport = httpx.MockTransport(server.handler)
        first = D2LClient(D2LClientConfig(base_url=BASE_URL), manager, transport=transport)
        second = D2LClient(D2LClientConfig(base_url=BASE_URL), manager, transport=transport)
        await first.initialize()
        await second.initialize()
        server.queue(httpx.Response(200, json={"a": 1}), httpx.Response(200, json={"b": 2}))

        assert await first.get(WHOAMI) == {"a": 1}
        assert await second.get(WHOAMI) == {"b": 2}
        assert all(r.headers["Authorization"] == "Bearer shared-token-abcdef" for r in server.api_requests)
        assert isinstance(manager, CredentialManager)

        await first.close()
        await second.close()
