"""
D2L API Client
--------------
Versioned REST client with caching, rate limiting and credential handling.

Request lifecycle for get():
1. Cache hit (only when the caller passed a ttl) returns immediately
2. Acquire a rate-limit permit
3. Read the credential; none means AuthenticationError, no request sent
4. Send over HTTPS with exactly one auth header and a browser User-Agent
5. 401 -> re-read credential and retry once; a second 401 clears it
6. 429 -> RateLimitError, never retried here
7. Other non-2xx -> ApiError; transport failure -> NetworkError
8. Success -> payload returned verbatim, cached only when a ttl was given
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlsplit
import asyncio
import json
import time

import httpx

from api.cache import ResponseCache
from api.rate_limiter import RateLimitConfig, RateLimiter
from api.versions import VERSIONS_PATH, ApiVersions, parse_versions
from auth.credentials import CredentialRecord
from auth.session_store import SessionStoreError
from auth.token_manager import CredentialManager
from core.errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    parse_retry_after,
)
from infra.logging import RequestContext, get_logger

# The service degrades or rejects generic client identifiers
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

# Bodies attached to errors are truncated to this many characters
MAX_ERROR_BODY = 2000


@dataclass
class D2LClientConfig:
    """Configuration for a D2L API client."""
    base_url: str
    timeout_seconds: float = 30.0
    permit_timeout_seconds: float = 30.0  # Max wait for a local rate-limit permit
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = BROWSER_USER_AGENT


@dataclass
class _RawResponse:
    """Status, headers and body of one HTTP exchange."""
    status_code: int
    headers: httpx.Headers
    content: bytes
    read_error: Optional[Exception] = None

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class D2LClient:
    """
    Client for the versioned D2L REST API.

    The credential manager is borrowed, not owned; the cache and rate
    limiter belong to this instance.
    """

    def __init__(
        self,
        config: D2LClientConfig,
        credentials: CredentialManager,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[RateLimiter] = None
    ):
        parsed = urlsplit(config.base_url)
        if parsed.scheme.lower() != "https" or not parsed.netloc:
            raise ConfigurationError(
                f"HTTPS is required for the API base URL, got: {config.base_url}",
                details={"base_url": config.base_url}
            )

        self.config = config
        self._base_url = config.base_url.rstrip("/")
        self._host = parsed.netloc.lower()
        self._credentials = credentials
        self._transport = transport
        self._cache = cache or ResponseCache()
        self._rate_limiter = rate_limiter or RateLimiter(config.rate_limit)
        self._versions: Optional[ApiVersions] = None
        self._http: Optional[httpx.AsyncClient] = None
        self._logger = get_logger("api.client")

    # -- lifecycle ---------------------------------------------------------

    async def __aenter__(self) -> "D2LClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                transport=self._transport,
                follow_redirects=False,
            )
        return self._http

    async def initialize(self) -> ApiVersions:
        """
        Discover the lp and le API versions.

        Must be called once before get() or any path builder.
        """
        if self._versions is not None:
            raise ConfigurationError("Client is already initialized")

        url = f"{self._base_url}{VERSIONS_PATH}"
        with RequestContext():
            await self._acquire_permit()
            credential = await self._read_credential()
            response = await self._send(url, credential)
            payload = self._handle_response(response, url)

        versions = parse_versions(payload)
        self._versions = versions
        self._logger.info(f"Discovered API versions: lp={versions.lp}, le={versions.le}")
        return versions

    @property
    def is_initialized(self) -> bool:
        return self._versions is not None

    @property
    def api_versions(self) -> ApiVersions:
        """Discovered versions; raises ConfigurationError before initialize()."""
        if self._versions is None:
            raise ConfigurationError("Client not initialized. Call initialize() first.")
        return self._versions

    # -- path builders -----------------------------------------------------

    def lp(self, subpath: str) -> str:
        """Versioned Learning Platform path."""
        return f"/d2l/api/lp/{self.api_versions.lp}{subpath}"

    def le(self, org_unit_id: int, subpath: str) -> str:
        """Versioned Learning Environment path scoped to a course (org unit)."""
        return f"/d2l/api/le/{self.api_versions.le}/{int(org_unit_id)}{subpath}"

    def le_global(self, subpath: str) -> str:
        """Versioned Learning Environment path outside any course."""
        return f"/d2l/api/le/{self.api_versions.le}{subpath}"

    # -- cache administration ----------------------------------------------

    @property
    def cache_size(self) -> int:
        return self._cache.size

    def clear_cache(self) -> None:
        """Drop all cached responses."""
        self._cache.clear()
        self._logger.debug("Response cache cleared")

    def invalidate(self, path: str) -> bool:
        """Drop the cached response for one path. Returns True if it was cached."""
        return self._cache.delete(self._cache_key(self._resolve_url(path)))

    # -- requests ----------------------------------------------------------

    async def get(self, path: str, ttl: Optional[float] = None) -> Any:
        """
        GET a path and return the parsed JSON payload.

        Args:
            path: API path ("/d2l/api/...") or absolute https URL on this host
            ttl: Cache lifetime in seconds (see DEFAULT_CACHE_TTLS); omit for
                always-fresh data. Cache hits are copies of the stored payload.

        Raises:
            AuthenticationError, RateLimitError, ApiError, NetworkError
        """
        url = self._resolve_url(path)
        key = self._cache_key(url)
        use_cache = ttl is not None and ttl > 0

        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                self._logger.debug(f"Cache hit: {path}")
                return cached

        with RequestContext():
            started = time.perf_counter()
            payload = await self._fetch(url)
            elapsed_ms = (time.perf_counter() - started) * 1000
            self._logger.debug(f"GET {path} ok in {elapsed_ms:.1f}ms", extra={"path": path, "elapsed_ms": elapsed_ms})

        if use_cache:
            self._cache.set(key, payload, ttl)

        return payload

    async def _fetch(self, url: str) -> Any:
        """Run one logical request, including the single 401 retry."""
        await self._acquire_permit()
        credential = await self._read_credential()
        if credential is None:
            raise AuthenticationError(
                "No valid credential available. Re-authentication is required.",
                details={"url": url}
            )

        response = await self._send(url, credential)

        if response.status_code == 401:
            self._logger.info("Received 401, retrying once with re-read credential", extra={"attempt": 1})

            # Re-read, not refresh: picks up a login that completed meanwhile
            await self._acquire_permit()
            credential = await self._read_credential()
            if credential is None:
                raise AuthenticationError(
                    "Credential rejected and no replacement is available.",
                    body=response.text[:MAX_ERROR_BODY],
                    details={"url": url}
                )

            response = await self._send(url, credential)

            if response.status_code == 401:
                self._logger.warning("Credential rejected twice, clearing it", extra={"attempt": 2})
                await self._clear_credential()
                raise AuthenticationError(
                    "Authentication failed. The session has expired; re-authenticate.",
                    body=response.text[:MAX_ERROR_BODY],
                    details={"url": url}
                )

        return self._handle_response(response, url)

    def _handle_response(self, response: _RawResponse, url: str) -> Any:
        """Map an HTTP exchange onto a payload or a typed error."""
        status = response.status_code

        if 200 <= status < 300:
            if response.read_error is not None:
                raise NetworkError(
                    f"Failed reading response body: {response.read_error}",
                    cause=response.read_error,
                    details={"url": url, "status": status}
                ) from response.read_error
            if not response.content.strip():
                return None
            try:
                return json.loads(response.content)
            except ValueError as e:
                raise ApiError(
                    f"Response was not valid JSON ({status})",
                    status=status,
                    body=response.text[:MAX_ERROR_BODY],
                    details={"url": url}
                ) from e

        body = "" if response.read_error is not None else response.text[:MAX_ERROR_BODY]

        if status == 401:
            raise AuthenticationError(
                "Authentication failed.",
                body=body,
                details={"url": url}
            )

        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            self._logger.warning(f"Rate limited by server (retry_after={retry_after})", extra={"retry_after": retry_after})
            raise RateLimitError(
                "Rate limit exceeded",
                retry_after=retry_after,
                details={"url": url, "status": status, "source": "server"}
            )

        self._logger.warning(f"API error {status}", extra={"status": status})
        raise ApiError(
            f"API error: {status}",
            status=status,
            body=body,
            details={"url": url}
        )

    async def _send(self, url: str, credential: Optional[CredentialRecord]) -> _RawResponse:
        """Perform one HTTP GET; transport failures become NetworkError."""
        client = self._client()
        request = client.build_request("GET", url, headers=self._build_headers(credential))

        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {url}", cause=e, details={"url": url}) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}", cause=e, details={"url": url}) from e

        content = b""
        read_error: Optional[Exception] = None
        try:
            content = await response.aread()
        except httpx.HTTPError as e:
            read_error = e
        finally:
            await response.aclose()

        return _RawResponse(
            status_code=response.status_code,
            headers=response.headers,
            content=content,
            read_error=read_error,
        )

    def _build_headers(self, credential: Optional[CredentialRecord]) -> Dict[str, str]:
        """Browser User-Agent plus exactly one auth header when a credential is given."""
        headers = {
            "Accept": "application/json",
            "User-Agent": self.config.user_agent,
        }
        if credential is not None:
            headers.update(credential.auth_headers())
        return headers

    # -- collaborators -----------------------------------------------------

    async def _acquire_permit(self) -> None:
        await self._rate_limiter.acquire(timeout=self.config.permit_timeout_seconds)

    async def _read_credential(self) -> Optional[CredentialRecord]:
        # Disk I/O and key derivation stay off the event loop
        return await asyncio.to_thread(self._credentials.get_credential)

    async def _clear_credential(self) -> None:
        try:
            await asyncio.to_thread(self._credentials.clear_credential)
        except SessionStoreError as e:
            self._logger.error(f"Could not remove stored credential: {e}")

    # -- helpers -----------------------------------------------------------

    def _resolve_url(self, path: str) -> str:
        if "://" in path:
            parsed = urlsplit(path)
            if parsed.scheme.lower() != "https":
                raise ConfigurationError(f"HTTPS is required, got: {path}")
            if parsed.netloc.lower() != self._host:
                raise ConfigurationError(
                    f"URL host {parsed.netloc} does not match the configured API host",
                    details={"url": path}
                )
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    @staticmethod
    def _cache_key(url: str) -> str:
        return f"GET {url}"
