# API module - D2L REST client framework
# One client per backend, explicit rate limits, credentials borrowed from auth

from .cache import DEFAULT_CACHE_TTLS, CacheTTLs, ResponseCache
from .client import BROWSER_USER_AGENT, D2LClient, D2LClientConfig
from .rate_limiter import RateLimitConfig, RateLimiter
from .versions import VERSIONS_PATH, ApiVersions, parse_versions

__all__ = [
    "CacheTTLs",
    "DEFAULT_CACHE_TTLS",
    "ResponseCache",
    "BROWSER_USER_AGENT",
    "D2LClient",
    "D2LClientConfig",
    "RateLimitConfig",
    "RateLimiter",
    "VERSIONS_PATH",
    "ApiVersions",
    "parse_versions",
]
