"""
Service layer infrastructure - caching and transport for remote API calls.

Provides:
- Cache: Bounded LRU snapshot store with read-time TTL
- InFlightRegistry: One outstanding remote call per cache key
- RateLimitRegistry: Last known API quota per host
- HttpClient: REST/GraphQL transport with error classification
"""

from ghboard.services.errors import (
    EngineError,
    TranslationError,
    RemoteError,
    TransportError,
    AuthError,
    RateLimitedError,
    NotFoundError,
    RemoteApiError,
)
from ghboard.services.cache import Cache, CacheEntry, CacheKey, CacheStats, FetchSnapshot
from ghboard.services.deduplicator import InFlightRegistry
from ghboard.services.rate_limit import RateLimitRegistry
from ghboard.services.client import HttpClient, HttpResult

__all__ = [
    # Errors
    "EngineError",
    "TranslationError",
    "RemoteError",
    "TransportError",
    "AuthError",
    "RateLimitedError",
    "NotFoundError",
    "RemoteApiError",
    # Cache
    "Cache",
    "CacheEntry",
    "CacheKey",
    "CacheStats",
    "FetchSnapshot",
    # In-flight
    "InFlightRegistry",
    # Rate limits
    "RateLimitRegistry",
    # Transport
    "HttpClient",
    "HttpResult",
]
