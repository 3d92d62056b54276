"""
Cache - Bounded snapshot store with read-time TTL and strict LRU eviction.

Features:
- Fixed-capacity LRU (OrderedDict), evicting the least recently used key
- TTL checked lazily on read; expired entries are never served as hits
- In-flight deduplication: one remote call per key at a time
- Entries are immutable and only ever replaced wholesale
"""

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Generic, NamedTuple, TypeVar

from loguru import logger

from ghboard.services.deduplicator import InFlightRegistry
from ghboard.types import FilterSpec, RateLimitSnapshot, ViewKind

T = TypeVar("T")


def normalize_filter(raw: str) -> str:
    """Collapse whitespace so equivalent filter strings share a key."""
    return " ".join(raw.split())


class CacheKey(NamedTuple):
    """
    Identity of a cached fetch. The force flag is never part of it.

    view is None for repository metadata (labels, collaborators), which no
    mutation invalidates.
    """

    view: ViewKind | None
    filters: str
    host: str
    scope: str
    limit: int = 0

    @classmethod
    def for_filter(cls, view: ViewKind, spec: FilterSpec, limit: int | None = None) -> "CacheKey":
        """Key for a tab fetch; limit is the page size the remote call asks for."""
        return cls(
            view=view,
            filters=normalize_filter(spec.filters),
            host=spec.host,
            scope=spec.scope or "",
            limit=(spec.limit or 0) if limit is None else limit,
        )

    @classmethod
    def for_item(cls, view: ViewKind, host: str, repo: str, number: int) -> "CacheKey":
        """Key for the detail of one pull request or issue."""
        prefix = "pr" if view is ViewKind.PRS else "issue"
        return cls(view=view, filters=f"{prefix}:{repo}#{number}", host=host, scope=repo)

    @classmethod
    def for_repo(cls, resource: str, host: str, repo: str) -> "CacheKey":
        """Key for repository metadata such as labels or collaborators."""
        return cls(view=None, filters=f"{resource}:{repo}", host=host, scope=repo)


@dataclass(frozen=True)
class FetchSnapshot(Generic[T]):
    """Post-filtered result of one remote call."""

    items: tuple[T, ...]
    rate_limit: RateLimitSnapshot | None = None


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry. Replaced, never mutated."""

    snapshot: T
    fetched_at: datetime
    ticket: int = 0
    # Monotonic clock reading at store time; TTL is measured against it
    stored_at: float = field(default_factory=time.monotonic)

    def is_expired(self, ttl: timedelta, now: float | None = None) -> bool:
        """Check if entry is past its TTL. now is a time.monotonic() reading."""
        if now is None:
            now = time.monotonic()
        return now >= self.stored_at + ttl.total_seconds()


class Cache:
    """
    Snapshot cache used by the request router.

    Must only be used from the event loop that owns it. Every method except
    get_or_fetch is synchronous, so cache state is never held across an await.

    Usage:
        cache = Cache(max_size=500, default_ttl=timedelta(minutes=10))

        entry = await cache.get_or_fetch(key, fetch_fn)
        entry = await cache.get_or_fetch(key, fetch_fn, force=True)
    """

    def __init__(
        self,
        max_size: int = 500,
        default_ttl: timedelta = timedelta(minutes=10),
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._entries: OrderedDict[CacheKey, CacheEntry[Any]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._in_flight = InFlightRegistry(debug=debug)
        self._ticket = 0
        # Fetches with a ticket at or below the floor started before an invalidation
        self._floors: dict[ViewKind, int] = {}
        self._floor_all = 0
        self._debug = debug
        self._stats = CacheStats()

    @property
    def in_flight(self) -> InFlightRegistry:
        return self._in_flight

    def get(self, key: CacheKey, ttl: timedelta | None = None) -> CacheEntry[Any] | None:
        """
        Return the entry for key if present and not expired.

        Never triggers network I/O. An expired entry stays in place until it is
        overwritten or evicted.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key}")
            return None

        if entry.is_expired(self._default_ttl if ttl is None else ttl):
            self._stats.expired += 1
            self._log(f"EXPIRED: {key}")
            return None

        self._entries.move_to_end(key)
        self._stats.hits += 1
        self._log(f"HIT: {key}")
        return entry

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetch_fn: Callable[[], Awaitable[Any]],
        ttl: timedelta | None = None,
        force: bool = False,
    ) -> CacheEntry[Any]:
        """
        Return a fresh entry for key, calling fetch_fn at most once per key.

        Args:
            key: Cache key
            fetch_fn: Coroutine factory performing the remote call
            ttl: Freshness window (uses default if not specified)
            force: Skip the lookup and always issue a new call

        Raises:
            Whatever fetch_fn raises. Failures are never cached.
        """
        if not force:
            entry = self.get(key, ttl)
            if entry is not None:
                return entry

            pending = self._in_flight.get(key)
            if pending is not None:
                self._stats.joined += 1
                self._log(f"JOIN: {key}")
                return await asyncio.shield(pending)

        self._ticket += 1
        ticket = self._ticket
        self._stats.fetches += 1
        self._log(f"{'FORCE' if force else 'FETCH'}: {key} (ticket {ticket})")

        async def fetch_and_store() -> CacheEntry[Any]:
            snapshot = await fetch_fn()
            return self._store(key, snapshot, ticket)

        task = self._in_flight.start(key, fetch_and_store)
        return await asyncio.shield(task)

    def _store(self, key: CacheKey, snapshot: Any, ticket: int) -> CacheEntry[Any]:
        """Write a new entry unless a newer fetch already stored one."""
        entry = CacheEntry(snapshot=snapshot, fetched_at=datetime.now(), ticket=ticket)
        if ticket <= max(self._floors.get(key.view, 0), self._floor_all):
            self._log(f"INVALIDATED WRITE SKIPPED: {key} (ticket {ticket})")
            return entry

        current = self._entries.get(key)
        if current is not None and current.ticket > ticket:
            self._log(f"STALE WRITE SKIPPED: {key} (ticket {ticket} < {current.ticket})")
            return entry

        if current is None and len(self._entries) >= self._max_size:
            self._evict_lru()

        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._log(f"SET: {key}")
        return entry

    def invalidate(self, key: CacheKey) -> bool:
        """Delete a specific key from cache."""
        if self._entries.pop(key, None) is not None:
            self._log(f"DELETE: {key}")
            return True
        return False

    def invalidate_view(self, view: ViewKind) -> int:
        """Drop every entry belonging to view. Returns count removed."""
        keys = [k for k in self._entries if k.view == view]
        for key in keys:
            del self._entries[key]
        self._floors[view] = self._ticket
        self._in_flight.detach(lambda k: k.view == view)
        if keys:
            self._log(f"INVALIDATE: {len(keys)} {view.value} entries")
        return len(keys)

    def invalidate_all(self) -> None:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._floor_all = self._ticket
        self._in_flight.detach(lambda k: True)
        self._log(f"CLEAR: {count} entries removed")

    def _evict_lru(self) -> None:
        key, _ = self._entries.popitem(last=False)
        self._stats.evictions += 1
        self._log(f"EVICT: {key}")

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[CacheKey]:
        """Keys from least to most recently used."""
        return list(self._entries.keys())

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._entries)
        self._stats.max_size = self._max_size
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Cache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    evictions: int = 0
    fetches: int = 0
    joined: int = 0
    size: int = 0
    max_size: int = 0
    in_flight: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses + self.expired
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "evictions": self.evictions,
            "fetches": self.fetches,
            "joined": self.joined,
            "size": self.size,
            "max_size": self.max_size,
            "in_flight": self.in_flight,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
