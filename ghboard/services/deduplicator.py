"""
InFlightRegistry - Tracks the outstanding remote call for each cache key.

When several callers need the same key while a fetch is running, they all
await the one task instead of issuing duplicate calls.
"""

import asyncio
from typing import Any, Awaitable, Callable, Hashable, TypeVar

from loguru import logger

T = TypeVar("T")


class InFlightRegistry:
    """
    Registry of running fetch tasks, keyed by cache key.

    All methods are synchronous and must be called from the event loop that
    owns the registry. There is never an await between looking a key up and
    registering it, so no lock is needed.

    Usage:
        registry = InFlightRegistry()

        task = registry.get(key)
        if task is None:
            task = registry.start(key, lambda: client.fetch(...))
        result = await asyncio.shield(task)
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[Hashable, asyncio.Task[Any]] = {}
        self._debug = debug
        self._stats = InFlightStats()

    def get(self, key: Hashable) -> asyncio.Task[Any] | None:
        """Return the running task for key, if any."""
        task = self._in_flight.get(key)
        if task is not None:
            self._stats.joined += 1
            self._log(f"JOIN: {key}")
        return task

    def start(
        self,
        key: Hashable,
        request_fn: Callable[[], Awaitable[T]],
    ) -> asyncio.Task[T]:
        """
        Start request_fn as a task and register it under key.

        A task already registered under key is replaced; it keeps running and
        its callers still receive its result, but new callers join the new one.
        """
        self._stats.total += 1
        task = asyncio.create_task(self._execute_and_cleanup(key, request_fn))
        if key in self._in_flight:
            self._stats.replaced += 1
            self._log(f"REPLACE: {key}")
        else:
            self._log(f"NEW: {key}")
        self._in_flight[key] = task
        return task

    async def _execute_and_cleanup(
        self,
        key: Hashable,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """Run the request, then unregister it whatever the outcome."""
        try:
            return await request_fn()
        finally:
            # Only remove our own registration; a forced fetch may own the slot now.
            if self._in_flight.get(key) is asyncio.current_task():
                del self._in_flight[key]
            self._log(f"DONE: {key}")

    def detach(self, predicate: Callable[[Hashable], bool]) -> int:
        """
        Unregister matching keys without cancelling their tasks.

        Existing waiters still get the result; new callers start a fresh call.
        """
        keys = [k for k in self._in_flight if predicate(k)]
        for key in keys:
            del self._in_flight[key]
        if keys:
            self._log(f"DETACH: {len(keys)} requests")
        return len(keys)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)

    def get_in_flight_keys(self) -> list[Hashable]:
        """Get keys of all in-flight requests."""
        return list(self._in_flight.keys())

    def get_stats(self) -> "InFlightStats":
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[InFlight] {message}")


class InFlightStats:
    """Statistics for in-flight deduplication."""

    def __init__(self):
        self.total: int = 0  # Remote calls started
        self.joined: int = 0  # Callers that awaited an existing call
        self.replaced: int = 0  # Registrations taken over by a forced fetch
        self.in_flight: int = 0

    @property
    def dedup_rate(self) -> float:
        total = self.total + self.joined
        if total == 0:
            return 0.0
        return self.joined / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total,
            "joined": self.joined,
            "replaced": self.replaced,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
