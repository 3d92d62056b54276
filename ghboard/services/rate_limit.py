"""
RateLimitRegistry - Last known API quota per host.

Updated by the router after every successful call that reports a quota, and
marked exhausted when a call fails with RateLimitedError. The refresh scheduler
reads it to suspend background ticks for hosts running low.

States per host:
- OK: remaining at or above the low-water mark (or unknown)
- THROTTLED: remaining below the low-water mark and reset_at still ahead
"""

from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from ghboard.types import RateLimitSnapshot

# Used when a rate-limited response carries no reset time
DEFAULT_BACKOFF = timedelta(minutes=1)


class RateLimitRegistry:
    """
    Registry of RateLimitSnapshot per host.

    Usage:
        registry = RateLimitRegistry(low_water=100)
        registry.update("github.com", snapshot)

        if registry.is_throttled("github.com"):
            skip_background_refresh()
    """

    def __init__(self, low_water: int = 100):
        self._snapshots: dict[str, RateLimitSnapshot] = {}
        self.low_water = low_water

    def update(self, host: str, snapshot: RateLimitSnapshot | None) -> None:
        """Record the quota reported by a successful call."""
        if snapshot is None:
            return
        if snapshot.reset_at is None:
            snapshot = snapshot.model_copy(update={"reset_at": datetime.now() + DEFAULT_BACKOFF})
        previous = self._snapshots.get(host)
        self._snapshots[host] = snapshot
        if snapshot.is_below(self.low_water) and (
            previous is None or not previous.is_below(self.low_water)
        ):
            logger.warning(
                f"Rate limit for '{host}' below low-water mark: "
                f"{snapshot.remaining}/{snapshot.limit}, resets {snapshot.reset_at}"
            )

    def record_exhausted(self, host: str, reset_at: datetime | None) -> None:
        """Mark host as out of quota until reset_at."""
        previous = self._snapshots.get(host)
        self._snapshots[host] = RateLimitSnapshot(
            limit=previous.limit if previous else 0,
            remaining=0,
            reset_at=reset_at or datetime.now() + DEFAULT_BACKOFF,
        )
        logger.warning(f"Rate limit exhausted for '{host}' until {self._snapshots[host].reset_at}")

    def get(self, host: str) -> RateLimitSnapshot | None:
        return self._snapshots.get(host)

    def is_throttled(self, host: str, now: datetime | None = None) -> bool:
        """True while host is below the low-water mark and its window has not reset."""
        snapshot = self._snapshots.get(host)
        if snapshot is None or not snapshot.is_below(self.low_water):
            return False
        return (now or datetime.now()) < _naive(snapshot.reset_at)

    def get_time_until_reset(self, host: str) -> float | None:
        """Seconds until the host's quota window resets."""
        snapshot = self._snapshots.get(host)
        if snapshot is None or snapshot.reset_at is None:
            return None
        remaining = (_naive(snapshot.reset_at) - datetime.now()).total_seconds()
        return max(0, remaining)

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {
            host: {
                "limit": snap.limit,
                "remaining": snap.remaining,
                "reset_at": snap.reset_at.isoformat() if snap.reset_at else None,
                "throttled": self.is_throttled(host),
            }
            for host, snap in self._snapshots.items()
        }

    def get_throttled_hosts(self) -> list[str]:
        return [host for host in self._snapshots if self.is_throttled(host)]


def _naive(value: datetime) -> datetime:
    """Compare in local naive time, like the rest of the engine."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
