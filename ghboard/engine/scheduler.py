"""
RefreshScheduler - Background refresh of open filter tabs.

Uses APScheduler to run one interval job per pollable tab. A tick only
enqueues a non-forced fetch; when the cache entry is still fresh the fetch is
answered without touching the network.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from ghboard.engine.interface import ReplyChannel, fetch_request
from ghboard.services.rate_limit import RateLimitRegistry
from ghboard.types import FilterSpec, ViewKind


@dataclass
class TabRegistration:
    filter_id: str
    view: ViewKind
    spec: FilterSpec
    reply: ReplyChannel
    ephemeral: bool
    slot: int
    ticks: int = 0
    skipped: int = 0

    @property
    def job_id(self) -> str:
        return f"refresh:{self.filter_id}"


class RefreshScheduler:
    """
    Per-tab refresh timers with rate-limit back-pressure.

    Must be created and started on the engine's event loop.

    Usage:
        scheduler = RefreshScheduler(submit=inbox.put_nowait, rate_limits=registry)
        scheduler.start()
        scheduler.open_tab("mine", ViewKind.PRS, spec, reply)
        scheduler.close_tab("mine")
        scheduler.stop()
    """

    def __init__(
        self,
        submit: Callable[[Any], None],
        rate_limits: RateLimitRegistry,
        interval_minutes: int = 10,
        stagger_seconds: int = 15,
        jitter_seconds: int = 5,
        max_ephemeral_tabs: int = 5,
    ):
        if interval_minutes < 1:
            raise ValueError("interval_minutes must be at least 1")
        self.scheduler = AsyncIOScheduler()
        self._submit = submit
        self._rate_limits = rate_limits
        self._interval = timedelta(minutes=interval_minutes)
        self._stagger_seconds = stagger_seconds
        self._jitter_seconds = jitter_seconds
        self._max_ephemeral = max_ephemeral_tabs
        self._tabs: dict[str, TabRegistration] = {}
        self._next_slot = 0
        self._is_running = False

    def start(self) -> None:
        if self._is_running:
            logger.warning("Refresh scheduler is already running")
            return
        self.scheduler.start()
        self._is_running = True
        logger.info(f"Refresh scheduler started: every {self._interval} per tab")

    def stop(self) -> None:
        if not self._is_running:
            return
        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Refresh scheduler stopped")

    def is_running(self) -> bool:
        return self._is_running

    def first_run_delay(self, slot: int) -> timedelta:
        """Delay before a tab's first tick: one interval plus its stagger offset."""
        interval = int(self._interval.total_seconds())
        offset = (slot * self._stagger_seconds) % interval
        return timedelta(seconds=interval + offset)

    def open_tab(
        self,
        filter_id: str,
        view: ViewKind,
        spec: FilterSpec,
        reply: ReplyChannel,
        ephemeral: bool = False,
    ) -> bool:
        """
        Start refreshing a tab. Returns False for views without a remote poll.

        Re-opening an open filter_id replaces its job. Opening an ephemeral tab
        at capacity closes the oldest ephemeral tab first.
        """
        if filter_id in self._tabs:
            self.close_tab(filter_id)

        if not view.pollable:
            logger.debug(f"[Scheduler] {view.value} tab '{filter_id}' has no background refresh")
            return False

        if ephemeral:
            ephemeral_tabs = [t for t in self._tabs.values() if t.ephemeral]
            while len(ephemeral_tabs) >= self._max_ephemeral:
                oldest = min(ephemeral_tabs, key=lambda t: t.slot)
                logger.debug(f"[Scheduler] Ephemeral capacity reached, closing '{oldest.filter_id}'")
                self.close_tab(oldest.filter_id)
                ephemeral_tabs.remove(oldest)

        registration = TabRegistration(
            filter_id=filter_id,
            view=view,
            spec=spec,
            reply=reply,
            ephemeral=ephemeral,
            slot=self._next_slot,
        )
        self._next_slot += 1

        self.scheduler.add_job(
            self.tick,
            trigger="interval",
            seconds=int(self._interval.total_seconds()),
            start_date=datetime.now() + self.first_run_delay(registration.slot),
            jitter=self._jitter_seconds or None,
            args=[filter_id],
            id=registration.job_id,
            name=f"Refresh {view.value} '{spec.title}'",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._tabs[filter_id] = registration
        logger.debug(f"[Scheduler] Opened tab '{filter_id}' ({view.value}, slot {registration.slot})")
        return True

    def close_tab(self, filter_id: str) -> bool:
        """Stop refreshing a tab. Returns False if it was not open."""
        registration = self._tabs.pop(filter_id, None)
        if registration is None:
            return False
        try:
            self.scheduler.remove_job(registration.job_id)
        except JobLookupError:
            logger.debug(f"[Scheduler] Job for '{filter_id}' already gone")
        logger.debug(f"[Scheduler] Closed tab '{filter_id}'")
        return True

    async def tick(self, filter_id: str) -> None:
        """Enqueue a non-forced fetch for the tab unless its host is throttled."""
        registration = self._tabs.get(filter_id)
        if registration is None:
            return

        host = registration.spec.host
        if self._rate_limits.is_throttled(host):
            registration.skipped += 1
            logger.info(f"Skipping refresh of '{filter_id}': rate limit low for {host}")
            return

        registration.ticks += 1
        self._submit(
            fetch_request(registration.view, filter_id, registration.spec, registration.reply)
        )

    def __contains__(self, filter_id: str) -> bool:
        return filter_id in self._tabs

    def __len__(self) -> int:
        return len(self._tabs)

    def open_tabs(self) -> list[str]:
        return list(self._tabs)

    def get_jobs_info(self) -> list[dict[str, Any]]:
        info = []
        for registration in self._tabs.values():
            job = self.scheduler.get_job(registration.job_id)
            info.append(
                {
                    "filter_id": registration.filter_id,
                    "view": registration.view.value,
                    "host": registration.spec.host,
                    "ephemeral": registration.ephemeral,
                    "ticks": registration.ticks,
                    "skipped": registration.skipped,
                    "next_run": _next_run(job),
                }
            )
        return info


def _next_run(job: Any) -> str | None:
    # Jobs added before start() have no next_run_time yet
    next_run = getattr(job, "next_run_time", None)
    return next_run.isoformat() if next_run else None
