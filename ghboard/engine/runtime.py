"""
Engine - Owns the worker thread and its private asyncio event loop.

All network I/O, the cache, the in-flight registry, the rate-limit registry
and the refresh scheduler live on that loop. The calling thread only ever
touches the EngineHandle and its own ReplyChannels.
"""

import asyncio
import threading
from datetime import timedelta
from typing import Any

from loguru import logger

from ghboard.datasource.base import RemoteClient
from ghboard.datasource.github import GitHubRemoteClient
from ghboard.engine.interface import EngineHandle, RequestChannel
from ghboard.engine.router import RequestRouter
from ghboard.engine.scheduler import RefreshScheduler
from ghboard.services.cache import Cache
from ghboard.services.rate_limit import RateLimitRegistry
from ghboard.settings import Settings, global_settings


class Engine:
    """
    Background engine.

    Usage:
        engine = Engine(GitHubRemoteClient())
        handle = engine.start()
        ...
        handle.close()     # last share released -> engine shuts down
        engine.join(5)
    """

    def __init__(self, client: RemoteClient | None = None, settings: Settings | None = None):
        self.settings = settings or global_settings
        self._client = client
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._inbox: asyncio.Queue | None = None
        self._router: RequestRouter | None = None
        self._ready = threading.Event()
        self._stopped = threading.Event()
        self._startup_error: BaseException | None = None

    def _build_client(self) -> RemoteClient:
        if self._client is not None:
            return self._client
        return GitHubRemoteClient(timeout=self.settings.request_timeout, debug=self.settings.debug)

    def start(self, timeout: float = 10.0) -> EngineHandle:
        """Spawn the worker thread and return the first handle."""
        if self._thread is not None:
            raise RuntimeError("Engine already started")

        self._thread = threading.Thread(target=self._run, name="ghboard-engine", daemon=True)
        self._thread.start()

        if not self._ready.wait(timeout):
            raise RuntimeError(f"Engine did not start within {timeout}s")
        if self._startup_error is not None:
            raise RuntimeError("Engine failed to start") from self._startup_error

        return EngineHandle(RequestChannel(self._submit))

    def _submit(self, item: Any) -> bool:
        """Hand item to the worker loop from any thread."""
        loop, inbox = self._loop, self._inbox
        if loop is None or inbox is None or loop.is_closed():
            return False
        try:
            loop.call_soon_threadsafe(inbox.put_nowait, item)
        except RuntimeError:
            # Loop closed between the check and the call
            return False
        return True

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        try:
            loop.run_until_complete(self._main())
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            self._stopped.set()

    async def _main(self) -> None:
        settings = self.settings
        try:
            self._inbox = asyncio.Queue()
            client = self._build_client()
            rate_limits = RateLimitRegistry(low_water=settings.rate_limit_low_water)
            cache = Cache(
                max_size=settings.cache_max_size,
                default_ttl=timedelta(minutes=settings.cache_ttl_minutes),
                debug=settings.debug,
            )
            scheduler = RefreshScheduler(
                submit=self._inbox.put_nowait,
                rate_limits=rate_limits,
                interval_minutes=settings.refresh_interval_minutes,
                stagger_seconds=settings.refresh_stagger_seconds,
                jitter_seconds=settings.refresh_jitter_seconds,
                max_ephemeral_tabs=settings.max_ephemeral_tabs,
            )
            self._router = RequestRouter(
                client, cache, rate_limits, scheduler=scheduler, debug=settings.debug
            )
            scheduler.start()
        except Exception as e:
            logger.exception("Engine startup failed")
            self._startup_error = e
            self._ready.set()
            return

        self._ready.set()
        logger.info(f"Engine started with {client.service_id} client")
        try:
            await self._router.run(self._inbox)
        finally:
            await client.close()
            logger.info("Engine stopped")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker to exit. Returns True once it has."""
        return self._stopped.wait(timeout)

    @property
    def is_running(self) -> bool:
        return self._ready.is_set() and not self._stopped.is_set() and self._startup_error is None

    def health(self, timeout: float = 5.0) -> dict[str, Any]:
        """Snapshot of cache, in-flight, tab and rate-limit state."""
        loop = self._loop
        if not self.is_running or loop is None:
            return {"status": "stopped"}
        future = asyncio.run_coroutine_threadsafe(self._health(), loop)
        return future.result(timeout)

    async def _health(self) -> dict[str, Any]:
        router = self._router
        scheduler = router.scheduler
        return {
            "status": "running",
            "cache": router.cache.get_stats().to_dict(),
            "in_flight": router.cache.in_flight.get_stats().to_dict(),
            "pending_requests": router.pending,
            "open_tabs": scheduler.get_jobs_info() if scheduler else [],
            "rate_limits": router.rate_limits.get_all_status(),
            "throttled_hosts": router.rate_limits.get_throttled_hosts(),
        }
