"""
RequestRouter - Resolves requests against the translator, cache and remote client.

Intake is sequential: requests are taken off the inbox one at a time. Each
fetch, lookup or mutation then runs as its own task, so a slow call for one
key never holds up dispatch of the next request.
"""

import asyncio
from datetime import timedelta
from functools import partial
from typing import Any, Awaitable, TypeVar

from loguru import logger

from ghboard.datasource.base import FetchItem, RemoteClient, parse_target
from ghboard.engine.interface import (
    SHUTDOWN,
    CloseTab,
    Event,
    FetchFailed,
    FetchIssueDetail,
    FetchPrDetail,
    FetchRepoCollaborators,
    FetchRepoLabels,
    FetchRequest,
    IssueDetailFetched,
    ItemsFetched,
    LookupFailed,
    LookupRequest,
    MutateRequest,
    MutationError,
    MutationOk,
    OpenTab,
    PrDetailFetched,
    PrefetchPrDetails,
    RefreshAll,
    RepoCollaboratorsFetched,
    RepoLabelsFetched,
)
from ghboard.engine.scheduler import RefreshScheduler
from ghboard.filters.translator import CallParams, Translation, translate
from ghboard.services.cache import Cache, CacheEntry, CacheKey, FetchSnapshot
from ghboard.services.errors import EngineError, RateLimitedError, RemoteApiError
from ghboard.services.rate_limit import RateLimitRegistry
from ghboard.types import ViewKind

T = TypeVar("T")

_LOOKUP_TYPES = (FetchPrDetail, FetchIssueDetail, FetchRepoLabels, FetchRepoCollaborators)


class RequestRouter:
    """
    The engine's dispatcher. Lives entirely on the worker event loop.

    Usage:
        router = RequestRouter(client, cache, rate_limits, scheduler)
        await router.run(inbox)   # returns after the shutdown sentinel
    """

    def __init__(
        self,
        client: RemoteClient,
        cache: Cache,
        rate_limits: RateLimitRegistry,
        scheduler: RefreshScheduler | None = None,
        cache_ttl: timedelta | None = None,
        debug: bool = False,
    ):
        self.client = client
        self.cache = cache
        self.rate_limits = rate_limits
        self.scheduler = scheduler
        self._cache_ttl = cache_ttl
        self._debug = debug
        self._tasks: set[asyncio.Task[None]] = set()
        self._accepting = True

    @property
    def pending(self) -> int:
        """Dispatched fetches, lookups and mutations not yet answered."""
        return len(self._tasks)

    async def run(self, inbox: asyncio.Queue) -> None:
        """Drain inbox until the shutdown sentinel, then finish outstanding work."""
        while True:
            request = await inbox.get()
            if request is SHUTDOWN:
                break
            self.dispatch(request)

        await self.shutdown()

        while not inbox.empty():
            dropped = inbox.get_nowait()
            logger.debug(f"Engine shut down, dropping {type(dropped).__name__}")

    def dispatch(self, request: Any) -> None:
        """Route one request. Control requests are handled inline."""
        if not self._accepting:
            logger.debug(f"Router closed, dropping {type(request).__name__}")
            return

        if isinstance(request, FetchRequest):
            self._spawn(self.handle_fetch(request))
        elif isinstance(request, _LOOKUP_TYPES):
            self._spawn(self.handle_lookup(request))
        elif isinstance(request, PrefetchPrDetails):
            self._spawn(self.handle_prefetch(request))
        elif isinstance(request, MutateRequest):
            self._spawn(self.handle_mutation(request))
        elif isinstance(request, OpenTab):
            if self.scheduler is not None:
                self.scheduler.open_tab(
                    request.filter_id, request.view, request.filter, request.reply, request.ephemeral
                )
        elif isinstance(request, CloseTab):
            if self.scheduler is not None:
                self.scheduler.close_tab(request.filter_id)
        elif isinstance(request, RefreshAll):
            self.cache.invalidate_all()
            logger.info("Cache cleared on refresh-all")
        else:
            logger.warning(f"Unknown request type: {type(request).__name__}")

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def handle_fetch(self, request: FetchRequest) -> None:
        """Answer a fetch with exactly one ItemsFetched or FetchFailed."""
        view = request.view
        try:
            translation = translate(view, request.filter)
            key = CacheKey.for_filter(view, request.filter, limit=translation.params.page_limit)
            entry = await self.cache.get_or_fetch(
                key,
                lambda: self._fetch(translation),
                ttl=self._cache_ttl,
                force=request.force,
            )
            snapshot: FetchSnapshot[Any] = entry.snapshot
            event = ItemsFetched(
                filter_id=request.filter_id,
                view=view,
                items=snapshot.items,
                rate_limit=snapshot.rate_limit,
                fetched_at=entry.fetched_at,
            )
        except EngineError as e:
            logger.warning(f"Fetch '{request.filter_id}' ({view.value}) failed: {e.user_message()}")
            event = FetchFailed(filter_id=request.filter_id, view=view, error=e)
        except Exception as e:
            logger.exception(f"Unexpected error fetching '{request.filter_id}'")
            event = FetchFailed(
                filter_id=request.filter_id,
                view=view,
                error=RemoteApiError(f"unexpected error: {e}", host=request.filter.host),
            )
        request.reply.put(event)

    async def _fetch(self, translation: Translation) -> FetchSnapshot[Any]:
        """One remote call plus post-filtering; the result is what gets cached."""
        params = translation.params
        page = await self._remote(params.host, self._call(params))
        self.rate_limits.update(params.host, page.rate_limit)
        items = translation.apply(page.items)
        self._log(f"{params.view.value} on {params.host}: {len(page.items)} fetched, {len(items)} kept")
        return FetchSnapshot(items=tuple(items), rate_limit=page.rate_limit)

    def _call(self, params: CallParams):
        if params.view is ViewKind.PRS:
            return self.client.fetch_pull_requests(params.host, params.query, params.limit)
        if params.view is ViewKind.ISSUES:
            return self.client.fetch_issues(params.host, params.query, params.limit)
        if params.view is ViewKind.NOTIFICATIONS:
            return self.client.fetch_notifications(params.host, params.all, params.per_page)
        return self.client.fetch_branches(params.host, params.repo, params.per_page)

    async def handle_lookup(self, request: LookupRequest) -> None:
        """Answer a detail or metadata lookup with exactly one event."""
        context = _describe(request)
        try:
            entry = await self._resolve(request)
            event = _lookup_event(request, entry)
        except EngineError as e:
            logger.warning(f"Fetch of {context} failed: {e.user_message()}")
            event = LookupFailed(context=context, error=e)
        except Exception as e:
            logger.exception(f"Unexpected error fetching {context}")
            event = LookupFailed(
                context=context,
                error=RemoteApiError(f"unexpected error: {e}", host=request.host),
            )
        request.reply.put(event)

    async def handle_prefetch(self, request: PrefetchPrDetails) -> None:
        """
        Load pull request details one at a time into the cache.

        Each detail that loads is sent as PrDetailFetched. Failures are logged
        and skipped, and the run stops early once the host is throttled.
        """
        host = request.host
        loaded = 0
        for pr in request.prs:
            if self.rate_limits.is_throttled(host):
                logger.info(f"Prefetch stopped after {loaded}/{len(request.prs)}: '{host}' is throttled")
                return
            lookup = FetchPrDetail(pr=pr, reply=request.reply, host=host)
            try:
                entry = await self._resolve(lookup)
            except EngineError as e:
                logger.debug(f"Prefetch of {pr.target_id} skipped: {e.user_message()}")
                continue
            except Exception:
                logger.exception(f"Unexpected error prefetching {pr.target_id}")
                continue
            request.reply.put(_lookup_event(lookup, entry))
            loaded += 1
        self._log(f"Prefetched {loaded}/{len(request.prs)} PR details on {host}")

    async def _resolve(self, request: LookupRequest) -> CacheEntry[Any]:
        """Serve a lookup through the cache; one remote call per key at a time."""
        host = request.host
        if isinstance(request, FetchPrDetail):
            pr = request.pr
            key = CacheKey.for_item(ViewKind.PRS, host, pr.repo.full_name, pr.number)
            call = partial(self.client.fetch_pr_detail, host, pr)
        elif isinstance(request, FetchIssueDetail):
            key = CacheKey.for_item(ViewKind.ISSUES, host, request.repo.full_name, request.number)
            call = partial(self.client.fetch_issue_detail, host, request.repo, request.number)
        elif isinstance(request, FetchRepoLabels):
            key = CacheKey.for_repo("labels", host, request.repo.full_name)
            call = partial(self.client.fetch_repo_labels, host, request.repo)
        else:
            key = CacheKey.for_repo("collaborators", host, request.repo.full_name)
            call = partial(self.client.fetch_repo_collaborators, host, request.repo)

        async def lookup() -> FetchSnapshot[Any]:
            result = await self._remote(host, call())
            self.rate_limits.update(host, result.rate_limit)
            items = (result.item,) if isinstance(result, FetchItem) else tuple(result.items)
            return FetchSnapshot(items=items, rate_limit=result.rate_limit)

        return await self.cache.get_or_fetch(key, lookup, ttl=self._cache_ttl, force=request.force)

    async def handle_mutation(self, request: MutateRequest) -> None:
        """Answer a mutation with exactly one MutationOk or MutationError. Never retried."""
        kind = request.kind
        try:
            target = parse_target(kind, request.target_id, request.params)
            result = await self._remote(
                request.host,
                self.client.mutate(request.host, kind, target, request.params),
            )
            self.rate_limits.update(request.host, result.rate_limit)
            removed = self.cache.invalidate_view(kind.affected_view)
            self._log(f"{kind.value} invalidated {removed} {kind.affected_view.value} entries")
            event = MutationOk(target_id=request.target_id, kind=kind, effect=result.effect)
        except EngineError as e:
            logger.warning(f"Mutation {kind.value} on {request.target_id} failed: {e.user_message()}")
            event = MutationError(target_id=request.target_id, kind=kind, error=e)
        except Exception as e:
            logger.exception(f"Unexpected error in mutation {kind.value}")
            event = MutationError(
                target_id=request.target_id,
                kind=kind,
                error=RemoteApiError(f"unexpected error: {e}", host=request.host),
            )
        request.reply.put(event)

    async def _remote(self, host: str, call: Awaitable[T]) -> T:
        """Await a remote call, recording quota exhaustion for the scheduler."""
        try:
            return await call
        except RateLimitedError as e:
            self.rate_limits.record_exhausted(host, e.reset_at)
            raise

    async def shutdown(self) -> None:
        """Stop intake and wait for every dispatched call to finish or fail."""
        self._accepting = False
        if self.scheduler is not None:
            self.scheduler.stop()
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} outstanding requests")
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[Router] {message}")


def _describe(request: LookupRequest) -> str:
    if isinstance(request, FetchPrDetail):
        return f"PR detail {request.pr.target_id}"
    if isinstance(request, FetchIssueDetail):
        return f"issue detail {request.repo.full_name}#{request.number}"
    if isinstance(request, FetchRepoLabels):
        return f"labels of {request.repo.full_name}"
    return f"collaborators of {request.repo.full_name}"


def _lookup_event(request: LookupRequest, entry: CacheEntry[Any]) -> Event:
    snapshot: FetchSnapshot[Any] = entry.snapshot
    if isinstance(request, FetchPrDetail):
        return PrDetailFetched(
            target_id=request.pr.target_id,
            detail=snapshot.items[0],
            rate_limit=snapshot.rate_limit,
            fetched_at=entry.fetched_at,
        )
    if isinstance(request, FetchIssueDetail):
        return IssueDetailFetched(
            target_id=f"{request.repo.full_name}#{request.number}",
            detail=snapshot.items[0],
            rate_limit=snapshot.rate_limit,
            fetched_at=entry.fetched_at,
        )
    if isinstance(request, FetchRepoLabels):
        return RepoLabelsFetched(
            repo=request.repo.full_name,
            labels=snapshot.items,
            rate_limit=snapshot.rate_limit,
            fetched_at=entry.fetched_at,
        )
    return RepoCollaboratorsFetched(
        repo=request.repo.full_name,
        logins=snapshot.items,
        rate_limit=snapshot.rate_limit,
        fetched_at=entry.fetched_at,
    )
