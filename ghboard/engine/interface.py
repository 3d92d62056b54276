"""
Cross-thread contract between the dashboard and the engine.

The dashboard builds a Request carrying its own ReplyChannel and hands it to
EngineHandle.send. The engine answers every fetch, lookup and mutation
with exactly one terminal Event on that channel. A prefetch answers with one
PrDetailFetched per pull request it could load and nothing for the rest.
"""

import queue
import threading
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar

from loguru import logger

from ghboard.datasource.base import MutationKind, PrRef
from ghboard.services.errors import EngineError
from ghboard.types import (
    DEFAULT_HOST,
    FilterSpec,
    IssueDetail,
    Label,
    PrDetail,
    RateLimitSnapshot,
    RepoRef,
    ViewKind,
)


class ReplyChannel:
    """
    Thread-safe mailbox for events flowing back to the caller.

    The worker puts, the caller polls. poll() and drain() never block; get()
    does and is meant for tests and scripts.
    """

    def __init__(self):
        self._queue: queue.SimpleQueue[Any] = queue.SimpleQueue()

    def put(self, event: "Event") -> None:
        self._queue.put(event)

    def poll(self) -> "Event | None":
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> list["Event"]:
        events = []
        while (event := self.poll()) is not None:
            events.append(event)
        return events

    def get(self, timeout: float | None = None) -> "Event":
        """Block until an event arrives; raises TimeoutError after timeout seconds."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"no event within {timeout}s") from None

    def empty(self) -> bool:
        return self._queue.empty()


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class FetchRequest:
    filter_id: str
    filter: FilterSpec
    reply: ReplyChannel
    force: bool = False

    view: ClassVar[ViewKind]


@dataclass(frozen=True, eq=False)
class FetchPullRequests(FetchRequest):
    view: ClassVar[ViewKind] = ViewKind.PRS


@dataclass(frozen=True, eq=False)
class FetchIssues(FetchRequest):
    view: ClassVar[ViewKind] = ViewKind.ISSUES


@dataclass(frozen=True, eq=False)
class FetchNotifications(FetchRequest):
    view: ClassVar[ViewKind] = ViewKind.NOTIFICATIONS


@dataclass(frozen=True, eq=False)
class FetchBranches(FetchRequest):
    view: ClassVar[ViewKind] = ViewKind.BRANCHES


_FETCH_TYPES: dict[ViewKind, type[FetchRequest]] = {
    ViewKind.PRS: FetchPullRequests,
    ViewKind.ISSUES: FetchIssues,
    ViewKind.NOTIFICATIONS: FetchNotifications,
    ViewKind.BRANCHES: FetchBranches,
}


def fetch_request(
    view: ViewKind,
    filter_id: str,
    spec: FilterSpec,
    reply: ReplyChannel,
    force: bool = False,
) -> FetchRequest:
    """Build the fetch variant matching view."""
    return _FETCH_TYPES[view](filter_id=filter_id, filter=spec, reply=reply, force=force)


@dataclass(frozen=True, eq=False)
class FetchPrDetail:
    """Sidebar detail of one pull request, cached per item."""

    pr: PrRef
    reply: ReplyChannel
    host: str = DEFAULT_HOST
    force: bool = False


@dataclass(frozen=True, eq=False)
class FetchIssueDetail:
    repo: RepoRef
    number: int
    reply: ReplyChannel
    host: str = DEFAULT_HOST
    force: bool = False


@dataclass(frozen=True, eq=False)
class FetchRepoLabels:
    """Labels for the label picker."""

    repo: RepoRef
    reply: ReplyChannel
    host: str = DEFAULT_HOST
    force: bool = False


@dataclass(frozen=True, eq=False)
class FetchRepoCollaborators:
    """Assignable logins for the assignee picker."""

    repo: RepoRef
    reply: ReplyChannel
    host: str = DEFAULT_HOST
    force: bool = False


LookupRequest = FetchPrDetail | FetchIssueDetail | FetchRepoLabels | FetchRepoCollaborators


@dataclass(frozen=True, eq=False)
class PrefetchPrDetails:
    """Warm the cache with the detail of each pull request, in order."""

    prs: tuple[PrRef, ...]
    reply: ReplyChannel
    host: str = DEFAULT_HOST


@dataclass(frozen=True, eq=False)
class MutateRequest:
    kind: MutationKind
    target_id: str
    reply: ReplyChannel
    params: dict[str, Any] = field(default_factory=dict)
    host: str = DEFAULT_HOST


@dataclass(frozen=True, eq=False)
class OpenTab:
    """Start background refresh for a filter tab."""

    filter_id: str
    view: ViewKind
    filter: FilterSpec
    reply: ReplyChannel
    ephemeral: bool = False


@dataclass(frozen=True)
class CloseTab:
    filter_id: str


@dataclass(frozen=True)
class RefreshAll:
    """Drop every cached entry; the next fetch of each tab goes to the network."""


Request = (
    FetchRequest
    | LookupRequest
    | PrefetchPrDetails
    | MutateRequest
    | OpenTab
    | CloseTab
    | RefreshAll
)


class _Shutdown:
    def __repr__(self) -> str:
        return "<shutdown>"


SHUTDOWN = _Shutdown()


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ItemsFetched:
    filter_id: str
    view: ViewKind
    items: tuple[Any, ...]
    rate_limit: RateLimitSnapshot | None
    fetched_at: datetime


@dataclass(frozen=True)
class FetchFailed:
    filter_id: str
    view: ViewKind
    error: EngineError


@dataclass(frozen=True)
class PrDetailFetched:
    target_id: str  # owner/repo#number
    detail: PrDetail
    rate_limit: RateLimitSnapshot | None
    fetched_at: datetime


@dataclass(frozen=True)
class IssueDetailFetched:
    target_id: str
    detail: IssueDetail
    rate_limit: RateLimitSnapshot | None
    fetched_at: datetime


@dataclass(frozen=True)
class RepoLabelsFetched:
    repo: str
    labels: tuple[Label, ...]
    rate_limit: RateLimitSnapshot | None
    fetched_at: datetime


@dataclass(frozen=True)
class RepoCollaboratorsFetched:
    repo: str
    logins: tuple[str, ...]
    rate_limit: RateLimitSnapshot | None
    fetched_at: datetime


@dataclass(frozen=True)
class LookupFailed:
    """A lookup failed; context names what was asked for, e.g. "labels of octo/dashboard"."""

    context: str
    error: EngineError


@dataclass(frozen=True)
class MutationOk:
    target_id: str
    kind: MutationKind
    effect: str


@dataclass(frozen=True)
class MutationError:
    target_id: str
    kind: MutationKind
    error: EngineError


Event = (
    ItemsFetched
    | FetchFailed
    | PrDetailFetched
    | IssueDetailFetched
    | RepoLabelsFetched
    | RepoCollaboratorsFetched
    | LookupFailed
    | MutationOk
    | MutationError
)


# ----------------------------------------------------------------------
# Handle
# ----------------------------------------------------------------------


class RequestChannel:
    """
    Intake shared by every EngineHandle copy.

    Counts the live handle copies; releasing the last one submits the
    shutdown sentinel and closes intake for good.
    """

    def __init__(self, submit: Callable[[Any], bool]):
        self._submit = submit
        # Re-entrant: a collected handle may be finalized while this thread holds it
        self._lock = threading.RLock()
        self._shares = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def shares(self) -> int:
        return self._shares

    def acquire(self) -> None:
        with self._lock:
            self._shares += 1

    def release(self) -> None:
        with self._lock:
            self._shares -= 1
            last = self._shares == 0 and not self._closed
            if last:
                self._closed = True
        if last:
            logger.debug("Last engine handle released, shutting down")
            self._submit(SHUTDOWN)

    def send(self, request: Any) -> bool:
        with self._lock:
            if self._closed:
                return False
            return self._submit(request)


class EngineHandle:
    """
    The only way into the engine.

    Copies (clone() or copy.copy) share one request channel. Each copy gives
    up its share on close(), on leaving a with-block, or when collected; the
    engine shuts down once every share is gone.

    Usage:
        reply = ReplyChannel()
        handle.send(FetchPullRequests("mine", spec, reply))
        ...
        event = reply.poll()
    """

    def __init__(self, channel: RequestChannel):
        self._channel = channel
        channel.acquire()
        self._finalizer = weakref.finalize(self, channel.release)

    def send(self, request: Request) -> None:
        """Enqueue request without blocking; dropped once the engine has shut down."""
        if not self._finalizer.alive or not self._channel.send(request):
            logger.debug(f"Engine closed, dropping {type(request).__name__}")

    def clone(self) -> "EngineHandle":
        return EngineHandle(self._channel)

    def __copy__(self) -> "EngineHandle":
        return self.clone()

    def __deepcopy__(self, memo: dict[int, Any]) -> "EngineHandle":
        return self.clone()

    def close(self) -> None:
        """Release this copy's share. Idempotent."""
        self._finalizer()

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive or self._channel.closed

    def __enter__(self) -> "EngineHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
