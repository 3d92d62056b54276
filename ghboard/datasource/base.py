"""
Remote client interface.

The engine talks to the hosting API only through a RemoteClient. Each method
performs one logical call and either returns a result or raises a RemoteError
subclass; the engine never retries on its behalf.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ghboard.services.errors import TranslationError
from ghboard.types import PullRequest, RateLimitSnapshot, RepoRef, ViewKind


@dataclass
class FetchPage:
    """Items returned by one fetch call, before post-filtering."""

    items: list[Any] = field(default_factory=list)
    rate_limit: RateLimitSnapshot | None = None


@dataclass
class FetchItem:
    """A single object returned by a detail call."""

    item: Any
    rate_limit: RateLimitSnapshot | None = None


@dataclass(frozen=True)
class PrRef:
    """
    Identifies a pull request for a detail fetch.

    The branch refs are optional; with both present the client also reports
    how many commits the head is behind its base.
    """

    repo: RepoRef
    number: int
    base_ref: str = ""
    head_ref: str = ""
    head_repo_owner: str | None = None

    @property
    def target_id(self) -> str:
        return f"{self.repo.full_name}#{self.number}"

    @classmethod
    def from_pull_request(cls, pr: PullRequest) -> "PrRef":
        if pr.repo is None:
            raise TranslationError(f"pull request #{pr.number} has no repository", token=str(pr.number))
        return cls(
            repo=pr.repo,
            number=pr.number,
            base_ref=pr.base_ref,
            head_ref=pr.head_ref,
            head_repo_owner=pr.head_repo_owner,
        )


@dataclass
class MutationResult:
    """Outcome of a successful mutation."""

    effect: str
    rate_limit: RateLimitSnapshot | None = None


class MutationKind(str, Enum):
    # Pull requests
    APPROVE_PR = "approve_pr"
    MERGE_PR = "merge_pr"
    CLOSE_PR = "close_pr"
    REOPEN_PR = "reopen_pr"
    COMMENT_PR = "comment_pr"
    UPDATE_BRANCH = "update_branch"
    READY_FOR_REVIEW = "ready_for_review"
    ASSIGN_PR = "assign_pr"
    UNASSIGN_PR = "unassign_pr"
    ADD_PR_LABELS = "add_pr_labels"
    # Issues
    CLOSE_ISSUE = "close_issue"
    REOPEN_ISSUE = "reopen_issue"
    COMMENT_ISSUE = "comment_issue"
    ASSIGN_ISSUE = "assign_issue"
    UNASSIGN_ISSUE = "unassign_issue"
    ADD_ISSUE_LABELS = "add_issue_labels"
    # Notifications
    MARK_NOTIFICATION_READ = "mark_notification_read"
    MARK_NOTIFICATION_DONE = "mark_notification_done"
    MARK_ALL_NOTIFICATIONS_READ = "mark_all_notifications_read"
    UNSUBSCRIBE_NOTIFICATION = "unsubscribe_notification"

    @property
    def affected_view(self) -> ViewKind:
        """The view whose cached entries a successful mutation invalidates."""
        if self in _ISSUE_KINDS:
            return ViewKind.ISSUES
        if self in _NOTIFICATION_KINDS:
            return ViewKind.NOTIFICATIONS
        return ViewKind.PRS

    @property
    def required_param(self) -> str | None:
        return _REQUIRED_PARAMS.get(self)


_ISSUE_KINDS = frozenset(
    {
        MutationKind.CLOSE_ISSUE,
        MutationKind.REOPEN_ISSUE,
        MutationKind.COMMENT_ISSUE,
        MutationKind.ASSIGN_ISSUE,
        MutationKind.UNASSIGN_ISSUE,
        MutationKind.ADD_ISSUE_LABELS,
    }
)

_NOTIFICATION_KINDS = frozenset(
    {
        MutationKind.MARK_NOTIFICATION_READ,
        MutationKind.MARK_NOTIFICATION_DONE,
        MutationKind.MARK_ALL_NOTIFICATIONS_READ,
        MutationKind.UNSUBSCRIBE_NOTIFICATION,
    }
)

_REQUIRED_PARAMS = {
    MutationKind.COMMENT_PR: "body",
    MutationKind.COMMENT_ISSUE: "body",
    MutationKind.ASSIGN_PR: "logins",
    MutationKind.ASSIGN_ISSUE: "logins",
    MutationKind.UNASSIGN_PR: "login",
    MutationKind.UNASSIGN_ISSUE: "login",
    MutationKind.ADD_PR_LABELS: "labels",
    MutationKind.ADD_ISSUE_LABELS: "labels",
}

ALL_THREADS = "*"

_ITEM_TARGET = re.compile(r"^([^/\s#]+)/([^/\s#]+)#(\d+)$")
_THREAD_TARGET = re.compile(r"^\d+$")


@dataclass(frozen=True)
class MutationTarget:
    """Parsed mutation target: a repository item, a notification thread, or all threads."""

    repo: RepoRef | None = None
    number: int | None = None
    thread_id: str | None = None


def parse_target(kind: MutationKind, target_id: str, params: dict[str, Any]) -> MutationTarget:
    """
    Validate a mutation before anything is sent upstream.

    Target ids:
        owner/repo#number   pull request and issue mutations
        <digits>            notification thread mutations
        *                   mark all notifications read

    Raises:
        TranslationError: malformed target id or missing parameter
    """
    required = kind.required_param
    if required is not None and not params.get(required):
        raise TranslationError(f"{kind.value} requires '{required}'", token=required)

    if kind is MutationKind.MARK_ALL_NOTIFICATIONS_READ:
        if target_id != ALL_THREADS:
            raise TranslationError(
                f"mark-all target must be '{ALL_THREADS}', got {target_id!r}", token=target_id
            )
        return MutationTarget()

    if kind.affected_view is ViewKind.NOTIFICATIONS:
        if not _THREAD_TARGET.match(target_id):
            raise TranslationError(f"invalid notification thread id {target_id!r}", token=target_id)
        return MutationTarget(thread_id=target_id)

    match = _ITEM_TARGET.match(target_id)
    if not match:
        raise TranslationError(
            f"invalid target {target_id!r}, expected owner/repo#number", token=target_id
        )
    owner, name, number = match.groups()
    return MutationTarget(repo=RepoRef(owner=owner, name=name), number=int(number))


class RemoteClient(ABC):
    """
    Abstract base class for remote API clients.

    Implementations should:
    - Perform exactly one logical call per method (pagination included)
    - Return pydantic domain models
    - Raise RemoteError subclasses, never return error values
    """

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this client."""
        ...

    @abstractmethod
    async def fetch_pull_requests(self, host: str, query: str, limit: int) -> FetchPage:
        """Search pull requests with a remote search query."""
        ...

    @abstractmethod
    async def fetch_issues(self, host: str, query: str, limit: int) -> FetchPage:
        """Search issues with a remote search query."""
        ...

    @abstractmethod
    async def fetch_notifications(self, host: str, all: bool, per_page: int) -> FetchPage:
        """List notification threads; all=False returns unread only."""
        ...

    @abstractmethod
    async def fetch_branches(self, host: str, repo: RepoRef, per_page: int) -> FetchPage:
        """List branches of one repository."""
        ...

    @abstractmethod
    async def fetch_pr_detail(self, host: str, pr: PrRef) -> FetchItem:
        """Body, reviews, threads, timeline, commits and files of one pull request."""
        ...

    @abstractmethod
    async def fetch_issue_detail(self, host: str, repo: RepoRef, number: int) -> FetchItem:
        """Body and timeline of one issue."""
        ...

    @abstractmethod
    async def fetch_repo_labels(self, host: str, repo: RepoRef) -> FetchPage:
        """Labels defined in a repository, sorted by name."""
        ...

    @abstractmethod
    async def fetch_repo_collaborators(self, host: str, repo: RepoRef) -> FetchPage:
        """Logins of users who can be assigned in a repository."""
        ...

    @abstractmethod
    async def mutate(
        self,
        host: str,
        kind: MutationKind,
        target: MutationTarget,
        params: dict[str, Any],
    ) -> MutationResult:
        """Perform one state-changing call."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
