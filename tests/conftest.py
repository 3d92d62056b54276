"""Shared fakes and sample data for engine tests.

Nothing here touches the network.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any

import pytest

from ghboard.datasource.base import (
    FetchItem,
    FetchPage,
    MutationKind,
    MutationResult,
    MutationTarget,
    PrRef,
    RemoteClient,
)
from ghboard.services.errors import NotFoundError
from ghboard.types import (
    Actor,
    Branch,
    Issue,
    IssueDetail,
    Label,
    Notification,
    NotificationReason,
    PrDetail,
    PullRequest,
    RateLimitSnapshot,
    RepoRef,
    SubjectType,
)


class CountingClient(RemoteClient):
    """RemoteClient fake that counts calls and can hold them on a gate.

    - `gate`: when set to an unset asyncio.Event, every call waits on it
    - `holds`: string argument -> asyncio.Event; only calls passing that
      argument (a search query, an item id, a repo name) wait on it
    - `errors`: method name -> exception raised by the next call
    """

    def __init__(
        self,
        prs: list[PullRequest] | None = None,
        notifications: list[Notification] | None = None,
        branches: list[Branch] | None = None,
        issues: list[Issue] | None = None,
        rate_limit: RateLimitSnapshot | None = None,
    ):
        self.prs = prs or []
        self.issues = issues or []
        self.notifications = notifications or []
        self.branches = branches or []
        self.rate_limit = rate_limit
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.errors: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.holds: dict[str, asyncio.Event] = {}
        self.pr_details: dict[str, PrDetail] = {}
        self.issue_details: dict[str, IssueDetail] = {}
        self.labels: dict[str, list[Label]] = {}
        self.collaborators: dict[str, list[str]] = {}
        self.closed = False

    @property
    def service_id(self) -> str:
        return "counting"

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if self.gate is not None:
            await self.gate.wait()
        for arg in args:
            if isinstance(arg, str) and arg in self.holds:
                await self.holds[arg].wait()
        error = self.errors.pop(method, None)
        if error is not None:
            raise error

    async def fetch_pull_requests(self, host: str, query: str, limit: int) -> FetchPage:
        await self._enter("fetch_pull_requests", host, query, limit)
        return FetchPage(items=self.prs[:limit], rate_limit=self.rate_limit)

    async def fetch_issues(self, host: str, query: str, limit: int) -> FetchPage:
        await self._enter("fetch_issues", host, query, limit)
        return FetchPage(items=self.issues[:limit], rate_limit=self.rate_limit)

    async def fetch_notifications(self, host: str, all: bool, per_page: int) -> FetchPage:
        await self._enter("fetch_notifications", host, all, per_page)
        items = [n for n in self.notifications if all or n.unread]
        return FetchPage(items=items, rate_limit=self.rate_limit)

    async def fetch_branches(self, host: str, repo: RepoRef, per_page: int) -> FetchPage:
        await self._enter("fetch_branches", host, repo, per_page)
        return FetchPage(items=list(self.branches), rate_limit=self.rate_limit)

    async def fetch_pr_detail(self, host: str, pr: PrRef) -> FetchItem:
        await self._enter("fetch_pr_detail", host, pr.target_id)
        if pr.target_id not in self.pr_details:
            raise NotFoundError(f"pull request {pr.target_id} not found", host=host)
        return FetchItem(item=self.pr_details[pr.target_id], rate_limit=self.rate_limit)

    async def fetch_issue_detail(self, host: str, repo: RepoRef, number: int) -> FetchItem:
        target_id = f"{repo.full_name}#{number}"
        await self._enter("fetch_issue_detail", host, target_id)
        if target_id not in self.issue_details:
            raise NotFoundError(f"issue {target_id} not found", host=host)
        return FetchItem(item=self.issue_details[target_id], rate_limit=self.rate_limit)

    async def fetch_repo_labels(self, host: str, repo: RepoRef) -> FetchPage:
        await self._enter("fetch_repo_labels", host, repo.full_name)
        return FetchPage(items=list(self.labels.get(repo.full_name, [])), rate_limit=self.rate_limit)

    async def fetch_repo_collaborators(self, host: str, repo: RepoRef) -> FetchPage:
        await self._enter("fetch_repo_collaborators", host, repo.full_name)
        return FetchPage(items=list(self.collaborators.get(repo.full_name, [])), rate_limit=self.rate_limit)

    async def mutate(
        self,
        host: str,
        kind: MutationKind,
        target: MutationTarget,
        params: dict[str, Any],
    ) -> MutationResult:
        await self._enter("mutate", host, kind, target, params)
        return MutationResult(effect=f"done: {kind.value}", rate_limit=self.rate_limit)

    async def close(self) -> None:
        self.closed = True


REPO = RepoRef(owner="octo", name="dashboard")
OTHER_REPO = RepoRef(owner="octo", name="engine")


def make_notification(
    id: str,
    title: str,
    reason: NotificationReason = NotificationReason.SUBSCRIBED,
    unread: bool = True,
    repo: RepoRef = REPO,
) -> Notification:
    return Notification(
        id=id,
        title=title,
        reason=reason,
        subject_type=SubjectType.ISSUE,
        unread=unread,
        repository=repo,
        updated_at=datetime.now() - timedelta(hours=1),
    )


@pytest.fixture
def notifications() -> list[Notification]:
    return [
        make_notification("1", "Fix flaky test", NotificationReason.REVIEW_REQUESTED, unread=True),
        make_notification("2", "Release v1.2", NotificationReason.SUBSCRIBED, unread=False, repo=OTHER_REPO),
        make_notification("3", "Crash on startup", NotificationReason.MENTION, unread=True, repo=OTHER_REPO),
        make_notification("4", "Docs typo", NotificationReason.ASSIGN, unread=False),
    ]


@pytest.fixture
def prs() -> list[PullRequest]:
    return [
        PullRequest(number=1, title="Add cache", author=Actor(login="alice"), repo=REPO),
        PullRequest(number=2, title="Fix router", author=Actor(login="bob"), repo=OTHER_REPO),
    ]


@pytest.fixture
def branches() -> list[Branch]:
    return [
        Branch(name="main", repo=REPO, protected=True),
        Branch(name="feature/cache", repo=REPO),
        Branch(name="fix/router", repo=REPO),
    ]


@pytest.fixture
def client(prs, notifications, branches) -> CountingClient:
    return CountingClient(prs=prs, notifications=notifications, branches=branches)
