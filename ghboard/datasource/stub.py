"""
Stub remote client serving fixture data without any network calls.

Useful for tests and demos that must not require a GitHub token.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

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
    TimelineEvent,
    TimelineKind,
)


class StubRemoteClient(RemoteClient):
    """
    Fixture-backed RemoteClient.

    Every call is recorded in `calls` as (method, args). Errors can be queued
    per method with `fail_next`; mutations otherwise always succeed.
    """

    SERVICE_ID = "stub"

    def __init__(
        self,
        prs: list[PullRequest] | None = None,
        issues: list[Issue] | None = None,
        notifications: list[Notification] | None = None,
        branches: list[Branch] | None = None,
        delay: float = 0.0,
        rate_limit: RateLimitSnapshot | None = None,
    ):
        fixtures = sample_fixtures()
        self.prs = prs if prs is not None else fixtures["prs"]
        self.issues = issues if issues is not None else fixtures["issues"]
        self.notifications = notifications if notifications is not None else fixtures["notifications"]
        self.branches = branches if branches is not None else fixtures["branches"]
        self.delay = delay
        self.rate_limit = rate_limit
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.closed = False
        self._failures: dict[str, list[Exception]] = {}

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    def fail_next(self, method: str, error: Exception) -> None:
        """Make the next call to method raise error."""
        self._failures.setdefault(method, []).append(error)

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if self.delay:
            await asyncio.sleep(self.delay)
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    async def fetch_pull_requests(self, host: str, query: str, limit: int) -> FetchPage:
        await self._record("fetch_pull_requests", host, query, limit)
        return FetchPage(items=list(self.prs[:limit]), rate_limit=self.rate_limit)

    async def fetch_issues(self, host: str, query: str, limit: int) -> FetchPage:
        await self._record("fetch_issues", host, query, limit)
        return FetchPage(items=list(self.issues[:limit]), rate_limit=self.rate_limit)

    async def fetch_notifications(self, host: str, all: bool, per_page: int) -> FetchPage:
        await self._record("fetch_notifications", host, all, per_page)
        items = [n for n in self.notifications if all or n.unread]
        return FetchPage(items=items[:per_page], rate_limit=self.rate_limit)

    async def fetch_branches(self, host: str, repo: RepoRef, per_page: int) -> FetchPage:
        await self._record("fetch_branches", host, repo, per_page)
        items = [b for b in self.branches if b.repo is None or b.repo == repo]
        return FetchPage(items=items[:per_page], rate_limit=self.rate_limit)

    async def fetch_pr_detail(self, host: str, pr: PrRef) -> FetchItem:
        await self._record("fetch_pr_detail", host, pr.target_id)
        found = _find(self.prs, pr.repo, pr.number)
        if found is None:
            raise NotFoundError(f"pull request {pr.target_id} not found", host=host)
        detail = PrDetail(
            body=found.body,
            mergeable="MERGEABLE",
            timeline_events=_opened_event(found),
            behind_by=0 if pr.base_ref and pr.head_ref else None,
        )
        return FetchItem(item=detail, rate_limit=self.rate_limit)

    async def fetch_issue_detail(self, host: str, repo: RepoRef, number: int) -> FetchItem:
        await self._record("fetch_issue_detail", host, f"{repo.full_name}#{number}")
        found = _find(self.issues, repo, number)
        if found is None:
            raise NotFoundError(f"issue {repo.full_name}#{number} not found", host=host)
        detail = IssueDetail(body=found.body, timeline_events=_opened_event(found))
        return FetchItem(item=detail, rate_limit=self.rate_limit)

    async def fetch_repo_labels(self, host: str, repo: RepoRef) -> FetchPage:
        await self._record("fetch_repo_labels", host, repo.full_name)
        labels = {
            label.name: label
            for item in [*self.prs, *self.issues]
            if item.repo == repo
            for label in item.labels
        }
        return FetchPage(items=[labels[name] for name in sorted(labels)], rate_limit=self.rate_limit)

    async def fetch_repo_collaborators(self, host: str, repo: RepoRef) -> FetchPage:
        await self._record("fetch_repo_collaborators", host, repo.full_name)
        logins = {item.author.login for item in [*self.prs, *self.issues] if item.repo == repo and item.author}
        return FetchPage(items=sorted(logins), rate_limit=self.rate_limit)

    async def mutate(
        self,
        host: str,
        kind: MutationKind,
        target: MutationTarget,
        params: dict[str, Any],
    ) -> MutationResult:
        await self._record("mutate", host, kind, target, params)
        logger.debug(f"Stub mutation {kind.value} on {host}")
        return MutationResult(effect=f"stub ok: {kind.value}", rate_limit=self.rate_limit)

    async def close(self) -> None:
        self.closed = True


def _find(items: list[Any], repo: RepoRef, number: int) -> Any:
    return next((item for item in items if item.repo == repo and item.number == number), None)


def _opened_event(item: PullRequest | Issue) -> list[TimelineEvent]:
    author = item.author.login if item.author else None
    return [TimelineEvent(kind=TimelineKind.COMMENT, actor=author, body="Opened", created_at=item.updated_at)]


def sample_fixtures() -> dict[str, list[Any]]:
    """A small, fixed data set covering every view."""
    now = datetime.now()
    repo = RepoRef(owner="octo", name="dashboard")
    other = RepoRef(owner="octo", name="engine")
    alice = Actor(login="alice")
    bob = Actor(login="bob")

    prs = [
        PullRequest(
            number=101,
            title="Add notification filters",
            author=alice,
            repo=repo,
            labels=[Label(name="enhancement", color="a2eeef")],
            review_decision="REVIEW_REQUIRED",
            additions=120,
            deletions=14,
            head_ref="feature/filters",
            base_ref="main",
            url="https://github.com/octo/dashboard/pull/101",
            updated_at=now - timedelta(hours=2),
        ),
        PullRequest(
            number=57,
            title="Fix cache eviction order",
            author=bob,
            repo=other,
            is_draft=True,
            head_ref="fix/lru",
            base_ref="main",
            url="https://github.com/octo/engine/pull/57",
            updated_at=now - timedelta(days=1),
        ),
    ]
    issues = [
        Issue(
            number=88,
            title="Rate limit banner never clears",
            author=bob,
            repo=repo,
            labels=[Label(name="bug", color="d73a4a")],
            comment_count=3,
            url="https://github.com/octo/dashboard/issues/88",
            updated_at=now - timedelta(hours=5),
        ),
    ]
    notifications = [
        Notification(
            id="1001",
            title="Add notification filters",
            reason=NotificationReason.REVIEW_REQUESTED,
            subject_type=SubjectType.PULL_REQUEST,
            unread=True,
            repository=repo,
            url="https://github.com/octo/dashboard/pull/101",
            updated_at=now - timedelta(hours=2),
        ),
        Notification(
            id="1002",
            title="v0.4.0",
            reason=NotificationReason.SUBSCRIBED,
            subject_type=SubjectType.RELEASE,
            unread=False,
            repository=other,
            url="https://github.com/octo/engine/releases",
            updated_at=now - timedelta(days=3),
        ),
        Notification(
            id="1003",
            title="Rate limit banner never clears",
            reason=NotificationReason.MENTION,
            subject_type=SubjectType.ISSUE,
            unread=True,
            repository=repo,
            url="https://github.com/octo/dashboard/issues/88",
            updated_at=now - timedelta(hours=6),
        ),
    ]
    branches = [
        Branch(name="main", sha="a1b2c3d", protected=True, repo=repo),
        Branch(name="feature/filters", sha="e4f5a6b", repo=repo),
        Branch(name="main", sha="0f9e8d7", protected=True, repo=other),
    ]
    return {"prs": prs, "issues": issues, "notifications": notifications, "branches": branches}
