"""
GitHub remote client.

Pull requests and issues come from GraphQL search with cursor pagination;
item detail and repository labels and collaborators from GraphQL lookups;
notifications and branches come from the REST API. Mutations use REST except
"ready for review", which only exists as a GraphQL mutation.

API Documentation: https://docs.github.com/en/rest and https://docs.github.com/en/graphql
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

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
from ghboard.datasource.github.auth import resolve_token
from ghboard.datasource.github.queries import (
    ISSUE_DETAIL_QUERY,
    MAX_PAGE_SIZE,
    PR_DETAIL_QUERY,
    READY_FOR_REVIEW_MUTATION,
    REPOSITORY_COLLABORATORS_QUERY,
    REPOSITORY_LABELS_QUERY,
    SEARCH_ISSUES_QUERY,
    SEARCH_PULL_REQUESTS_QUERY,
    transform_branch,
    transform_collaborators,
    transform_issue,
    transform_issue_detail,
    transform_labels,
    transform_notification,
    transform_pr_detail,
    transform_pull_request,
)
from ghboard.services.client import HttpClient, HttpResult
from ghboard.services.errors import NotFoundError, RemoteApiError
from ghboard.types import RateLimitSnapshot, RepoRef

SELF_LOGIN = "@me"


class GitHubRemoteClient(RemoteClient):
    """
    RemoteClient backed by the GitHub REST and GraphQL APIs.

    Works against github.com and GitHub Enterprise hosts alike; the host is
    chosen per call.
    """

    SERVICE_ID = "github"

    def __init__(self, http: HttpClient | None = None, timeout: float = 30.0, debug: bool = False):
        self.http = http or HttpClient(token_provider=resolve_token, timeout=timeout, debug=debug)
        self._viewer: dict[str, str] = {}

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    # ------------------------------------------------------------------
    # Fetches
    # ------------------------------------------------------------------

    async def fetch_pull_requests(self, host: str, query: str, limit: int) -> FetchPage:
        return await self._search(host, SEARCH_PULL_REQUESTS_QUERY, query, limit, transform_pull_request)

    async def fetch_issues(self, host: str, query: str, limit: int) -> FetchPage:
        return await self._search(host, SEARCH_ISSUES_QUERY, query, limit, transform_issue)

    async def _search(
        self,
        host: str,
        document: str,
        query: str,
        limit: int,
        transform: Callable[[dict[str, Any]], Any],
    ) -> FetchPage:
        """Follow search cursors until limit items or the last page."""
        page_size = min(limit, MAX_PAGE_SIZE)
        items: list[Any] = []
        cursor: str | None = None
        rate_limit: RateLimitSnapshot | None = None

        while len(items) < limit:
            first = min(limit - len(items), page_size)
            result = await self.http.graphql(
                host, document, {"query": query, "first": first, "after": cursor}
            )
            search = result.data.get("search") or {}
            # Nodes of the other type come back as empty objects
            items.extend(transform(node) for node in search.get("nodes") or [] if node)
            rate_limit = result.rate_limit or rate_limit

            page_info = search.get("pageInfo") or {}
            if not page_info.get("hasNextPage") or not page_info.get("endCursor"):
                break
            cursor = page_info["endCursor"]

        logger.debug(f"Search on {host} returned {len(items)} items")
        return FetchPage(items=items[:limit], rate_limit=rate_limit)

    async def fetch_notifications(self, host: str, all: bool, per_page: int) -> FetchPage:
        result = await self.http.request(
            host,
            "GET",
            "/notifications",
            params={"all": "true" if all else "false", "per_page": per_page},
        )
        items = [transform_notification(raw, host) for raw in result.data or []]
        return FetchPage(items=items, rate_limit=result.rate_limit)

    async def fetch_branches(self, host: str, repo: RepoRef, per_page: int) -> FetchPage:
        result = await self.http.request(
            host,
            "GET",
            f"/repos/{repo.full_name}/branches",
            params={"per_page": per_page},
        )
        items = [transform_branch(raw, repo) for raw in result.data or []]
        return FetchPage(items=items, rate_limit=result.rate_limit)

    # ------------------------------------------------------------------
    # Item detail and repository metadata
    # ------------------------------------------------------------------

    async def fetch_pr_detail(self, host: str, pr: PrRef) -> FetchItem:
        result = await self.http.graphql(
            host,
            PR_DETAIL_QUERY,
            {"owner": pr.repo.owner, "repo": pr.repo.name, "number": pr.number},
        )
        node = _repository(result, host, pr.repo).get("pullRequest")
        if not node:
            raise NotFoundError(f"pull request {pr.target_id} not found", host=host)
        detail = transform_pr_detail(node)
        if pr.base_ref and pr.head_ref:
            detail = detail.model_copy(update={"behind_by": await self._behind_by(host, pr)})
        return FetchItem(item=detail, rate_limit=result.rate_limit)

    async def _behind_by(self, host: str, pr: PrRef) -> int | None:
        """Commits the head branch lacks from its base; None when the head is gone."""
        head_owner = pr.head_repo_owner or pr.repo.owner
        path = f"/repos/{pr.repo.full_name}/compare/{pr.base_ref}...{head_owner}:{pr.head_ref}"
        try:
            result = await self.http.request(host, "GET", path)
        except (NotFoundError, RemoteApiError) as e:
            logger.debug(f"Compare for {pr.target_id} unavailable: {e}")
            return None
        return (result.data or {}).get("behind_by")

    async def fetch_issue_detail(self, host: str, repo: RepoRef, number: int) -> FetchItem:
        result = await self.http.graphql(
            host,
            ISSUE_DETAIL_QUERY,
            {"owner": repo.owner, "repo": repo.name, "number": number},
        )
        node = _repository(result, host, repo).get("issue")
        if not node:
            raise NotFoundError(f"issue {repo.full_name}#{number} not found", host=host)
        return FetchItem(item=transform_issue_detail(node), rate_limit=result.rate_limit)

    async def fetch_repo_labels(self, host: str, repo: RepoRef) -> FetchPage:
        result = await self.http.graphql(
            host,
            REPOSITORY_LABELS_QUERY,
            {"owner": repo.owner, "repo": repo.name, "first": MAX_PAGE_SIZE},
        )
        labels = transform_labels(_repository(result, host, repo))
        return FetchPage(items=labels, rate_limit=result.rate_limit)

    async def fetch_repo_collaborators(self, host: str, repo: RepoRef) -> FetchPage:
        result = await self.http.graphql(
            host,
            REPOSITORY_COLLABORATORS_QUERY,
            {"owner": repo.owner, "repo": repo.name, "first": MAX_PAGE_SIZE},
        )
        logins = transform_collaborators(_repository(result, host, repo))
        return FetchPage(items=logins, rate_limit=result.rate_limit)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def mutate(
        self,
        host: str,
        kind: MutationKind,
        target: MutationTarget,
        params: dict[str, Any],
    ) -> MutationResult:
        handler = self._handlers().get(kind)
        if handler is None:
            raise RemoteApiError(f"unsupported mutation {kind.value}", host=host)
        effect, result = await handler(host, target, params)
        logger.info(f"Mutation on {host}: {effect}")
        return MutationResult(effect=effect, rate_limit=result.rate_limit if result else None)

    def _handlers(
        self,
    ) -> dict[MutationKind, Callable[..., Awaitable[tuple[str, HttpResult | None]]]]:
        return {
            MutationKind.APPROVE_PR: self._approve,
            MutationKind.MERGE_PR: self._merge,
            MutationKind.CLOSE_PR: self._close_pr,
            MutationKind.REOPEN_PR: self._reopen_pr,
            MutationKind.COMMENT_PR: self._comment,
            MutationKind.UPDATE_BRANCH: self._update_branch,
            MutationKind.READY_FOR_REVIEW: self._ready_for_review,
            MutationKind.ASSIGN_PR: self._assign,
            MutationKind.UNASSIGN_PR: self._unassign,
            MutationKind.ADD_PR_LABELS: self._add_labels,
            MutationKind.CLOSE_ISSUE: self._close_issue,
            MutationKind.REOPEN_ISSUE: self._reopen_issue,
            MutationKind.COMMENT_ISSUE: self._comment,
            MutationKind.ASSIGN_ISSUE: self._assign,
            MutationKind.UNASSIGN_ISSUE: self._unassign,
            MutationKind.ADD_ISSUE_LABELS: self._add_labels,
            MutationKind.MARK_NOTIFICATION_READ: self._mark_read,
            MutationKind.MARK_NOTIFICATION_DONE: self._mark_done,
            MutationKind.MARK_ALL_NOTIFICATIONS_READ: self._mark_all_read,
            MutationKind.UNSUBSCRIBE_NOTIFICATION: self._unsubscribe,
        }

    async def _approve(self, host, target, params):
        result = await self.http.request(
            host,
            "POST",
            f"{_pulls(target)}/reviews",
            json_data={"event": "APPROVE", "body": params.get("body", "")},
        )
        return f"Approved PR #{target.number}", result

    async def _merge(self, host, target, params):
        result = await self.http.request(
            host,
            "PUT",
            f"{_pulls(target)}/merge",
            json_data={"merge_method": params.get("merge_method", "merge")},
        )
        return f"Merged PR #{target.number}", result

    async def _close_pr(self, host, target, params):
        result = await self.http.request(host, "PATCH", _pulls(target), json_data={"state": "closed"})
        return f"Closed PR #{target.number}", result

    async def _reopen_pr(self, host, target, params):
        result = await self.http.request(host, "PATCH", _pulls(target), json_data={"state": "open"})
        return f"Reopened PR #{target.number}", result

    async def _close_issue(self, host, target, params):
        result = await self.http.request(host, "PATCH", _issues(target), json_data={"state": "closed"})
        return f"Closed issue #{target.number}", result

    async def _reopen_issue(self, host, target, params):
        result = await self.http.request(host, "PATCH", _issues(target), json_data={"state": "open"})
        return f"Reopened issue #{target.number}", result

    async def _comment(self, host, target, params):
        result = await self.http.request(
            host,
            "POST",
            f"{_issues(target)}/comments",
            json_data={"body": params["body"]},
        )
        return f"Commented on #{target.number}", result

    async def _update_branch(self, host, target, params):
        result = await self.http.request(host, "PUT", f"{_pulls(target)}/update-branch")
        return f"Updated branch of PR #{target.number}", result

    async def _ready_for_review(self, host, target, params):
        pr = await self.http.request(host, "GET", _pulls(target))
        node_id = (pr.data or {}).get("node_id")
        if not node_id:
            raise RemoteApiError("pull request response missing node_id", host=host)
        result = await self.http.graphql(host, READY_FOR_REVIEW_MUTATION, {"id": node_id})
        return f"Marked PR #{target.number} ready for review", result

    async def _assign(self, host, target, params):
        logins = [await self._resolve_login(host, login) for login in params["logins"]]
        result = await self.http.request(
            host,
            "POST",
            f"{_issues(target)}/assignees",
            json_data={"assignees": logins},
        )
        return f"Assigned {', '.join(logins)} to #{target.number}", result

    async def _unassign(self, host, target, params):
        login = await self._resolve_login(host, params["login"])
        result = await self.http.request(
            host,
            "DELETE",
            f"{_issues(target)}/assignees",
            json_data={"assignees": [login]},
        )
        return f"Unassigned {login} from #{target.number}", result

    async def _add_labels(self, host, target, params):
        labels = list(params["labels"])
        result = await self.http.request(
            host,
            "POST",
            f"{_issues(target)}/labels",
            json_data={"labels": labels},
        )
        return f"Added labels {', '.join(labels)} to #{target.number}", result

    async def _mark_read(self, host, target, params):
        result = await self.http.request(host, "PATCH", f"/notifications/threads/{target.thread_id}")
        return f"Marked notification {target.thread_id} as read", result

    async def _mark_done(self, host, target, params):
        result = await self.http.request(host, "DELETE", f"/notifications/threads/{target.thread_id}")
        return f"Marked notification {target.thread_id} as done", result

    async def _mark_all_read(self, host, target, params):
        last_read_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        result = await self.http.request(
            host,
            "PUT",
            "/notifications",
            json_data={"last_read_at": last_read_at, "read": True},
        )
        return "Marked all notifications as read", result

    async def _unsubscribe(self, host, target, params):
        result = await self.http.request(
            host, "DELETE", f"/notifications/threads/{target.thread_id}/subscription"
        )
        return f"Unsubscribed from notification {target.thread_id}", result

    async def _resolve_login(self, host: str, login: str) -> str:
        """Replace "@me" with the authenticated user's login."""
        if login != SELF_LOGIN:
            return login
        if host not in self._viewer:
            result = await self.http.request(host, "GET", "/user")
            self._viewer[host] = result.data["login"]
        return self._viewer[host]

    async def close(self) -> None:
        await self.http.close()


def _pulls(target: MutationTarget) -> str:
    return f"/repos/{target.repo.full_name}/pulls/{target.number}"


def _issues(target: MutationTarget) -> str:
    return f"/repos/{target.repo.full_name}/issues/{target.number}"


def _repository(result: HttpResult, host: str, repo: RepoRef) -> dict[str, Any]:
    repository = (result.data or {}).get("repository")
    if not repository:
        raise NotFoundError(f"repository {repo.full_name} not found", host=host)
    return repository
