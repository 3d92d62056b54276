"""HttpClient and GitHubRemoteClient against an in-process httpx transport."""

import json

import httpx
import pytest

from ghboard.datasource.base import MutationKind, PrRef, parse_target
from ghboard.datasource.github import GitHubRemoteClient
from ghboard.datasource.github.auth import resolve_token, token_from_settings
from ghboard.datasource.github.queries import api_url_to_html_url
from ghboard.services.client import HttpClient, api_base_url, classify_response, graphql_url
from ghboard.services.errors import (
    AuthError,
    NotFoundError,
    RateLimitedError,
    RemoteApiError,
    TransportError,
)
from ghboard.settings import Settings
from ghboard.types import NotificationReason, RepoRef, SubjectType, TimelineKind

DASHBOARD = RepoRef(owner="octo", name="dashboard")

RATE_HEADERS = {
    "x-ratelimit-limit": "5000",
    "x-ratelimit-remaining": "4990",
    "x-ratelimit-reset": "1900000000",
}


class Recorder:
    """MockTransport handler that records requests and replies from a route table."""

    def __init__(self, routes=None, default=None):
        self.routes = routes or {}
        self.default = default
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        reply = self.routes.get(key, self.default)
        if reply is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if callable(reply):
            return reply(request)
        # Fresh copy so one canned response can answer repeated calls
        return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)

    def body(self, index: int = -1):
        return json.loads(self.requests[index].content)


def make_http(handler) -> HttpClient:
    return HttpClient(token_provider=lambda host: "test-token", transport=httpx.MockTransport(handler))


def ok(payload, status: int = 200, headers=None) -> httpx.Response:
    return httpx.Response(status, json=payload, headers=headers or RATE_HEADERS)


class TestUrls:
    def test_public_and_enterprise_bases(self):
        assert api_base_url("github.com") == "https://api.github.com"
        assert api_base_url("ghe.example.com") == "https://ghe.example.com/api/v3"
        assert graphql_url("github.com") == "https://api.github.com/graphql"
        assert graphql_url("ghe.example.com") == "https://ghe.example.com/api/graphql"

    def test_notification_html_urls(self):
        repo = RepoRef(owner="octo", name="dashboard")
        assert (
            api_url_to_html_url("https://api.github.com/repos/octo/dashboard/pulls/7", "PullRequest", repo, "github.com")
            == "https://github.com/octo/dashboard/pull/7"
        )
        assert (
            api_url_to_html_url(
                "https://ghe.example.com/api/v3/repos/octo/dashboard/issues/3", "Issue", repo, "ghe.example.com"
            )
            == "https://ghe.example.com/octo/dashboard/issues/3"
        )
        assert (
            api_url_to_html_url("https://api.github.com/repos/octo/dashboard/releases/99", "Release", repo, "github.com")
            == "https://github.com/octo/dashboard/releases"
        )
        assert api_url_to_html_url("", "Issue", repo, "github.com") == ""


class TestClassification:
    def _response(self, status, payload=None, headers=None):
        request = httpx.Request("GET", "https://api.github.com/x")
        return httpx.Response(status, json=payload or {}, headers=headers, request=request)

    def test_success_is_not_an_error(self):
        assert classify_response(self._response(200), "github.com") is None

    def test_unauthorized(self):
        error = classify_response(self._response(401, {"message": "Bad credentials"}), "github.com")
        assert isinstance(error, AuthError)
        assert error.host == "github.com"

    def test_exhausted_quota(self):
        error = classify_response(
            self._response(403, {"message": "Forbidden"}, {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1900000000"}),
            "github.com",
        )
        assert isinstance(error, RateLimitedError)
        assert error.reset_at is not None
        assert error.secondary is False

    def test_secondary_rate_limit(self):
        error = classify_response(
            self._response(403, {"message": "You have exceeded a secondary rate limit"}, {"retry-after": "60"}),
            "github.com",
        )
        assert isinstance(error, RateLimitedError)
        assert error.secondary is True
        assert error.reset_at is not None

    def test_plain_forbidden_is_api_error(self):
        error = classify_response(self._response(403, {"message": "Resource not accessible"}), "github.com")
        assert isinstance(error, RemoteApiError)
        assert error.status == 403

    def test_not_found_and_server_error(self):
        assert isinstance(classify_response(self._response(404), "github.com"), NotFoundError)
        error = classify_response(self._response(502, {"message": "Bad gateway"}), "github.com")
        assert isinstance(error, RemoteApiError)
        assert error.user_message() == "HTTP 502: Bad gateway"


class TestHttpClient:
    @pytest.mark.asyncio
    async def test_request_sends_auth_headers_and_reads_quota(self):
        recorder = Recorder({("GET", "/user"): ok({"login": "alice"})})
        async with make_http(recorder) as http:
            result = await http.request("github.com", "GET", "/user")

        assert result.data == {"login": "alice"}
        assert result.rate_limit.remaining == 4990
        sent = recorder.requests[0]
        assert sent.headers["authorization"] == "Bearer test-token"
        assert sent.headers["accept"] == "application/vnd.github+json"
        assert sent.url.host == "api.github.com"

    @pytest.mark.asyncio
    async def test_enterprise_host_uses_api_v3(self):
        recorder = Recorder(default=ok([]))
        async with make_http(recorder) as http:
            await http.request("ghe.example.com", "GET", "/notifications")

        assert str(recorder.requests[0].url) == "https://ghe.example.com/api/v3/notifications"

    @pytest.mark.asyncio
    async def test_empty_body_returns_none(self):
        recorder = Recorder(default=httpx.Response(204))
        async with make_http(recorder) as http:
            result = await http.request("github.com", "PATCH", "/notifications/threads/1")
        assert result.data is None
        assert result.rate_limit is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_api_error(self):
        recorder = Recorder(default=httpx.Response(200, text="<html>"))
        async with make_http(recorder) as http:
            with pytest.raises(RemoteApiError):
                await http.request("github.com", "GET", "/user")

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_http(handler) as http:
            with pytest.raises(TransportError):
                await http.request("github.com", "GET", "/user")

    @pytest.mark.asyncio
    async def test_connection_failure_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_http(handler) as http:
            with pytest.raises(TransportError):
                await http.request("github.com", "GET", "/user")

    @pytest.mark.asyncio
    async def test_error_response_is_raised(self):
        recorder = Recorder(default=httpx.Response(401, json={"message": "Bad credentials"}))
        async with make_http(recorder) as http:
            with pytest.raises(AuthError):
                await http.request("github.com", "GET", "/user")

    @pytest.mark.asyncio
    async def test_missing_token_is_auth_error(self):
        http = HttpClient(token_provider=lambda host: "", transport=httpx.MockTransport(Recorder()))
        with pytest.raises(AuthError):
            await http.request("github.com", "GET", "/user")

    @pytest.mark.asyncio
    async def test_token_provider_failure_is_auth_error(self):
        def provider(host):
            raise OSError("keyring locked")

        http = HttpClient(token_provider=provider, transport=httpx.MockTransport(Recorder()))
        with pytest.raises(AuthError):
            await http.request("github.com", "GET", "/user")

    @pytest.mark.asyncio
    async def test_graphql_rate_limit_selection_wins_over_headers(self):
        payload = {"data": {"rateLimit": {"limit": 5000, "remaining": 42, "resetAt": "2030-01-01T00:00:00Z"}}}
        recorder = Recorder({("POST", "/graphql"): ok(payload)})
        async with make_http(recorder) as http:
            result = await http.graphql("github.com", "query { viewer { login } }", {"a": 1})

        assert result.rate_limit.remaining == 42
        assert recorder.body()["variables"] == {"a": 1}

    @pytest.mark.asyncio
    async def test_graphql_errors_are_classified(self):
        cases = [
            ({"errors": [{"message": "API rate limit exceeded"}]}, RateLimitedError),
            ({"errors": [{"type": "NOT_FOUND", "message": "Could not resolve"}]}, NotFoundError),
            ({"errors": [{"message": "Something broke"}]}, RemoteApiError),
            ({}, RemoteApiError),
        ]
        for payload, expected in cases:
            recorder = Recorder({("POST", "/graphql"): ok(payload)})
            async with make_http(recorder) as http:
                with pytest.raises(expected):
                    await http.graphql("github.com", "query { x }")


def search_page(nodes, has_next=False, cursor=None):
    return {
        "data": {
            "rateLimit": {"limit": 5000, "remaining": 4000, "resetAt": "2030-01-01T00:00:00Z"},
            "search": {"pageInfo": {"hasNextPage": has_next, "endCursor": cursor}, "nodes": nodes},
        }
    }


def pr_node(number: int) -> dict:
    return {
        "number": number,
        "title": f"PR {number}",
        "state": "OPEN",
        "isDraft": False,
        "author": {"login": "alice", "avatarUrl": ""},
        "labels": {"nodes": [{"name": "bug", "color": "d73a4a"}]},
        "assignees": {"nodes": []},
        "comments": {"totalCount": 2},
        "repository": {"nameWithOwner": "octo/dashboard"},
        "url": f"https://github.com/octo/dashboard/pull/{number}",
        "updatedAt": "2024-05-01T10:00:00Z",
    }


class TestGitHubFetches:
    @pytest.mark.asyncio
    async def test_search_follows_cursors_up_to_limit(self):
        pages = iter(
            [
                ok(search_page([pr_node(1), pr_node(2)], has_next=True, cursor="c1")),
                ok(search_page([pr_node(3), {}], has_next=True, cursor="c2")),
            ]
        )
        recorder = Recorder({("POST", "/graphql"): lambda request: next(pages)})
        client = GitHubRemoteClient(http=make_http(recorder))

        page = await client.fetch_pull_requests("github.com", "is:pr author:@me", 3)
        await client.close()

        assert [pr.number for pr in page.items] == [1, 2, 3]
        assert page.items[0].labels[0].name == "bug"
        assert page.items[0].repo.full_name == "octo/dashboard"
        assert page.rate_limit.remaining == 4000
        assert recorder.body(0)["variables"] == {"query": "is:pr author:@me", "first": 3, "after": None}
        assert recorder.body(1)["variables"]["after"] == "c1"
        assert recorder.body(1)["variables"]["first"] == 1

    @pytest.mark.asyncio
    async def test_search_stops_on_last_page(self):
        recorder = Recorder({("POST", "/graphql"): ok(search_page([pr_node(1)]))})
        client = GitHubRemoteClient(http=make_http(recorder))

        page = await client.fetch_issues("github.com", "is:issue", 100)
        await client.close()

        assert len(recorder.requests) == 1
        assert len(page.items) == 1

    @pytest.mark.asyncio
    async def test_notifications(self):
        raw = [
            {
                "id": "77",
                "unread": True,
                "reason": "review_requested",
                "updated_at": "2024-05-01T10:00:00Z",
                "subject": {
                    "title": "Add cache",
                    "type": "PullRequest",
                    "url": "https://api.github.com/repos/octo/dashboard/pulls/5",
                },
                "repository": {"full_name": "octo/dashboard"},
            },
            {
                "id": "78",
                "unread": False,
                "reason": "something_new",
                "subject": {"title": "Weird", "type": "CheckSuite", "url": None},
                "repository": {"full_name": "octo/engine"},
            },
        ]
        recorder = Recorder({("GET", "/notifications"): ok(raw)})
        client = GitHubRemoteClient(http=make_http(recorder))

        page = await client.fetch_notifications("github.com", True, 50)
        await client.close()

        params = recorder.requests[0].url.params
        assert params["all"] == "true"
        assert params["per_page"] == "50"
        first, second = page.items
        assert first.reason is NotificationReason.REVIEW_REQUESTED
        assert first.subject_type is SubjectType.PULL_REQUEST
        assert first.url == "https://github.com/octo/dashboard/pull/5"
        assert second.reason is NotificationReason.UNKNOWN
        assert second.subject_type is SubjectType.OTHER
        assert page.rate_limit.limit == 5000

    @pytest.mark.asyncio
    async def test_branches(self):
        raw = [{"name": "main", "commit": {"sha": "abc"}, "protected": True}]
        recorder = Recorder({("GET", "/repos/octo/dashboard/branches"): ok(raw)})
        client = GitHubRemoteClient(http=make_http(recorder))

        page = await client.fetch_branches("github.com", RepoRef(owner="octo", name="dashboard"), 100)
        await client.close()

        assert page.items[0].name == "main"
        assert page.items[0].sha == "abc"
        assert page.items[0].protected is True
        assert recorder.requests[0].url.params["per_page"] == "100"


def repository_payload(repository) -> dict:
    return {
        "data": {
            "rateLimit": {"limit": 5000, "remaining": 3999, "resetAt": "2030-01-01T00:00:00Z"},
            "repository": repository,
        }
    }


PR_DETAIL_NODE = {
    "body": "Adds the cache",
    "mergeable": "MERGEABLE",
    "reviews": {"nodes": [{"author": {"login": "bob"}, "state": "APPROVED", "body": "", "submittedAt": None}]},
    "reviewThreads": {
        "nodes": [{"isResolved": True, "comments": {"nodes": [{"author": {"login": "bob"}, "body": "nit"}]}}]
    },
    "timelineItems": {
        "nodes": [
            {"__typename": "IssueComment", "author": {"login": "carol"}, "body": "ship it"},
            {"__typename": "LabeledEvent", "actor": {"login": "carol"}},
            {"__typename": "HeadRefForcePushedEvent", "actor": {"login": "alice"}},
        ]
    },
    "commits": {"nodes": [{"commit": {"oid": "abc", "messageHeadline": "Add cache", "author": {"name": "Alice"}}}]},
    "files": {"nodes": [{"path": "cache.py", "additions": 10, "deletions": 2, "changeType": "MODIFIED"}]},
}


class TestGitHubLookups:
    @pytest.mark.asyncio
    async def test_pr_detail_reports_behind_by(self):
        recorder = Recorder(
            {
                ("POST", "/graphql"): ok(repository_payload({"pullRequest": PR_DETAIL_NODE})),
                ("GET", "/repos/octo/dashboard/compare/main...fork:feature"): ok({"behind_by": 3}),
            }
        )
        client = GitHubRemoteClient(http=make_http(recorder))
        pr = PrRef(repo=DASHBOARD, number=7, base_ref="main", head_ref="feature", head_repo_owner="fork")

        fetched = await client.fetch_pr_detail("github.com", pr)
        await client.close()

        detail = fetched.item
        assert recorder.body(0)["variables"] == {"owner": "octo", "repo": "dashboard", "number": 7}
        assert detail.body == "Adds the cache"
        assert detail.reviews[0].state == "APPROVED"
        assert detail.review_threads[0].comments[0].body == "nit"
        assert [e.kind for e in detail.timeline_events] == [TimelineKind.COMMENT, TimelineKind.FORCE_PUSHED]
        assert detail.commits[0].sha == "abc"
        assert detail.files[0].path == "cache.py"
        assert detail.behind_by == 3
        assert fetched.rate_limit.remaining == 3999

    @pytest.mark.asyncio
    async def test_pr_detail_without_compare_leaves_behind_by_unset(self):
        # Unrouted compare path answers 404, as for a deleted head branch
        recorder = Recorder({("POST", "/graphql"): ok(repository_payload({"pullRequest": PR_DETAIL_NODE}))})
        client = GitHubRemoteClient(http=make_http(recorder))
        pr = PrRef(repo=DASHBOARD, number=7, base_ref="main", head_ref="gone")

        fetched = await client.fetch_pr_detail("github.com", pr)
        await client.close()

        assert recorder.requests[1].url.path == "/repos/octo/dashboard/compare/main...octo:gone"
        assert fetched.item.behind_by is None

    @pytest.mark.asyncio
    async def test_pr_detail_skips_compare_without_refs(self):
        recorder = Recorder({("POST", "/graphql"): ok(repository_payload({"pullRequest": PR_DETAIL_NODE}))})
        client = GitHubRemoteClient(http=make_http(recorder))

        fetched = await client.fetch_pr_detail("github.com", PrRef(repo=DASHBOARD, number=7))
        await client.close()

        assert len(recorder.requests) == 1
        assert fetched.item.behind_by is None

    @pytest.mark.asyncio
    async def test_missing_item_or_repository_raises_not_found(self):
        recorder = Recorder({("POST", "/graphql"): ok(repository_payload({"pullRequest": None, "issue": None}))})
        client = GitHubRemoteClient(http=make_http(recorder))

        with pytest.raises(NotFoundError):
            await client.fetch_pr_detail("github.com", PrRef(repo=DASHBOARD, number=404))
        with pytest.raises(NotFoundError):
            await client.fetch_issue_detail("github.com", DASHBOARD, 404)

        recorder.routes[("POST", "/graphql")] = ok(repository_payload(None))
        with pytest.raises(NotFoundError):
            await client.fetch_repo_labels("github.com", DASHBOARD)
        await client.close()

    @pytest.mark.asyncio
    async def test_issue_detail(self):
        node = {
            "body": "Banner sticks",
            "timelineItems": {
                "nodes": [
                    {"__typename": "ClosedEvent", "actor": {"login": "bob"}},
                    {"__typename": "ReopenedEvent", "actor": {"login": "alice"}},
                ]
            },
        }
        recorder = Recorder({("POST", "/graphql"): ok(repository_payload({"issue": node}))})
        client = GitHubRemoteClient(http=make_http(recorder))

        fetched = await client.fetch_issue_detail("github.com", DASHBOARD, 88)
        await client.close()

        assert recorder.body()["variables"]["number"] == 88
        assert fetched.item.body == "Banner sticks"
        assert [e.actor for e in fetched.item.timeline_events] == ["bob", "alice"]

    @pytest.mark.asyncio
    async def test_labels_and_collaborators(self):
        labels = {"labels": {"nodes": [{"name": "bug", "color": "d73a4a", "description": None}, None]}}
        collaborators = {"collaborators": {"nodes": [{"login": "alice"}, {"login": None}, {"login": "bob"}]}}
        replies = iter([ok(repository_payload(labels)), ok(repository_payload(collaborators))])
        recorder = Recorder({("POST", "/graphql"): lambda request: next(replies)})
        client = GitHubRemoteClient(http=make_http(recorder))

        label_page = await client.fetch_repo_labels("github.com", DASHBOARD)
        people_page = await client.fetch_repo_collaborators("github.com", DASHBOARD)
        await client.close()

        assert [(lb.name, lb.description) for lb in label_page.items] == [("bug", "")]
        assert people_page.items == ["alice", "bob"]
        assert recorder.body(0)["variables"]["first"] == 100
        assert recorder.body(1)["variables"] == {"owner": "octo", "repo": "dashboard", "first": 100}


class TestGitHubMutations:
    async def _mutate(self, recorder, kind, target_id, params=None):
        params = params or {}
        client = GitHubRemoteClient(http=make_http(recorder))
        try:
            return await client.mutate("github.com", kind, parse_target(kind, target_id, params), params)
        finally:
            await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kind,target_id,params,method,path",
        [
            (MutationKind.APPROVE_PR, "octo/dashboard#5", {}, "POST", "/repos/octo/dashboard/pulls/5/reviews"),
            (MutationKind.MERGE_PR, "octo/dashboard#5", {}, "PUT", "/repos/octo/dashboard/pulls/5/merge"),
            (MutationKind.CLOSE_PR, "octo/dashboard#5", {}, "PATCH", "/repos/octo/dashboard/pulls/5"),
            (MutationKind.REOPEN_ISSUE, "octo/dashboard#9", {}, "PATCH", "/repos/octo/dashboard/issues/9"),
            (MutationKind.COMMENT_PR, "octo/dashboard#5", {"body": "hi"}, "POST", "/repos/octo/dashboard/issues/5/comments"),
            (MutationKind.UPDATE_BRANCH, "octo/dashboard#5", {}, "PUT", "/repos/octo/dashboard/pulls/5/update-branch"),
            (MutationKind.ADD_ISSUE_LABELS, "octo/dashboard#9", {"labels": ["bug"]}, "POST", "/repos/octo/dashboard/issues/9/labels"),
            (MutationKind.MARK_NOTIFICATION_READ, "77", {}, "PATCH", "/notifications/threads/77"),
            (MutationKind.MARK_NOTIFICATION_DONE, "77", {}, "DELETE", "/notifications/threads/77"),
            (MutationKind.UNSUBSCRIBE_NOTIFICATION, "77", {}, "DELETE", "/notifications/threads/77/subscription"),
            (MutationKind.MARK_ALL_NOTIFICATIONS_READ, "*", {}, "PUT", "/notifications"),
        ],
    )
    async def test_mutation_endpoints(self, kind, target_id, params, method, path):
        recorder = Recorder(default=ok({}))

        result = await self._mutate(recorder, kind, target_id, params)

        sent = recorder.requests[-1]
        assert (sent.method, sent.url.path) == (method, path)
        assert result.effect
        assert result.rate_limit.remaining == 4990

    @pytest.mark.asyncio
    async def test_close_and_reopen_send_state(self):
        recorder = Recorder(default=ok({}))
        await self._mutate(recorder, MutationKind.CLOSE_ISSUE, "octo/dashboard#9")
        await self._mutate(recorder, MutationKind.REOPEN_PR, "octo/dashboard#5")

        assert recorder.body(0) == {"state": "closed"}
        assert recorder.body(1) == {"state": "open"}

    @pytest.mark.asyncio
    async def test_assign_resolves_me_once(self):
        recorder = Recorder(
            {
                ("GET", "/user"): ok({"login": "alice"}),
                ("POST", "/repos/octo/dashboard/issues/9/assignees"): ok({}),
            }
        )

        result = await self._mutate(
            recorder, MutationKind.ASSIGN_ISSUE, "octo/dashboard#9", {"logins": ["@me", "bob"]}
        )

        assert recorder.body()["assignees"] == ["alice", "bob"]
        assert sum(1 for r in recorder.requests if r.url.path == "/user") == 1
        assert "alice" in result.effect

    @pytest.mark.asyncio
    async def test_ready_for_review_uses_node_id(self):
        recorder = Recorder(
            {
                ("GET", "/repos/octo/dashboard/pulls/5"): ok({"node_id": "PR_kw123"}),
                ("POST", "/graphql"): ok({"data": {"markPullRequestReadyForReview": {"pullRequest": {"id": "PR_kw123"}}}}),
            }
        )

        await self._mutate(recorder, MutationKind.READY_FOR_REVIEW, "octo/dashboard#5")

        assert recorder.body()["variables"] == {"id": "PR_kw123"}

    @pytest.mark.asyncio
    async def test_mutation_error_propagates(self):
        recorder = Recorder(default=httpx.Response(422, json={"message": "Pull Request is not mergeable"}))

        with pytest.raises(RemoteApiError) as excinfo:
            await self._mutate(recorder, MutationKind.MERGE_PR, "octo/dashboard#5")

        assert excinfo.value.status == 422
        assert len(recorder.requests) == 1


class TestTokenResolution:
    def test_public_host_prefers_gh_token(self):
        settings = Settings(github_token="primary", github_token_fallback="fallback")
        assert token_from_settings("github.com", settings) == "primary"
        assert token_from_settings("github.com", Settings(github_token_fallback="fallback")) == "fallback"

    def test_enterprise_host_uses_enterprise_token(self):
        settings = Settings(github_token="primary", enterprise_token="ghe")
        assert token_from_settings("ghe.example.com", settings) == "ghe"

    def test_falls_back_to_gh_cli(self, monkeypatch):
        monkeypatch.setattr("ghboard.datasource.github.auth.token_from_gh_cli", lambda host: "from-cli")
        assert resolve_token("github.com", Settings()) == "from-cli"

    def test_no_token_raises_with_hint(self, monkeypatch):
        monkeypatch.setattr("ghboard.datasource.github.auth.token_from_gh_cli", lambda host: "")
        with pytest.raises(AuthError) as excinfo:
            resolve_token("ghe.example.com", Settings())
        assert "GH_ENTERPRISE_TOKEN" in str(excinfo.value)
