"""
GraphQL documents and response transforms for the GitHub API.
"""

from typing import Any

from ghboard.types import (
    Actor,
    Branch,
    ChangedFile,
    Comment,
    Commit,
    Issue,
    IssueDetail,
    Label,
    Notification,
    NotificationReason,
    PrDetail,
    PullRequest,
    RepoRef,
    Review,
    ReviewThread,
    SubjectType,
    TimelineEvent,
    TimelineKind,
)

SEARCH_PULL_REQUESTS_QUERY = """
query SearchPullRequests($query: String!, $first: Int!, $after: String) {
  rateLimit { limit remaining resetAt }
  search(query: $query, type: ISSUE, first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    nodes {
      ... on PullRequest {
        number
        title
        body
        state
        isDraft
        reviewDecision
        additions
        deletions
        headRefName
        baseRefName
        headRepositoryOwner { login }
        url
        updatedAt
        createdAt
        author { login avatarUrl }
        labels(first: 10) { nodes { name color } }
        assignees(first: 10) { nodes { login } }
        comments { totalCount }
        repository { nameWithOwner }
      }
    }
  }
}
"""

SEARCH_ISSUES_QUERY = """
query SearchIssues($query: String!, $first: Int!, $after: String) {
  rateLimit { limit remaining resetAt }
  search(query: $query, type: ISSUE, first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    nodes {
      ... on Issue {
        number
        title
        body
        state
        url
        updatedAt
        createdAt
        author { login avatarUrl }
        assignees(first: 10) { nodes { login } }
        labels(first: 10) { nodes { name color } }
        comments { totalCount }
        repository { nameWithOwner }
      }
    }
  }
}
"""

PR_DETAIL_QUERY = """
query PullRequestDetail($owner: String!, $repo: String!, $number: Int!) {
  rateLimit { limit remaining resetAt }
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      body
      mergeable
      reviews(last: 50) {
        nodes { author { login } state body submittedAt }
      }
      reviewThreads(first: 50) {
        nodes { isResolved comments(first: 10) { nodes { author { login } body createdAt } } }
      }
      timelineItems(last: 100) {
        nodes {
          __typename
          ... on IssueComment { author { login } body createdAt }
          ... on PullRequestReview { author { login } state body submittedAt }
          ... on MergedEvent { actor { login } createdAt }
          ... on ClosedEvent { actor { login } createdAt }
          ... on ReopenedEvent { actor { login } createdAt }
          ... on HeadRefForcePushedEvent { actor { login } createdAt }
        }
      }
      commits(first: 100) {
        nodes { commit { oid messageHeadline author { name } committedDate } }
      }
      files(first: 100) {
        nodes { path additions deletions changeType }
      }
    }
  }
}
"""

ISSUE_DETAIL_QUERY = """
query IssueDetail($owner: String!, $repo: String!, $number: Int!) {
  rateLimit { limit remaining resetAt }
  repository(owner: $owner, name: $repo) {
    issue(number: $number) {
      body
      timelineItems(last: 100) {
        nodes {
          __typename
          ... on IssueComment { author { login } body createdAt }
          ... on ClosedEvent { actor { login } createdAt }
          ... on ReopenedEvent { actor { login } createdAt }
        }
      }
    }
  }
}
"""

REPOSITORY_LABELS_QUERY = """
query RepositoryLabels($owner: String!, $repo: String!, $first: Int!) {
  rateLimit { limit remaining resetAt }
  repository(owner: $owner, name: $repo) {
    labels(first: $first, orderBy: { field: NAME, direction: ASC }) {
      nodes { name color description }
    }
  }
}
"""

REPOSITORY_COLLABORATORS_QUERY = """
query RepositoryCollaborators($owner: String!, $repo: String!, $first: Int!) {
  rateLimit { limit remaining resetAt }
  repository(owner: $owner, name: $repo) {
    collaborators(first: $first, affiliation: ALL) {
      nodes { login }
    }
  }
}
"""

READY_FOR_REVIEW_MUTATION = """
mutation ReadyForReview($id: ID!) {
  markPullRequestReadyForReview(input: { pullRequestId: $id }) {
    pullRequest { id }
  }
}
"""

MAX_PAGE_SIZE = 100


def _actor(raw: dict[str, Any] | None) -> Actor | None:
    if not raw or not raw.get("login"):
        return None
    return Actor(login=raw["login"], avatar_url=raw.get("avatarUrl") or raw.get("avatar_url") or "")


def _nodes(raw: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not raw:
        return []
    return [n for n in raw.get("nodes") or [] if n]


def _repo(raw: dict[str, Any] | None) -> RepoRef | None:
    if not raw:
        return None
    return RepoRef.from_full_name(raw.get("nameWithOwner", ""))


def transform_pull_request(node: dict[str, Any]) -> PullRequest:
    return PullRequest(
        number=node["number"],
        title=node.get("title", ""),
        body=node.get("body") or "",
        author=_actor(node.get("author")),
        state=node.get("state", "OPEN"),
        is_draft=node.get("isDraft", False),
        review_decision=node.get("reviewDecision"),
        additions=node.get("additions", 0),
        deletions=node.get("deletions", 0),
        head_ref=node.get("headRefName", ""),
        base_ref=node.get("baseRefName", ""),
        head_repo_owner=(node.get("headRepositoryOwner") or {}).get("login"),
        labels=[Label(name=lb["name"], color=lb.get("color", "")) for lb in _nodes(node.get("labels"))],
        assignees=[a for a in map(_actor, _nodes(node.get("assignees"))) if a],
        comment_count=(node.get("comments") or {}).get("totalCount", 0),
        repo=_repo(node.get("repository")),
        url=node.get("url", ""),
        created_at=node.get("createdAt"),
        updated_at=node.get("updatedAt"),
    )


def transform_issue(node: dict[str, Any]) -> Issue:
    return Issue(
        number=node["number"],
        title=node.get("title", ""),
        body=node.get("body") or "",
        author=_actor(node.get("author")),
        state=node.get("state", "OPEN"),
        labels=[Label(name=lb["name"], color=lb.get("color", "")) for lb in _nodes(node.get("labels"))],
        assignees=[a for a in map(_actor, _nodes(node.get("assignees"))) if a],
        comment_count=(node.get("comments") or {}).get("totalCount", 0),
        repo=_repo(node.get("repository")),
        url=node.get("url", ""),
        created_at=node.get("createdAt"),
        updated_at=node.get("updatedAt"),
    )


_TIMELINE_KINDS = {
    "IssueComment": TimelineKind.COMMENT,
    "PullRequestReview": TimelineKind.REVIEW,
    "MergedEvent": TimelineKind.MERGED,
    "ClosedEvent": TimelineKind.CLOSED,
    "ReopenedEvent": TimelineKind.REOPENED,
    "HeadRefForcePushedEvent": TimelineKind.FORCE_PUSHED,
}


def _timeline(raw: dict[str, Any] | None) -> list[TimelineEvent]:
    """Timeline nodes of the selected types; anything else is skipped."""
    events = []
    for node in _nodes(raw):
        kind = _TIMELINE_KINDS.get(node.get("__typename", ""))
        if kind is None:
            continue
        who = node.get("author") or node.get("actor") or {}
        events.append(
            TimelineEvent(
                kind=kind,
                actor=who.get("login"),
                body=node.get("body") or "",
                state=node.get("state"),
                created_at=node.get("createdAt") or node.get("submittedAt"),
            )
        )
    return events


def _comment(node: dict[str, Any]) -> Comment:
    return Comment(author=_actor(node.get("author")), body=node.get("body") or "", created_at=node.get("createdAt"))


def _commit(node: dict[str, Any]) -> Commit:
    commit = node.get("commit") or {}
    return Commit(
        sha=commit.get("oid", ""),
        message=commit.get("messageHeadline") or "",
        author=(commit.get("author") or {}).get("name"),
        committed_at=commit.get("committedDate"),
    )


def transform_pr_detail(node: dict[str, Any]) -> PrDetail:
    return PrDetail(
        body=node.get("body") or "",
        mergeable=node.get("mergeable"),
        reviews=[
            Review(
                author=_actor(r.get("author")),
                state=r.get("state") or "COMMENTED",
                body=r.get("body") or "",
                submitted_at=r.get("submittedAt"),
            )
            for r in _nodes(node.get("reviews"))
        ],
        review_threads=[
            ReviewThread(
                is_resolved=t.get("isResolved", False),
                comments=[_comment(c) for c in _nodes(t.get("comments"))],
            )
            for t in _nodes(node.get("reviewThreads"))
        ],
        timeline_events=_timeline(node.get("timelineItems")),
        commits=[_commit(c) for c in _nodes(node.get("commits"))],
        files=[
            ChangedFile(
                path=f["path"],
                additions=f.get("additions", 0),
                deletions=f.get("deletions", 0),
                change_type=f.get("changeType"),
            )
            for f in _nodes(node.get("files"))
        ],
    )


def transform_issue_detail(node: dict[str, Any]) -> IssueDetail:
    return IssueDetail(body=node.get("body") or "", timeline_events=_timeline(node.get("timelineItems")))


def transform_labels(repository: dict[str, Any]) -> list[Label]:
    return [
        Label(name=n["name"], color=n.get("color", ""), description=n.get("description") or "")
        for n in _nodes(repository.get("labels"))
    ]


def transform_collaborators(repository: dict[str, Any]) -> list[str]:
    return [n["login"] for n in _nodes(repository.get("collaborators")) if n.get("login")]


def api_url_to_html_url(api_url: str, subject_type: str, repo: RepoRef | None, host: str) -> str:
    """
    Convert a notification subject API URL into the page a browser would open.

    Release URLs point at the releases listing since the API id is not a tag.
    """
    if not api_url:
        return ""
    web = "https://github.com" if host == "github.com" else f"https://{host}"
    if subject_type == "Release" and repo is not None:
        return f"{web}/{repo.full_name}/releases"

    for prefix in ("https://api.github.com/repos/", f"https://{host}/api/v3/repos/"):
        if api_url.startswith(prefix):
            api_url = f"{web}/" + api_url[len(prefix):]
            break
    if subject_type == "PullRequest":
        api_url = api_url.replace("/pulls/", "/pull/")
    return api_url


def transform_notification(raw: dict[str, Any], host: str) -> Notification:
    subject = raw.get("subject") or {}
    repository = raw.get("repository") or {}
    repo = RepoRef.from_full_name(repository.get("full_name", ""))
    subject_type = subject.get("type", "")
    return Notification(
        id=str(raw["id"]),
        title=subject.get("title", ""),
        reason=NotificationReason.parse(raw.get("reason", "")),
        subject_type=SubjectType.parse(subject_type),
        unread=raw.get("unread", False),
        repository=repo,
        url=api_url_to_html_url(subject.get("url") or "", subject_type, repo, host),
        updated_at=raw.get("updated_at"),
    )


def transform_branch(raw: dict[str, Any], repo: RepoRef) -> Branch:
    return Branch(
        name=raw["name"],
        sha=(raw.get("commit") or {}).get("sha", ""),
        protected=raw.get("protected", False),
        repo=repo,
    )
