"""
Domain types shared by the engine, the filters and the remote clients.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_HOST = "github.com"


class ViewKind(str, Enum):
    """Dashboard views backed by the engine."""

    PRS = "prs"
    ISSUES = "issues"
    NOTIFICATIONS = "notifications"
    BRANCHES = "branches"

    @property
    def pollable(self) -> bool:
        """Branches have no remote poll; every other view refreshes on a timer."""
        return self is not ViewKind.BRANCHES


class FilterSpec(BaseModel):
    """A configured filter tab. Owned by the dashboard config, read-only here."""

    model_config = {"frozen": True}

    title: str
    filters: str = ""
    host: str = DEFAULT_HOST
    scope: str | None = None  # "owner/name" when restricted to one repository
    limit: int | None = Field(default=None, ge=1)


class RateLimitSnapshot(BaseModel):
    """Last known API quota for a host."""

    limit: int
    remaining: int
    reset_at: datetime | None = None

    def is_below(self, low_water: int) -> bool:
        return self.remaining < low_water


class Actor(BaseModel):
    login: str
    avatar_url: str = ""


class Label(BaseModel):
    name: str
    color: str = ""  # hex without '#', as returned by the API
    description: str = ""


class RepoRef(BaseModel):
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_full_name(cls, value: str) -> "RepoRef | None":
        """Parse "owner/name"; returns None for anything else."""
        owner, sep, name = value.partition("/")
        if not sep or not owner or not name or "/" in name:
            return None
        return cls(owner=owner, name=name)


class PullRequest(BaseModel):
    number: int
    title: str
    body: str = ""
    author: Actor | None = None
    state: str = "OPEN"
    is_draft: bool = False
    review_decision: str | None = None
    additions: int = 0
    deletions: int = 0
    head_ref: str = ""
    base_ref: str = ""
    head_repo_owner: str | None = None  # differs from repo.owner for forks
    labels: list[Label] = Field(default_factory=list)
    assignees: list[Actor] = Field(default_factory=list)
    comment_count: int = 0
    repo: RepoRef | None = None
    url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Issue(BaseModel):
    number: int
    title: str
    body: str = ""
    author: Actor | None = None
    state: str = "OPEN"
    labels: list[Label] = Field(default_factory=list)
    assignees: list[Actor] = Field(default_factory=list)
    comment_count: int = 0
    repo: RepoRef | None = None
    url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class NotificationReason(str, Enum):
    SUBSCRIBED = "subscribed"
    REVIEW_REQUESTED = "review_requested"
    MENTION = "mention"
    AUTHOR = "author"
    COMMENT = "comment"
    ASSIGN = "assign"
    STATE_CHANGE = "state_change"
    CI_ACTIVITY = "ci_activity"
    TEAM_MENTION = "team_mention"
    SECURITY_ALERT = "security_alert"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "NotificationReason":
        try:
            return cls(value.lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def display(self) -> str:
        """Stable display name used for in-list search and rendering."""
        return _REASON_DISPLAY.get(self, self.value.replace("_", " "))


_REASON_DISPLAY = {
    NotificationReason.ASSIGN: "assigned",
    NotificationReason.UNKNOWN: "other",
}


class SubjectType(str, Enum):
    PULL_REQUEST = "PullRequest"
    ISSUE = "Issue"
    RELEASE = "Release"
    DISCUSSION = "Discussion"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: str) -> "SubjectType":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class Notification(BaseModel):
    id: str
    title: str
    reason: NotificationReason = NotificationReason.UNKNOWN
    subject_type: SubjectType = SubjectType.OTHER
    unread: bool = False
    repository: RepoRef | None = None
    url: str = ""
    updated_at: datetime | None = None

    @field_validator("reason", mode="before")
    @classmethod
    def _coerce_reason(cls, value: Any) -> Any:
        if isinstance(value, str):
            return NotificationReason.parse(value)
        return value

    @property
    def repo_name(self) -> str:
        return self.repository.full_name if self.repository else ""


class Branch(BaseModel):
    name: str
    sha: str = ""
    protected: bool = False
    repo: RepoRef | None = None


# ---------------------------------------------------------------------------
# Item detail (sidebar) models
# ---------------------------------------------------------------------------


class Comment(BaseModel):
    author: Actor | None = None
    body: str = ""
    created_at: datetime | None = None


class Review(BaseModel):
    author: Actor | None = None
    state: str = "COMMENTED"  # APPROVED, CHANGES_REQUESTED, COMMENTED, DISMISSED, PENDING
    body: str = ""
    submitted_at: datetime | None = None


class ReviewThread(BaseModel):
    is_resolved: bool = False
    comments: list[Comment] = Field(default_factory=list)


class TimelineKind(str, Enum):
    COMMENT = "comment"
    REVIEW = "review"
    MERGED = "merged"
    CLOSED = "closed"
    REOPENED = "reopened"
    FORCE_PUSHED = "force_pushed"


class TimelineEvent(BaseModel):
    """One entry of an item's activity feed."""

    kind: TimelineKind
    actor: str | None = None
    body: str = ""
    state: str | None = None  # review state, for REVIEW events
    created_at: datetime | None = None


class Commit(BaseModel):
    sha: str = ""
    message: str = ""  # headline only
    author: str | None = None
    committed_at: datetime | None = None


class ChangedFile(BaseModel):
    path: str
    additions: int = 0
    deletions: int = 0
    change_type: str | None = None


class PrDetail(BaseModel):
    """Everything the sidebar shows for one pull request."""

    body: str = ""
    mergeable: str | None = None  # MERGEABLE, CONFLICTING or UNKNOWN
    reviews: list[Review] = Field(default_factory=list)
    review_threads: list[ReviewThread] = Field(default_factory=list)
    timeline_events: list[TimelineEvent] = Field(default_factory=list)
    commits: list[Commit] = Field(default_factory=list)
    files: list[ChangedFile] = Field(default_factory=list)
    behind_by: int | None = None  # commits the head is behind its base, when known


class IssueDetail(BaseModel):
    body: str = ""
    timeline_events: list[TimelineEvent] = Field(default_factory=list)
