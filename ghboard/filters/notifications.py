"""
Qualifier grammar for the notifications view.

The notifications REST endpoint only understands `all` and `per_page`, so the
search-style qualifiers users type are emulated here:

    is:unread | is:read | is:all | is:done | -is:unread | -is:read
    reason:<reason>  -reason:<reason>  repo:<owner/name>

Anything else is free text for in-list search.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from ghboard.services.errors import TranslationError
from ghboard.types import Notification, NotificationReason, RepoRef

Predicate = Callable[[Notification], bool]


class ReadState(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ANY = "any"


# token -> (all, state)
_READ_STATE_TOKENS = {
    "is:unread": (False, ReadState.UNREAD),
    "-is:read": (False, ReadState.UNREAD),
    "is:read": (True, ReadState.READ),
    "-is:unread": (True, ReadState.READ),
    "is:all": (True, ReadState.ANY),
    "is:done": (True, ReadState.ANY),
}


@dataclass(frozen=True)
class NotificationQuery:
    """Parsed notification filter."""

    all: bool = False
    read_state: ReadState = ReadState.UNREAD
    reasons: frozenset[NotificationReason] = field(default_factory=frozenset)
    excluded_reasons: frozenset[NotificationReason] = field(default_factory=frozenset)
    repo: str | None = None
    free_text: tuple[str, ...] = ()

    @property
    def search_text(self) -> str:
        return " ".join(self.free_text)


def parse_notification_filter(raw: str) -> NotificationQuery:
    """
    Parse a notification filter string.

    With no read-state token the fetch is unread-only. When several appear,
    the last one wins.

    Raises:
        TranslationError: unknown is: value, negated is:all/is:done, empty
            qualifier value, or a repo: value that is not owner/name
    """
    all_flag, read_state = False, ReadState.UNREAD
    reasons: set[NotificationReason] = set()
    excluded: set[NotificationReason] = set()
    repo: str | None = None
    free_text: list[str] = []

    for token in raw.split():
        lowered = token.lower()

        if lowered.startswith(("is:", "-is:")):
            if lowered not in _READ_STATE_TOKENS:
                raise TranslationError(f"unsupported read-state qualifier {token!r}", token=token)
            all_flag, read_state = _READ_STATE_TOKENS[lowered]

        elif lowered.startswith("-reason:"):
            excluded.add(NotificationReason.parse(_value(token, "-reason:")))

        elif lowered.startswith("reason:"):
            reasons.add(NotificationReason.parse(_value(token, "reason:")))

        elif lowered.startswith("repo:"):
            value = _value(token, "repo:")
            if RepoRef.from_full_name(value) is None:
                raise TranslationError(f"repo: expects owner/name, got {value!r}", token=token)
            repo = value

        else:
            free_text.append(token)

    return NotificationQuery(
        all=all_flag,
        read_state=read_state,
        reasons=frozenset(reasons),
        excluded_reasons=frozenset(excluded),
        repo=repo,
        free_text=tuple(free_text),
    )


def _value(token: str, prefix: str) -> str:
    value = token[len(prefix):]
    if not value:
        raise TranslationError(f"{prefix} requires a value", token=token)
    return value


def build_predicate(query: NotificationQuery, scope: str | None = None) -> Predicate | None:
    """
    Combine the client-side checks of a parsed filter into one predicate.

    Free text is not included; it only drives in-list search. Returns None
    when nothing needs filtering.
    """
    checks: list[Predicate] = []

    if query.read_state is ReadState.READ:
        checks.append(lambda n: not n.unread)

    if query.reasons:
        reasons = query.reasons
        checks.append(lambda n: n.reason in reasons)

    if query.excluded_reasons:
        excluded = query.excluded_reasons
        checks.append(lambda n: n.reason not in excluded)

    repo = query.repo or scope
    if repo:
        wanted = repo.lower()
        checks.append(lambda n: n.repo_name.lower() == wanted)

    if not checks:
        return None

    def predicate(notification: Notification) -> bool:
        return all(check(notification) for check in checks)

    return predicate
