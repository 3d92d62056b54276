"""
FilterTranslator - Turns a filter tab's string into remote call parameters.

Two query languages are involved:
- Pull requests and issues use the remote search grammar, passed through
  with only a type qualifier (and optional repo scope) added.
- Notifications and branches come from REST endpoints without search, so
  their qualifiers are emulated with client-side predicates.
"""

from dataclasses import dataclass
from typing import Any, Callable

from ghboard.filters.notifications import build_predicate, parse_notification_filter
from ghboard.services.errors import TranslationError
from ghboard.types import FilterSpec, RepoRef, ViewKind

DEFAULT_SEARCH_LIMIT = 100
DEFAULT_NOTIFICATION_LIMIT = 50
DEFAULT_BRANCH_LIMIT = 100
MAX_PER_PAGE = 100

_TYPE_QUALIFIERS = {
    ViewKind.PRS: "is:pr",
    ViewKind.ISSUES: "is:issue",
}


@dataclass(frozen=True)
class CallParams:
    """Arguments for one RemoteClient fetch."""

    view: ViewKind
    host: str
    query: str = ""
    limit: int = DEFAULT_SEARCH_LIMIT
    all: bool = False
    per_page: int = DEFAULT_NOTIFICATION_LIMIT
    repo: RepoRef | None = None

    @property
    def page_limit(self) -> int:
        """How many items the call asks for: the search limit or the page size."""
        if self.view in _TYPE_QUALIFIERS:
            return self.limit
        return self.per_page


@dataclass(frozen=True)
class Translation:
    params: CallParams
    predicate: Callable[[Any], bool] | None = None
    search_text: str = ""

    def apply(self, items: list[Any]) -> list[Any]:
        """Run the post-filter, if any."""
        if self.predicate is None:
            return list(items)
        return [item for item in items if self.predicate(item)]


def ensure_type_qualifier(raw: str, qualifier: str) -> str:
    """Prepend qualifier unless the exact token is already present."""
    if any(token.lower() == qualifier for token in raw.split()):
        return raw
    if not raw.strip():
        return qualifier
    return f"{qualifier} {raw}"


def _has_repo_token(raw: str) -> bool:
    return any(token.lower().startswith("repo:") for token in raw.split())


def translate(view: ViewKind, spec: FilterSpec) -> Translation:
    """
    Translate spec for view.

    Raises:
        TranslationError: malformed notification qualifier, or a branch
            filter with no repository
    """
    if view in _TYPE_QUALIFIERS:
        return _translate_search(view, spec)
    if view is ViewKind.NOTIFICATIONS:
        return _translate_notifications(spec)
    return _translate_branches(spec)


def _translate_search(view: ViewKind, spec: FilterSpec) -> Translation:
    query = ensure_type_qualifier(spec.filters, _TYPE_QUALIFIERS[view])
    if spec.scope and not _has_repo_token(query):
        query = f"{query} repo:{spec.scope}"
    return Translation(
        params=CallParams(
            view=view,
            host=spec.host,
            query=query,
            limit=spec.limit or DEFAULT_SEARCH_LIMIT,
        )
    )


def _translate_notifications(spec: FilterSpec) -> Translation:
    parsed = parse_notification_filter(spec.filters)
    return Translation(
        params=CallParams(
            view=ViewKind.NOTIFICATIONS,
            host=spec.host,
            all=parsed.all,
            per_page=min(spec.limit or DEFAULT_NOTIFICATION_LIMIT, MAX_PER_PAGE),
        ),
        predicate=build_predicate(parsed, scope=spec.scope),
        search_text=parsed.search_text,
    )


def _translate_branches(spec: FilterSpec) -> Translation:
    repo_name = spec.scope
    terms: list[str] = []
    for token in spec.filters.split():
        if token.lower().startswith("repo:"):
            repo_name = token[len("repo:"):]
        else:
            terms.append(token.lower())

    if not repo_name:
        raise TranslationError("branches need a repository: add repo:owner/name or a scope")
    repo = RepoRef.from_full_name(repo_name)
    if repo is None:
        raise TranslationError(f"repo: expects owner/name, got {repo_name!r}", token=repo_name)

    def name_matches(branch: Any) -> bool:
        return all(term in branch.name.lower() for term in terms)

    return Translation(
        params=CallParams(
            view=ViewKind.BRANCHES,
            host=spec.host,
            per_page=min(spec.limit or DEFAULT_BRANCH_LIMIT, MAX_PER_PAGE),
            repo=repo,
        ),
        predicate=name_matches if terms else None,
    )
