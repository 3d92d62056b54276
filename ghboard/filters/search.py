"""
In-list search over already fetched rows.

Every whitespace-separated term must appear, case-insensitively, in at least
one of the row's searchable fields.
"""

from typing import Any, Iterable, TypeVar

from ghboard.types import Notification

T = TypeVar("T")


def _matches(fields: list[str], terms: list[str]) -> bool:
    haystack = [f.lower() for f in fields if f]
    return all(any(term in f for f in haystack) for term in terms)


def _terms(text: str) -> list[str]:
    return [t.lower() for t in text.split()]


def search_notifications(items: Iterable[Notification], text: str) -> list[Notification]:
    """Match free text against title, reason and repository full name."""
    terms = _terms(text)
    if not terms:
        return list(items)
    return [
        n
        for n in items
        if _matches([n.title, n.reason.display, n.reason.value, n.repo_name], terms)
    ]


def _row_fields(row: Any) -> list[str]:
    fields = [getattr(row, "title", ""), getattr(row, "name", "")]
    repo = getattr(row, "repo", None)
    if repo is not None:
        fields.append(repo.full_name)
    author = getattr(row, "author", None)
    if author is not None:
        fields.append(author.login)
    number = getattr(row, "number", None)
    if number is not None:
        fields.append(f"#{number}")
    fields.extend(label.name for label in getattr(row, "labels", []))
    return fields


def filter_rows(rows: Iterable[T], text: str) -> list[T]:
    """Match free text against pull request, issue or branch rows."""
    terms = _terms(text)
    if not terms:
        return list(rows)
    return [row for row in rows if _matches(_row_fields(row), terms)]
