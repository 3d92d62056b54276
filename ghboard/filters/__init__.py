"""
Filter translation.

Provides:
- translate: filter string + view kind -> call parameters and post-filter
- parse_notification_filter: qualifier grammar of the notifications view
- search_notifications / filter_rows: in-list search helpers
"""

from ghboard.filters.notifications import (
    NotificationQuery,
    ReadState,
    build_predicate,
    parse_notification_filter,
)
from ghboard.filters.search import filter_rows, search_notifications
from ghboard.filters.translator import CallParams, Translation, ensure_type_qualifier, translate

__all__ = [
    "CallParams",
    "Translation",
    "translate",
    "ensure_type_qualifier",
    "NotificationQuery",
    "ReadState",
    "build_predicate",
    "parse_notification_filter",
    "filter_rows",
    "search_notifications",
]
