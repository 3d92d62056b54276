"""Filter translation for every view, plus in-list search."""

import pytest

from ghboard.filters import (
    ReadState,
    filter_rows,
    parse_notification_filter,
    search_notifications,
    translate,
)
from ghboard.services.errors import TranslationError
from ghboard.types import FilterSpec, NotificationReason, RepoRef, ViewKind


def spec(filters: str = "", **kwargs) -> FilterSpec:
    return FilterSpec(title="tab", filters=filters, **kwargs)


class TestPassthrough:
    def test_prepends_pr_qualifier_verbatim(self):
        result = translate(ViewKind.PRS, spec("author:@me is:open"))
        assert result.params.query == "is:pr author:@me is:open"
        assert result.predicate is None

    def test_issue_qualifier(self):
        assert translate(ViewKind.ISSUES, spec("label:bug")).params.query == "is:issue label:bug"

    def test_existing_qualifier_is_kept(self):
        assert translate(ViewKind.PRS, spec("IS:PR review:required")).params.query == "IS:PR review:required"

    def test_empty_filter(self):
        assert translate(ViewKind.PRS, spec("")).params.query == "is:pr"

    def test_unknown_qualifiers_are_never_rejected(self):
        result = translate(ViewKind.PRS, spec("foo:bar -is:nonsense"))
        assert result.params.query == "is:pr foo:bar -is:nonsense"

    def test_scope_appends_repo(self):
        result = translate(ViewKind.PRS, spec("is:open", scope="octo/dashboard"))
        assert result.params.query == "is:pr is:open repo:octo/dashboard"

    def test_explicit_repo_wins_over_scope(self):
        result = translate(ViewKind.ISSUES, spec("repo:a/b", scope="octo/dashboard"))
        assert result.params.query == "is:issue repo:a/b"

    def test_limit_and_host(self):
        result = translate(ViewKind.PRS, spec(limit=25, host="ghe.example.com"))
        assert result.params.limit == 25
        assert result.params.host == "ghe.example.com"
        assert translate(ViewKind.PRS, spec()).params.limit == 100


class TestNotificationGrammar:
    def test_no_is_token_is_unread_only(self):
        result = translate(ViewKind.NOTIFICATIONS, spec("reason:subscribed"))
        assert result.params.all is False

    def test_is_unread(self):
        assert translate(ViewKind.NOTIFICATIONS, spec("is:unread")).params.all is False

    def test_negated_read_equals_unread(self):
        assert parse_notification_filter("-is:read") == parse_notification_filter("is:unread")

    def test_is_all_and_done(self):
        for token in ("is:all", "is:done"):
            result = translate(ViewKind.NOTIFICATIONS, spec(token))
            assert result.params.all is True
            assert result.predicate is None

    def test_is_read_drops_unread(self, notifications):
        result = translate(ViewKind.NOTIFICATIONS, spec("is:read"))
        assert result.params.all is True
        kept = result.apply(notifications)
        assert kept
        assert all(not n.unread for n in kept)

    def test_negated_unread_matches_is_read(self, notifications):
        read = translate(ViewKind.NOTIFICATIONS, spec("is:read"))
        not_unread = translate(ViewKind.NOTIFICATIONS, spec("-is:unread"))
        assert read.params == not_unread.params
        assert read.apply(notifications) == not_unread.apply(notifications)

    def test_last_read_state_token_wins(self):
        parsed = parse_notification_filter("is:read is:all is:unread")
        assert parsed.all is False
        assert parsed.read_state is ReadState.UNREAD

    def test_reason_include_and_exclude(self, notifications):
        only_mentions = translate(ViewKind.NOTIFICATIONS, spec("is:all reason:mention"))
        assert [n.id for n in only_mentions.apply(notifications)] == ["3"]

        excluded = translate(ViewKind.NOTIFICATIONS, spec("is:all -reason:subscribed -reason:assign"))
        assert [n.id for n in excluded.apply(notifications)] == ["1", "3"]

    def test_repo_predicate(self, notifications):
        result = translate(ViewKind.NOTIFICATIONS, spec("is:all repo:octo/engine"))
        assert {n.id for n in result.apply(notifications)} == {"2", "3"}

    def test_scope_acts_as_repo_predicate(self, notifications):
        result = translate(ViewKind.NOTIFICATIONS, spec("is:all", scope="octo/dashboard"))
        assert {n.id for n in result.apply(notifications)} == {"1", "4"}

    def test_free_text_is_search_text_not_predicate(self):
        result = translate(ViewKind.NOTIFICATIONS, spec("is:unread crash startup"))
        assert result.search_text == "crash startup"
        assert result.predicate is None

    def test_reason_values_parse(self):
        parsed = parse_notification_filter("reason:review_requested -reason:ci_activity")
        assert parsed.reasons == {NotificationReason.REVIEW_REQUESTED}
        assert parsed.excluded_reasons == {NotificationReason.CI_ACTIVITY}

    def test_per_page_is_capped(self):
        assert translate(ViewKind.NOTIFICATIONS, spec(limit=500)).params.per_page == 100
        assert translate(ViewKind.NOTIFICATIONS, spec()).params.per_page == 50

    @pytest.mark.parametrize(
        "filters",
        ["is:starred", "-is:all", "-is:done", "reason:", "-reason:", "repo:", "repo:justname", "repo:a/b/c"],
    )
    def test_malformed_qualifiers_raise(self, filters):
        with pytest.raises(TranslationError):
            translate(ViewKind.NOTIFICATIONS, spec(filters))


class TestBranches:
    def test_repo_from_token(self):
        result = translate(ViewKind.BRANCHES, spec("repo:octo/dashboard"))
        assert result.params.repo == RepoRef(owner="octo", name="dashboard")
        assert result.predicate is None

    def test_repo_from_scope(self):
        result = translate(ViewKind.BRANCHES, spec("", scope="octo/engine"))
        assert result.params.repo.full_name == "octo/engine"

    def test_missing_repo_raises(self):
        with pytest.raises(TranslationError):
            translate(ViewKind.BRANCHES, spec("feature"))

    def test_free_text_filters_names(self, branches):
        result = translate(ViewKind.BRANCHES, spec("repo:octo/dashboard FEATURE"))
        assert [b.name for b in result.apply(branches)] == ["feature/cache"]


class TestInListSearch:
    def test_search_notifications_matches_title_reason_and_repo(self, notifications):
        assert [n.id for n in search_notifications(notifications, "CRASH")] == ["3"]
        assert [n.id for n in search_notifications(notifications, "assigned")] == ["4"]
        assert {n.id for n in search_notifications(notifications, "octo/engine")} == {"2", "3"}

    def test_all_terms_must_match(self, notifications):
        assert [n.id for n in search_notifications(notifications, "engine release")] == ["2"]

    def test_empty_text_returns_everything(self, notifications):
        assert search_notifications(notifications, "  ") == notifications

    def test_filter_rows(self, prs, branches):
        assert [p.number for p in filter_rows(prs, "alice")] == [1]
        assert [p.number for p in filter_rows(prs, "#2")] == [2]
        assert [b.name for b in filter_rows(branches, "router")] == ["fix/router"]
