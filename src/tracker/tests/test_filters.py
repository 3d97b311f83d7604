"""Tests for filtering, search, and per-filter counts."""

from __future__ import annotations

import pytest

from src.tracker.base import AppChecks, AppRecord, ReleaseIntent
from src.tracker.filters import AppFilter, count_by_filter, filter_apps, matches_search
from src.tracker.tests.conftest import make_record


@pytest.fixture
def portfolio(records: list[AppRecord]) -> list[AppRecord]:
    return records + [
        make_record(
            4,
            name="Sleep Log",
            slug="sleep-log",
            release_intent=ReleaseIntent.RELEASED,
            checks=AppChecks(launch=True, main_feature=True, ui=True, crash_free=True),
        ),
    ]


class TestSearch:
    @pytest.mark.parametrize("query", ["focus", "FOCUS", "  Timer ", "focus-t"])
    def test_matches_name_or_slug(self, query: str) -> None:
        assert matches_search(make_record(1, name="Focus Timer", slug="focus-timer"), query)

    def test_blank_query_matches_everything(self) -> None:
        assert matches_search(make_record(1), "   ")

    def test_no_match(self) -> None:
        assert not matches_search(make_record(1, name="Focus Timer", slug="focus-timer"), "tide")


class TestFilterApps:
    def test_all_keeps_order(self, portfolio: list[AppRecord]) -> None:
        assert [r.id for r in filter_apps(portfolio)] == [1, 2, 3, 4]

    @pytest.mark.parametrize(
        "app_filter,expected",
        [
            (AppFilter.READY, [2]),
            (AppFilter.NEEDS_FIX, [3]),
            (AppFilter.HOLD, [1]),
            (AppFilter.RELEASED, [4]),
            (AppFilter.UNCHECKED, [1, 3]),
        ],
    )
    def test_status_filters(
        self, portfolio: list[AppRecord], app_filter: AppFilter, expected: list[int]
    ) -> None:
        assert [r.id for r in filter_apps(portfolio, app_filter)] == expected

    def test_search_and_filter_combine(self, portfolio: list[AppRecord]) -> None:
        assert [r.id for r in filter_apps(portfolio, AppFilter.UNCHECKED, "tide")] == [3]
        assert filter_apps(portfolio, AppFilter.READY, "tide") == []


def test_counts_ignore_search(portfolio: list[AppRecord]) -> None:
    counts = count_by_filter(portfolio)
    assert counts == {
        "all": 4,
        "ready": 1,
        "needs-fix": 1,
        "hold": 1,
        "released": 1,
        "unchecked": 2,
    }
