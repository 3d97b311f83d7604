"""Derived views over the visible collection: filtering, search, counts."""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from src.tracker.base import AppRecord, ReleaseIntent


class AppFilter(str, Enum):
    ALL = "all"
    READY = "ready"
    NEEDS_FIX = "needs-fix"
    HOLD = "hold"
    RELEASED = "released"
    UNCHECKED = "unchecked"  # at least one QA check not passed


def matches_search(record: AppRecord, query: str) -> bool:
    """Case-insensitive substring match on name or slug."""
    needle = query.strip().lower()
    if not needle:
        return True
    return needle in record.name.lower() or needle in record.slug.lower()


def matches_filter(record: AppRecord, app_filter: AppFilter) -> bool:
    if app_filter == AppFilter.ALL:
        return True
    if app_filter == AppFilter.UNCHECKED:
        return not record.checks.all_passed
    return record.release_intent == ReleaseIntent(app_filter.value)


def filter_apps(
    records: Iterable[AppRecord],
    app_filter: AppFilter = AppFilter.ALL,
    query: str = "",
) -> list[AppRecord]:
    """Apply search first, then the status filter, keeping input order."""
    return [
        r for r in records
        if matches_search(r, query) and matches_filter(r, app_filter)
    ]


def count_by_filter(records: Iterable[AppRecord]) -> dict[str, int]:
    """Count apps per filter key over the whole collection (search ignored)."""
    items = list(records)
    return {f.value: sum(1 for r in items if matches_filter(r, f)) for f in AppFilter}
