"""Pydantic models for apps, sync status, and e2e results."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from src.models.base import ReleaseboardBase
from src.tracker.base import AppChecks, AppRecord, E2ETestSummary, ReleaseIntent
from src.tracker.e2e import E2ESummary
from src.tracker.sync.scheduler import StatusEvent, SyncState, SyncStatus


# ---------- Apps ----------

class AppChecksModel(ReleaseboardBase):
    launch: bool = False
    main_feature: bool = False
    ui: bool = False
    crash_free: bool = False


class E2ETestsModel(ReleaseboardBase):
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    last_run: str | None = None
    status: str = "pending"
    results_url: str | None = None


class AppBase(ReleaseboardBase):
    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(min_length=1, max_length=100)
    emoji: str = ""
    icon_url: str | None = None
    bundle_id: str | None = None
    github_url: str | None = None
    testflight_url: str | None = None
    appstore_url: str | None = None
    release_intent: ReleaseIntent = ReleaseIntent.HOLD
    checks: AppChecksModel = Field(default_factory=AppChecksModel)
    fix_notes: str = ""
    test_notes: str = ""


class AppCreate(AppBase):
    id: int = Field(ge=1)

    def to_record(self) -> AppRecord:
        data = self.model_dump(exclude={"checks"})
        return AppRecord(checks=AppChecks(**self.checks.model_dump()), **data)


class AppUpdate(ReleaseboardBase):
    """Partial edit.  Checks may be sent individually or as a partial object."""

    release_intent: ReleaseIntent | None = None
    fix_notes: str | None = None
    test_notes: str | None = None
    launch: bool | None = None
    main_feature: bool | None = None
    ui: bool | None = None
    crash_free: bool | None = None
    checks: dict[str, bool] | None = None


class AppRead(AppBase):
    id: int
    all_checks_passed: bool
    updated_at: datetime | None = None
    version: str | None = None
    e2e_tests: E2ETestsModel | None = None

    @classmethod
    def from_record(cls, record: AppRecord) -> "AppRead":
        return cls(
            id=record.id,
            name=record.name,
            slug=record.slug,
            emoji=record.emoji,
            icon_url=record.icon_url,
            bundle_id=record.bundle_id,
            github_url=record.github_url,
            testflight_url=record.testflight_url,
            appstore_url=record.appstore_url,
            release_intent=record.release_intent,
            checks=AppChecksModel.model_validate(record.checks),
            fix_notes=record.fix_notes,
            test_notes=record.test_notes,
            all_checks_passed=record.checks.all_passed,
            updated_at=record.updated_at,
            version=record.version,
            e2e_tests=_e2e(record.e2e_tests),
        )


def _e2e(summary: E2ETestSummary | None) -> E2ETestsModel | None:
    return E2ETestsModel.model_validate(summary) if summary is not None else None


# ---------- Sync ----------

class SyncStatusRead(ReleaseboardBase):
    state: SyncState
    pending: int
    in_flight: int
    has_unsaved_changes: bool
    saving: bool
    last_flush_at: datetime | None = None
    last_error: str | None = None
    flushes: int = 0
    failures: int = 0
    conflicts: int = 0

    @classmethod
    def from_status(cls, status: SyncStatus) -> "SyncStatusRead":
        return cls(
            state=status.state,
            pending=status.pending,
            in_flight=status.in_flight,
            has_unsaved_changes=status.has_unsaved_changes,
            saving=status.saving,
            last_flush_at=status.last_flush_at,
            last_error=status.last_error,
            flushes=status.flushes,
            failures=status.failures,
            conflicts=status.conflicts,
        )


class StatusEventRead(ReleaseboardBase):
    state: SyncState
    pending: int
    at: datetime
    error: str | None = None

    @classmethod
    def from_event(cls, event: StatusEvent) -> "StatusEventRead":
        return cls(state=event.state, pending=event.pending, at=event.at, error=event.error)


class AppListRead(ReleaseboardBase):
    items: list[AppRead]
    total: int
    counts: dict[str, int]
    sync: SyncStatusRead


class ReloadRead(ReleaseboardBase):
    loaded: int
    sync: SyncStatusRead


# ---------- E2E ----------

class E2EAppRead(ReleaseboardBase):
    id: int
    name: str
    emoji: str
    github_url: str | None = None
    checks: AppChecksModel
    e2e_tests: E2ETestsModel | None = None


class E2ESummaryRead(ReleaseboardBase):
    total_tests: int
    total_passed: int
    total_failed: int
    tested_count: int
    app_count: int
    apps_with_tests: list[E2EAppRead]
    apps_without_tests: list[E2EAppRead]

    @classmethod
    def from_summary(cls, summary: E2ESummary) -> "E2ESummaryRead":
        def _app(record: AppRecord) -> E2EAppRead:
            return E2EAppRead(
                id=record.id,
                name=record.name,
                emoji=record.emoji,
                github_url=record.github_url,
                checks=AppChecksModel.model_validate(record.checks),
                e2e_tests=_e2e(record.e2e_tests),
            )

        return cls(
            total_tests=summary.total_tests,
            total_passed=summary.total_passed,
            total_failed=summary.total_failed,
            tested_count=summary.tested_count,
            app_count=summary.app_count,
            apps_with_tests=[_app(r) for r in summary.apps_with_tests],
            apps_without_tests=[_app(r) for r in summary.apps_without_tests],
        )
