"""File-backed store: ``apps.json`` in a GitHub repository.

Document shape (camelCase, nested checks)::

    {
      "version": 1,
      "lastUpdated": "2026-02-23T09:00:00.000Z",
      "apps": [
        {
          "id": 1, "name": "Focus Timer", "slug": "focus-timer", "emoji": "⏱️",
          "releaseIntent": "needs-fix", "fixNotes": "", "testNotes": "",
          "checks": {"launch": true, "mainFeature": false, "ui": true, "crashFree": true},
          "githubUrl": "...", "testflightUrl": "...", "appStoreUrl": "...",
          "lastUpdated": "...",
          "e2eTests": {"passed": 12, "failed": 0, "total": 12, "lastRun": "...", "status": "passed"}
        }
      ]
    }

Every write replaces the whole file.  Keys this service does not model (for
example fields written by CI) are kept from the last fetch and written back.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.services.github import GitHubContentsClient
from src.tracker.base import (
    AppChecks,
    AppRecord,
    CollectionBackend,
    E2ETestSummary,
    FetchResult,
    RecordValidationError,
    ReleaseIntent,
    utc_now,
)

logger = logging.getLogger("releaseboard.tracker.backends.github")

DOCUMENT_VERSION = 1


# ---------------------------------------------------------------------------
# Document schema
# ---------------------------------------------------------------------------


class _DocModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class DocChecks(_DocModel):
    launch: bool = False
    main_feature: bool = Field(default=False, alias="mainFeature")
    ui: bool = False
    crash_free: bool = Field(default=False, alias="crashFree")


class DocE2ETests(_DocModel):
    passed: int = 0
    failed: int = 0
    total: int = 0
    last_run: str | None = Field(default=None, alias="lastRun")
    status: str = "pending"
    github_results_url: str | None = Field(default=None, alias="githubResultsUrl")


class DocApp(_DocModel):
    id: int
    name: str
    slug: str
    emoji: str = ""
    icon_url: str | None = Field(default=None, alias="iconUrl")
    bundle_id: str | None = Field(default=None, alias="bundleId")
    github_url: str | None = Field(default=None, alias="githubUrl")
    testflight_url: str | None = Field(default=None, alias="testflightUrl")
    app_store_url: str | None = Field(default=None, alias="appStoreUrl")
    release_intent: ReleaseIntent = Field(default=ReleaseIntent.HOLD, alias="releaseIntent")
    fix_notes: str | None = Field(default=None, alias="fixNotes")
    test_notes: str | None = Field(default=None, alias="testNotes")
    checks: DocChecks = Field(default_factory=DocChecks)
    last_updated: datetime | None = Field(default=None, alias="lastUpdated")
    e2e_tests: DocE2ETests | None = Field(default=None, alias="e2eTests")


class AppsDocument(_DocModel):
    version: int = DOCUMENT_VERSION
    last_updated: datetime | None = Field(default=None, alias="lastUpdated")
    apps: list[DocApp] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def parse_document(text: str) -> AppsDocument:
    """Parse ``apps.json`` text.

    Raises:
        RecordValidationError: Invalid JSON or an unexpected shape.
    """
    try:
        return AppsDocument.model_validate_json(text)
    except ValidationError as exc:
        raise RecordValidationError(f"apps.json has an invalid shape: {exc}") from exc


def doc_app_to_record(app: DocApp) -> AppRecord:
    e2e = None
    if app.e2e_tests is not None:
        e2e = E2ETestSummary(
            passed=app.e2e_tests.passed,
            failed=app.e2e_tests.failed,
            total=app.e2e_tests.total,
            last_run=app.e2e_tests.last_run,
            status=app.e2e_tests.status,
            results_url=app.e2e_tests.github_results_url,
        )
    return AppRecord(
        id=app.id,
        name=app.name,
        slug=app.slug,
        emoji=app.emoji,
        icon_url=app.icon_url,
        bundle_id=app.bundle_id,
        github_url=app.github_url,
        testflight_url=app.testflight_url,
        appstore_url=app.app_store_url,
        release_intent=app.release_intent,
        checks=AppChecks(
            launch=app.checks.launch,
            main_feature=app.checks.main_feature,
            ui=app.checks.ui,
            crash_free=app.checks.crash_free,
        ),
        fix_notes=app.fix_notes or "",
        test_notes=app.test_notes or "",
        updated_at=app.last_updated,
        e2e_tests=e2e,
    )


def record_to_doc_app(record: AppRecord, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    """Serialize a record in the document's camelCase shape.

    ``extra`` holds unmodelled keys from the last fetch; modelled keys win.
    """
    entry: dict[str, Any] = dict(extra or {})
    entry.update(
        {
            "id": record.id,
            "name": record.name,
            "slug": record.slug,
            "emoji": record.emoji,
            "releaseIntent": record.release_intent.value,
            "fixNotes": record.fix_notes,
            "testNotes": record.test_notes,
            "checks": {
                "launch": record.checks.launch,
                "mainFeature": record.checks.main_feature,
                "ui": record.checks.ui,
                "crashFree": record.checks.crash_free,
            },
        }
    )
    optional = {
        "iconUrl": record.icon_url,
        "bundleId": record.bundle_id,
        "githubUrl": record.github_url,
        "testflightUrl": record.testflight_url,
        "appStoreUrl": record.appstore_url,
    }
    entry.update({key: value for key, value in optional.items() if value is not None})
    if record.updated_at is not None:
        entry["lastUpdated"] = _iso(record.updated_at)
    if record.e2e_tests is not None:
        e2e = record.e2e_tests
        entry["e2eTests"] = {
            "passed": e2e.passed,
            "failed": e2e.failed,
            "total": e2e.total,
            "lastRun": e2e.last_run,
            "status": e2e.status,
        }
        if e2e.results_url:
            entry["e2eTests"]["githubResultsUrl"] = e2e.results_url
    return entry


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------


class GitHubFileBackend(CollectionBackend):
    """Whole-file store over the GitHub Contents API.

    The collection version token is the file's blob SHA.
    """

    NAME = "github"

    def __init__(self, client: GitHubContentsClient) -> None:
        self._client = client
        self._document_extra: dict[str, Any] = {}
        self._app_extra: dict[int, dict[str, Any]] = {}

    async def fetch_all(self) -> FetchResult:
        repo_file = await self._client.get_file()
        document = parse_document(repo_file.content)
        records = [doc_app_to_record(app) for app in document.apps]
        self._document_extra = dict(document.model_extra or {})
        self._app_extra = {
            app.id: _raw_extra(app) for app in document.apps if _raw_extra(app)
        }
        logger.info("Fetched %d apps from %s (sha=%s)", len(records), self._client.path, repo_file.sha)
        return FetchResult(records=records, version=repo_file.sha)

    def render(self, records: list[AppRecord]) -> str:
        """Render the full document as pretty-printed JSON."""
        document: dict[str, Any] = dict(self._document_extra)
        document.update(
            {
                "version": DOCUMENT_VERSION,
                "lastUpdated": _iso(utc_now()),
                "apps": [record_to_doc_app(r, self._app_extra.get(r.id)) for r in records],
            }
        )
        return json.dumps(document, indent=2, ensure_ascii=False) + "\n"

    async def write_all(
        self, records: list[AppRecord], previous_version: str | None
    ) -> str | None:
        content = self.render(records)
        message = f"Update {self._client.path} - {utc_now().strftime('%Y-%m-%d %H:%M:%S')} UTC"
        return await self._client.put_file(content, previous_version, message)

    async def close(self) -> None:
        await self._client.aclose()


def _raw_extra(model: BaseModel) -> dict[str, Any]:
    return dict(model.model_extra or {})
