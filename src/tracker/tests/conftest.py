"""Shared fixtures and fake backends for release tracker tests."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Mapping

import pytest

from src.tracker.base import (
    AppChecks,
    AppRecord,
    E2ETestSummary,
    FetchResult,
    PersistenceBackend,
    RecordNotFoundError,
    ReleaseIntent,
    WriteResult,
)
from src.tracker.buffer import EditBuffer

# Short window so scheduler tests run quickly
QUIET = 0.05

TEST_TIME = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def make_record(record_id: int = 1, **overrides) -> AppRecord:
    fields = {
        "id": record_id,
        "name": f"App {record_id}",
        "slug": f"app-{record_id}",
        "emoji": "📱",
        "release_intent": ReleaseIntent.HOLD,
        "checks": AppChecks(),
        "updated_at": TEST_TIME,
    }
    fields.update(overrides)
    return AppRecord(**fields)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------


class RecordingBackend(PersistenceBackend):
    """In-memory backend that records every batch it is asked to write.

    Attributes:
        stored:     Last written value per id.
        batches:    Every batch passed to write_batch, in order.
        errors:     Exceptions raised by the next writes, consumed front first.
        gate:       When set, writes block until the event is set.
        started:    Set as soon as a write begins.
        missing:    When True, fetch_all raises RecordNotFoundError.
        max_active: Highest number of writes seen running at once.
    """

    NAME = "recording"

    def __init__(self, records: list[AppRecord] | None = None) -> None:
        self.stored: dict[int, AppRecord] = {r.id: r for r in records or []}
        self.batches: list[dict[int, AppRecord]] = []
        self.versions_seen: list[str | None] = []
        self.errors: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.missing = False
        self.closed = False
        self.active = 0
        self.max_active = 0
        self._counter = 0

    async def fetch_all(self) -> FetchResult:
        if self.missing:
            raise RecordNotFoundError("nothing stored")
        return FetchResult(records=list(self.stored.values()), version=f"sha{self._counter}")

    async def write_batch(
        self,
        batch: Mapping[int, AppRecord],
        snapshot: list[AppRecord],
        version: str | None,
    ) -> WriteResult:
        self.batches.append(dict(batch))
        self.versions_seen.append(version)
        self.started.set()
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
        finally:
            self.active -= 1
        if self.errors:
            raise self.errors.pop(0)

        self._counter += 1
        record_versions: dict[int, str | None] = {}
        for record_id, record in batch.items():
            token = f"r{self._counter}"
            self.stored[record_id] = record.with_changes(version=token)
            record_versions[record_id] = token
        return WriteResult(collection_version=f"sha{self._counter}", record_versions=record_versions)

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def records() -> list[AppRecord]:
    return [
        make_record(1, name="Focus Timer", slug="focus-timer"),
        make_record(
            2,
            name="Habit Grid",
            slug="habit-grid",
            release_intent=ReleaseIntent.READY,
            checks=AppChecks(launch=True, main_feature=True, ui=True, crash_free=True),
        ),
        make_record(3, name="Tide Clock", slug="tide-clock", release_intent=ReleaseIntent.NEEDS_FIX),
    ]


@pytest.fixture
def buffer(records: list[AppRecord]) -> EditBuffer:
    buf = EditBuffer()
    buf.load(records, version="sha0")
    return buf


@pytest.fixture
def backend(records: list[AppRecord]) -> RecordingBackend:
    return RecordingBackend(records)


@pytest.fixture
def apps_document() -> dict:
    """A published apps.json in the camelCase document shape."""
    return {
        "version": 1,
        "lastUpdated": "2026-02-23T09:00:00Z",
        "generatedBy": "ci",
        "apps": [
            {
                "id": 1,
                "name": "Focus Timer",
                "slug": "focus-timer",
                "emoji": "⏱️",
                "releaseIntent": "needs-fix",
                "fixNotes": "Crash on rotate",
                "testNotes": "",
                "checks": {"launch": True, "mainFeature": False, "ui": True, "crashFree": False},
                "githubUrl": "https://github.com/example/focus-timer",
                "lastUpdated": "2026-02-22T18:30:00Z",
                "e2eTests": {
                    "passed": 10,
                    "failed": 2,
                    "total": 12,
                    "lastRun": "2026-02-23T08:00:00Z",
                    "status": "failed",
                    "githubResultsUrl": "https://github.com/example/focus-timer/actions/runs/1",
                },
                "storeCategory": "productivity",
            },
            {
                "id": 2,
                "name": "Habit Grid",
                "slug": "habit-grid",
                "emoji": "✅",
                "releaseIntent": "ready",
                "checks": {"launch": True, "mainFeature": True, "ui": True, "crashFree": True},
                "e2eTests": {"passed": 8, "failed": 0, "total": 8, "lastRun": "2026-02-23T08:05:00Z", "status": "passed"},
            },
            {
                "id": 3,
                "name": "Tide Clock",
                "slug": "tide-clock",
                "emoji": "🌊",
                "releaseIntent": "hold",
            },
        ],
    }


@pytest.fixture
def apps_json_path(tmp_path: Path, apps_document: dict) -> Path:
    path = tmp_path / "apps.json"
    path.write_text(json.dumps(apps_document), encoding="utf-8")
    return path


@pytest.fixture
def e2e_record() -> AppRecord:
    return make_record(
        9,
        e2e_tests=E2ETestSummary(passed=3, failed=1, total=4, status="failed"),
    )
