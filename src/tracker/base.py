"""Canonical record model, error taxonomy, and persistence interface.

Every storage backend must subclass PersistenceBackend (through either
CollectionBackend or RowBackend) and translate its own wire shape into the
canonical AppRecord.  These types are the single source of truth consumed by
the edit buffer, the sync scheduler, and the API layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

logger = logging.getLogger("releaseboard.tracker")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TrackerError(Exception):
    """Base class for release tracker errors."""


class RecordNotFoundError(TrackerError, LookupError):
    """The requested record or collection does not exist."""


class ConflictError(TrackerError):
    """The store rejected a write because the version token is stale."""


class TransientError(TrackerError):
    """Network or service failure; the operation may succeed later."""


class RecordValidationError(TrackerError, ValueError):
    """A record or collection has a malformed shape."""


class UnsavedChangesError(TrackerError):
    """A reload was refused because local edits have not been saved."""


# ---------------------------------------------------------------------------
# Record model
# ---------------------------------------------------------------------------


class ReleaseIntent(str, Enum):
    READY = "ready"
    NEEDS_FIX = "needs-fix"
    HOLD = "hold"
    RELEASED = "released"


@dataclass(frozen=True)
class AppChecks:
    """The four manual QA checks for one app."""

    launch: bool = False
    main_feature: bool = False
    ui: bool = False
    crash_free: bool = False

    @property
    def all_passed(self) -> bool:
        return self.launch and self.main_feature and self.ui and self.crash_free


CHECK_NAMES: tuple[str, ...] = ("launch", "main_feature", "ui", "crash_free")


@dataclass(frozen=True)
class E2ETestSummary:
    """Latest e2e run for an app, as published by CI."""

    passed: int = 0
    failed: int = 0
    total: int = 0
    last_run: str | None = None
    status: str = "pending"  # passed | failed | pending
    results_url: str | None = None


@dataclass(frozen=True)
class AppRecord:
    """One tracked application.

    Records are immutable snapshots: every edit produces a new instance via
    ``with_changes``.  The buffer keeps whole snapshots, so two edits to the
    same app before a flush coalesce into the later snapshot.

    Attributes:
        id:             Stable identity, never changes after creation.
        name:           Display name.
        slug:           Short slug.
        emoji:          Icon shown next to the name.
        icon_url:       Optional icon image URL.
        bundle_id:      App bundle identifier.
        github_url:     Source repository link.
        testflight_url: TestFlight link.
        appstore_url:   App Store link.
        release_intent: Where the app stands for release.
        checks:         Manual QA checks.
        fix_notes:      What needs fixing (meaningful for needs-fix).
        test_notes:     Free-form test notes.
        updated_at:     Last-modified timestamp.
        version:        Per-record version token from a row store.
        e2e_tests:      Read-only e2e summary carried through from the file.
    """

    id: int
    name: str
    slug: str
    emoji: str = ""
    icon_url: str | None = None
    bundle_id: str | None = None
    github_url: str | None = None
    testflight_url: str | None = None
    appstore_url: str | None = None
    release_intent: ReleaseIntent = ReleaseIntent.HOLD
    checks: AppChecks = field(default_factory=AppChecks)
    fix_notes: str = ""
    test_notes: str = ""
    updated_at: datetime | None = None
    version: str | None = None
    e2e_tests: E2ETestSummary | None = None

    def with_changes(self, **changes: Any) -> "AppRecord":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


# Fields a user edit may touch.  Everything else is identity, pass-through,
# or bookkeeping.
MUTABLE_FIELDS: frozenset[str] = frozenset(
    {"release_intent", "checks", "fix_notes", "test_notes"} | set(CHECK_NAMES)
)


def apply_patch(record: AppRecord, patch: Mapping[str, Any]) -> AppRecord:
    """Apply a user patch to a record and stamp ``updated_at``.

    The patch may set any of the four checks by name, either directly
    (``{"launch": True}``) or as a partial ``checks`` mapping.

    Raises:
        RecordValidationError: If the patch names a non-editable field or
            carries a value of the wrong type.
    """
    unknown = set(patch) - MUTABLE_FIELDS
    if unknown:
        raise RecordValidationError(
            f"Fields not editable: {', '.join(sorted(unknown))}"
        )

    check_updates: dict[str, bool] = {}
    nested = patch.get("checks")
    if nested is not None:
        if isinstance(nested, AppChecks):
            nested = {name: getattr(nested, name) for name in CHECK_NAMES}
        if not isinstance(nested, Mapping):
            raise RecordValidationError("checks must be a mapping")
        check_updates.update(nested)
    for name in CHECK_NAMES:
        if name in patch:
            check_updates[name] = patch[name]

    for name, value in check_updates.items():
        if name not in CHECK_NAMES:
            raise RecordValidationError(f"Unknown check '{name}'")
        if not isinstance(value, bool):
            raise RecordValidationError(f"Check '{name}' must be a boolean")

    changes: dict[str, Any] = {}
    if check_updates:
        changes["checks"] = replace(record.checks, **check_updates)
    if "release_intent" in patch:
        try:
            changes["release_intent"] = ReleaseIntent(patch["release_intent"])
        except ValueError as exc:
            raise RecordValidationError(
                f"Invalid release intent {patch['release_intent']!r}"
            ) from exc
    for note in ("fix_notes", "test_notes"):
        if note in patch:
            value = patch[note]
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise RecordValidationError(f"{note} must be a string")
            changes[note] = value

    changes["updated_at"] = utc_now()
    return record.with_changes(**changes)


# ---------------------------------------------------------------------------
# Persistence results
# ---------------------------------------------------------------------------


@dataclass
class FetchResult:
    """Full collection read from a store.

    Attributes:
        records: Every record in the store, in store order.
        version: Collection-level version token (file SHA), or None.
    """

    records: list[AppRecord]
    version: str | None = None


@dataclass
class WriteResult:
    """Outcome of one flush against a store.

    Attributes:
        collection_version: New collection-level token, or None for row stores.
        record_versions:    New per-record tokens for records written.
        failed:             Per-record errors for ids that were not written.
    """

    collection_version: str | None = None
    record_versions: dict[int, str | None] = field(default_factory=dict)
    failed: dict[int, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


# ---------------------------------------------------------------------------
# Abstract persistence backends
# ---------------------------------------------------------------------------


class PersistenceBackend(ABC):
    """Storage collaborator consumed by the sync core.

    The scheduler hands a backend one drained batch and gets back success,
    partial failure, or an exception.  Whether the store is file- or
    row-granular is hidden behind ``write_batch``.
    """

    NAME: str = "base"

    @abstractmethod
    async def fetch_all(self) -> FetchResult:
        """Read the whole collection.

        Raises:
            RecordNotFoundError:   The collection does not exist yet.
            RecordValidationError: The stored document is malformed.
            TransientError:        Network or service failure.
        """

    @abstractmethod
    async def write_batch(
        self,
        batch: Mapping[int, AppRecord],
        snapshot: list[AppRecord],
        version: str | None,
    ) -> WriteResult:
        """Persist a drained batch of edits.

        Args:
            batch:    Pending records keyed by id.
            snapshot: The whole visible collection taken at drain time.
            version:  Collection version token known at drain time.

        Raises:
            ConflictError:  The store rejected a stale version token.
            TransientError: Network or service failure.
        """

    async def close(self) -> None:
        """Release network resources."""


class CollectionBackend(PersistenceBackend):
    """Store that replaces the whole collection on every write."""

    @abstractmethod
    async def write_all(
        self, records: list[AppRecord], previous_version: str | None
    ) -> str | None:
        """Replace the stored collection and return the new version token."""

    async def write_batch(
        self,
        batch: Mapping[int, AppRecord],
        snapshot: list[AppRecord],
        version: str | None,
    ) -> WriteResult:
        new_version = await self.write_all(snapshot, version)
        return WriteResult(
            collection_version=new_version,
            record_versions={record_id: None for record_id in batch},
        )


class RowBackend(PersistenceBackend):
    """Store that upserts one record at a time."""

    @abstractmethod
    async def write_one(self, record: AppRecord) -> str | None:
        """Upsert one record and return its new version token."""

    async def write_batch(
        self,
        batch: Mapping[int, AppRecord],
        snapshot: list[AppRecord],
        version: str | None,
    ) -> WriteResult:
        result = WriteResult()
        for record_id, record in batch.items():
            try:
                result.record_versions[record_id] = await self.write_one(record)
            except (ConflictError, TransientError) as exc:
                logger.warning("%s: write failed for app %s: %s", self.NAME, record_id, exc)
                result.failed[record_id] = exc
        return result
