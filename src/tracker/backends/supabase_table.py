"""Table-backed store: one row per app in a Supabase Postgres table.

Row shape (snake_case, flat checks)::

    id, name, slug, emoji, bundle_id, github_url, testflight_url, appstore_url,
    release_intent, fix_notes, test_notes,
    check_launch, check_main_feature, check_ui, check_crash_free,
    created_at, updated_at

The row's ``updated_at`` is the per-record version token.  Each write is an
upsert guarded by ``updated_at IS NOT DISTINCT FROM <token>``; when the guard
fails no row comes back and the write is reported as a conflict.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Mapping

import asyncpg

from src.services.supabase import Database
from src.tracker.base import (
    AppChecks,
    AppRecord,
    ConflictError,
    FetchResult,
    RecordValidationError,
    ReleaseIntent,
    RowBackend,
    TransientError,
)

logger = logging.getLogger("releaseboard.tracker.backends.supabase")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Connection-level failures worth retrying on the next cycle
_TRANSIENT_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


def row_to_record(row: Mapping[str, Any]) -> AppRecord:
    """Map a table row to the canonical record.

    Raises:
        RecordValidationError: Missing columns or an unknown release intent.
    """
    try:
        updated_at = row.get("updated_at")
        return AppRecord(
            id=int(row["id"]),
            name=row["name"],
            slug=row["slug"],
            emoji=row.get("emoji") or "",
            bundle_id=row.get("bundle_id"),
            github_url=row.get("github_url"),
            testflight_url=row.get("testflight_url"),
            appstore_url=row.get("appstore_url"),
            release_intent=ReleaseIntent(row.get("release_intent") or ReleaseIntent.HOLD.value),
            checks=AppChecks(
                launch=bool(row.get("check_launch")),
                main_feature=bool(row.get("check_main_feature")),
                ui=bool(row.get("check_ui")),
                crash_free=bool(row.get("check_crash_free")),
            ),
            fix_notes=row.get("fix_notes") or "",
            test_notes=row.get("test_notes") or "",
            updated_at=updated_at,
            version=version_token(updated_at),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise RecordValidationError(f"Malformed app row {dict(row)!r}: {exc}") from exc


def version_token(updated_at: datetime | None) -> str | None:
    return updated_at.isoformat() if updated_at is not None else None


def parse_version_token(token: str | None) -> datetime | None:
    return datetime.fromisoformat(token) if token else None


class SupabaseTableBackend(RowBackend):
    """Per-row upserts into the ``apps`` table."""

    NAME = "supabase"

    def __init__(self, db: Database, table: str = "apps") -> None:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name {table!r}")
        self._db = db
        self._table = table

    async def fetch_all(self) -> FetchResult:
        try:
            rows = await self._db.fetch(f"SELECT * FROM {self._table} ORDER BY id")
        except _TRANSIENT_ERRORS as exc:
            raise TransientError(f"Failed to fetch apps: {exc}") from exc

        records = [row_to_record(row) for row in rows]
        logger.info("Fetched %d apps from table %s", len(records), self._table)
        return FetchResult(records=records, version=None)

    async def write_one(self, record: AppRecord) -> str | None:
        query = f"""
            INSERT INTO {self._table} (
                id, name, slug, emoji, bundle_id, github_url, testflight_url, appstore_url,
                release_intent, fix_notes, test_notes,
                check_launch, check_main_feature, check_ui, check_crash_free, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, NOW())
            ON CONFLICT (id) DO UPDATE SET
                release_intent = EXCLUDED.release_intent,
                fix_notes = EXCLUDED.fix_notes,
                test_notes = EXCLUDED.test_notes,
                check_launch = EXCLUDED.check_launch,
                check_main_feature = EXCLUDED.check_main_feature,
                check_ui = EXCLUDED.check_ui,
                check_crash_free = EXCLUDED.check_crash_free,
                updated_at = NOW()
            WHERE {self._table}.updated_at IS NOT DISTINCT FROM $16
            RETURNING updated_at
        """
        try:
            stored_at = await self._db.fetchval(
                query,
                record.id,
                record.name,
                record.slug,
                record.emoji,
                record.bundle_id,
                record.github_url,
                record.testflight_url,
                record.appstore_url,
                record.release_intent.value,
                record.fix_notes,
                record.test_notes,
                record.checks.launch,
                record.checks.main_feature,
                record.checks.ui,
                record.checks.crash_free,
                parse_version_token(record.version),
            )
        except _TRANSIENT_ERRORS as exc:
            raise TransientError(f"Failed to write app {record.id}: {exc}") from exc

        if stored_at is None:
            raise ConflictError(
                f"App {record.id} was changed by another writer (expected version {record.version})"
            )
        logger.debug("Wrote app %s (updated_at=%s)", record.id, stored_at)
        return version_token(stored_at)

    async def close(self) -> None:
        await self._db.close()
