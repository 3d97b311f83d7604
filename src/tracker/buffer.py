"""In-memory edit buffer: the visible collection plus unsaved edits.

The buffer is the only place records are mutated.  Every edit is applied
optimistically to the visible collection and recorded as a whole-record
snapshot in the pending set, keyed by id.  The sync scheduler drains the
pending set, writes it, and reconciles bookkeeping back.

All operations are synchronous and run on the event loop thread, so a drain
is atomic with respect to edits: an edit either lands before the drain (and is
in the batch) or after it (and is in the next batch).
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Mapping

from src.tracker.base import AppRecord, RecordNotFoundError, RecordValidationError

logger = logging.getLogger("releaseboard.tracker.buffer")


class EditBuffer:
    """Record collection with a pending set of unsaved edits.

    Usage::

        buffer = EditBuffer(on_dirty=scheduler.notify_edit)
        buffer.load(records, version=sha)
        buffer.update(3, lambda r: r.with_changes(test_notes="ok"))
        batch = buffer.drain_pending()
    """

    def __init__(self, on_dirty: Callable[[int], None] | None = None) -> None:
        self._records: dict[int, AppRecord] = {}
        self._pending: dict[int, AppRecord] = {}
        self._collection_version: str | None = None
        self._on_dirty = on_dirty

    def set_listener(self, on_dirty: Callable[[int], None] | None) -> None:
        self._on_dirty = on_dirty

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, record_id: int) -> AppRecord:
        try:
            return self._records[record_id]
        except KeyError:
            raise RecordNotFoundError(f"App {record_id} not found") from None

    def records(self) -> list[AppRecord]:
        """Return the visible collection in load order."""
        return list(self._records.values())

    def pending_ids(self) -> list[int]:
        return list(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    @property
    def collection_version(self) -> str | None:
        return self._collection_version

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def load(self, records: Iterable[AppRecord], version: str | None = None) -> None:
        """Replace the collection after a full fetch and clear pending edits.

        Raises:
            RecordValidationError: If two records share an id.  The previous
                collection is kept unchanged.
        """
        loaded: dict[int, AppRecord] = {}
        for record in records:
            if record.id in loaded:
                raise RecordValidationError(f"Duplicate app id {record.id}")
            loaded[record.id] = record

        discarded = len(self._pending)
        self._records = loaded
        self._pending = {}
        self._collection_version = version
        if discarded:
            logger.warning("Load discarded %d unsaved edit(s)", discarded)
        logger.info("Loaded %d apps (version=%s)", len(loaded), version)

    def update(
        self, record_id: int, mutator: Callable[[AppRecord], AppRecord]
    ) -> AppRecord:
        """Apply ``mutator`` to a record and mark it pending.

        Raises:
            RecordNotFoundError:   No record with this id.
            RecordValidationError: The mutator changed the record's identity.
        """
        current = self.get(record_id)
        updated = mutator(current)
        if updated.id != record_id:
            raise RecordValidationError(
                f"Edit changed app identity {record_id} -> {updated.id}"
            )
        self._records[record_id] = updated
        self._pending[record_id] = updated
        self._notify(record_id)
        return updated

    def add(self, record: AppRecord) -> AppRecord:
        """Add a new, already-identified record and mark it pending."""
        if record.id in self._records:
            raise RecordValidationError(f"App {record.id} already exists")
        self._records[record.id] = record
        self._pending[record.id] = record
        self._notify(record.id)
        return record

    def drain_pending(self) -> dict[int, AppRecord]:
        """Return the pending set and start a fresh one."""
        batch, self._pending = self._pending, {}
        return batch

    def requeue(self, batch: Mapping[int, AppRecord]) -> int:
        """Return a failed batch to the pending set.

        Ids edited again since the drain already hold a newer snapshot and
        are left alone.  Requeued snapshots take the latest known version
        token from the visible record.

        Returns:
            Number of records requeued.
        """
        requeued = 0
        for record_id, record in batch.items():
            if record_id in self._pending:
                continue
            visible = self._records.get(record_id)
            if visible is None:
                # Dropped by a reload while the flush was in flight.
                continue
            if visible.version != record.version:
                record = record.with_changes(version=visible.version)
            self._pending[record_id] = record
            requeued += 1
        return requeued

    def reconcile(
        self,
        record_id: int,
        version: str | None,
        confirmed_at: datetime | None = None,
    ) -> bool:
        """Merge bookkeeping from a successful write.

        The version token goes onto the visible record and onto any newer
        pending snapshot, so the next write carries it.  The confirmed
        timestamp is only applied when no newer edit is pending.  Mutable
        values are never touched.

        Args:
            record_id:    Id of the written record.
            version:      Token returned by the store (None to keep).
            confirmed_at: Timestamp confirmed by the store.

        Returns:
            True if the visible record was updated.
        """
        visible = self._records.get(record_id)
        if visible is None:
            return False

        pending = self._pending.get(record_id)
        superseded = pending is not None
        changes: dict = {}
        if version is not None and version != visible.version:
            changes["version"] = version
        if confirmed_at is not None and not superseded:
            changes["updated_at"] = confirmed_at
        if not changes:
            return False

        self._records[record_id] = visible.with_changes(**changes)
        if pending is not None and "version" in changes:
            self._pending[record_id] = pending.with_changes(version=version)
        return True

    def set_collection_version(self, version: str | None) -> None:
        if version is not None:
            self._collection_version = version

    def clear(self) -> None:
        """Discard the collection and every pending edit."""
        self._records = {}
        self._pending = {}
        self._collection_version = None

    def _notify(self, record_id: int) -> None:
        if self._on_dirty is not None:
            self._on_dirty(record_id)
