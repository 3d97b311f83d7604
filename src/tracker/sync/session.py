"""Sync session: the explicit context that owns a buffer and its scheduler.

One session exists per running application.  It is created at startup with
a configured backend, loads the collection, accepts edits, and on teardown
flushes what it can, closes the backend, and discards in-memory state.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Mapping

from src.tracker.base import (
    AppRecord,
    PersistenceBackend,
    RecordNotFoundError,
    UnsavedChangesError,
    apply_patch,
)
from src.tracker.buffer import EditBuffer
from src.tracker.sync.scheduler import (
    DEFAULT_QUIESCENCE_SECONDS,
    StatusEvent,
    SyncScheduler,
    SyncStatus,
)

logger = logging.getLogger("releaseboard.tracker.sync.session")


class SyncSession:
    """Edit-and-sync façade used by the API layer.

    Usage::

        session = SyncSession(GitHubFileBackend(client))
        await session.start()
        session.submit_edit(3, {"launch": True})
        async for event in session.status_changes():
            ...
        await session.close()
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        quiescence_seconds: float = DEFAULT_QUIESCENCE_SECONDS,
    ) -> None:
        self._backend = backend
        self._buffer = EditBuffer()
        self._scheduler = SyncScheduler(self._buffer, backend, quiescence_seconds)
        self._started = False

    @property
    def backend(self) -> PersistenceBackend:
        return self._backend

    @property
    def buffer(self) -> EditBuffer:
        return self._buffer

    @property
    def scheduler(self) -> SyncScheduler:
        return self._scheduler

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> int:
        """Fetch the collection and load it into the buffer.

        A collection that does not exist yet starts empty; the first flush
        creates it.

        Returns:
            Number of apps loaded.
        """
        try:
            fetched = await self._backend.fetch_all()
        except RecordNotFoundError:
            logger.warning("%s: no stored collection, starting empty", self._backend.NAME)
            self._buffer.load([], version=None)
        else:
            self._buffer.load(fetched.records, version=fetched.version)
        self._started = True
        return len(self._buffer)

    async def reload(self, force: bool = False) -> int:
        """Refetch the collection, replacing the in-memory state.

        A malformed document raises and leaves the current state untouched.

        Raises:
            UnsavedChangesError: Edits are pending and ``force`` is False.
        """
        status = self._scheduler.status()
        if status.has_unsaved_changes and not force:
            raise UnsavedChangesError(
                f"{status.pending + status.in_flight} unsaved edit(s); flush first or force"
            )
        if force:
            # Never replace the collection under a write in flight.
            await self._scheduler.wait_for_flush()
        try:
            fetched = await self._backend.fetch_all()
            # Edits may have arrived while the fetch was awaited
            status = self._scheduler.status()
            if status.has_unsaved_changes and not force:
                raise UnsavedChangesError(
                    f"{status.pending + status.in_flight} edit(s) made during reload; flush first or force"
                )
            if force:
                await self._scheduler.wait_for_flush()
            self._buffer.load(fetched.records, version=fetched.version)
        finally:
            self._scheduler.refresh_state()
        return len(self._buffer)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def get(self, record_id: int) -> AppRecord:
        return self._buffer.get(record_id)

    def records(self) -> list[AppRecord]:
        return self._buffer.records()

    def submit_edit(self, record_id: int, patch: Mapping[str, Any]) -> AppRecord:
        """Apply a patch to one app and schedule it for saving.

        Returns immediately with the updated record; the write happens after
        the quiescence window.
        """
        record = self._buffer.update(record_id, lambda current: apply_patch(current, patch))
        logger.debug("Edit to app %s: %s", record_id, sorted(patch))
        return record

    def add_record(self, record: AppRecord) -> AppRecord:
        added = self._buffer.add(record)
        logger.info("Added app %s (%s)", record.id, record.slug)
        return added

    # ------------------------------------------------------------------
    # Sync status
    # ------------------------------------------------------------------

    def status(self) -> SyncStatus:
        return self._scheduler.status()

    def status_changes(self) -> AsyncIterator[StatusEvent]:
        return self._scheduler.status_changes()

    async def flush_now(self) -> SyncStatus:
        return await self._scheduler.flush_now()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self, flush: bool = True) -> None:
        """Flush (best effort), close the scheduler and backend, drop state."""
        if flush and self._started and self._buffer.has_pending:
            status = await self._scheduler.flush_now()
            if status.pending:
                logger.warning("Discarding %d unsaved edit(s) at shutdown", status.pending)
        await self._scheduler.close()
        await self._backend.close()
        self._buffer.clear()
        self._started = False
        logger.info("Sync session closed")
