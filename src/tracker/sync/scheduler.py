"""Debounced sync scheduler for the edit buffer.

Coordinates the save cycle:
1. An edit arms a quiescence timer (re-armed on every further edit)
2. The timer fires and the pending set is drained as one batch
3. The batch is written through the persistence backend
4. Bookkeeping (version tokens, confirmed timestamps) is reconciled back
5. On failure the batch is requeued and waits for the next window

States:
    idle     : nothing pending, no timer
    armed    : edits pending, timer running
    flushing : a batch is being written; new edits go to a fresh pending set
    succeeded: the last flush was written (transient, per cycle)
    failed   : the last flush was requeued (transient, per cycle)

Only the timer is ever cancelled.  A flush in flight always runs to
completion so a write is never submitted twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterator

from src.tracker.base import (
    AppRecord,
    ConflictError,
    PersistenceBackend,
    TransientError,
    WriteResult,
    utc_now,
)
from src.tracker.buffer import EditBuffer

logger = logging.getLogger("releaseboard.tracker.sync.scheduler")

DEFAULT_QUIESCENCE_SECONDS = 2.0


class SyncState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    FLUSHING = "flushing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusEvent:
    """One state transition published to subscribers.

    Attributes:
        state:   New scheduler state.
        pending: Unsaved edit count at the time of the transition.
        at:      UTC timestamp of the transition.
        error:   Error message for ``failed`` transitions.
    """

    state: SyncState
    pending: int
    at: datetime = field(default_factory=utc_now)
    error: str | None = None


@dataclass
class SyncStatus:
    """Point-in-time view of the scheduler for the presentation layer.

    Attributes:
        state:           Current state.
        pending:         Number of records with unsaved edits.
        in_flight:       Number of records in the batch being written.
        last_flush_at:   UTC timestamp of the last successful flush.
        last_error:      Message from the most recent failed flush.
        flushes:         Successful flush count.
        failures:        Failed flush count (conflicts included).
        conflicts:       Flushes rejected for a stale version token.
    """

    state: SyncState
    pending: int
    in_flight: int = 0
    last_flush_at: datetime | None = None
    last_error: str | None = None
    flushes: int = 0
    failures: int = 0
    conflicts: int = 0

    @property
    def has_unsaved_changes(self) -> bool:
        return self.pending > 0 or self.in_flight > 0

    @property
    def saving(self) -> bool:
        return self.state == SyncState.FLUSHING


class SyncScheduler:
    """Flush buffered edits after a window of inactivity.

    The scheduler runs on a single event loop.  ``notify_edit`` is called
    synchronously by the buffer on every edit and never blocks; the write
    itself runs in a background task.

    Usage::

        buffer = EditBuffer()
        scheduler = SyncScheduler(buffer, backend, quiescence_seconds=2.0)
        buffer.update(1, lambda r: r.with_changes(test_notes="ok"))
        # ... two seconds later the edit is written
        await scheduler.close()
    """

    def __init__(
        self,
        buffer: EditBuffer,
        backend: PersistenceBackend,
        quiescence_seconds: float = DEFAULT_QUIESCENCE_SECONDS,
    ) -> None:
        """Initialize the scheduler and subscribe to buffer edits.

        Args:
            buffer:             Edit buffer to drain.
            backend:            Persistence collaborator.
            quiescence_seconds: Inactivity window before a flush.
        """
        if quiescence_seconds < 0:
            raise ValueError("quiescence_seconds must be >= 0")
        self._buffer = buffer
        self._backend = backend
        self._quiescence = quiescence_seconds
        self._state = SyncState.IDLE
        self._timer: asyncio.TimerHandle | None = None
        self._flush_tasks: set[asyncio.Task] = set()
        # Held across drain and write so at most one flush touches the store
        self._flush_lock = asyncio.Lock()
        self._in_flight = 0
        self._last_flush_at: datetime | None = None
        self._last_error: str | None = None
        self._flushes = 0
        self._failures = 0
        self._conflicts = 0
        self._subscribers: set[asyncio.Queue[StatusEvent]] = set()
        self._closed = False
        buffer.set_listener(self.notify_edit)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def quiescence_seconds(self) -> float:
        return self._quiescence

    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state,
            pending=self._buffer.pending_count,
            in_flight=self._in_flight,
            last_flush_at=self._last_flush_at,
            last_error=self._last_error,
            flushes=self._flushes,
            failures=self._failures,
            conflicts=self._conflicts,
        )

    async def status_changes(self) -> AsyncIterator[StatusEvent]:
        """Yield every state transition from now on.

        Each subscriber gets its own queue; closing the iterator
        unsubscribes.  The iterator ends when the scheduler is closed.
        """
        queue: asyncio.Queue[StatusEvent] = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            while True:
                event = await queue.get()
                if event is _CLOSED:
                    return
                yield event
        finally:
            self._subscribers.discard(queue)

    # ------------------------------------------------------------------
    # Edit notifications
    # ------------------------------------------------------------------

    def notify_edit(self, record_id: int) -> None:
        """Called by the buffer after every edit.

        While a flush is in flight the edit simply waits in the fresh pending
        set; the timer is armed again when the flush completes.
        """
        if self._closed:
            logger.warning("Edit to app %s after scheduler close; not scheduled", record_id)
            return
        if self._state == SyncState.FLUSHING:
            logger.debug("Edit to app %s queued behind in-flight flush", record_id)
            return
        self._arm()

    def _arm(self) -> None:
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._quiescence, self._on_timer)
        if self._state != SyncState.ARMED:
            self._set_state(SyncState.ARMED)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        self._start_flush()

    def _start_flush(self) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    async def flush_now(self) -> SyncStatus:
        """Write pending edits immediately, skipping the quiescence window.

        Queues behind an in-flight flush, so two writes never overlap.  The
        flush itself is shielded: a cancelled caller does not abort a write.
        """
        self._cancel_timer()
        await asyncio.shield(self._start_flush())
        return self.status()

    async def _flush(self) -> None:
        async with self._flush_lock:
            await self._flush_locked()

    async def _flush_locked(self) -> None:
        # A flush started by the timer or by flush_now covers everything pending
        self._cancel_timer()
        batch = self._buffer.drain_pending()
        if not batch:
            if not self._closed and self._state != SyncState.IDLE:
                self._set_state(SyncState.IDLE)
            return

        snapshot = self._buffer.records()
        version = self._buffer.collection_version
        self._in_flight = len(batch)
        self._set_state(SyncState.FLUSHING)
        logger.info("Flushing %d app(s) via %s", len(batch), self._backend.NAME)

        try:
            result = await self._backend.write_batch(batch, snapshot, version)
        except ConflictError as exc:
            self._conflicts += 1
            self._handle_failure(batch, exc)
        except TransientError as exc:
            self._handle_failure(batch, exc)
        except Exception as exc:
            logger.exception("Unexpected error during flush")
            self._handle_failure(batch, exc)
        else:
            self._handle_result(batch, result)
        finally:
            self._in_flight = 0

        if self._closed:
            return
        if self._buffer.has_pending:
            self._arm()
        else:
            self._set_state(SyncState.IDLE)

    def _handle_result(self, batch: dict[int, AppRecord], result: WriteResult) -> None:
        confirmed_at = utc_now()
        self._buffer.set_collection_version(result.collection_version)
        for record_id, record_version in result.record_versions.items():
            self._buffer.reconcile(record_id, record_version, confirmed_at)

        if not result.ok:
            failed_batch = {rid: batch[rid] for rid in result.failed if rid in batch}
            self._conflicts += sum(
                1 for exc in result.failed.values() if isinstance(exc, ConflictError)
            )
            first = next(iter(result.failed.values()))
            self._handle_failure(failed_batch, first)
            return

        self._flushes += 1
        self._last_flush_at = confirmed_at
        self._last_error = None
        logger.info("Flush complete: %d app(s) saved", len(batch))
        self._set_state(SyncState.SUCCEEDED)

    def _handle_failure(self, batch: dict[int, AppRecord], exc: Exception) -> None:
        self._failures += 1
        self._last_error = str(exc) or exc.__class__.__name__
        requeued = self._buffer.requeue(batch)
        logger.warning(
            "Flush failed (%s): %s. Requeued %d of %d app(s)",
            exc.__class__.__name__, exc, requeued, len(batch),
        )
        self._set_state(SyncState.FAILED, error=self._last_error)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait_for_flush(self) -> None:
        """Cancel the timer and wait for an in-flight flush to finish.

        A failed flush re-arms the timer; that is cancelled too.  Call
        ``refresh_state`` afterwards to resume scheduling.
        """
        self._cancel_timer()
        while True:
            running = [task for task in self._flush_tasks if not task.done()]
            if not running:
                break
            # asyncio.wait never cancels the tasks it waits on
            await asyncio.wait(running)
        self._cancel_timer()

    def refresh_state(self) -> None:
        """Re-derive the state from the buffer after an external load."""
        if self._closed or self._state == SyncState.FLUSHING:
            return
        if self._buffer.has_pending:
            self._arm()
        else:
            self._cancel_timer()
            if self._state != SyncState.IDLE:
                self._set_state(SyncState.IDLE)

    async def close(self) -> None:
        """Cancel the timer and wait for an in-flight flush to finish."""
        await self.wait_for_flush()
        self._closed = True
        self._cancel_timer()
        for queue in list(self._subscribers):
            queue.put_nowait(_CLOSED)
        logger.info("Sync scheduler closed (%d unsaved)", self._buffer.pending_count)

    def _set_state(self, state: SyncState, error: str | None = None) -> None:
        self._state = state
        event = StatusEvent(state=state, pending=self._buffer.pending_count, error=error)
        logger.debug("Sync state → %s (pending=%d)", state.value, event.pending)
        for queue in list(self._subscribers):
            queue.put_nowait(event)


# Sentinel pushed to subscriber queues on close
_CLOSED = StatusEvent(state=SyncState.IDLE, pending=0)
