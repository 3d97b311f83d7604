"""Tests for the sync session lifecycle."""

from __future__ import annotations

import asyncio

import pytest

from src.tracker.base import (
    RecordNotFoundError,
    RecordValidationError,
    TransientError,
    UnsavedChangesError,
)
from src.tracker.sync.scheduler import SyncState
from src.tracker.sync.session import SyncSession
from src.tracker.tests.conftest import QUIET, RecordingBackend, make_record, wait_until


@pytest.fixture
def session(backend: RecordingBackend) -> SyncSession:
    return SyncSession(backend, quiescence_seconds=QUIET)


class TestStart:
    @pytest.mark.asyncio
    async def test_start_loads_collection(self, session: SyncSession) -> None:
        assert await session.start() == 3
        assert session.started
        assert [r.name for r in session.records()] == ["Focus Timer", "Habit Grid", "Tide Clock"]
        assert session.buffer.collection_version == "sha0"

    @pytest.mark.asyncio
    async def test_missing_collection_starts_empty(self) -> None:
        backend = RecordingBackend()
        backend.missing = True
        session = SyncSession(backend, quiescence_seconds=QUIET)
        assert await session.start() == 0
        assert session.started
        assert session.buffer.collection_version is None

    @pytest.mark.asyncio
    async def test_transient_error_propagates(self, backend: RecordingBackend) -> None:
        async def unavailable():
            raise TransientError("github down")

        backend.fetch_all = unavailable
        session = SyncSession(backend)
        with pytest.raises(TransientError):
            await session.start()
        assert not session.started


class TestEdits:
    @pytest.mark.asyncio
    async def test_submit_edit_is_visible_then_saved(
        self, session: SyncSession, backend: RecordingBackend
    ) -> None:
        await session.start()
        record = session.submit_edit(3, {"release_intent": "ready", "crash_free": True})

        assert session.get(3) is record
        assert session.status().pending == 1

        await wait_until(lambda: session.status().state == SyncState.IDLE)
        assert backend.stored[3].checks.crash_free is True
        assert session.status().pending == 0

    @pytest.mark.asyncio
    async def test_invalid_patch_leaves_record_unchanged(self, session: SyncSession) -> None:
        await session.start()
        before = session.get(1)
        with pytest.raises(RecordValidationError):
            session.submit_edit(1, {"slug": "other"})
        assert session.get(1) is before
        assert session.status().pending == 0

    @pytest.mark.asyncio
    async def test_edit_unknown_app(self, session: SyncSession) -> None:
        await session.start()
        with pytest.raises(RecordNotFoundError):
            session.submit_edit(404, {"launch": True})

    @pytest.mark.asyncio
    async def test_add_record_is_written(
        self, session: SyncSession, backend: RecordingBackend
    ) -> None:
        await session.start()
        session.add_record(make_record(4, name="Sleep Log", slug="sleep-log"))
        status = await session.flush_now()
        assert status.pending == 0
        assert backend.stored[4].slug == "sleep-log"


class TestReload:
    @pytest.mark.asyncio
    async def test_reload_refused_with_unsaved_edits(self, session: SyncSession) -> None:
        await session.start()
        session.submit_edit(1, {"launch": True})
        with pytest.raises(UnsavedChangesError):
            await session.reload()
        assert session.get(1).checks.launch is True
        assert session.status().pending == 1

    @pytest.mark.asyncio
    async def test_forced_reload_discards_edits(
        self, session: SyncSession, backend: RecordingBackend
    ) -> None:
        await session.start()
        session.submit_edit(1, {"launch": True})
        await session.reload(force=True)

        assert session.get(1).checks.launch is False
        assert session.status().pending == 0
        assert session.status().state == SyncState.IDLE
        await asyncio.sleep(QUIET * 3)
        assert backend.batches == []

    @pytest.mark.asyncio
    async def test_forced_reload_waits_for_in_flight_write(
        self, session: SyncSession, backend: RecordingBackend
    ) -> None:
        await session.start()
        backend.gate = asyncio.Event()
        session.submit_edit(2, {"test_notes": "in flight"})
        await asyncio.wait_for(backend.started.wait(), 1)

        reloading = asyncio.create_task(session.reload(force=True))
        await asyncio.sleep(QUIET)
        assert not reloading.done()

        backend.gate.set()
        assert await asyncio.wait_for(reloading, 1) == 3
        assert session.get(2).test_notes == "in flight"
        assert session.buffer.collection_version == "sha1"

    @pytest.mark.asyncio
    async def test_reload_picks_up_remote_changes(
        self, session: SyncSession, backend: RecordingBackend
    ) -> None:
        await session.start()
        backend.stored[5] = make_record(5, name="Remote App", slug="remote-app")
        assert await session.reload() == 4
        assert session.get(5).name == "Remote App"

    @pytest.mark.asyncio
    async def test_edit_during_fetch_aborts_reload(self, backend: RecordingBackend) -> None:
        session = SyncSession(backend, quiescence_seconds=60)
        await session.start()
        fetch = backend.fetch_all

        async def slow_fetch():
            await asyncio.sleep(0.05)
            return await fetch()

        backend.fetch_all = slow_fetch
        reloading = asyncio.create_task(session.reload())
        await asyncio.sleep(0)
        session.submit_edit(1, {"launch": True})

        with pytest.raises(UnsavedChangesError):
            await asyncio.wait_for(reloading, 1)
        assert session.get(1).checks.launch is True
        assert session.status().pending == 1

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_state(
        self, session: SyncSession, backend: RecordingBackend
    ) -> None:
        await session.start()

        async def broken():
            raise RecordValidationError("apps is not a list")

        backend.fetch_all = broken
        with pytest.raises(RecordValidationError):
            await session.reload()
        assert len(session.records()) == 3


class TestClose:
    @pytest.mark.asyncio
    async def test_close_flushes_pending_and_closes_backend(
        self, backend: RecordingBackend
    ) -> None:
        session = SyncSession(backend, quiescence_seconds=60)
        await session.start()
        session.submit_edit(1, {"ui": True})

        await session.close()

        assert backend.stored[1].checks.ui is True
        assert backend.closed
        assert not session.started
        assert session.records() == []

    @pytest.mark.asyncio
    async def test_close_without_flush_discards(self, backend: RecordingBackend) -> None:
        session = SyncSession(backend, quiescence_seconds=60)
        await session.start()
        session.submit_edit(1, {"ui": True})

        await session.close(flush=False)

        assert backend.batches == []
        assert backend.closed

    @pytest.mark.asyncio
    async def test_close_with_failing_store_still_closes(
        self, backend: RecordingBackend
    ) -> None:
        session = SyncSession(backend, quiescence_seconds=60)
        await session.start()
        session.submit_edit(1, {"ui": True})
        backend.errors.append(TransientError("offline"))

        await session.close()

        assert len(backend.batches) == 1
        assert backend.closed
