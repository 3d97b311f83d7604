"""Tests for the edit buffer: optimistic updates, draining, requeue, reconcile."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.tracker.base import (
    AppChecks,
    RecordNotFoundError,
    RecordValidationError,
    ReleaseIntent,
    apply_patch,
)
from src.tracker.buffer import EditBuffer
from src.tracker.tests.conftest import make_record


def set_launch(value: bool):
    return lambda r: r.with_changes(checks=AppChecks(launch=value))


class TestLoad:
    def test_load_replaces_collection_and_clears_pending(self, buffer: EditBuffer) -> None:
        buffer.update(1, set_launch(True))
        buffer.load([make_record(7)], version="sha9")
        assert [r.id for r in buffer.records()] == [7]
        assert buffer.pending_count == 0
        assert buffer.collection_version == "sha9"

    def test_duplicate_ids_rejected_and_state_kept(self, buffer: EditBuffer) -> None:
        before = buffer.records()
        with pytest.raises(RecordValidationError):
            buffer.load([make_record(5), make_record(5)], version="bad")
        assert buffer.records() == before
        assert buffer.collection_version == "sha0"

    def test_load_keeps_input_order(self) -> None:
        buf = EditBuffer()
        buf.load([make_record(3), make_record(1), make_record(2)])
        assert [r.id for r in buf.records()] == [3, 1, 2]


class TestUpdate:
    def test_update_is_visible_immediately(self, buffer: EditBuffer) -> None:
        updated = buffer.update(1, set_launch(True))
        assert buffer.get(1) is updated
        assert buffer.get(1).checks.launch is True
        assert buffer.pending_ids() == [1]

    def test_update_unknown_id_raises_not_found(self, buffer: EditBuffer) -> None:
        with pytest.raises(RecordNotFoundError):
            buffer.update(42, set_launch(True))
        assert buffer.pending_count == 0

    def test_edits_to_same_record_coalesce(self, buffer: EditBuffer) -> None:
        buffer.update(1, set_launch(True))
        buffer.update(1, lambda r: r.with_changes(release_intent=ReleaseIntent.READY))
        batch = buffer.drain_pending()
        assert list(batch) == [1]
        assert batch[1].checks.launch is True
        assert batch[1].release_intent == ReleaseIntent.READY

    def test_identity_change_rejected(self, buffer: EditBuffer) -> None:
        with pytest.raises(RecordValidationError):
            buffer.update(1, lambda r: r.with_changes(id=99))
        assert buffer.get(1).id == 1

    def test_update_notifies_listener(self, records) -> None:
        seen: list[int] = []
        buf = EditBuffer(on_dirty=seen.append)
        buf.load(records)
        buf.update(2, set_launch(False))
        buf.update(3, set_launch(True))
        assert seen == [2, 3]


class TestAdd:
    def test_add_marks_pending(self, buffer: EditBuffer) -> None:
        buffer.add(make_record(10))
        assert buffer.get(10).slug == "app-10"
        assert 10 in buffer.pending_ids()

    def test_add_existing_id_rejected(self, buffer: EditBuffer) -> None:
        with pytest.raises(RecordValidationError):
            buffer.add(make_record(1))


class TestDrain:
    def test_drain_returns_batch_and_clears(self, buffer: EditBuffer) -> None:
        buffer.update(1, set_launch(True))
        buffer.update(3, set_launch(True))
        batch = buffer.drain_pending()
        assert set(batch) == {1, 3}
        assert buffer.pending_count == 0

    def test_edit_after_drain_goes_to_next_batch(self, buffer: EditBuffer) -> None:
        buffer.update(1, set_launch(True))
        first = buffer.drain_pending()
        buffer.update(1, lambda r: r.with_changes(test_notes="second"))
        second = buffer.drain_pending()
        assert first[1].test_notes == ""
        assert second[1].test_notes == "second"
        assert second[1].checks.launch is True

    def test_drained_batch_not_mutated_by_later_edits(self, buffer: EditBuffer) -> None:
        buffer.update(2, lambda r: r.with_changes(fix_notes="a"))
        batch = buffer.drain_pending()
        buffer.update(2, lambda r: r.with_changes(fix_notes="b"))
        assert batch[2].fix_notes == "a"


class TestRequeue:
    def test_requeue_restores_failed_batch(self, buffer: EditBuffer) -> None:
        buffer.update(1, set_launch(True))
        batch = buffer.drain_pending()
        assert buffer.requeue(batch) == 1
        assert buffer.pending_ids() == [1]

    def test_requeue_keeps_newer_edit(self, buffer: EditBuffer) -> None:
        buffer.update(1, lambda r: r.with_changes(test_notes="old"))
        batch = buffer.drain_pending()
        buffer.update(1, lambda r: r.with_changes(test_notes="new"))
        assert buffer.requeue(batch) == 0
        assert buffer.drain_pending()[1].test_notes == "new"

    def test_requeue_skips_records_dropped_by_reload(self, buffer: EditBuffer) -> None:
        buffer.update(3, set_launch(True))
        batch = buffer.drain_pending()
        buffer.load([make_record(1)])
        assert buffer.requeue(batch) == 0
        assert buffer.pending_count == 0

    def test_requeue_takes_latest_version(self, buffer: EditBuffer) -> None:
        buffer.update(1, set_launch(True))
        batch = buffer.drain_pending()
        buffer.reconcile(1, "r5")
        buffer.requeue(batch)
        assert buffer.drain_pending()[1].version == "r5"


class TestReconcile:
    def test_reconcile_sets_version_and_timestamp(self, buffer: EditBuffer) -> None:
        buffer.update(1, set_launch(True))
        buffer.drain_pending()
        confirmed = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert buffer.reconcile(1, "r1", confirmed) is True
        assert buffer.get(1).version == "r1"
        assert buffer.get(1).updated_at == confirmed
        assert buffer.get(1).checks.launch is True

    def test_reconcile_does_not_clobber_newer_edit(self, buffer: EditBuffer) -> None:
        buffer.update(1, set_launch(True))
        buffer.drain_pending()
        newer = buffer.update(1, lambda r: r.with_changes(test_notes="newer"))
        confirmed = datetime(2026, 3, 1, tzinfo=timezone.utc)

        buffer.reconcile(1, "r1", confirmed)

        visible = buffer.get(1)
        assert visible.test_notes == "newer"
        assert visible.updated_at == newer.updated_at
        assert visible.version == "r1"
        # the pending snapshot carries the new token for the next write
        assert buffer.drain_pending()[1].version == "r1"

    def test_reconcile_unknown_id_is_ignored(self, buffer: EditBuffer) -> None:
        assert buffer.reconcile(99, "r1") is False

    def test_collection_version_only_moves_forward(self, buffer: EditBuffer) -> None:
        buffer.set_collection_version(None)
        assert buffer.collection_version == "sha0"
        buffer.set_collection_version("sha1")
        assert buffer.collection_version == "sha1"


class TestApplyPatch:
    def test_patch_sets_single_check(self) -> None:
        record = apply_patch(make_record(), {"main_feature": True})
        assert record.checks == AppChecks(main_feature=True)

    def test_patch_merges_partial_checks_object(self) -> None:
        base = make_record(checks=AppChecks(launch=True))
        record = apply_patch(base, {"checks": {"ui": True}})
        assert record.checks == AppChecks(launch=True, ui=True)

    def test_patch_stamps_updated_at(self) -> None:
        base = make_record()
        record = apply_patch(base, {"test_notes": "ok"})
        assert record.updated_at > base.updated_at

    def test_patch_accepts_intent_string(self) -> None:
        record = apply_patch(make_record(), {"release_intent": "released"})
        assert record.release_intent == ReleaseIntent.RELEASED

    def test_none_notes_become_empty(self) -> None:
        record = apply_patch(make_record(test_notes="x"), {"test_notes": None})
        assert record.test_notes == ""

    @pytest.mark.parametrize(
        "patch",
        [
            {"name": "Renamed"},
            {"release_intent": "shipping"},
            {"launch": "yes"},
            {"checks": {"offline": True}},
            {"fix_notes": 3},
        ],
    )
    def test_invalid_patch_rejected(self, patch: dict) -> None:
        with pytest.raises(RecordValidationError):
            apply_patch(make_record(), patch)
