"""
Unit tests for core.ingestion.run_state module.

Tests BatchStats, RunState lifecycle, slice folding and record round-trips.
"""

import pytest

from core.ingestion.errors import InvalidResponseError, InvalidTransitionError
from core.ingestion.run_state import BatchStats, RunState, RunStatus
from core.ingestion.slice_executor import SliceResult


def _stats(**counters):
    stats = BatchStats()
    for key, value in counters.items():
        stats.increment(key, value)
    return stats


class TestBatchStats:
    """Tests for BatchStats dataclass."""

    def test_merge_is_additive(self):
        """Test merging two stats blocks."""
        a = _stats(tariff_lines=3, notes=1)
        a.errors.append("first")
        b = _stats(tariff_lines=2, hs_codes=4)
        b.errors.append("second")

        a.merge(b)

        assert a.counters == {"tariff_lines": 5, "notes": 1, "hs_codes": 4}
        assert a.errors == ["first", "second"]

    def test_since_returns_positive_delta(self):
        """Test delta between two cumulative snapshots."""
        previous = _stats(tariff_lines=10, notes=2)
        previous.errors = ["e1"]
        current = _stats(tariff_lines=14, notes=2, hs_codes=1)
        current.errors = ["e1", "e2"]

        delta = current.since(previous)

        assert delta.counters == {"tariff_lines": 4, "hs_codes": 1}
        assert delta.errors == ["e2"]

    def test_to_dict_and_from_dict(self):
        """Test flat JSON blob serialization."""
        stats = _stats(chunks_created=7)
        stats.errors.append("Units 3-4: timeout")

        blob = stats.to_dict()
        assert blob == {"chunks_created": 7, "errors": ["Units 3-4: timeout"]}

        restored = BatchStats.from_dict(blob)
        assert restored.counters == {"chunks_created": 7}
        assert restored.errors == ["Units 3-4: timeout"]

    def test_from_dict_ignores_non_numeric(self):
        """Test that flags and strings in the blob are dropped."""
        restored = BatchStats.from_dict({"pages": 3, "partial": True, "note": "x"})
        assert restored.counters == {"pages": 3}

    def test_from_dict_none(self):
        assert BatchStats.from_dict(None).counters == {}


class TestRunStateLifecycle:
    """Tests for status transitions."""

    def test_create_defaults(self):
        """Test a fresh run starts idle at unit 1."""
        state = RunState.create("doc-1", "uploads/doc-1.pdf")
        assert state.status == RunStatus.IDLE
        assert state.cursor == 1
        assert state.processed_units == 0
        assert state.run_id

    def test_allowed_path(self):
        """Test idle -> processing -> paused -> processing -> done."""
        state = RunState.create("doc-1")
        state.transition_to(RunStatus.PROCESSING)
        state.transition_to(RunStatus.PAUSED)
        state.transition_to(RunStatus.PROCESSING)
        state.transition_to(RunStatus.DONE)
        assert state.is_terminal

    @pytest.mark.parametrize("start,target", [
        (RunStatus.IDLE, RunStatus.DONE),
        (RunStatus.IDLE, RunStatus.PAUSED),
        (RunStatus.PAUSED, RunStatus.DONE),
        (RunStatus.DONE, RunStatus.PROCESSING),
        (RunStatus.ERROR, RunStatus.PROCESSING),
    ])
    def test_forbidden_transitions(self, start, target):
        """Test transitions outside the lifecycle are rejected."""
        state = RunState.create("doc-1")
        state.status = start
        with pytest.raises(InvalidTransitionError):
            state.transition_to(target)

    def test_fail_records_error(self):
        state = RunState.create("doc-1")
        state.transition_to(RunStatus.PROCESSING)
        state.fail("HTTP 400")
        assert state.status == RunStatus.ERROR
        assert state.last_error == "HTTP 400"

    def test_recover_interrupted(self):
        """Test a record left in processing is treated as paused."""
        state = RunState.create("doc-1")
        state.status = RunStatus.PROCESSING
        assert state.recover_interrupted() is True
        assert state.status == RunStatus.PAUSED
        assert state.can_resume

    def test_recover_interrupted_noop(self):
        state = RunState.create("doc-1")
        assert state.recover_interrupted() is False
        assert state.status == RunStatus.IDLE


class TestApplySlice:
    """Tests for folding slice results into the run."""

    def test_advances_cursor_and_accumulates(self):
        """Test cursor, processed units and stats after two slices."""
        state = RunState.create("doc-1")
        state.apply_slice(SliceResult(
            done=False, next_cursor=3, processed_this_slice=2,
            stats_delta=_stats(pages=2), total_units=5, run_id="ext-9",
        ))
        state.apply_slice(SliceResult(
            done=False, next_cursor=5, processed_this_slice=2,
            stats_delta=_stats(pages=2), total_units=5,
        ))

        assert state.cursor == 5
        assert state.processed_units == 4
        assert state.stats.get("pages") == 4
        assert state.total_units == 5
        assert state.remote_run_id == "ext-9"
        assert state.timing.slice_count == 2

    def test_done_without_next_cursor_moves_past_end(self):
        state = RunState.create("doc-1")
        state.total_units = 5
        state.cursor = 5
        state.apply_slice(SliceResult(done=True, next_cursor=None, processed_this_slice=1))
        assert state.cursor == 6
        assert state.is_exhausted

    def test_backwards_cursor_rejected(self):
        """Test the cursor never moves backwards."""
        state = RunState.create("doc-1")
        state.cursor = 7
        with pytest.raises(InvalidResponseError):
            state.apply_slice(SliceResult(done=False, next_cursor=3, processed_this_slice=1))
        assert state.cursor == 7

    def test_processed_clamped_to_total(self):
        state = RunState.create("doc-1")
        state.apply_slice(SliceResult(
            done=True, next_cursor=None, processed_this_slice=9, total_units=5,
        ))
        assert state.processed_units == 5

    def test_cumulative_stats_become_delta(self):
        """Test remote whole-run totals are not double counted."""
        state = RunState.create("doc-1")
        state.apply_slice(SliceResult(
            done=False, next_cursor=5, processed_this_slice=4,
            stats_delta=_stats(tariff_lines=10), cumulative_stats=True,
        ))
        state.apply_slice(SliceResult(
            done=False, next_cursor=9, processed_this_slice=4,
            stats_delta=_stats(tariff_lines=16), cumulative_stats=True,
        ))
        assert state.stats.get("tariff_lines") == 16

    def test_cumulative_errors_after_skipped_slice(self):
        """Test a skipped slice does not hide later remote errors."""
        state = RunState.create("doc-1")
        state.total_units = 12
        state.apply_slice(SliceResult(
            done=False, next_cursor=5, processed_this_slice=4,
            stats_delta=_stats(tariff_lines=10), cumulative_stats=True,
        ))
        state.skip_units(4, "HTTP 400: bad page")

        remote = _stats(tariff_lines=14)
        remote.errors = ["page 9: table unreadable"]
        state.apply_slice(SliceResult(
            done=True, next_cursor=None, processed_this_slice=4,
            stats_delta=remote, cumulative_stats=True,
        ))

        assert state.stats.errors == ["Units 5-8: HTTP 400: bad page", "page 9: table unreadable"]
        assert state.stats.get("tariff_lines") == 14
        assert state.remote_stats.errors == ["page 9: table unreadable"]


class TestSkipUnits:
    """Tests for skipping a slice after exhausted retries."""

    def test_skip_records_range(self):
        state = RunState.create("doc-1")
        state.total_units = 10
        state.cursor = 3

        skipped = state.skip_units(2, "HTTP 503")

        assert skipped == 2
        assert state.cursor == 5
        assert state.stats.errors == ["Units 3-4: HTTP 503"]
        assert state.stats.get("units_skipped") == 2

    def test_skip_clamped_to_total(self):
        state = RunState.create("doc-1")
        state.total_units = 5
        state.cursor = 5

        skipped = state.skip_units(4, "timeout")

        assert skipped == 1
        assert state.cursor == 6
        assert state.stats.errors == ["Unit 5: timeout"]


class TestRecords:
    """Tests for persistence round-trips."""

    def test_record_round_trip(self):
        state = RunState.create("doc-1", "uploads/doc-1.pdf", run_id="run-1")
        state.transition_to(RunStatus.PROCESSING)
        state.cursor = 9
        state.total_units = 20
        state.processed_units = 8
        state.remote_run_id = "ext-1"
        state.stats.increment("pages", 8)
        state.remote_stats.increment("pages", 8)
        state.remote_stats.errors.append("page 3: blurred scan")
        state.transition_to(RunStatus.PAUSED)

        restored = RunState.from_record(state.to_record())

        assert restored.remote_stats.get("pages") == 8
        assert restored.remote_stats.errors == ["page 3: blurred scan"]

        assert restored.run_id == "run-1"
        assert restored.target_locator == "uploads/doc-1.pdf"
        assert restored.cursor == 9
        assert restored.total_units == 20
        assert restored.processed_units == 8
        assert restored.remote_run_id == "ext-1"
        assert restored.stats.get("pages") == 8
        assert restored.status == RunStatus.PAUSED

    def test_snapshot_is_detached(self):
        state = RunState.create("doc-1")
        copy = state.snapshot()
        state.stats.increment("pages", 1)
        state.cursor = 4
        assert copy.stats.get("pages") == 0
        assert copy.cursor == 1

    def test_state_summary(self):
        state = RunState.create("doc-1")
        state.total_units = 4
        state.processed_units = 1
        summary = state.get_state_summary()
        assert summary["progress"] == 0.25
        assert summary["timing"]["slices"] == 0
