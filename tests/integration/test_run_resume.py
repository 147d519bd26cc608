#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Integration Test for run resume across process restarts

Demonstrates:
1. A run starts and processes some slices
2. The run is paused (Ctrl-C) or the process dies mid-slice
3. A new controller, backed by the same SQLite file, resumes it
4. Only the remaining units are sent to the remote
"""

import pytest

from core.ingestion.cancellation import CancellationToken
from core.ingestion.run_controller import RunConfig, RunController
from core.ingestion.run_state import RunState, RunStatus
from core.ingestion.run_store import SQLiteRunStore


class TestRunResumeIntegration:
    """Integration tests for resume from the run store"""

    @pytest.mark.asyncio
    async def test_pause_and_resume_in_new_controller(self, paged_executor, make_target, temp_db, sleep):
        token = CancellationToken()
        first_executor = paged_executor(total=12, on_call=lambda cursor: cursor == 5 and token.cancel())
        first = RunController(
            first_executor, store=SQLiteRunStore(temp_db), config=RunConfig(slice_size=4), sleep=sleep,
        )

        paused = await first.start(make_target("pdf-1"), cancel_token=token)

        assert paused.status == RunStatus.PAUSED
        assert first_executor.cursors == [1, 5]

        # Fresh process: new store instance, new executor
        second_executor = paged_executor(total=12)
        second = RunController(
            second_executor, store=SQLiteRunStore(temp_db), config=RunConfig(slice_size=4), sleep=sleep,
        )
        state = await second.resume(paused.run_id)

        assert second_executor.cursors == [9]
        assert second_executor.calls[0][2] == "remote-1"
        assert state.status == RunStatus.DONE
        assert state.processed_units == 12
        assert state.stats.get("pages") == 12

        stored = SQLiteRunStore(temp_db).load(paused.run_id)
        assert stored.status == RunStatus.DONE
        assert stored.cursor == 13

    @pytest.mark.asyncio
    async def test_interrupted_record_resumes_from_persisted_cursor(self, paged_executor, make_target, temp_db, sleep):
        """A record left in processing (crash mid-slice) is resumed, not restarted"""
        store = SQLiteRunStore(temp_db)
        crashed = RunState.create("pdf-1", "uploads/pdf-1.pdf", run_id="crashed-run")
        crashed.transition_to(RunStatus.PROCESSING)
        crashed.cursor = 7
        crashed.total_units = 8
        crashed.processed_units = 6
        crashed.stats.increment("pages", 6)
        store.save(crashed)

        executor = paged_executor(total=8)
        controller = RunController(executor, store=store, config=RunConfig(slice_size=4), sleep=sleep)

        state = await controller.resume("crashed-run", target=make_target("pdf-1"))

        assert executor.cursors == [7]
        assert state.status == RunStatus.DONE
        assert state.processed_units == 8

    @pytest.mark.asyncio
    async def test_history_kept_per_target(self, paged_executor, make_target, temp_db, sleep):
        store = SQLiteRunStore(temp_db)
        controller = RunController(paged_executor(total=2), store=store, sleep=sleep)

        await controller.start(make_target("pdf-1"))
        await controller.start(make_target("pdf-1"))

        runs = store.list_runs("pdf-1")
        assert len(runs) == 2
        assert all(r.status == RunStatus.DONE for r in runs)
