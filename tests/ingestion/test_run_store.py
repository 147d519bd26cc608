#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Unit Tests for the run stores

Tests cover:
- Save/load round trips
- Listing per target
- Write failures surfacing as PersistenceWriteFailure
- Cleanup of retired runs
"""

import sqlite3
import time

import pytest

from core.ingestion.errors import PersistenceWriteFailure
from core.ingestion.run_state import RunState, RunStatus
from core.ingestion.run_store import InMemoryRunStore, SQLiteRunStore


def _paused_run(target_ref="doc-1", run_id=None, cursor=5):
    state = RunState.create(target_ref, f"uploads/{target_ref}.pdf", run_id=run_id)
    state.transition_to(RunStatus.PROCESSING)
    state.cursor = cursor
    state.total_units = 12
    state.processed_units = cursor - 1
    state.stats.increment("tariff_lines", 7)
    state.stats.errors.append("Unit 2: HTTP 503")
    state.remote_stats.increment("tariff_lines", 7)
    state.transition_to(RunStatus.PAUSED)
    return state


@pytest.fixture(params=["memory", "sqlite"])
def store(request, temp_db):
    if request.param == "memory":
        return InMemoryRunStore()
    return SQLiteRunStore(temp_db)


class TestRunStoreContract:
    """Behaviour shared by both stores"""

    def test_save_and_load(self, store):
        state = _paused_run(run_id="run-1")
        store.save(state)

        loaded = store.load("run-1")

        assert loaded is not None
        assert loaded.target_ref == "doc-1"
        assert loaded.target_locator == "uploads/doc-1.pdf"
        assert loaded.cursor == 5
        assert loaded.total_units == 12
        assert loaded.processed_units == 4
        assert loaded.stats.get("tariff_lines") == 7
        assert loaded.stats.errors == ["Unit 2: HTTP 503"]
        assert loaded.remote_stats.get("tariff_lines") == 7
        assert loaded.remote_stats.errors == []
        assert loaded.status == RunStatus.PAUSED

    def test_load_unknown(self, store):
        assert store.load("missing") is None

    def test_save_overwrites(self, store):
        state = _paused_run(run_id="run-1")
        store.save(state)
        state.cursor = 9
        store.save(state)
        assert store.load("run-1").cursor == 9

    def test_list_runs_per_target(self, store):
        store.save(_paused_run("doc-1", run_id="a"))
        store.save(_paused_run("doc-2", run_id="b"))
        store.save(_paused_run("doc-1", run_id="c"))

        runs = store.list_runs("doc-1")

        assert sorted(r.run_id for r in runs) == ["a", "c"]

    def test_delete(self, store):
        store.save(_paused_run(run_id="run-1"))
        assert store.delete("run-1") is True
        assert store.delete("run-1") is False
        assert store.load("run-1") is None


class TestSQLiteRunStore:
    """SQLite specific behaviour"""

    def test_persists_across_instances(self, temp_db):
        SQLiteRunStore(temp_db).save(_paused_run(run_id="run-1"))
        loaded = SQLiteRunStore(temp_db).load("run-1")
        assert loaded.cursor == 5

    def test_write_failure_wrapped(self, temp_db):
        """Test sqlite errors surface as PersistenceWriteFailure"""
        store = SQLiteRunStore(temp_db)
        with sqlite3.connect(temp_db) as conn:
            conn.execute("DROP TABLE ingestion_runs")
            conn.commit()

        with pytest.raises(PersistenceWriteFailure):
            store.save(_paused_run(run_id="run-1"))

    def test_resume_info(self, temp_db):
        store = SQLiteRunStore(temp_db)
        store.save(_paused_run(run_id="run-1"))

        info = store.get_resume_info("run-1")

        assert info["cursor"] == 5
        assert info["status"] == "paused"
        assert info["can_resume"] is True
        assert store.get_resume_info("missing") is None

    def test_cleanup_keeps_paused_runs(self, temp_db):
        """Test only old done/error runs are removed"""
        store = SQLiteRunStore(temp_db)
        store.save(_paused_run(run_id="paused"))

        done = _paused_run(run_id="done")
        done.transition_to(RunStatus.PROCESSING)
        done.transition_to(RunStatus.DONE)
        store.save(done)

        old = time.time() - 40 * 86400
        with sqlite3.connect(temp_db) as conn:
            conn.execute("UPDATE ingestion_runs SET updated_at = ?", (old,))
            conn.commit()

        removed = store.cleanup_old_runs(days=30)

        assert removed == 1
        assert store.load("done") is None
        assert store.load("paused") is not None

    def test_adds_remote_stats_column_to_older_table(self, temp_db):
        """Test a table created without remote_stats is upgraded in place"""
        with sqlite3.connect(temp_db) as conn:
            conn.execute("""
                CREATE TABLE ingestion_runs (
                    id TEXT PRIMARY KEY,
                    target_ref TEXT NOT NULL,
                    target_locator TEXT,
                    remote_run_id TEXT,
                    cursor INTEGER NOT NULL DEFAULT 1,
                    total_units INTEGER,
                    processed_units INTEGER NOT NULL DEFAULT 0,
                    stats TEXT NOT NULL,
                    status TEXT NOT NULL,
                    last_error TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            conn.execute(
                "INSERT INTO ingestion_runs VALUES ('old', 'doc-1', NULL, NULL, 3, 12, 2, '{}', 'paused', NULL, 0, 0)"
            )
            conn.commit()

        store = SQLiteRunStore(temp_db)

        assert store.load("old").remote_stats.counters == {}
        store.save(_paused_run(run_id="run-1"))
        assert store.load("run-1").remote_stats.get("tariff_lines") == 7
