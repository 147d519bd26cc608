#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Run Store - Durable run records for resumable ingestion

Every slice is bracketed by two writes: a reservation before the call and a
commit after it. A paused run's record is what resume(run_id) reloads.
"""

import sqlite3
import json
import time
from pathlib import Path
from typing import Optional, List, Dict, Any, Protocol
from datetime import datetime

from config.logging_config import get_logger

from .errors import PersistenceWriteFailure
from .run_state import RunState

logger = get_logger(__name__)


class RunStore(Protocol):
    """Persistence contract used by the RunController."""

    def load(self, run_id: str) -> Optional[RunState]:
        ...

    def save(self, state: RunState) -> None:
        ...

    def list_runs(self, target_ref: str) -> List[RunState]:
        ...

    def delete(self, run_id: str) -> bool:
        ...


class InMemoryRunStore:
    """Dict-backed store; records survive only as long as the process."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}

    def load(self, run_id: str) -> Optional[RunState]:
        record = self._records.get(run_id)
        return RunState.from_record(record) if record else None

    def save(self, state: RunState) -> None:
        record = state.to_record()
        now = time.time()
        previous = self._records.get(state.run_id)
        record["created_at"] = previous["created_at"] if previous else now
        record["updated_at"] = now
        self._records[state.run_id] = record

    def list_runs(self, target_ref: str) -> List[RunState]:
        records = [r for r in self._records.values() if r["target_ref"] == target_ref]
        records.sort(key=lambda r: r["created_at"], reverse=True)
        return [RunState.from_record(r) for r in records]

    def delete(self, run_id: str) -> bool:
        return self._records.pop(run_id, None) is not None


class SQLiteRunStore:
    """
    SQLite-backed run records

    Features:
    - One row per run, stats kept as a JSON blob
    - Write failures surface as PersistenceWriteFailure
    - History listing per target and age-based cleanup
    """

    def __init__(self, db_path: Path):
        """
        Initialize run store

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database schema"""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ingestion_runs (
                    id TEXT PRIMARY KEY,
                    target_ref TEXT NOT NULL,
                    target_locator TEXT,
                    remote_run_id TEXT,
                    cursor INTEGER NOT NULL DEFAULT 1,
                    total_units INTEGER,
                    processed_units INTEGER NOT NULL DEFAULT 0,
                    stats TEXT NOT NULL,  -- JSON object
                    status TEXT NOT NULL,
                    last_error TEXT,
                    remote_stats TEXT,  -- JSON object, last cumulative remote report
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            columns = {row[1] for row in conn.execute("PRAGMA table_info(ingestion_runs)")}
            if "remote_stats" not in columns:
                conn.execute("ALTER TABLE ingestion_runs ADD COLUMN remote_stats TEXT")
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_target
                ON ingestion_runs(target_ref)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_status
                ON ingestion_runs(status)
            """)
            conn.commit()

    def save(self, state: RunState) -> None:
        """
        Insert or update the record for a run

        Raises:
            PersistenceWriteFailure: if SQLite rejects the write
        """
        record = state.to_record()
        now = time.time()

        try:
            with sqlite3.connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT created_at FROM ingestion_runs WHERE id = ?",
                    (record["id"],)
                ).fetchone()
                created_at = row[0] if row else now

                conn.execute("""
                    INSERT OR REPLACE INTO ingestion_runs (
                        id, target_ref, target_locator, remote_run_id,
                        cursor, total_units, processed_units, stats,
                        status, last_error, remote_stats, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record["id"],
                    record["target_ref"],
                    record["target_locator"],
                    record["remote_run_id"],
                    record["cursor"],
                    record["total_units"],
                    record["processed_units"],
                    json.dumps(record["stats"]),
                    record["status"],
                    record["last_error"],
                    json.dumps(record["remote_stats"]),
                    created_at,
                    now
                ))
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceWriteFailure(f"Could not save run {state.run_id}: {e}") from e

    def load(self, run_id: str) -> Optional[RunState]:
        """
        Load the record for a run

        Args:
            run_id: Run identifier

        Returns:
            RunState if the run exists, None otherwise
        """
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT * FROM ingestion_runs WHERE id = ?",
                (run_id,)
            ).fetchone()

            if not row:
                return None
            return RunState.from_record(self._row_to_record(row))

    def list_runs(self, target_ref: str, limit: int = 100) -> List[RunState]:
        """
        List runs for one target, newest first

        Args:
            target_ref: Target identifier
            limit: Maximum number of runs to return
        """
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute("""
                SELECT * FROM ingestion_runs
                WHERE target_ref = ?
                ORDER BY created_at DESC
                LIMIT ?
            """, (target_ref, limit)).fetchall()

            return [RunState.from_record(self._row_to_record(r)) for r in rows]

    def delete(self, run_id: str) -> bool:
        """
        Delete a run record

        Returns:
            True if a record was deleted
        """
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.execute(
                    "DELETE FROM ingestion_runs WHERE id = ?",
                    (run_id,)
                )
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise PersistenceWriteFailure(f"Could not delete run {run_id}: {e}") from e

    def get_resume_info(self, run_id: str) -> Optional[Dict[str, Any]]:
        """
        Get resume information for a run

        Returns:
            Dict with resume info or None if the run is unknown
        """
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT updated_at FROM ingestion_runs WHERE id = ?",
                (run_id,)
            ).fetchone()
        if not row:
            return None

        state = self.load(run_id)
        return {
            'run_id': state.run_id,
            'target_ref': state.target_ref,
            'status': state.status.value,
            'cursor': state.cursor,
            'total_units': state.total_units,
            'processed_units': state.processed_units,
            'completion_percentage': state.progress_fraction,
            'last_updated': datetime.fromtimestamp(row[0]).isoformat(),
            'can_resume': state.can_resume or state.status.value == "processing",
        }

    def cleanup_old_runs(self, days: int = 30) -> int:
        """
        Delete finished runs older than the given number of days

        Paused runs are kept regardless of age.

        Returns:
            Number of records deleted
        """
        cutoff_time = time.time() - (days * 86400)

        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM ingestion_runs WHERE updated_at < ? AND status IN ('done', 'error')",
                (cutoff_time,)
            )
            conn.commit()
            if cursor.rowcount:
                logger.info(f"Removed {cursor.rowcount} runs older than {days} days")
            return cursor.rowcount

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Dict[str, Any]:
        record = dict(row)
        record["stats"] = json.loads(record["stats"]) if record.get("stats") else {}
        record["remote_stats"] = json.loads(record["remote_stats"]) if record.get("remote_stats") else {}
        return record
