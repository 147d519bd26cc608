"""
Run lifecycle state.
Tracks the cursor, totals, accumulated stats and status of one target's run.

The RunController is the only writer of a RunState while the run is active;
stores persist it through to_record()/from_record().
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import copy
import uuid

from config.logging_config import get_logger

from .errors import InvalidResponseError, InvalidTransitionError

logger = get_logger(__name__)


class RunStatus(Enum):
    """Run status as persisted in the run record."""
    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"
    DONE = "done"
    ERROR = "error"


ALLOWED_TRANSITIONS = {
    RunStatus.IDLE: {RunStatus.PROCESSING},
    RunStatus.PROCESSING: {RunStatus.DONE, RunStatus.PAUSED, RunStatus.ERROR},
    RunStatus.PAUSED: {RunStatus.PROCESSING},
    RunStatus.DONE: set(),
    RunStatus.ERROR: set(),
}


@dataclass
class BatchStats:
    """Per-category unit counters plus ordered error messages."""
    counters: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def increment(self, key: str, amount: int = 1):
        self.counters[key] = self.counters.get(key, 0) + amount

    def get(self, key: str) -> int:
        return self.counters.get(key, 0)

    def merge(self, other: "BatchStats") -> "BatchStats":
        """Add another stats block into this one (in place)."""
        for key, value in other.counters.items():
            self.increment(key, value)
        self.errors.extend(other.errors)
        return self

    def since(self, previous: "BatchStats") -> "BatchStats":
        """
        Delta between two cumulative snapshots.

        Used when the remote reports whole-run stats instead of per-slice
        ones. Counters never go negative; errors are the new tail.
        """
        delta = BatchStats()
        for key, value in self.counters.items():
            diff = value - previous.get(key)
            if diff > 0:
                delta.counters[key] = diff
        delta.errors = list(self.errors[len(previous.errors):])
        return delta

    @property
    def total(self) -> int:
        return sum(self.counters.values())

    def to_dict(self) -> Dict[str, Any]:
        """Flat JSON blob: {counter: n, ..., "errors": [...]}."""
        return {**self.counters, "errors": list(self.errors)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BatchStats":
        if not data:
            return cls()
        counters = {}
        for key, value in data.items():
            if key == "errors":
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            counters[key] = int(value)
        errors = [str(e) for e in (data.get("errors") or [])]
        return cls(counters=counters, errors=errors)


@dataclass
class RunTiming:
    """Wall-clock information for a run."""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    slice_count: int = 0
    retry_count: int = 0

    def start(self):
        if self.started_at is None:
            self.started_at = datetime.now()

    def complete(self):
        self.completed_at = datetime.now()

    @property
    def total_duration(self) -> Optional[float]:
        """Get total duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


def new_run_id() -> str:
    return uuid.uuid4().hex


@dataclass
class RunState:
    """
    Resumable execution context for one target.

    ``cursor`` is 1-based and always names the next unprocessed unit.
    ``remote_run_id`` is whatever identifier the remote processor issued for
    its own bookkeeping (extraction run id, legal source id) and is echoed on
    every subsequent slice call.
    """
    run_id: str
    target_ref: str
    target_locator: Optional[str] = None
    cursor: int = 1
    total_units: Optional[int] = None
    processed_units: int = 0
    stats: BatchStats = field(default_factory=BatchStats)
    status: RunStatus = RunStatus.IDLE
    remote_run_id: Optional[str] = None
    last_error: Optional[str] = None
    # Last whole-run stats reported by a remote that counts cumulatively
    remote_stats: BatchStats = field(default_factory=BatchStats)
    timing: RunTiming = field(default_factory=RunTiming)

    @classmethod
    def create(cls, target_ref: str, target_locator: Optional[str] = None, run_id: Optional[str] = None) -> "RunState":
        return cls(run_id=run_id or new_run_id(), target_ref=target_ref, target_locator=target_locator)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def transition_to(self, new_status: RunStatus):
        """
        Move to a new status.

        Raises:
            InvalidTransitionError: if the lifecycle does not allow it
        """
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Run {self.run_id}: cannot go from {self.status.value} to {new_status.value}"
            )

        old_status = self.status
        self.status = new_status

        if new_status == RunStatus.PROCESSING:
            self.timing.start()
        elif new_status in (RunStatus.DONE, RunStatus.ERROR, RunStatus.PAUSED):
            self.timing.complete()

        logger.debug(f"Run {self.run_id}: {old_status.value} → {new_status.value}")

    def fail(self, error: str):
        self.last_error = error
        self.transition_to(RunStatus.ERROR)

    def recover_interrupted(self) -> bool:
        """
        Treat a record left in ``processing`` as paused.

        Happens when the owning process died mid-slice: the outcome of that
        slice is unknown and the persisted cursor is the only truth.
        """
        if self.status != RunStatus.PROCESSING:
            return False
        logger.warning(
            f"Run {self.run_id} was interrupted mid-slice; "
            f"resuming from persisted cursor {self.cursor}"
        )
        self.status = RunStatus.PAUSED
        return True

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.DONE, RunStatus.ERROR)

    @property
    def can_resume(self) -> bool:
        return self.status == RunStatus.PAUSED

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def apply_slice(self, result) -> None:
        """
        Fold a successful SliceResult into the run.

        Raises:
            InvalidResponseError: if the slice would move the cursor backwards
        """
        if result.run_id and not self.remote_run_id:
            self.remote_run_id = str(result.run_id)

        if result.total_units is not None:
            self.total_units = result.total_units

        if result.next_cursor is not None:
            if result.next_cursor < self.cursor:
                raise InvalidResponseError(
                    f"Cursor moved backwards ({self.cursor} -> {result.next_cursor})"
                )
            self.cursor = result.next_cursor
        elif result.done and self.total_units is not None:
            self.cursor = max(self.cursor, self.total_units + 1)

        if result.cumulative_stats:
            # self.stats also holds local skip errors; diff against the last remote report
            delta = result.stats_delta.since(self.remote_stats)
            self.remote_stats = copy.deepcopy(result.stats_delta)
        else:
            delta = result.stats_delta
        self.stats.merge(delta)

        self.processed_units += max(0, result.processed_this_slice)
        if self.total_units is not None and self.processed_units > self.total_units:
            logger.warning(
                f"Run {self.run_id}: processed {self.processed_units} > total {self.total_units}, clamping"
            )
            self.processed_units = self.total_units

        self.timing.slice_count += 1

    def skip_units(self, slice_size: int, message: str) -> int:
        """
        Advance past a slice that could not be processed.

        Returns:
            Number of units skipped
        """
        start = self.cursor
        end = start + slice_size - 1
        if self.total_units is not None:
            end = min(end, self.total_units)
        skipped = max(0, end - start + 1)

        label = f"Units {start}-{end}" if end != start else f"Unit {start}"
        self.stats.errors.append(f"{label}: {message}")
        self.stats.increment("units_skipped", skipped)
        self.cursor = end + 1
        return skipped

    @property
    def is_exhausted(self) -> bool:
        """True once the cursor has moved past the last known unit."""
        return self.total_units is not None and self.cursor > self.total_units

    @property
    def progress_fraction(self) -> float:
        if not self.total_units:
            return 0.0
        return min(1.0, self.processed_units / self.total_units)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> "RunState":
        """Detached copy handed to progress sinks."""
        return copy.deepcopy(self)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.run_id,
            "target_ref": self.target_ref,
            "target_locator": self.target_locator,
            "remote_run_id": self.remote_run_id,
            "cursor": self.cursor,
            "total_units": self.total_units,
            "processed_units": self.processed_units,
            "stats": self.stats.to_dict(),
            "status": self.status.value,
            "last_error": self.last_error,
            "remote_stats": self.remote_stats.to_dict(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RunState":
        return cls(
            run_id=record["id"],
            target_ref=record["target_ref"],
            target_locator=record.get("target_locator"),
            remote_run_id=record.get("remote_run_id"),
            cursor=record.get("cursor") or 1,
            total_units=record.get("total_units"),
            processed_units=record.get("processed_units") or 0,
            stats=BatchStats.from_dict(record.get("stats")),
            status=RunStatus(record.get("status") or RunStatus.IDLE.value),
            last_error=record.get("last_error"),
            remote_stats=BatchStats.from_dict(record.get("remote_stats")),
        )

    def get_state_summary(self) -> Dict[str, Any]:
        """Get current state summary."""
        return {
            **self.to_record(),
            "progress": self.progress_fraction,
            "timing": {
                "started_at": self.timing.started_at.isoformat() if self.timing.started_at else None,
                "duration_seconds": self.timing.total_duration,
                "slices": self.timing.slice_count,
                "retries": self.timing.retry_count,
            },
        }
