"""
Batch result aggregation.
Collects per-target outcomes into BatchProgress snapshots and a final summary.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from config.logging_config import get_logger

from .run_state import BatchStats, RunState

logger = get_logger(__name__)


class OutcomeStatus(Enum):
    """How one target ended inside a batch."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TargetOutcome:
    """Terminal result of one target."""
    target_id: str
    label: str
    status: OutcomeStatus
    run_id: Optional[str] = None
    processed_units: int = 0
    stats: BatchStats = field(default_factory=BatchStats)
    error: Optional[str] = None

    @classmethod
    def from_run(cls, target, state: RunState, status: OutcomeStatus) -> "TargetOutcome":
        return cls(
            target_id=target.target_id,
            label=target.display_label,
            status=status,
            run_id=state.run_id,
            processed_units=state.processed_units,
            stats=state.stats,
            error=state.last_error,
        )


@dataclass
class BatchProgress:
    """Aggregate counters of a running batch."""
    total_targets: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    active_target_label: Optional[str] = None
    is_running: bool = False

    @property
    def finished(self) -> int:
        return self.completed + self.failed + self.skipped

    @property
    def percentage(self) -> float:
        if self.total_targets == 0:
            return 1.0
        return self.finished / self.total_targets

    def snapshot(self) -> "BatchProgress":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total_targets,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "active_target": self.active_target_label,
            "is_running": self.is_running,
            "percentage": self.percentage,
        }


@dataclass
class BatchSummary:
    """Final batch report."""
    completed: int
    failed: int
    skipped: int
    outcomes: List[TargetOutcome] = field(default_factory=list)
    stats: BatchStats = field(default_factory=BatchStats)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.completed + self.failed + self.skipped

    @property
    def success_rate(self) -> float:
        """Share of targets that completed."""
        if self.total == 0:
            return 0.0
        return self.completed / self.total

    @property
    def errors(self) -> Dict[str, str]:
        """Last error message per failed target."""
        return {
            o.target_id: o.error or "unknown error"
            for o in self.outcomes
            if o.status == OutcomeStatus.FAILED
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
            "success_rate": self.success_rate,
            "errors": self.errors,
            "stats": self.stats.to_dict(),
            "targets": [
                {
                    "id": o.target_id,
                    "label": o.label,
                    "status": o.status.value,
                    "run_id": o.run_id,
                    "processed_units": o.processed_units,
                    "error": o.error,
                }
                for o in self.outcomes
            ],
        }


class BatchSummaryBuilder:
    """
    Aggregates target outcomes for one batch.

    Usage:
        builder = BatchSummaryBuilder(total_targets=len(targets))
        builder.start_target(target)
        builder.add(TargetOutcome.from_run(target, state, OutcomeStatus.COMPLETED))
        summary = builder.build()
    """

    def __init__(self, total_targets: int = 0):
        self.progress = BatchProgress(total_targets=total_targets, is_running=True)
        self.outcomes: List[TargetOutcome] = []

    def start_target(self, target):
        self.progress.active_target_label = target.display_label

    def add(self, outcome: TargetOutcome):
        self.outcomes.append(outcome)
        if outcome.status == OutcomeStatus.COMPLETED:
            self.progress.completed += 1
        elif outcome.status == OutcomeStatus.FAILED:
            self.progress.failed += 1
        else:
            self.progress.skipped += 1
        self.progress.active_target_label = None

    def skip_remaining(self, targets) -> int:
        """Count not-yet-started targets as skipped."""
        for target in targets:
            self.add(TargetOutcome(
                target_id=target.target_id,
                label=target.display_label,
                status=OutcomeStatus.SKIPPED,
            ))
        return len(targets)

    def finish(self) -> BatchProgress:
        self.progress.is_running = False
        self.progress.active_target_label = None
        return self.progress

    def build(self, cancelled: bool = False) -> BatchSummary:
        stats = BatchStats()
        for outcome in self.outcomes:
            stats.merge(outcome.stats)

        summary = BatchSummary(
            completed=self.progress.completed,
            failed=self.progress.failed,
            skipped=self.progress.skipped,
            outcomes=list(self.outcomes),
            stats=stats,
            cancelled=cancelled,
        )

        if summary.failed:
            logger.warning(f"Batch: {summary.failed} targets failed")

        logger.info(
            f"Batch summary: {summary.completed} completed, {summary.failed} failed, "
            f"{summary.skipped} skipped ({summary.success_rate:.0%} success)"
        )
        return summary
