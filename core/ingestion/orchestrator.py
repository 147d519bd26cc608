"""
Batch orchestrator.
Runs a RunController over an ordered list of targets, one at a time.

A target's failure is counted, never propagated: the batch always reaches the
end of its list (or its cancellation point) and returns a summary.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Union
import asyncio

from config.logging_config import get_logger
from config.constants import INGEST_INTER_TARGET_DELAY_MS

from .cancellation import CancellationToken
from .progress import ProgressSink, ProgressTracker
from .run_controller import RunController
from .run_state import RunStatus
from .slice_executor import ProcessingTarget
from .summary import BatchSummary, BatchSummaryBuilder, OutcomeStatus, TargetOutcome
from .target_selector import TargetSelector, TargetSnapshot

logger = get_logger(__name__)


@dataclass
class OrchestratorConfig:
    """Configuration for BatchOrchestrator."""
    inter_target_delay_ms: int = INGEST_INTER_TARGET_DELAY_MS

    def __post_init__(self):
        if self.inter_target_delay_ms < 0:
            raise ValueError("inter_target_delay_ms must be >= 0")


PrepareTarget = Callable[[ProcessingTarget], Awaitable[ProcessingTarget]]


class BatchOrchestrator:
    """
    Sequential multi-target driver.

    Features:
    - Strictly one target at a time, in selection order
    - Inter-target delay between targets
    - Optional async preparation step per target (cleanup, download)
    - Batch cancellation checked before each target; the target in flight
      finishes first and the rest are counted as skipped
    - Run failures converted into ``failed`` counts

    Usage:
        orchestrator = BatchOrchestrator(controller, selector=reingestion_selector())
        summary = await orchestrator.run_batch(snapshot, cancel_token=token)
        print(summary.completed, summary.failed, summary.skipped)
    """

    def __init__(
        self,
        controller: RunController,
        selector: Optional[TargetSelector] = None,
        config: Optional[OrchestratorConfig] = None,
        sinks: Optional[List[ProgressSink]] = None,
        prepare_target: Optional[PrepareTarget] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            controller: Drives each target's run
            selector: Picks targets when run_batch receives a snapshot
            config: Orchestrator configuration
            sinks: Receivers of BatchProgress notifications
            prepare_target: Async hook run before each target's run
            sleep: Awaitable sleep(seconds), injectable for tests
        """
        self.controller = controller
        self.selector = selector
        self.config = config or OrchestratorConfig()
        self.tracker = ProgressTracker(sinks)
        self.prepare_target = prepare_target
        self._sleep = sleep
        self._active_token: Optional[CancellationToken] = None

        logger.debug(
            f"BatchOrchestrator initialized: delay={self.config.inter_target_delay_ms}ms, "
            f"selector={'yes' if selector else 'no'}"
        )

    def _resolve_targets(
        self,
        items: Iterable[Union[TargetSnapshot, ProcessingTarget]],
    ) -> List[ProcessingTarget]:
        items = list(items)
        if items and all(isinstance(i, TargetSnapshot) for i in items):
            if self.selector is not None:
                return self.selector.select(items)
            return [i.target for i in items]
        return [i.target if isinstance(i, TargetSnapshot) else i for i in items]

    def pause_active_run(self, reason: str = "paused by user") -> bool:
        """
        Pause the target currently in flight.

        The run stops after its current slice and the target counts as skipped;
        the batch moves on to the next target.

        Returns:
            True if a run was in flight
        """
        if self._active_token is None:
            return False
        self._active_token.cancel(reason)
        return True

    async def run_batch(
        self,
        targets: Iterable[Union[TargetSnapshot, ProcessingTarget]],
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchSummary:
        """
        Process targets sequentially.

        Args:
            targets: Catalogue snapshot (filtered through the selector) or
                an explicit ordered list of targets
            cancel_token: Batch-level cancellation

        Returns:
            BatchSummary with completed/failed/skipped counts
        """
        token = cancel_token or CancellationToken("batch")
        selected = self._resolve_targets(targets)
        builder = BatchSummaryBuilder(total_targets=len(selected))

        logger.info(f"Batch started: {len(selected)} targets")
        await self.tracker.progress(builder.progress)

        for index, target in enumerate(selected):
            if token.is_cancelled:
                self._skip_rest(builder, selected[index:], token)
                break

            if index > 0 and self.config.inter_target_delay_ms > 0:
                await self._sleep(self.config.inter_target_delay_ms / 1000)
                if token.is_cancelled:
                    self._skip_rest(builder, selected[index:], token)
                    break

            builder.start_target(target)
            await self.tracker.progress(builder.progress)

            outcome = await self._run_target(target)
            builder.add(outcome)

            if outcome.status == OutcomeStatus.FAILED:
                await self.tracker.error(
                    f"{outcome.label}: {outcome.error or 'unknown error'}",
                    builder.progress,
                )
            await self.tracker.progress(builder.progress)

        progress = builder.finish()
        summary = builder.build(cancelled=token.is_cancelled)
        await self.tracker.complete(progress)
        return summary

    def _skip_rest(self, builder: BatchSummaryBuilder, remaining: Sequence[ProcessingTarget], token: CancellationToken):
        count = builder.skip_remaining(remaining)
        logger.info(f"Batch cancelled ({token.reason}): {count} targets skipped")

    async def _run_target(self, target: ProcessingTarget) -> TargetOutcome:
        run_token = CancellationToken(target.target_id)
        self._active_token = run_token

        logger.info(f"Target {target.display_label}: starting")
        try:
            if self.prepare_target is not None:
                target = await self.prepare_target(target)
            state = await self.controller.start(target, cancel_token=run_token)
        except Exception as e:
            logger.error(f"Target {target.display_label} failed: {type(e).__name__}: {e}")
            return TargetOutcome(
                target_id=target.target_id,
                label=target.display_label,
                status=OutcomeStatus.FAILED,
                error=f"{type(e).__name__}: {e}",
            )
        finally:
            self._active_token = None

        if state.status == RunStatus.DONE:
            status = OutcomeStatus.COMPLETED
        elif state.status == RunStatus.PAUSED:
            status = OutcomeStatus.SKIPPED
        else:
            status = OutcomeStatus.FAILED

        logger.info(
            f"Target {target.display_label}: {status.value} "
            f"({state.processed_units} units, run {state.run_id})"
        )
        return TargetOutcome.from_run(target, state, status)
