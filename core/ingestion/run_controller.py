"""
Run controller.
Drives one target to completion through repeated slice calls.

Lifecycle: idle -> processing -> {done, paused, error}, paused -> processing
via resume(run_id). Every slice is bracketed by a reservation write and a
commit write to the run store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union
import asyncio

from config.logging_config import get_logger
from config.constants import (
    INGEST_EXHAUSTED_RETRY_POLICY,
    INGEST_INTER_SLICE_DELAY_MS,
    INGEST_MAX_RETRIES,
    INGEST_RETRY_BACKOFF_BASE_MS,
    INGEST_SLICE_SIZE,
)

from .cancellation import CancellationToken
from .errors import (
    CancellationRequested,
    ExternalProcessingError,
    InvalidResponseError,
    InvalidTransitionError,
    MissingPayloadError,
    PersistenceWriteFailure,
    SliceError,
)
from .progress import ProgressSink, ProgressTracker
from .run_state import RunState, RunStatus
from .run_store import InMemoryRunStore, RunStore
from .slice_executor import ProcessingTarget, SliceExecutor, SliceResult

logger = get_logger(__name__)


class ExhaustedRetryPolicy(Enum):
    """What a run does with a slice that still fails after all retries."""
    ABORT_ON_EXHAUSTED_RETRIES = "abort"
    SKIP_ON_EXHAUSTED_RETRIES = "skip"

    @classmethod
    def parse(cls, value: Union[str, "ExhaustedRetryPolicy"]) -> "ExhaustedRetryPolicy":
        """Accept an enum member, its value ("abort"/"skip") or its name."""
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        for policy in cls:
            if key.lower() == policy.value or key.upper() == policy.name:
                return policy
        aliases = {
            "abortonexhaustedretries": cls.ABORT_ON_EXHAUSTED_RETRIES,
            "skiponexhaustedretries": cls.SKIP_ON_EXHAUSTED_RETRIES,
        }
        if key.lower() in aliases:
            return aliases[key.lower()]
        raise ValueError(f"Unknown exhausted-retry policy: {value!r}")


AbortOnExhaustedRetries = ExhaustedRetryPolicy.ABORT_ON_EXHAUSTED_RETRIES
SkipOnExhaustedRetries = ExhaustedRetryPolicy.SKIP_ON_EXHAUSTED_RETRIES


@dataclass
class RunConfig:
    """Per-run execution knobs."""
    slice_size: int = INGEST_SLICE_SIZE
    inter_slice_delay_ms: int = INGEST_INTER_SLICE_DELAY_MS
    max_retries: int = INGEST_MAX_RETRIES
    retry_backoff_base_ms: int = INGEST_RETRY_BACKOFF_BASE_MS
    exhausted_retry_policy: ExhaustedRetryPolicy = ExhaustedRetryPolicy.parse(INGEST_EXHAUSTED_RETRY_POLICY)
    # Retry business failures reported by the remote as if they were transient
    retry_external_errors: bool = False

    def __post_init__(self):
        self.exhausted_retry_policy = ExhaustedRetryPolicy.parse(self.exhausted_retry_policy)
        if self.slice_size < 1:
            raise ValueError(f"slice_size must be >= 1, got {self.slice_size}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.inter_slice_delay_ms < 0 or self.retry_backoff_base_ms < 0:
            raise ValueError("delays must be >= 0")

    def backoff_ms(self, attempt: int) -> int:
        """Delay before retry ``attempt`` (1-based)."""
        return attempt * self.retry_backoff_base_ms

    @classmethod
    def from_settings(cls, settings: Any, **overrides) -> "RunConfig":
        values = dict(
            slice_size=settings.slice_size,
            inter_slice_delay_ms=settings.inter_slice_delay_ms,
            max_retries=settings.max_retries,
            retry_backoff_base_ms=settings.retry_backoff_base_ms,
            exhausted_retry_policy=settings.exhausted_retry_policy,
        )
        values.update(overrides)
        return cls(**values)


Sleep = Callable[[float], Awaitable[Any]]


class RunController:
    """
    Drives a single target's run.

    Features:
    - Bounded retries with linear backoff (attempt x base)
    - Inter-slice delay to spare the shared remote processor
    - Named exhausted-retry policy (abort or skip)
    - Cooperative cancellation sampled between slices only
    - Resume from the persisted cursor

    One controller may drive many runs one after the other, but a run must
    have a single owner at a time: resuming the same run_id from two
    controllers concurrently is not guarded against.

    Usage:
        controller = RunController(executor, store=SQLiteRunStore(path))
        state = await controller.start(target, cancel_token=token)
        if state.status == RunStatus.PAUSED:
            state = await controller.resume(state.run_id)
    """

    def __init__(
        self,
        executor: SliceExecutor,
        store: Optional[RunStore] = None,
        config: Optional[RunConfig] = None,
        sinks: Optional[List[ProgressSink]] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize controller.

        Args:
            executor: Performs one slice call
            store: Run record persistence (in-memory when omitted)
            config: Execution knobs (defaults from constants)
            sinks: Progress receivers, notified in order
            sleep: Awaitable sleep(seconds), injectable for tests
        """
        self.executor = executor
        self.store = store if store is not None else InMemoryRunStore()
        self.config = config or RunConfig()
        self.tracker = ProgressTracker(sinks)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start(
        self,
        target: ProcessingTarget,
        cancel_token: Optional[CancellationToken] = None,
        run_id: Optional[str] = None,
    ) -> RunState:
        """
        Start a fresh run for a target.

        Returns:
            Final RunState (done, paused or error)

        Raises:
            Exception: anything that is not a slice failure (run marked error first)
        """
        state = RunState.create(target.target_id, target.locator, run_id=run_id)
        if target.expected_units is not None:
            state.total_units = target.expected_units

        state.transition_to(RunStatus.PROCESSING)
        logger.info(
            f"Run {state.run_id} started for {target.display_label} "
            f"(slice={self.config.slice_size}, policy={self.config.exhausted_retry_policy.value})"
        )
        return await self._run(state, target, cancel_token or CancellationToken())

    async def resume(
        self,
        run_id: str,
        target: Optional[ProcessingTarget] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RunState:
        """
        Continue a paused run from its persisted cursor.

        Args:
            run_id: Identifier of a persisted run
            target: Target to drive; rebuilt from the record when omitted
            cancel_token: Cancellation for this resumption

        Raises:
            KeyError: if the store has no such run
            InvalidTransitionError: if the run is not paused
            ValueError: if ``target`` is not the run's target
        """
        state = self.store.load(run_id)
        if state is None:
            raise KeyError(run_id)

        state.recover_interrupted()
        if not state.can_resume:
            raise InvalidTransitionError(
                f"Run {run_id} is {state.status.value}; only paused runs can resume"
            )

        if target is None:
            target = ProcessingTarget(target_id=state.target_ref, locator=state.target_locator)
        elif target.target_id != state.target_ref:
            raise ValueError(
                f"Run {run_id} belongs to {state.target_ref}, not {target.target_id}"
            )

        state.transition_to(RunStatus.PROCESSING)
        logger.info(
            f"Run {run_id} resumed for {target.display_label} at unit {state.cursor}"
            f"{f'/{state.total_units}' if state.total_units is not None else ''}"
        )
        return await self._run(state, target, cancel_token or CancellationToken())

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self, state: RunState, target: ProcessingTarget, token: CancellationToken) -> RunState:
        try:
            return await self._loop(state, target, token)
        except Exception as e:
            if state.status == RunStatus.PROCESSING:
                state.fail(f"{type(e).__name__}: {e}")
                self._persist(state, "failure")
                logger.error(f"Run {state.run_id} crashed: {state.last_error}")
                await self.tracker.error(state.last_error, state)
            raise

    async def _loop(self, state: RunState, target: ProcessingTarget, token: CancellationToken) -> RunState:
        await self.tracker.progress(state)

        while True:
            if state.is_exhausted:
                return await self._finish(state)

            try:
                token.raise_if_cancelled()
            except CancellationRequested as e:
                return await self._pause(state, str(e))

            self._persist(state, "reservation")

            try:
                result = await self._invoke_with_retry(state, target)
                self._check_advance(state, result)
                if result.error:
                    logger.warning(f"Run {state.run_id}: remote reported '{result.error}' on a completed slice")
                state.apply_slice(result)
            except SliceError as e:
                if not self._can_skip(state, e):
                    return await self._abort(state, e)
                skipped = state.skip_units(self.config.slice_size, str(e))
                logger.warning(
                    f"Run {state.run_id}: skipped {skipped} units after exhausted retries, "
                    f"continuing at {state.cursor}"
                )
                self._persist(state, "commit")
                await self.tracker.progress(state)
            else:
                self._persist(state, "commit")
                await self.tracker.progress(state)
                if result.done:
                    return await self._finish(state)

            if state.is_exhausted:
                return await self._finish(state)

            if self.config.inter_slice_delay_ms > 0 and not token.is_cancelled:
                await self._sleep(self.config.inter_slice_delay_ms / 1000)

    async def _invoke_with_retry(self, state: RunState, target: ProcessingTarget) -> SliceResult:
        attempt = 0
        while True:
            try:
                return await self.executor.invoke(
                    target,
                    state.cursor,
                    self.config.slice_size,
                    state.remote_run_id,
                )
            except SliceError as e:
                if not self._is_retryable(e):
                    raise
                if attempt >= self.config.max_retries:
                    logger.warning(
                        f"Run {state.run_id}: slice at {state.cursor} failed after "
                        f"{self.config.max_retries} retries: {e}"
                    )
                    raise

                attempt += 1
                state.timing.retry_count += 1
                delay_ms = self.config.backoff_ms(attempt)
                logger.warning(
                    f"Run {state.run_id}: slice at {state.cursor} failed ({e}), "
                    f"retry {attempt}/{self.config.max_retries} in {delay_ms}ms"
                )
                await self._sleep(delay_ms / 1000)

    def _is_retryable(self, error: SliceError) -> bool:
        if isinstance(error, (InvalidResponseError, MissingPayloadError)):
            return False
        if isinstance(error, ExternalProcessingError):
            return self.config.retry_external_errors
        return error.retryable

    def _can_skip(self, state: RunState, error: SliceError) -> bool:
        if self.config.exhausted_retry_policy != ExhaustedRetryPolicy.SKIP_ON_EXHAUSTED_RETRIES:
            return False
        if isinstance(error, (InvalidResponseError, MissingPayloadError)):
            return False
        if state.total_units is None:
            logger.warning(f"Run {state.run_id}: cannot skip without a known total, aborting")
            return False
        return True

    @staticmethod
    def _check_advance(state: RunState, result: SliceResult):
        if result.done:
            return
        if result.next_cursor is None:
            raise InvalidResponseError("next cursor missing while done=false")
        if result.next_cursor == state.cursor:
            raise InvalidResponseError(f"Remote made no progress at unit {state.cursor}")

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    async def _finish(self, state: RunState) -> RunState:
        state.transition_to(RunStatus.DONE)
        self._persist(state, "done")
        logger.info(
            f"Run {state.run_id} done: {state.processed_units} units, "
            f"{state.timing.slice_count} slices, {state.timing.retry_count} retries"
        )
        await self.tracker.complete(state)
        return state

    async def _pause(self, state: RunState, reason: str) -> RunState:
        state.transition_to(RunStatus.PAUSED)
        self._persist(state, "pause")
        logger.info(f"Run {state.run_id} paused at unit {state.cursor}: {reason}")
        await self.tracker.complete(state)
        return state

    async def _abort(self, state: RunState, error: SliceError) -> RunState:
        state.fail(str(error))
        self._persist(state, "abort")
        logger.error(f"Run {state.run_id} aborted at unit {state.cursor}: {error}")
        await self.tracker.error(str(error), state)
        return state

    def _persist(self, state: RunState, phase: str):
        try:
            self.store.save(state)
        except PersistenceWriteFailure as e:
            logger.warning(f"Run {state.run_id}: {phase} write failed, continuing in memory: {e}")
