"""
Progress reporting.
Fans run and batch progress out to any number of sinks.

Sinks are awaited one after the other in notification order, so a slow sink
slows the engine down; a failing sink is logged and skipped.
"""

from typing import Any, Awaitable, Callable, List, Optional, Union
import asyncio

from config.logging_config import get_logger

logger = get_logger(__name__)


class ProgressSink:
    """
    Receiver of engine progress.

    ``state`` is a detached copy: a RunState for the RunController, a
    BatchProgress for the BatchOrchestrator. Subclasses override what they need.
    """

    async def on_progress(self, state: Any) -> None:
        pass

    async def on_complete(self, final_state: Any) -> None:
        pass

    async def on_error(self, message: str, state: Any) -> None:
        pass


def _copy(state: Any) -> Any:
    snapshot = getattr(state, "snapshot", None)
    return snapshot() if callable(snapshot) else state


class ProgressTracker:
    """
    Ordered fan-out to progress sinks.

    Usage:
        tracker = ProgressTracker([LoggingSink(), ConsoleSink()])
        await tracker.progress(run_state)
        await tracker.complete(run_state)
    """

    def __init__(self, sinks: Optional[List[ProgressSink]] = None):
        self._sinks: List[ProgressSink] = list(sinks or [])

    def add_sink(self, sink: ProgressSink):
        """Add progress sink."""
        self._sinks.append(sink)

    def remove_sink(self, sink: ProgressSink):
        """Remove progress sink."""
        if sink in self._sinks:
            self._sinks.remove(sink)

    @property
    def sinks(self) -> List[ProgressSink]:
        return list(self._sinks)

    async def progress(self, state: Any):
        for sink in self._sinks:
            await self._deliver(sink, "on_progress", _copy(state))

    async def complete(self, final_state: Any):
        for sink in self._sinks:
            await self._deliver(sink, "on_complete", _copy(final_state))

    async def error(self, message: str, state: Any):
        for sink in self._sinks:
            await self._deliver(sink, "on_error", message, _copy(state))

    async def _deliver(self, sink: ProgressSink, method: str, *args):
        try:
            await getattr(sink, method)(*args)
        except Exception as e:
            logger.error(f"Progress sink {type(sink).__name__}.{method} failed: {e}")


SinkCallback = Callable[..., Union[None, Awaitable[None]]]


class CallbackSink(ProgressSink):
    """Adapts plain (sync or async) callables into a sink."""

    def __init__(
        self,
        on_progress: Optional[SinkCallback] = None,
        on_complete: Optional[SinkCallback] = None,
        on_error: Optional[SinkCallback] = None,
    ):
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_error = on_error

    @staticmethod
    async def _call(callback: Optional[SinkCallback], *args):
        if callback is None:
            return
        result = callback(*args)
        if asyncio.iscoroutine(result):
            await result

    async def on_progress(self, state):
        await self._call(self._on_progress, state)

    async def on_complete(self, final_state):
        await self._call(self._on_complete, final_state)

    async def on_error(self, message, state):
        await self._call(self._on_error, message, state)


def _describe(state: Any) -> str:
    # RunState
    if hasattr(state, "cursor"):
        total = state.total_units if state.total_units is not None else "?"
        pct = f" ({state.progress_fraction * 100:.1f}%)" if state.total_units else ""
        return (
            f"{state.target_ref}: {state.processed_units}/{total} units{pct}, "
            f"next={state.cursor}, status={state.status.value}"
        )
    # BatchProgress
    if hasattr(state, "total_targets"):
        active = f", active={state.active_target_label}" if state.active_target_label else ""
        return (
            f"batch: {state.completed} done, {state.failed} failed, "
            f"{state.skipped} skipped / {state.total_targets}{active}"
        )
    return repr(state)


class LoggingSink(ProgressSink):
    """Logs every N progress updates, plus completions and errors."""

    def __init__(self, log_interval: int = 5):
        self.log_interval = max(1, log_interval)
        self._count = 0

    async def on_progress(self, state):
        self._count += 1
        if self._count % self.log_interval == 0:
            logger.info(f"Progress: {_describe(state)}")

    async def on_complete(self, final_state):
        logger.info(f"Finished: {_describe(final_state)}")

    async def on_error(self, message, state):
        logger.error(f"Error: {message}")


class ConsoleSink(ProgressSink):
    """Single-line terminal output for the CLI."""

    def __init__(self, stream=None):
        self.stream = stream

    def _write(self, line: str):
        print(line, file=self.stream, flush=True)

    async def on_progress(self, state):
        self._write(f"  ... {_describe(state)}")

    async def on_complete(self, final_state):
        self._write(f"  ✓ {_describe(final_state)}")

    async def on_error(self, message, state):
        self._write(f"  ✗ {message}")
