"""
Resumable ingestion engine.

Slice executor -> run controller -> batch orchestrator, with target selection,
progress sinks and durable run records.
"""

from .errors import (
    IngestionError,
    SliceError,
    TransientNetworkError,
    InvalidResponseError,
    ExternalProcessingError,
    MissingPayloadError,
    CancellationRequested,
    PersistenceWriteFailure,
    InvalidTransitionError,
)
from .cancellation import CancellationToken
from .run_state import BatchStats, RunState, RunStatus, RunTiming
from .run_store import RunStore, InMemoryRunStore, SQLiteRunStore
from .slice_executor import (
    ProcessingTarget,
    SliceResult,
    SliceExecutor,
    HttpSliceExecutor,
    static_auth_headers,
)
from .protocols import (
    SliceProtocol,
    GenericSliceProtocol,
    PageExtractionProtocol,
    LegalIngestionProtocol,
    EmbeddingBackfillProtocol,
)
from .target_selector import (
    TargetSnapshot,
    TargetSelector,
    has_items,
    has_no_items,
    lacks_enrichment,
    missing_enrichment,
    category_in,
    has_locator,
    all_of,
    any_of,
    reingestion_selector,
    embedding_backfill_selector,
    missing_chunks_selector,
    load_snapshot,
)
from .progress import ProgressSink, ProgressTracker, CallbackSink, LoggingSink, ConsoleSink
from .run_controller import (
    ExhaustedRetryPolicy,
    AbortOnExhaustedRetries,
    SkipOnExhaustedRetries,
    RunConfig,
    RunController,
)
from .summary import OutcomeStatus, TargetOutcome, BatchProgress, BatchSummary, BatchSummaryBuilder
from .orchestrator import BatchOrchestrator, OrchestratorConfig
from .workflows import (
    build_executor,
    DocumentPreparer,
    page_extraction_controller,
    reingestion_orchestrator,
    missing_chunks_orchestrator,
    embedding_backfill_orchestrator,
)

__all__ = [
    # Errors
    'IngestionError',
    'SliceError',
    'TransientNetworkError',
    'InvalidResponseError',
    'ExternalProcessingError',
    'MissingPayloadError',
    'CancellationRequested',
    'PersistenceWriteFailure',
    'InvalidTransitionError',
    # Run state & persistence
    'CancellationToken',
    'BatchStats',
    'RunState',
    'RunStatus',
    'RunTiming',
    'RunStore',
    'InMemoryRunStore',
    'SQLiteRunStore',
    # Slice execution
    'ProcessingTarget',
    'SliceResult',
    'SliceExecutor',
    'HttpSliceExecutor',
    'static_auth_headers',
    'SliceProtocol',
    'GenericSliceProtocol',
    'PageExtractionProtocol',
    'LegalIngestionProtocol',
    'EmbeddingBackfillProtocol',
    # Selection
    'TargetSnapshot',
    'TargetSelector',
    'has_items',
    'has_no_items',
    'lacks_enrichment',
    'missing_enrichment',
    'category_in',
    'has_locator',
    'all_of',
    'any_of',
    'reingestion_selector',
    'embedding_backfill_selector',
    'missing_chunks_selector',
    'load_snapshot',
    # Progress
    'ProgressSink',
    'ProgressTracker',
    'CallbackSink',
    'LoggingSink',
    'ConsoleSink',
    # Controller & orchestrator
    'ExhaustedRetryPolicy',
    'AbortOnExhaustedRetries',
    'SkipOnExhaustedRetries',
    'RunConfig',
    'RunController',
    'OutcomeStatus',
    'TargetOutcome',
    'BatchProgress',
    'BatchSummary',
    'BatchSummaryBuilder',
    'BatchOrchestrator',
    'OrchestratorConfig',
    # Workflows
    'build_executor',
    'DocumentPreparer',
    'page_extraction_controller',
    'reingestion_orchestrator',
    'missing_chunks_orchestrator',
    'embedding_backfill_orchestrator',
]
