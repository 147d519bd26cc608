"""
Preconfigured ingestion jobs.

Each factory wires a protocol, a RunConfig and (for multi-target jobs) a
selector and orchestrator with the pacing the remote processor tolerates:

- page_extraction_controller: one PDF, 4 pages per call
- reingestion_orchestrator: legal sources lacking hierarchy, 1 page per call
- missing_chunks_orchestrator: stored documents that were never chunked
- embedding_backfill_orchestrator: tables with rows lacking embeddings
"""

from dataclasses import replace
from typing import Any, List, Optional
import base64

import httpx

from config.logging_config import get_logger
from config.constants import (
    EMBEDDING_BATCH_LIMIT,
    EMBEDDING_INTER_SLICE_DELAY_MS,
    EMBEDDING_INTER_TARGET_DELAY_MS,
    REINGEST_CATEGORIES,
    REINGEST_COUNTRY_CODE,
    REINGEST_INTER_SLICE_DELAY_MS,
    REINGEST_INTER_TARGET_DELAY_MS,
    REINGEST_SLICE_SIZE,
)

from .errors import ExternalProcessingError, TransientNetworkError
from .orchestrator import BatchOrchestrator, OrchestratorConfig
from .progress import ProgressSink
from .protocols import (
    EmbeddingBackfillProtocol,
    LegalIngestionProtocol,
    PageExtractionProtocol,
    SliceProtocol,
)
from .run_controller import (
    AbortOnExhaustedRetries,
    RunConfig,
    RunController,
    SkipOnExhaustedRetries,
)
from .run_store import InMemoryRunStore, RunStore, SQLiteRunStore
from .slice_executor import HttpSliceExecutor, ProcessingTarget, static_auth_headers
from .target_selector import (
    embedding_backfill_selector,
    missing_chunks_selector,
    reingestion_selector,
)

logger = get_logger(__name__)


def build_executor(client: httpx.AsyncClient, settings: Any, protocol: SliceProtocol) -> HttpSliceExecutor:
    """HTTP executor for ``protocol`` using the gateway URL, key and timeout from settings."""
    auth = static_auth_headers(settings.remote_api_key) if settings.remote_api_key else None
    return HttpSliceExecutor(
        client,
        base_url=settings.remote_base_url,
        protocol=protocol,
        timeout_ms=settings.hard_timeout_ms,
        auth_headers=auth,
    )


def build_store(settings: Any) -> RunStore:
    if settings.run_store_enabled:
        return SQLiteRunStore(settings.run_store_path)
    return InMemoryRunStore()


class DocumentPreparer:
    """
    Pre-run step for legal re-ingestion.

    Removes the chunks and HS evidence previously derived from the source,
    resets its chunk counter, then downloads the stored PDF and attaches it
    base64-encoded to the target. Cleanup problems are logged and ignored;
    a failed download fails the target.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Any, cleanup: bool = True):
        self.client = client
        self.rest_url = settings.rest_base_url.rstrip("/")
        self.storage_url = settings.storage_base_url.rstrip("/")
        self.bucket = settings.storage_bucket
        self.api_key = settings.remote_api_key
        self.cleanup = cleanup

    def _headers(self):
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}", "apikey": self.api_key}

    async def __call__(self, target: ProcessingTarget) -> ProcessingTarget:
        if not target.locator:
            raise ExternalProcessingError(
                f"No stored PDF for {target.display_label}; re-upload the document"
            )
        if self.cleanup:
            await self._clean_source(target.target_id)

        pdf_bytes = await self._download(target.locator)
        metadata = dict(target.metadata)
        metadata["pdf_base64"] = base64.b64encode(pdf_bytes).decode("ascii")
        metadata.setdefault("source_id", target.target_id)
        logger.info(f"Prepared {target.display_label}: {len(pdf_bytes)} bytes")
        return replace(target, metadata=metadata)

    async def _clean_source(self, source_id: str):
        headers = self._headers()
        for table in ("legal_chunks", "hs_evidence"):
            try:
                response = await self.client.delete(
                    f"{self.rest_url}/{table}",
                    params={"source_id": f"eq.{source_id}"},
                    headers=headers,
                )
                if not response.is_success:
                    logger.warning(f"Cleanup of {table} for {source_id}: HTTP {response.status_code}")
            except httpx.HTTPError as e:
                logger.warning(f"Cleanup of {table} for {source_id} failed: {e}")

        try:
            await self.client.patch(
                f"{self.rest_url}/legal_sources",
                params={"id": f"eq.{source_id}"},
                json={"total_chunks": 0},
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Could not reset chunk counter for {source_id}: {e}")

    async def _download(self, path: str) -> bytes:
        url = f"{self.storage_url}/object/{self.bucket}/{path.lstrip('/')}"
        try:
            response = await self.client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransientNetworkError("PDF download failed", diagnostic=str(e)) from e
        if not response.is_success:
            raise ExternalProcessingError(
                f"PDF download failed: HTTP {response.status_code}",
                diagnostic=response.text,
                status_code=response.status_code,
            )
        return response.content


def _workflow_value(settings: Any, name: str, default: Any) -> Any:
    """``settings.<name>`` when set explicitly (kwargs or .env), else the job's own default."""
    if name in getattr(settings, "model_fields_set", ()):
        return getattr(settings, name)
    return default


def _workflow_config(settings: Any, defaults: dict, overrides: dict) -> RunConfig:
    values = {name: _workflow_value(settings, name, value) for name, value in defaults.items()}
    values.update(overrides)
    return RunConfig.from_settings(settings, **values)


def _orchestrator_config(settings: Any, override: Optional[int], default: int) -> OrchestratorConfig:
    if override is None:
        override = _workflow_value(settings, "inter_target_delay_ms", default)
    return OrchestratorConfig(inter_target_delay_ms=override)


def page_extraction_controller(
    client: httpx.AsyncClient,
    settings: Any,
    store: Optional[RunStore] = None,
    sinks: Optional[List[ProgressSink]] = None,
    **config_overrides,
) -> RunController:
    """Single-document extraction (analyze-pdf), abort on exhausted retries."""
    config = _workflow_config(
        settings,
        {"exhausted_retry_policy": AbortOnExhaustedRetries},
        config_overrides,
    )
    return RunController(
        build_executor(client, settings, PageExtractionProtocol()),
        store=store if store is not None else build_store(settings),
        config=config,
        sinks=sinks,
    )


def _reingestion_controller(client, settings, store, sinks, config_overrides) -> RunController:
    config = _workflow_config(
        settings,
        {
            "slice_size": REINGEST_SLICE_SIZE,
            "inter_slice_delay_ms": REINGEST_INTER_SLICE_DELAY_MS,
            "exhausted_retry_policy": SkipOnExhaustedRetries,
        },
        {"retry_external_errors": True, **config_overrides},
    )
    protocol = LegalIngestionProtocol(country_code=settings.country_code or REINGEST_COUNTRY_CODE)
    return RunController(
        build_executor(client, settings, protocol),
        store=store if store is not None else build_store(settings),
        config=config,
        sinks=sinks,
    )


def reingestion_orchestrator(
    client: httpx.AsyncClient,
    settings: Any,
    store: Optional[RunStore] = None,
    run_sinks: Optional[List[ProgressSink]] = None,
    batch_sinks: Optional[List[ProgressSink]] = None,
    prepare_target=None,
    inter_target_delay_ms: Optional[int] = None,
    **config_overrides,
) -> BatchOrchestrator:
    """Structural re-ingestion of legal sources that have chunks but no hierarchy."""
    return BatchOrchestrator(
        _reingestion_controller(client, settings, store, run_sinks, config_overrides),
        selector=reingestion_selector(REINGEST_CATEGORIES),
        config=_orchestrator_config(settings, inter_target_delay_ms, REINGEST_INTER_TARGET_DELAY_MS),
        sinks=batch_sinks,
        prepare_target=prepare_target or DocumentPreparer(client, settings),
    )


def missing_chunks_orchestrator(
    client: httpx.AsyncClient,
    settings: Any,
    store: Optional[RunStore] = None,
    run_sinks: Optional[List[ProgressSink]] = None,
    batch_sinks: Optional[List[ProgressSink]] = None,
    prepare_target=None,
    inter_target_delay_ms: Optional[int] = None,
    **config_overrides,
) -> BatchOrchestrator:
    """Ingestion of stored documents that never produced a chunk."""
    return BatchOrchestrator(
        _reingestion_controller(client, settings, store, run_sinks, config_overrides),
        selector=missing_chunks_selector(),
        config=_orchestrator_config(settings, inter_target_delay_ms, REINGEST_INTER_TARGET_DELAY_MS),
        sinks=batch_sinks,
        prepare_target=prepare_target or DocumentPreparer(client, settings),
    )


def embedding_backfill_orchestrator(
    client: httpx.AsyncClient,
    settings: Any,
    store: Optional[RunStore] = None,
    run_sinks: Optional[List[ProgressSink]] = None,
    batch_sinks: Optional[List[ProgressSink]] = None,
    inter_target_delay_ms: Optional[int] = None,
    **config_overrides,
) -> BatchOrchestrator:
    """Embedding generation table by table, stopping a table on its first failure."""
    config = _workflow_config(
        settings,
        {
            "slice_size": EMBEDDING_BATCH_LIMIT,
            "inter_slice_delay_ms": EMBEDDING_INTER_SLICE_DELAY_MS,
            "exhausted_retry_policy": AbortOnExhaustedRetries,
        },
        config_overrides,
    )
    controller = RunController(
        build_executor(client, settings, EmbeddingBackfillProtocol()),
        store=store if store is not None else build_store(settings),
        config=config,
        sinks=run_sinks,
    )
    return BatchOrchestrator(
        controller,
        selector=embedding_backfill_selector(),
        config=_orchestrator_config(settings, inter_target_delay_ms, EMBEDDING_INTER_TARGET_DELAY_MS),
        sinks=batch_sinks,
    )
