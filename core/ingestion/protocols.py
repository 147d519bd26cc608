"""
Wire protocols for the remote slice endpoints.

Each protocol knows how to encode a slice request for one endpoint and how to
turn its JSON answer into a SliceResult:

- GenericSliceProtocol: engine-native contract (per-slice counts)
- PageExtractionProtocol: analyze-pdf batch mode (cumulative counts)
- LegalIngestionProtocol: ingest-legal-doc page-range mode
- EmbeddingBackfillProtocol: generate-embeddings row-limit mode
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from config.constants import (
    EMBEDDING_ENDPOINT,
    EXTRACTION_ENDPOINT,
    REINGEST_COUNTRY_CODE,
    REINGEST_ENDPOINT,
)

from .errors import ExternalProcessingError, InvalidResponseError, MissingPayloadError
from .run_state import BatchStats
from .slice_executor import ProcessingTarget, SliceResult


def _as_int(payload: Dict[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidResponseError(f"Field {key!r} is not a number", diagnostic=repr(value))
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidResponseError(f"Field {key!r} is not a number", diagnostic=repr(value))


class SliceProtocol(ABC):
    """Request/response shape of one remote endpoint."""

    endpoint: str = ""

    @abstractmethod
    def build_request(
        self,
        target: ProcessingTarget,
        cursor: int,
        slice_size: int,
        run_id: Optional[str],
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def parse_response(
        self,
        payload: Dict[str, Any],
        target: ProcessingTarget,
        cursor: int,
        slice_size: int,
    ) -> SliceResult:
        ...


class GenericSliceProtocol(SliceProtocol):
    """
    Engine-native slice contract.

    Request:  {target_ref, start_unit, unit_count, run_id, **mode_flags}
    Response: {run_id, done, next_unit, processed_units, total_units,
               stats, status, error?}

    ``processed_units`` and ``stats`` describe this slice only.
    """

    def __init__(self, endpoint: str, mode_flags: Optional[Dict[str, Any]] = None):
        self.endpoint = endpoint
        self.mode_flags = dict(mode_flags or {})

    def build_request(self, target, cursor, slice_size, run_id):
        return {
            "target_ref": target.target_id,
            "locator": target.locator,
            "start_unit": cursor,
            "unit_count": slice_size,
            "run_id": run_id,
            **self.mode_flags,
        }

    def parse_response(self, payload, target, cursor, slice_size):
        if payload.get("status") == "error":
            raise ExternalProcessingError(
                "Remote processor reported an error",
                diagnostic=payload.get("error") or "no detail",
            )

        done = bool(payload.get("done"))
        next_unit = _as_int(payload, "next_unit")
        if not done and next_unit is None:
            raise InvalidResponseError("next_unit missing while done=false")

        return SliceResult(
            done=done,
            next_cursor=next_unit,
            processed_this_slice=_as_int(payload, "processed_units", 0),
            stats_delta=BatchStats.from_dict(payload.get("stats")),
            total_units=_as_int(payload, "total_units"),
            run_id=payload.get("run_id"),
            error=payload.get("error"),
        )


class PageExtractionProtocol(SliceProtocol):
    """
    analyze-pdf in batch mode.

    The endpoint keeps its own extraction run and reports cumulative
    ``processed_pages`` and ``stats``; pages covered by this slice are
    derived from the cursor advance.
    """

    endpoint = EXTRACTION_ENDPOINT

    def __init__(self, preview_only: bool = False):
        self.preview_only = preview_only

    def build_request(self, target, cursor, slice_size, run_id):
        return {
            "pdfId": target.target_id,
            "filePath": target.locator,
            "previewOnly": self.preview_only,
            "start_page": cursor,
            "max_pages": slice_size,
            "extraction_run_id": run_id,
        }

    def parse_response(self, payload, target, cursor, slice_size):
        if payload.get("status") == "error":
            raise ExternalProcessingError(
                "Extraction failed",
                diagnostic=payload.get("error") or "no detail",
            )

        done = bool(payload.get("done"))
        next_page = _as_int(payload, "next_page")
        total_pages = _as_int(payload, "total_pages")

        if not done and next_page is None:
            raise InvalidResponseError("Invalid batch response: next_page missing")

        if not done:
            processed = next_page - cursor
        elif total_pages is not None:
            processed = total_pages + 1 - cursor
        else:
            # Last answer without a page count: pages before the cursor are
            # already accounted for
            processed_pages = _as_int(payload, "processed_pages")
            processed = processed_pages - (cursor - 1) if processed_pages is not None else slice_size

        return SliceResult(
            done=done,
            next_cursor=None if done else next_page,
            processed_this_slice=max(0, processed),
            stats_delta=BatchStats.from_dict(payload.get("stats")),
            total_units=total_pages,
            run_id=payload.get("extraction_run_id"),
            error=payload.get("error"),
            cumulative_stats=True,
        )


class LegalIngestionProtocol(SliceProtocol):
    """
    ingest-legal-doc with ``batch_mode``.

    The document travels as base64 in ``target.metadata['pdf_base64']``
    (filled by the orchestrator's preparation hook). The first answer
    returns the ``source_id`` that later slices must echo.
    """

    endpoint = REINGEST_ENDPOINT

    SOURCE_TYPES = ("law", "circular", "agreement", "note", "decree", "decision")

    def __init__(
        self,
        country_code: str = REINGEST_COUNTRY_CODE,
        generate_embeddings: bool = True,
        detect_hs_codes: bool = True,
    ):
        self.country_code = country_code
        self.generate_embeddings = generate_embeddings
        self.detect_hs_codes = detect_hs_codes

    def build_request(self, target, cursor, slice_size, run_id):
        pdf_base64 = target.metadata.get("pdf_base64")
        if not pdf_base64:
            raise MissingPayloadError(
                f"No document payload for {target.display_label}; "
                f"the preparation step must attach pdf_base64"
            )

        source_type = target.category if target.category in self.SOURCE_TYPES else "law"
        source_ref = target.metadata.get("source_ref", target.target_id)
        source_id = run_id or target.metadata.get("source_id")

        return {
            "source_type": source_type,
            "source_ref": source_ref,
            "title": target.label or source_ref,
            "pdf_base64": pdf_base64,
            "country_code": self.country_code,
            "generate_embeddings": self.generate_embeddings,
            "detect_hs_codes": self.detect_hs_codes,
            "batch_mode": True,
            "start_page": cursor,
            "end_page": cursor + slice_size - 1,
            "source_id": source_id,
        }

    def parse_response(self, payload, target, cursor, slice_size):
        if not payload.get("success"):
            raise ExternalProcessingError(
                "Ingestion failed",
                diagnostic=payload.get("error") or "success=false",
            )

        total_pages = _as_int(payload, "total_pages")
        if total_pages is None:
            raise InvalidResponseError("total_pages missing from ingestion response")

        end_page = min(cursor + slice_size - 1, total_pages)
        pages_processed = _as_int(payload, "pages_processed", max(0, end_page - cursor + 1))
        chunks_created = _as_int(payload, "chunks_created", 0)

        stats = BatchStats()
        stats.increment("pages_processed", pages_processed)
        stats.increment("chunks_created", chunks_created)

        source_id = payload.get("source_id")
        next_page = end_page + 1

        return SliceResult(
            done=next_page > total_pages,
            next_cursor=next_page,
            processed_this_slice=pages_processed,
            stats_delta=stats,
            total_units=total_pages,
            run_id=str(source_id) if source_id is not None else None,
            error=payload.get("error"),
        )


class EmbeddingBackfillProtocol(SliceProtocol):
    """
    generate-embeddings for one table.

    Each call embeds up to ``limit`` rows lacking a vector; fewer rows than
    the limit means the table is drained. The cursor counts rows handled.
    """

    endpoint = EMBEDDING_ENDPOINT

    def __init__(self, force_update: bool = False):
        self.force_update = force_update

    def build_request(self, target, cursor, slice_size, run_id):
        body = {"table": target.target_id, "limit": slice_size}
        if self.force_update:
            body["forceUpdate"] = True
        return body

    def parse_response(self, payload, target, cursor, slice_size):
        results = payload.get("results")
        if not isinstance(results, dict):
            raise InvalidResponseError("results block missing from embeddings response")

        processed = _as_int(results, "processed", 0)
        errors = _as_int(results, "errors", 0)

        stats = BatchStats()
        stats.increment("embeddings_generated", processed)
        if errors:
            stats.increment("embedding_errors", errors)
            stats.errors.append(f"{target.target_id}: {errors} rows failed to embed")

        return SliceResult(
            done=processed < slice_size,
            next_cursor=cursor + processed,
            processed_this_slice=processed,
            stats_delta=stats,
        )
