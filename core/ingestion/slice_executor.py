"""
Slice-level remote invocation.
Sends one bounded range of work to the remote processor and normalizes the
answer into a SliceResult or a typed SliceError.

The executor never retries; retry policy belongs to the RunController.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union
import asyncio
import time

import httpx

from config.logging_config import get_logger
from config.constants import (
    INGEST_HARD_TIMEOUT_MS,
    RETRYABLE_HTTP_STATUSES,
)

from .errors import (
    ExternalProcessingError,
    InvalidResponseError,
    SliceError,
    TransientNetworkError,
)
from .run_state import BatchStats

logger = get_logger(__name__)


@dataclass
class ProcessingTarget:
    """A document or record group the engine drives to completion."""
    target_id: str
    locator: Optional[str] = None
    label: str = ""
    category: Optional[str] = None
    expected_units: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_label(self) -> str:
        return self.label or self.target_id


@dataclass
class SliceResult:
    """Normalized answer for one slice."""
    done: bool
    next_cursor: Optional[int]
    processed_this_slice: int = 0
    stats_delta: BatchStats = field(default_factory=BatchStats)
    total_units: Optional[int] = None
    run_id: Optional[str] = None
    error: Optional[str] = None
    # True when stats_delta holds whole-run totals reported by the remote
    cumulative_stats: bool = False
    duration_ms: float = 0.0


class SliceExecutor(Protocol):
    """Anything able to process one slice of a target."""

    async def invoke(
        self,
        target: ProcessingTarget,
        cursor: int,
        slice_size: int,
        run_id: Optional[str] = None,
    ) -> SliceResult:
        ...


HeadersProvider = Callable[[], Awaitable[Dict[str, str]]]


def static_auth_headers(api_key: str) -> HeadersProvider:
    """
    Build a headers provider for a fixed gateway key.

    Returns:
        Async callable yielding Authorization/apikey headers
    """
    async def provider() -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            "apikey": api_key,
        }

    return provider


class HttpSliceExecutor:
    """
    Invokes a remote slice endpoint over HTTP.

    Features:
    - Hard timeout per call (asyncio.wait_for around the request)
    - Auth headers resolved per call from the caller's context
    - Non-2xx / malformed answers mapped onto the error taxonomy
    - Wire format delegated to a SliceProtocol

    Usage:
        async with httpx.AsyncClient() as client:
            executor = HttpSliceExecutor(
                client,
                base_url="https://example.supabase.co/functions/v1",
                protocol=PageExtractionProtocol(),
                auth_headers=static_auth_headers(key),
            )
            result = await executor.invoke(target, cursor=1, slice_size=4)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        protocol: Any,
        timeout_ms: int = INGEST_HARD_TIMEOUT_MS,
        auth_headers: Optional[Union[HeadersProvider, Dict[str, str]]] = None,
    ):
        """
        Initialize executor.

        Args:
            client: Caller-owned httpx.AsyncClient
            base_url: Functions gateway base URL
            protocol: SliceProtocol describing request/response shapes
            timeout_ms: Hard timeout per slice in milliseconds
            auth_headers: Async provider (or fixed dict) of auth headers
        """
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.protocol = protocol
        self.timeout_ms = timeout_ms
        self.auth_headers = auth_headers

        logger.debug(
            f"HttpSliceExecutor initialized: endpoint={self.url}, timeout={timeout_ms}ms"
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.protocol.endpoint}"

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    async def _resolve_headers(self) -> Dict[str, str]:
        if self.auth_headers is None:
            return {"Content-Type": "application/json"}
        if isinstance(self.auth_headers, dict):
            return dict(self.auth_headers)
        return await self.auth_headers()

    async def invoke(
        self,
        target: ProcessingTarget,
        cursor: int,
        slice_size: int,
        run_id: Optional[str] = None,
    ) -> SliceResult:
        """
        Process one slice.

        Args:
            target: Target being processed
            cursor: First unit of the slice (1-based)
            slice_size: Number of units requested
            run_id: Remote run identifier, if one was issued

        Returns:
            SliceResult for the slice

        Raises:
            TransientNetworkError: timeout, transport failure, 429/5xx
            ExternalProcessingError: processor-reported failure, other 4xx
            InvalidResponseError: malformed or protocol-violating answer
        """
        body = self.protocol.build_request(target, cursor, slice_size, run_id)
        headers = await self._resolve_headers()
        start_time = time.time()

        logger.debug(
            f"Slice call {self.protocol.endpoint}: target={target.target_id}, "
            f"cursor={cursor}, size={slice_size}"
        )

        try:
            response = await asyncio.wait_for(
                self.client.post(
                    self.url,
                    json=body,
                    headers=headers,
                    timeout=self.timeout_seconds,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise TransientNetworkError(
                f"Slice timed out after {self.timeout_seconds:.0f}s "
                f"(upstream effects unknown)"
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(
                f"Slice timed out after {self.timeout_seconds:.0f}s "
                f"(upstream effects unknown)",
                diagnostic=type(e).__name__,
            ) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(
                "Network error", diagnostic=f"{type(e).__name__}: {e}"
            ) from e

        duration_ms = (time.time() - start_time) * 1000

        if response.status_code in RETRYABLE_HTTP_STATUSES or response.status_code >= 500:
            raise TransientNetworkError(
                f"HTTP {response.status_code}",
                diagnostic=response.text,
                status_code=response.status_code,
            )

        if not response.is_success:
            raise ExternalProcessingError(
                f"HTTP {response.status_code}",
                diagnostic=response.text,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise InvalidResponseError(
                "Response is not valid JSON", diagnostic=response.text
            ) from e

        if not isinstance(payload, dict):
            raise InvalidResponseError(
                "Response is not a JSON object", diagnostic=response.text
            )

        try:
            result = self.protocol.parse_response(payload, target, cursor, slice_size)
        except SliceError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidResponseError(
                f"Unexpected {self.protocol.endpoint} payload",
                diagnostic=f"{type(e).__name__}: {e}",
            ) from e

        result.duration_ms = duration_ms

        logger.debug(
            f"Slice done {self.protocol.endpoint}: target={target.target_id}, "
            f"processed={result.processed_this_slice}, next={result.next_cursor}, "
            f"done={result.done}, {duration_ms:.0f}ms"
        )

        return result
