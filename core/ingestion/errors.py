"""
Ingestion engine exceptions.

Slice-level failures carry a truncated diagnostic so that a remote error page
never floods the logs. Whether a failure is retried is decided by the
RunController from the ``retryable`` flag, never by the executor.
"""

from typing import Optional

from config.constants import DIAGNOSTIC_MAX_CHARS


def truncate_diagnostic(text: Optional[str], limit: int = DIAGNOSTIC_MAX_CHARS) -> str:
    """Cut a diagnostic payload down to ``limit`` characters."""
    if not text:
        return ""
    text = str(text)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class IngestionError(Exception):
    """Base exception for ingestion engine errors"""
    pass


class SliceError(IngestionError):
    """A single slice invocation failed"""

    retryable = False

    def __init__(self, message: str, diagnostic: Optional[str] = None, status_code: Optional[int] = None):
        self.diagnostic = truncate_diagnostic(diagnostic)
        self.status_code = status_code
        if self.diagnostic:
            message = f"{message}: {self.diagnostic}"
        super().__init__(message)


class TransientNetworkError(SliceError):
    """Timeout, connection failure, 429 or 5xx - safe to retry"""

    retryable = True


class InvalidResponseError(SliceError):
    """Remote answered but broke the slice protocol"""
    pass


class ExternalProcessingError(SliceError):
    """Remote processor reported a business-level failure"""
    pass


class MissingPayloadError(SliceError):
    """Target lacks the local data a protocol needs; fails before any call"""
    pass


class CancellationRequested(IngestionError):
    """Controlled stop requested through a CancellationToken"""
    pass


class PersistenceWriteFailure(IngestionError):
    """Run record could not be written; in-memory state stays authoritative"""
    pass


class InvalidTransitionError(IngestionError):
    """Run status change outside the allowed lifecycle"""
    pass
