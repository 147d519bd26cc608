"""
Cooperative cancellation.

A token is handed explicitly to RunController (one per run) and to
BatchOrchestrator (one per batch). The engine only samples it between units of
work; an in-flight slice always settles first.
"""

from typing import Optional

from config.logging_config import get_logger

from .errors import CancellationRequested

logger = get_logger(__name__)


class CancellationToken:
    """Set-once cancellation flag."""

    def __init__(self, name: str = ""):
        self.name = name
        self._cancelled = False
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by user"):
        """Request cancellation. Idempotent; the first reason wins."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.info(f"Cancellation requested{f' ({self.name})' if self.name else ''}: {reason}")

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self):
        if self._cancelled:
            raise CancellationRequested(self._reason or "cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(name={self.name!r}, cancelled={self._cancelled})"
