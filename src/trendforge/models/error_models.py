"""
Error taxonomy for pipeline execution.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for all trendforge errors."""

    def __init__(self, message: str, item_id: Optional[str] = None, **details: Any):
        super().__init__(message)
        self.message = message
        self.item_id = item_id
        self.details = details

    def __str__(self) -> str:
        if self.item_id:
            return f"[{self.item_id}] {self.message}"
        return self.message


class TransientIOError(PipelineError):
    """Network or timeout failure that is safe to retry."""

    pass


class QuotaExceededError(PipelineError):
    """A workspace quota (size, file count) was exceeded.

    Terminal for the item's deep analysis; the orchestrator moves the item to
    the fallback tier.
    """

    def __init__(
        self,
        message: str,
        item_id: Optional[str] = None,
        limit: Optional[float] = None,
        actual: Optional[float] = None,
    ):
        super().__init__(message, item_id=item_id, limit=limit, actual=actual)
        self.limit = limit
        self.actual = actual


class OversizeError(QuotaExceededError):
    """Materialized workspace is larger than the configured byte quota."""

    pass


class WorkspaceError(PipelineError):
    """Workspace could not be materialized for a reason other than quota."""

    pass


class ResourceCleanupError(PipelineError):
    """Deleting a workspace or cache file failed. Logged, never propagated."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, path=path)
        self.path = path


class CollectionError(PipelineError):
    """Source collection failed. Aborts the whole run."""

    pass


class AnalysisError(PipelineError):
    """Deep or fallback analysis failed for one item."""

    def __init__(self, message: str, item_id: Optional[str] = None, tier: str = ""):
        super().__init__(message, item_id=item_id, tier=tier)
        self.tier = tier


class ConcurrentProcessingError(PipelineError):
    """Task processor was misused or failed as a whole."""

    pass


class ConfigurationError(PipelineError):
    """Configuration could not be loaded or validated."""

    pass
