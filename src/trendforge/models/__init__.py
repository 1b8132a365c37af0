"""
Data, error and configuration models for trendforge.
"""

from .config_models import PipelineConfig
from .error_models import (
    AnalysisError,
    CollectionError,
    ConcurrentProcessingError,
    ConfigurationError,
    OversizeError,
    PipelineError,
    QuotaExceededError,
    ResourceCleanupError,
    TransientIOError,
    WorkspaceError,
)
from .pipeline_models import (
    Aggregate,
    AnalysisResult,
    ContentDigest,
    FilePreview,
    ItemState,
    Provenance,
    RunReport,
    Snapshot,
    SnapshotEntry,
    TrendReport,
    WorkItem,
    Workspace,
)

__all__ = [
    "PipelineConfig",
    "PipelineError",
    "TransientIOError",
    "QuotaExceededError",
    "OversizeError",
    "WorkspaceError",
    "ResourceCleanupError",
    "CollectionError",
    "AnalysisError",
    "ConcurrentProcessingError",
    "ConfigurationError",
    "Aggregate",
    "AnalysisResult",
    "ContentDigest",
    "FilePreview",
    "ItemState",
    "Provenance",
    "RunReport",
    "Snapshot",
    "SnapshotEntry",
    "TrendReport",
    "WorkItem",
    "Workspace",
]
