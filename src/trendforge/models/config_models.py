"""
Pydantic configuration models for trendforge.
"""

import logging
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _default_workspace_root() -> str:
    return str(Path(tempfile.gettempdir()) / "trendforge-workspaces")


class ConcurrencyConfig(BaseModel):
    """Configuration for the bounded worker pool."""

    max_concurrency: int = Field(
        default=3, ge=1, le=50, description="Maximum items analyzed at once"
    )
    stop_on_error: bool = Field(
        default=False, description="Abandon unstarted items after the first failure"
    )


class RetryConfig(BaseModel):
    """Configuration for retrying fallible external calls."""

    max_retries: int = Field(
        default=3, ge=0, le=10, description="Retries after the first attempt"
    )
    base_delay: float = Field(
        default=1.0, ge=0.0, le=60.0, description="Base backoff delay in seconds"
    )


class CacheConfig(BaseModel):
    """Configuration for the analysis result cache."""

    ttl_seconds: int = Field(default=1800, ge=1, description="Entry time-to-live")
    max_size: int = Field(default=500, ge=1, description="Maximum in-memory entries")
    persist: bool = Field(default=True, description="Persist entries to disk")
    cache_dir: str = Field(
        default="~/.trendforge/cache", description="Directory for persisted entries"
    )
    cleanup_interval_seconds: int = Field(
        default=3600, ge=10, description="Interval of the periodic expiry sweep"
    )
    cache_fallback_results: bool = Field(
        default=False, description="Also cache results of the fallback tier"
    )

    @field_validator("cache_dir")
    @classmethod
    def expand_cache_dir(cls, v: str) -> str:
        return str(Path(v).expanduser())


class WorkspaceConfig(BaseModel):
    """Configuration for ephemeral analysis workspaces."""

    root_dir: str = Field(
        default_factory=_default_workspace_root,
        description="Directory holding per-item workspaces",
    )
    max_size_mb: float = Field(default=50, gt=0, description="Per-workspace size quota")
    max_file_count: int = Field(
        default=500, ge=1, description="Maximum files scanned per workspace"
    )
    max_file_size_bytes: int = Field(
        default=102400, ge=1, description="Files above this size are skipped"
    )
    clone_timeout_seconds: float = Field(
        default=60, gt=0, description="Timeout of the shallow clone"
    )
    preview_length: int = Field(
        default=500, ge=50, description="Maximum preview characters per file"
    )
    max_content_bytes: int = Field(
        default=6000, ge=100, description="Cumulative preview budget per item"
    )
    stale_after_hours: float = Field(
        default=1.0, gt=0, description="Age at which a sweep deletes a workspace"
    )

    @field_validator("root_dir")
    @classmethod
    def expand_root_dir(cls, v: str) -> str:
        return str(Path(v).expanduser())


class HistoryConfig(BaseModel):
    """Configuration for the durable snapshot history."""

    path: str = Field(
        default="~/.trendforge/history.json", description="History JSON file"
    )
    retention_days: int = Field(
        default=30, ge=1, le=3650, description="Daily snapshots kept"
    )

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        return str(Path(v).expanduser())


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Root log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Format of file log records",
    )
    file_path: Optional[str] = Field(default=None, description="Optional log file")
    max_file_size_mb: int = Field(default=10, ge=1, le=1000)
    backup_count: int = Field(default=5, ge=0, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {', '.join(VALID_LOG_LEVELS)}")
        return level


class PipelineConfig(BaseModel):
    """Root configuration of a trendforge pipeline."""

    config_version: str = Field(default="1.0")
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def check_content_budget(self) -> "PipelineConfig":
        if self.workspace.preview_length > self.workspace.max_content_bytes:
            logger.warning(
                f"preview_length ({self.workspace.preview_length}) exceeds "
                f"max_content_bytes ({self.workspace.max_content_bytes}); "
                f"at most one file fits the content budget"
            )
        return self
