"""
Core execution logic for trendforge.
"""

from .concurrent_processor import ConcurrentProcessor, ProcessingOutcome, TaskError
from .config_manager import ConfigurationManager
from .environment_manager import EnvironmentManager
from .error_classifier import ErrorClassifier, is_retryable
from .result_cache import ResultCache
from .retry_policy import with_retry
from .snapshot_store import JsonSnapshotStore
from .trend_analyzer import TrendAnalyzer
from .workspace_manager import WorkspaceManager
from .yaml_parser import YAMLConfigParser

__all__ = [
    # Execution
    "ConcurrentProcessor",
    "ProcessingOutcome",
    "TaskError",
    "ResultCache",
    "WorkspaceManager",
    "with_retry",
    "ErrorClassifier",
    "is_retryable",
    # Reporting
    "TrendAnalyzer",
    "JsonSnapshotStore",
    # Configuration management
    "ConfigurationManager",
    "YAMLConfigParser",
    "EnvironmentManager",
]
