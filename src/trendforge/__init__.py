"""
trendforge - Trend analysis pipeline execution core

Collects trending items, analyzes each one under bounded concurrency with a
deep/fallback/stub degradation ladder, caches results by content
fingerprint, and reports trends against the previous run.
"""

__version__ = "1.0.0"

from .core.config_manager import ConfigurationManager
from .core.pipeline_orchestrator import PipelineOrchestrator
from .integration.collaborators import PipelineCollaborators
from .models.config_models import PipelineConfig
from .models.pipeline_models import AnalysisResult, Provenance, RunReport, WorkItem

__all__ = [
    "ConfigurationManager",
    "PipelineOrchestrator",
    "PipelineCollaborators",
    "PipelineConfig",
    "AnalysisResult",
    "Provenance",
    "RunReport",
    "WorkItem",
]
