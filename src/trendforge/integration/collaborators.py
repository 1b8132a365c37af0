"""
External collaborators consumed by the pipeline orchestrator.

Source collection, analysis, history and delivery channels are injected as
async callables so the execution core never depends on a concrete API
client.
"""

import importlib
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, List, Optional

from ..core.snapshot_store import JsonSnapshotStore
from ..models.config_models import PipelineConfig
from ..models.error_models import ConfigurationError
from ..models.pipeline_models import (
    Aggregate,
    AnalysisResult,
    ContentDigest,
    Snapshot,
    WorkItem,
)

logger = logging.getLogger(__name__)

CollectItems = Callable[[], Awaitable[List[WorkItem]]]
DeepAnalyze = Callable[[WorkItem, ContentDigest, str], Awaitable[str]]
FallbackAnalyze = Callable[[WorkItem, str], Awaitable[str]]
FetchSupplementary = Callable[[WorkItem], Awaitable[str]]
LoadPriorSnapshot = Callable[[], Awaitable[Optional[Snapshot]]]
SaveSnapshot = Callable[[Snapshot], Awaitable[None]]
DispatchToSink = Callable[[Aggregate], Awaitable[Optional[str]]]
DispatchNotifications = Callable[[str], Awaitable[None]]
Summarize = Callable[[List[AnalysisResult]], Awaitable[str]]


@dataclass
class PipelineCollaborators:
    """
    Injected functions the orchestrator calls during a run.

    Only `collect_items`, `deep_analyze` and `fallback_analyze` are required.
    Both analysis callables must be safe to retry. Every optional stage is
    skipped when its callable is None.
    """

    collect_items: CollectItems
    deep_analyze: DeepAnalyze
    fallback_analyze: FallbackAnalyze
    fetch_supplementary: Optional[FetchSupplementary] = None
    load_prior_snapshot: Optional[LoadPriorSnapshot] = None
    save_snapshot: Optional[SaveSnapshot] = None
    dispatch_to_sink: Optional[DispatchToSink] = None
    dispatch_notifications: Optional[DispatchNotifications] = None
    summarize: Optional[Summarize] = None

    def with_snapshot_store(self, store: JsonSnapshotStore) -> "PipelineCollaborators":
        """Fill missing history callables from a JSON snapshot store."""
        return replace(
            self,
            load_prior_snapshot=self.load_prior_snapshot or store.load_prior_snapshot,
            save_snapshot=self.save_snapshot or store.save_snapshot,
        )


CollaboratorFactory = Callable[[PipelineConfig], PipelineCollaborators]


def load_factory(reference: str) -> CollaboratorFactory:
    """
    Import a collaborator factory from a ``module:callable`` reference.

    Raises:
        ConfigurationError: If the reference is malformed or cannot be imported
    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(
            f"Factory reference must look like 'module:callable', got '{reference}'"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import factory module '{module_name}': {e}") from e

    factory = module
    for part in attribute.split("."):
        factory = getattr(factory, part, None)
        if factory is None:
            raise ConfigurationError(f"'{reference}' does not name an attribute")

    if not callable(factory):
        raise ConfigurationError(f"'{reference}' is not callable")

    logger.debug(f"Loaded collaborator factory {reference}")
    return factory
