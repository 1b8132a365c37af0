"""
Pipeline orchestration: collect, analyze with graceful degradation, report.

Each item walks a small state machine. A cache hit ends immediately;
otherwise the item is materialized into a workspace for deep analysis,
falls back to a lightweight analysis when that fails, and ends with a stub
when both fail. The workspace is released on every path out of the deep
tier. Run-level stages then aggregate, compute trends, persist a snapshot
and dispatch to the sink and notification channels, each best-effort.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..integration.collaborators import PipelineCollaborators
from ..models.config_models import PipelineConfig
from ..models.error_models import AnalysisError, CollectionError, WorkspaceError
from ..models.pipeline_models import (
    PROVENANCE_STATES,
    AnalysisResult,
    ItemState,
    Provenance,
    RunReport,
    Snapshot,
    TrendReport,
    WorkItem,
)
from .concurrent_processor import ConcurrentProcessor, ProgressCallback
from .result_cache import ResultCache
from .retry_policy import with_retry
from .trend_analyzer import TrendAnalyzer
from .workspace_manager import WorkspaceManager

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "analysis"


@dataclass
class ItemTrace:
    """States visited and errors met by one item."""

    states: List[ItemState] = field(default_factory=lambda: [ItemState.PENDING])
    errors: List[str] = field(default_factory=list)

    def enter(self, state: ItemState) -> None:
        if self.states[-1].is_terminal:
            raise ValueError(
                f"Cannot move from terminal state {self.states[-1].value} to {state.value}"
            )
        self.states.append(state)


@dataclass
class ItemOutcome:
    result: AnalysisResult
    trace: ItemTrace


def build_stub_payload(item: WorkItem, reasons: Optional[List[str]] = None) -> str:
    """Deterministic markdown for an item whose analysis is unavailable."""
    lines = [f"## {item.identity}", ""]
    if item.source_ref:
        lines.append(f"Source: {item.source_ref}")
        lines.append("")
    for name in sorted(item.metrics):
        lines.append(f"- **{name}**: {item.metrics[name]}")
    if item.metrics:
        lines.append("")
    lines.append("_Analysis unavailable for this item._")
    if reasons:
        lines.append(f"_Last error: {reasons[-1]}_")
    return "\n".join(lines)


class PipelineOrchestrator:
    """
    Runs one pipeline pass over the items produced by `collect_items`.

    The cache, workspace manager and processor are owned by the orchestrator
    and may be passed in explicitly; otherwise they are built from the
    configuration.
    """

    def __init__(
        self,
        collaborators: PipelineCollaborators,
        config: Optional[PipelineConfig] = None,
        cache: Optional[ResultCache] = None,
        workspace_manager: Optional[WorkspaceManager] = None,
        processor: Optional[ConcurrentProcessor] = None,
        trend_analyzer: Optional[TrendAnalyzer] = None,
        on_progress: Optional[ProgressCallback] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.collaborators = collaborators
        self.config = config or PipelineConfig()
        self.cache = cache or ResultCache(
            ttl_seconds=self.config.cache.ttl_seconds,
            max_size=self.config.cache.max_size,
            persist=self.config.cache.persist,
            cache_dir=self.config.cache.cache_dir,
        )
        self.workspace_manager = workspace_manager or WorkspaceManager.from_config(
            self.config.workspace
        )
        self.processor = processor or ConcurrentProcessor(
            max_concurrency=self.config.concurrency.max_concurrency,
            stop_on_error=self.config.concurrency.stop_on_error,
        )
        self.trend_analyzer = trend_analyzer or TrendAnalyzer()
        self.on_progress = on_progress
        self._sleep = sleep

    async def run_pipeline(self) -> RunReport:
        """
        Execute one full run.

        Returns:
            RunReport with one result per collected item, in input order

        Raises:
            CollectionError: If source collection fails
        """
        report = RunReport(started_at=datetime.now())
        stale_hours = self.config.workspace.stale_after_hours
        logger.info("Pipeline run started")

        swept = await self.workspace_manager.sweep(stale_hours)
        if swept:
            logger.info(f"Reclaimed {swept} orphaned workspaces before the run")

        self.cache.start_periodic_cleanup(self.config.cache.cleanup_interval_seconds)
        try:
            items = await self._collect()
            if not items:
                logger.warning("Source collection returned no items, nothing to analyze")
                return report

            outcomes = await self._analyze_all(items)
            for item, outcome in zip(items, outcomes):
                report.results.append(outcome.result)
                report.item_states[item.identity] = outcome.trace.states[-1]
                report.state_history[item.identity] = list(outcome.trace.states)
                if outcome.trace.errors:
                    report.errors[item.identity] = list(outcome.trace.errors)

            report.summary_text = await self._summarize(report.results)
            report.trends = await self._compute_trends(report)
            report.snapshot_saved = await self._save_snapshot(report)
            await self._dispatch_to_sink(report)
            await self._dispatch_notifications(report)
            return report
        finally:
            await self.cache.stop_periodic_cleanup()
            report.workspaces_swept = await self.workspace_manager.sweep(stale_hours)
            self.cache.cleanup()
            report.cache_stats = self.cache.get_stats()
            report.finished_at = datetime.now()
            self._log_run_summary(report)

    def clear_cache(self) -> int:
        return self.cache.clear()

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.get_stats()

    async def _collect(self) -> List[WorkItem]:
        logger.info("Stage collect: started")
        try:
            items = await with_retry(
                self.collaborators.collect_items,
                max_retries=self.config.retry.max_retries,
                base_delay=self.config.retry.base_delay,
                context="source collection",
                sleep=self._sleep,
            )
        except Exception as e:
            logger.error(f"Stage collect: failed, aborting run: {e}")
            raise CollectionError(f"Source collection failed: {e}") from e

        items = list(items or [])
        logger.info(f"Stage collect: finished with {len(items)} items")
        return items

    async def _analyze_all(self, items: List[WorkItem]) -> List[ItemOutcome]:
        logger.info(f"Stage analyze: started for {len(items)} items")

        outcome = await self.processor.process(
            items,
            self._process_item,
            on_progress=self._report_progress,
        )

        outcomes: List[ItemOutcome] = []
        for index, item in enumerate(items):
            item_outcome = outcome.results[index]
            if item_outcome is None:
                error = outcome.error_for(index)
                logger.error(f"Unexpected failure while processing {item.identity}: {error}")
                trace = ItemTrace()
                trace.errors.append(f"unexpected: {error}")
                trace.enter(ItemState.STUB_PRODUCED)
                item_outcome = ItemOutcome(
                    result=AnalysisResult.from_item(
                        item, build_stub_payload(item, trace.errors), Provenance.STUB
                    ),
                    trace=trace,
                )
            outcomes.append(item_outcome)

        logger.info(f"Stage analyze: finished for {len(items)} items")
        return outcomes

    async def _report_progress(self, completed: int, total: int) -> None:
        logger.info(f"Processed {completed}/{total} items")
        if self.on_progress:
            result = self.on_progress(completed, total)
            if asyncio.iscoroutine(result):
                await result

    async def _process_item(self, item: WorkItem, index: int) -> ItemOutcome:
        key = ResultCache.generate_key(CACHE_NAMESPACE, item.fingerprint_fields())
        trace = ItemTrace()
        computed_here = False

        async def compute() -> Dict[str, Any]:
            nonlocal computed_here
            computed_here = True
            supplementary = await self._fetch_supplementary(item)
            result = await self._analyze_uncached(item, supplementary, trace)
            return result.to_dict()

        value = await self.cache.wrap(key, compute, cache_if=self._should_cache)
        if computed_here:
            return ItemOutcome(result=AnalysisResult.from_dict(value), trace=trace)

        # Served from the cache or from a concurrent computation of the same key
        if self._should_cache(value):
            logger.info(f"[{item.identity}] cache hit, skipping analysis")
            result = self._from_cache(value, item)
        else:
            result = AnalysisResult.from_dict(value)
        trace.enter(PROVENANCE_STATES[result.provenance])
        return ItemOutcome(result=result, trace=trace)

    def _from_cache(self, cached: Dict[str, Any], item: WorkItem) -> AnalysisResult:
        result = AnalysisResult.from_dict(cached)
        return replace(result, provenance=Provenance.CACHE_HIT, metrics=dict(item.metrics))

    def _should_cache(self, value: Dict[str, Any]) -> bool:
        provenance = Provenance(value["provenance"])
        if provenance == Provenance.DEEP:
            return True
        return provenance == Provenance.FALLBACK and self.config.cache.cache_fallback_results

    async def _fetch_supplementary(self, item: WorkItem) -> str:
        fetch = self.collaborators.fetch_supplementary
        if fetch is None:
            return ""
        try:
            return await with_retry(
                lambda: fetch(item),
                max_retries=self.config.retry.max_retries,
                base_delay=self.config.retry.base_delay,
                context=f"supplementary fetch for {item.identity}",
                sleep=self._sleep,
            ) or ""
        except Exception as e:
            logger.warning(f"[{item.identity}] supplementary text unavailable: {e}")
            return ""

    async def _analyze_uncached(
        self, item: WorkItem, supplementary: str, trace: ItemTrace
    ) -> AnalysisResult:
        result = await self._deep_tier(item, supplementary, trace)
        if result is None:
            result = await self._fallback_tier(item, supplementary, trace)
        if result is None:
            logger.warning(f"[{item.identity}] all analysis tiers failed, producing stub")
            trace.enter(ItemState.STUB_PRODUCED)
            result = AnalysisResult.from_item(
                item, build_stub_payload(item, trace.errors), Provenance.STUB
            )
        return result

    async def _deep_tier(
        self, item: WorkItem, supplementary: str, trace: ItemTrace
    ) -> Optional[AnalysisResult]:
        try:
            if not item.source_ref:
                raise WorkspaceError("Item has no source reference", item_id=item.identity)

            async with self.workspace_manager.session(item.source_ref, item.identity) as workspace:
                trace.enter(ItemState.WORKSPACE_ACQUIRED)
                digest = await self.workspace_manager.extract(workspace)
                payload = await with_retry(
                    lambda: self.collaborators.deep_analyze(item, digest, supplementary),
                    max_retries=self.config.retry.max_retries,
                    base_delay=self.config.retry.base_delay,
                    context=f"deep analysis of {item.identity}",
                    sleep=self._sleep,
                )
        except Exception as e:
            error = AnalysisError(str(e), item_id=item.identity, tier="deep")
            trace.errors.append(f"deep: {type(e).__name__}: {e}")
            logger.warning(f"{error}; degrading to fallback analysis")
            return None

        trace.enter(ItemState.DEEP_ANALYZED)
        logger.info(f"[{item.identity}] deep analysis complete ({digest.file_count} files)")
        return AnalysisResult.from_item(
            item, payload, Provenance.DEEP, files_analyzed=digest.file_count
        )

    async def _fallback_tier(
        self, item: WorkItem, supplementary: str, trace: ItemTrace
    ) -> Optional[AnalysisResult]:
        try:
            payload = await with_retry(
                lambda: self.collaborators.fallback_analyze(item, supplementary),
                max_retries=self.config.retry.max_retries,
                base_delay=self.config.retry.base_delay,
                context=f"fallback analysis of {item.identity}",
                sleep=self._sleep,
            )
        except Exception as e:
            error = AnalysisError(str(e), item_id=item.identity, tier="fallback")
            trace.errors.append(f"fallback: {type(e).__name__}: {e}")
            logger.warning(f"{error}; degrading to stub")
            return None

        trace.enter(ItemState.FALLBACK_ANALYZED)
        logger.info(f"[{item.identity}] fallback analysis complete")
        return AnalysisResult.from_item(item, payload, Provenance.FALLBACK)

    async def _summarize(self, results: List[AnalysisResult]) -> str:
        logger.info("Stage summarize: started")
        summarize = self.collaborators.summarize
        if summarize is not None:
            try:
                text = await summarize(results)
                if text:
                    logger.info("Stage summarize: finished with collaborator summary")
                    return text
            except Exception as e:
                logger.warning(f"Summarizer failed, using local summary: {e}")

        logger.info("Stage summarize: finished with local summary")
        return self.trend_analyzer.local_summary(results)

    async def _compute_trends(self, report: RunReport) -> TrendReport:
        logger.info("Stage trends: started")
        prior: Optional[Snapshot] = None
        load = self.collaborators.load_prior_snapshot
        if load is not None:
            try:
                prior = await load()
            except Exception as e:
                report.stage_errors["load_snapshot"] = str(e)
                logger.warning(f"Prior snapshot unavailable: {e}")

        trends = self.trend_analyzer.compute_trends(report.results, prior)
        logger.info(f"Stage trends: finished ({trends.summary})")
        return trends

    async def _save_snapshot(self, report: RunReport) -> bool:
        save = self.collaborators.save_snapshot
        if save is None:
            return False
        try:
            await save(Snapshot.from_results(report.results))
            logger.info("Stage snapshot: saved")
            return True
        except Exception as e:
            report.stage_errors["save_snapshot"] = str(e)
            logger.error(f"Stage snapshot: failed: {e}")
            return False

    async def _dispatch_to_sink(self, report: RunReport) -> None:
        dispatch = self.collaborators.dispatch_to_sink
        if dispatch is None:
            return

        aggregate = self.trend_analyzer.build_aggregate(
            report.results, report.summary_text, report.trends
        )
        try:
            report.sink_url = await with_retry(
                lambda: dispatch(aggregate),
                max_retries=self.config.retry.max_retries,
                base_delay=self.config.retry.base_delay,
                context="sink dispatch",
                sleep=self._sleep,
            )
            report.sink_dispatched = True
            logger.info(f"Stage sink: dispatched {aggregate.total_items} items")
        except Exception as e:
            report.stage_errors["sink"] = str(e)
            logger.error(f"Stage sink: failed: {e}")

    async def _dispatch_notifications(self, report: RunReport) -> None:
        dispatch = self.collaborators.dispatch_notifications
        if dispatch is None:
            return

        text = report.summary_text
        if report.trends and report.trends.summary:
            text = f"{text}\n\nTrends: {report.trends.summary}"
        if report.sink_url:
            text = f"{text}\n\nFull report: {report.sink_url}"

        try:
            await with_retry(
                lambda: dispatch(text),
                max_retries=self.config.retry.max_retries,
                base_delay=self.config.retry.base_delay,
                context="notification dispatch",
                sleep=self._sleep,
            )
            report.notifications_dispatched = True
            logger.info("Stage notify: dispatched")
        except Exception as e:
            report.stage_errors["notifications"] = str(e)
            logger.error(f"Stage notify: failed: {e}")

    def _log_run_summary(self, report: RunReport) -> None:
        counts = report.provenance_counts()
        duration = report.duration_seconds or 0
        logger.info(
            f"Pipeline run finished in {duration:.2f}s: {report.total_items} items "
            f"(deep={counts['deep']}, cached={counts['cache_hit']}, "
            f"fallback={counts['fallback']}, stub={counts['stub']}); "
            f"sink={'ok' if report.sink_dispatched else 'no'}, "
            f"notifications={'ok' if report.notifications_dispatched else 'no'}"
        )
