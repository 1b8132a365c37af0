"""
Integration tests for the pipeline orchestrator.

Collaborators are in-memory fakes; workspaces are real directories under
tmp_path populated by a fake materializer.
"""

import asyncio
import os
import time
from datetime import date, timedelta
from typing import List, Optional, Set

import pytest
from unittest.mock import AsyncMock

from trendforge.core.pipeline_orchestrator import (
    CACHE_NAMESPACE,
    ItemTrace,
    PipelineOrchestrator,
    build_stub_payload,
)
from trendforge.core.result_cache import ResultCache
from trendforge.core.snapshot_store import JsonSnapshotStore
from trendforge.core.workspace_manager import WorkspaceManager
from trendforge.integration.collaborators import PipelineCollaborators
from trendforge.models.config_models import CacheConfig
from trendforge.models.error_models import CollectionError, TransientIOError
from trendforge.models.pipeline_models import (
    Aggregate,
    AnalysisResult,
    ItemState,
    Provenance,
    Snapshot,
    SnapshotEntry,
    WorkItem,
)


class FakeServices:
    """Recording fakes for every collaborator."""

    def __init__(
        self,
        items: List[WorkItem],
        deep_failures: Optional[Set[str]] = None,
        fallback_failures: Optional[Set[str]] = None,
    ):
        self.items = items
        self.deep_failures = deep_failures or set()
        self.fallback_failures = fallback_failures or set()
        self.deep_calls: List[str] = []
        self.fallback_calls: List[str] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.aggregates: List[Aggregate] = []
        self.notifications: List[str] = []
        self.snapshots: List[Snapshot] = []
        self.sink_error: Optional[Exception] = None

    async def collect_items(self) -> List[WorkItem]:
        return list(self.items)

    async def deep_analyze(self, item, digest, supplementary) -> str:
        self.deep_calls.append(item.identity)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if item.identity in self.deep_failures:
                raise ValueError(f"model rejected {item.identity}")
            files = ", ".join(f.path for f in digest.files)
            return f"deep analysis of {item.identity} [{files}] {supplementary}".strip()
        finally:
            self.in_flight -= 1

    async def fallback_analyze(self, item, supplementary) -> str:
        self.fallback_calls.append(item.identity)
        if item.identity in self.fallback_failures:
            raise ValueError(f"fallback rejected {item.identity}")
        return f"fallback analysis of {item.identity}"

    async def fetch_supplementary(self, item) -> str:
        return f"readme of {item.identity}"

    async def dispatch_to_sink(self, aggregate: Aggregate) -> str:
        if self.sink_error:
            raise self.sink_error
        self.aggregates.append(aggregate)
        return "https://reports.example.com/today"

    async def dispatch_notifications(self, text: str) -> None:
        self.notifications.append(text)

    async def save_snapshot(self, snapshot: Snapshot) -> None:
        self.snapshots.append(snapshot)

    def collaborators(self, **overrides) -> PipelineCollaborators:
        values = dict(
            collect_items=self.collect_items,
            deep_analyze=self.deep_analyze,
            fallback_analyze=self.fallback_analyze,
            fetch_supplementary=self.fetch_supplementary,
            save_snapshot=self.save_snapshot,
            dispatch_to_sink=self.dispatch_to_sink,
            dispatch_notifications=self.dispatch_notifications,
        )
        values.update(overrides)
        return PipelineCollaborators(**values)


@pytest.fixture
def items(item_factory) -> List[WorkItem]:
    return [
        item_factory(f"org/item{i}", stars=100 * i, growth_rate=i, language="Python")
        for i in range(1, 6)
    ]


@pytest.fixture
def build_orchestrator(test_config, materializer):
    def build(services: FakeServices, cache: Optional[ResultCache] = None, **overrides):
        test_config.concurrency.max_concurrency = 2
        manager = WorkspaceManager.from_config(test_config.workspace, materializer=materializer)
        return PipelineOrchestrator(
            services.collaborators(**overrides),
            config=test_config,
            cache=cache,
            workspace_manager=manager,
            sleep=AsyncMock(),
        )

    return build


def leftover_workspaces(config) -> List[str]:
    root = WorkspaceManager.from_config(config.workspace).root_dir
    if not root.exists():
        return []
    return [p.name for p in root.iterdir()]


@pytest.mark.integration
class TestPipelineOrchestrator:
    """End-to-end runs over fake collaborators."""

    @pytest.mark.asyncio
    async def test_all_items_deep_analyzed(self, items, build_orchestrator, test_config):
        services = FakeServices(items)
        orchestrator = build_orchestrator(services)

        report = await orchestrator.run_pipeline()

        assert [r.identity for r in report.results] == [i.identity for i in items]
        assert report.deep_analyzed == [i.identity for i in items]
        assert report.fully_successful
        assert report.errors == {}
        assert services.peak_in_flight <= 2
        assert all(r.files_analyzed == 2 for r in report.results)
        assert "readme of org/item1" in report.results[0].payload
        assert report.item_states["org/item1"] == ItemState.DEEP_ANALYZED
        assert report.state_history["org/item1"] == [
            ItemState.PENDING,
            ItemState.WORKSPACE_ACQUIRED,
            ItemState.DEEP_ANALYZED,
        ]
        assert leftover_workspaces(test_config) == []
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_failed_item_degrades_to_stub(self, items, build_orchestrator, test_config):
        services = FakeServices(
            items, deep_failures={"org/item3"}, fallback_failures={"org/item3"}
        )
        orchestrator = build_orchestrator(services)

        report = await orchestrator.run_pipeline()

        assert report.total_items == 5
        assert report.stubs == ["org/item3"]
        assert len(report.deep_analyzed) == 4
        assert report.item_states["org/item3"] == ItemState.STUB_PRODUCED
        assert all(state.is_terminal for state in report.item_states.values())
        assert len(report.errors["org/item3"]) == 2
        assert report.errors["org/item3"][0].startswith("deep: ValueError")
        assert report.errors["org/item3"][1].startswith("fallback: ValueError")

        stub = report.results[2]
        assert stub.provenance == Provenance.STUB
        assert "## org/item3" in stub.payload
        assert "- **stars**: 300" in stub.payload
        assert "_Analysis unavailable for this item._" in stub.payload
        assert leftover_workspaces(test_config) == []

    @pytest.mark.asyncio
    async def test_deep_failure_uses_fallback(self, items, build_orchestrator, test_config):
        services = FakeServices(items, deep_failures={"org/item2"})
        orchestrator = build_orchestrator(services)

        report = await orchestrator.run_pipeline()

        assert report.fallback_analyzed == ["org/item2"]
        assert report.results[1].payload == "fallback analysis of org/item2"
        assert report.state_history["org/item2"] == [
            ItemState.PENDING,
            ItemState.WORKSPACE_ACQUIRED,
            ItemState.FALLBACK_ANALYZED,
        ]
        assert services.deep_calls.count("org/item2") == 1
        assert leftover_workspaces(test_config) == []

    @pytest.mark.asyncio
    async def test_oversize_workspace_uses_fallback(
        self, items, test_config, materializer_factory
    ):
        services = FakeServices(items[:2])
        materializer = materializer_factory(
            sizes={items[0].source_ref: 2 * 1024 * 1024}
        )
        test_config.workspace.max_size_mb = 1
        orchestrator = PipelineOrchestrator(
            services.collaborators(),
            config=test_config,
            workspace_manager=WorkspaceManager.from_config(
                test_config.workspace, materializer=materializer
            ),
            sleep=AsyncMock(),
        )

        report = await orchestrator.run_pipeline()

        assert report.fallback_analyzed == [items[0].identity]
        assert report.deep_analyzed == [items[1].identity]
        assert "OversizeError" in report.errors[items[0].identity][0]
        assert items[0].identity not in services.deep_calls
        assert leftover_workspaces(test_config) == []

    @pytest.mark.asyncio
    async def test_missing_source_ref_uses_fallback(self, build_orchestrator):
        services = FakeServices([WorkItem(identity="no-source", revision="1")])
        orchestrator = build_orchestrator(services)

        report = await orchestrator.run_pipeline()

        assert report.fallback_analyzed == ["no-source"]
        assert report.state_history["no-source"] == [
            ItemState.PENDING,
            ItemState.FALLBACK_ANALYZED,
        ]

    @pytest.mark.asyncio
    async def test_second_run_served_from_cache(self, items, build_orchestrator, materializer):
        cache = ResultCache()
        services = FakeServices(items)

        await build_orchestrator(services, cache=cache).run_pipeline()
        assert len(services.deep_calls) == 5
        materialized = len(materializer.calls)

        report = await build_orchestrator(services, cache=cache).run_pipeline()

        assert report.cache_hits == [i.identity for i in items]
        assert len(services.deep_calls) == 5
        assert len(materializer.calls) == materialized
        assert report.item_states["org/item1"] == ItemState.CACHE_HIT
        assert report.results[0].payload.startswith("deep analysis of org/item1")

    @pytest.mark.asyncio
    async def test_prepopulated_cache_skips_analysis(self, items, build_orchestrator, materializer):
        cache = ResultCache()
        first = items[0]
        key = ResultCache.generate_key(CACHE_NAMESPACE, first.fingerprint_fields())
        cache.set(
            key, AnalysisResult.from_item(first, "cached analysis", Provenance.DEEP).to_dict()
        )
        services = FakeServices(items)

        report = await build_orchestrator(services, cache=cache).run_pipeline()

        assert report.cache_hits == [first.identity]
        assert report.results[0].payload == "cached analysis"
        assert report.state_history[first.identity] == [ItemState.PENDING, ItemState.CACHE_HIT]
        assert first.identity not in services.deep_calls
        assert first.identity not in services.fallback_calls
        assert first.source_ref not in materializer.calls
        assert len(report.deep_analyzed) == 4

    @pytest.mark.asyncio
    async def test_cache_hit_keeps_current_metrics(self, item_factory, build_orchestrator):
        cache = ResultCache()
        first = FakeServices([item_factory("org/a", revision="r1", stars=10)])
        await build_orchestrator(first, cache=cache).run_pipeline()

        second = FakeServices([item_factory("org/a", revision="r1", stars=25)])
        report = await build_orchestrator(second, cache=cache).run_pipeline()

        assert report.cache_hits == ["org/a"]
        assert report.results[0].metrics == {"stars": 25}
        assert second.deep_calls == []

    @pytest.mark.asyncio
    async def test_revision_change_invalidates_cache(self, item_factory, build_orchestrator):
        cache = ResultCache()
        await build_orchestrator(
            FakeServices([item_factory("org/a", revision="r1")]), cache=cache
        ).run_pipeline()

        services = FakeServices([item_factory("org/a", revision="r2")])
        report = await build_orchestrator(services, cache=cache).run_pipeline()

        assert report.deep_analyzed == ["org/a"]
        assert services.deep_calls == ["org/a"]

    @pytest.mark.asyncio
    async def test_fallback_and_stub_results_not_cached(self, items, build_orchestrator):
        cache = ResultCache()
        services = FakeServices(
            items[:2], deep_failures={"org/item1", "org/item2"}, fallback_failures={"org/item2"}
        )
        await build_orchestrator(services, cache=cache).run_pipeline()

        assert cache.get_stats()["size"] == 0

        services.deep_failures = set()
        report = await build_orchestrator(services, cache=cache).run_pipeline()

        assert report.deep_analyzed == ["org/item1", "org/item2"]

    @pytest.mark.asyncio
    async def test_fallback_results_cached_when_enabled(self, items, build_orchestrator, test_config):
        test_config.cache = CacheConfig(persist=False, cache_fallback_results=True)
        cache = ResultCache()
        services = FakeServices(items[:1], deep_failures={"org/item1"})

        await build_orchestrator(services, cache=cache).run_pipeline()
        report = await build_orchestrator(services, cache=cache).run_pipeline()

        assert report.cache_hits == ["org/item1"]
        assert services.fallback_calls == ["org/item1"]

    @pytest.mark.asyncio
    async def test_duplicate_items_share_one_analysis(self, item_factory, build_orchestrator):
        duplicate = item_factory("org/dup", revision="same")
        services = FakeServices([duplicate, duplicate])

        report = await build_orchestrator(services, cache=ResultCache()).run_pipeline()

        assert services.deep_calls == ["org/dup"]
        assert sorted(p.value for p in (r.provenance for r in report.results)) == [
            "cache_hit",
            "deep",
        ]

    @pytest.mark.asyncio
    async def test_cache_key_uses_identity_and_revision(self, item_factory, build_orchestrator):
        cache = ResultCache()
        item = item_factory("org/a", revision="r1")
        await build_orchestrator(FakeServices([item]), cache=cache).run_pipeline()

        key = ResultCache.generate_key(CACHE_NAMESPACE, {"name": "org/a", "updated": "r1"})
        assert cache.get(key)["provenance"] == "deep"

    @pytest.mark.asyncio
    async def test_sink_failure_still_notifies(self, items, build_orchestrator):
        services = FakeServices(items)
        services.sink_error = ValueError("sink rejected payload")
        orchestrator = build_orchestrator(services)

        report = await orchestrator.run_pipeline()

        assert report.sink_dispatched is False
        assert "sink rejected payload" in report.stage_errors["sink"]
        assert report.notifications_dispatched is True
        assert len(services.notifications) == 1
        assert "Full report" not in services.notifications[0]

    @pytest.mark.asyncio
    async def test_sink_and_notifications(self, items, build_orchestrator):
        services = FakeServices(items)

        report = await build_orchestrator(services).run_pipeline()

        assert report.sink_dispatched is True
        assert report.sink_url == "https://reports.example.com/today"
        aggregate = services.aggregates[0]
        assert aggregate.total_items == 5
        assert aggregate.provenance_counts["deep"] == 5
        assert services.notifications[0].startswith("Analyzed 5 items")
        assert "Full report: https://reports.example.com/today" in services.notifications[0]
        assert report.snapshot_saved is True
        assert services.snapshots[0].identities == [i.identity for i in items]

    @pytest.mark.asyncio
    async def test_transient_sink_failure_retried(self, items, build_orchestrator):
        services = FakeServices(items[:1])
        attempts = []

        async def flaky_sink(aggregate):
            attempts.append(aggregate)
            if len(attempts) == 1:
                raise TransientIOError("connection reset")
            return "https://reports.example.com/retry"

        report = await build_orchestrator(services, dispatch_to_sink=flaky_sink).run_pipeline()

        assert len(attempts) == 2
        assert report.sink_url == "https://reports.example.com/retry"

    @pytest.mark.asyncio
    async def test_trends_against_prior_snapshot(self, items, build_orchestrator, tmp_path):
        store = JsonSnapshotStore(tmp_path / "history.json")
        yesterday = date.today() - timedelta(days=1)
        await store.save_snapshot(
            Snapshot(
                day=yesterday,
                entries=(SnapshotEntry("org/item1", "deep"), SnapshotEntry("org/old", "deep")),
            )
        )
        services = FakeServices(items)
        collaborators = services.collaborators(save_snapshot=None).with_snapshot_store(store)
        orchestrator = build_orchestrator(
            services,
            load_prior_snapshot=collaborators.load_prior_snapshot,
            save_snapshot=collaborators.save_snapshot,
        )

        report = await orchestrator.run_pipeline()

        assert report.trends.has_prior is True
        assert report.trends.repeat_items == ["org/item1"]
        assert len(report.trends.new_items) == 4
        assert report.trends.rising[0] == ("org/item5", 5.0)
        assert [s.day for s in store.load_all()] == [yesterday, date.today()]
        assert "Trends:" in services.notifications[0]

    @pytest.mark.asyncio
    async def test_snapshot_failures_are_recorded(self, items, build_orchestrator):
        services = FakeServices(items[:1])

        async def broken_load():
            raise OSError("history unreadable")

        async def broken_save(snapshot):
            raise OSError("disk full")

        report = await build_orchestrator(
            services, load_prior_snapshot=broken_load, save_snapshot=broken_save
        ).run_pipeline()

        assert report.trends.has_prior is False
        assert report.snapshot_saved is False
        assert "history unreadable" in report.stage_errors["load_snapshot"]
        assert "disk full" in report.stage_errors["save_snapshot"]
        assert report.notifications_dispatched is True

    @pytest.mark.asyncio
    async def test_summarizer_preferred_and_failure_tolerated(self, items, build_orchestrator):
        services = FakeServices(items[:2])

        async def summarize(results):
            return f"{len(results)} items look great"

        report = await build_orchestrator(services, summarize=summarize).run_pipeline()
        assert report.summary_text == "2 items look great"

        async def failing_summarize(results):
            raise RuntimeError("model unavailable")

        report = await build_orchestrator(services, summarize=failing_summarize).run_pipeline()
        assert report.summary_text.startswith("Analyzed 2 items")

    @pytest.mark.asyncio
    async def test_collection_failure_aborts(self, build_orchestrator):
        services = FakeServices([])

        async def broken_collect():
            raise ValueError("source API rejected the query")

        orchestrator = build_orchestrator(services, collect_items=broken_collect)

        with pytest.raises(CollectionError, match="source API rejected"):
            await orchestrator.run_pipeline()
        assert services.deep_calls == []
        assert services.notifications == []

    @pytest.mark.asyncio
    async def test_transient_collection_failure_retried(self, items, build_orchestrator):
        services = FakeServices(items[:1])
        attempts = 0

        async def flaky_collect():
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise TransientIOError("connection reset")
            return list(items[:1])

        report = await build_orchestrator(services, collect_items=flaky_collect).run_pipeline()

        assert attempts == 2
        assert report.total_items == 1

    @pytest.mark.asyncio
    async def test_empty_collection(self, build_orchestrator):
        services = FakeServices([])

        report = await build_orchestrator(services).run_pipeline()

        assert report.total_items == 0
        assert services.notifications == []
        assert report.finished_at is not None

    @pytest.mark.asyncio
    async def test_progress_reported(self, items, test_config, materializer):
        services = FakeServices(items)
        progress: List[tuple] = []
        orchestrator = PipelineOrchestrator(
            services.collaborators(),
            config=test_config,
            workspace_manager=WorkspaceManager.from_config(
                test_config.workspace, materializer=materializer
            ),
            on_progress=lambda done, total: progress.append((done, total)),
            sleep=AsyncMock(),
        )

        await orchestrator.run_pipeline()

        assert progress[-1] == (5, 5)
        assert len(progress) == 5

    @pytest.mark.asyncio
    async def test_stale_workspaces_swept_before_run(self, items, build_orchestrator, test_config):
        root = WorkspaceManager.from_config(test_config.workspace).root_dir
        orphan = root / "crashed-run"
        orphan.mkdir(parents=True)
        stamp = time.time() - 5 * 3600
        os.utime(orphan, (stamp, stamp))

        await build_orchestrator(FakeServices(items[:1])).run_pipeline()

        assert not orphan.exists()


class TestStubPayload:
    def test_deterministic(self, item_factory):
        item = item_factory("org/a", stars=5, forks=2)

        first = build_stub_payload(item, ["deep: boom", "fallback: bust"])
        second = build_stub_payload(item, ["deep: boom", "fallback: bust"])

        assert first == second
        assert first.splitlines()[0] == "## org/a"
        assert "- **forks**: 2" in first
        assert first.endswith("_Last error: fallback: bust_")


class TestItemTrace:
    def test_terminal_state_is_final(self):
        trace = ItemTrace()
        trace.enter(ItemState.WORKSPACE_ACQUIRED)
        trace.enter(ItemState.DEEP_ANALYZED)

        assert trace.states[-1].is_terminal
        with pytest.raises(ValueError, match="terminal state"):
            trace.enter(ItemState.STUB_PRODUCED)

    def test_intermediate_states_are_not_terminal(self):
        assert not ItemState.PENDING.is_terminal
        assert not ItemState.WORKSPACE_ACQUIRED.is_terminal
