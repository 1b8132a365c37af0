"""
Unit tests for trend analysis and run summaries.
"""

from datetime import date

from trendforge.core.trend_analyzer import TrendAnalyzer, growth_rate, language_of
from trendforge.models.pipeline_models import (
    AnalysisResult,
    Provenance,
    Snapshot,
    SnapshotEntry,
)


def result(identity: str, provenance=Provenance.DEEP, **metrics) -> AnalysisResult:
    return AnalysisResult(
        identity=identity,
        revision="r1",
        payload=f"analysis of {identity}",
        provenance=provenance,
        metrics=metrics,
    )


class TestMetricHelpers:
    def test_growth_rate(self):
        assert growth_rate({"growth_rate": "2.5"}) == 2.5
        assert growth_rate({"growthRate": 4}) == 4.0
        assert growth_rate({"growth_rate": "n/a"}) == 0.0
        assert growth_rate({}) == 0.0

    def test_language_of(self):
        assert language_of({"language": "Rust"}) == "Rust"
        assert language_of({"language": None}) == "Unknown"


class TestTrendAnalyzer:
    """Test TrendAnalyzer deltas."""

    def test_trends_without_prior(self):
        analyzer = TrendAnalyzer()
        results = [result("a", growth_rate=1.0), result("b", growth_rate=3.0)]

        trends = analyzer.compute_trends(results, prior=None)

        assert trends.has_prior is False
        assert trends.new_items == []
        assert trends.repeat_items == []
        assert trends.rising == [("b", 3.0), ("a", 1.0)]
        assert trends.summary == "top riser: b (+3.00/day)"

    def test_new_and_repeat_items(self):
        analyzer = TrendAnalyzer()
        prior = Snapshot(
            day=date(2024, 1, 1),
            entries=(SnapshotEntry("a", "deep"), SnapshotEntry("gone", "deep")),
        )
        results = [result("a"), result("b"), result("c")]

        trends = analyzer.compute_trends(results, prior)

        assert trends.has_prior is True
        assert trends.new_items == ["b", "c"]
        assert trends.repeat_items == ["a"]
        assert trends.summary.startswith("2 new items, 1 items still trending")

    def test_rising_limited_to_three(self):
        analyzer = TrendAnalyzer()
        results = [result(f"r{i}", growth_rate=i) for i in range(6)]

        trends = analyzer.compute_trends(results, None)

        assert [identity for identity, _ in trends.rising] == ["r5", "r4", "r3"]

    def test_language_distribution(self):
        analyzer = TrendAnalyzer()
        results = [
            result("a", language="Python"),
            result("b", language="Go"),
            result("c", language="Python"),
            result("d"),
        ]

        shares = analyzer.language_distribution(results)

        assert [(s.language, s.count, s.percentage) for s in shares] == [
            ("Python", 2, 50.0),
            ("Go", 1, 25.0),
            ("Unknown", 1, 25.0),
        ]

    def test_local_summary(self):
        analyzer = TrendAnalyzer()
        results = [
            result("a", language="Python"),
            result("b", Provenance.CACHE_HIT, language="Python"),
            result("c", Provenance.FALLBACK, language="Go"),
            result("d", Provenance.STUB),
        ]

        summary = analyzer.local_summary(results)

        assert summary.splitlines()[0] == (
            "Analyzed 4 items: 1 deep, 1 cached, 1 fallback, 1 unavailable."
        )
        assert "Python (2)" in summary
        assert analyzer.local_summary([]) == "No items were analyzed."

    def test_build_aggregate(self):
        analyzer = TrendAnalyzer()
        results = [result("a"), result("b", Provenance.STUB)]

        aggregate = analyzer.build_aggregate(results, "summary", None, day=date(2024, 5, 1))

        assert aggregate.total_items == 2
        assert aggregate.day == date(2024, 5, 1)
        assert aggregate.provenance_counts == {
            "cache_hit": 0,
            "deep": 1,
            "fallback": 0,
            "stub": 1,
        }
