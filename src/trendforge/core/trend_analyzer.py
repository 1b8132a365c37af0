"""
Aggregation of per-item results and trend deltas against the prior run.
"""

import logging
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Optional

from ..models.pipeline_models import (
    Aggregate,
    AnalysisResult,
    LanguageShare,
    Provenance,
    Snapshot,
    TrendReport,
)

logger = logging.getLogger(__name__)

RISING_LIMIT = 3


def growth_rate(metrics: Dict[str, Any]) -> float:
    """Growth metric of an item, 0.0 when absent or malformed."""
    value = metrics.get("growth_rate", metrics.get("growthRate", 0))
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def language_of(metrics: Dict[str, Any]) -> str:
    return metrics.get("language") or "Unknown"


class TrendAnalyzer:
    """Computes trend deltas and run summaries."""

    def __init__(self, rising_limit: int = RISING_LIMIT):
        self.rising_limit = rising_limit

    def language_distribution(self, results: List[AnalysisResult]) -> List[LanguageShare]:
        """Languages by item count, most common first."""
        if not results:
            return []

        counts = Counter(language_of(result.metrics) for result in results)
        total = len(results)
        ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return [
            LanguageShare(
                language=language,
                count=count,
                percentage=round(count / total * 100, 1),
            )
            for language, count in ordered
        ]

    def compute_trends(
        self, results: List[AnalysisResult], prior: Optional[Snapshot]
    ) -> TrendReport:
        """
        Compare the current results with the prior snapshot.

        Without a prior snapshot nothing counts as new or repeated; rising
        items and the language distribution are still reported.
        """
        report = TrendReport(has_prior=prior is not None)

        if prior is not None:
            prior_identities = set(prior.identities)
            for result in results:
                if result.identity in prior_identities:
                    report.repeat_items.append(result.identity)
                else:
                    report.new_items.append(result.identity)

        ranked = sorted(results, key=lambda r: growth_rate(r.metrics), reverse=True)
        report.rising = [
            (result.identity, growth_rate(result.metrics))
            for result in ranked[: self.rising_limit]
        ]
        report.languages = self.language_distribution(results)
        report.summary = self._trend_summary(report, len(results))

        logger.info(
            f"Trend analysis: {len(report.new_items)} new, "
            f"{len(report.repeat_items)} repeat, prior snapshot "
            f"{'found' if report.has_prior else 'missing'}"
        )
        return report

    def _trend_summary(self, report: TrendReport, total: int) -> str:
        parts = []
        if report.new_items:
            parts.append(f"{len(report.new_items)} new items")
        if report.repeat_items:
            parts.append(f"{len(report.repeat_items)} items still trending")
        if report.rising:
            identity, rate = report.rising[0]
            parts.append(f"top riser: {identity} (+{rate:.2f}/day)")

        return ", ".join(parts) if parts else f"Analyzed {total} items"

    def local_summary(
        self, results: List[AnalysisResult], trends: Optional[TrendReport] = None
    ) -> str:
        """Plain-text run summary used when no summarizer is available."""
        if not results:
            return "No items were analyzed."

        counts = Counter(result.provenance for result in results)
        lines = [
            f"Analyzed {len(results)} items: "
            f"{counts[Provenance.DEEP]} deep, "
            f"{counts[Provenance.CACHE_HIT]} cached, "
            f"{counts[Provenance.FALLBACK]} fallback, "
            f"{counts[Provenance.STUB]} unavailable."
        ]

        languages = self.language_distribution(results)
        if languages:
            top = ", ".join(f"{share.language} ({share.count})" for share in languages[:3])
            lines.append(f"Top languages: {top}.")

        if trends and trends.summary:
            lines.append(f"Trends: {trends.summary}.")

        return "\n".join(lines)

    def build_aggregate(
        self,
        results: List[AnalysisResult],
        summary_text: str,
        trends: Optional[TrendReport],
        day: Optional[date] = None,
    ) -> Aggregate:
        counts = Counter(result.provenance.value for result in results)
        return Aggregate(
            day=day or date.today(),
            results=list(results),
            provenance_counts={p.value: counts.get(p.value, 0) for p in Provenance},
            summary_text=summary_text,
            trends=trends,
        )
