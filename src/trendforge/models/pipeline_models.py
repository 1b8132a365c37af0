"""
Data models for pipeline runs: work items, workspaces, results and reports.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class Provenance(Enum):
    """Which pipeline tier produced an AnalysisResult."""

    CACHE_HIT = "cache_hit"
    DEEP = "deep"
    FALLBACK = "fallback"
    STUB = "stub"


class ItemState(Enum):
    """Per-item state machine positions."""

    PENDING = "pending"
    CACHE_HIT = "cache_hit"
    WORKSPACE_ACQUIRED = "workspace_acquired"
    DEEP_ANALYZED = "deep_analyzed"
    FALLBACK_ANALYZED = "fallback_analyzed"
    STUB_PRODUCED = "stub_produced"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = {
    ItemState.CACHE_HIT,
    ItemState.DEEP_ANALYZED,
    ItemState.FALLBACK_ANALYZED,
    ItemState.STUB_PRODUCED,
}

PROVENANCE_STATES = {
    Provenance.CACHE_HIT: ItemState.CACHE_HIT,
    Provenance.DEEP: ItemState.DEEP_ANALYZED,
    Provenance.FALLBACK: ItemState.FALLBACK_ANALYZED,
    Provenance.STUB: ItemState.STUB_PRODUCED,
}


@dataclass(frozen=True)
class WorkItem:
    """
    One candidate item enumerated by source collection.

    `identity` is an opaque unique name (e.g. a repository full name) and
    `revision` a marker that changes whenever the item changes (e.g. the
    last-update timestamp). Together they key the result cache.
    """

    identity: str
    revision: str
    source_ref: str = ""
    metrics: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def fingerprint_fields(self) -> Dict[str, str]:
        """Fields that determine the cache fingerprint."""
        return {"name": self.identity, "updated": self.revision}


@dataclass(frozen=True)
class FilePreview:
    """Structural preview of one source file."""

    path: str
    preview: str
    size: int

    @property
    def preview_bytes(self) -> int:
        return len(self.preview.encode("utf-8"))


@dataclass(frozen=True)
class ContentDigest:
    """Bounded content extracted from a workspace for analysis."""

    files: Tuple[FilePreview, ...] = ()
    summary: str = ""
    candidate_count: int = 0
    total_preview_bytes: int = 0
    total_source_bytes: int = 0
    truncated: bool = False

    @property
    def file_count(self) -> int:
        return len(self.files)


@dataclass
class Workspace:
    """A disposable directory owned by one in-flight item."""

    name: str
    path: Path
    source_ref: str
    size_bytes: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    released: bool = False

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


@dataclass(frozen=True)
class AnalysisResult:
    """Immutable per-item output record."""

    identity: str
    revision: str
    payload: str
    provenance: Provenance
    metrics: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    files_analyzed: int = 0
    produced_at: datetime = field(default_factory=datetime.now, compare=False)

    @classmethod
    def from_item(
        cls,
        item: WorkItem,
        payload: str,
        provenance: Provenance,
        files_analyzed: int = 0,
    ) -> "AnalysisResult":
        return cls(
            identity=item.identity,
            revision=item.revision,
            payload=payload,
            provenance=provenance,
            metrics=dict(item.metrics),
            files_analyzed=files_analyzed,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to a JSON-serializable dictionary."""
        return {
            "identity": self.identity,
            "revision": self.revision,
            "payload": self.payload,
            "provenance": self.provenance.value,
            "metrics": dict(self.metrics),
            "files_analyzed": self.files_analyzed,
            "produced_at": self.produced_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            identity=data["identity"],
            revision=data["revision"],
            payload=data["payload"],
            provenance=Provenance(data["provenance"]),
            metrics=dict(data.get("metrics") or {}),
            files_analyzed=int(data.get("files_analyzed", 0)),
            produced_at=datetime.fromisoformat(data["produced_at"])
            if data.get("produced_at")
            else datetime.now(),
        )


@dataclass(frozen=True)
class SnapshotEntry:
    """One item as recorded in a durable run snapshot."""

    identity: str
    provenance: str
    metrics: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "provenance": self.provenance,
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotEntry":
        return cls(
            identity=data["identity"],
            provenance=data.get("provenance", Provenance.STUB.value),
            metrics=dict(data.get("metrics") or {}),
        )


@dataclass(frozen=True)
class Snapshot:
    """Durable record of one run, read back by the next run for deltas."""

    day: date
    entries: Tuple[SnapshotEntry, ...] = ()
    created_at: datetime = field(default_factory=datetime.now, compare=False)

    @property
    def identities(self) -> List[str]:
        return [entry.identity for entry in self.entries]

    @classmethod
    def from_results(
        cls, results: List[AnalysisResult], day: Optional[date] = None
    ) -> "Snapshot":
        return cls(
            day=day or date.today(),
            entries=tuple(
                SnapshotEntry(
                    identity=result.identity,
                    provenance=result.provenance.value,
                    metrics=dict(result.metrics),
                )
                for result in results
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "created_at": self.created_at.isoformat(),
            "entries": [entry.to_dict() for entry in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        created_at = data.get("created_at")
        return cls(
            day=date.fromisoformat(data["date"]),
            entries=tuple(SnapshotEntry.from_dict(e) for e in data.get("entries", [])),
            created_at=datetime.fromisoformat(created_at) if created_at else datetime.now(),
        )


@dataclass(frozen=True)
class LanguageShare:
    language: str
    count: int
    percentage: float


@dataclass
class TrendReport:
    """Deltas of the current run against the prior durable snapshot."""

    has_prior: bool = False
    new_items: List[str] = field(default_factory=list)
    repeat_items: List[str] = field(default_factory=list)
    rising: List[Tuple[str, float]] = field(default_factory=list)
    languages: List[LanguageShare] = field(default_factory=list)
    summary: str = ""


@dataclass
class Aggregate:
    """Aggregate output handed to the sink."""

    day: date
    results: List[AnalysisResult]
    provenance_counts: Dict[str, int]
    summary_text: str = ""
    trends: Optional[TrendReport] = None

    @property
    def total_items(self) -> int:
        return len(self.results)


@dataclass
class RunReport:
    """Outcome of one `run_pipeline` call."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[AnalysisResult] = field(default_factory=list)
    item_states: Dict[str, ItemState] = field(default_factory=dict)
    state_history: Dict[str, List[ItemState]] = field(default_factory=dict)
    errors: Dict[str, List[str]] = field(default_factory=dict)
    stage_errors: Dict[str, str] = field(default_factory=dict)
    summary_text: str = ""
    trends: Optional[TrendReport] = None
    snapshot_saved: bool = False
    sink_dispatched: bool = False
    sink_url: Optional[str] = None
    notifications_dispatched: bool = False
    workspaces_swept: int = 0
    cache_stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_items(self) -> int:
        return len(self.results)

    @property
    def duration_seconds(self) -> Optional[float]:
        if not self.finished_at:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def items_with(self, provenance: Provenance) -> List[str]:
        """Identities of items produced by the given tier, in input order."""
        return [r.identity for r in self.results if r.provenance == provenance]

    @property
    def cache_hits(self) -> List[str]:
        return self.items_with(Provenance.CACHE_HIT)

    @property
    def deep_analyzed(self) -> List[str]:
        return self.items_with(Provenance.DEEP)

    @property
    def fallback_analyzed(self) -> List[str]:
        return self.items_with(Provenance.FALLBACK)

    @property
    def stubs(self) -> List[str]:
        return self.items_with(Provenance.STUB)

    @property
    def fully_successful(self) -> bool:
        return not self.fallback_analyzed and not self.stubs

    def provenance_counts(self) -> Dict[str, int]:
        return {p.value: len(self.items_with(p)) for p in Provenance}
