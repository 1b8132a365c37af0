"""
Shared test configuration and fixtures.
"""

from pathlib import Path
from typing import Dict, List, Optional

import pytest

from trendforge.models.config_models import (
    CacheConfig,
    HistoryConfig,
    PipelineConfig,
    RetryConfig,
    WorkspaceConfig,
)
from trendforge.models.pipeline_models import WorkItem

SAMPLE_FILES: Dict[str, str] = {
    "README.md": "# Sample project\n",
    "src/index.js": "import x from 'y'\n// entry\nfunction main() {\n  return 1\n}\n",
    "src/utils.js": "export const a = 1\nfunction helper() {}\n",
    "node_modules/dep/index.js": "function ignored() {}\n",
}


class FakeMaterializer:
    """Writes a fixed file tree instead of cloning, and records calls."""

    def __init__(
        self,
        files: Optional[Dict[str, str]] = None,
        sizes: Optional[Dict[str, int]] = None,
        errors: Optional[Dict[str, Exception]] = None,
    ):
        self.files = SAMPLE_FILES if files is None else files
        self.sizes = sizes or {}
        self.errors = errors or {}
        self.calls: List[str] = []
        self.targets: List[Path] = []

    async def __call__(self, source_ref: str, target: Path, timeout: float) -> None:
        self.calls.append(source_ref)
        self.targets.append(target)
        target.mkdir(parents=True, exist_ok=True)

        for relative, content in self.files.items():
            path = target / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

        if source_ref in self.sizes:
            (target / "blob.bin").write_bytes(b"\0" * self.sizes[source_ref])

        if source_ref in self.errors:
            raise self.errors[source_ref]


def make_item(name: str, revision: str = "2024-01-01T00:00:00Z", **metrics) -> WorkItem:
    """Work item with a source reference derived from its name."""
    return WorkItem(
        identity=name,
        revision=revision,
        source_ref=f"https://example.com/{name}.git",
        metrics=metrics,
    )


@pytest.fixture
def materializer() -> FakeMaterializer:
    return FakeMaterializer()


@pytest.fixture
def materializer_factory():
    return FakeMaterializer


@pytest.fixture
def item_factory():
    return make_item


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    return tmp_path / "workspaces"


@pytest.fixture
def test_config(tmp_path: Path) -> PipelineConfig:
    """Pipeline configuration that keeps every file under tmp_path."""
    return PipelineConfig(
        retry=RetryConfig(max_retries=2, base_delay=0.0),
        cache=CacheConfig(persist=False, cache_dir=str(tmp_path / "cache")),
        workspace=WorkspaceConfig(root_dir=str(tmp_path / "workspaces")),
        history=HistoryConfig(path=str(tmp_path / "history.json")),
    )
