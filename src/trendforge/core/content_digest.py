"""
Bounded content extraction from a materialized workspace.

Walks a source tree, skips build output, dependency caches, tests and
version-control metadata, and takes short structural previews of the most
important source files until a cumulative byte budget is reached.
"""

import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from ..models.pipeline_models import ContentDigest, FilePreview

logger = logging.getLogger(__name__)

IGNORED_DIRECTORIES = [
    "node_modules",
    "dist",
    "build",
    "out",
    "coverage",
    ".git",
    "vendor",
    "__tests__",
    "test",
    "tests",
    ".vscode",
    ".idea",
    "__pycache__",
    ".venv",
    "venv",
]

IGNORED_FILE_PATTERNS = [
    "*.min.js",
    "*.min.css",
    "*.test.js",
    "*.test.ts",
    "*.spec.js",
    "*.spec.ts",
    "*.d.ts",
    "*.map",
    "test_*.py",
]

CODE_EXTENSIONS = {
    ".js",
    ".ts",
    ".jsx",
    ".tsx",
    ".vue",
    ".py",
    ".go",
    ".rs",
    ".java",
    ".c",
    ".cpp",
    ".h",
    ".cs",
    ".rb",
    ".php",
    ".swift",
    ".kt",
}

ENTRY_POINT_PRIORITY = {
    "index": 10,
    "main": 9,
    "app": 8,
    "core": 7,
    "init": 6,
    "__init__": 6,
    "utils": 5,
    "package": 4,
}

SKIPPED_LINE_PREFIXES = ("//", "#", "/*", "import ", "export ")

MAX_SUMMARY_ENTRIES = 20


@dataclass(frozen=True)
class CandidateFile:
    """A source file accepted by the walk, before preview extraction."""

    path: str
    full_path: Path
    size: int

    @property
    def depth(self) -> int:
        return len(self.path.split("/"))

    @property
    def priority(self) -> int:
        return ENTRY_POINT_PRIORITY.get(Path(self.path).stem.lower(), 0)


def is_ignored(relative_path: str, is_directory: bool) -> bool:
    """Check a POSIX relative path against the ignore set."""
    name = relative_path.rsplit("/", 1)[-1]
    if is_directory:
        return any(fnmatch.fnmatch(name, pattern) for pattern in IGNORED_DIRECTORIES)
    return any(fnmatch.fnmatch(name, pattern) for pattern in IGNORED_FILE_PATTERNS)


def structural_preview(content: str, max_length: int) -> str:
    """
    Keep the structural lines of a source file.

    Blank lines, line comments and import/export statements are dropped.
    Lines are taken whole until the next one would exceed `max_length`.
    """
    kept: List[str] = []
    length = 0

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(SKIPPED_LINE_PREFIXES):
            continue
        if stripped.startswith("from ") and " import " in stripped:
            continue

        if length + len(line) > max_length:
            break
        kept.append(line)
        length += len(line) + 1

    return "\n".join(kept)


def sort_by_importance(files: Iterable[CandidateFile]) -> List[CandidateFile]:
    """Entry-point names first, then shallower paths, then lexicographic."""
    return sorted(files, key=lambda f: (-f.priority, f.depth, f.path))


def directory_summary(paths: Iterable[str], max_entries: int = MAX_SUMMARY_ENTRIES) -> str:
    """Indented tree of relative paths, at most `max_entries` per level."""
    tree: Dict[str, Dict] = {}
    for path in paths:
        node = tree
        for part in path.split("/"):
            node = node.setdefault(part, {})

    def render(node: Dict[str, Dict], indent: int) -> List[str]:
        lines = []
        for name, children in list(node.items())[:max_entries]:
            prefix = "  " * indent
            if children:
                lines.append(f"{prefix}{name}/")
                lines.extend(render(children, indent + 1))
            else:
                lines.append(f"{prefix}{name}")
        return lines

    return "\n".join(render(tree, 0))


class ContentExtractor:
    """Produces a ContentDigest for a directory tree."""

    def __init__(
        self,
        max_file_count: int = 500,
        max_file_size_bytes: int = 102400,
        preview_length: int = 500,
    ):
        self.max_file_count = max_file_count
        self.max_file_size_bytes = max_file_size_bytes
        self.preview_length = preview_length

    def collect_candidates(self, root: Path) -> Tuple[List[CandidateFile], bool]:
        """
        Walk `root` depth-first and collect accepted source files.

        Returns:
            Candidates in priority order, and whether the walk stopped at
            the file-count cap
        """
        candidates: List[CandidateFile] = []
        capped = False

        for dirpath, dirnames, filenames in os.walk(root, topdown=True):
            current = Path(dirpath)
            relative_dir = current.relative_to(root).as_posix()
            relative_dir = "" if relative_dir == "." else relative_dir

            dirnames[:] = sorted(
                d
                for d in dirnames
                if not is_ignored(_join(relative_dir, d), is_directory=True)
            )

            for filename in sorted(filenames):
                relative_path = _join(relative_dir, filename)
                if is_ignored(relative_path, is_directory=False):
                    continue
                if Path(filename).suffix.lower() not in CODE_EXTENSIONS:
                    continue

                full_path = current / filename
                if full_path.is_symlink():
                    logger.debug(f"Skipping symlink {relative_path}")
                    continue
                try:
                    size = full_path.stat().st_size
                except OSError as e:
                    logger.debug(f"Skipping unreadable file {relative_path}: {e}")
                    continue
                if size >= self.max_file_size_bytes:
                    continue

                candidates.append(CandidateFile(relative_path, full_path, size))
                if len(candidates) >= self.max_file_count:
                    capped = True
                    break

            if capped:
                break

        return sort_by_importance(candidates), capped

    def extract(self, root: Path, max_content_bytes: int) -> ContentDigest:
        """
        Build a digest whose previews fit in `max_content_bytes`.

        Files are taken in priority order; accumulation stops at the first
        file whose preview would push the total over the budget. A file that
        cannot be read is skipped.
        """
        candidates, capped = self.collect_candidates(root)
        previews: List[FilePreview] = []
        used_bytes = 0
        source_bytes = 0
        truncated = capped

        for candidate in candidates:
            try:
                content = candidate.full_path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.debug(f"Skipping {candidate.path}: {e}")
                continue

            preview = FilePreview(
                path=candidate.path,
                preview=structural_preview(content, self.preview_length),
                size=candidate.size,
            )
            if used_bytes + preview.preview_bytes > max_content_bytes:
                truncated = True
                break

            previews.append(preview)
            used_bytes += preview.preview_bytes
            source_bytes += candidate.size

        digest = ContentDigest(
            files=tuple(previews),
            summary=directory_summary(c.path for c in candidates),
            candidate_count=len(candidates),
            total_preview_bytes=used_bytes,
            total_source_bytes=source_bytes,
            truncated=truncated,
        )
        logger.debug(
            f"Extracted {digest.file_count}/{len(candidates)} files "
            f"({used_bytes} of {max_content_bytes} bytes) from {root}"
        )
        return digest


def _join(directory: str, name: str) -> str:
    return f"{directory}/{name}" if directory else name


def directory_size(root: Path, follow_symlinks: bool = False) -> int:
    """Total size in bytes of all regular files under `root`."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            try:
                if not follow_symlinks and os.path.islink(path):
                    continue
                total += os.path.getsize(path)
            except OSError:
                continue
    return total

