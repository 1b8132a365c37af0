"""
Ephemeral, quota-bounded workspaces for per-item analysis.
"""

import asyncio
import hashlib
import logging
import re
import shutil
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from ..models.config_models import WorkspaceConfig
from ..models.error_models import (
    OversizeError,
    PipelineError,
    ResourceCleanupError,
    TransientIOError,
    WorkspaceError,
)
from ..models.pipeline_models import ContentDigest, Workspace
from .content_digest import ContentExtractor, directory_size

logger = logging.getLogger(__name__)

Materializer = Callable[[str, Path, float], Awaitable[None]]

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


async def git_shallow_clone(source_ref: str, target: Path, timeout: float) -> None:
    """
    Materialize `source_ref` into `target` with a depth-1 git clone.

    Raises:
        TransientIOError: If the clone does not finish within `timeout`
        WorkspaceError: If git is unavailable or exits non-zero
    """
    command = ["git", "clone", "--depth", "1", "--single-branch", source_ref, str(target)]
    logger.debug(f"Running git command: {' '.join(command)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise WorkspaceError(f"Unable to start git: {e}") from e

    try:
        _stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise TransientIOError(
            f"Clone timed out after {timeout}s: {source_ref}"
        ) from None

    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="ignore").strip()
        raise WorkspaceError(
            f"git clone exited with {process.returncode}: {message or source_ref}"
        )


class WorkspaceManager:
    """
    Creates, measures, digests and deletes per-item workspaces.

    Each workspace is a directory under `root_dir` named after a sanitized
    item name. Acquisition removes a stale directory of the same name,
    materializes the source and enforces the size quota; release and sweep
    never raise.
    """

    def __init__(
        self,
        root_dir: Union[str, Path],
        max_size_mb: float = 50,
        clone_timeout_seconds: float = 60,
        max_file_count: int = 500,
        max_file_size_bytes: int = 102400,
        preview_length: int = 500,
        max_content_bytes: int = 6000,
        materializer: Optional[Materializer] = None,
    ):
        self.root_dir = Path(root_dir).expanduser()
        self.max_size_mb = max_size_mb
        self.clone_timeout_seconds = clone_timeout_seconds
        self.max_content_bytes = max_content_bytes
        self.materializer = materializer or git_shallow_clone
        self.extractor = ContentExtractor(
            max_file_count=max_file_count,
            max_file_size_bytes=max_file_size_bytes,
            preview_length=preview_length,
        )
        self._active: Dict[str, Workspace] = {}

        logger.debug(
            f"Initialized WorkspaceManager at {self.root_dir} "
            f"(quota={max_size_mb}MB, clone_timeout={clone_timeout_seconds}s)"
        )

    @classmethod
    def from_config(
        cls, config: WorkspaceConfig, materializer: Optional[Materializer] = None
    ) -> "WorkspaceManager":
        return cls(
            root_dir=config.root_dir,
            max_size_mb=config.max_size_mb,
            clone_timeout_seconds=config.clone_timeout_seconds,
            max_file_count=config.max_file_count,
            max_file_size_bytes=config.max_file_size_bytes,
            preview_length=config.preview_length,
            max_content_bytes=config.max_content_bytes,
            materializer=materializer,
        )

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)

    @property
    def active_workspaces(self) -> List[Workspace]:
        return list(self._active.values())

    @staticmethod
    def sanitize_name(item_name: str) -> str:
        """
        Filesystem-safe token for an item name.

        Characters outside [A-Za-z0-9_-] become underscores. When anything
        was replaced a short digest of the original name is appended, so two
        names that sanitize alike still map to different directories.
        """
        sanitized = _UNSAFE_NAME_CHARS.sub("_", item_name.strip())
        if not sanitized:
            sanitized = "workspace"
        if sanitized != item_name:
            digest = hashlib.md5(item_name.encode("utf-8")).hexdigest()[:8]
            sanitized = f"{sanitized}-{digest}"
        return sanitized

    async def acquire(self, source_ref: str, item_name: str) -> Workspace:
        """
        Materialize `source_ref` into a fresh workspace.

        Args:
            source_ref: Location handed to the materializer (e.g. clone URL)
            item_name: Item identity used to name the directory

        Returns:
            The acquired Workspace with its measured size

        Raises:
            OversizeError: Workspace exceeds the size quota (already removed)
            TransientIOError: Materialization timed out (already removed)
            WorkspaceError: Materialization failed otherwise (already removed)
        """
        name = self.sanitize_name(item_name)
        path = self.root_dir / name
        self.root_dir.mkdir(parents=True, exist_ok=True)

        if path.exists():
            logger.info(f"Removing stale workspace {path}")
            if not await self._remove_tree(path):
                raise WorkspaceError(
                    f"Stale workspace could not be removed: {path}", item_id=item_name
                )

        logger.info(f"Materializing {source_ref} into {path}")
        try:
            await self.materializer(source_ref, path, self.clone_timeout_seconds)
        except PipelineError as e:
            await self._remove_tree(path)
            if e.item_id is None:
                e.item_id = item_name
            raise
        except Exception as e:
            await self._remove_tree(path)
            raise WorkspaceError(
                f"Materialization failed: {e}", item_id=item_name
            ) from e

        loop = asyncio.get_running_loop()
        size = await loop.run_in_executor(None, directory_size, path)

        if size > self.max_size_bytes:
            await self._remove_tree(path)
            size_mb = size / (1024 * 1024)
            logger.warning(
                f"Workspace for {item_name} is too large "
                f"({size_mb:.1f}MB > {self.max_size_mb}MB), removed"
            )
            raise OversizeError(
                f"Workspace too large ({size_mb:.1f}MB > {self.max_size_mb}MB)",
                item_id=item_name,
                limit=self.max_size_bytes,
                actual=size,
            )

        workspace = Workspace(name=name, path=path, source_ref=source_ref, size_bytes=size)
        self._active[name] = workspace
        logger.info(f"Acquired workspace {name} ({workspace.size_mb:.2f}MB)")
        return workspace

    async def extract(
        self, workspace: Workspace, max_content_bytes: Optional[int] = None
    ) -> ContentDigest:
        """Bounded content digest of an acquired workspace."""
        if workspace.released:
            raise WorkspaceError(
                f"Workspace {workspace.name} was already released",
                item_id=workspace.name,
            )

        budget = max_content_bytes or self.max_content_bytes
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.extractor.extract, workspace.path, budget
        )

    async def release(self, workspace: Workspace) -> bool:
        """
        Delete a workspace. Never raises.

        Returns:
            True if the directory is gone afterwards. A second call for the
            same workspace is a no-op returning False.
        """
        if workspace.released:
            logger.debug(f"Workspace {workspace.name} already released")
            return False

        workspace.released = True
        self._active.pop(workspace.name, None)
        removed = await self._remove_tree(workspace.path)
        if removed:
            logger.info(f"Released workspace {workspace.name}")
        return removed

    @asynccontextmanager
    async def session(self, source_ref: str, item_name: str) -> AsyncIterator[Workspace]:
        """Acquire a workspace and release it exactly once on exit."""
        workspace = await self.acquire(source_ref, item_name)
        try:
            yield workspace
        finally:
            await self.release(workspace)

    async def sweep(self, max_age_hours: float = 1.0) -> int:
        """
        Delete workspaces older than `max_age_hours`. Never raises.

        Workspaces currently held by this manager are left alone.

        Returns:
            Number of directories removed
        """
        if not self.root_dir.exists():
            return 0

        cutoff = time.time() - max_age_hours * 3600
        removed = 0

        try:
            entries = list(self.root_dir.iterdir())
        except OSError as e:
            logger.warning(f"Workspace sweep could not list {self.root_dir}: {e}")
            return 0

        for entry in entries:
            if entry.name in self._active:
                continue
            try:
                if not entry.is_dir() or entry.stat().st_mtime > cutoff:
                    continue
            except OSError:
                continue

            if await self._remove_tree(entry):
                removed += 1
                logger.info(f"Swept stale workspace {entry.name}")

        if removed:
            logger.info(f"Workspace sweep removed {removed} directories")
        return removed

    async def _remove_tree(self, path: Path) -> bool:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, shutil.rmtree, path)
            return True
        except FileNotFoundError:
            return True
        except OSError as e:
            error = ResourceCleanupError(f"Failed to delete workspace: {e}", str(path))
            logger.error(str(error))
            return False
