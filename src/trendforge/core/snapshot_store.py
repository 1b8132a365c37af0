"""
JSON-file history of daily run snapshots.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models.pipeline_models import Snapshot

logger = logging.getLogger(__name__)


class JsonSnapshotStore:
    """
    Keeps one snapshot per day in a single JSON history file.

    Saving replaces a snapshot of the same day and keeps only the most recent
    `retention_days` snapshots. Writes go to a temporary file that is then
    renamed over the history file.
    """

    def __init__(self, path: Union[str, Path], retention_days: int = 30):
        self.path = Path(path).expanduser()
        self.retention_days = retention_days

    async def load_prior_snapshot(self, today: Optional[date] = None) -> Optional[Snapshot]:
        """Most recent snapshot dated before `today`, or None."""
        today = today or date.today()
        earlier = [s for s in self.load_all() if s.day < today]
        if not earlier:
            logger.info("No prior snapshot available")
            return None

        prior = max(earlier, key=lambda s: s.day)
        logger.info(f"Loaded prior snapshot from {prior.day.isoformat()}")
        return prior

    async def save_snapshot(self, snapshot: Snapshot) -> None:
        snapshots = [s for s in self.load_all() if s.day != snapshot.day]
        snapshots.append(snapshot)
        snapshots.sort(key=lambda s: s.day)
        snapshots = snapshots[-self.retention_days :]

        self._write({"snapshots": [s.to_dict() for s in snapshots]})
        logger.info(
            f"Saved snapshot for {snapshot.day.isoformat()} "
            f"({len(snapshot.entries)} entries, {len(snapshots)} days retained)"
        )

    def load_all(self) -> List[Snapshot]:
        """All readable snapshots in the history file, oldest first."""
        data = self._read()
        snapshots = []
        for raw in data.get("snapshots", []):
            try:
                snapshots.append(Snapshot.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed snapshot in {self.path}: {e}")
        snapshots.sort(key=lambda s: s.day)
        return snapshots

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"History file {self.path} is unreadable, starting fresh: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_path.replace(self.path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise
