"""
TTL result cache with FIFO eviction and optional JSON persistence.

Entries live in an insertion-ordered map guarded by a lock so that workers
running on other threads (executors) see a consistent store. When
persistence is enabled every `set` also writes `{key, value, expiry}` to a
JSON file named after the sanitized key; on construction non-expired files
are reloaded and expired ones deleted.
"""

import asyncio
import hashlib
import json
import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from ..models.error_models import ResourceCleanupError

logger = logging.getLogger(__name__)

_MISSING = object()
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


@dataclass
class CacheEntry:
    """One cached value with its absolute expiry (epoch seconds)."""

    key: str
    value: Any
    expires_at: float
    created_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ResultCache:
    """
    In-memory result cache keyed by content fingerprints.

    Capacity is bounded by `max_size`; inserting a new key into a full cache
    evicts the oldest entry by insertion time. Re-setting an existing key
    moves it to the newest position.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_size: int = 1000,
        persist: bool = False,
        cache_dir: Optional[Union[str, Path]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if persist and cache_dir is None:
            raise ValueError("cache_dir is required when persist is enabled")

        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.persist = persist
        self.cache_dir = Path(cache_dir).expanduser() if cache_dir else None
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}

        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "evictions": 0,
            "expired": 0,
        }

        self._cleanup_task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

        if self.persist and self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._load_persisted()

        logger.debug(
            f"Initialized result cache (ttl={ttl_seconds}s, max_size={max_size}, "
            f"persist={persist}, entries={len(self._entries)})"
        )

    @staticmethod
    def generate_key(namespace: str, fields: Dict[str, Any]) -> str:
        """
        Deterministic fingerprint for a set of fields.

        Args:
            namespace: Key prefix separating unrelated kinds of entries
            fields: JSON-serializable fields identifying the unit of work

        Returns:
            Key of the form ``namespace:<md5 hex>``
        """
        canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
        digest = hashlib.md5(canonical.encode("utf-8")).hexdigest()
        return f"{namespace}:{digest}"

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value for `key`, or `default` on miss or expiry."""
        found, value = self._lookup(key)
        return value if found else default

    def contains(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store a value, evicting the oldest entry when the cache is full."""
        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=value,
            expires_at=now + (self.ttl_seconds if ttl is None else ttl),
            created_at=now,
        )

        evicted = []
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            if len(self._entries) >= self.max_size:
                # Expired entries give up their slots before any live entry does
                for expired_key in [
                    k for k, e in self._entries.items() if e.is_expired(now)
                ]:
                    del self._entries[expired_key]
                    evicted.append(expired_key)
                    self._stats["expired"] += 1
            while len(self._entries) >= self.max_size:
                oldest_key, _ = self._entries.popitem(last=False)
                evicted.append(oldest_key)
                self._stats["evictions"] += 1
            self._entries[key] = entry
            self._stats["sets"] += 1

        for evicted_key in evicted:
            logger.debug(f"Evicted cache entry {evicted_key}")
            self._remove_file(evicted_key)

        if self.persist:
            self._write_file(entry)

    def delete(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            existed = self._entries.pop(key, None) is not None
            if existed:
                self._stats["deletes"] += 1

        self._remove_file(key)
        return existed

    def clear(self) -> int:
        """Remove every entry, in memory and on disk. Returns the count removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()

        if self.persist and self.cache_dir is not None and self.cache_dir.exists():
            for path in self.cache_dir.glob("*.json"):
                self._unlink(path)

        logger.info(f"Cleared {removed} cache entries")
        return removed

    def cleanup(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired_keys = [
                key for key, entry in self._entries.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._entries[key]
            self._stats["expired"] += len(expired_keys)

        for key in expired_keys:
            self._remove_file(key)

        if expired_keys:
            logger.info(f"Cache cleanup removed {len(expired_keys)} expired entries")
        return len(expired_keys)

    def get_stats(self) -> Dict[str, Any]:
        """Hit/miss counters and occupancy."""
        with self._lock:
            stats: Dict[str, Any] = dict(self._stats)
            stats["size"] = len(self._entries)

        stats["max_size"] = self.max_size
        lookups = stats["hits"] + stats["misses"]
        stats["hit_rate"] = round(stats["hits"] / lookups * 100, 2) if lookups else 0.0
        stats["persist"] = self.persist
        stats["cache_dir"] = str(self.cache_dir) if self.cache_dir else None
        return stats

    async def wrap(
        self,
        key: str,
        fn: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        cache_if: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Get-or-compute-and-set.

        Concurrent callers for the same key while a computation is running
        share that computation instead of invoking `fn` again.

        Args:
            key: Cache key
            fn: Coroutine function computing the value on a miss
            ttl: Optional per-entry TTL in seconds
            cache_if: Predicate deciding whether a computed value is stored

        Returns:
            The cached or freshly computed value
        """
        found, value = self._lookup(key)
        if found:
            return value

        pending = self._in_flight.get(key)
        if pending is not None:
            logger.debug(f"Joining in-flight computation for {key}")
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            value = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            future.exception()  # marks the exception as retrieved
            raise
        else:
            if cache_if is None or cache_if(value):
                self.set(key, value, ttl)
            future.set_result(value)
            return value
        finally:
            self._in_flight.pop(key, None)

    def start_periodic_cleanup(self, interval_seconds: float = 3600) -> None:
        """Run `cleanup` every `interval_seconds` on a background task."""
        if self._cleanup_task and not self._cleanup_task.done():
            return

        self._shutdown_event = asyncio.Event()
        self._cleanup_task = asyncio.create_task(
            self._background_cleanup(interval_seconds)
        )

    async def stop_periodic_cleanup(self) -> None:
        if not self._cleanup_task:
            return

        if self._shutdown_event:
            self._shutdown_event.set()
        await self._cleanup_task
        self._cleanup_task = None

    async def _background_cleanup(self, interval_seconds: float) -> None:
        """Background task for periodic expiry sweeps."""
        logger.info("Starting background cache cleanup task")
        assert self._shutdown_event is not None

        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(), timeout=interval_seconds
                )
            except asyncio.TimeoutError:
                pass

            if self._shutdown_event.is_set():
                break

            try:
                self.cleanup()
            except Exception as e:
                logger.error(f"Background cache cleanup failed: {e}")

        logger.info("Background cache cleanup task stopped")

    def _lookup(self, key: str) -> Tuple[bool, Any]:
        expired = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return False, None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats["misses"] += 1
                self._stats["expired"] += 1
                expired = True
            else:
                self._stats["hits"] += 1
                value = entry.value

        if expired:
            self._remove_file(key)
            return False, None
        return True, value

    def _file_for(self, key: str) -> Path:
        assert self.cache_dir is not None
        return self.cache_dir / f"{_UNSAFE_FILENAME_CHARS.sub('_', key)}.json"

    def _write_file(self, entry: CacheEntry) -> None:
        path = self._file_for(entry.key)
        temp_path = path.with_suffix(".tmp")
        payload = {
            "key": entry.key,
            "value": entry.value,
            "expiry": entry.expires_at,
            "created_at": entry.created_at,
        }
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            temp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to persist cache entry {entry.key}: {e}")
            temp_path.unlink(missing_ok=True)

    def _remove_file(self, key: str) -> None:
        if self.persist and self.cache_dir is not None:
            self._unlink(self._file_for(key))

    def _unlink(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            error = ResourceCleanupError(f"Failed to delete cache file: {e}", str(path))
            logger.warning(str(error))

    def _load_persisted(self) -> None:
        """Reload non-expired persisted entries, oldest first."""
        assert self.cache_dir is not None
        now = self._clock()
        loaded = []
        removed = 0

        for path in self.cache_dir.glob("*.json"):
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
                entry = CacheEntry(
                    key=data["key"],
                    value=data["value"],
                    expires_at=float(data["expiry"]),
                    created_at=float(data.get("created_at", path.stat().st_mtime)),
                )
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable cache file {path.name}: {e}")
                continue

            if entry.is_expired(now):
                self._unlink(path)
                removed += 1
                continue
            loaded.append(entry)

        loaded.sort(key=lambda e: e.created_at)
        for entry in loaded[-self.max_size :]:
            self._entries[entry.key] = entry
        for entry in loaded[: -self.max_size]:
            self._unlink(self._file_for(entry.key))

        logger.info(
            f"Loaded {len(self._entries)} persisted cache entries "
            f"({removed} expired files removed)"
        )
