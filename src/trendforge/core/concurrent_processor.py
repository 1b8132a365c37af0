"""
Bounded-concurrency task processor built on a fixed worker pool.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Sequence,
    TypeVar,
)

from ..models.error_models import ConcurrentProcessingError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int], Any]


class ProcessorState(Enum):
    """Concurrent processor state."""

    IDLE = "idle"
    PROCESSING = "processing"
    STOPPING = "stopping"


@dataclass
class ProcessingStats:
    """Statistics for one `process` call."""

    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    cancelled_tasks: int = 0
    total_processing_time: float = 0.0
    max_concurrent_reached: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def finished_tasks(self) -> int:
        return self.completed_tasks + self.failed_tasks

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.finished_tasks == 0:
            return 0.0
        return (self.completed_tasks / self.finished_tasks) * 100.0

    @property
    def average_processing_time(self) -> float:
        if self.finished_tasks == 0:
            return 0.0
        return self.total_processing_time / self.finished_tasks

    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate total processing duration."""
        if not self.start_time:
            return None

        end_time = self.end_time or datetime.now()
        return (end_time - self.start_time).total_seconds()


@dataclass
class TaskError:
    """Failure of the handler for one input item."""

    index: int
    item: Any
    error: BaseException


@dataclass
class ProcessingOutcome(Generic[R]):
    """
    Results of a `process` call.

    `results` is ordered like the input. Positions of items that failed or
    were never started hold None.
    """

    results: List[Optional[R]]
    errors: List[TaskError] = field(default_factory=list)
    stats: ProcessingStats = field(default_factory=ProcessingStats)

    @property
    def failed_indices(self) -> List[int]:
        return [task_error.index for task_error in self.errors]

    def error_for(self, index: int) -> Optional[BaseException]:
        for task_error in self.errors:
            if task_error.index == index:
                return task_error.error
        return None


class ConcurrentProcessor(Generic[T, R]):
    """
    Runs an async handler over a list of items with at most N in flight.

    A pool of N workers pulls the next unclaimed index from a shared counter
    until the list is exhausted. A handler failure is recorded against its
    index and does not disturb other items, unless `stop_on_error` is set:
    then no further items are started, running items finish, and the first
    failure is raised once the pool has drained.
    """

    def __init__(self, max_concurrency: int = 3, stop_on_error: bool = False):
        """
        Initialize concurrent processor.

        Args:
            max_concurrency: Default pool size (1-50)
            stop_on_error: Default failure policy
        """
        self._validate_concurrency(max_concurrency)
        self.max_concurrency = max_concurrency
        self.stop_on_error = stop_on_error

        self.state = ProcessorState.IDLE
        self.stats = ProcessingStats()
        self._active_count = 0
        self._stop_requested = False

        logger.debug(f"Initialized concurrent processor: max_concurrency={max_concurrency}")

    @staticmethod
    def _validate_concurrency(max_concurrency: int) -> None:
        if not (1 <= max_concurrency <= 50):
            raise ValueError(
                f"max_concurrency must be between 1 and 50, got {max_concurrency}"
            )

    async def process(
        self,
        items: Sequence[T],
        handler: Callable[[T, int], Awaitable[R]],
        max_concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        stop_on_error: Optional[bool] = None,
    ) -> ProcessingOutcome[R]:
        """
        Process items through `handler(item, index)` with bounded concurrency.

        Args:
            items: Items to process
            handler: Coroutine function invoked exactly once per started item
            max_concurrency: Pool size override for this call
            on_progress: Called with (completed, total) after every item
            stop_on_error: Failure policy override for this call

        Returns:
            ProcessingOutcome with input-ordered results and indexed errors

        Raises:
            ConcurrentProcessingError: If the processor is already running
            Exception: The first handler failure, when stop_on_error is set
        """
        if self.state != ProcessorState.IDLE:
            raise ConcurrentProcessingError(
                f"Processor not idle (current state: {self.state.value})"
            )

        concurrency = max_concurrency or self.max_concurrency
        self._validate_concurrency(concurrency)
        abort_on_error = self.stop_on_error if stop_on_error is None else stop_on_error

        total = len(items)
        self.stats = ProcessingStats(total_tasks=total, start_time=datetime.now())
        outcome: ProcessingOutcome[R] = ProcessingOutcome(
            results=[None] * total, stats=self.stats
        )

        if total == 0:
            logger.info("No tasks to process")
            self.stats.end_time = datetime.now()
            return outcome

        logger.info(
            f"Starting processing of {total} items with concurrency {concurrency}"
        )

        self.state = ProcessorState.PROCESSING
        self._stop_requested = False
        self._active_count = 0
        next_index = 0
        finished = 0
        first_error: Optional[BaseException] = None

        async def worker(worker_id: int) -> None:
            nonlocal next_index, finished, first_error

            while not self._stop_requested and next_index < total:
                index = next_index
                next_index += 1

                self._active_count += 1
                self.stats.max_concurrent_reached = max(
                    self.stats.max_concurrent_reached, self._active_count
                )
                start_time = time.monotonic()

                try:
                    outcome.results[index] = await handler(items[index], index)
                    self.stats.completed_tasks += 1
                    logger.debug(f"Worker {worker_id} completed item {index}")
                except Exception as e:
                    self.stats.failed_tasks += 1
                    outcome.errors.append(TaskError(index=index, item=items[index], error=e))
                    logger.error(f"Worker {worker_id} failed on item {index}: {e}")
                    if abort_on_error and first_error is None:
                        first_error = e
                        self.request_stop()
                finally:
                    self._active_count -= 1
                    self.stats.total_processing_time += time.monotonic() - start_time

                finished += 1
                await self._notify_progress(on_progress, finished, total)

        try:
            await asyncio.gather(
                *(worker(worker_id) for worker_id in range(min(concurrency, total)))
            )
        finally:
            self.stats.cancelled_tasks = total - finished
            self.stats.end_time = datetime.now()
            self.state = ProcessorState.IDLE

        outcome.errors.sort(key=lambda task_error: task_error.index)
        self._log_completion_summary()

        if first_error is not None:
            raise first_error
        return outcome

    def request_stop(self) -> None:
        """Stop starting new items. Items already running still finish."""
        if self.state == ProcessorState.PROCESSING:
            logger.info("Stop requested, no further items will be started")
            self.state = ProcessorState.STOPPING
        self._stop_requested = True

    async def _notify_progress(
        self, on_progress: Optional[ProgressCallback], finished: int, total: int
    ) -> None:
        if not on_progress:
            return
        try:
            result = on_progress(finished, total)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def _log_completion_summary(self) -> None:
        """Log completion summary."""
        duration = self.stats.duration_seconds or 0

        logger.info(
            f"Processing completed: "
            f"{self.stats.completed_tasks}/{self.stats.total_tasks} successful "
            f"({self.stats.success_rate:.1f}% success rate) in {duration:.2f}s"
        )

        if self.stats.failed_tasks > 0:
            logger.warning(f"Failed tasks: {self.stats.failed_tasks}")

        if self.stats.cancelled_tasks > 0:
            logger.warning(f"Tasks never started: {self.stats.cancelled_tasks}")

        logger.debug(
            f"Performance metrics: "
            f"avg_time={self.stats.average_processing_time:.3f}s, "
            f"max_concurrent={self.stats.max_concurrent_reached}"
        )

    def get_comprehensive_stats(self) -> Dict[str, Any]:
        """Get processing statistics of the last run."""
        return {
            "processing": {
                "total_tasks": self.stats.total_tasks,
                "completed_tasks": self.stats.completed_tasks,
                "failed_tasks": self.stats.failed_tasks,
                "cancelled_tasks": self.stats.cancelled_tasks,
                "success_rate": self.stats.success_rate,
                "average_processing_time": self.stats.average_processing_time,
                "max_concurrent_reached": self.stats.max_concurrent_reached,
                "duration_seconds": self.stats.duration_seconds,
            },
            "configuration": {
                "max_concurrency": self.max_concurrency,
                "stop_on_error": self.stop_on_error,
                "current_state": self.state.value,
            },
        }

    @property
    def is_active(self) -> bool:
        return self.state != ProcessorState.IDLE
