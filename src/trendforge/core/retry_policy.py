"""
Retry policy for fallible external calls.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .error_classifier import is_retryable as default_is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    context: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Execute an async operation, retrying transient failures.

    The operation runs at most `max_retries + 1` times. After failed attempt
    n the policy sleeps `base_delay * 2 ** (n - 1)` seconds, but only while
    `is_retryable(error)` holds; any other error is re-raised at once.

    Args:
        operation: Zero-argument coroutine function to execute
        max_retries: Retries allowed after the first attempt
        base_delay: Delay before the first retry, doubled each retry
        is_retryable: Predicate deciding whether an error is transient
        context: Label used in log lines and in the note of a terminal error
        sleep: Awaitable sleep function (replaceable in tests)

    Returns:
        The operation's result, unchanged

    Raises:
        The last error raised by the operation, annotated with `context`
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    predicate = is_retryable or default_is_retryable
    total_attempts = max_retries + 1
    attempts_made = 0

    def log_attempt(retry_state: RetryCallState) -> None:
        nonlocal attempts_made
        attempts_made = retry_state.attempt_number
        logger.debug(
            f"{context}: attempt {retry_state.attempt_number}/{total_attempts}"
        )

    def log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"{context}: attempt {retry_state.attempt_number}/{total_attempts} "
            f"failed ({type(error).__name__}: {error}), retrying in {delay:.2f}s"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(total_attempts),
        wait=wait_exponential(multiplier=base_delay, min=0),
        retry=retry_if_exception(predicate),
        before=log_attempt,
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                result = await operation()
    except Exception as e:
        logger.error(
            f"{context}: failed after {attempts_made} attempt(s): "
            f"{type(e).__name__}: {e}"
        )
        e.add_note(f"{context} failed after {attempts_made} attempt(s)")
        raise

    if attempts_made > 1:
        logger.info(f"{context}: succeeded on attempt {attempts_made}")
    return result
