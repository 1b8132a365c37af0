"""
Error classification for retry decisions.

Maps an exception to an ErrorCategory and decides whether the failed
operation is worth another attempt. Network failures, rate limiting,
server-side errors and timeouts are retryable; client errors, quota
violations and configuration problems are terminal immediately.
"""

import asyncio
import errno
import logging
import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from ..models.error_models import (
    CollectionError,
    ConfigurationError,
    QuotaExceededError,
    TransientIOError,
)

logger = logging.getLogger(__name__)

RETRYABLE_ERROR_CODES = {
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "EAI_AGAIN",
}

RETRYABLE_ERRNOS = {errno.ECONNRESET, errno.ECONNREFUSED, errno.ETIMEDOUT}


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories used for retry decisions."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    QUOTA = "quota"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    """Result of classifying one exception."""

    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    status_code: Optional[int] = None
    reason: str = ""


@dataclass
class ErrorPattern:
    """Pattern for matching and classifying errors."""

    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    error_types: Tuple[type, ...] = ()
    keywords: List[str] = field(default_factory=list)
    codes: Tuple[str, ...] = ()
    status_check: Optional[Callable[[int], bool]] = None

    def matches(self, error: BaseException, status_code: Optional[int]) -> bool:
        """Check if error matches this pattern."""
        if self.status_check is not None:
            return status_code is not None and self.status_check(status_code)

        if self.error_types and isinstance(error, self.error_types):
            return True

        if self.codes and _error_code(error) in self.codes:
            return True

        error_message = str(error).lower()
        return any(keyword in error_message for keyword in self.keywords)


def _error_code(error: BaseException) -> Optional[str]:
    """Symbolic error code of an exception, if it carries one."""
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code.upper()

    if isinstance(error, socket.gaierror):
        if error.errno == getattr(socket, "EAI_AGAIN", None):
            return "EAI_AGAIN"
        return "ENOTFOUND"

    err_no = getattr(error, "errno", None)
    if isinstance(err_no, int) and err_no in RETRYABLE_ERRNOS:
        return errno.errorcode.get(err_no)

    return None


def extract_status_code(error: BaseException) -> Optional[int]:
    """
    Read an HTTP status code from an exception.

    Understands httpx.HTTPStatusError plus foreign errors exposing
    `status_code`, `status` or `response.status_code`.
    """
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code

    for attribute in ("status_code", "status"):
        value = getattr(error, attribute, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value

    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value

    return None


def _create_error_patterns() -> List[ErrorPattern]:
    """Ordered classification table. The first matching pattern wins."""

    return [
        # Package errors with a fixed disposition
        ErrorPattern(
            category=ErrorCategory.QUOTA,
            severity=ErrorSeverity.HIGH,
            retryable=False,
            error_types=(QuotaExceededError,),
        ),
        ErrorPattern(
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            retryable=False,
            error_types=(ConfigurationError, CollectionError),
        ),
        # Connection level failures
        ErrorPattern(
            category=ErrorCategory.NETWORK_ERROR,
            severity=ErrorSeverity.MEDIUM,
            retryable=True,
            error_types=(
                TransientIOError,
                ConnectionResetError,
                ConnectionRefusedError,
                socket.gaierror,
                httpx.ConnectError,
                httpx.ReadError,
                httpx.WriteError,
                httpx.RemoteProtocolError,
            ),
            codes=tuple(sorted(RETRYABLE_ERROR_CODES)),
        ),
        # Rate limiting
        ErrorPattern(
            category=ErrorCategory.RATE_LIMITED,
            severity=ErrorSeverity.MEDIUM,
            retryable=True,
            status_check=lambda status: status == 429,
        ),
        # Server side errors
        ErrorPattern(
            category=ErrorCategory.SERVER_ERROR,
            severity=ErrorSeverity.HIGH,
            retryable=True,
            status_check=lambda status: status >= 500,
        ),
        # Timeouts
        ErrorPattern(
            category=ErrorCategory.TIMEOUT,
            severity=ErrorSeverity.MEDIUM,
            retryable=True,
            error_types=(asyncio.TimeoutError, TimeoutError, httpx.TimeoutException),
            keywords=["timeout"],
        ),
        # Remaining 4xx responses
        ErrorPattern(
            category=ErrorCategory.CLIENT_ERROR,
            severity=ErrorSeverity.HIGH,
            retryable=False,
            status_check=lambda status: 400 <= status < 500,
        ),
    ]


DEFAULT_PATTERNS = _create_error_patterns()


def classify_error(
    error: BaseException, patterns: Optional[List[ErrorPattern]] = None
) -> ErrorClassification:
    """Classify an exception against the pattern table."""
    status_code = extract_status_code(error)

    for pattern in patterns or DEFAULT_PATTERNS:
        if pattern.matches(error, status_code):
            return ErrorClassification(
                category=pattern.category,
                severity=pattern.severity,
                retryable=pattern.retryable,
                status_code=status_code,
                reason=f"{type(error).__name__}: {error}",
            )

    return ErrorClassification(
        category=ErrorCategory.UNKNOWN,
        severity=ErrorSeverity.HIGH,
        retryable=False,
        status_code=status_code,
        reason=f"{type(error).__name__}: {error}",
    )


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate used by `with_retry`."""
    return classify_error(error).retryable


class ErrorClassifier:
    """
    Classifies errors and keeps per-category statistics.

    Wraps the module-level pattern table so callers can add patterns of their
    own (checked before the defaults) and inspect what failed during a run.
    """

    def __init__(self, extra_patterns: Optional[List[ErrorPattern]] = None) -> None:
        self.error_patterns = list(extra_patterns or []) + DEFAULT_PATTERNS
        self.error_statistics: Dict[str, Any] = {
            "total_errors": 0,
            "retryable_errors": 0,
            "by_category": {},
        }

    def classify(self, error: BaseException) -> ErrorClassification:
        """Classify an error and record it in the statistics."""
        classification = classify_error(error, self.error_patterns)

        self.error_statistics["total_errors"] += 1
        if classification.retryable:
            self.error_statistics["retryable_errors"] += 1
        by_category = self.error_statistics["by_category"]
        key = classification.category.value
        by_category[key] = by_category.get(key, 0) + 1

        logger.debug(
            f"Classified {type(error).__name__} as {key} "
            f"(retryable={classification.retryable})"
        )
        return classification

    def is_retryable(self, error: BaseException) -> bool:
        return self.classify(error).retryable

    def get_error_statistics(self) -> Dict[str, Any]:
        return {
            "total_errors": self.error_statistics["total_errors"],
            "retryable_errors": self.error_statistics["retryable_errors"],
            "by_category": dict(self.error_statistics["by_category"]),
        }

    def reset_statistics(self) -> None:
        self.error_statistics = {
            "total_errors": 0,
            "retryable_errors": 0,
            "by_category": {},
        }
