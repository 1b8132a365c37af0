"""
Unit tests for error classification.
"""

import asyncio
import socket

import httpx
import pytest

from trendforge.core.error_classifier import (
    ErrorCategory,
    ErrorClassifier,
    ErrorPattern,
    ErrorSeverity,
    classify_error,
    extract_status_code,
    is_retryable,
)
from trendforge.models.error_models import (
    ConfigurationError,
    OversizeError,
    QuotaExceededError,
    TransientIOError,
)


class StatusError(Exception):
    """Foreign error exposing a bare `status` attribute."""

    def __init__(self, status: int):
        super().__init__(f"request failed with status {status}")
        self.status = status


class CodedError(Exception):
    def __init__(self, code: str):
        super().__init__(f"socket error {code}")
        self.code = code


def http_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.example.com/items")
    return httpx.HTTPStatusError(
        f"status {status}", request=request, response=httpx.Response(status, request=request)
    )


class TestClassifyError:
    """Test the default classification table."""

    @pytest.mark.parametrize(
        "error, category",
        [
            (TransientIOError("reset"), ErrorCategory.NETWORK_ERROR),
            (ConnectionResetError("reset by peer"), ErrorCategory.NETWORK_ERROR),
            (socket.gaierror("name resolution"), ErrorCategory.NETWORK_ERROR),
            (CodedError("ECONNRESET"), ErrorCategory.NETWORK_ERROR),
            (CodedError("enotfound"), ErrorCategory.NETWORK_ERROR),
            (asyncio.TimeoutError(), ErrorCategory.TIMEOUT),
            (RuntimeError("upstream Timeout while reading"), ErrorCategory.TIMEOUT),
            (http_error(429), ErrorCategory.RATE_LIMITED),
            (http_error(502), ErrorCategory.SERVER_ERROR),
            (StatusError(500), ErrorCategory.SERVER_ERROR),
        ],
    )
    def test_retryable_errors(self, error, category):
        classification = classify_error(error)

        assert classification.category == category
        assert classification.retryable is True
        assert is_retryable(error) is True

    @pytest.mark.parametrize(
        "error, category",
        [
            (http_error(400), ErrorCategory.CLIENT_ERROR),
            (StatusError(404), ErrorCategory.CLIENT_ERROR),
            (OversizeError("too big", limit=10, actual=20), ErrorCategory.QUOTA),
            (QuotaExceededError("too many files"), ErrorCategory.QUOTA),
            (ConfigurationError("bad config"), ErrorCategory.CONFIGURATION),
            (ValueError("malformed payload"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_terminal_errors(self, error, category):
        classification = classify_error(error)

        assert classification.category == category
        assert classification.retryable is False

    def test_status_code_recorded(self):
        classification = classify_error(http_error(503))

        assert classification.status_code == 503
        assert "HTTPStatusError" in classification.reason

    def test_extract_status_code_variants(self):
        class WithResponse(Exception):
            def __init__(self):
                super().__init__("wrapped")
                self.response = type("Response", (), {"status_code": 418})()

        assert extract_status_code(http_error(429)) == 429
        assert extract_status_code(StatusError(502)) == 502
        assert extract_status_code(WithResponse()) == 418
        assert extract_status_code(ValueError("plain")) is None


class TestErrorClassifier:
    """Test the stateful classifier wrapper."""

    def test_statistics(self):
        classifier = ErrorClassifier()

        classifier.classify(TransientIOError("reset"))
        classifier.classify(http_error(404))
        classifier.classify(http_error(503))

        stats = classifier.get_error_statistics()
        assert stats["total_errors"] == 3
        assert stats["retryable_errors"] == 2
        assert stats["by_category"] == {
            "network_error": 1,
            "client_error": 1,
            "server_error": 1,
        }

        classifier.reset_statistics()
        assert classifier.get_error_statistics()["total_errors"] == 0

    def test_extra_patterns_take_precedence(self):
        pattern = ErrorPattern(
            category=ErrorCategory.RATE_LIMITED,
            severity=ErrorSeverity.LOW,
            retryable=True,
            keywords=["slow down"],
        )
        classifier = ErrorClassifier(extra_patterns=[pattern])

        assert classifier.is_retryable(RuntimeError("please slow down")) is True
        assert classify_error(RuntimeError("please slow down")).retryable is False
