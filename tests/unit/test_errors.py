"""Unit tests for error classification and retry policy."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from kitchenpal.services.errors import (
    AUTO_RETRY_KINDS,
    ERROR_MESSAGES,
    RETRYABLE_KINDS,
    ErrorKind,
    QueueFullError,
    ServiceError,
    backoff_delay,
    classify_error,
    error_for_status,
    safe_execute_sync,
    to_service_error,
    with_retry,
)


class TestClassifyError:
    """Test keyword and type based classification."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            (Exception("fetch failed: ECONNREFUSED"), ErrorKind.NETWORK_ERROR),
            (ConnectionRefusedError(), ErrorKind.NETWORK_ERROR),
            (Exception("Request timed out after 30s"), ErrorKind.TIMEOUT_ERROR),
            (asyncio.TimeoutError(), ErrorKind.TIMEOUT_ERROR),
            (Exception("429 Too Many Requests"), ErrorKind.RATE_LIMITED),
            (Exception("RESOURCE_EXHAUSTED: quota exceeded"), ErrorKind.RATE_LIMITED),
            (Exception("503 Service Unavailable"), ErrorKind.SERVER_ERROR),
            (Exception("Response blocked by safety filters"), ErrorKind.GENERATION_FAILED),
            (ValueError("something odd"), ErrorKind.API_ERROR),
        ],
    )
    def test_classification(self, error, kind):
        assert classify_error(error) == kind

    def test_timeout_wins_over_network(self):
        """Keyword groups are checked in order: timeout before network."""
        assert classify_error(Exception("network timeout")) == ErrorKind.TIMEOUT_ERROR

    def test_classification_is_pure(self):
        error = Exception("ECONNREFUSED 127.0.0.1:443")

        assert classify_error(error) == classify_error(error)

    def test_econnrefused_surfaces_connection_message(self):
        """A refused connection is retryable and carries the connection user message."""
        error = to_service_error(Exception("connect ECONNREFUSED 127.0.0.1:443"))

        assert error.kind == ErrorKind.NETWORK_ERROR
        assert error.retryable is True
        assert error.user_message == "Connection issue. Please check your internet and try again."


class TestServiceError:
    def test_every_kind_has_a_message(self):
        assert set(ERROR_MESSAGES) == set(ErrorKind)

    def test_retryable_flags(self):
        assert ServiceError(ErrorKind.SERVER_ERROR).retryable
        assert not ServiceError(ErrorKind.API_KEY_MISSING).retryable
        assert ErrorKind.TIMEOUT_ERROR in RETRYABLE_KINDS
        assert ErrorKind.TIMEOUT_ERROR not in AUTO_RETRY_KINDS

    def test_to_service_error_is_idempotent(self):
        first = to_service_error(Exception("bad gateway"))

        assert to_service_error(first) is first
        assert classify_error(first) == ErrorKind.SERVER_ERROR

    def test_str_includes_kind_and_detail(self):
        assert str(ServiceError(ErrorKind.API_ERROR, "boom")) == "API_ERROR: boom"

    def test_queue_full_is_rate_limited(self):
        error = QueueFullError(100)

        assert error.kind == ErrorKind.RATE_LIMITED
        assert "100" in error.detail


class TestErrorForStatus:
    @pytest.mark.parametrize(
        "status,kind",
        [
            (429, ErrorKind.RATE_LIMITED),
            (408, ErrorKind.TIMEOUT_ERROR),
            (500, ErrorKind.SERVER_ERROR),
            (503, ErrorKind.SERVER_ERROR),
            (400, ErrorKind.API_ERROR),
            (401, ErrorKind.API_ERROR),
        ],
    )
    def test_status_mapping(self, status, kind):
        assert error_for_status(status, "body", provider="DeepSeek").kind == kind

    def test_detail_names_provider_and_truncates_body(self):
        error = error_for_status(400, "x" * 1000, provider="DeepSeek")

        assert error.detail.startswith("DeepSeek API error: 400 ")
        assert len(error.detail) < 350


class TestBackoff:
    def test_exponential_and_capped(self):
        assert backoff_delay(0, 1.0, 10.0) == 1.0
        assert backoff_delay(2, 1.0, 10.0) == 4.0
        assert backoff_delay(5, 1.0, 10.0) == 10.0

    def test_linear(self):
        assert backoff_delay(3, 2.0, 10.0, exponential=False) == 2.0


class TestWithRetry:
    """Test retry behaviour for transient and permanent failures."""

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        operation = AsyncMock(return_value="ok")

        assert await with_retry(operation, base_delay=0) == "ok"
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        operation = AsyncMock(side_effect=[Exception("ECONNRESET"), Exception("503"), "ok"])

        assert await with_retry(operation, max_retries=3, base_delay=0) == "ok"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        operation = AsyncMock(side_effect=Exception("429 rate limit"))

        with pytest.raises(ServiceError) as exc_info:
            await with_retry(operation, max_retries=2, base_delay=0)

        assert exc_info.value.kind == ErrorKind.RATE_LIMITED
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        operation = AsyncMock(side_effect=ServiceError(ErrorKind.TIMEOUT_ERROR))

        with pytest.raises(ServiceError) as exc_info:
            await with_retry(operation, max_retries=3, base_delay=0)

        assert exc_info.value.kind == ErrorKind.TIMEOUT_ERROR
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_permanent_error_raised_immediately(self):
        operation = AsyncMock(side_effect=ServiceError(ErrorKind.API_KEY_MISSING))

        with pytest.raises(ServiceError):
            await with_retry(operation, max_retries=3, base_delay=0)

        operation.assert_awaited_once()


class TestSafeExecuteSync:
    def test_returns_result(self):
        assert safe_execute_sync(lambda: 42, "answer") == 42

    def test_returns_default_on_failure(self):
        func = MagicMock(side_effect=RuntimeError("broken"))

        assert safe_execute_sync(func, "broken op", default_return="fallback") == "fallback"

    def test_reraise(self):
        with pytest.raises(RuntimeError):
            safe_execute_sync(MagicMock(side_effect=RuntimeError("broken")), "broken op", reraise=True)
