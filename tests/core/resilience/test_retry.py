"""
Tests for async retry logic with exponential backoff and jitter.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.errors import (
    AuthError,
    ConfigurationError,
    PipelineError,
    RetrievalError,
    ThrottlingError,
    TransientError,
)
from core.resilience import DEFAULT_RETRY, RetryConfig, with_retry_async
from core.types import ErrorCategory


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("core.resilience.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestRetryConfig:

    def test_default_values(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert config.always_retry == set()
        assert DEFAULT_RETRY.max_attempts == 3

    def test_type_conversion_from_strings(self):
        config = RetryConfig(max_attempts="5", base_delay="2.5", max_delay="60")
        assert config.max_attempts == 5
        assert config.base_delay == 2.5
        assert config.max_delay == 60.0

    def test_delay_uses_equal_jitter(self):
        config = RetryConfig(base_delay=2.0, exponential_base=2.0, max_delay=100.0)
        for _ in range(20):
            delay = config.get_delay(2)
            assert 4.0 <= delay <= 8.0

    def test_delay_capped(self):
        config = RetryConfig(base_delay=10.0, max_delay=5.0)
        assert config.get_delay(5) == 5.0

    def test_delay_respects_retry_after(self):
        config = RetryConfig(max_delay=30.0)
        assert config.get_delay(0, ThrottlingError("slow down", retry_after=7)) == 7

    def test_should_retry_stops_at_last_attempt(self):
        config = RetryConfig(max_attempts=2)
        assert config.should_retry(TransientError("x"), 0) is True
        assert config.should_retry(TransientError("x"), 1) is False

    def test_permanent_not_retried(self):
        config = RetryConfig(max_attempts=5)
        err = RetrievalError("HTTP 404", category=ErrorCategory.PERMANENT)
        assert config.should_retry(err, 0) is False

    def test_always_retry_overrides(self):
        config = RetryConfig(max_attempts=5, always_retry={ValueError})
        err = PipelineError("wrapped", cause=ValueError("x"))
        err.category = ErrorCategory.PERMANENT
        assert config.should_retry(err, 0) is True

    def test_never_retry_overrides(self):
        config = RetryConfig(max_attempts=5, never_retry={TransientError})
        assert config.should_retry(TransientError("x"), 0) is False


class TestWithRetryAsync:

    async def test_returns_first_success(self):
        func = AsyncMock(return_value={"a": 1})
        wrapped = with_retry_async(RetryConfig(max_attempts=3))(func)

        assert await wrapped("users") == {"a": 1}
        func.assert_awaited_once_with("users")

    async def test_retries_transient_then_succeeds(self, no_sleep):
        func = AsyncMock(side_effect=[TransientError("503"), TransientError("503"), "ok"])
        func.__name__ = "fetch"
        wrapped = with_retry_async(RetryConfig(max_attempts=3))(func)

        assert await wrapped() == "ok"
        assert func.await_count == 3
        assert no_sleep.await_count == 2

    async def test_raises_after_max_attempts(self):
        err = RetrievalError("HTTP 503", status_code=503)
        func = AsyncMock(side_effect=err)
        func.__name__ = "fetch"
        wrapped = with_retry_async(RetryConfig(max_attempts=4))(func)

        with pytest.raises(RetrievalError) as exc_info:
            await wrapped()
        assert exc_info.value is err
        assert func.await_count == 4

    async def test_permanent_fails_fast(self):
        func = AsyncMock(side_effect=ConfigurationError("bad"))
        func.__name__ = "fetch"
        wrapped = with_retry_async(RetryConfig(max_attempts=5))(func)

        with pytest.raises(ConfigurationError):
            await wrapped()
        assert func.await_count == 1

    async def test_auth_error_triggers_callback(self):
        on_auth = MagicMock()
        func = AsyncMock(side_effect=[AuthError("expired"), "ok"])
        func.__name__ = "fetch"
        wrapped = with_retry_async(RetryConfig(max_attempts=2), on_auth_error=on_auth)(func)

        assert await wrapped() == "ok"
        on_auth.assert_called_once()

    async def test_async_auth_callback_awaited(self):
        on_auth = AsyncMock()
        func = AsyncMock(side_effect=[AuthError("expired"), "ok"])
        func.__name__ = "fetch"
        wrapped = with_retry_async(RetryConfig(max_attempts=2), on_auth_error=on_auth)(func)

        await wrapped()
        on_auth.assert_awaited_once()

    async def test_unknown_exception_wrapped(self):
        func = AsyncMock(side_effect=Exception("404 not found"))
        func.__name__ = "fetch"
        wrapped = with_retry_async(RetryConfig(max_attempts=3))(func)

        with pytest.raises(PipelineError) as exc_info:
            await wrapped()
        assert exc_info.value.category == ErrorCategory.PERMANENT
        assert func.await_count == 1

    async def test_on_retry_errors_do_not_break_retry(self):
        on_retry = MagicMock(side_effect=RuntimeError("callback broke"))
        func = AsyncMock(side_effect=[TransientError("x"), "ok"])
        func.__name__ = "fetch"
        wrapped = with_retry_async(RetryConfig(max_attempts=2), on_retry=on_retry)(func)

        assert await wrapped() == "ok"
        on_retry.assert_called_once()
