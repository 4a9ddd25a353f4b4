"""
Unit tests for the shared retry, circuit breaker, config and error helpers.
"""

import pytest
from unittest.mock import AsyncMock

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.config import get_config
from shared.errors import ExternalServiceError, NotFoundError, SyncFailedError
from shared.retry import RetryConfig, RetryError, _calculate_delay, retry_async


class TestRetry:
    """Test cases for retry_async."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        func = AsyncMock(side_effect=[ConnectionError("a"), ConnectionError("b"), "ok"])
        sleep = AsyncMock()

        result = await retry_async(
            func, "arg",
            exceptions=(ConnectionError,),
            config=RetryConfig(max_attempts=3, jitter=False),
            sleep=sleep,
        )

        assert result == "ok"
        assert func.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error(self):
        error = ConnectionError("down")
        func = AsyncMock(side_effect=error)

        with pytest.raises(RetryError) as exc_info:
            await retry_async(func, exceptions=(ConnectionError,), config=RetryConfig(max_attempts=2), sleep=AsyncMock())

        assert exc_info.value.last_exception is error
        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_unlisted_exceptions_are_not_retried(self):
        func = AsyncMock(side_effect=ValueError("bad"))

        with pytest.raises(ValueError):
            await retry_async(func, exceptions=(ConnectionError,), sleep=AsyncMock())

        assert func.await_count == 1

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False)
        assert _calculate_delay(1, config) == 1.0
        assert _calculate_delay(5, config) == 3.0


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60.0, name="test")
        failing = AsyncMock(side_effect=RuntimeError("boom"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(failing)
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_ignored_exceptions_do_not_count(self):
        breaker = CircuitBreaker(failure_threshold=1, name="test", ignored_exceptions=(NotFoundError,))

        with pytest.raises(NotFoundError):
            await breaker.call(AsyncMock(side_effect=NotFoundError()))

        assert not breaker.is_open()

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0.0, name="test")
        with pytest.raises(RuntimeError):
            await breaker.call(AsyncMock(side_effect=RuntimeError("boom")))

        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.get_state()["state"] == "closed"

    @pytest.mark.asyncio
    async def test_failed_trial_reopens(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=10.0, name="test", monotonic=lambda: now[0])
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        now[0] = 10.0
        with pytest.raises(RuntimeError):
            await breaker.call(failing)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException) as exc_info:
            await breaker.call(failing)
        assert exc_info.value.retry_in == 10.0
        assert failing.await_count == 4


class TestConfigAndErrors:
    """Test cases for configuration and error payloads."""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SYNC_SESSIONS_TTL_SECONDS", "30")
        monkeypatch.setenv("SYNC_PERSIST_DEBOUNCE_SECONDS", "1.5")

        config = get_config()

        assert config.cache_ttls()["sessions"] == 30.0
        assert config.persist_debounce_seconds == 1.5
        assert config.message_page_size == 20

    def test_overrides_take_precedence(self):
        config = get_config(message_page_size=50)
        assert config.message_page_size == 50

    def test_error_responses(self):
        external = ExternalServiceError(service="backend", message="timeout").to_response()
        assert external.code == "EXTERNAL_SERVICE_ERROR"
        assert external.message == "backend: timeout"
        assert external.retryable is True

        failed = SyncFailedError("session_ensure", details={"cause": "x"}).to_response()
        assert failed.details == {"step": "session_ensure", "cause": "x"}

        assert NotFoundError().to_response().retryable is False
