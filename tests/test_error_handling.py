"""Tests for error classification, retries and the circuit breaker."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from crm_assistant.infra.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from crm_assistant.infra.error_handler import (
    APIError,
    AuthError,
    ErrorCategory,
    NetworkError,
    RateLimitError,
    classify_error,
    retry_with_backoff,
    wrap_llm_error,
)


class TestWrapLLMError:
    """Test mapping of provider errors."""

    def _error(self, status_code, message="boom", headers=None):
        error = Exception(message)
        error.status_code = status_code
        error.response = MagicMock(headers=headers or {})
        return error

    def test_rate_limit_with_retry_after(self):
        wrapped = wrap_llm_error(self._error(429, headers={"retry-after": "7"}), "openai")
        assert isinstance(wrapped, RateLimitError)
        assert wrapped.retryable is True
        assert wrapped.retry_after == 7.0

    def test_auth_failure_is_not_retryable(self):
        wrapped = wrap_llm_error(self._error(401), "openai")
        assert isinstance(wrapped, AuthError)
        assert wrapped.retryable is False

    def test_server_error_is_retryable(self):
        wrapped = wrap_llm_error(self._error(503), "openai")
        assert isinstance(wrapped, APIError)
        assert wrapped.retryable is True

    def test_timeout_is_network(self):
        wrapped = wrap_llm_error(asyncio.TimeoutError(), "openai")
        assert isinstance(wrapped, NetworkError)

    def test_classify_passthrough(self):
        assert classify_error(RateLimitError("slow down", retry_after=3)) == (ErrorCategory.RATE_LIMIT, True, 3)


class TestRetryWithBackoff:
    """Test retry behaviour."""

    @pytest.mark.asyncio
    async def test_retries_retryable_errors(self):
        """Test that retryable errors are retried until success."""
        func = AsyncMock(side_effect=[NetworkError("flaky"), "ok"])
        with patch("crm_assistant.infra.error_handler.asyncio.sleep", AsyncMock()):
            assert await retry_with_backoff(func, max_retries=2) == "ok"
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_non_retryable(self):
        """Test that non-retryable errors are raised immediately."""
        func = AsyncMock(side_effect=AuthError("bad key"))
        with pytest.raises(AuthError):
            await retry_with_backoff(func, max_retries=3)
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_is_not_retried(self):
        func = AsyncMock(side_effect=CircuitOpenError("openai"))
        with pytest.raises(CircuitOpenError):
            await retry_with_backoff(func, max_retries=3)
        assert func.await_count == 1


class TestCircuitBreaker:
    """Test breaker state transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test-service", failure_threshold=2, recovery_timeout=60)
        failing = AsyncMock(side_effect=RuntimeError("down"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call_async(failing)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call_async(AsyncMock(return_value="ok"))

    @pytest.mark.asyncio
    async def test_half_open_closes_after_two_successes(self):
        breaker = CircuitBreaker("test-service", failure_threshold=1, recovery_timeout=0)
        with pytest.raises(RuntimeError):
            await breaker.call_async(AsyncMock(side_effect=RuntimeError("down")))

        succeed = AsyncMock(return_value="ok")
        assert await breaker.call_async(succeed) == "ok"
        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.call_async(succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reset_closes_breaker(self):
        breaker = CircuitBreaker("test-service", failure_threshold=1, recovery_timeout=60)
        with pytest.raises(RuntimeError):
            await breaker.call_async(AsyncMock(side_effect=RuntimeError("down")))

        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call_async(AsyncMock(return_value="ok")) == "ok"


ADAPTER = "crm_assistant.adapters.vendor_adapter_openai"


class TestProviderTimeouts:
    """Test that stalled provider calls trip the shared breaker."""

    def _stalled_client(self):
        async def stall(**kwargs):
            await asyncio.Event().wait()

        client = MagicMock()
        client.chat.completions.create = AsyncMock(side_effect=stall)
        return client

    @pytest.mark.asyncio
    async def test_timeouts_open_breaker(self):
        """Test that per-attempt timeouts count as breaker failures."""
        from crm_assistant.adapters.vendor_adapter_openai import call_openai_chat

        breaker = CircuitBreaker("openai", failure_threshold=2, recovery_timeout=60)
        client = self._stalled_client()
        with patch(f"{ADAPTER}.openai_circuit_breaker", breaker), \
                patch(f"{ADAPTER}.get_openai_client", return_value=client):
            for _ in range(2):
                with pytest.raises(NetworkError):
                    await call_openai_chat([{"role": "user", "content": "hi"}], timeout=0.01, max_retries=0)

            assert breaker.failure_count == 2
            assert breaker.state == CircuitState.OPEN
            with pytest.raises(CircuitOpenError):
                await call_openai_chat([{"role": "user", "content": "hi"}], timeout=0.01, max_retries=0)

        assert client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_stream_open_timeout_counts_as_failure(self):
        from crm_assistant.adapters.vendor_adapter_openai import stream_openai_chat

        breaker = CircuitBreaker("openai", failure_threshold=5, recovery_timeout=60)
        with patch(f"{ADAPTER}.openai_circuit_breaker", breaker), \
                patch(f"{ADAPTER}.get_openai_client", return_value=self._stalled_client()), \
                patch("crm_assistant.infra.error_handler.asyncio.sleep", AsyncMock()):
            with pytest.raises(NetworkError):
                async for _ in stream_openai_chat([{"role": "user", "content": "hi"}], timeout=0.01):
                    pass

        assert breaker.failure_count == 3
