"""Tests for the rolling-window circuit breaker."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from authflow.exceptions import CircuitOpenError, TransportError, ValidationError
from authflow.models import CircuitState
from authflow.utils.http.circuit_breaker import CircuitBreaker


async def failing():
    raise TransportError("Service Unavailable", status=503)


async def succeeding():
    return "ok"


async def run_failures(breaker, count):
    for _ in range(count):
        with pytest.raises((TransportError, CircuitOpenError)):
            await breaker.execute(failing)


class TestCircuitBreakerTransitions:
    """Test state machine transitions."""

    def test_initial_state(self):
        breaker = CircuitBreaker()
        stats = breaker.get_stats()
        assert breaker.state == CircuitState.CLOSED
        assert stats.failures == 0
        assert stats.total_requests == 0
        assert stats.next_retry_time is None

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_minimum_requests(self):
        breaker = CircuitBreaker({"threshold": 3, "minimum_requests": 2})

        await run_failures(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

        await run_failures(breaker, 3)
        assert breaker.state == CircuitState.OPEN
        assert breaker.get_stats().next_retry_time is not None

    @pytest.mark.asyncio
    async def test_minimum_requests_holds_circuit_closed(self):
        breaker = CircuitBreaker({"threshold": 2, "minimum_requests": 5})

        await run_failures(breaker, 4)
        assert breaker.state == CircuitState.CLOSED

        await run_failures(breaker, 1)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_recovers_after_reset_timeout(self):
        breaker = CircuitBreaker(
            {"threshold": 3, "minimum_requests": 2, "reset_timeout": 50}
        )
        await run_failures(breaker, 5)
        assert breaker.state == CircuitState.OPEN

        await asyncio.sleep(0.06)
        assert await breaker.execute(succeeding) == "ok"

        stats = breaker.get_stats()
        assert stats.state == CircuitState.CLOSED
        assert stats.failures == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker(
            {"threshold": 1, "minimum_requests": 1, "reset_timeout": 30}
        )
        await run_failures(breaker, 1)
        assert breaker.state == CircuitState.OPEN

        await asyncio.sleep(0.04)
        with pytest.raises(TransportError):
            await breaker.execute(failing)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.execute(succeeding)

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_invoking(self):
        breaker = CircuitBreaker({"threshold": 1, "minimum_requests": 1})
        await run_failures(breaker, 1)
        operation = AsyncMock(return_value="ok")

        with pytest.raises(CircuitOpenError, match="Circuit breaker is open") as exc_info:
            await breaker.execute(operation)

        operation.assert_not_awaited()
        assert exc_info.value.next_retry_time == breaker.get_stats().next_retry_time

    @pytest.mark.asyncio
    async def test_success_in_closed_state_keeps_window(self):
        breaker = CircuitBreaker({"threshold": 3, "minimum_requests": 0})
        await run_failures(breaker, 2)
        await breaker.execute(succeeding)

        stats = breaker.get_stats()
        assert stats.failures == 2
        assert stats.successes == 1
        assert stats.total_requests == 3


class TestCircuitBreakerWindow:
    """Test pruning by monitoring period."""

    @pytest.mark.asyncio
    async def test_old_failures_fall_out_of_window(self):
        breaker = CircuitBreaker(
            {"threshold": 3, "minimum_requests": 0, "monitoring_period": 1000}
        )
        with patch("authflow.utils.http.circuit_breaker._now_ms", return_value=0):
            await run_failures(breaker, 2)
        with patch("authflow.utils.http.circuit_breaker._now_ms", return_value=5000):
            await run_failures(breaker, 1)
            assert breaker.state == CircuitState.CLOSED
            assert breaker.get_stats().failures == 1

    @pytest.mark.asyncio
    async def test_no_monitoring_period_keeps_everything(self):
        breaker = CircuitBreaker(
            {"threshold": 3, "minimum_requests": 0, "monitoring_period": None}
        )
        with patch("authflow.utils.http.circuit_breaker._now_ms", return_value=0):
            await run_failures(breaker, 2)
        with patch("authflow.utils.http.circuit_breaker._now_ms", return_value=10**9):
            await run_failures(breaker, 1)
            assert breaker.state == CircuitState.OPEN


class TestCircuitBreakerControls:
    """Test manual controls and configuration."""

    @pytest.mark.asyncio
    async def test_force_open_rejects(self):
        breaker = CircuitBreaker()
        breaker.force_open()
        operation = AsyncMock()

        with pytest.raises(CircuitOpenError):
            await breaker.execute(operation)
        operation.assert_not_awaited()
        assert breaker.get_stats().last_failure_time is not None

    @pytest.mark.asyncio
    async def test_force_close_clears_failures(self):
        breaker = CircuitBreaker({"threshold": 1, "minimum_requests": 1})
        await run_failures(breaker, 1)
        breaker.force_close()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().failures == 0
        assert await breaker.execute(succeeding) == "ok"

    @pytest.mark.asyncio
    async def test_reset_zeroes_counters(self):
        breaker = CircuitBreaker({"threshold": 1, "minimum_requests": 1})
        await run_failures(breaker, 1)
        breaker.reset()

        stats = breaker.get_stats()
        assert stats.state == CircuitState.CLOSED
        assert (stats.failures, stats.successes, stats.total_requests) == (0, 0, 0)
        assert stats.last_failure_time is None

    @pytest.mark.asyncio
    async def test_is_failure_predicate_filters(self):
        breaker = CircuitBreaker(
            {"threshold": 1, "minimum_requests": 1},
            is_failure=lambda exc: getattr(exc, "status", 0) >= 500,
        )

        async def unauthorized():
            raise TransportError("Unauthorized", status=401)

        for _ in range(3):
            with pytest.raises(TransportError):
                await breaker.execute(unauthorized)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().total_requests == 0

    @pytest.mark.asyncio
    async def test_decorator(self):
        breaker = CircuitBreaker({"threshold": 1, "minimum_requests": 1})

        @breaker
        async def call(fail):
            if fail:
                raise TransportError("Bad Gateway", status=502)
            return "ok"

        assert await call(False) == "ok"
        with pytest.raises(TransportError):
            await call(True)
        with pytest.raises(CircuitOpenError):
            await call(False)

    def test_invalid_config(self):
        with pytest.raises(ValidationError):
            CircuitBreaker({"threshold": 0})
