"""
Unit tests for retry utilities.

Tests retry policies, backoff strategies, circuit breakers, and retry manager functionality.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from quote_studio.retry_utils import (
    RetryPolicy, BackoffStrategy, CircuitBreakerConfig, CircuitBreaker,
    CircuitState, RetryManager, retry_manager, with_retry, _utcnow
)
from quote_studio.error_handler import (
    ConflictError, CollaboratorError, NotFoundError, ValidationError
)


@pytest.mark.unit
class TestRetryPolicy:
    """Test RetryPolicy configuration."""

    def test_default_policy(self):
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.backoff_strategy == BackoffStrategy.EXPONENTIAL_JITTER
        assert policy.retryable_exceptions == []

    def test_allocation_policy(self):
        """Lost races retry; missing or invalid quotes do not."""
        policy = RetryManager().get_policy("allocation")

        assert ConflictError in policy.retryable_exceptions
        assert NotFoundError in policy.non_retryable_exceptions
        assert ValidationError in policy.non_retryable_exceptions
        assert policy.max_delay <= 1.0

    def test_unknown_operation_falls_back_to_api(self):
        manager = RetryManager()
        assert manager.get_policy("nonexistent") is manager.get_policy("api")


@pytest.mark.unit
class TestCircuitBreaker:
    """Test CircuitBreaker functionality."""

    def setup_method(self):
        self.config = CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0, success_threshold=2)
        self.circuit = CircuitBreaker("embeddings", self.config)

    def test_initial_state(self):
        assert self.circuit.state == CircuitState.CLOSED
        assert self.circuit.can_execute() is True

    def test_failure_threshold(self):
        for i in range(self.config.failure_threshold):
            self.circuit.record_failure()
            if i < self.config.failure_threshold - 1:
                assert self.circuit.state == CircuitState.CLOSED

        assert self.circuit.state == CircuitState.OPEN
        assert self.circuit.can_execute() is False

    def test_half_open_transition(self):
        for _ in range(self.config.failure_threshold):
            self.circuit.record_failure()

        self.circuit.next_attempt_time = _utcnow() - timedelta(seconds=1)

        assert self.circuit.can_execute() is True
        assert self.circuit.state == CircuitState.HALF_OPEN

    def test_recovery_from_half_open(self):
        self.circuit.state = CircuitState.HALF_OPEN

        for _ in range(self.config.success_threshold):
            self.circuit.record_success()

        assert self.circuit.state == CircuitState.CLOSED
        assert self.circuit.failure_count == 0

    def test_half_open_failure(self):
        self.circuit.state = CircuitState.HALF_OPEN
        self.circuit.record_failure()
        assert self.circuit.state == CircuitState.OPEN

    def test_status_reporting(self):
        self.circuit.record_failure()
        status = self.circuit.get_status()

        assert status["name"] == "embeddings"
        assert status["state"] == "closed"
        assert status["failure_count"] == 1
        assert status["last_failure_time"] is not None


@pytest.mark.unit
class TestRetryManager:
    """Test RetryManager delay and retry decisions."""

    def setup_method(self):
        self.manager = RetryManager()

    @pytest.mark.parametrize("strategy,attempt,expected", [
        (BackoffStrategy.FIXED, 3, 2.0),
        (BackoffStrategy.LINEAR, 3, 6.0),
        (BackoffStrategy.EXPONENTIAL, 3, 8.0),
    ])
    def test_calculate_delay(self, strategy, attempt, expected):
        policy = RetryPolicy(base_delay=2.0, backoff_strategy=strategy)
        assert self.manager.calculate_delay(attempt, policy) == expected

    def test_calculate_delay_jitter_bounds(self):
        policy = RetryPolicy(base_delay=1.0, jitter_range=0.1)
        for _ in range(20):
            assert 0.9 <= self.manager.calculate_delay(1, policy) <= 1.1

    def test_calculate_delay_max_limit(self):
        policy = RetryPolicy(base_delay=10.0, max_delay=15.0, backoff_strategy=BackoffStrategy.EXPONENTIAL)
        assert self.manager.calculate_delay(5, policy) == 15.0

    def test_should_retry(self):
        policy = self.manager.get_policy("allocation")

        assert self.manager.should_retry(ConflictError("quote store"), 1, policy)
        assert not self.manager.should_retry(NotFoundError("quote", "x"), 1, policy)
        assert not self.manager.should_retry(ConflictError("quote store"), policy.max_attempts, policy)

    def test_status_reporting(self):
        self.manager.get_circuit_breaker("llm")
        status = self.manager.get_status()

        assert "llm" in status["circuit_breakers"]
        assert {"allocation", "llm", "embedding", "api"} <= set(status["retry_policies"])


@pytest.mark.unit
class TestAsyncRetryExecution:
    """Test execute_with_retry."""

    def setup_method(self):
        self.manager = RetryManager()
        self.manager.set_policy("test", RetryPolicy(
            max_attempts=3,
            base_delay=0.0,
            backoff_strategy=BackoffStrategy.FIXED,
            retryable_exceptions=[ConflictError]
        ))

    @pytest.mark.asyncio
    async def test_successful_retry(self):
        func = AsyncMock(side_effect=[ConflictError("counter"), "ok"])

        assert await self.manager.execute_with_retry(func, "test", None, None, 1, key="v") == "ok"
        assert func.call_count == 2
        func.assert_called_with(1, key="v")

    @pytest.mark.asyncio
    async def test_retry_exhaustion(self):
        func = AsyncMock(side_effect=ConflictError("counter"))

        with pytest.raises(ConflictError):
            await self.manager.execute_with_retry(func, "test")
        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error(self):
        func = AsyncMock(side_effect=ValueError("bad"))

        with pytest.raises(ValueError):
            await self.manager.execute_with_retry(func, "test")
        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_circuit_breaker_blocking(self):
        breaker = self.manager.get_circuit_breaker("embeddings")
        breaker.state = CircuitState.OPEN
        breaker.next_attempt_time = _utcnow() + timedelta(minutes=5)
        func = AsyncMock(return_value="never")

        with pytest.raises(CollaboratorError) as exc_info:
            await self.manager.execute_with_retry(func, "test", "embeddings")

        assert exc_info.value.service == "embeddings"
        func.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_handling(self):
        self.manager.set_policy("slow", RetryPolicy(max_attempts=1, timeout=0.01))

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await self.manager.execute_with_retry(slow, "slow")


@pytest.mark.unit
class TestRetryDecorator:

    @pytest.mark.asyncio
    async def test_with_retry_decorator(self):
        calls = []

        @with_retry("allocation")
        async def flaky():
            calls.append(1)
            if len(calls) < 2:
                raise ConflictError("counter")
            return "done"

        assert await flaky() == "done"
        assert len(calls) == 2

    def test_global_retry_manager(self):
        assert isinstance(retry_manager, RetryManager)
        assert "allocation" in retry_manager.policies
