"""
Retry utilities with exponential backoff, circuit breaker patterns, and retry policies.

Provides retry mechanisms for transient failures: lost races on the quote
counter transaction, and slow or flaky LLM and embedding collaborators.
"""

import asyncio
import random
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, Awaitable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import functools

from .logging_conf import get_logger
from .error_handler import (
    RetryableError, ConflictError, CollaboratorError, NotFoundError, ValidationError
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackoffStrategy(Enum):
    """Backoff strategy types."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    EXPONENTIAL_JITTER = "exponential_jitter"


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, rejecting requests
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 300.0
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER
    multiplier: float = 2.0
    jitter_range: float = 0.1
    timeout: Optional[float] = None
    retryable_exceptions: List[Type[Exception]] = field(default_factory=list)
    non_retryable_exceptions: List[Type[Exception]] = field(default_factory=list)


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3  # For half-open state


class CircuitBreaker:
    """
    Circuit breaker pattern implementation.
    """

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.next_attempt_time: Optional[datetime] = None

    def can_execute(self) -> bool:
        """Check if execution is allowed."""
        now = _utcnow()

        if self.state == CircuitState.CLOSED:
            return True
        elif self.state == CircuitState.OPEN:
            if self.next_attempt_time and now >= self.next_attempt_time:
                self.state = CircuitState.HALF_OPEN
                self.success_count = 0
                logger.info(f"Circuit breaker {self.name} transitioning to half-open")
                return True
            return False
        return True

    def record_success(self):
        """Record a successful execution."""
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                logger.info(f"Circuit breaker {self.name} closed (recovered)")
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0

    def record_failure(self):
        """Record a failed execution."""
        self.failure_count += 1
        self.last_failure_time = _utcnow()

        if self.state == CircuitState.CLOSED:
            if self.failure_count >= self.config.failure_threshold:
                self.state = CircuitState.OPEN
                self.next_attempt_time = _utcnow() + timedelta(seconds=self.config.recovery_timeout)
                logger.warning(
                    f"Circuit breaker {self.name} opened",
                    failure_count=self.failure_count,
                    recovery_timeout=self.config.recovery_timeout
                )
        elif self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.OPEN
            self.next_attempt_time = _utcnow() + timedelta(seconds=self.config.recovery_timeout)
            logger.warning(f"Circuit breaker {self.name} reopened")

    def get_status(self) -> Dict[str, Any]:
        """Get circuit breaker status."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "next_attempt_time": self.next_attempt_time.isoformat() if self.next_attempt_time else None
        }


class RetryManager:
    """
    Manages retry policies and circuit breakers for different services.
    """

    def __init__(self):
        self.policies: Dict[str, RetryPolicy] = {}
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self._setup_default_policies()

    def _setup_default_policies(self):
        """Setup default retry policies for different operation types."""

        # Counter and revision transactions: short waits, lost races only
        self.policies["allocation"] = RetryPolicy(
            max_attempts=5,
            base_delay=0.02,
            max_delay=0.5,
            backoff_strategy=BackoffStrategy.EXPONENTIAL_JITTER,
            retryable_exceptions=[ConflictError],
            non_retryable_exceptions=[NotFoundError, ValidationError]
        )

        self.policies["llm"] = RetryPolicy(
            max_attempts=3,
            base_delay=5.0,
            max_delay=120.0,
            backoff_strategy=BackoffStrategy.EXPONENTIAL_JITTER,
            retryable_exceptions=[ConnectionError, TimeoutError, RetryableError]
        )

        self.policies["embedding"] = RetryPolicy(
            max_attempts=2,
            base_delay=1.0,
            max_delay=10.0,
            backoff_strategy=BackoffStrategy.EXPONENTIAL,
            retryable_exceptions=[ConnectionError, TimeoutError]
        )

        self.policies["api"] = RetryPolicy(
            max_attempts=3,
            base_delay=2.0,
            max_delay=30.0,
            backoff_strategy=BackoffStrategy.EXPONENTIAL_JITTER,
            retryable_exceptions=[ConnectionError, TimeoutError, RetryableError]
        )

    def get_policy(self, operation_type: str) -> RetryPolicy:
        """Get retry policy for operation type."""
        return self.policies.get(operation_type, self.policies["api"])

    def set_policy(self, operation_type: str, policy: RetryPolicy):
        """Set retry policy for operation type."""
        self.policies[operation_type] = policy

    def get_circuit_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create circuit breaker for service."""
        if service_name not in self.circuit_breakers:
            self.circuit_breakers[service_name] = CircuitBreaker(service_name, CircuitBreakerConfig())
        return self.circuit_breakers[service_name]

    def calculate_delay(self, attempt: int, policy: RetryPolicy) -> float:
        """Calculate delay for retry attempt."""
        if policy.backoff_strategy == BackoffStrategy.FIXED:
            delay = policy.base_delay
        elif policy.backoff_strategy == BackoffStrategy.LINEAR:
            delay = policy.base_delay * attempt
        elif policy.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            delay = policy.base_delay * (policy.multiplier ** (attempt - 1))
        elif policy.backoff_strategy == BackoffStrategy.EXPONENTIAL_JITTER:
            base_delay = policy.base_delay * (policy.multiplier ** (attempt - 1))
            jitter = base_delay * policy.jitter_range * (random.random() * 2 - 1)
            delay = base_delay + jitter
        else:
            delay = policy.base_delay

        return min(delay, policy.max_delay)

    def should_retry(self, exception: Exception, attempt: int, policy: RetryPolicy) -> bool:
        """Determine if exception should be retried."""
        if attempt >= policy.max_attempts:
            return False

        for exc_type in policy.non_retryable_exceptions:
            if isinstance(exception, exc_type):
                return False

        if policy.retryable_exceptions:
            return any(isinstance(exception, exc_type) for exc_type in policy.retryable_exceptions)

        return isinstance(exception, (RetryableError, ConnectionError, TimeoutError))

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        operation_type: str = "api",
        service_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        *args,
        **kwargs
    ) -> Any:
        """
        Execute function with retry logic and circuit breaker.

        Args:
            func: Async function to execute
            operation_type: Type of operation for policy selection
            service_name: Service name for circuit breaker
            context: Additional context for logging
            *args, **kwargs: Arguments for the function

        Returns:
            Function result

        Raises:
            Exception: Last exception if all retries exhausted
        """
        policy = self.get_policy(operation_type)
        circuit_breaker = self.get_circuit_breaker(service_name) if service_name else None

        last_exception: Optional[Exception] = None

        for attempt in range(1, policy.max_attempts + 1):
            if circuit_breaker and not circuit_breaker.can_execute():
                raise CollaboratorError(
                    service=service_name,
                    reason="circuit open after repeated failures"
                )

            try:
                if policy.timeout:
                    result = await asyncio.wait_for(func(*args, **kwargs), timeout=policy.timeout)
                else:
                    result = await func(*args, **kwargs)

                if circuit_breaker:
                    circuit_breaker.record_success()

                if attempt > 1:
                    logger.info(
                        "Operation succeeded after retry",
                        operation_type=operation_type,
                        attempt=attempt,
                        context=context
                    )

                return result

            except Exception as e:
                last_exception = e

                if circuit_breaker:
                    circuit_breaker.record_failure()

                if not self.should_retry(e, attempt, policy):
                    if attempt < policy.max_attempts:
                        logger.debug(
                            "Non-retryable error encountered",
                            operation_type=operation_type,
                            attempt=attempt,
                            error_type=type(e).__name__,
                            context=context
                        )
                    break

                delay = self.calculate_delay(attempt, policy)
                logger.warning(
                    "Operation failed, retrying",
                    operation_type=operation_type,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay=delay,
                    error=str(e),
                    error_type=type(e).__name__,
                    context=context
                )
                await asyncio.sleep(delay)

        raise last_exception

    def get_status(self) -> Dict[str, Any]:
        """Get status of all circuit breakers and retry policies."""
        return {
            "circuit_breakers": {
                name: cb.get_status()
                for name, cb in self.circuit_breakers.items()
            },
            "retry_policies": {
                name: {
                    "max_attempts": policy.max_attempts,
                    "base_delay": policy.base_delay,
                    "max_delay": policy.max_delay,
                    "backoff_strategy": policy.backoff_strategy.value
                }
                for name, policy in self.policies.items()
            }
        }


# Global retry manager instance
retry_manager = RetryManager()


def with_retry(operation_type: str = "api", service_name: Optional[str] = None):
    """
    Decorator for adding retry logic to async functions.

    Args:
        operation_type: Type of operation for policy selection
        service_name: Service name for circuit breaker
    """
    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_manager.execute_with_retry(
                func, operation_type, service_name, None, *args, **kwargs
            )
        return wrapper
    return decorator
