"""
Circuit breaker guarding calls to the analytics backend.

The breaker counts consecutive backend failures. Once ``failure_threshold``
is reached further calls are rejected until ``recovery_timeout`` seconds
have passed, after which a single trial call decides whether it closes again.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Tuple, Type

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(Exception):
    """Raised instead of calling the backend while the breaker is open."""

    def __init__(self, name: str, retry_in: float):
        super().__init__(f"Circuit breaker '{name}' is open, retry in {retry_in:.1f}s")
        self.name = name
        self.retry_in = retry_in


class CircuitBreaker:
    """Per-gateway breaker; errors listed in ``ignored_exceptions`` pass through uncounted."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "default",
        ignored_exceptions: Tuple[Type[BaseException], ...] = (),
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.ignored_exceptions = ignored_exceptions
        self._monotonic = monotonic
        self.logger = get_logger(f"sync.circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._calls_since_close = 0

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def _remaining_cooldown(self) -> float:
        return max(0.0, self.recovery_timeout - (self._monotonic() - self._opened_at))

    def _admit(self) -> None:
        if self._state is not CircuitBreakerState.OPEN:
            return
        remaining = self._remaining_cooldown()
        if remaining > 0:
            raise CircuitBreakerOpenException(self.name, remaining)
        self._state = CircuitBreakerState.HALF_OPEN
        self.logger.info("Circuit breaker half-open, allowing trial call")

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func`` unless the breaker is open."""
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.ignored_exceptions:
            raise
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        if self._state is CircuitBreakerState.HALF_OPEN:
            self.logger.info("Circuit breaker closed after trial call succeeded")
        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._calls_since_close += 1

    def _on_failure(self) -> None:
        self._consecutive_failures += 1
        self._calls_since_close = 0
        trial_failed = self._state is CircuitBreakerState.HALF_OPEN
        if trial_failed or self._consecutive_failures >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._monotonic()
            self.logger.warning(
                "Circuit breaker opened",
                consecutive_failures=self._consecutive_failures,
                threshold=self.failure_threshold,
                trial_failed=trial_failed,
            )

    def reset(self) -> None:
        self._state = CircuitBreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0

    def get_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "consecutive_failures": self._consecutive_failures,
            "successful_calls": self._calls_since_close,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }

    def is_open(self) -> bool:
        return self._state is CircuitBreakerState.OPEN
