"""
Circuit breaker for calls to external collaborators.

Only transport-level failures (the exception types passed as
``tripping_exceptions``) count against the breaker. A collaborator that
answers "no" is healthy and must not open the circuit.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from shared.errors import ExternalServiceError
from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenException(ExternalServiceError):
    """Raised instead of calling a collaborator whose circuit is open."""

    def __init__(self, name: str, retry_in: float):
        super().__init__(
            name,
            "circuit open, call not attempted",
            details={"retry_in_seconds": round(max(retry_in, 0.0), 3)},
        )


class CircuitBreaker:
    """Counts consecutive transport failures and short-circuits calls."""

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 60.0,
                 tripping_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                 clock: Optional[Callable[[], float]] = None):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.tripping_exceptions = tripping_exceptions
        self._clock = clock or time.monotonic
        self.logger = get_logger(f"circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitBreakerState:
        if (
            self._state == CircuitBreakerState.OPEN
            and self._clock() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitBreakerState.HALF_OPEN
            self.logger.info("Circuit breaker half-open, allowing a trial call")
        return self._state

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute ``func`` unless the circuit is open."""
        if self.state == CircuitBreakerState.OPEN:
            raise CircuitBreakerOpenException(
                self.name, self.recovery_timeout - (self._clock() - self._opened_at)
            )

        try:
            result = await func(*args, **kwargs)
        except self.tripping_exceptions:
            self._record_failure()
            raise

        if self._state != CircuitBreakerState.CLOSED or self._failure_count:
            self.logger.info("Circuit breaker closed", previous_failures=self._failure_count)
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        return result

    def _record_failure(self):
        self._failure_count += 1
        if (
            self._state == CircuitBreakerState.HALF_OPEN
            or self._failure_count >= self.failure_threshold
        ):
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self._clock()
            self.logger.warning(
                "Circuit breaker opened",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> Dict[str, Any]:
        """Snapshot for health reporting."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }
