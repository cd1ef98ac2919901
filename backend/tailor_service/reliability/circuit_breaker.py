import time
import logging
from enum import Enum
from typing import Dict, Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpenException(Exception):
    """Raised when a call is attempted while the circuit is open."""
    pass


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exceptions: list = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Circuit breaker around an upstream dependency.

        Args:
            name: Identifier for this circuit breaker.
            failure_threshold: Consecutive failures before opening the circuit.
            recovery_timeout: Seconds to wait before letting a probe through (HALF_OPEN).
            expected_exceptions: Exception types that count as failures.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = tuple(expected_exceptions or [Exception])
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = 0.0

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func`` under circuit breaker protection."""
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _before_call(self):
        if self.state != CircuitState.OPEN:
            return

        if self._clock() - self.last_failure_time > self.recovery_timeout:
            self.state = CircuitState.HALF_OPEN
            logger.info(f"Circuit '{self.name}' probe engaged (HALF_OPEN).")
            return

        msg = f"Circuit '{self.name}' is OPEN. failures={self.failure_count}"
        logger.warning(msg)
        raise CircuitBreakerOpenException(msg)

    def _on_success(self):
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit '{self.name}' recovered (CLOSED).")
        self.state = CircuitState.CLOSED
        self.failure_count = 0

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.OPEN
            logger.warning(f"Circuit '{self.name}' probe failed. Re-opening.")
        elif self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
            logger.error(f"Circuit '{self.name}' threshold reached. OPENING.")

    def get_state_info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
        }


# Registry of circuit breakers by name
_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(name: str, **kwargs) -> CircuitBreaker:
    if name not in _breakers:
        _breakers[name] = CircuitBreaker(name, **kwargs)
    return _breakers[name]
