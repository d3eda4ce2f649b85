"""
Reliability utilities.

Circuit breaker guarding calls to external collaborators (geocoding).
"""

import enum
import time
from typing import Awaitable, Callable, Any

from backend.app.core.config import settings


class CircuitOpenError(Exception):
    pass


class CircuitState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.

    After `failure_threshold` consecutive failures the circuit opens and
    rejects calls for `reset_timeout` seconds; the next call after that is a
    trial (HALF_OPEN) that closes the circuit on success.
    """

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.opened_at = 0.0
        self.state = CircuitState.CLOSED

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        if self.state == CircuitState.OPEN:
            if time.monotonic() - self.opened_at >= self.reset_timeout:
                self.state = CircuitState.HALF_OPEN
            else:
                raise CircuitOpenError("Circuit is OPEN")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        if self.state == CircuitState.HALF_OPEN or self.failures >= self.failure_threshold:
            self.state = CircuitState.OPEN
            self.opened_at = time.monotonic()

    def reset_state(self):
        self.failures = 0
        self.state = CircuitState.CLOSED


# Process-wide breaker for the geocoding API
geocoding_circuit_breaker = CircuitBreaker(
    failure_threshold=settings.geocode_failure_threshold,
    reset_timeout=settings.geocode_reset_timeout,
)
