"""Circuit breakers guarding Supabase table writes.

One breaker is kept per table, so a table that keeps rejecting writes
(missing migration, broken constraint) stops being hammered while writes to
the other tables continue.
"""

import enum
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when a call is attempted on an open circuit."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__(f"Circuit breaker is open for {service_name}")


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    Opens after ``failure_threshold`` consecutive failures. Once
    ``recovery_timeout`` seconds have passed it moves to half-open and lets
    the next call through; success closes it, failure re-opens it.

    Args:
        service_name: Identifier for the protected resource (used in logs).
        failure_threshold: Number of consecutive failures before opening.
        recovery_timeout: Seconds to wait before half-opening.
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ) -> None:
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._failure_count = 0
        self._opened_at = 0.0
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def state(self) -> CircuitState:
        """Current state, promoting OPEN to HALF_OPEN after the timeout."""
        with self._lock:
            if (
                self._state == CircuitState.OPEN
                and time.monotonic() - self._opened_at >= self.recovery_timeout
            ):
                self._state = CircuitState.HALF_OPEN
                logger.warning(
                    "Circuit breaker HALF_OPEN for %s (testing recovery)",
                    self.service_name,
                )
            return self._state

    def check(self) -> None:
        """Raise CircuitBreakerOpen if calls are currently refused."""
        if self.state == CircuitState.OPEN:
            raise CircuitBreakerOpen(self.service_name)

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.warning("Circuit breaker CLOSED for %s (recovered)", self.service_name)
            self._failure_count = 0
            self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            reopen = self._state == CircuitState.HALF_OPEN
            if reopen or self._failure_count >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.warning(
                        "Circuit breaker OPEN for %s after %d consecutive failures",
                        self.service_name,
                        self._failure_count,
                    )
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a synchronous callable through the breaker.

        Raises:
            CircuitBreakerOpen: If the circuit is open.
            Exception: Whatever ``func`` raised, after recording the failure.
        """
        self.check()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._opened_at = 0.0
            self._state = CircuitState.CLOSED


_breakers: dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def breaker_for(name: str) -> CircuitBreaker:
    """Return the shared breaker for a table or service, creating it on first use."""
    with _registry_lock:
        breaker = _breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name)
            _breakers[name] = breaker
        return breaker


def breaker_states() -> dict[str, str]:
    """Snapshot of every known breaker's state, for health checks."""
    with _registry_lock:
        breakers = list(_breakers.values())
    return {b.service_name: b.state.value for b in breakers}


def reset_breakers() -> None:
    """Close every breaker (used by tests)."""
    with _registry_lock:
        breakers = list(_breakers.values())
    for breaker in breakers:
        breaker.reset()
