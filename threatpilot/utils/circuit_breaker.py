"""Async circuit breaker guarding calls to external collaborators.

States
------
CLOSED    – Normal operation; consecutive failures are counted.
OPEN      – Tripped; calls fail immediately with CircuitBreakerOpenError.
HALF_OPEN – One probe call is let through to test whether the collaborator
            has recovered.

The breaker never retries. It only shortens the path to the first failure
when a collaborator is known to be down.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable

from threatpilot.exceptions import CollaboratorError
from threatpilot.utils.logger import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOpenError(CollaboratorError):
    """Raised when a call is attempted while the breaker is OPEN."""

    def __init__(self, name: str) -> None:
        super().__init__(name, f"circuit breaker '{name}' is OPEN, call rejected")


class CircuitBreaker:
    """Circuit breaker for one collaborator, serialized with an asyncio.Lock.

    Args:
        name: Collaborator name used in logs and errors.
        failure_threshold: Consecutive failures that trip the breaker.
        recovery_timeout: Seconds to stay OPEN before allowing a probe.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout

        self._state: CircuitState = CircuitState.CLOSED
        self._failure_count: int = 0
        self._probe_in_flight: bool = False
        self._opened_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await ``func(*args, **kwargs)`` subject to the breaker state.

        Raises:
            CircuitBreakerOpenError: While OPEN, or while HALF_OPEN with the
                probe already in flight.
            Exception: Whatever *func* raises, unchanged.
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                elapsed = time.monotonic() - self._opened_at
                if elapsed < self._recovery_timeout:
                    logger.warning("circuit_breaker_rejected", name=self._name)
                    raise CircuitBreakerOpenError(self._name)
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = False
                logger.info(
                    "circuit_breaker_half_open",
                    name=self._name,
                    elapsed_seconds=round(elapsed, 1),
                )

            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitBreakerOpenError(self._name)
                self._probe_in_flight = True

        # The collaborator call runs outside the lock so other callers are not blocked
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            # A cancelled probe proves nothing; let the next caller probe
            self._probe_in_flight = False
            raise
        except Exception:
            async with self._lock:
                self._record_failure()
            raise

        async with self._lock:
            self._record_success()
        return result

    # Must be called with _lock held

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            logger.info("circuit_breaker_closed", name=self._name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._probe_in_flight = False

    def _record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN:
            self._trip("circuit_breaker_reopened")
        elif self._failure_count >= self._failure_threshold:
            self._trip("circuit_breaker_opened")

    def _trip(self, event: str) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = time.monotonic()
        self._probe_in_flight = False
        logger.warning(
            event,
            name=self._name,
            failure_count=self._failure_count,
            threshold=self._failure_threshold,
        )
