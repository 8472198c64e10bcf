"""In-process circuit breaker for the LLM provider.

State is per process; each worker opens and closes its own circuit.
"""

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitOpenError(Exception):
    """Raised instead of calling the provider while the circuit is open."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Circuit breaker {name} is open. Service unavailable.")


class CircuitBreaker:
    """Opens after ``failure_threshold`` failures; retries after ``reset_timeout`` seconds.

    Streaming callers use ``before_call`` / ``record_success`` /
    ``record_failure`` around the stream; one-shot calls can use ``call``.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.failures = 0
        self.last_failure: Optional[float] = None
        self._state = CircuitState.CLOSED

    @property
    def state(self) -> CircuitState:
        if (
            self._state is CircuitState.OPEN
            and self.last_failure is not None
            and self._clock() - self.last_failure >= self.reset_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit breaker %s transitioning to half-open", self.name)
        return self._state

    def before_call(self) -> None:
        if self.state is CircuitState.OPEN:
            raise CircuitOpenError(self.name)

    def record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            logger.info("Circuit breaker %s closed after successful call", self.name)
        self._state = CircuitState.CLOSED
        self.failures = 0

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure = self._clock()
        if self._state is CircuitState.HALF_OPEN or self.failures >= self.failure_threshold:
            if self._state is not CircuitState.OPEN:
                logger.warning(
                    "Circuit breaker %s opened after %d failures", self.name, self.failures
                )
            self._state = CircuitState.OPEN

    async def call(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        self.before_call()
        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        self.failures = 0
        self.last_failure = None
        self._state = CircuitState.CLOSED
        logger.info("Circuit breaker %s manually reset", self.name)
