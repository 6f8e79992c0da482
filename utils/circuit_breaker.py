# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Circuit Breaker - Stop calling the upstream once it starts blocking us
"""
import logging
import time
from enum import Enum
from threading import Lock
from typing import Callable, TypeVar, Any, Optional

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    """Possible states of the circuit breaker"""
    CLOSED = "closed"
    OPEN = "open"            # upstream is blocking us, calls fail fast
    HALF_OPEN = "half_open"  # one probe call allowed through


class CircuitBreakerOpenError(Exception):
    """Raised instead of calling the upstream while the circuit is open"""

    def __init__(self, name: str, retry_in: float):
        self.retry_in = retry_in
        super().__init__(f"{name}: circuit open, next probe in {retry_in:.0f}s")


class CircuitBreaker:
    """
    Circuit breaker shared by every upstream call in the process.

    Only ``expected_exception`` counts as a failure; session expiry and
    upstream data errors pass through without tripping the breaker.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 600,
        expected_exception: type = Exception,
        name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name or "upstream"
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_blocks = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._lock = Lock()

    @property
    def state(self) -> str:
        with self._lock:
            self._refresh_state()
            return self._state.value

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Call ``func`` through the breaker

        Raises:
            CircuitBreakerOpenError: If the circuit is open
        """
        with self._lock:
            self._refresh_state()
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(self.name, self._retry_in())
            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitBreakerOpenError(self.name, 0.0)
                self._probe_in_flight = True

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            with self._lock:
                self._probe_in_flight = False
                self._record_block()
            raise
        except Exception:
            # Not a blocking error; the circuit stays HALF_OPEN for the next caller
            with self._lock:
                self._probe_in_flight = False
            raise

        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info(f"✅ {self.name}: probe call succeeded, closing circuit")
            self._state = CircuitState.CLOSED
            self._consecutive_blocks = 0
            self._probe_in_flight = False
        return result

    def _retry_in(self) -> float:
        return max(0.0, self.recovery_timeout - (self._clock() - self._opened_at))

    def _refresh_state(self):
        if self._state == CircuitState.OPEN and self._retry_in() <= 0:
            logger.info(f"{self.name}: recovery timeout elapsed, allowing one probe call")
            self._state = CircuitState.HALF_OPEN

    def _record_block(self):
        self._consecutive_blocks += 1
        if self._state == CircuitState.HALF_OPEN or self._consecutive_blocks >= self.failure_threshold:
            logger.error(
                f"🚫 {self.name}: {self._consecutive_blocks} consecutive blocked calls, "
                f"pausing upstream calls for {self.recovery_timeout}s"
            )
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
