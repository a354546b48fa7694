"""
Circuit breaker shared by every in-flight call of one client instance.

closed    --(failure_threshold consecutive failures)--> open
open      --(reset_timeout since last failure)--------> half_open
half_open --(success)--> closed
half_open --(failure)--> open

The open -> half_open move is computed when state is read, so nothing
needs to tick in the background. All mutation happens between awaits,
which keeps it safe under asyncio without a lock.
"""
import enum
import logging
import time
from typing import Callable, Optional

from screener.upstream.errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.last_failure_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        if (
            self._state is CircuitState.OPEN
            and self.last_failure_at is not None
            and self._clock() - self.last_failure_at >= self.reset_timeout
        ):
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    def before_call(self) -> None:
        """Raise CircuitOpenError if calls are currently blocked."""
        if self.state is CircuitState.OPEN:
            retry_in = self.reset_timeout - (self._clock() - self.last_failure_at)
            raise CircuitOpenError(retry_in=max(retry_in, 0.0))

    def record_success(self) -> None:
        self.consecutive_failures = 0
        if self._state is not CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        self.last_failure_at = self._clock()
        state = self.state
        if state is CircuitState.HALF_OPEN or (
            state is CircuitState.CLOSED
            and self.consecutive_failures >= self.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is self._state:
            return
        log = logger.warning if new_state is CircuitState.OPEN else logger.info
        log(
            "Circuit breaker %s -> %s (consecutive failures: %d)",
            self._state.value,
            new_state.value,
            self.consecutive_failures,
        )
        self._state = new_state
