"""Circuit breaker deciding whether the remote store should be called.

States:
- CLOSED: remote calls go through
- OPEN: remote calls are skipped until the recovery timeout has elapsed
- HALF_OPEN: a probe call is let through to test recovery

Example:
    >>> breaker = CircuitBreaker(recovery_timeout_seconds=60)
    >>> if breaker.can_execute():
    ...     try:
    ...         await remote.list_goals(page_id)
    ...         breaker.record_success()
    ...     except RemoteStoreError:
    ...         breaker.record_failure()
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class CircuitState(Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Closed/Open/HalfOpen state machine driven by an injectable clock.

    Attributes:
        failure_threshold: Consecutive failures before opening (default 1)
        recovery_timeout_seconds: Cooldown before a probe is allowed (default 60)
        half_open_max_calls: Probes allowed while half-open (default 1)
        clock: Monotonic seconds source
    """

    failure_threshold: int = 1
    recovery_timeout_seconds: float = 60.0
    half_open_max_calls: int = 1
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _times_opened: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN circuit reports HALF_OPEN."""
        if self._state == CircuitState.OPEN and self.cooldown_remaining() <= 0:
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def cooldown_remaining(self) -> float:
        """Seconds until an OPEN circuit lets a probe through."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.recovery_timeout_seconds - (self.clock() - self._opened_at))

    def can_execute(self) -> bool:
        """Check whether a remote call may be attempted now."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN:
            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
        return False

    def record_success(self) -> None:
        self._consecutive_failures = 0
        self._state = CircuitState.CLOSED
        self._half_open_calls = 0

    def record_failure(self) -> bool:
        """
        Record a failed call.

        Returns:
            True if the circuit is now open
        """
        self._consecutive_failures += 1
        if self._state == CircuitState.HALF_OPEN or self._consecutive_failures >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                self._times_opened += 1
            self._state = CircuitState.OPEN
            self._opened_at = self.clock()
            self._half_open_calls = 0
            return True
        return False

    def reset(self) -> None:
        self._consecutive_failures = 0
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._half_open_calls = 0

    def to_dict(self) -> dict[str, Any]:
        """Export state for logging and health checks."""
        return {
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "times_opened": self._times_opened,
            "cooldown_remaining": round(self.cooldown_remaining(), 3),
        }

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(state={self._state.value}, "
            f"failures={self._consecutive_failures}/{self.failure_threshold})"
        )
