"""Process-wide throttling state shared by every resolver worker.

The resolver only sees the :class:`Throttle` capability: ask before each
search call, report the outcome afterwards. Implementations guard their
state with a lock because workers run in parallel threads.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Callable, Deque, Optional, Protocol, Sequence

from .config import ThrottleSettings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Throttle(Protocol):
    def try_acquire(self) -> bool: ...

    def record_outcome(self, success: bool) -> None: ...


class NoThrottle:
    def try_acquire(self) -> bool:
        return True

    def record_outcome(self, success: bool) -> None:
        return None


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stops calling a failing provider for a cool-down period.

    CLOSED counts failures inside a sliding window; reaching
    ``failure_threshold`` opens the circuit. After ``reset_timeout`` seconds
    the circuit is HALF_OPEN: calls are let through and ``success_threshold``
    consecutive successes close it again, while any failure re-opens it.
    """

    def __init__(
        self,
        name: str = "search",
        *,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_timeout: float = 30.0,
        failure_window: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.success_threshold = max(1, success_threshold)
        self.reset_timeout = reset_timeout
        self.failure_window = failure_window
        self._clock = clock
        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._failures: Deque[float] = deque()
        self._half_open_successes = 0
        self._opened_at = 0.0

    @classmethod
    def from_settings(cls, settings: ThrottleSettings, *, name: str = "search", clock: Clock = time.monotonic) -> "CircuitBreaker":
        return cls(
            name,
            failure_threshold=settings.failure_threshold,
            success_threshold=settings.success_threshold,
            reset_timeout=settings.reset_timeout_seconds,
            failure_window=settings.failure_window_seconds,
            clock=clock,
        )

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def try_acquire(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.OPEN:
                logger.debug("Circuit %s is open; refusing call", self.name)
                return False
            return True

    def record_outcome(self, success: bool) -> None:
        with self._lock:
            now = self._clock()
            if success:
                if self._state is CircuitState.HALF_OPEN:
                    self._half_open_successes += 1
                    if self._half_open_successes >= self.success_threshold:
                        self._close()
                return
            if self._state is CircuitState.HALF_OPEN:
                self._open(now)
                return
            self._failures.append(now)
            while self._failures and now - self._failures[0] > self.failure_window:
                self._failures.popleft()
            if len(self._failures) >= self.failure_threshold:
                self._open(now)

    def _maybe_half_open(self) -> None:
        if self._state is CircuitState.OPEN and self._clock() - self._opened_at >= self.reset_timeout:
            self._state = CircuitState.HALF_OPEN
            self._half_open_successes = 0
            logger.info("Circuit %s is half-open; probing provider", self.name)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._failures.clear()
        self._half_open_successes = 0
        logger.warning("Circuit %s opened; pausing searches for %.0fs", self.name, self.reset_timeout)

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._half_open_successes = 0
        logger.info("Circuit %s closed", self.name)


class RequestBudget:
    """Remaining request allowance of a rate-limited API.

    ``remaining`` is None until the provider tells us otherwise, which means
    unlimited. A 429 response exhausts the budget until the reset time.
    """

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._clock = clock
        self._lock = Lock()
        self._remaining: Optional[int] = None
        self._reset_at: Optional[float] = None

    def update(self, remaining: int, reset_at: Optional[float]) -> None:
        with self._lock:
            self._remaining = max(0, int(remaining))
            self._reset_at = reset_at
        logger.debug("Request budget updated: %s remaining", remaining)

    def exhaust(self, retry_after: float) -> None:
        with self._lock:
            self._remaining = 0
            self._reset_at = self._clock() + max(0.0, retry_after)
        logger.warning("Search provider rate limit reached; pausing for %.0fs", retry_after)

    def seconds_until_reset(self) -> float:
        with self._lock:
            if self._reset_at is None:
                return 0.0
            return max(0.0, self._reset_at - self._clock())

    def try_acquire(self) -> bool:
        with self._lock:
            if self._remaining is None:
                return True
            if self._reset_at is not None and self._clock() >= self._reset_at:
                self._remaining = None
                self._reset_at = None
                return True
            if self._remaining <= 0:
                return False
            self._remaining -= 1
            return True

    def record_outcome(self, success: bool) -> None:
        return None


class ThrottleChain:
    """All throttles must allow a call; outcomes are reported to each of them."""

    def __init__(self, throttles: Sequence[Throttle]) -> None:
        self.throttles = list(throttles)

    def try_acquire(self) -> bool:
        return all(throttle.try_acquire() for throttle in self.throttles)

    def record_outcome(self, success: bool) -> None:
        for throttle in self.throttles:
            throttle.record_outcome(success)
