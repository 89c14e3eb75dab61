from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger

WINDOW_SECONDS = 1.0


@dataclass
class TokenBucket:
    """
    Token bucket refilled on every check, no background timer.

    ``available`` starts at ``capacity_per_second`` so the first second can
    burst up to the full quota.
    """

    capacity_per_second: float
    available: float
    last_update_time: float
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    @classmethod
    def start(
        cls, capacity_per_second: float, clock: Callable[[], float] = time.monotonic
    ) -> TokenBucket:
        return cls(capacity_per_second, capacity_per_second, clock(), clock)

    def refill(self) -> None:
        now = self.clock()
        elapsed = max(0.0, now - self.last_update_time)
        self.available = min(
            self.capacity_per_second,
            self.available + self.capacity_per_second * elapsed,
        )
        self.last_update_time = now

    def try_consume(self, amount: float) -> bool:
        self.refill()
        if self.available >= amount:
            self.available -= amount
            return True
        return False

    def seconds_until(self, amount: float) -> float:
        """Time until ``amount`` tokens will be available, assuming no other consumers."""
        self.refill()
        missing = amount - self.available
        if missing <= 0:
            return 0.0
        return missing / self.capacity_per_second


class RateLimiter:
    """
    Admission gate pacing calls to the external per-second quota.

    Combines a ``TokenBucket`` with a log of grant times over the last
    second. The bucket alone would let a full burst at the end of
    one second be followed by nearly a full refill inside the same rolling
    second; the log caps every rolling window at ``capacity`` grants.

    Refill, decision and bookkeeping all happen under one lock, so concurrent
    callers (other tasks or other threads) cannot overshoot the quota.

    Args:
        capacity (float): Maximum admissions per second
        clock (Callable[[], float]): Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        capacity: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("Rate limiter capacity must be at least 1 per second")
        self.capacity = capacity
        self._clock = clock
        self._bucket = TokenBucket.start(capacity_per_second=capacity, clock=clock)
        self._max_in_window = max(1, int(capacity))
        self._grants: deque[float] = deque()
        self._lock = threading.Lock()
        self.granted = 0
        self.denied = 0

    @property
    def tokens(self) -> float:
        with self._lock:
            self._bucket.refill()
            return self._bucket.available

    def _expire(self, now: float) -> None:
        horizon = now - WINDOW_SECONDS
        while self._grants and self._grants[0] <= horizon:
            self._grants.popleft()

    def try_acquire(self) -> bool:
        """
        Grant one admission if the quota allows it; never waits.

        Returns:
            bool: True if granted (one token consumed), False if denied (nothing consumed)
        """
        with self._lock:
            now = self._clock()
            self._expire(now)
            self._bucket.refill()
            if len(self._grants) >= self._max_in_window or self._bucket.available < 1:
                self.denied += 1
                return False
            self._bucket.available -= 1
            self._grants.append(now)
            self.granted += 1
            return True

    def seconds_until_available(self) -> float:
        """Estimated wait before ``try_acquire`` could succeed."""
        with self._lock:
            now = self._clock()
            self._expire(now)
            wait = self._bucket.seconds_until(1)
            if len(self._grants) >= self._max_in_window:
                oldest = self._grants[len(self._grants) - self._max_in_window]
                wait = max(wait, oldest + WINDOW_SECONDS - now)
            return max(0.0, wait)

    def log_state(self) -> None:
        logger.debug(
            f"Rate limiter: {self.granted} granted, {self.denied} denied, "
            f"{len(self._grants)} in current window"
        )
