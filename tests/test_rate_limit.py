import random
import threading

import pytest
from pytest import approx

from calmeval.core.rate_limit import RateLimiter, TokenBucket


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def assert_rolling_window(grant_times: list[float], capacity: int) -> None:
    for i, start in enumerate(grant_times):
        in_window = [t for t in grant_times[i:] if t < start + 1.0 - 1e-9]
        assert len(in_window) <= capacity, f"{len(in_window)} grants in window starting {start}"


class TestTokenBucket:
    """Tests for the TokenBucket refill-on-check bucket."""

    def test_start_creates_full_bucket(self) -> None:
        """Test that a new bucket starts at full capacity."""
        capacity = 50.0

        bucket = TokenBucket.start(capacity_per_second=capacity)

        assert bucket.capacity_per_second == capacity
        assert bucket.available == capacity
        assert bucket.last_update_time > 0

    @pytest.mark.parametrize(
        argnames="capacity,consume,expected_remaining",
        argvalues=[
            (50.0, 20.0, 30.0),
            (50.0, 50.0, 0.0),
        ],
    )
    def test_consume_tokens_successfully(
        self, capacity: float, consume: float, expected_remaining: float
    ) -> None:
        """Test consuming tokens when enough are available."""
        clock = FakeClock()
        bucket = TokenBucket.start(capacity_per_second=capacity, clock=clock)

        result = bucket.try_consume(amount=consume)

        assert result is True
        assert bucket.available == approx(expected_remaining)

    def test_consume_fails_without_consuming(self) -> None:
        """Test that a failed consumption leaves the bucket untouched."""
        clock = FakeClock()
        bucket = TokenBucket.start(capacity_per_second=2.0, clock=clock)

        assert bucket.try_consume(amount=3.0) is False
        assert bucket.available == approx(2.0)

    def test_tokens_refill_over_time(self) -> None:
        """Test that tokens refill at capacity tokens per second."""
        clock = FakeClock()
        bucket = TokenBucket.start(capacity_per_second=2.0, clock=clock)
        bucket.try_consume(amount=2.0)

        clock.advance(0.5)
        bucket.refill()

        assert bucket.available == approx(1.0)

    def test_refill_does_not_exceed_capacity(self) -> None:
        """Test that refilling stops at maximum capacity."""
        clock = FakeClock()
        bucket = TokenBucket.start(capacity_per_second=10.0, clock=clock)
        bucket.try_consume(amount=5.0)

        clock.advance(100.0)
        bucket.refill()

        assert bucket.available == approx(10.0)

    def test_seconds_until(self) -> None:
        clock = FakeClock()
        bucket = TokenBucket.start(capacity_per_second=4.0, clock=clock)
        bucket.try_consume(amount=4.0)

        assert bucket.seconds_until(1) == approx(0.25)
        clock.advance(0.25)
        assert bucket.seconds_until(1) == approx(0.0)


class TestRateLimiter:
    """Tests for the admission gate."""

    def test_initial_burst_up_to_capacity(self) -> None:
        limiter = RateLimiter(capacity=5, clock=FakeClock())

        grants = [limiter.try_acquire() for _ in range(8)]

        assert grants == [True] * 5 + [False] * 3
        assert limiter.granted == 5
        assert limiter.denied == 3

    def test_denial_consumes_nothing(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(capacity=2, clock=clock)
        limiter.try_acquire()
        limiter.try_acquire()

        clock.advance(0.25)
        before = limiter.tokens
        assert limiter.try_acquire() is False
        assert limiter.tokens == approx(before)

    def test_refilled_bucket_still_bound_by_rolling_window(self) -> None:
        """A refilled bucket alone must not allow a second burst inside the same second."""
        clock = FakeClock()
        limiter = RateLimiter(capacity=4, clock=clock)
        assert all(limiter.try_acquire() for _ in range(4))

        clock.advance(0.9)
        assert limiter.tokens == approx(3.6)
        assert limiter.try_acquire() is False

        clock.advance(0.15)
        assert limiter.try_acquire() is True

    def test_seconds_until_available(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(capacity=2, clock=clock)
        assert limiter.seconds_until_available() == 0.0

        limiter.try_acquire()
        limiter.try_acquire()
        assert limiter.seconds_until_available() == approx(1.0)

        clock.advance(0.75)
        assert limiter.seconds_until_available() == approx(0.25)

    @pytest.mark.parametrize("capacity", [1, 3, 10])
    def test_random_arrivals_never_exceed_capacity_per_window(self, capacity: int) -> None:
        rng = random.Random(capacity)
        clock = FakeClock()
        limiter = RateLimiter(capacity=capacity, clock=clock)
        grant_times = []

        for _ in range(2_000):
            clock.advance(rng.choice([0.0, 0.0, 0.001, 0.01, 0.05, 0.3]))
            if limiter.try_acquire():
                grant_times.append(clock.now)

        assert grant_times
        assert_rolling_window(grant_times, capacity)

    def test_steady_arrivals_reach_full_rate(self) -> None:
        clock = FakeClock()
        limiter = RateLimiter(capacity=10, clock=clock)
        grant_times = []

        for _ in range(500):  # 5 seconds at 100 calls/s
            if limiter.try_acquire():
                grant_times.append(clock.now)
            clock.advance(0.01)

        assert_rolling_window(grant_times, 10)
        assert len(grant_times) >= 45

    def test_concurrent_callers_share_one_quota(self) -> None:
        """Threads racing on a frozen clock can only ever get ``capacity`` grants."""
        limiter = RateLimiter(capacity=25, clock=FakeClock())
        granted = []
        lock = threading.Lock()

        def hammer() -> None:
            count = sum(1 for _ in range(500) if limiter.try_acquire())
            with lock:
                granted.append(count)

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(granted) == 25

    def test_rejects_non_positive_capacity(self) -> None:
        with pytest.raises(ValueError):
            RateLimiter(capacity=0.5)
