"""Tests for the fixed-window rate limiter."""

import pytest

from venue_fusion.ingestion.rate_limiter import FixedWindowRateLimiter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock) -> FixedWindowRateLimiter:
    limiter = FixedWindowRateLimiter(window_seconds=60, clock=clock)
    limiter.configure("kakao", requests_per_minute=3)
    return limiter


class TestFixedWindowRateLimiter:
    """Tests for FixedWindowRateLimiter."""

    def test_admits_up_to_budget(self, limiter: FixedWindowRateLimiter) -> None:
        """Test exactly the per-window budget is admitted."""
        results = [limiter.admit("kakao") for _ in range(5)]
        assert results == [True, True, True, False, False]

    def test_window_resets(self, limiter: FixedWindowRateLimiter, clock: FakeClock) -> None:
        """Test a new window admits again after expiry."""
        for _ in range(3):
            assert limiter.admit("kakao")
        assert not limiter.admit("kakao")

        clock.advance(60)
        assert limiter.admit("kakao")
        assert limiter.get_usage("kakao")["count"] == 1

    def test_connectors_are_independent(self, limiter: FixedWindowRateLimiter) -> None:
        """Test one connector's budget does not affect another."""
        limiter.configure("naver", requests_per_minute=1)
        for _ in range(3):
            limiter.admit("kakao")
        assert not limiter.admit("kakao")
        assert limiter.admit("naver")
        assert not limiter.admit("naver")

    def test_seconds_until_reset(self, limiter: FixedWindowRateLimiter, clock: FakeClock) -> None:
        """Test remaining window time."""
        assert limiter.seconds_until_reset("kakao") == 0.0
        limiter.admit("kakao")
        clock.advance(15)
        assert limiter.seconds_until_reset("kakao") == pytest.approx(45.0)

    def test_daily_cap(self, clock: FakeClock) -> None:
        """Test the daily cap refuses calls across windows."""
        limiter = FixedWindowRateLimiter(window_seconds=60, day_seconds=600, clock=clock)
        limiter.configure("api", requests_per_minute=10, requests_per_day=2)

        assert limiter.admit("api")
        clock.advance(61)
        assert limiter.admit("api")
        clock.advance(61)
        assert not limiter.admit("api")
        assert limiter.seconds_until_reset("api") == pytest.approx(600 - 122)

        clock.advance(600)
        assert limiter.admit("api")

    def test_invalid_budget(self, limiter: FixedWindowRateLimiter) -> None:
        """Test a zero budget is rejected."""
        with pytest.raises(ValueError):
            limiter.configure("bad", requests_per_minute=0)

    def test_reset(self, limiter: FixedWindowRateLimiter) -> None:
        """Test reset forgets window state."""
        for _ in range(3):
            limiter.admit("kakao")
        limiter.reset("kakao")
        assert limiter.admit("kakao")
        assert limiter.get_usage("unknown") == {"count": 0, "day_count": 0, "resets_in": 0.0}
