"""Key export rate limiter tests."""

import threading

import pytest

from stablewallet.ratelimit import InMemoryRateLimiter

from conftest import FakeClock


class TestInMemoryRateLimiter:
    """Tests for the fixed-window limiter."""

    def test_allows_up_to_max_attempts(self, limiter):
        """Test that five attempts pass and the sixth is refused."""
        results = [limiter.allow("u1") for _ in range(6)]
        assert results == [True, True, True, True, True, False]

    def test_principals_are_independent(self, limiter):
        for _ in range(5):
            limiter.allow("u1")

        assert limiter.allow("u1") is False
        assert limiter.allow("u2") is True

    def test_window_resets(self, limiter, clock):
        """Test that attempts are allowed again once the window elapses."""
        for _ in range(6):
            limiter.allow("u1")
        assert limiter.allow("u1") is False

        clock.advance(900)

        assert limiter.allow("u1") is True

    def test_retry_after(self, limiter, clock):
        """Test remaining seconds reported while limited."""
        assert limiter.retry_after("u1") == 0.0
        for _ in range(6):
            limiter.allow("u1")

        clock.advance(300)

        assert limiter.retry_after("u1") == pytest.approx(600)

    def test_retry_after_zero_when_not_limited(self, limiter):
        limiter.allow("u1")
        assert limiter.retry_after("u1") == 0.0

    def test_reset(self, limiter):
        for _ in range(6):
            limiter.allow("u1")
        limiter.reset("u1")

        assert limiter.allow("u1") is True

    def test_reset_all(self, limiter):
        for principal in ("u1", "u2"):
            for _ in range(6):
                limiter.allow(principal)
        limiter.reset()

        assert limiter.allow("u1") is True
        assert limiter.allow("u2") is True

    def test_concurrent_attempts_counted_once_each(self):
        """Test that attempts from many threads are counted exactly."""
        limiter = InMemoryRateLimiter(max_attempts=50, window_seconds=60, clock=FakeClock())
        allowed = []

        def attempt():
            allowed.append(limiter.allow("u1"))

        threads = [threading.Thread(target=attempt) for _ in range(80)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert allowed.count(True) == 50

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            InMemoryRateLimiter(max_attempts=0)
        with pytest.raises(ValueError):
            InMemoryRateLimiter(window_seconds=0)

    def test_expired_windows_are_dropped(self, limiter, clock):
        """Test that principals whose window ran out stop being tracked."""
        for principal in ("u1", "u2", "u3"):
            limiter.allow(principal)
        assert limiter.tracked == 3

        clock.advance(901)
        limiter.allow("u4")

        assert limiter.tracked == 1
        assert limiter.retry_after("u1") == 0.0

    def test_retry_after_drops_expired_window(self, limiter, clock):
        for _ in range(6):
            limiter.allow("u1")
        clock.advance(900)

        assert limiter.retry_after("u1") == 0.0
        assert limiter.tracked == 0
