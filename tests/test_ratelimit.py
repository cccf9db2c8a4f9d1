#!/usr/bin/env python3
"""
Rate limiter and retry policy tests.

Time is simulated with a fake clock and a recording sleep function.
"""

import sys
from pathlib import Path

import pytest

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import AIErrorKind, AIRecognitionError
from ratelimit import RateLimiter
from retry import RetryPolicy, classify_ai_error


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRateLimiter:
    """Tests for RateLimiter"""

    def test_min_interval(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls_per_minute=100, max_calls_per_hour=1000, min_interval=1.0, clock=clock)
        assert limiter.request_permission()
        assert not limiter.request_permission()
        clock.advance(1.0)
        assert limiter.request_permission()

    def test_minute_window(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls_per_minute=3, max_calls_per_hour=1000, min_interval=0, clock=clock)
        for _ in range(3):
            assert limiter.request_permission()
            clock.advance(1)
        assert not limiter.request_permission()
        clock.advance(60)
        assert limiter.request_permission()

    def test_hour_window(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls_per_minute=100, max_calls_per_hour=2, min_interval=0, clock=clock)
        assert limiter.request_permission()
        clock.advance(120)
        assert limiter.request_permission()
        clock.advance(120)
        assert not limiter.request_permission()
        clock.advance(3600)
        assert limiter.request_permission()

    def test_stats_and_reset(self):
        clock = FakeClock()
        limiter = RateLimiter(min_interval=1.0, clock=clock)
        limiter.request_permission()
        limiter.request_permission()
        assert limiter.stats() == {'calls_last_minute': 1, 'calls_last_hour': 1, 'granted': 1, 'denied': 1}
        limiter.reset()
        assert limiter.stats()['granted'] == 0
        assert limiter.request_permission()

    def test_wait_for_permission_gives_up(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls_per_minute=1, max_calls_per_hour=10, min_interval=0, clock=clock)
        assert limiter.request_permission()
        sleeps = []
        assert not limiter.wait_for_permission(max_wait=0.5, sleep=sleeps.append)
        assert sum(sleeps) >= 0.5

    def test_wait_for_permission_succeeds(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls_per_minute=10, max_calls_per_hour=10, min_interval=1.0, clock=clock)
        assert limiter.request_permission()
        assert limiter.wait_for_permission(max_wait=5, sleep=clock.advance)

    def test_singleton(self):
        assert RateLimiter.get_instance() is RateLimiter.get_instance()


class TestRetryPolicy:
    """Tests for RetryPolicy and classify_ai_error"""

    @pytest.mark.parametrize("error, kind", [
        (TimeoutError("read timed out"), AIErrorKind.TIMEOUT),
        (ConnectionError("reset by peer"), AIErrorKind.TRANSIENT),
        (RuntimeError("Error code: 429 - too many requests"), AIErrorKind.RATE_LIMIT),
        (RuntimeError("Error code: 401 - invalid api key"), AIErrorKind.PERMANENT),
        (RuntimeError("502 bad gateway"), AIErrorKind.TRANSIENT),
        (RuntimeError("something odd"), AIErrorKind.TRANSIENT),
    ])
    def test_classify(self, error, kind):
        assert classify_ai_error(error) is kind

    def test_backoff_delays(self):
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        assert policy.delay_for(1, AIErrorKind.TRANSIENT) == 1.0
        assert policy.delay_for(2, AIErrorKind.TRANSIENT) == 2.0
        assert policy.delay_for(1, AIErrorKind.TIMEOUT) == 2.0
        assert policy.delay_for(2, AIErrorKind.RATE_LIMIT) == 6.0

    def test_retries_then_succeeds(self):
        sleeps = []
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TimeoutError("timed out")
            return "ok"

        policy = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleeps.append)
        assert policy.call(flaky) == "ok"
        assert sleeps == [2.0, 4.0]

    def test_gives_up_after_max_attempts(self):
        sleeps = []

        def always_fails():
            raise ConnectionError("connection refused")

        policy = RetryPolicy(max_attempts=2, base_delay=0.5, sleep=sleeps.append)
        with pytest.raises(AIRecognitionError) as excinfo:
            policy.call(always_fails)
        assert excinfo.value.kind is AIErrorKind.TRANSIENT
        assert sleeps == [0.5]

    def test_permanent_fails_fast(self):
        sleeps = []
        calls = []

        def unauthorized():
            calls.append(1)
            raise RuntimeError("401 unauthorized")

        policy = RetryPolicy(max_attempts=5, sleep=sleeps.append)
        with pytest.raises(AIRecognitionError) as excinfo:
            policy.call(unauthorized)
        assert excinfo.value.kind is AIErrorKind.PERMANENT
        assert len(calls) == 1
        assert sleeps == []
