"""
Tests for the fixed window rate limiter and security headers.
"""

import pytest

from premier_squares_backend.errors import ClientBlocked, RateLimitExceeded
from premier_squares_backend.middleware import (
    FloodGuard,
    InMemoryBlockList,
    InMemoryCounterStore,
    RateLimiter,
    build_security_headers,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = RateLimiter(limit=3, window_seconds=60, clock=FakeClock())
        assert [limiter.is_allowed("1.2.3.4") for _ in range(4)] == [True, True, True, False]

    def test_window_resets(self):
        clock = FakeClock()
        limiter = RateLimiter(limit=1, window_seconds=60, clock=clock)
        assert limiter.is_allowed("ip")
        assert not limiter.is_allowed("ip")

        clock.now += 60
        assert limiter.is_allowed("ip")

    def test_retry_after_counts_down(self):
        clock = FakeClock()
        limiter = RateLimiter(limit=1, window_seconds=60, clock=clock)
        limiter.check("ip")

        clock.now += 15
        assert limiter.check("ip") == (False, 45)

    def test_identifiers_are_independent(self):
        limiter = RateLimiter(limit=1, window_seconds=60, clock=FakeClock())
        assert limiter.is_allowed("a")
        assert limiter.is_allowed("b")
        assert not limiter.is_allowed("a")

    def test_limiters_can_share_counters(self):
        counters = InMemoryCounterStore()
        clock = FakeClock()
        start = RateLimiter(limit=1, window_seconds=60, counters=counters, clock=clock, name="start_contest")
        winner = RateLimiter(limit=1, window_seconds=60, counters=counters, clock=clock, name="set_winner")

        assert start.is_allowed("ip")
        assert winner.is_allowed("ip")
        assert not start.is_allowed("ip")

    def test_cleanup_drops_expired_windows(self):
        clock = FakeClock()
        limiter = RateLimiter(limit=5, window_seconds=60, clock=clock)
        limiter.check("old")
        clock.now += 30
        limiter.check("recent")
        clock.now += 30

        limiter.cleanup()
        assert list(limiter.counters.requests) == ["general:recent"]

    def test_expired_windows_are_swept_while_counting(self):
        """Counters of clients that went quiet are dropped without a cleanup call."""
        clock = FakeClock(0.0)
        counters = InMemoryCounterStore(sweep_interval=60)
        limiter = RateLimiter(limit=5, window_seconds=1, counters=counters, clock=clock)
        for index in range(10000):
            limiter.check(f"10.0.{index // 256}.{index % 256}")
        assert len(limiter.counters.requests) == 10000

        clock.now = 61.0
        limiter.check("192.168.0.1")
        assert list(limiter.counters.requests) == ["general:192.168.0.1"]

    def test_sweep_keeps_live_windows(self):
        clock = FakeClock(0.0)
        counters = InMemoryCounterStore(sweep_interval=10)
        short = RateLimiter(limit=5, window_seconds=5, counters=counters, clock=clock, name="short")
        long = RateLimiter(limit=5, window_seconds=3600, counters=counters, clock=clock, name="long")
        short.check("ip")
        long.check("ip")

        clock.now = 10.0
        short.check("other")
        assert set(counters.requests) == {"long:ip", "short:other"}


class TestFloodGuard:
    def test_trip_then_block(self):
        clock = FakeClock()
        guard = FloodGuard(RateLimiter(limit=1, window_seconds=60, clock=clock, name="ddos"), block_seconds=300)
        guard.check("ip")

        with pytest.raises(RateLimitExceeded) as exc_info:
            guard.check("ip")
        assert exc_info.value.headers()["RateLimit-Limit"] == "1"

        clock.now += 100
        with pytest.raises(ClientBlocked) as blocked:
            guard.check("ip")
        assert blocked.value.retry_after == 200
        assert blocked.value.status_code == 403

        guard.check("other")

    def test_block_expires(self):
        clock = FakeClock()
        guard = FloodGuard(RateLimiter(limit=1, window_seconds=60, clock=clock, name="ddos"), block_seconds=300)
        guard.check("ip")
        with pytest.raises(RateLimitExceeded):
            guard.check("ip")

        clock.now += 300
        guard.check("ip")
        assert guard.blocklist.blocked == {}

    def test_blocking_drops_expired_entries(self):
        blocklist = InMemoryBlockList()
        blocklist.block("a", now=0, duration=10)
        blocklist.block("b", now=20, duration=10)
        assert blocklist.blocked == {"b": 30}
        assert blocklist.blocked_until("a", now=20) is None
        assert blocklist.blocked_until("b", now=20) == 30


class TestSecurityHeaders:
    def test_hsts_can_be_disabled(self):
        headers = build_security_headers(hsts_enabled=False)
        assert "Strict-Transport-Security" not in headers
        assert headers["X-Content-Type-Options"] == "nosniff"

    def test_hsts_max_age(self):
        headers = build_security_headers(hsts_max_age=600)
        assert headers["Strict-Transport-Security"] == "max-age=600; includeSubDomains"
