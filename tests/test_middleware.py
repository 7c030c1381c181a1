"""Unit tests for the sliding-window RateLimiter."""
from kbchat.middleware import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestRateLimiter:
    def test_blocks_after_limit(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60, clock=FakeClock())

        assert [limiter.allow("10.0.0.1") for _ in range(3)] == [True, True, False]

    def test_window_expiry_frees_capacity(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)

        assert limiter.allow("10.0.0.1")
        clock.now += 30
        assert not limiter.allow("10.0.0.1")
        assert limiter.retry_after("10.0.0.1") == 31

        clock.now += 30
        assert limiter.allow("10.0.0.1")

    def test_clients_are_counted_separately(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

        assert limiter.allow("10.0.0.1")
        assert limiter.allow("10.0.0.2")
        assert not limiter.allow("10.0.0.1")

    def test_retry_after_unknown_client(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

        assert limiter.retry_after("nobody") == 0

    def test_expired_clients_are_forgotten(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=5, window_seconds=1, clock=clock)

        for n in range(10_000):
            limiter.allow(f"10.0.{n // 256}.{n % 256}")
        assert len(limiter) == 10_000

        clock.now += 1000
        assert limiter.allow("192.168.0.1")

        assert len(limiter) == 1

    def test_rejected_request_does_not_track_unknown_client(self):
        limiter = RateLimiter(max_requests=0, window_seconds=60, clock=FakeClock())

        assert not limiter.allow("10.0.0.1")
        assert len(limiter) == 0
