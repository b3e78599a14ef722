"""
Tests for the fixed-window rate limit cache.
"""
from caching.rate_limit_cache import RateLimitCache


class TestRateLimitCache:

    def test_allows_up_to_max_requests(self, clock):
        limiter = RateLimitCache(window_seconds=60, max_requests=3, clock=clock)
        results = [limiter.check("tenant-1:10.0.0.1") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[2].remaining == 0
        assert results[3].retry_after == 60

    def test_window_resets_at_boundary(self, clock):
        limiter = RateLimitCache(window_seconds=60, max_requests=1, clock=clock)
        assert limiter.check("k").allowed
        assert not limiter.check("k").allowed

        clock.advance(61)
        assert limiter.check("k").allowed

    def test_keys_are_independent(self, clock):
        limiter = RateLimitCache(window_seconds=60, max_requests=1, clock=clock)
        assert limiter.check("tenant-1:10.0.0.1").allowed
        assert limiter.check("tenant-1:10.0.0.2").allowed
        assert not limiter.check("tenant-1:10.0.0.1").allowed

    def test_sweep_and_stats(self, clock):
        limiter = RateLimitCache(window_seconds=60, max_requests=5, clock=clock)
        limiter.check("a")
        clock.advance(30)
        limiter.check("b")
        clock.advance(31)

        stats = limiter.get_stats()
        assert stats == {
            'totalEntries': 2,
            'activeEntries': 1,
            'expiredEntries': 1,
            'rateLimitWindow': 60,
            'maxRequestsPerWindow': 5,
        }
        assert limiter.sweep() == 1
        assert limiter.get_stats()['totalEntries'] == 1

    def test_clear(self, clock):
        limiter = RateLimitCache(clock=clock)
        limiter.check("a")
        limiter.check("b")
        assert limiter.clear() == 2
        assert limiter.get_stats()['totalEntries'] == 0
