"""
Tests for the per-key token bucket rate limiter.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from ragchat.core.rate_limiter import (
    ANONYMOUS_KEY,
    BucketConfig,
    RateLimiter,
    TokenBucket,
    get_rate_limiter,
)


class TestBucketConfig:
    """Test BucketConfig validation."""

    def test_default_config(self):
        config = BucketConfig()
        assert config.capacity == 10.0
        assert config.refill_rate == pytest.approx(10.0 / 60.0)

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            BucketConfig(capacity=0)

    def test_rejects_negative_refill(self):
        with pytest.raises(ValueError):
            BucketConfig(capacity=5, refill_rate=-1)


class TestTokenBucket:
    """Test single-bucket behavior with a controlled clock."""

    def test_starts_full(self, clock):
        bucket = TokenBucket("k", BucketConfig(capacity=5, refill_rate=1), clock)
        assert bucket.available_tokens == 5

    def test_burst_then_refill_scenario(self, clock):
        """Capacity 5, refill 1/s: 5 admitted, 6th rejected, one more after 1 second."""
        bucket = TokenBucket("k", BucketConfig(capacity=5, refill_rate=1), clock)

        assert all(bucket.try_consume() for _ in range(5))
        assert bucket.try_consume() is False

        clock.advance(1.0)
        assert bucket.try_consume() is True
        assert bucket.try_consume() is False

    def test_rejection_consumes_nothing(self, clock):
        bucket = TokenBucket("k", BucketConfig(capacity=3, refill_rate=1), clock)
        bucket.try_consume(2)

        assert bucket.try_consume(2) is False
        assert bucket.available_tokens == pytest.approx(1)

        clock.advance(1.0)
        assert bucket.try_consume(2) is True

    @pytest.mark.parametrize("cost", [0, -5])
    def test_non_positive_cost_admits_nothing(self, clock, cost):
        bucket = TokenBucket("k", BucketConfig(capacity=2, refill_rate=0), clock)

        assert bucket.try_consume(cost) is False
        assert bucket.available_tokens == 2

    def test_refill_is_clamped_to_capacity(self, clock):
        bucket = TokenBucket("k", BucketConfig(capacity=4, refill_rate=2), clock)
        bucket.try_consume(4)

        clock.advance(3600)
        assert bucket.available_tokens == 4

    def test_partial_refill_accumulates(self, clock):
        bucket = TokenBucket("k", BucketConfig(capacity=2, refill_rate=1), clock)
        bucket.try_consume(2)

        clock.advance(0.5)
        assert bucket.try_consume() is False
        clock.advance(0.5)
        assert bucket.try_consume() is True

    def test_clock_going_backwards_adds_nothing(self, clock):
        bucket = TokenBucket("k", BucketConfig(capacity=2, refill_rate=1), clock)
        bucket.try_consume(2)

        clock.advance(-10)
        assert bucket.try_consume() is False

    def test_admissions_bounded_by_capacity_plus_refill(self, clock):
        """Over a window W, admissions never exceed C + R*W."""
        capacity, rate = 5, 2.0
        bucket = TokenBucket("k", BucketConfig(capacity=capacity, refill_rate=rate), clock)

        admitted = 0
        window = 10.0
        step = 0.05
        elapsed = 0.0
        while elapsed < window:
            for _ in range(3):
                if bucket.try_consume():
                    admitted += 1
            clock.advance(step)
            elapsed += step

        assert admitted <= capacity + rate * window
        assert admitted >= capacity + rate * (window - 1)

    def test_concurrent_consumers_never_over_admit(self):
        """With no refill, exactly `capacity` of many racing calls succeed."""
        bucket = TokenBucket("k", BucketConfig(capacity=50, refill_rate=0))
        barrier = threading.Barrier(8)

        def hammer():
            barrier.wait()
            return sum(1 for _ in range(100) if bucket.try_consume())

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: hammer(), range(8)))

        assert sum(results) == 50


class TestRateLimiter:
    """Test the bucket registry."""

    def test_same_key_reuses_bucket(self, clock):
        limiter = RateLimiter(BucketConfig(capacity=2, refill_rate=0), clock)
        assert limiter.get_bucket("alice") is limiter.get_bucket("alice")
        assert limiter.bucket_count == 1

    def test_distinct_keys_are_independent(self, clock):
        limiter = RateLimiter(BucketConfig(capacity=2, refill_rate=0), clock)

        assert limiter.try_consume("alice")
        assert limiter.try_consume("alice")
        assert limiter.try_consume("alice") is False

        assert limiter.try_consume("bob")
        assert limiter.available_tokens("bob") == 1
        assert limiter.get_bucket("alice") is not limiter.get_bucket("bob")

    def test_empty_key_shares_anonymous_bucket(self, clock):
        limiter = RateLimiter(BucketConfig(capacity=1, refill_rate=0), clock)

        assert limiter.try_consume("")
        assert limiter.try_consume(ANONYMOUS_KEY) is False

    def test_negative_cost_cannot_raise_budget(self, clock):
        limiter = RateLimiter(BucketConfig(capacity=2, refill_rate=0), clock)

        assert limiter.try_consume("alice", -5) is False
        assert limiter.available_tokens("alice") == 2
        assert [limiter.try_consume("alice") for _ in range(3)] == [True, True, False]

    def test_concurrent_first_access_creates_one_bucket(self):
        limiter = RateLimiter(BucketConfig(capacity=20, refill_rate=0))
        barrier = threading.Barrier(16)

        def first_touch(_):
            barrier.wait()
            return limiter.get_bucket("same-key")

        with ThreadPoolExecutor(max_workers=16) as pool:
            buckets = list(pool.map(first_touch, range(16)))

        assert len({id(b) for b in buckets}) == 1
        assert limiter.bucket_count == 1

    def test_concurrent_first_requests_share_budget(self):
        limiter = RateLimiter(BucketConfig(capacity=20, refill_rate=0))
        barrier = threading.Barrier(10)

        def burst(_):
            barrier.wait()
            return sum(1 for _ in range(10) if limiter.try_consume("new-caller"))

        with ThreadPoolExecutor(max_workers=10) as pool:
            admitted = sum(pool.map(burst, range(10)))

        assert admitted == 20

    def test_reset_forgets_buckets(self, clock):
        limiter = RateLimiter(BucketConfig(capacity=1, refill_rate=0), clock)
        limiter.try_consume("alice")
        assert limiter.try_consume("alice") is False

        limiter.reset()

        assert limiter.bucket_count == 0
        assert limiter.try_consume("alice") is True

    def test_singleton(self):
        assert get_rate_limiter() is get_rate_limiter()
