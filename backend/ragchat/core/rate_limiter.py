"""
Per-caller token bucket rate limiting.

Every caller key gets its own TokenBucket, created lazily on first use and
reused afterwards. Buckets refill on access instead of on a timer:

    tokens = min(capacity, tokens + elapsed * refill_rate)

Admission decisions never raise. A rejected call consumes nothing.

Usage:
    limiter = get_rate_limiter()
    if not limiter.try_consume("user-42"):
        ...  # respond 429
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ragchat.core.config import get_config

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]

ANONYMOUS_KEY = "anonymous"


@dataclass(frozen=True)
class BucketConfig:
    """Shape of every bucket created by a RateLimiter."""
    capacity: float = 10.0
    refill_rate: float = 10.0 / 60.0  # tokens per second

    def __post_init__(self):
        if self.capacity <= 0:
            raise ValueError("capacity must be positive")
        if self.refill_rate < 0:
            raise ValueError("refill_rate must not be negative")


class TokenBucket:
    """
    A single key's bucket.

    Starts full. All reads and writes of the token count happen under the
    bucket's own lock so two concurrent callers can never spend the same token.
    """

    def __init__(self, key: str, config: BucketConfig, clock: Clock = time.monotonic):
        self.key = key
        self.config = config
        self._clock = clock
        self._tokens = float(config.capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(
                float(self.config.capacity),
                self._tokens + elapsed * self.config.refill_rate,
            )
        # A clock that steps backwards must not move the refill point back
        self._last_refill = max(self._last_refill, now)

    def try_consume(self, cost: float = 1) -> bool:
        """Take `cost` tokens if available. Returns False without consuming otherwise.

        A non-positive cost is never admitted.
        """
        if cost <= 0:
            return False
        with self._lock:
            self._refill()
            if self._tokens >= cost:
                self._tokens -= cost
                return True
            return False

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens


class RateLimiter:
    """
    Registry of token buckets keyed by caller.

    Lookups of existing buckets take no registry-wide lock. The registry lock is
    held only while a brand-new key's bucket is created, and the double check
    inside it guarantees one bucket per key under concurrent first access.
    """

    def __init__(self, config: Optional[BucketConfig] = None, clock: Clock = time.monotonic):
        self.config = config or BucketConfig()
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._registry_lock = threading.Lock()

        logger.info(
            "RateLimiter initialized",
            capacity=self.config.capacity,
            refill_rate=self.config.refill_rate,
        )

    def get_bucket(self, key: str) -> TokenBucket:
        """Get or create the bucket for a key."""
        key = key or ANONYMOUS_KEY
        bucket = self._buckets.get(key)
        if bucket is None:
            with self._registry_lock:
                bucket = self._buckets.get(key)
                if bucket is None:
                    bucket = TokenBucket(key, self.config, self._clock)
                    self._buckets[key] = bucket
                    logger.debug("Created rate limit bucket", key=key, bucket_count=len(self._buckets))
        return bucket

    def try_consume(self, key: str, cost: float = 1) -> bool:
        """
        Decide whether a call from `key` may proceed.

        Args:
            key: Caller key (authenticated identity or network origin)
            cost: Tokens the call costs

        Returns:
            True if admitted, False if the caller must be throttled
        """
        admitted = self.get_bucket(key).try_consume(cost)
        if not admitted:
            logger.info("Rate limit exceeded", key=key)
        return admitted

    def available_tokens(self, key: str) -> float:
        """Tokens currently available to a key (creates its bucket if needed)."""
        return self.get_bucket(key).available_tokens

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def reset(self) -> None:
        """Forget every bucket."""
        with self._registry_lock:
            self._buckets.clear()
        logger.info("RateLimiter reset")


# Singleton instance
_rate_limiter: Optional[RateLimiter] = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide rate limiter, built from configuration."""
    global _rate_limiter
    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                rl_config = get_config().rate_limit
                _rate_limiter = RateLimiter(
                    BucketConfig(capacity=rl_config.capacity, refill_rate=rl_config.refill_rate)
                )
    return _rate_limiter
