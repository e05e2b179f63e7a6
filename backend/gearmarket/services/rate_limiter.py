"""Fixed-window rate limiting on top of the key-value cache."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from gearmarket.core.exceptions import RateLimitExceededError
from gearmarket.services.cache import KeyValueCache

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600
DAY_SECONDS = 86400


def cache_key(prefix: str, action: str, identity: str) -> str:
    """Build a cache key whose identity part is hashed.

    Hashing keeps addresses out of the cache and stops delimiter injection
    through user-supplied identities.
    """
    digest = hashlib.sha256(identity.strip().lower().encode("utf-8")).hexdigest()
    return f"{prefix}:{action}:{digest}"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Hourly + daily limits for one abuse-prone action."""

    action: str
    hourly_limit: int
    daily_limit: int
    challenge_threshold: int = 3

    def hourly_key(self, identity: str) -> str:
        return cache_key("rl:hour", self.action, identity)

    def daily_key(self, identity: str) -> str:
        return cache_key("rl:day", self.action, identity)


class FixedWindowRateLimiter:
    """Counters whose window is anchored to the first request.

    The expiry is only set on a counter's first increment, so every request
    inside a window shares one reset time. The retry hint reported to callers
    is the nominal window length, not the true time remaining.
    """

    def __init__(self, cache: KeyValueCache) -> None:
        self._cache = cache

    def increment(self, key: str, window_seconds: int) -> int:
        return self._cache.increment(key, window_seconds)

    def hit(self, policy: RateLimitPolicy, identity: str) -> int:
        """Record one attempt against both tiers.

        The daily tier is counted and checked first, then the hourly tier.

        Returns:
            int: the hourly attempt count, used for challenge escalation

        Raises:
            RateLimitExceededError: when either tier is over its limit
        """
        daily_count = self.increment(policy.daily_key(identity), DAY_SECONDS)
        if daily_count > policy.daily_limit:
            logger.warning("Daily rate limit hit for action=%s count=%d", policy.action, daily_count)
            raise RateLimitExceededError(
                "Too many requests today. Please try again tomorrow.",
                retry_after=DAY_SECONDS,
            )

        hourly_count = self.increment(policy.hourly_key(identity), HOUR_SECONDS)
        if hourly_count > policy.hourly_limit:
            logger.warning("Hourly rate limit hit for action=%s count=%d", policy.action, hourly_count)
            raise RateLimitExceededError(
                "Too many requests. Please try again in an hour.",
                retry_after=HOUR_SECONDS,
            )

        return hourly_count
