"""Rate limiting adapters.

This package provides one limiter contract with two counting engines: an
in-memory engine for a single process and a Redis engine shared by every
process pointing at the same store. Factories cache one limiter per rule set.
"""

from windowlimit.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractReactiveRateLimiter,
    LimitCheckResult,
)
from windowlimit.adapters.rate_limit.factory import (
    AbstractRateLimiterFactory,
    InMemoryRateLimiterFactory,
    RedisRateLimiterFactory,
    create_rate_limiter_factory,
    get_rate_limiter_factory,
    reset_rate_limiter_factory,
)
from windowlimit.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from windowlimit.adapters.rate_limit.redis_store import RedisSlidingWindowRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "AbstractRateLimiterFactory",
    "AbstractReactiveRateLimiter",
    "InMemoryRateLimiterFactory",
    "InMemorySlidingWindowRateLimiter",
    "LimitCheckResult",
    "RedisRateLimiterFactory",
    "RedisSlidingWindowRateLimiter",
    "create_rate_limiter_factory",
    "get_rate_limiter_factory",
    "reset_rate_limiter_factory",
]
