"""Sliding window rate limiting backed by process memory or a shared Redis."""

from windowlimit.adapters.rate_limit import (
    AbstractRateLimiter,
    AbstractRateLimiterFactory,
    AbstractReactiveRateLimiter,
    InMemoryRateLimiterFactory,
    LimitCheckResult,
    RedisRateLimiterFactory,
    create_rate_limiter_factory,
    get_rate_limiter_factory,
    reset_rate_limiter_factory,
)
from windowlimit.core.errors import (
    ClosedFactoryError,
    ConfigurationError,
    EvaluationFailedError,
    InvalidRuleError,
    InvalidRuleSetError,
    LimiterError,
    StoreUnavailableError,
)
from windowlimit.core.logging import configure_logging
from windowlimit.core.rules import Rule, RuleSet

__version__ = "0.1.0"

__all__ = [
    "AbstractRateLimiter",
    "AbstractRateLimiterFactory",
    "AbstractReactiveRateLimiter",
    "ClosedFactoryError",
    "ConfigurationError",
    "EvaluationFailedError",
    "InMemoryRateLimiterFactory",
    "InvalidRuleError",
    "InvalidRuleSetError",
    "LimitCheckResult",
    "LimiterError",
    "RedisRateLimiterFactory",
    "Rule",
    "RuleSet",
    "StoreUnavailableError",
    "configure_logging",
    "create_rate_limiter_factory",
    "get_rate_limiter_factory",
    "reset_rate_limiter_factory",
]
