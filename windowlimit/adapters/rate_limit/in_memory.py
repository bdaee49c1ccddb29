"""In-memory sliding window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: each rule's counter table guards its own state with a lock.
- Never blocks on I/O.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from windowlimit.adapters.rate_limit.base import (
    AbstractRateLimiter,
    LimitCheckResult,
    LimiterLifecycle,
    validate_request,
)
from windowlimit.core.rules import RuleSet
from windowlimit.utils.counter_table import SlidingWindowCounterTable
from windowlimit.utils.redaction import hash_limiter_key

logger = logging.getLogger(__name__)


class InMemorySlidingWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter approximating a sliding window with per-rule buckets.

    Each rule owns an independent counter table, so two rules never share
    counts even when their windows coincide. Counts are a plain sum of the
    live buckets; a burst straddling a bucket boundary can therefore exceed
    the intended rate by up to one bucket's worth (one whole window when
    ``precision == 1``).

    Important:
        This limiter is per-process only. If the service runs several
        workers, each one enforces its own independent limits.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        lifecycle: LimiterLifecycle | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory limiter.

        Args:
            rule_set: Rules evaluated for every key.
            lifecycle: Open/closed state of the owning factory.
            clock: Time source function returning UNIX time in seconds.
        """
        super().__init__(rule_set, lifecycle or LimiterLifecycle(type(self).__name__))
        self._clock = clock
        self._tables = tuple(SlidingWindowCounterTable(rule) for rule in rule_set)

    def is_over_limit_with_result(self, key: str, *, weight: int = 1) -> LimitCheckResult:
        """Count a request for ``key`` against every rule.

        Raises:
            ValueError: If key is empty or weight is invalid.
            ClosedFactoryError: If the owning factory has been closed.
        """
        validate_request(key, weight)
        self._lifecycle.ensure_open()

        now = self._clock()
        counts = [table.record(key, now, weight) for table in self._tables]
        result = LimitCheckResult.evaluate(self._rule_set.rules, counts)

        if result.over_limit:
            logger.warning(
                "rate_limit.over_limit",
                extra={
                    "backend": "memory",
                    "key_hash": hash_limiter_key(key),
                    "rule_name": result.breached_rule_name,
                    "limit": result.breached_rule.limit,
                    "window_s": result.breached_rule.window_seconds,
                },
            )
        return result

    def reset_limit(self, key: str) -> bool:
        validate_request(key, 1)
        self._lifecycle.ensure_open()

        removed = [table.reset(key) for table in self._tables]
        return any(removed)

    def clear(self) -> None:
        """Drop every counter held by this limiter."""
        for table in self._tables:
            table.clear()

    def stats(self) -> list[dict[str, int | str | None]]:
        """Per-rule table metrics, in rule set order."""
        return [table.stats() for table in self._tables]
