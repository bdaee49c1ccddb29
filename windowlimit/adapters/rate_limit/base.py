"""Rate limiter interfaces.

Callers (HTTP filters, RPC interceptors, decorators) depend on these
abstractions, not on a concrete engine, so the counting backend can move
from process memory to a shared Redis store without touching them.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence

from windowlimit.core.errors import ClosedFactoryError
from windowlimit.core.rules import Rule, RuleSet


@dataclass(frozen=True)
class LimitCheckResult:
    """Result of a check-and-increment operation.

    Attributes:
        over_limit: Whether any rule is exceeded after counting this request.
        breached_rule: First rule (in declaration order) that is exceeded.
        counts: Post-increment window totals, aligned with the rule set order.
    """

    over_limit: bool
    breached_rule: Rule | None = None
    counts: tuple[int, ...] = field(default_factory=tuple)

    @property
    def breached_rule_name(self) -> str | None:
        return self.breached_rule.name if self.breached_rule else None

    @classmethod
    def evaluate(cls, rules: Sequence[Rule], counts: Sequence[int]) -> "LimitCheckResult":
        """Compare window totals against their rules.

        A rule is exceeded when its post-increment total is greater than its
        limit, i.e. when the window was already full before this request.
        """
        breached = next(
            (rule for rule, count in zip(rules, counts) if count > rule.limit),
            None,
        )
        return cls(over_limit=breached is not None, breached_rule=breached, counts=tuple(counts))


class LimiterLifecycle:
    """Open/closed flag shared by a factory and every limiter it creates."""

    def __init__(self, owner: str) -> None:
        self._owner = owner
        self._closed = threading.Event()
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> bool:
        """Mark as closed; returns False when it was already closed."""
        with self._close_lock:
            if self._closed.is_set():
                return False
            self._closed.set()
        return True

    def ensure_open(self) -> None:
        if self._closed.is_set():
            raise ClosedFactoryError(
                code="factory_closed",
                message=f"{self._owner} has been closed",
            )


def validate_request(key: str, weight: int) -> None:
    """Reject programming errors before any counter is touched.

    Raises:
        ValueError: If key is empty/not a string or weight is not positive.
    """
    if not isinstance(key, str) or not key:
        raise ValueError("key must be a non-empty string")
    if isinstance(weight, bool) or not isinstance(weight, int) or weight < 1:
        raise ValueError("weight must be an int >= 1")


class AbstractRateLimiter(ABC):
    """Blocking limiter evaluating one rule set for any caller key."""

    def __init__(self, rule_set: RuleSet, lifecycle: LimiterLifecycle) -> None:
        self._rule_set = rule_set
        self._lifecycle = lifecycle

    @property
    def rule_set(self) -> RuleSet:
        return self._rule_set

    def is_over_limit(self, key: str, *, weight: int = 1) -> bool:
        """Count a request for ``key`` and report whether any rule is exceeded.

        The request is counted even when it is reported as over limit.

        Args:
            key: Caller key (API key, client address, tenant id...).
            weight: Units this request costs (default 1).
        """
        return self.is_over_limit_with_result(key, weight=weight).over_limit

    @abstractmethod
    def is_over_limit_with_result(self, key: str, *, weight: int = 1) -> LimitCheckResult:
        """Same as :meth:`is_over_limit`, also naming the breached rule."""
        raise NotImplementedError

    @abstractmethod
    def reset_limit(self, key: str) -> bool:
        """Forget all counters for ``key``; returns whether anything was removed."""
        raise NotImplementedError


class AbstractReactiveRateLimiter(ABC):
    """Non-blocking limiter: every operation is a coroutine."""

    async def is_over_limit_async(self, key: str, *, weight: int = 1) -> bool:
        result = await self.is_over_limit_with_result_async(key, weight=weight)
        return result.over_limit

    @abstractmethod
    async def is_over_limit_with_result_async(
        self, key: str, *, weight: int = 1
    ) -> LimitCheckResult:
        raise NotImplementedError

    @abstractmethod
    async def reset_limit_async(self, key: str) -> bool:
        raise NotImplementedError
