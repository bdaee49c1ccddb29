"""Rate limit rules and rule sets.

A :class:`Rule` describes one limit ("at most ``limit`` operations per
``window_seconds``"), approximated with ``precision`` equal buckets. A
:class:`RuleSet` groups the rules a limiter evaluates together; rule sets are
compared by value so they can key the limiter cache.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Iterable, Iterator

from windowlimit.core.errors import InvalidRuleError, InvalidRuleSetError


def _duration_to_seconds(duration: timedelta | int | float | None) -> int:
    if duration is None:
        raise InvalidRuleError(
            code="invalid_rule",
            message="duration can not be None",
            details={"field": "duration"},
        )

    if isinstance(duration, timedelta):
        seconds = duration.total_seconds()
    elif isinstance(duration, (int, float)) and not isinstance(duration, bool):
        seconds = float(duration)
    else:
        raise InvalidRuleError(
            code="invalid_rule",
            message=f"duration must be a timedelta or a number of seconds, got {type(duration).__name__}",
            details={"field": "duration"},
        )

    if not math.isfinite(seconds):
        raise InvalidRuleError(
            code="invalid_rule",
            message=f"duration must be finite, got {seconds}",
            details={"field": "duration"},
        )

    # Sub-second parts are dropped; a window shorter than one second is rejected by Rule.
    return math.trunc(seconds)


@dataclass(frozen=True)
class Rule:
    """Immutable description of one rate limit.

    Attributes:
        window_seconds: Length of the trailing window.
        limit: Maximum number of operations allowed within the window.
        precision: Number of buckets the window is divided into; defaults to
            one bucket per second of the window.
        name: Optional descriptive name, reported when the rule is breached.
    """

    window_seconds: int
    limit: int
    precision: int | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.window_seconds, bool) or not isinstance(self.window_seconds, int):
            raise InvalidRuleError(
                code="invalid_rule",
                message="window_seconds must be an int",
                details={"field": "window_seconds"},
            )
        if self.window_seconds <= 0:
            raise InvalidRuleError(
                code="invalid_rule",
                message=f"window must be positive, got {self.window_seconds}s",
                details={"field": "window_seconds", "window_seconds": self.window_seconds},
            )
        if self.precision is None:
            object.__setattr__(self, "precision", self.window_seconds)
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit <= 0:
            raise InvalidRuleError(
                code="invalid_rule",
                message=f"limit must be a positive int, got {self.limit!r}",
                details={"field": "limit"},
            )
        if (
            isinstance(self.precision, bool)
            or not isinstance(self.precision, int)
            or not 1 <= self.precision <= self.window_seconds
        ):
            raise InvalidRuleError(
                code="invalid_rule",
                message=(
                    f"precision must be between 1 and {self.window_seconds}, "
                    f"got {self.precision!r}"
                ),
                details={
                    "field": "precision",
                    "window_seconds": self.window_seconds,
                    "hint": "precision is the number of buckets per window",
                },
            )
        if self.name is not None and not isinstance(self.name, str):
            raise InvalidRuleError(
                code="invalid_rule",
                message="name must be a string or None",
                details={"field": "name"},
            )

    @classmethod
    def of(cls, duration: timedelta | int | float, limit: int) -> "Rule":
        """Create a rule counting in one-second buckets.

        Args:
            duration: Window length, as a timedelta or in seconds. Any
                fraction of a second is dropped.
            limit: Maximum operations allowed within the window.

        Raises:
            InvalidRuleError: If the duration or limit is invalid.
        """
        return cls(window_seconds=_duration_to_seconds(duration), limit=limit)

    def with_precision(self, precision: int) -> "Rule":
        """Return a copy approximating a sliding window with ``precision`` buckets."""
        return replace(self, precision=precision)

    def with_name(self, name: str | None) -> "Rule":
        """Return a copy carrying a descriptive name (useful for metrics)."""
        return replace(self, name=name)

    @property
    def duration(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)

    @property
    def bucket_width(self) -> float:
        """Width of one bucket, in seconds."""
        return self.window_seconds / self.precision

    def bucket_index(self, now: float) -> int:
        """Index of the bucket containing ``now``.

        Equivalent to ``floor(now / bucket_width)`` without accumulating
        float error when the width is not a whole number of seconds.
        """
        return math.floor(now * self.precision / self.window_seconds)

    def bucket_start_ms(self, index: int) -> int:
        """Start timestamp of bucket ``index`` in epoch milliseconds."""
        return (index * self.window_seconds * 1000) // self.precision

    def oldest_live_index(self, current_index: int) -> int:
        """Oldest bucket index still inside the window ending at ``current_index``."""
        return current_index - self.precision + 1


class RuleSet:
    """Immutable collection of distinct rules evaluated together.

    Equality and hashing are structural: two rule sets holding the same rules
    are equal regardless of declaration order. Iteration follows declaration
    order, which decides the breached rule reported when several rules are
    over limit at once.
    """

    __slots__ = ("_rules", "_members")

    def __init__(self, rules: Iterable[Rule]) -> None:
        if rules is None:
            raise InvalidRuleSetError(
                code="invalid_rule_set",
                message="rule set can not be None",
            )

        ordered: list[Rule] = []
        seen: set[Rule] = set()
        for rule in rules:
            if not isinstance(rule, Rule):
                raise InvalidRuleSetError(
                    code="invalid_rule_set",
                    message=f"rule set members must be Rule instances, got {type(rule).__name__}",
                )
            if rule not in seen:
                seen.add(rule)
                ordered.append(rule)

        if not ordered:
            raise InvalidRuleSetError(
                code="invalid_rule_set",
                message="rule set must contain at least one rule",
            )

        self._rules: tuple[Rule, ...] = tuple(ordered)
        self._members: frozenset[Rule] = frozenset(seen)

    @classmethod
    def coerce(cls, rules: "RuleSet | Iterable[Rule] | Rule | None") -> "RuleSet":
        """Accept a RuleSet, a single Rule or any iterable of rules."""
        if isinstance(rules, RuleSet):
            return rules
        if isinstance(rules, Rule):
            return cls((rules,))
        return cls(rules)  # type: ignore[arg-type]

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    @property
    def longest_window_seconds(self) -> int:
        return max(rule.window_seconds for rule in self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule: object) -> bool:
        return rule in self._members

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RuleSet):
            return NotImplemented
        return self._members == other._members

    def __hash__(self) -> int:
        return hash(self._members)

    def __repr__(self) -> str:
        return f"RuleSet({list(self._rules)!r})"
