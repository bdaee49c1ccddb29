"""Accuracy bounds of bucketed counting under generated traffic."""

from __future__ import annotations

import random
from bisect import bisect_left
from unittest.mock import Mock

import pytest

from windowlimit.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from windowlimit.core.rules import Rule, RuleSet


def _accepted_times(rule: Rule, times: list[float]) -> list[float]:
    clock = Mock(return_value=times[0])
    limiter = InMemorySlidingWindowRateLimiter(RuleSet([rule]), clock=clock)
    accepted = []
    for t in times:
        clock.return_value = t
        if not limiter.is_over_limit("k"):
            accepted.append(t)
    return accepted


def _traffic(seed: int, start: float = 1000.0, span: float = 180.0, n: int = 900) -> list[float]:
    rng = random.Random(seed)
    return sorted(start + rng.uniform(0, span) for _ in range(n))


def _count_in(accepted: list[float], lo: float, hi: float) -> int:
    return bisect_left(accepted, hi) - bisect_left(accepted, lo)


@pytest.mark.parametrize("seed", [1, 7, 42])
@pytest.mark.parametrize("precision", [1, 6, 60])
def test_aligned_windows_never_exceed_limit(seed: int, precision: int) -> None:
    rule = Rule.of(60, 10).with_precision(precision)
    accepted = _accepted_times(rule, _traffic(seed))

    width = rule.bucket_width
    first = rule.bucket_index(accepted[0])
    last = rule.bucket_index(accepted[-1])
    for index in range(first - precision, last + 1):
        lo = index * width
        assert _count_in(accepted, lo, lo + rule.window_seconds) <= rule.limit


@pytest.mark.parametrize("seed", [3, 11])
@pytest.mark.parametrize("precision", [1, 6, 60])
def test_rolling_windows_stay_within_one_extra_limit(seed: int, precision: int) -> None:
    rule = Rule.of(60, 10).with_precision(precision)
    accepted = _accepted_times(rule, _traffic(seed))

    for t in accepted:
        assert _count_in(accepted, t, t + rule.window_seconds) <= 2 * rule.limit


def test_single_bucket_allows_burst_across_boundary() -> None:
    rule = Rule.of(60, 10).with_precision(1)
    times = [1079.5] * 10 + [1080.0] * 10

    accepted = _accepted_times(rule, times)

    # Twenty accepted within one second: one full window on each side of the boundary.
    assert len(accepted) == 20


def test_default_buckets_reject_the_same_burst() -> None:
    rule = Rule.of(60, 10)
    times = [1079.5] * 10 + [1080.0] * 10

    accepted = _accepted_times(rule, times)

    assert len(accepted) == 10
