"""In-memory sliding window counter table used by the local limiter.

Thread-safe and dependency free. One table serves one rule; each caller key
owns an ordered run of ``(bucket_index, count)`` pairs covering the trailing
window. Keys whose buckets have all expired are reclaimed lazily on the next
access to the table, so no background sweeper is needed.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field

from windowlimit.core.rules import Rule

logger = logging.getLogger(__name__)


@dataclass
class CounterState:
    """Buckets recorded for one caller key.

    Attributes:
        buckets: ``[bucket_index, count]`` pairs, oldest first.
        total: Sum of the counts held in ``buckets``.
    """

    buckets: deque[list[int]] = field(default_factory=deque)
    total: int = 0

    @property
    def newest_index(self) -> int | None:
        return self.buckets[-1][0] if self.buckets else None

    def drop_before(self, oldest_live: int) -> None:
        while self.buckets and self.buckets[0][0] < oldest_live:
            _, count = self.buckets.popleft()
            self.total -= count

    def add(self, index: int, weight: int) -> None:
        # Never write into the past: a clock step backwards lands in the newest bucket.
        if self.buckets and self.buckets[-1][0] >= index:
            self.buckets[-1][1] += weight
        else:
            self.buckets.append([index, weight])
        self.total += weight


class SlidingWindowCounterTable:
    """Per-rule table of sliding window counters keyed by caller key.

    Entries are kept in least-recently-touched order, so expired entries
    always sit at the front and the reclaim sweep stops at the first live one.
    """

    def __init__(self, rule: Rule) -> None:
        self._rule = rule
        self._store: OrderedDict[str, CounterState] = OrderedDict()
        self._lock = threading.Lock()
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"SlidingWindowCounterTable(rule={self._rule!r}, size={len(self._store)}, "
            f"evictions={self._evictions})"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    @property
    def rule(self) -> Rule:
        return self._rule

    def record(self, key: str, now: float, weight: int = 1) -> int:
        """Add ``weight`` to the bucket for ``now`` and return the window total.

        Args:
            key: Caller key.
            now: Current UNIX time in seconds.
            weight: Units to add to the current bucket.

        Returns:
            Sum of all live buckets for ``key`` after the increment.
        """
        index = self._rule.bucket_index(now)
        oldest_live = self._rule.oldest_live_index(index)

        with self._lock:
            self._reclaim_expired_locked(oldest_live)

            state = self._store.get(key)
            if state is None:
                state = CounterState()
                self._store[key] = state
            else:
                state.drop_before(oldest_live)

            state.add(index, weight)
            self._store.move_to_end(key)
            return state.total

    def reset(self, key: str) -> bool:
        """Forget every bucket recorded for ``key``."""
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        """Remove all entries and reset counters."""
        with self._lock:
            self._store.clear()
            self._evictions = 0

    def stats(self) -> dict[str, int | str | None]:
        """Return lightweight table metrics without exposing keys."""
        with self._lock:
            return {
                "rule": self._rule.name,
                "window_seconds": self._rule.window_seconds,
                "precision": self._rule.precision,
                "entries": len(self._store),
                "evictions": self._evictions,
            }

    def _reclaim_expired_locked(self, oldest_live: int) -> None:
        reclaimed = 0
        while self._store:
            key, state = next(iter(self._store.items()))
            newest = state.newest_index
            if newest is not None and newest >= oldest_live:
                break
            del self._store[key]
            reclaimed += 1

        if reclaimed:
            self._evictions += reclaimed
            logger.debug(
                "rate_limit.memory.reclaimed",
                extra={
                    "rule_name": self._rule.name,
                    "reclaimed": reclaimed,
                    "size": len(self._store),
                },
            )
