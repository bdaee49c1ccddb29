"""Redis-backed sliding window rate limiter.

Every service instance pointing at the same Redis shares one logical counter
per caller key. The increment, expiry refresh and window sum for one
``(key, rule)`` pair run inside a single Lua script, so Redis executes them
atomically: two processes can never both observe "under limit" for the last
free slot.

Bucket keys look like ``{<prefix>:<caller key>}:<window>:<precision>:<bucket
start ms>``. The hash tag keeps every bucket of a caller key on one cluster
slot, and each bucket expires ``window + bucket_width`` after its last write,
so exhausted buckets clean themselves up.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from typing import Any, Callable

import redis
import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from windowlimit.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractReactiveRateLimiter,
    LimitCheckResult,
    LimiterLifecycle,
    validate_request,
)
from windowlimit.core.errors import EvaluationFailedError, StoreUnavailableError
from windowlimit.core.rules import Rule, RuleSet
from windowlimit.utils.redaction import hash_limiter_key, mask_url

logger = logging.getLogger(__name__)


# KEYS[1]    bucket for "now"
# KEYS[2..n] older buckets still inside the window
# ARGV[1]    weight of this request
# ARGV[2]    bucket expiry in milliseconds (window + bucket width)
SLIDING_WINDOW_SCRIPT = """
local total = redis.call('INCRBY', KEYS[1], tonumber(ARGV[1]))
redis.call('PEXPIRE', KEYS[1], tonumber(ARGV[2]))
for i = 2, #KEYS do
    local count = redis.call('GET', KEYS[i])
    if count then
        total = total + tonumber(count)
    end
end
return total
"""


def bucket_keys(prefix: str, key: str, rule: Rule, now: float) -> list[str]:
    """Keys of every live bucket for ``key`` under ``rule``, newest first."""
    current = rule.bucket_index(now)
    base = f"{{{prefix}:{key}}}:{rule.window_seconds}:{rule.precision}"
    return [
        f"{base}:{rule.bucket_start_ms(index)}"
        for index in range(current, rule.oldest_live_index(current) - 1, -1)
    ]


def bucket_expiry_ms(rule: Rule) -> int:
    """Bucket time-to-live: one window plus one bucket width, in milliseconds."""
    return rule.window_seconds * 1000 + math.ceil(rule.window_seconds * 1000 / rule.precision)


class RedisConnection:
    """Lazily opened Redis clients shared by every limiter of one factory.

    The blocking and asyncio clients are each created on first use and
    published once; reads of a published client take no lock. Two
    near-simultaneous first uses may both build a client: only the first one
    published is kept, the other is closed right away and never serves a
    request.
    """

    def __init__(
        self,
        url: str,
        lifecycle: LimiterLifecycle,
        *,
        socket_timeout: float | None = None,
        socket_connect_timeout: float | None = None,
        max_connections: int | None = None,
        client_factory: Callable[[], Any] | None = None,
        async_client_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._url = url
        self._lifecycle = lifecycle
        options: dict[str, Any] = {
            "socket_timeout": socket_timeout,
            "socket_connect_timeout": socket_connect_timeout,
        }
        if max_connections is not None:
            options["max_connections"] = max_connections

        self._client_factory = client_factory or (lambda: redis.Redis.from_url(url, **options))
        self._async_client_factory = async_client_factory or (
            lambda: aioredis.Redis.from_url(url, **options)
        )
        self._publish_lock = threading.Lock()
        self._sync: tuple[Any, Any] | None = None
        self._async: tuple[Any, Any] | None = None
        self._closing: set[asyncio.Task[None]] = set()

    @property
    def url(self) -> str:
        return mask_url(self._url)

    def client(self) -> tuple[Any, Any]:
        """Return the blocking client and its registered bucket script."""
        self._lifecycle.ensure_open()
        published = self._sync
        if published is not None:
            return published

        candidate = self._client_factory()
        entry = (candidate, candidate.register_script(SLIDING_WINDOW_SCRIPT))
        with self._publish_lock:
            if self._sync is None and not self._lifecycle.closed:
                self._sync = entry
                logger.info("rate_limit.store.connected", extra={"store": self.url, "mode": "sync"})
                return entry
            published = self._sync

        candidate.close()
        if published is None:
            self._lifecycle.ensure_open()
        logger.debug("rate_limit.store.surplus_client_closed", extra={"mode": "sync"})
        return published

    async def async_client(self) -> tuple[Any, Any]:
        """Return the asyncio client and its registered bucket script.

        The client is bound to the event loop that first opened it.
        """
        self._lifecycle.ensure_open()
        published = self._async
        if published is not None:
            return published

        candidate = self._async_client_factory()
        entry = (candidate, candidate.register_script(SLIDING_WINDOW_SCRIPT))
        with self._publish_lock:
            if self._async is None and not self._lifecycle.closed:
                self._async = entry
                logger.info("rate_limit.store.connected", extra={"store": self.url, "mode": "async"})
                return entry
            published = self._async

        await candidate.aclose()
        if published is None:
            self._lifecycle.ensure_open()
        logger.debug("rate_limit.store.surplus_client_closed", extra={"mode": "async"})
        return published

    def close(self) -> None:
        """Close the blocking client and drop both clients.

        Called from inside a running event loop, the asyncio client's close
        is scheduled on that loop. Without a running loop its connections
        can not be awaited: the pool is reset and its sockets are released
        when garbage collected. Async users should call :meth:`aclose`.
        """
        with self._publish_lock:
            sync_entry, self._sync = self._sync, None
            async_entry, self._async = self._async, None

        if sync_entry is not None:
            sync_entry[0].close()
        if async_entry is not None:
            self._discard_async_client(async_entry[0])

    def _discard_async_client(self, client: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            pool = getattr(client, "connection_pool", None)
            if pool is not None:
                pool.reset()
            logger.warning(
                "rate_limit.store.async_client_abandoned",
                extra={"store": self.url, "hint": "call aclose() from the event loop"},
            )
            return

        task = loop.create_task(client.aclose())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def aclose(self) -> None:
        """Close both clients from inside an event loop."""
        with self._publish_lock:
            sync_entry, self._sync = self._sync, None
            async_entry, self._async = self._async, None

        if sync_entry is not None:
            sync_entry[0].close()
        if async_entry is not None:
            await async_entry[0].aclose()


class RedisSlidingWindowRateLimiter(AbstractRateLimiter, AbstractReactiveRateLimiter):
    """Distributed sliding window limiter with blocking and asyncio APIs.

    Each rule is evaluated by its own script call; all calls for one check
    are pipelined into a single round trip. Store failures are raised, never
    reported as "under limit", and never retried here since a blind retry
    could count the request twice.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        connection: RedisConnection,
        lifecycle: LimiterLifecycle,
        *,
        key_prefix: str = "ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(rule_set, lifecycle)
        self._connection = connection
        self._key_prefix = key_prefix
        self._clock = clock

    def _script_calls(self, key: str, weight: int) -> list[tuple[list[str], list[int]]]:
        now = self._clock()
        return [
            (bucket_keys(self._key_prefix, key, rule, now), [weight, bucket_expiry_ms(rule)])
            for rule in self._rule_set
        ]

    def _live_keys(self, key: str) -> list[str]:
        now = self._clock()
        return [k for rule in self._rule_set for k in bucket_keys(self._key_prefix, key, rule, now)]

    def _translate(self, exc: RedisError, key: str) -> Exception:
        extra = {"store": self._connection.url, "key_hash": hash_limiter_key(key), "error": str(exc)}
        if isinstance(exc, (RedisConnectionError, RedisTimeoutError)):
            logger.error("rate_limit.store.unavailable", extra=extra)
            return StoreUnavailableError(
                code="store_unavailable",
                message=f"Redis store unavailable: {exc}",
                details={"store": self._connection.url},
            )
        logger.error("rate_limit.store.evaluation_failed", extra=extra)
        return EvaluationFailedError(
            code="evaluation_failed",
            message=f"Redis rejected the rate limit evaluation: {exc}",
            details={
                "store": self._connection.url,
                "rule_names": [rule.name or "" for rule in self._rule_set],
            },
        )

    def _to_result(self, key: str, replies: list[Any]) -> LimitCheckResult:
        try:
            counts = [int(reply) for reply in replies]
        except (TypeError, ValueError) as exc:
            raise EvaluationFailedError(
                code="evaluation_failed",
                message=f"Unexpected reply from the rate limit script: {replies!r}",
                details={"store": self._connection.url},
            ) from exc

        result = LimitCheckResult.evaluate(self._rule_set.rules, counts)
        if result.over_limit:
            logger.warning(
                "rate_limit.over_limit",
                extra={
                    "backend": "redis",
                    "key_hash": hash_limiter_key(key),
                    "rule_name": result.breached_rule_name,
                    "limit": result.breached_rule.limit,
                    "window_s": result.breached_rule.window_seconds,
                },
            )
        return result

    def is_over_limit_with_result(self, key: str, *, weight: int = 1) -> LimitCheckResult:
        """Count a request for ``key`` in Redis, blocking until Redis answers.

        Raises:
            ValueError: If key is empty or weight is invalid.
            ClosedFactoryError: If the owning factory has been closed.
            StoreUnavailableError: On connection failures or timeouts.
            EvaluationFailedError: If Redis rejects the script.
        """
        validate_request(key, weight)
        client, script = self._connection.client()

        try:
            pipe = client.pipeline(transaction=False)
            for keys, args in self._script_calls(key, weight):
                script(keys=keys, args=args, client=pipe)
            replies = pipe.execute()
        except RedisError as exc:
            raise self._translate(exc, key) from exc

        return self._to_result(key, replies)

    async def is_over_limit_with_result_async(
        self, key: str, *, weight: int = 1
    ) -> LimitCheckResult:
        """Non-blocking variant of :meth:`is_over_limit_with_result`."""
        validate_request(key, weight)
        client, script = await self._connection.async_client()

        try:
            pipe = client.pipeline(transaction=False)
            for keys, args in self._script_calls(key, weight):
                await script(keys=keys, args=args, client=pipe)
            replies = await pipe.execute()
        except RedisError as exc:
            raise self._translate(exc, key) from exc

        return self._to_result(key, replies)

    def reset_limit(self, key: str) -> bool:
        validate_request(key, 1)
        client, _ = self._connection.client()

        try:
            removed = client.delete(*self._live_keys(key))
        except RedisError as exc:
            raise self._translate(exc, key) from exc
        return bool(removed)

    async def reset_limit_async(self, key: str) -> bool:
        validate_request(key, 1)
        client, _ = await self._connection.async_client()

        try:
            removed = await client.delete(*self._live_keys(key))
        except RedisError as exc:
            raise self._translate(exc, key) from exc
        return bool(removed)
