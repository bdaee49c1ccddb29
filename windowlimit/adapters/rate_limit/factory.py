"""Factories creating and caching rate limiter instances.

A factory hands out exactly one limiter per distinct rule set: rule sets are
compared by value, so two callers configuring the same rules independently
share one limiter (one counter table, or one Redis connection).
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Callable, Generic, Iterable, TypeVar

from windowlimit.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AbstractReactiveRateLimiter,
    LimiterLifecycle,
)
from windowlimit.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from windowlimit.adapters.rate_limit.redis_store import (
    RedisConnection,
    RedisSlidingWindowRateLimiter,
)
from windowlimit.core.config import Settings, settings
from windowlimit.core.errors import ConfigurationError
from windowlimit.core.rules import Rule, RuleSet

logger = logging.getLogger(__name__)

L = TypeVar("L", bound=AbstractRateLimiter)

RuleSetLike = RuleSet | Iterable[Rule] | Rule


class AbstractRateLimiterFactory(ABC, Generic[L]):
    """Memoizing limiter factory.

    The first caller for a rule set publishes a placeholder future under a
    narrow lock, builds the limiter outside that lock and resolves the
    future; concurrent callers for the same rule set wait on that future.
    Lookups of an already published rule set take no lock.
    """

    def __init__(self) -> None:
        self._lifecycle = LimiterLifecycle(type(self).__name__)
        self._instances: dict[RuleSet, Future[L]] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "AbstractRateLimiterFactory[L]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._lifecycle.closed

    def get_instance(self, rules: RuleSetLike) -> L:
        """Return the limiter for ``rules``, creating it on first request.

        Args:
            rules: A RuleSet, a single Rule or any iterable of rules.

        Raises:
            InvalidRuleSetError: If ``rules`` is None, empty or holds non-rules.
            ClosedFactoryError: If the factory has been closed.
        """
        return self._lookup_instance(rules)

    def _lookup_instance(self, rules: RuleSetLike) -> L:
        rule_set = RuleSet.coerce(rules)
        self._lifecycle.ensure_open()

        future = self._instances.get(rule_set)
        if future is None:
            owner = False
            with self._lock:
                self._lifecycle.ensure_open()
                future = self._instances.get(rule_set)
                if future is None:
                    future = Future()
                    self._instances[rule_set] = future
                    owner = True
            if owner:
                self._build(rule_set, future)

        limiter = future.result()
        # A limiter published just before close() must not escape.
        self._lifecycle.ensure_open()
        return limiter

    def _build(self, rule_set: RuleSet, future: Future[L]) -> None:
        try:
            limiter = self._create(rule_set)
        except BaseException as exc:
            with self._lock:
                if self._instances.get(rule_set) is future:
                    del self._instances[rule_set]
            future.set_exception(exc)
            raise

        future.set_result(limiter)
        logger.info(
            "rate_limit.factory.instance_created",
            extra={
                "factory": type(self).__name__,
                "rule_names": [rule.name for rule in rule_set],
                "windows_s": [rule.window_seconds for rule in rule_set],
                "cached_instances": len(self._instances),
            },
        )

    @abstractmethod
    def _create(self, rule_set: RuleSet) -> L:
        """Build a new limiter for ``rule_set``."""
        raise NotImplementedError

    def _release(self, limiters: list[L]) -> None:
        """Free backend resources once the factory is closed."""

    def close(self) -> None:
        """Close the factory; later use of it or its limiters fails.

        Idempotent. Factories used through coroutines should be closed with
        ``await factory.aclose()`` where the factory provides it.
        """
        if not self._lifecycle.close():
            return

        limiters = self._drain()
        self._release(limiters)
        logger.info(
            "rate_limit.factory.closed",
            extra={"factory": type(self).__name__, "released_instances": len(limiters)},
        )

    def _drain(self) -> list[L]:
        with self._lock:
            futures = list(self._instances.values())
            self._instances.clear()
        return [f.result() for f in futures if f.done() and f.exception() is None]

    def stats(self) -> dict[str, Any]:
        return {
            "factory": type(self).__name__,
            "closed": self._lifecycle.closed,
            "cached_instances": len(self._instances),
        }


class InMemoryRateLimiterFactory(AbstractRateLimiterFactory[InMemorySlidingWindowRateLimiter]):
    """Factory for per-process limiters; each limiter owns its counter tables."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        super().__init__()
        self._clock = clock

    def _create(self, rule_set: RuleSet) -> InMemorySlidingWindowRateLimiter:
        return InMemorySlidingWindowRateLimiter(rule_set, self._lifecycle, clock=self._clock)

    def _release(self, limiters: list[InMemorySlidingWindowRateLimiter]) -> None:
        for limiter in limiters:
            limiter.clear()


class RedisRateLimiterFactory(AbstractRateLimiterFactory[RedisSlidingWindowRateLimiter]):
    """Factory for Redis-backed limiters sharing one lazily opened connection."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        key_prefix: str = "ratelimit",
        socket_timeout: float | None = 1.0,
        socket_connect_timeout: float | None = 1.0,
        max_connections: int | None = None,
        clock: Callable[[], float] = time.time,
        client_factory: Callable[[], Any] | None = None,
        async_client_factory: Callable[[], Any] | None = None,
    ) -> None:
        """Initialize the factory; no connection is opened until first use.

        Args:
            url: Redis connection URL.
            key_prefix: Namespace prepended to every bucket key.
            socket_timeout: Timeout for one Redis round trip, in seconds.
            socket_connect_timeout: Timeout for connecting, in seconds.
            max_connections: Optional pool size bound per client.
            clock: Time source returning UNIX time in seconds.
            client_factory: Builds the blocking client (defaults to ``redis.Redis.from_url``).
            async_client_factory: Builds the asyncio client (defaults to
                ``redis.asyncio.Redis.from_url``).
        """
        super().__init__()
        self._key_prefix = key_prefix
        self._clock = clock
        self._connection = RedisConnection(
            url,
            self._lifecycle,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            max_connections=max_connections,
            client_factory=client_factory,
            async_client_factory=async_client_factory,
        )

    @classmethod
    def from_settings(cls, cfg: Settings) -> "RedisRateLimiterFactory":
        return cls(
            cfg.redis.url,
            key_prefix=cfg.limiter.key_prefix,
            socket_timeout=cfg.redis.socket_timeout_seconds,
            socket_connect_timeout=cfg.redis.socket_connect_timeout_seconds,
            max_connections=cfg.redis.max_connections,
        )

    def get_instance_reactive(self, rules: RuleSetLike) -> AbstractReactiveRateLimiter:
        """Return the cached limiter for ``rules`` through its coroutine API.

        The asyncio Redis client is opened by the first coroutine call and
        stays bound to that call's event loop. Use one factory per event
        loop; a factory whose asyncio client was opened under an earlier
        ``asyncio.run()`` can not serve coroutines on a new loop.
        """
        return self._lookup_instance(rules)

    def _create(self, rule_set: RuleSet) -> RedisSlidingWindowRateLimiter:
        return RedisSlidingWindowRateLimiter(
            rule_set,
            self._connection,
            self._lifecycle,
            key_prefix=self._key_prefix,
            clock=self._clock,
        )

    def _release(self, limiters: list[RedisSlidingWindowRateLimiter]) -> None:
        self._connection.close()

    async def aclose(self) -> None:
        """Close the factory from inside an event loop, awaiting the asyncio client."""
        if not self._lifecycle.close():
            return

        limiters = self._drain()
        await self._connection.aclose()
        logger.info(
            "rate_limit.factory.closed",
            extra={"factory": type(self).__name__, "released_instances": len(limiters)},
        )


def create_rate_limiter_factory(cfg: Settings | None = None) -> AbstractRateLimiterFactory[Any]:
    """Factory function instantiating the backend selected by configuration.

    Args:
        cfg: Settings to read; defaults to the global settings.

    Returns:
        A new, open limiter factory.

    Raises:
        ConfigurationError: If the configured backend is unknown.
    """
    cfg = cfg or settings
    backend = cfg.limiter.backend.lower()

    if backend == "memory":
        return InMemoryRateLimiterFactory()

    if backend == "redis":
        return RedisRateLimiterFactory.from_settings(cfg)

    raise ConfigurationError(
        code="invalid_backend",
        message=f"Unknown rate limit backend: '{backend}'. Supported backends: memory, redis",
        details={"backend": backend},
    )


_factory: AbstractRateLimiterFactory[Any] | None = None
_factory_lock = threading.Lock()


def get_rate_limiter_factory() -> AbstractRateLimiterFactory[Any]:
    """Return the process-wide factory built from the global settings.

    A closed factory is replaced on the next call.
    """
    global _factory

    with _factory_lock:
        if _factory is None or _factory.closed:
            _factory = create_rate_limiter_factory()
        return _factory


def reset_rate_limiter_factory() -> None:
    """Close and forget the process-wide factory. Useful for testing."""
    global _factory

    with _factory_lock:
        factory, _factory = _factory, None

    if factory is not None:
        factory.close()
