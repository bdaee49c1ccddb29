"""Library-level exception types.

This module defines the error conditions raised by rules, factories and
counting engines, so callers can tell configuration mistakes, lifecycle
misuse and store failures apart (and choose fail-open or fail-closed for the
latter themselves).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and callers.

    Fields are optional; each error fills in what is relevant to it.
    """

    code: str
    message: str
    hint: str
    field: str
    window_seconds: int
    limit: int
    precision: int
    backend: str
    store: str
    rule_names: list[str]
    context: NotRequired[dict[str, Any]]


@dataclass
class LimiterError(Exception):
    """Base error for rate limiter failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class InvalidRuleError(LimiterError, ValueError):
    """Raised when a rule is constructed with an invalid window, limit or precision."""


class InvalidRuleSetError(LimiterError, ValueError):
    """Raised when a rule set is missing, empty or holds something other than rules."""


class ClosedFactoryError(LimiterError):
    """Raised on any use of a factory, or of its limiters, after close()."""


class StoreUnavailableError(LimiterError):
    """Raised when the shared counter store cannot be reached or times out."""


class EvaluationFailedError(LimiterError):
    """Raised when the store is reachable but evaluating the counters failed."""


class ConfigurationError(LimiterError):
    """Raised when settings select an unknown or unusable backend."""
