"""
Policy types — retry settings and query/mutation/client options.

All options are immutable. Fluent ``with_*`` methods return a new instance,
and every instance is validated on construction.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from querycache._types import ConfigurationError

if TYPE_CHECKING:
    from querycache.key import KeyLike, KeyPredicate


# ═══════════════════════════════════════════════════════════════════════════════
# Retry — Backoff Settings
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Retry settings for one fetch cycle.

    max_retries bounds producer invocations per cycle: a producer that always
    fails is called exactly ``max(max_retries, 1)`` times.

    Delay after failed attempt n (1-based):
        min(backoff_base * backoff_factor ** (n - 1), backoff_max)
    """

    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_factor: float = 2.0
    backoff_max: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ConfigurationError("backoff delays must be >= 0")
        if self.backoff_factor < 1:
            raise ConfigurationError(f"backoff_factor must be >= 1, got {self.backoff_factor}")

    def should_retry(self, failures: int) -> bool:
        return failures < self.max_retries

    def delay(self, failures: int) -> float:
        """Seconds to wait after ``failures`` consecutive failures."""
        raw = self.backoff_base * self.backoff_factor ** max(failures - 1, 0)
        return min(raw, self.backoff_max)


# ═══════════════════════════════════════════════════════════════════════════════
# Query Options
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class QueryOptions:
    """
    Per-query configuration.

    Example:
        opts = (
            QueryOptions()
            .with_retries(5)
            .with_backoff(base_ms=200)
            .with_stale_time(seconds=30)
        )

    enabled=False suppresses the automatic fetch on subscribe; ``refetch()``
    and invalidation of an observed key still fetch.
    """

    max_retries: int = 3
    retry_backoff_base_ms: int = 1000
    retry_backoff_factor: float = 2.0
    retry_backoff_max_ms: int = 30_000
    enabled: bool = True
    stale_time: timedelta = timedelta(minutes=5)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_backoff_base_ms < 0 or self.retry_backoff_max_ms < 0:
            raise ConfigurationError("retry backoff must be >= 0 ms")
        if self.retry_backoff_factor < 1:
            raise ConfigurationError(
                f"retry_backoff_factor must be >= 1, got {self.retry_backoff_factor}"
            )
        if self.stale_time < timedelta(0):
            raise ConfigurationError("stale_time must not be negative")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            backoff_base=self.retry_backoff_base_ms / 1000,
            backoff_factor=self.retry_backoff_factor,
            backoff_max=self.retry_backoff_max_ms / 1000,
        )

    def with_retries(self, max_retries: int) -> QueryOptions:
        return replace(self, max_retries=max_retries)

    def with_backoff(
        self,
        *,
        base_ms: int | None = None,
        factor: float | None = None,
        max_ms: int | None = None,
    ) -> QueryOptions:
        """
        Tune retry backoff.

        Example:
            .with_backoff(base_ms=0)            # retry immediately
            .with_backoff(base_ms=250, factor=3)
        """
        return replace(
            self,
            retry_backoff_base_ms=self.retry_backoff_base_ms if base_ms is None else base_ms,
            retry_backoff_factor=self.retry_backoff_factor if factor is None else factor,
            retry_backoff_max_ms=self.retry_backoff_max_ms if max_ms is None else max_ms,
        )

    def with_enabled(self, enabled: bool = True) -> QueryOptions:
        return replace(self, enabled=enabled)

    def with_stale_time(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
        delta: timedelta | None = None,
    ) -> QueryOptions:
        """
        Set how long successful data is served without refetching.

        Example:
            .with_stale_time(seconds=0)   # always refetch on first observer
            .with_stale_time(minutes=10)
        """
        if delta is None:
            delta = timedelta(seconds=(seconds or 0) + (minutes or 0) * 60)
        return replace(self, stale_time=delta)


# ═══════════════════════════════════════════════════════════════════════════════
# Mutation Options
# ═══════════════════════════════════════════════════════════════════════════════

type InvalidationTarget = KeyLike | KeyPredicate | None


@dataclass(frozen=True, slots=True)
class MutationOptions:
    """
    Mutation configuration.

    invalidates: key, key predicate, or None.
    on_success(client, data): runs before invalidation; the place to write
        returned data straight into the cache with ``set_query_data``.
    on_error(error): runs with the MutationError.
    """

    invalidates: InvalidationTarget = None
    on_success: Callable[[Any, Any], None] | None = None
    on_error: Callable[[Any], None] | None = None

    def with_invalidates(self, target: InvalidationTarget) -> MutationOptions:
        return replace(self, invalidates=target)

    def with_on_success(self, fn: Callable[[Any, Any], None]) -> MutationOptions:
        return replace(self, on_success=fn)

    def with_on_error(self, fn: Callable[[Any], None]) -> MutationOptions:
        return replace(self, on_error=fn)


# ═══════════════════════════════════════════════════════════════════════════════
# Client Options
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ClientOptions:
    """
    Client-wide configuration.

    query_defaults: used by queries registered without explicit options.
    gc_time: how long an unobserved, idle entry is kept. Zero removes it as
        soon as its last observer leaves and no fetch is running.
    """

    query_defaults: QueryOptions = field(default_factory=QueryOptions)
    gc_time: timedelta = timedelta(0)

    def __post_init__(self) -> None:
        if self.gc_time < timedelta(0):
            raise ConfigurationError("gc_time must not be negative")

    def with_query_defaults(self, options: QueryOptions) -> ClientOptions:
        return replace(self, query_defaults=options)

    def with_gc_time(
        self,
        *,
        seconds: float | None = None,
        delta: timedelta | None = None,
    ) -> ClientOptions:
        if delta is None:
            delta = timedelta(seconds=seconds or 0)
        return replace(self, gc_time=delta)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "RetryPolicy",
    "QueryOptions",
    "MutationOptions",
    "InvalidationTarget",
    "ClientOptions",
)
