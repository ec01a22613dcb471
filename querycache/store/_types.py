"""
Entry types — per-key cached state.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from querycache._types import Status, Producer, ProducerError
from querycache._policy import QueryOptions
from querycache.key import Key

# ═══════════════════════════════════════════════════════════════════════════════
# Query Snapshot — What Listeners See
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class QuerySnapshot[T]:
    """
    Immutable view of a query entry at one state transition.

    Note: data survives errors (stale-while-revalidate), so
    ``status is ERROR and data is not None`` is a normal combination.
    """

    key: Key
    status: Status
    data: T | None
    error: ProducerError[Any] | None
    updated_at: datetime | None
    retry_count: int
    is_fetching: bool
    is_invalidated: bool

    @property
    def has_data(self) -> bool:
        return self.updated_at is not None

    @property
    def is_idle(self) -> bool:
        return self.status == Status.IDLE

    @property
    def is_loading(self) -> bool:
        return self.status == Status.LOADING

    @property
    def is_success(self) -> bool:
        return self.status == Status.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == Status.ERROR


def idle_snapshot(key: Key) -> QuerySnapshot[Any]:
    """Snapshot of a key that has no entry."""
    return QuerySnapshot(
        key=key,
        status=Status.IDLE,
        data=None,
        error=None,
        updated_at=None,
        retry_count=0,
        is_fetching=False,
        is_invalidated=False,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Query Entry — Stored State
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, eq=False)
class QueryEntry:
    """
    Mutable cache record for one key. Owned by EntryStore.

    Field ownership:
        fetch coordinator — status, data, error, updated_at, fetched_at,
                            retry_count, in_flight_fetch_id, task, abandoned
        subscription manager — observer_count, gc_handle
        invalidation — invalidated
        client — producer, options (latest registration wins)
    """

    key: Key
    status: Status = Status.IDLE
    data: Any = None
    error: ProducerError[Any] | None = None
    updated_at: datetime | None = None
    fetched_at: float | None = field(default=None, repr=False)
    observer_count: int = 0
    in_flight_fetch_id: int | None = None
    retry_count: int = 0
    invalidated: bool = False
    producer: Producer[Any, Any] | None = None
    options: QueryOptions | None = None
    task: asyncio.Task[QuerySnapshot[Any]] | None = field(default=None, repr=False)
    abandoned: asyncio.Event | None = field(default=None, repr=False)
    gc_handle: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def is_fetching(self) -> bool:
        return self.in_flight_fetch_id is not None

    @property
    def is_collectable(self) -> bool:
        """No observers and nothing in flight."""
        return self.observer_count == 0 and not self.is_fetching

    def is_stale(self, stale_time: timedelta) -> bool:
        """Invalidated, never fetched, or older than ``stale_time``."""
        if self.invalidated or self.fetched_at is None:
            return True
        return time.monotonic() - self.fetched_at >= stale_time.total_seconds()

    def is_fresh(self, stale_time: timedelta) -> bool:
        return self.status == Status.SUCCESS and not self.is_stale(stale_time)

    def snapshot(self) -> QuerySnapshot[Any]:
        return QuerySnapshot(
            key=self.key,
            status=self.status,
            data=self.data,
            error=self.error,
            updated_at=self.updated_at,
            retry_count=self.retry_count,
            is_fetching=self.is_fetching,
            is_invalidated=self.invalidated,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "QuerySnapshot",
    "QueryEntry",
    "idle_snapshot",
)
