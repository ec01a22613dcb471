"""
Invalidation & mutation coordinator.

Mutations are single-attempt: a write that fails is reported, never retried.
On success the invalidation target is resolved against the store and every
observed match is refetched; unobserved matches are only marked stale.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from kungfu import LazyCoroResult, Result, Ok, Error

from querycache._types import Status, WriteFn, MutationError
from querycache._policy import InvalidationTarget
from querycache.fetch import FetchCoordinator
from querycache.key import Key, as_key
from querycache.lift import settle_call
from querycache.mutation._types import MutationRecord, MutationSnapshot
from querycache.store import EntryStore, QueryEntry

logger = logging.getLogger(__name__)

type Reporter = Callable[[MutationSnapshot[Any]], None]


class MutationCoordinator:
    """
    Runs write functions and invalidates cached queries.

    Invalidation only schedules fetches; it never blocks a mutation's own
    completion, and overlapping mutations run independently.
    """

    def __init__(self, store: EntryStore, fetcher: FetchCoordinator) -> None:
        self._store = store
        self._fetcher = fetcher

    # ═══════════════════════════════════════════════════════════════════════
    # invalidate() — Mark Stale, Refetch Observed
    # ═══════════════════════════════════════════════════════════════════════

    def invalidate(self, target: InvalidationTarget) -> tuple[Key, ...]:
        """
        Invalidate every entry matching ``target``.

        target: exact key (any key-like value), key predicate, or None.
        Returns the matched keys. Unknown keys are a no-op.
        """
        entries = self._resolve(target)
        for entry in entries:
            entry.invalidated = True
            if entry.observer_count == 0 or entry.producer is None:
                continue
            if entry.task is None:
                self._fetcher.ensure_fresh(entry.key)
            # A running cycle starts a follow-up fetch when it settles
        if entries:
            logger.debug("invalidated %d entries: %s", len(entries), ", ".join(str(e.key) for e in entries))
        return tuple(e.key for e in entries)

    def _resolve(self, target: InvalidationTarget) -> list[QueryEntry]:
        if target is None:
            return []
        if callable(target) and not isinstance(target, Key):
            return self._store.matching(target)
        entry = self._store.get(as_key(target))
        return [entry] if entry is not None else []

    # ═══════════════════════════════════════════════════════════════════════
    # run_mutation() — Single Attempt Write
    # ═══════════════════════════════════════════════════════════════════════

    def run_mutation[T, E](
        self,
        write_fn: WriteFn[T, E],
        invalidates: InvalidationTarget = None,
        *,
        on_success: Callable[[T], None] | None = None,
        on_error: Callable[[MutationError[E]], None] | None = None,
        report: Reporter | None = None,
    ) -> LazyCoroResult[T, MutationError[E]]:
        """
        Run ``write_fn`` once.

        Reports LOADING, then SUCCESS or ERROR through ``report``. On success
        ``on_success`` runs first, then ``invalidates`` is applied.

        Example:
            result = await mutations.run_mutation(
                lambda: api.rename_user(1, "Bob"),
                invalidates=("user", 1),
            )
        """
        record = MutationRecord(write_fn=write_fn, target=invalidates)

        def emit() -> None:
            if report is not None:
                _guarded(report, record.snapshot(), "mutation reporter")

        async def execute() -> Result[T, MutationError[E]]:
            record.status = Status.LOADING
            record.error = None
            emit()

            outcome = await settle_call(write_fn)
            match outcome:
                case Ok(value):
                    record.data = value
                    record.status = Status.SUCCESS
                    emit()
                    if on_success is not None:
                        _guarded(on_success, value, "mutation on_success")
                    self.invalidate(record.target)
                    return Ok(value)
                case Error(cause):
                    error: MutationError[E] = MutationError(
                        cause=cause,
                        message=f"mutation failed: {cause}",
                    )
                    record.error = error
                    record.status = Status.ERROR
                    logger.debug("mutation failed: %s", cause)
                    emit()
                    if on_error is not None:
                        _guarded(on_error, error, "mutation on_error")
                    return Error(error)

        return LazyCoroResult(execute)


def _guarded(fn: Callable[[Any], None], arg: Any, what: str) -> None:
    try:
        fn(arg)
    except Exception:
        logger.exception("%s failed", what)


__all__ = ("MutationCoordinator", "Reporter")
