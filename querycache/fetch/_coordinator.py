"""
Fetch coordinator — deduplicated fetch cycles with retry and backoff.

State machine per key:

    IDLE ──► LOADING ──► SUCCESS ──┐
               ▲    └──► ERROR ────┤
               └───────────────────┘  (refetch / invalidation / retry)

One asyncio task per key runs a whole cycle, retries included. The task is
the per-key sequencer: every transition for the key is applied from it (or
synchronously when it is started), so two transitions never interleave.

Callers never hold the task itself, only a shielded view of it: a caller
that times out or is cancelled stops waiting without stopping the fetch
for everyone else.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
import time
from datetime import datetime
from typing import Any

from kungfu import Ok, Error

from querycache._types import Status, Producer, ProducerError, ConfigurationError
from querycache._policy import QueryOptions
from querycache.key import Key
from querycache.lift import settle_call
from querycache.store import EntryStore, QueryEntry, QuerySnapshot
from querycache.subscription import SubscriptionManager

logger = logging.getLogger(__name__)


class FetchCoordinator:
    """
    Runs producers for keys and writes results into the store.

    Guarantees:
        - at most one cycle in flight per key; concurrent callers attach
        - a failing producer is called at most ``max_retries`` times per cycle
        - observers are notified synchronously on LOADING and on settle
    """

    def __init__(
        self,
        store: EntryStore,
        subscriptions: SubscriptionManager,
        defaults: QueryOptions | None = None,
    ) -> None:
        self._store = store
        self._subs = subscriptions
        self._defaults = defaults if defaults is not None else QueryOptions()
        self._ids = itertools.count(1)

    def options_for(self, entry: QueryEntry) -> QueryOptions:
        return entry.options if entry.options is not None else self._defaults

    # ═══════════════════════════════════════════════════════════════════════
    # ensure_fresh() — Start or Attach
    # ═══════════════════════════════════════════════════════════════════════

    def ensure_fresh(
        self,
        key: Key,
        producer: Producer[Any, Any] | None = None,
        options: QueryOptions | None = None,
    ) -> asyncio.Future[QuerySnapshot[Any]]:
        """
        Make sure a fetch cycle is running for ``key``.

        Attaches to the running cycle when one exists (no new producer
        call), otherwise starts a new cycle. Awaiting the returned future
        yields the snapshot the cycle settled with; cancelling it leaves
        the cycle running.

        Raises ConfigurationError if no producer was ever registered.
        """
        entry = self._store.get_or_create(key)
        if producer is not None:
            entry.producer = producer
        if options is not None:
            entry.options = options

        if entry.task is not None:
            logger.debug("attach to fetch #%s for %s", entry.in_flight_fetch_id, key)
            return asyncio.shield(entry.task)
        if entry.producer is None:
            self._subs.release(key)
            raise ConfigurationError(f"no producer registered for {key}")
        return asyncio.shield(self._start(entry))

    def attach(self, key: Key) -> asyncio.Future[QuerySnapshot[Any]] | None:
        """Shielded view of the cycle running for ``key``, if any."""
        entry = self._store.get(key)
        if entry is None or entry.task is None:
            return None
        return asyncio.shield(entry.task)

    def _start(self, entry: QueryEntry) -> asyncio.Task[QuerySnapshot[Any]]:
        loop = asyncio.get_running_loop()
        fetch_id = next(self._ids)
        prior = entry.snapshot()

        entry.status = Status.LOADING
        entry.error = None
        entry.retry_count = 0
        entry.invalidated = False
        entry.in_flight_fetch_id = fetch_id
        entry.abandoned = asyncio.Event()
        entry.task = loop.create_task(
            self._run_cycle(entry, fetch_id),
            name=f"querycache-fetch:{entry.key}#{fetch_id}",
        )
        entry.task.add_done_callback(
            functools.partial(self._on_done, entry, fetch_id, prior)
        )
        logger.debug("fetch #%d started for %s", fetch_id, entry.key)

        self._subs.notify(entry.key)
        return entry.task

    # ═══════════════════════════════════════════════════════════════════════
    # Fetch Cycle
    # ═══════════════════════════════════════════════════════════════════════

    async def _run_cycle(self, entry: QueryEntry, fetch_id: int) -> QuerySnapshot[Any]:
        policy = self.options_for(entry).retry_policy()
        while True:
            producer = entry.producer
            assert producer is not None
            outcome = await settle_call(producer)

            match outcome:
                case Ok(value):
                    return self._succeed(entry, fetch_id, value)
                case Error(cause):
                    entry.retry_count += 1
                    if not policy.should_retry(entry.retry_count):
                        return self._fail(entry, fetch_id, cause)

                    delay = policy.delay(entry.retry_count)
                    logger.debug(
                        "fetch #%d for %s failed (attempt %d), retrying in %.3fs: %s",
                        fetch_id, entry.key, entry.retry_count, delay, cause,
                    )
                    if not await self._backoff(entry, delay):
                        logger.debug("retry of fetch #%d abandoned, no observers left", fetch_id)
                        return self._fail(entry, fetch_id, cause)

    async def _backoff(self, entry: QueryEntry, delay: float) -> bool:
        """
        Wait out a retry delay.

        Returns False if every observer left during the wait. Observers that
        come back before the wake-up keep the cycle alive for the rest of
        the delay.
        """
        abandoned = entry.abandoned
        if abandoned is None:
            await asyncio.sleep(max(delay, 0))
            return True
        if delay <= 0:
            await asyncio.sleep(0)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(delay, 0)
        while True:
            if abandoned.is_set():
                if entry.observer_count == 0:
                    return False
                abandoned.clear()
            remaining = deadline - loop.time()
            if remaining <= 0:
                return True
            try:
                await asyncio.wait_for(abandoned.wait(), timeout=remaining)
            except TimeoutError:
                pass

    def _succeed(self, entry: QueryEntry, fetch_id: int, value: Any) -> QuerySnapshot[Any]:
        entry.data = value
        entry.error = None
        entry.updated_at = datetime.now()
        entry.fetched_at = time.monotonic()
        entry.retry_count = 0
        entry.status = Status.SUCCESS
        logger.debug("fetch #%d for %s succeeded", fetch_id, entry.key)
        return self._settle(entry)

    def _fail(self, entry: QueryEntry, fetch_id: int, cause: Any) -> QuerySnapshot[Any]:
        entry.error = ProducerError(key=entry.key, cause=cause, attempts=entry.retry_count)
        entry.status = Status.ERROR
        logger.warning(
            "fetch #%d for %s failed after %d attempt(s): %s",
            fetch_id, entry.key, entry.retry_count, cause,
        )
        return self._settle(entry)

    def _settle(self, entry: QueryEntry) -> QuerySnapshot[Any]:
        entry.in_flight_fetch_id = None
        entry.task = None
        entry.abandoned = None
        snapshot = entry.snapshot()
        self._subs.notify(entry.key)

        if entry.task is None and entry.invalidated and entry.observer_count > 0:
            # Invalidated while in flight: the result predates the write
            logger.debug("%s invalidated during fetch, refetching", entry.key)
            self._start(entry)
        else:
            self._subs.release(entry.key)
        return snapshot

    # ═══════════════════════════════════════════════════════════════════════
    # Cancellation
    # ═══════════════════════════════════════════════════════════════════════

    def _on_done(
        self,
        entry: QueryEntry,
        fetch_id: int,
        prior: QuerySnapshot[Any],
        task: asyncio.Task[QuerySnapshot[Any]],
    ) -> None:
        if entry.in_flight_fetch_id != fetch_id:
            return
        if task.cancelled():
            logger.debug("fetch #%d for %s cancelled", fetch_id, entry.key)
        else:
            logger.error(
                "fetch #%d for %s crashed", fetch_id, entry.key, exc_info=task.exception()
            )
        self._restore(entry, prior)

    def _restore(self, entry: QueryEntry, prior: QuerySnapshot[Any]) -> None:
        """Put back the state the entry had before the unfinished cycle."""
        entry.in_flight_fetch_id = None
        entry.task = None
        entry.abandoned = None
        entry.status = prior.status
        entry.error = prior.error
        entry.retry_count = prior.retry_count
        entry.invalidated = prior.is_invalidated
        self._subs.notify(entry.key)
        self._subs.release(entry.key)

    # ═══════════════════════════════════════════════════════════════════════
    # write() — Direct Cache Update
    # ═══════════════════════════════════════════════════════════════════════

    def write(self, key: Key, value: Any) -> QuerySnapshot[Any]:
        """
        Store ``value`` as fresh SUCCESS data without calling a producer.

        A fetch already in flight keeps running and overwrites the value
        when it settles.
        """
        entry = self._store.get_or_create(key)
        entry.data = value
        entry.error = None
        entry.updated_at = datetime.now()
        entry.fetched_at = time.monotonic()
        entry.invalidated = False
        if not entry.is_fetching:
            entry.status = Status.SUCCESS
            entry.retry_count = 0
        snapshot = entry.snapshot()
        self._subs.notify(key)
        self._subs.release(key)
        return snapshot

    # ═══════════════════════════════════════════════════════════════════════
    # settle() — Wait for Quiescence
    # ═══════════════════════════════════════════════════════════════════════

    async def settle(self) -> None:
        """Wait until no fetch is in flight, follow-up refetches included."""
        while True:
            tasks = [e.task for e in self._store if e.task is not None]
            if not tasks:
                return
            await asyncio.gather(
                *(asyncio.shield(t) for t in tasks), return_exceptions=True
            )


__all__ = ("FetchCoordinator",)
