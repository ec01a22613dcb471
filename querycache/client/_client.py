"""
Query client — the facade over store, fetch, subscriptions and mutations.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from querycache._types import Producer, Mutator
from querycache._policy import ClientOptions, QueryOptions, MutationOptions, InvalidationTarget
from querycache.fetch import FetchCoordinator
from querycache.key import Key, KeyLike, as_key
from querycache.mutation import MutationCoordinator, MutationSnapshot
from querycache.store import EntryStore, QuerySnapshot
from querycache.subscription import SubscriptionManager
from querycache.client._handles import QueryHandle, MutationHandle


class QueryClient:
    """
    Process-local query cache.

    The only object callers hold. Create one per event loop and share it.

    Example:
        client = QueryClient()

        user = client.use_query(("user", 1), fetch_user)
        rename = client.use_mutation(
            rename_user,
            MutationOptions(invalidates=("user", 1)),
        )

        await rename.mutate("Bob")
        await client.settle()
        assert user.data == "Bob"
    """

    def __init__(self, options: ClientOptions | None = None) -> None:
        self.options = options if options is not None else ClientOptions()
        self.store = EntryStore()
        self.subscriptions = SubscriptionManager(self.store, self.options.gc_time)
        self.fetcher = FetchCoordinator(
            self.store, self.subscriptions, self.options.query_defaults
        )
        self.mutations = MutationCoordinator(self.store, self.fetcher)
        self.subscriptions.on_activate = self._activate

    def _activate(self, key: Key) -> None:
        """Fetch on observation unless the cached data is still fresh."""
        entry = self.store.get(key)
        if entry is None or entry.producer is None or entry.is_fetching:
            return
        if entry.is_fresh(self.fetcher.options_for(entry).stale_time):
            return
        self.fetcher.ensure_fresh(key)

    # ═══════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════

    def use_query[T, E](
        self,
        key: KeyLike,
        producer: Producer[T, E],
        options: QueryOptions | None = None,
        listener: Callable[[QuerySnapshot[T]], None] | None = None,
    ) -> QueryHandle[T]:
        """
        Observe ``key``, fetching with ``producer`` when needed.

        The first observer of a key starts a fetch unless fresh data is
        cached or ``options.enabled`` is False. Later observers share the
        entry; the latest producer and options registered for a key win.
        Must be called from a running event loop.
        """
        k = as_key(key)
        opts = options if options is not None else self.options.query_defaults
        entry = self.store.get_or_create(k)
        entry.producer = producer
        entry.options = opts
        return QueryHandle(self, k, opts, listener)

    async def fetch_query[T, E](
        self,
        key: KeyLike,
        producer: Producer[T, E],
        options: QueryOptions | None = None,
    ) -> QuerySnapshot[T]:
        """
        Fetch without observing (prefetch).

        Returns cached data when fresh, otherwise runs (or joins) a fetch
        cycle. The entry is collected afterwards unless something observes it.
        """
        k = as_key(key)
        opts = options if options is not None else self.options.query_defaults
        entry = self.store.get(k)
        if entry is not None and entry.task is None and entry.is_fresh(opts.stale_time):
            return entry.snapshot()
        return await self.fetcher.ensure_fresh(k, producer, opts)

    def refetch(self, key: KeyLike) -> asyncio.Future[QuerySnapshot[Any]]:
        """
        Start a new fetch cycle with the registered producer.

        While a cycle is running the caller attaches to it and another
        cycle follows it once it settles (observed keys only). Cancelling
        the returned future does not stop the fetch.
        """
        k = as_key(key)
        running = self.fetcher.attach(k)
        if running is not None:
            entry = self.store.get(k)
            assert entry is not None
            entry.invalidated = True
            return running
        return self.fetcher.ensure_fresh(k)

    def get_query_state(self, key: KeyLike) -> QuerySnapshot[Any] | None:
        entry = self.store.get(as_key(key))
        return entry.snapshot() if entry is not None else None

    def get_query_data(self, key: KeyLike) -> Any | None:
        entry = self.store.get(as_key(key))
        return entry.data if entry is not None else None

    def set_query_data(self, key: KeyLike, value: Any) -> QuerySnapshot[Any]:
        """
        Write ``value`` as fresh data and notify observers.

        Note: with the default gc_time of zero, data written for a key
        nobody observes is collected immediately.
        """
        return self.fetcher.write(as_key(key), value)

    # ═══════════════════════════════════════════════════════════════════════
    # Mutations & Invalidation
    # ═══════════════════════════════════════════════════════════════════════

    def use_mutation[A, T, E](
        self,
        mutator: Mutator[A, T, E],
        options: MutationOptions | None = None,
        listener: Callable[[MutationSnapshot[T]], None] | None = None,
    ) -> MutationHandle[A, T, E]:
        return MutationHandle(
            self,
            mutator,
            options if options is not None else MutationOptions(),
            listener,
        )

    def invalidate_queries(self, target: InvalidationTarget) -> tuple[Key, ...]:
        """
        Mark matching entries stale; refetch the observed ones.

        target: key-like value for an exact match, or a KeyPredicate.
        Returns the matched keys.
        """
        return self.mutations.invalidate(target)

    # ═══════════════════════════════════════════════════════════════════════
    # Housekeeping
    # ═══════════════════════════════════════════════════════════════════════

    def collect_garbage(self) -> int:
        return self.subscriptions.collect_garbage()

    async def settle(self) -> None:
        """Wait until no fetch is in flight."""
        await self.fetcher.settle()

    def __len__(self) -> int:
        return len(self.store)


__all__ = ("QueryClient",)
