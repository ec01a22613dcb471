"""
Handles — what ``use_query`` and ``use_mutation`` hand to callers.

A reactivity adapter keeps one handle per mounted component, reads
``status``/``data``/``error`` and closes the handle on unmount.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from kungfu import Result

from querycache._types import Status, Mutator, MutationError, ProducerError
from querycache._policy import QueryOptions, MutationOptions
from querycache.key import Key
from querycache.mutation import MutationSnapshot, IDLE_MUTATION
from querycache.store import QuerySnapshot, idle_snapshot
from querycache.subscription import Subscription

if TYPE_CHECKING:
    from querycache.client._client import QueryClient

# ═══════════════════════════════════════════════════════════════════════════════
# Query Handle
# ═══════════════════════════════════════════════════════════════════════════════


class QueryHandle[T]:
    """
    One observer of a query key.

    Example:
        with client.use_query(("user", 1), fetch_user) as q:
            await q.refetch()
            print(q.status, q.data)
    """

    def __init__(
        self,
        client: QueryClient,
        key: Key,
        options: QueryOptions,
        listener: Callable[[QuerySnapshot[T]], None] | None = None,
    ) -> None:
        self.key = key
        self.options = options
        self._client = client
        self._listener = listener
        self._snapshot: QuerySnapshot[T] = idle_snapshot(key)
        self._sub: Subscription | None = client.subscriptions.subscribe(
            key, self._on_change, activate=options.enabled
        )

    def _on_change(self, snapshot: QuerySnapshot[T]) -> None:
        self._snapshot = snapshot
        if self._listener is not None:
            self._listener(snapshot)

    @property
    def snapshot(self) -> QuerySnapshot[T]:
        return self._snapshot

    @property
    def status(self) -> Status:
        return self._snapshot.status

    @property
    def data(self) -> T | None:
        return self._snapshot.data

    @property
    def error(self) -> ProducerError[Any] | None:
        return self._snapshot.error

    @property
    def is_active(self) -> bool:
        return self._sub is not None

    def refetch(self) -> asyncio.Future[QuerySnapshot[Any]]:
        """Start a new fetch cycle for this key. Await for the settled snapshot."""
        return self._client.refetch(self.key)

    def close(self) -> None:
        """Stop observing. Safe to call twice."""
        if self._sub is not None:
            self._client.subscriptions.unsubscribe(self._sub)
            self._sub = None

    def __enter__(self) -> QueryHandle[T]:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"QueryHandle({self.key}, {self.status.name}, active={self.is_active})"


# ═══════════════════════════════════════════════════════════════════════════════
# Mutation Handle
# ═══════════════════════════════════════════════════════════════════════════════


class MutationHandle[A, T, E]:
    """
    Reusable mutation bound to a write function.

    The handle reflects the most recent ``mutate`` call; reports from older,
    overlapping runs are not shown.

    Example:
        rename = client.use_mutation(
            lambda name: api.rename_user(1, name),
            MutationOptions(invalidates=("user", 1)),
        )
        result = await rename.mutate("Bob")
    """

    def __init__(
        self,
        client: QueryClient,
        mutator: Mutator[A, T, E],
        options: MutationOptions,
        listener: Callable[[MutationSnapshot[T]], None] | None = None,
    ) -> None:
        self.options = options
        self._client = client
        self._mutator = mutator
        self._listener = listener
        self._snapshot: MutationSnapshot[T] = IDLE_MUTATION
        self._runs = itertools.count(1)
        self._latest = 0

    @property
    def snapshot(self) -> MutationSnapshot[T]:
        return self._snapshot

    @property
    def status(self) -> Status:
        return self._snapshot.status

    @property
    def data(self) -> T | None:
        return self._snapshot.data

    @property
    def error(self) -> MutationError[Any] | None:
        return self._snapshot.error

    def mutate(self, value: A) -> asyncio.Task[Result[T, MutationError[E]]]:
        """
        Run the write function with ``value``. Starts immediately.

        Await the returned task for the Result; failures are returned as
        ``Error(MutationError)``, never raised.
        """
        run_id = next(self._runs)
        self._latest = run_id
        client = self._client
        opts = self.options
        mutator = self._mutator

        def report(snapshot: MutationSnapshot[Any]) -> None:
            if run_id != self._latest:
                return
            self._snapshot = snapshot
            if self._listener is not None:
                self._listener(snapshot)

        hook = opts.on_success

        def on_success(data: T) -> None:
            if hook is not None:
                hook(client, data)

        operation = client.mutations.run_mutation(
            lambda: mutator(value),
            opts.invalidates,
            on_success=on_success,
            on_error=opts.on_error,
            report=report,
        )

        async def run() -> Result[T, MutationError[E]]:
            return await operation

        return asyncio.get_running_loop().create_task(run())

    def reset(self) -> None:
        """Forget the last run and report IDLE."""
        self._latest = next(self._runs)
        self._snapshot = IDLE_MUTATION

    def __repr__(self) -> str:
        return f"MutationHandle({self.status.name})"


__all__ = ("QueryHandle", "MutationHandle")
