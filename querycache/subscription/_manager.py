"""
Subscription manager — observers, notification and garbage collection.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from querycache._types import Status
from querycache.key import Key
from querycache.store import EntryStore, QuerySnapshot

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════════
# Types
# ═══════════════════════════════════════════════════════════════════════════════

type Listener = Callable[[QuerySnapshot[Any]], None]
"""Called synchronously with the snapshot after every transition."""

type ActivateHook = Callable[[Key], None]
"""Called when a subscription should start a fetch for its key."""


@dataclass(frozen=True, slots=True)
class Subscription:
    """Handle returned by ``subscribe``. Pass it back to ``unsubscribe``."""

    key: Key
    id: int


# ═══════════════════════════════════════════════════════════════════════════════
# Subscription Manager
# ═══════════════════════════════════════════════════════════════════════════════


class SubscriptionManager:
    """
    Tracks listeners per key.

    Sole writer of ``observer_count`` and sole remover of entries.
    Memory is bounded to keys with at least one observer, keys mid-fetch,
    and (with gc_time > 0) keys waiting for their collection timer.
    """

    def __init__(self, store: EntryStore, gc_time: timedelta = timedelta(0)) -> None:
        self._store = store
        self._gc_time = gc_time
        self._listeners: dict[Key, dict[int, Listener]] = {}
        self._ids = itertools.count(1)
        self._pending: dict[Key, deque[QuerySnapshot[Any]]] = {}
        self._delivering: set[Key] = set()
        self.on_activate: ActivateHook | None = None

    # ─── Observers ───────────────────────────────────────────────────────────

    def subscribe(
        self,
        key: Key,
        listener: Listener,
        *,
        activate: bool = True,
        emit_current: bool = True,
    ) -> Subscription:
        """
        Register ``listener`` for ``key``.

        emit_current: deliver the current snapshot to the new listener first.
        activate: let the first observer of a key (or any observer of an
            idle key) trigger a fetch through ``on_activate``.
        """
        entry = self._store.get_or_create(key)
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None

        sub = Subscription(key, next(self._ids))
        listeners = self._listeners.setdefault(key, {})
        first = not listeners
        listeners[sub.id] = listener
        entry.observer_count = len(listeners)

        if emit_current:
            self._deliver(key, listener, entry.snapshot())

        if activate and self.on_activate is not None and sub.id in listeners:
            if first or entry.status == Status.IDLE:
                self.on_activate(key)
        return sub

    def unsubscribe(self, sub: Subscription) -> bool:
        """Remove a subscription. Returns False if it was already gone."""
        listeners = self._listeners.get(sub.key)
        if listeners is None or sub.id not in listeners:
            return False
        del listeners[sub.id]
        if not listeners:
            del self._listeners[sub.key]

        entry = self._store.get(sub.key)
        if entry is None:
            return True
        entry.observer_count = len(listeners)
        if entry.observer_count == 0:
            if entry.abandoned is not None:
                # Wakes a pending retry backoff
                entry.abandoned.set()
            self.release(sub.key)
        return True

    def observer_count(self, key: Key) -> int:
        return len(self._listeners.get(key, ()))

    # ─── Notification ────────────────────────────────────────────────────────

    def notify(self, key: Key) -> None:
        """
        Deliver the entry's current snapshot to every listener of ``key``.

        Snapshots arrive in transition order: a notify issued by a listener
        during delivery is queued and delivered once the current snapshot
        has reached every listener. Listeners removed during delivery are
        skipped.
        """
        entry = self._store.get(key)
        if entry is None or not self._listeners.get(key):
            return
        queue = self._pending.setdefault(key, deque())
        queue.append(entry.snapshot())
        if key in self._delivering:
            return

        self._delivering.add(key)
        try:
            while queue:
                snapshot = queue.popleft()
                current = self._listeners.get(key)
                if not current:
                    continue
                for sid, listener in list(current.items()):
                    if sid in current:
                        self._deliver(key, listener, snapshot)
        finally:
            self._delivering.discard(key)
            self._pending.pop(key, None)

    def _deliver(self, key: Key, listener: Listener, snapshot: QuerySnapshot[Any]) -> None:
        try:
            listener(snapshot)
        except Exception:
            logger.exception("listener for %s failed on %s", key, snapshot.status.name)

    # ─── Garbage Collection ──────────────────────────────────────────────────

    def release(self, key: Key) -> bool:
        """
        Collect ``key`` if nothing observes or fetches it.

        Returns True if the entry was removed now. With gc_time > 0 the
        removal is scheduled instead.
        """
        entry = self._store.get(key)
        if entry is None or not entry.is_collectable:
            return False
        if self._gc_time <= timedelta(0):
            return self._store.remove(key)
        if entry.gc_handle is None:
            loop = asyncio.get_running_loop()
            entry.gc_handle = loop.call_later(
                self._gc_time.total_seconds(), self._collect_scheduled, key
            )
            logger.debug("collection of %s scheduled in %s", key, self._gc_time)
        return False

    def _collect_scheduled(self, key: Key) -> None:
        entry = self._store.get(key)
        if entry is None:
            return
        entry.gc_handle = None
        if entry.is_collectable:
            self._store.remove(key)

    def collect_garbage(self) -> int:
        """Remove every unobserved idle entry now. Returns the count."""
        removed = 0
        for entry in self._store:
            if entry.is_collectable:
                if entry.gc_handle is not None:
                    entry.gc_handle.cancel()
                    entry.gc_handle = None
                self._store.remove(entry.key)
                removed += 1
        if removed:
            logger.debug("collected %d unobserved entries", removed)
        return removed


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Listener",
    "ActivateHook",
    "Subscription",
    "SubscriptionManager",
)
