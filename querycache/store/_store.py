"""
Entry store — the single owner of cached query state.

Note: Plain dict, no lock. All access happens on the event loop thread and
every transition for a key is applied synchronously between awaits, so the
coordinators never observe an entry mid-transition.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from querycache.key import Key, KeyPredicate
from querycache.store._types import QueryEntry

logger = logging.getLogger(__name__)


class EntryStore:
    """
    Mapping Key → QueryEntry.

    Entries are created lazily on first use and removed only by the
    subscription manager (garbage collection).
    """

    def __init__(self) -> None:
        self._entries: dict[Key, QueryEntry] = {}

    def get(self, key: Key) -> QueryEntry | None:
        return self._entries.get(key)

    def get_or_create(self, key: Key) -> QueryEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = QueryEntry(key=key)
            self._entries[key] = entry
            logger.debug("entry created: %s", key)
        return entry

    def remove(self, key: Key) -> bool:
        """Remove entry. Returns True if it existed."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_fetching:
            raise RuntimeError(f"refusing to remove {key} while a fetch is in flight")
        del self._entries[key]
        logger.debug("entry removed: %s", key)
        return True

    def matching(self, predicate: KeyPredicate) -> list[QueryEntry]:
        """Entries whose key satisfies ``predicate``, in insertion order."""
        return [e for k, e in self._entries.items() if predicate(k)]

    def keys(self) -> list[Key]:
        return list(self._entries)

    def __iter__(self) -> Iterator[QueryEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ("EntryStore",)
