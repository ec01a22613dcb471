"""
Store — per-key cache records.

    store = EntryStore()
    entry = store.get_or_create(as_key(("user", 1)))
    entry.snapshot()
"""

from __future__ import annotations

from querycache.store._types import (
    QuerySnapshot,
    QueryEntry,
    idle_snapshot,
)
from querycache.store._store import EntryStore

__all__ = (
    "QuerySnapshot",
    "QueryEntry",
    "idle_snapshot",
    "EntryStore",
)
