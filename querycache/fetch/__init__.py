"""
Fetch — deduplicated, retried fetch cycles.

    coordinator = FetchCoordinator(store, subscriptions)
    snapshot = await coordinator.ensure_fresh(key, producer)
"""

from __future__ import annotations

from querycache._policy import RetryPolicy
from querycache.fetch._coordinator import FetchCoordinator

__all__ = (
    "RetryPolicy",
    "FetchCoordinator",
)
