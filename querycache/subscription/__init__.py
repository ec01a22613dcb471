"""
Subscription — observers of query keys.

    sub = manager.subscribe(key, lambda snap: print(snap.status))
    manager.unsubscribe(sub)
"""

from __future__ import annotations

from querycache.subscription._manager import (
    Listener,
    ActivateHook,
    Subscription,
    SubscriptionManager,
)

__all__ = (
    "Listener",
    "ActivateHook",
    "Subscription",
    "SubscriptionManager",
)
