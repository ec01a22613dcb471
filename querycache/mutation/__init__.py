"""
Mutation — single-attempt writes that invalidate cached queries.

    result = await coordinator.run_mutation(write_fn, invalidates=("user", 1))
    coordinator.invalidate(K.prefix("user"))
"""

from __future__ import annotations

from querycache.mutation._types import (
    MutationSnapshot,
    MutationRecord,
    IDLE_MUTATION,
)
from querycache.mutation._coordinator import MutationCoordinator, Reporter

__all__ = (
    "MutationSnapshot",
    "MutationRecord",
    "IDLE_MUTATION",
    "MutationCoordinator",
    "Reporter",
)
