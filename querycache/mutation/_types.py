"""
Mutation types — one run of a write function.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from querycache._types import Status, WriteFn, MutationError
from querycache._policy import InvalidationTarget


@dataclass(frozen=True, slots=True)
class MutationSnapshot[T]:
    """Immutable view of a mutation run, reported on every transition."""

    status: Status
    data: T | None
    error: MutationError[Any] | None

    @property
    def is_loading(self) -> bool:
        return self.status == Status.LOADING

    @property
    def is_success(self) -> bool:
        return self.status == Status.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == Status.ERROR


IDLE_MUTATION: MutationSnapshot[Any] = MutationSnapshot(Status.IDLE, None, None)


@dataclass(slots=True, eq=False)
class MutationRecord:
    """
    Ephemeral state of one mutation run. Never stored in the entry store.

    Lifecycle:
        IDLE → LOADING → SUCCESS (then invalidates target)
                       → ERROR
    """

    write_fn: WriteFn[Any, Any]
    target: InvalidationTarget = None
    status: Status = Status.IDLE
    data: Any = None
    error: MutationError[Any] | None = None

    def snapshot(self) -> MutationSnapshot[Any]:
        return MutationSnapshot(self.status, self.data, self.error)


__all__ = (
    "MutationSnapshot",
    "MutationRecord",
    "IDLE_MUTATION",
)
