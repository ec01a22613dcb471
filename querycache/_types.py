"""
Core types for querycache.

Re-exports from kungfu + the shared status enum, error values and
function aliases used across the engine.
"""

from __future__ import annotations

from collections.abc import Callable, Awaitable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

# Re-export from kungfu
from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Status — Query & Mutation Lifecycle
# ═══════════════════════════════════════════════════════════════════════════════


class Status(Enum):
    """
    Lifecycle status shared by query entries and mutation records.

    Lifecycle:
        IDLE → LOADING → SUCCESS
                       → ERROR
        SUCCESS / ERROR → LOADING (refetch, retry, invalidation)
    """

    IDLE = auto()
    LOADING = auto()
    SUCCESS = auto()
    ERROR = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# Caller-Supplied Functions
# ═══════════════════════════════════════════════════════════════════════════════

type Producer[T, E] = Callable[[], Awaitable[Result[T, E]]]
"""Nullary async read. Called again for every retry."""

type WriteFn[T, E] = Callable[[], Awaitable[Result[T, E]]]
"""Nullary async write. Called at most once per mutation run."""

type Mutator[A, T, E] = Callable[[A], Awaitable[Result[T, E]]]
"""Write function taking the caller's input, bound by ``mutate(input)``."""


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class ConfigurationError(ValueError):
    """Invalid options or key parts, rejected at registration time."""


@dataclass(frozen=True, slots=True)
class ProducerError[E]:
    """
    Terminal failure of a fetch cycle.

    cause: the last error value returned (or exception raised) by the producer.
    attempts: producer invocations made in the failed cycle.
    """

    key: Any
    cause: E | Exception
    attempts: int

    def __str__(self) -> str:
        return f"fetch for {self.key} failed after {self.attempts} attempt(s): {self.cause}"


@dataclass(frozen=True, slots=True)
class MutationError[E]:
    """Failure of a single mutation run. Never retried."""

    cause: E | Exception
    message: str

    def __str__(self) -> str:
        return self.message


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Lifecycle
    "Status",
    # Function aliases
    "Producer",
    "WriteFn",
    "Mutator",
    # Errors
    "ConfigurationError",
    "ProducerError",
    "MutationError",
)
