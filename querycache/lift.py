"""
Lift — Helpers for turning plain async code into producers and write functions.

Re-exports from combinators.lift with querycache-specific additions.
"""

from __future__ import annotations

from collections.abc import Callable, Awaitable

from kungfu import LazyCoroResult, Result, Ok, Error

# Re-export everything from combinators.lift
from combinators.lift import (
    pure,
    fail,
    catching_async,
    wrap_async,
    lifted,
    call,
    call_catching,
)


# ═══════════════════════════════════════════════════════════════════════════════
# querycache-specific helpers
# ═══════════════════════════════════════════════════════════════════════════════

def producer[T, E](
    fn: Callable[[], Awaitable[T]],
    on_error: Callable[[Exception], E],
) -> Callable[[], LazyCoroResult[T, E]]:
    """
    Lift a plain async function into a producer.

    Each call builds a fresh LazyCoroResult, so the producer can be
    re-invoked for retries.

    Example:
        fetch_user = producer(lambda: api.get_user(1), on_error=str)
        client.use_query(("user", 1), fetch_user)
    """
    def _make() -> LazyCoroResult[T, E]:
        return catching_async(fn, on_error=on_error)
    return _make


async def settle_call[T, E](
    fn: Callable[[], Awaitable[Result[T, E]]],
) -> Result[T, E | Exception]:
    """
    Invoke a Result-returning function, folding raised exceptions into Error.

    Used by the coordinators so that a misbehaving producer or write function
    still reports as a value.
    """
    async def _invoke() -> Result[T, E]:
        return await fn()

    outcome = await catching_async(_invoke, on_error=lambda e: e)
    match outcome:
        case Ok(Ok(value)):
            return Ok(value)
        case Ok(Error(err)):
            return Error(err)
        case Ok(value):
            # Plain value returned instead of a Result
            return Ok(value)
        case Error(exc):
            return Error(exc)


__all__ = (
    # From combinators.lift
    "pure",
    "fail",
    "catching_async",
    "wrap_async",
    "lifted",
    "call",
    "call_catching",
    # querycache additions
    "producer",
    "settle_call",
)
