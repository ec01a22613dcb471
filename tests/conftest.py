"""Shared test fixtures and dummy collaborators."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from querycache import QueryClient, QueryOptions, Status


class Recorder:
    """Listener that keeps every snapshot it receives."""

    def __init__(self) -> None:
        self.snapshots: list[Any] = []

    def __call__(self, snapshot: Any) -> None:
        self.snapshots.append(snapshot)

    @property
    def statuses(self) -> list[Status]:
        return [s.status for s in self.snapshots]

    @property
    def last(self) -> Any:
        return self.snapshots[-1]

    def clear(self) -> None:
        self.snapshots.clear()


class ScriptedProducer:
    """
    Producer returning scripted outcomes in order; the last one repeats.

    Outcomes are Result values, or exceptions to raise.
    An optional gate holds every call until it is set.
    """

    def __init__(self, *outcomes: Any, gate: asyncio.Event | None = None) -> None:
        self.outcomes = outcomes
        self.gate = gate
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def client() -> QueryClient:
    return QueryClient()


@pytest.fixture
def fast() -> QueryOptions:
    """Default options with immediate retries."""
    return QueryOptions().with_backoff(base_ms=0)


@pytest.fixture
def recorder() -> Callable[[], Recorder]:
    return Recorder


@pytest.fixture
def scripted() -> Callable[..., ScriptedProducer]:
    return ScriptedProducer


@pytest.fixture
def wait_until() -> Callable[[Callable[[], bool]], Any]:
    async def _wait(condition: Callable[[], bool], rounds: int = 100) -> None:
        for _ in range(rounds):
            if condition():
                return
            await asyncio.sleep(0)
        raise AssertionError("condition not reached")

    return _wait
