"""Shared infrastructure for examples."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field

from kungfu import Result, Ok, Error


# Types
@dataclass(frozen=True, slots=True)
class User:
    id: int
    name: str


# Errors
@dataclass(frozen=True, slots=True)
class NotFound(Exception):
    entity: str
    id: int | str

    def __str__(self) -> str:
        return f"{self.entity}:{self.id} not found"


# Fake API with a flaky read path
@dataclass(slots=True)
class FakeApi:
    users: dict[int, User] = field(default_factory=lambda: {
        1: User(1, "Alice"),
        2: User(2, "Carol"),
    })
    fail_next_reads: int = 0
    reads: int = 0

    async def get_user(self, user_id: int) -> Result[User, NotFound | str]:
        await asyncio.sleep(0.01)
        self.reads += 1
        if self.fail_next_reads > 0:
            self.fail_next_reads -= 1
            return Error("503 service unavailable")
        user = self.users.get(user_id)
        return Ok(user) if user else Error(NotFound("User", user_id))

    async def rename_user(self, user_id: int, name: str) -> Result[User, NotFound]:
        await asyncio.sleep(0.01)
        if user_id not in self.users:
            return Error(NotFound("User", user_id))
        self.users[user_id] = User(user_id, name)
        return Ok(self.users[user_id])


# Helpers
def banner(title: str) -> None:
    print(f"\n{'─' * 50}\n{title}\n{'─' * 50}")


def run(main: Callable[[], Coroutine[object, object, None]]) -> None:
    logging.basicConfig(level=logging.DEBUG, format="  %(name)s: %(message)s")
    asyncio.run(main())
