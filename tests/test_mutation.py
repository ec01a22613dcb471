import asyncio
from datetime import timedelta

import pytest
from kungfu import Error, Ok

from querycache import (
    ClientOptions,
    MutationError,
    MutationOptions,
    QueryClient,
    Status,
    as_key,
)
from querycache import key as K


class FakeUserApi:
    def __init__(self) -> None:
        self.names = {1: "Alice", 2: "Carol"}
        self.reads = 0
        self.writes = 0

    def reader(self, user_id: int):
        async def read():
            self.reads += 1
            return Ok(self.names[user_id])
        return read

    async def rename(self, args: tuple[int, str]):
        self.writes += 1
        user_id, name = args
        self.names[user_id] = name
        return Ok(name)


@pytest.mark.asyncio
async def test_invalidation_refetches_for_every_observer(client, recorder, fast) -> None:
    api = FakeUserApi()
    recs = [recorder(), recorder(), recorder()]
    handles = [
        client.use_query(("user", 1), api.reader(1), fast, listener=rec) for rec in recs
    ]
    await client.settle()
    handles[2].close()
    for rec in recs:
        rec.clear()

    rename = client.use_mutation(api.rename, MutationOptions(invalidates=("user", 1)))
    result = await rename.mutate((1, "Bob"))
    await client.settle()

    assert isinstance(result, Ok)
    assert result.value == "Bob"
    for rec in recs[:2]:
        assert rec.statuses == [Status.LOADING, Status.SUCCESS]
        assert rec.last.data == "Bob"
    assert recs[2].snapshots == []
    assert handles[0].data == "Bob"
    assert api.reads == 2


@pytest.mark.asyncio
async def test_mutation_reports_loading_then_success(client, recorder) -> None:
    api = FakeUserApi()
    rec = recorder()
    rename = client.use_mutation(api.rename, listener=rec)
    assert rename.status == Status.IDLE

    await rename.mutate((1, "Bob"))

    assert rec.statuses == [Status.LOADING, Status.SUCCESS]
    assert rename.data == "Bob"
    assert rename.error is None


@pytest.mark.asyncio
async def test_failed_mutation_is_not_retried_and_does_not_invalidate(client, scripted) -> None:
    reader = scripted(Ok("Alice"))
    query = client.use_query(("user", 1), reader)
    await client.settle()
    attempts = 0
    seen_errors = []

    async def reject(_):
        nonlocal attempts
        attempts += 1
        return Error("forbidden")

    rename = client.use_mutation(
        reject,
        MutationOptions(invalidates=("user", 1), on_error=seen_errors.append),
    )
    result = await rename.mutate("Bob")
    await client.settle()

    assert isinstance(result, Error)
    assert isinstance(result.value, MutationError)
    assert result.value.cause == "forbidden"
    assert attempts == 1
    assert rename.status == Status.ERROR
    assert seen_errors == [result.value]
    assert reader.calls == 1
    assert query.data == "Alice"


@pytest.mark.asyncio
async def test_raising_write_function_is_reported(client) -> None:
    async def explode(_):
        raise ConnectionError("socket closed")

    rename = client.use_mutation(explode)
    result = await rename.mutate("Bob")

    assert isinstance(result, Error)
    assert isinstance(result.value.cause, ConnectionError)
    assert rename.status == Status.ERROR


def test_invalidating_unknown_key_is_a_no_op(client) -> None:
    assert client.invalidate_queries(("nobody", 404)) == ()
    assert client.invalidate_queries(None) == ()
    assert len(client) == 0


@pytest.mark.asyncio
async def test_prefix_invalidation(client, scripted) -> None:
    user1, user2, post = scripted(Ok("u1")), scripted(Ok("u2")), scripted(Ok("p"))
    client.use_query(("user", 1), user1)
    client.use_query(("user", 2), user2)
    client.use_query(("post", 1), post)
    await client.settle()

    keys = client.invalidate_queries(K.prefix("user"))
    await client.settle()

    assert set(keys) == {as_key(("user", 1)), as_key(("user", 2))}
    assert (user1.calls, user2.calls, post.calls) == (2, 2, 1)


@pytest.mark.asyncio
async def test_several_targets_in_one_invalidation(client, scripted) -> None:
    user1, user2, post = scripted(Ok("u1")), scripted(Ok("u2")), scripted(Ok("p"))
    client.use_query(("user", 1), user1)
    client.use_query(("user", 2), user2)
    client.use_query(("post", 2), post)
    await client.settle()

    keys = client.invalidate_queries(K.any_of(("user", 1), ("post", 2)))
    await client.settle()

    assert set(keys) == {as_key(("user", 1)), as_key(("post", 2))}
    assert (user1.calls, user2.calls, post.calls) == (2, 1, 2)


@pytest.mark.asyncio
async def test_mutation_can_invalidate_several_keys(client) -> None:
    api = FakeUserApi()
    first = client.use_query(("user", 1), api.reader(1))
    second = client.use_query(("user", 2), api.reader(2))
    await client.settle()

    async def rename_both(name: str):
        await api.rename((1, name))
        return await api.rename((2, name))

    rename = client.use_mutation(
        rename_both,
        MutationOptions(invalidates=K.any_of(("user", 1), ("user", 2))),
    )
    await rename.mutate("Eve")
    await client.settle()

    assert (first.data, second.data) == ("Eve", "Eve")
    assert api.reads == 4


@pytest.mark.asyncio
async def test_unobserved_entry_is_marked_stale(scripted) -> None:
    client = QueryClient(ClientOptions(gc_time=timedelta(seconds=60)))
    producer = scripted(Ok("v1"), Ok("v2"))
    query = client.use_query("k", producer)
    await client.settle()
    query.close()

    assert client.invalidate_queries("k") == (as_key("k"),)
    await client.settle()
    assert producer.calls == 1
    assert client.get_query_state("k").is_invalidated

    again = client.use_query("k", producer)
    await client.settle()
    assert producer.calls == 2
    assert again.data == "v2"
    again.close()
    client.collect_garbage()


@pytest.mark.asyncio
async def test_invalidation_during_fetch_runs_follow_up_cycle(client, scripted, recorder, wait_until) -> None:
    gate = asyncio.Event()
    rec = recorder()
    producer = scripted(Ok("before"), Ok("after"), gate=gate)
    client.use_query("k", producer, listener=rec)
    await wait_until(lambda: producer.calls == 1)

    client.invalidate_queries("k")
    assert producer.calls == 1

    gate.set()
    await client.settle()

    assert producer.calls == 2
    assert rec.statuses == [
        Status.IDLE,
        Status.LOADING,
        Status.SUCCESS,
        Status.LOADING,
        Status.SUCCESS,
    ]
    assert rec.last.data == "after"


@pytest.mark.asyncio
async def test_on_success_can_write_query_data(client, scripted) -> None:
    reader = scripted(Ok("Alice"))
    query = client.use_query(("user", 1), reader)
    await client.settle()
    api = FakeUserApi()

    rename = client.use_mutation(
        api.rename,
        MutationOptions().with_on_success(
            lambda c, name: c.set_query_data(("user", 1), name)
        ),
    )
    await rename.mutate((1, "Bob"))

    assert query.data == "Bob"
    assert query.status == Status.SUCCESS
    assert reader.calls == 1


@pytest.mark.asyncio
async def test_run_mutation_is_lazy(client) -> None:
    calls = 0

    async def write():
        nonlocal calls
        calls += 1
        return Ok("done")

    operation = client.mutations.run_mutation(write)
    assert calls == 0

    result = await operation
    assert calls == 1
    assert result.value == "done"
