import asyncio
import logging

import pytest
from kungfu import Error, Ok

from querycache import ProducerError, QueryOptions, Status, as_key
from querycache.lift import producer as lift_producer


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_producer_call(client, scripted) -> None:
    gate = asyncio.Event()
    producer = scripted(Ok("todos"), gate=gate)
    key = as_key(("todos",))

    tasks = [client.fetcher.ensure_fresh(key, producer) for _ in range(10)]
    running = client.store.get(key).task
    assert running is not None
    assert client.store.get(key).in_flight_fetch_id is not None

    gate.set()
    snapshots = await asyncio.gather(*tasks)

    assert producer.calls == 1
    assert all(s.data == "todos" for s in snapshots)


@pytest.mark.asyncio
async def test_always_failing_producer_is_called_max_retries_times(client, scripted, fast) -> None:
    producer = scripted(Error("down"))

    snapshot = await client.fetch_query("k", producer, fast.with_retries(3))

    assert producer.calls == 3
    assert snapshot.status == Status.ERROR
    assert isinstance(snapshot.error, ProducerError)
    assert snapshot.error.cause == "down"
    assert snapshot.error.attempts == 3
    assert snapshot.retry_count == 3


@pytest.mark.asyncio
async def test_zero_retries_still_calls_producer_once(client, scripted, fast) -> None:
    producer = scripted(Error("down"))

    snapshot = await client.fetch_query("k", producer, fast.with_retries(0))

    assert producer.calls == 1
    assert snapshot.status == Status.ERROR


@pytest.mark.asyncio
async def test_data_survives_failed_refetch(client, scripted, fast) -> None:
    producer = scripted(Ok("D"), Error("boom"))
    query = client.use_query("k", producer, fast.with_retries(2))
    await client.settle()
    assert query.data == "D"

    snapshot = await query.refetch()

    assert snapshot.status == Status.ERROR
    assert snapshot.data == "D"
    assert query.status == Status.ERROR
    assert query.data == "D"
    assert query.error.cause == "boom"
    assert producer.calls == 3


@pytest.mark.asyncio
async def test_user_query_recovers_after_one_failure(client, scripted, recorder, fast) -> None:
    rec = recorder()
    producer = scripted(Error("flaky"), Ok("Alice"))

    client.use_query(("user", 1), producer, fast.with_retries(3), listener=rec)
    await client.settle()

    assert rec.statuses == [Status.IDLE, Status.LOADING, Status.SUCCESS]
    assert rec.last.data == "Alice"
    assert rec.last.retry_count == 0
    assert len({s.updated_at for s in rec.snapshots if s.updated_at is not None}) == 1
    assert producer.calls == 2


@pytest.mark.asyncio
async def test_raising_producer_is_reported_as_error_state(client, scripted, fast) -> None:
    producer = scripted(RuntimeError("connection reset"))

    snapshot = await client.fetch_query("k", producer, fast.with_retries(2))

    assert snapshot.status == Status.ERROR
    assert isinstance(snapshot.error.cause, RuntimeError)
    assert producer.calls == 2


@pytest.mark.asyncio
async def test_lifted_plain_async_function(client, fast) -> None:
    calls = 0

    async def load() -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise ValueError("cold start")
        return "warm"

    snapshot = await client.fetch_query("k", lift_producer(load, on_error=str), fast)

    assert snapshot.data == "warm"
    assert calls == 2


@pytest.mark.asyncio
async def test_pending_retry_is_abandoned_when_observers_leave(client, scripted, wait_until) -> None:
    producer = scripted(Error("down"))
    slow = QueryOptions().with_backoff(base_ms=60_000)
    query = client.use_query("k", producer, slow)
    await wait_until(lambda: producer.calls == 1)
    task = client.store.get(as_key("k")).task

    query.close()
    snapshot = await asyncio.wait_for(task, timeout=1)

    assert snapshot.status == Status.ERROR
    assert producer.calls == 1
    assert as_key("k") not in client.store


@pytest.mark.asyncio
async def test_exhausted_retries_are_logged(client, scripted, fast, caplog) -> None:
    producer = scripted(Error("down"))

    with caplog.at_level(logging.WARNING, logger="querycache.fetch._coordinator"):
        await client.fetch_query("k", producer, fast.with_retries(2))

    assert "failed after 2 attempt(s)" in caplog.text


@pytest.mark.asyncio
async def test_dedup_holds_across_retries(client, scripted, fast) -> None:
    producer = scripted(Error("a"), Error("b"), Ok("c"))
    key = as_key("k")
    first = client.fetcher.ensure_fresh(key, producer, fast)
    running = client.store.get(key).task
    fetch_id = client.store.get(key).in_flight_fetch_id

    await asyncio.sleep(0)
    again = client.fetcher.ensure_fresh(key)

    assert client.store.get(key).task is running
    assert client.store.get(key).in_flight_fetch_id == fetch_id
    snapshot = await first
    assert (await again) == snapshot
    assert snapshot.data == "c"
    assert producer.calls == 3


@pytest.mark.asyncio
async def test_caller_timing_out_does_not_cancel_shared_fetch(client, scripted) -> None:
    gate = asyncio.Event()
    producer = scripted(Ok("report"), gate=gate)
    query = client.use_query("k", producer)
    patient = asyncio.ensure_future(client.fetch_query("k", producer))

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(client.fetch_query("k", producer), timeout=0.01)
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(query.refetch(), timeout=0.01)

    gate.set()
    snapshot = await patient
    assert snapshot.data == "report"
    await client.settle()
    assert query.status == Status.SUCCESS
    # refetch() while in flight queues one follow-up cycle
    assert producer.calls == 2


@pytest.mark.asyncio
async def test_cancelled_fetch_restores_previous_state(client, scripted, recorder) -> None:
    gate = asyncio.Event()
    producer = scripted(Ok("v1"), Ok("v2"), gate=gate)
    rec = recorder()
    query = client.use_query("k", producer, listener=rec)
    gate.set()
    await client.settle()
    gate.clear()

    running = query.refetch()
    client.store.get(as_key("k")).task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await running
    await client.settle()

    assert rec.statuses[-2:] == [Status.LOADING, Status.SUCCESS]
    assert query.status == Status.SUCCESS
    assert query.data == "v1"
    assert not client.store.get(as_key("k")).is_fetching


@pytest.mark.asyncio
async def test_cancelled_unobserved_fetch_is_collected(client, scripted) -> None:
    gate = asyncio.Event()
    pending = client.fetcher.ensure_fresh(as_key("k"), scripted(Ok(1), gate=gate))

    client.store.get(as_key("k")).task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending

    assert as_key("k") not in client.store


@pytest.mark.asyncio
async def test_observer_returning_during_backoff_waits_out_the_delay(client, scripted, wait_until) -> None:
    producer = scripted(Error("down"), Ok("up"))
    opts = QueryOptions().with_backoff(base_ms=50)
    query = client.use_query("k", producer, opts)
    await wait_until(lambda: client.store.get(as_key("k")).retry_count == 1)

    query.close()
    remounted = client.use_query("k", producer, opts)
    for _ in range(10):
        await asyncio.sleep(0)
    assert producer.calls == 1

    await client.settle()
    assert producer.calls == 2
    assert remounted.status == Status.SUCCESS
    assert remounted.data == "up"
