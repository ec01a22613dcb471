"""
Queries — dedup, retry with backoff, stale-while-revalidate.

Key concepts:
- One entry per key, shared by every observer
- Concurrent observers share one producer call
- Failures retry transparently; the last good data survives an error
"""

from kungfu import LazyCoroResult
from querycache import QueryClient, QueryOptions, Status
from examples._infra import banner, run, FakeApi


api = FakeApi()


def fetch_user(user_id: int):
    def _producer() -> LazyCoroResult:
        return LazyCoroResult(lambda: api.get_user(user_id))
    return _producer


def show(snapshot) -> None:
    data = snapshot.data.name if snapshot.data else None
    print(f"   [{snapshot.key}] {snapshot.status.name:<8} data={data} error={snapshot.error}")


async def main() -> None:
    client = QueryClient()
    opts = QueryOptions().with_backoff(base_ms=50)

    banner("1. Flaky read: one failure, then success")
    api.fail_next_reads = 1
    user = client.use_query(("user", 1), fetch_user(1), opts, listener=show)
    await client.settle()
    print(f"   reads={api.reads} retry_count={user.snapshot.retry_count}")

    banner("2. Second observer reuses fresh data")
    again = client.use_query(("user", 1), fetch_user(1), opts, listener=show)
    await client.settle()
    print(f"   reads={api.reads}")

    banner("3. Refetch fails for good: data stays")
    api.fail_next_reads = 10
    await user.refetch()
    assert user.status == Status.ERROR
    print(f"   status={user.status.name} data={user.data.name}")

    banner("4. Last observer leaves: entry collected")
    user.close()
    again.close()
    print(f"   entries={len(client)}")

    print("\nDone!")


if __name__ == "__main__":
    run(main)
