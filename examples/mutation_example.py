"""
Mutations — write, then invalidate.

Key concepts:
- Mutations run once, no retry
- On success the target keys are invalidated
- Observed keys refetch in the background, unobserved ones are marked stale
"""

from kungfu import LazyCoroResult
from querycache import QueryClient, MutationOptions, QueryOptions
from querycache import key as K
from examples._infra import banner, run, FakeApi


api = FakeApi()


def fetch_user(user_id: int):
    def _producer() -> LazyCoroResult:
        return LazyCoroResult(lambda: api.get_user(user_id))
    return _producer


async def main() -> None:
    client = QueryClient()
    opts = QueryOptions().with_backoff(base_ms=50)

    alice = client.use_query(("user", 1), fetch_user(1), opts)
    carol = client.use_query(("user", 2), fetch_user(2), opts)
    await client.settle()

    banner("1. Rename user 1, invalidate exactly ('user', 1)")
    rename = client.use_mutation(
        lambda args: api.rename_user(*args),
        MutationOptions(invalidates=("user", 1)),
    )
    result = await rename.mutate((1, "Bob"))
    print(f"   mutation → {result}")
    await client.settle()
    print(f"   user 1 = {alice.data.name}, user 2 = {carol.data.name}")

    banner("2. Rename user 2, invalidate every ('user', ...)")
    rename_all = client.use_mutation(
        lambda args: api.rename_user(*args),
        MutationOptions(invalidates=K.prefix("user")),
    )
    await rename_all.mutate((2, "Dave"))
    await client.settle()
    print(f"   user 1 = {alice.data.name}, user 2 = {carol.data.name}, reads={api.reads}")

    banner("3. Failed write: reported, not retried")
    failed = await rename.mutate((99, "Nobody"))
    print(f"   mutation → {failed}, status={rename.status.name}")

    alice.close()
    carol.close()
    print("\nDone!")


if __name__ == "__main__":
    run(main)
