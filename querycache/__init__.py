"""
querycache — deduplicating, self-refreshing cache for async reads.

    from querycache import QueryClient, MutationOptions
    from querycache import key as K

    client = QueryClient()
    user = client.use_query(("user", 1), fetch_user)        # observe + fetch
    rename = client.use_mutation(
        rename_user,
        MutationOptions(invalidates=K.prefix("user")),       # refetch on success
    )
    await rename.mutate("Bob")
"""

from querycache import key
from querycache import lift
from querycache._types import (
    Result,
    Ok,
    Error,
    LazyCoroResult,
    Status,
    Producer,
    WriteFn,
    Mutator,
    ConfigurationError,
    ProducerError,
    MutationError,
)
from querycache._policy import (
    RetryPolicy,
    QueryOptions,
    MutationOptions,
    ClientOptions,
)
from querycache.key import Key, as_key
from querycache.store import QuerySnapshot
from querycache.mutation import MutationSnapshot
from querycache.subscription import Subscription
from querycache.client import QueryClient, QueryHandle, MutationHandle

__version__ = "0.1.0"

__all__ = (
    "key",
    "lift",
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    "Status",
    "Producer",
    "WriteFn",
    "Mutator",
    "ConfigurationError",
    "ProducerError",
    "MutationError",
    "RetryPolicy",
    "QueryOptions",
    "MutationOptions",
    "ClientOptions",
    "Key",
    "as_key",
    "QuerySnapshot",
    "MutationSnapshot",
    "Subscription",
    "QueryClient",
    "QueryHandle",
    "MutationHandle",
)
