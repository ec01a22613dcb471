"""
Client — the facade external collaborators hold.

    client = QueryClient()
    q = client.use_query(("user", 1), fetch_user)
    m = client.use_mutation(rename_user, MutationOptions(invalidates=("user", 1)))
"""

from __future__ import annotations

from querycache.client._client import QueryClient
from querycache.client._handles import QueryHandle, MutationHandle

__all__ = (
    "QueryClient",
    "QueryHandle",
    "MutationHandle",
)
