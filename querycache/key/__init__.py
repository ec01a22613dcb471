"""
Key — structural query identifiers.

    from querycache import key as K

    K.as_key(("user", 1))
    client.invalidate_queries(K.prefix("user"))
"""

from __future__ import annotations

from querycache.key._key import (
    Key,
    KeyLike,
    KeyPredicate,
    any_of,
    as_key,
    exact,
    prefix,
)

__all__ = (
    "Key",
    "KeyLike",
    "KeyPredicate",
    "any_of",
    "as_key",
    "exact",
    "prefix",
)
