"""
Query keys — structural identifiers.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any

from querycache._types import ConfigurationError

# ═══════════════════════════════════════════════════════════════════════════════
# Canonical Form
# ═══════════════════════════════════════════════════════════════════════════════

type Tagged = tuple[str, Any]


def _tag(part: object) -> Tagged:
    """Tag a part with its type so 1, 1.0 and True stay distinct."""
    kind = type(part)
    name = f"{kind.__module__}.{kind.__qualname__}"
    if isinstance(part, tuple):
        return (name, tuple(_tag(p) for p in part))
    if not isinstance(part, Hashable):
        raise ConfigurationError(f"Key part {part!r} is not hashable")
    try:
        hash(part)
    except TypeError as e:
        # Hashable type, unhashable contents
        raise ConfigurationError(f"Key part {part!r} is not hashable") from e
    return (name, part)


# ═══════════════════════════════════════════════════════════════════════════════
# Key
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True, eq=False)
class Key:
    """
    Immutable query key.

    Two keys are equal iff their parts are pairwise equal *and* of the same
    type. Build with ``as_key`` or ``Key.of``.

    Example:
        Key.of("user", 1) == as_key(("user", 1))
    """

    parts: tuple[Any, ...]
    _canonical: tuple[Tagged, ...] = field(repr=False, compare=False)

    @classmethod
    def of(cls, *parts: Any) -> Key:
        return cls(parts, tuple(_tag(p) for p in parts))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self._canonical == other._canonical

    def __hash__(self) -> int:
        return hash(self._canonical)

    def __len__(self) -> int:
        return len(self.parts)

    def __str__(self) -> str:
        return "/".join(str(p) for p in self.parts)

    def starts_with(self, prefix: Key) -> bool:
        """Prefix match on parts, same rules as equality."""
        n = len(prefix._canonical)
        return self._canonical[:n] == prefix._canonical


# ═══════════════════════════════════════════════════════════════════════════════
# Conversion & Predicates
# ═══════════════════════════════════════════════════════════════════════════════

type KeyLike = Key | tuple[Any, ...] | list[Any] | str | int

type KeyPredicate = Callable[[Key], bool]
"""Selects keys for invalidation."""


def as_key(value: object) -> Key:
    """
    Normalize a key-like value.

    Key → unchanged
    tuple / list → one part per element
    anything else → single-part key
    """
    if isinstance(value, Key):
        return value
    if isinstance(value, (tuple, list)):
        return Key.of(*value)
    return Key.of(value)


def exact(key: KeyLike) -> KeyPredicate:
    """Predicate matching one key."""
    target = as_key(key)
    return lambda k: k == target


def prefix(*parts: Any) -> KeyPredicate:
    """
    Predicate matching every key starting with ``parts``.

    Example:
        client.invalidate_queries(prefix("user"))  # ("user", 1), ("user", 2), ...
    """
    head = Key.of(*parts)
    return lambda k: k.starts_with(head)


def any_of(*targets: KeyLike | KeyPredicate) -> KeyPredicate:
    """
    Predicate matching any of several keys or predicates.

    Example:
        client.invalidate_queries(any_of(("user", 1), prefix("post")))
    """
    predicates = tuple(
        t if callable(t) and not isinstance(t, Key) else exact(t)
        for t in targets
    )
    return lambda k: any(p(k) for p in predicates)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Key",
    "KeyLike",
    "KeyPredicate",
    "any_of",
    "as_key",
    "exact",
    "prefix",
)
