"""Explicit memoization cache owned by its caller."""
from __future__ import annotations

import enum
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class KeyStrategy(enum.Enum):
    structural = "structural"
    identity = "identity"


class MemoCache(Generic[K, V]):
    """Memoize computed values by key.

    ``structural`` keys compare by value and must be hashable; ``identity`` keys
    compare by object identity, so unhashable objects (lists, dicts) are accepted.
    Identity entries keep a reference to the key object so its id is not reused
    while the entry is alive.
    """

    def __init__(self, strategy: KeyStrategy = KeyStrategy.structural) -> None:
        self._strategy = strategy
        self._entries: dict[Hashable, tuple[K, V]] = {}

    def _key(self, key: K) -> Hashable:
        if self._strategy is KeyStrategy.identity:
            return id(key)
        return key  # type: ignore[return-value]

    def get_or_compute(self, key: K, factory: Callable[[K], V]) -> V:
        slot = self._key(key)
        entry = self._entries.get(slot)
        if entry is not None:
            return entry[1]
        value = factory(key)
        self._entries[slot] = (key, value)
        return value

    def __contains__(self, key: K) -> bool:
        return self._key(key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def invalidate(self, key: K | None = None) -> None:
        """Drop one entry, or every entry when no key is given."""
        if key is None:
            self._entries.clear()
            return
        self._entries.pop(self._key(key), None)


__all__ = ["KeyStrategy", "MemoCache"]
