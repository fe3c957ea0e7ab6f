"""Per-session memo tables for caching nodes and single-instance exports."""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Optional, Tuple

from .errors import CacheScopeError

_MISS = object()


@dataclass
class MemoStats:
    hits: int = 0
    misses: int = 0
    entries: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"hits": self.hits, "misses": self.misses, "entries": self.entries}


class MemoTable:
    """
    Memoized node values, one LRU table per owning node.

    Keys are ``(coordinate key, context signature)``. A table belongs to a
    single session and a single cache scope; values never leak across scopes.
    """

    def __init__(self, scope: Any = None):
        self.scope = scope
        self._tables: Dict[Hashable, OrderedDict] = {}
        self.stats = MemoStats()

    def check_scope(self, scope: Any) -> None:
        if scope is not None and scope != self.scope:
            raise CacheScopeError(
                f"Memo table bound to scope {self.scope!r} was asked for scope {scope!r}"
            )

    def lookup(self, owner: Hashable, key: Tuple) -> Any:
        """Cached value for ``key`` or the module-level ``_MISS`` sentinel."""
        table = self._tables.get(owner)
        if table is None:
            self.stats.misses += 1
            return _MISS
        value = table.get(key, _MISS)
        if value is _MISS:
            self.stats.misses += 1
        else:
            self.stats.hits += 1
            table.move_to_end(key)
        return value

    def store(self, owner: Hashable, key: Tuple, value: float, capacity: Optional[int] = None) -> float:
        table = self._tables.setdefault(owner, OrderedDict())
        if key not in table:
            self.stats.entries += 1
        table[key] = value
        table.move_to_end(key)
        if capacity and capacity > 0:
            while len(table) > capacity:
                table.popitem(last=False)
                self.stats.entries -= 1
        return value

    def clear(self, scope: Any = None) -> None:
        """Drop every entry and rebind to ``scope``."""
        self._tables.clear()
        self.scope = scope
        self.stats.entries = 0

    def __len__(self) -> int:
        return sum(len(t) for t in self._tables.values())


def is_miss(value: Any) -> bool:
    return value is _MISS
