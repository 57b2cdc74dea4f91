"""
Sorted per-side price level container.

Performance strategy:
1. dict[float, PriceLevel] for O(1) lookup of an individual price
2. Sorted key list maintained with bisect on every insert/delete, so the
   container is always ordered and never needs an ad hoc re-sort
3. Bids are keyed by -price so both sides iterate best-first in ascending key order
"""

from __future__ import annotations

from bisect import bisect_left, insort
from typing import Iterator

from ..types import PriceLevel, Side


class LevelSet:
    """
    One side of the book, ordered best-first.

    Thread-safety: NOT thread-safe. Owned by a single BookReconciler.
    """

    __slots__ = ('side', '_keys', '_levels')

    def __init__(self, side: Side) -> None:
        self.side = side
        # Ascending sort keys: -price for bids, price for asks
        self._keys: list[float] = []
        self._levels: dict[float, PriceLevel] = {}

    def _key(self, price: float) -> float:
        return -price if self.side is Side.BID else price

    def upsert(self, price: float, quantity: float, timestamp_ms: int) -> None:
        """Insert or replace the level at `price`. O(log n) search + O(n) list insert."""
        if price not in self._levels:
            insort(self._keys, self._key(price))
        self._levels[price] = PriceLevel(price, quantity, self.side, timestamp_ms)

    def remove(self, price: float) -> bool:
        """Delete the level at `price`. Returns False (no-op) if absent."""
        if self._levels.pop(price, None) is None:
            return False
        key = self._key(price)
        idx = bisect_left(self._keys, key)
        del self._keys[idx]
        return True

    def truncate(self, depth: int) -> int:
        """Drop everything beyond the best `depth` levels. Returns the number removed."""
        extra = len(self._keys) - depth
        if extra <= 0:
            return 0
        for key in self._keys[depth:]:
            del self._levels[-key if self.side is Side.BID else key]
        del self._keys[depth:]
        return extra

    def clear(self) -> None:
        self._keys.clear()
        self._levels.clear()

    def get(self, price: float) -> PriceLevel | None:
        return self._levels.get(price)

    def best(self) -> PriceLevel | None:
        if not self._keys:
            return None
        key = self._keys[0]
        return self._levels[-key if self.side is Side.BID else key]

    def levels(self) -> tuple[PriceLevel, ...]:
        """All levels best-first (descending for bids, ascending for asks)."""
        if self.side is Side.BID:
            return tuple(self._levels[-key] for key in self._keys)
        return tuple(self._levels[key] for key in self._keys)

    def __iter__(self) -> Iterator[PriceLevel]:
        return iter(self.levels())

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, price: object) -> bool:
        return price in self._levels
