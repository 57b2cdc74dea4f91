"""
Synthetic order book feed.

Produces the same BookSnapshot / BookDiff records as the Binance transport, so
the reconciler and engine cannot tell the difference. Used for --demo and as
the fallback once live reconnection attempts are exhausted.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import AsyncIterator, NamedTuple, Optional

from ..types import BookDiff, BookSnapshot, Side

logger = logging.getLogger(__name__)

BASE_PRICES = {
    "BTCUSDT": 65000.0,
    "ETHUSDT": 3500.0,
    "ADAUSDT": 0.45,
}
DEFAULT_BASE_PRICE = 100.0

LADDER_STEP = 0.001         # 0.1% between generated snapshot levels
DIFF_RANGE = 0.01           # Diff prices land within 1% of the base
DELETE_PROBABILITY = 0.1
DRIFT = 0.0001


class SyntheticRegion(NamedTuple):
    """Price band whose generated quantities are amplified."""
    side: Side
    min_price: float
    max_price: float
    intensity: float            # 0.2 .. 1.0, amplification is 1 + 3 * intensity


class SyntheticFeed:
    """
    Seeded random-walk order book.

    Usage:
        feed = SyntheticFeed("BTCUSDT", seed=7)
        snapshot = feed.generate_snapshot(20)
        diff = feed.generate_diff()
    """

    def __init__(self, symbol: str = "BTCUSDT", seed: Optional[int] = None) -> None:
        self.symbol = symbol.upper()
        self.base_price = BASE_PRICES.get(self.symbol, DEFAULT_BASE_PRICE)
        self._rng = random.Random(seed)
        self._update_id = 1000
        self.regions: list[SyntheticRegion] = []
        self._running = False

    @property
    def last_update_id(self) -> int:
        return self._update_id

    def _quantity(self) -> float:
        """Mostly small orders with an occasional large one."""
        roll = self._rng.random()
        if roll < 0.1:
            return self._rng.random() * 50 + 10
        if roll < 0.3:
            return self._rng.random() * 10 + 1
        return self._rng.random() + 0.1

    def _generate_regions(self) -> None:
        rng = self._rng
        base = self.base_price
        self.regions = []
        for _ in range(rng.randint(2, 4)):
            side = Side.BID if rng.random() < 0.5 else Side.ASK
            offset = abs((rng.random() - 0.5) * base * 0.02) + base * 0.005
            center = base - offset if side is Side.BID else base + offset
            half = base * 0.002
            self.regions.append(SyntheticRegion(side, center - half, center + half, rng.random() * 0.8 + 0.2))

    def _amplify(self, price: float, quantity: float, side: Side) -> float:
        for region in self.regions:
            if region.side is side and region.min_price <= price <= region.max_price:
                return quantity * (1 + region.intensity * 3)
        return quantity

    def generate_snapshot(self, depth: int = 20) -> BookSnapshot:
        """Full ladder of `depth` levels per side at 0.1% steps around the base price."""
        self._generate_regions()
        bids: list[tuple[float, float]] = []
        asks: list[tuple[float, float]] = []
        for i in range(1, depth + 1):
            step = i * self.base_price * LADDER_STEP
            bid, ask = round(self.base_price - step, 8), round(self.base_price + step, 8)
            bids.append((bid, round(self._amplify(bid, self._quantity(), Side.BID), 8)))
            asks.append((ask, round(self._amplify(ask, self._quantity(), Side.ASK), 8)))

        self._update_id += 1
        logger.info("Synthetic snapshot for %s at %.4f (id=%d)", self.symbol, self.base_price, self._update_id)
        return BookSnapshot(bids=bids, asks=asks, last_update_id=self._update_id)

    def generate_diff(self) -> BookDiff:
        """1-3 changes per side, ~10% of them deletions; the base price drifts."""
        rng = self._rng
        base = self.base_price

        def changes(sign: int) -> list[tuple[float, float]]:
            out = []
            for _ in range(rng.randint(1, 3)):
                price = round(base + sign * rng.random() * base * DIFF_RANGE, 8)
                qty = 0.0 if rng.random() < DELETE_PROBABILITY else round(self._quantity(), 8)
                out.append((price, qty))
            return out

        bids, asks = changes(-1), changes(+1)
        self.base_price += (rng.random() - 0.5) * base * DRIFT

        start = self._update_id + 1
        end = start + rng.randint(0, 1)
        self._update_id = end
        return BookDiff(sequence_start=start, sequence_end=end, bids=bids, asks=asks)

    async def stream(self, interval_sec: float = 1.0) -> AsyncIterator[BookDiff]:
        """Yield a diff every `interval_sec` until stop() is called."""
        self._running = True
        while self._running:
            await asyncio.sleep(interval_sec)
            if not self._running:
                break
            yield self.generate_diff()

    def stop(self) -> None:
        self._running = False
