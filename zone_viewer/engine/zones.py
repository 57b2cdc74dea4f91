"""
Pressure-zone detection over a BookState.

Six independent candidate generators run over the same book:

1. Volume-weighted density clustering (both sides, single linkage)
2. Same-side proximity grouping (support from bids, resistance from asks)
3. Order-flow imbalance scan (100 price buckets)
4. Liquidity density mapping (200-bucket histogram, 1-D peak detection)
5. Microstructure heuristics (icebergs, hidden liquidity, algorithmic spacing)
6. Time-weighted volume profile (needs retained history)

Their candidates are concatenated and merged into a canonical list of at most
max_zones zones. Levels with a non-finite or non-positive price/quantity are
dropped per generator; a bad level degrades the output instead of failing the pass.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import Counter
from typing import Callable, Iterable, NamedTuple, Sequence

import numpy as np

from ..config import DetectorConfig
from ..types import BookState, PressureType, PriceLevel, PriceRange, Side, Zone, ZoneType
from .clustering import (
    LevelGroup,
    expand_region,
    group_by_proximity,
    index_percentile,
    local_maxima,
    price_spread,
    single_linkage,
    valid_levels,
    volume_consistency,
    volume_weighted_center,
)

logger = logging.getLogger(__name__)


class VolumeSample(NamedTuple):
    """Per-price resting volume of one analysis pass, kept for the volume profile."""
    timestamp_ms: int
    volumes: dict[float, float]


def sample_book(book: BookState, timestamp_ms: int, tick: float = 0.01) -> VolumeSample:
    volumes: dict[float, float] = {}
    for level in valid_levels(book.levels):
        price = round_to_tick(level.price, tick)
        volumes[price] = volumes.get(price, 0.0) + level.quantity
    return VolumeSample(timestamp_ms, volumes)


def round_to_tick(price: float, tick: float) -> float:
    return round(round(price / tick) * tick, 10)


def _clamp01(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return min(1.0, max(0.0, value))


def position(price: float, mid: float) -> tuple[Side, ZoneType, PressureType]:
    """Support below the mid price, resistance at or above it."""
    if price < mid:
        return Side.BID, ZoneType.SUPPORT, PressureType.SUPPORT
    return Side.ASK, ZoneType.RESISTANCE, PressureType.RESISTANCE


def make_zone(
    zone_id: str,
    side: Side,
    zone_type: ZoneType,
    pressure_type: PressureType,
    center_price: float,
    min_price: float,
    max_price: float,
    intensity: float,
    strength: float,
    total_volume: float,
    order_count: int,
    timestamp_ms: int,
    is_active: bool = True,
) -> Zone:
    """Build a Zone with its bound and [0, 1] invariants enforced."""
    lo, hi = min(min_price, max_price), max(min_price, max_price)
    lo, hi = min(lo, center_price), max(hi, center_price)
    order_count = max(int(order_count), 0)
    return Zone(
        id=zone_id,
        side=side,
        type=zone_type,
        pressure_type=pressure_type,
        center_price=center_price,
        min_price=lo,
        max_price=hi,
        intensity=_clamp01(intensity),
        strength=_clamp01(strength),
        total_volume=total_volume,
        order_count=order_count,
        average_quantity=total_volume / max(order_count, 1),
        timestamp_ms=timestamp_ms,
        is_active=is_active,
    )


class _Pass(NamedTuple):
    """Filtered inputs shared by every generator within one detect() call."""
    levels: list[PriceLevel]
    bids: list[PriceLevel]
    asks: list[PriceLevel]
    mid: float
    total_volume: float
    price_range: PriceRange
    now_ms: int


class ZoneDetector:
    """
    Ensemble of zone candidate generators plus the merge pass.

    Stateless between passes apart from the zone id counter; history for the
    volume profile is passed in by the owner (see PressureEngine).
    """

    def __init__(
        self,
        config: DetectorConfig = DetectorConfig(),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._clock = clock
        self._ids = itertools.count(1)

    def _next_id(self, kind: str) -> str:
        return f"{kind}-{next(self._ids)}"

    def _prepare(self, book: BookState, now_ms: int | None) -> _Pass:
        bids = valid_levels(book.bids)
        asks = valid_levels(book.asks)
        levels = bids + asks
        if levels:
            prices = [level.price for level in levels]
            price_range = PriceRange(min(prices), max(prices))
        else:
            price_range = PriceRange(0.0, 0.0)

        if bids and asks:
            mid = (max(l.price for l in bids) + min(l.price for l in asks)) / 2.0
        elif bids:
            mid = max(l.price for l in bids)
        elif asks:
            mid = min(l.price for l in asks)
        else:
            mid = 0.0

        return _Pass(
            levels=levels,
            bids=bids,
            asks=asks,
            mid=mid,
            total_volume=sum(level.quantity for level in levels),
            price_range=price_range,
            now_ms=int(self._clock() * 1000) if now_ms is None else now_ms,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def detect(
        self,
        book: BookState,
        history: Sequence[VolumeSample] = (),
        now_ms: int | None = None,
    ) -> list[Zone]:
        """Run every generator over `book` and return the merged zone list."""
        p = self._prepare(book, now_ms)
        if not p.levels:
            return []

        candidates: list[Zone] = []
        candidates += self._density_clusters(p)
        candidates += self._side_groups(p)
        candidates += self._imbalance(p)
        candidates += self._liquidity_density(p)
        candidates += self._microstructure(p)
        candidates += self._volume_profile(p, history)

        zones = self.merge(candidates)
        logger.debug("Detected %d candidates -> %d zones", len(candidates), len(zones))
        return zones

    # Public wrappers so individual generators can be inspected in isolation

    def density_clusters(self, book: BookState, now_ms: int | None = None) -> list[Zone]:
        return self._density_clusters(self._prepare(book, now_ms))

    def side_groups(self, book: BookState, now_ms: int | None = None) -> list[Zone]:
        return self._side_groups(self._prepare(book, now_ms))

    def imbalance(self, book: BookState, now_ms: int | None = None) -> list[Zone]:
        return self._imbalance(self._prepare(book, now_ms))

    def liquidity_density(self, book: BookState, now_ms: int | None = None) -> list[Zone]:
        return self._liquidity_density(self._prepare(book, now_ms))

    def microstructure(self, book: BookState, now_ms: int | None = None) -> list[Zone]:
        return self._microstructure(self._prepare(book, now_ms))

    def volume_profile(
        self,
        book: BookState,
        history: Sequence[VolumeSample],
        now_ms: int | None = None,
    ) -> list[Zone]:
        return self._volume_profile(self._prepare(book, now_ms), history)

    # ------------------------------------------------------------------
    # 1. Volume-weighted density clustering
    # ------------------------------------------------------------------

    def dynamic_volume_threshold(self, levels: Sequence[PriceLevel]) -> float:
        cfg = self.config
        volumes = sorted(level.quantity for level in levels)
        if not volumes:
            return cfg.volume_floor
        median = index_percentile(volumes, 0.5)
        p75 = index_percentile(volumes, 0.75)
        return max(median * cfg.cluster_median_factor, p75 * cfg.cluster_p75_factor, cfg.volume_floor)

    def _density_clusters(self, p: _Pass) -> list[Zone]:
        cfg = self.config
        if not p.levels:
            return []

        epsilon = p.price_range.span * cfg.cluster_epsilon_fraction
        min_volume = self.dynamic_volume_threshold(p.levels)

        zones = []
        for members in single_linkage(p.levels, epsilon):
            if len(members) < cfg.min_orders_for_zone:
                continue
            volume = sum(level.quantity for level in members)
            if volume < min_volume:
                continue

            center = volume_weighted_center(members)
            side, zone_type, pressure = position(center, p.mid)
            prices = [level.price for level in members]

            order_confidence = min(len(members) / cfg.strength_order_scale, 1.0)
            spread_confidence = 1.0 - min(price_spread(members), 1.0)
            strength = (order_confidence + volume_consistency(members) + spread_confidence) / 3.0

            zones.append(make_zone(
                self._next_id("cluster"), side, zone_type, pressure,
                center_price=center,
                min_price=min(prices),
                max_price=max(prices),
                intensity=10.0 * volume / max(p.total_volume, 1.0),
                strength=strength,
                total_volume=volume,
                order_count=len(members),
                timestamp_ms=p.now_ms,
            ))
        return zones

    # ------------------------------------------------------------------
    # 2. Same-side proximity grouping
    # ------------------------------------------------------------------

    def _side_groups(self, p: _Pass) -> list[Zone]:
        cfg = self.config
        zones = []
        for side_levels, side, zone_type, pressure in (
            (p.bids, Side.BID, ZoneType.SUPPORT, PressureType.SUPPORT),
            (p.asks, Side.ASK, ZoneType.RESISTANCE, PressureType.RESISTANCE),
        ):
            for group in group_by_proximity(side_levels, cfg.grouping_tolerance):
                if group.total_volume <= cfg.volume_floor or len(group) < cfg.min_orders_for_zone:
                    continue
                zones.append(self._zone_from_group(
                    "group", group, side, zone_type, pressure,
                    intensity=group.total_volume / cfg.intensity_volume_scale,
                    strength=len(group) / cfg.strength_order_scale,
                    now_ms=p.now_ms,
                ))
        return zones

    def _zone_from_group(
        self,
        kind: str,
        group: LevelGroup,
        side: Side,
        zone_type: ZoneType,
        pressure: PressureType,
        intensity: float,
        strength: float,
        now_ms: int,
    ) -> Zone:
        prices = group.prices
        return make_zone(
            self._next_id(kind), side, zone_type, pressure,
            center_price=group.center_price,
            min_price=min(prices),
            max_price=max(prices),
            intensity=intensity,
            strength=strength,
            total_volume=group.total_volume,
            order_count=len(group),
            timestamp_ms=now_ms,
        )

    # ------------------------------------------------------------------
    # 3. Order-flow imbalance scan
    # ------------------------------------------------------------------

    @staticmethod
    def _histogram(levels: Sequence[PriceLevel], edges: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """(volume, count) per bucket."""
        prices = np.fromiter((l.price for l in levels), dtype=float, count=len(levels))
        qty = np.fromiter((l.quantity for l in levels), dtype=float, count=len(levels))
        volume, _ = np.histogram(prices, bins=edges, weights=qty)
        count, _ = np.histogram(prices, bins=edges)
        return volume, count

    def _imbalance(self, p: _Pass) -> list[Zone]:
        cfg = self.config
        lo, hi = p.price_range
        if hi <= lo:
            return []

        edges = np.linspace(lo, hi, cfg.imbalance_buckets + 1)
        bid_vol, bid_cnt = self._histogram(p.bids, edges)
        ask_vol, ask_cnt = self._histogram(p.asks, edges)

        zones = []
        for i in range(cfg.imbalance_buckets):
            bid, ask = float(bid_vol[i]), float(ask_vol[i])
            total = bid + ask
            if total < cfg.volume_floor:
                continue

            dominant, weaker = max(bid, ask), min(bid, ask)
            if weaker > 0:
                ratio = dominant / weaker
                if ratio < cfg.imbalance_multiple:
                    continue
                intensity = min(ratio - 1.0, 2.0) / 2.0
            else:
                intensity = 1.0

            if bid > ask:
                side, zone_type, pressure = Side.BID, ZoneType.SUPPORT, PressureType.SUPPORT
            else:
                side, zone_type, pressure = Side.ASK, ZoneType.RESISTANCE, PressureType.RESISTANCE

            left, right = float(edges[i]), float(edges[i + 1])
            zones.append(make_zone(
                self._next_id("imbalance"), side, zone_type, pressure,
                center_price=(left + right) / 2.0,
                min_price=left,
                max_price=right,
                intensity=intensity,
                strength=total / cfg.intensity_volume_scale,
                total_volume=total,
                order_count=int(bid_cnt[i] + ask_cnt[i]),
                timestamp_ms=p.now_ms,
            ))
        return zones

    # ------------------------------------------------------------------
    # 4. Liquidity density mapping
    # ------------------------------------------------------------------

    def _liquidity_density(self, p: _Pass) -> list[Zone]:
        cfg = self.config
        lo, hi = p.price_range
        if hi <= lo:
            return []

        edges = np.linspace(lo, hi, cfg.density_buckets + 1)
        width = (hi - lo) / cfg.density_buckets
        volume, count = self._histogram(p.levels, edges)
        density = volume / width

        zones = []
        for peak in local_maxima(density, cfg.density_floor):
            left, right = expand_region(density, peak, cfg.density_width_fraction)
            region_volume = float(volume[left:right + 1].sum())
            center = float(edges[peak] + edges[peak + 1]) / 2.0
            side, zone_type, pressure = position(center, p.mid)
            zones.append(make_zone(
                self._next_id("density"), side, zone_type, pressure,
                center_price=center,
                min_price=float(edges[left]),
                max_price=float(edges[right + 1]),
                intensity=float(density[peak]) / cfg.density_scale,
                strength=region_volume / max(p.total_volume, 1e-12),
                total_volume=region_volume,
                order_count=int(count[left:right + 1].sum()),
                timestamp_ms=p.now_ms,
            ))
        return zones

    # ------------------------------------------------------------------
    # 5. Microstructure heuristics
    # ------------------------------------------------------------------

    def _microstructure(self, p: _Pass) -> list[Zone]:
        return self._icebergs(p) + self._hidden_liquidity(p) + self._algorithmic_spacing(p)

    def _icebergs(self, p: _Pass) -> list[Zone]:
        """Single prices holding far more than the average volume-per-price."""
        cfg = self.config
        per_price: dict[float, float] = {}
        for level in p.levels:
            price = round_to_tick(level.price, cfg.price_tick)
            per_price[price] = per_price.get(price, 0.0) + level.quantity
        if not per_price:
            return []

        average = sum(per_price.values()) / len(per_price)
        threshold = average * cfg.iceberg_multiple

        zones = []
        for price, volume in per_price.items():
            if volume <= threshold:
                continue
            side, zone_type, _ = position(price, p.mid)
            zones.append(make_zone(
                self._next_id("iceberg"), side, zone_type, PressureType.ACCUMULATION,
                center_price=price,
                min_price=price * (1.0 - cfg.iceberg_band),
                max_price=price * (1.0 + cfg.iceberg_band),
                intensity=volume / (average * 10.0),
                strength=cfg.iceberg_strength,
                total_volume=volume,
                order_count=1,
                timestamp_ms=p.now_ms,
            ))
        return zones

    def _hidden_liquidity(self, p: _Pass) -> list[Zone]:
        """Groups of mid-sized orders (2x median .. p75) clustered in price."""
        cfg = self.config
        sizes = sorted(level.quantity for level in p.levels)
        if not sizes:
            return []

        median = index_percentile(sizes, 0.5)
        upper = index_percentile(sizes, 0.75)
        lower = median * cfg.hidden_median_factor
        suspicious = [level for level in p.levels if lower <= level.quantity <= upper]

        zones = []
        for group in group_by_proximity(suspicious, cfg.hidden_tolerance):
            if len(group) < cfg.hidden_min_orders or group.total_volume <= cfg.volume_floor:
                continue
            side, zone_type, _ = position(group.center_price, p.mid)
            zones.append(self._zone_from_group(
                "hidden", group, side, zone_type, PressureType.DISTRIBUTION,
                intensity=group.total_volume / (median * 100.0),
                strength=cfg.hidden_strength,
                now_ms=p.now_ms,
            ))
        return zones

    def _algorithmic_spacing(self, p: _Pass) -> list[Zone]:
        """Price spacings that repeat between consecutive levels on a side."""
        cfg = self.config
        spacings: Counter[float] = Counter()
        for side_levels in (p.bids, p.asks):
            prices = sorted(level.price for level in side_levels)
            for lo, hi in zip(prices, prices[1:]):
                spacing = round(hi - lo, cfg.spacing_decimals)
                if spacing > 0:
                    spacings[spacing] += 1

        if not spacings or not p.levels:
            return []
        average_qty = p.total_volume / len(p.levels)

        zones = []
        for spacing, repeats in sorted(spacings.items()):
            if repeats < cfg.spacing_min_repeats:
                continue
            center = p.mid + spacing
            side, zone_type, pressure = position(center, p.mid)
            zones.append(make_zone(
                self._next_id("spacing"), side, zone_type, pressure,
                center_price=center,
                min_price=center - spacing * cfg.spacing_band,
                max_price=center + spacing * cfg.spacing_band,
                intensity=repeats / 10.0,
                strength=cfg.spacing_strength,
                total_volume=repeats * average_qty,
                order_count=repeats,
                timestamp_ms=p.now_ms,
            ))
        return zones

    # ------------------------------------------------------------------
    # 6. Time-weighted volume profile
    # ------------------------------------------------------------------

    def _volume_profile(self, p: _Pass, history: Sequence[VolumeSample]) -> list[Zone]:
        cfg = self.config
        if len(history) < cfg.profile_min_samples:
            return []

        volume_sum: dict[float, float] = {}
        presence_sum: dict[float, float] = {}
        seen: Counter[float] = Counter()
        total_weight = 0.0
        for sample in history:
            age_sec = max(0, p.now_ms - sample.timestamp_ms) / 1000.0
            weight = 0.5 ** (age_sec / cfg.profile_half_life_sec)
            total_weight += weight
            for price, volume in sample.volumes.items():
                volume_sum[price] = volume_sum.get(price, 0.0) + weight * volume
                presence_sum[price] = presence_sum.get(price, 0.0) + weight
                seen[price] += 1

        if total_weight <= 0 or not volume_sum:
            return []

        prices = sorted(volume_sum)
        profile = np.array([volume_sum[price] / total_weight for price in prices])
        nodes = sorted(
            local_maxima(profile, cfg.volume_floor),
            key=lambda i: profile[i],
            reverse=True,
        )[:cfg.profile_max_nodes]

        zones = []
        for i in nodes:
            price = prices[i]
            volume = float(profile[i])
            side, zone_type, pressure = position(price, p.mid)
            zones.append(make_zone(
                self._next_id("profile"), side, zone_type, pressure,
                center_price=price,
                min_price=price * (1.0 - cfg.profile_band),
                max_price=price * (1.0 + cfg.profile_band),
                intensity=volume / cfg.intensity_volume_scale,
                strength=presence_sum[price] / total_weight,
                total_volume=volume,
                order_count=seen[price],
                timestamp_ms=p.now_ms,
            ))
        return zones

    # ------------------------------------------------------------------
    # Merge pass
    # ------------------------------------------------------------------

    def combine(self, first: Zone, second: Zone) -> Zone:
        """Merge two overlapping same-side zones; `first` supplies type and pressure."""
        volume = first.total_volume + second.total_volume
        if volume > 0:
            center = (first.center_price * first.total_volume + second.center_price * second.total_volume) / volume
        else:
            center = (first.center_price + second.center_price) / 2.0
        return make_zone(
            self._next_id("merged"), first.side, first.type, first.pressure_type,
            center_price=center,
            min_price=min(first.min_price, second.min_price),
            max_price=max(first.max_price, second.max_price),
            intensity=max(first.intensity, second.intensity),
            strength=(first.strength + second.strength) / 2.0,
            total_volume=volume,
            order_count=first.order_count + second.order_count,
            timestamp_ms=max(first.timestamp_ms, second.timestamp_ms),
            is_active=first.is_active and second.is_active,
        )

    def merge(self, candidates: Iterable[Zone]) -> list[Zone]:
        """
        Merge overlapping same-side zones until no overlap remains, then keep
        the max_zones strongest.

        Running merge() on its own output is a no-op.
        """
        merged = sorted(candidates, key=lambda z: z.center_price)
        changed = True
        while changed:
            changed = False
            out: list[Zone] = []
            for zone in merged:
                for i, existing in enumerate(out):
                    if existing.side is zone.side and _overlaps(existing, zone):
                        out[i] = self.combine(existing, zone)
                        changed = True
                        break
                else:
                    out.append(zone)
            merged = sorted(out, key=lambda z: z.center_price)

        merged.sort(key=lambda z: z.strength, reverse=True)
        return merged[:self.config.max_zones]


def _overlaps(a: Zone, b: Zone) -> bool:
    return not (a.max_price < b.min_price or b.max_price < a.min_price)
