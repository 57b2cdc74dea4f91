"""
Aggregate statistics over one pass's zones.

Everything degrades to zeros on empty input; nothing here raises on a
well-formed BookState.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, Sequence

from ..types import (
    BookState,
    ClusterStats,
    PressureType,
    RiskMetrics,
    Statistics,
    TemporalStats,
    VolumeDistribution,
    Zone,
    ZoneType,
)
from .clustering import valid_levels

CRITICAL_INTENSITY = 0.7
CONCENTRATED_INTENSITY = 0.6
STRONG_INTENSITY = 0.6
WEAK_INTENSITY = 0.4
SPIKE_MULTIPLE = 3.0
FORMING_AGE_MS = 30_000


def match_zone(zone: Zone, previous: Sequence[Zone], tolerance: float = 0.001) -> Optional[Zone]:
    """Previous zone on the same side with the closest center within `tolerance` (relative)."""
    best: Optional[Zone] = None
    best_distance = float('inf')
    for candidate in previous:
        if candidate.side is not zone.side or zone.center_price <= 0:
            continue
        distance = abs(zone.center_price - candidate.center_price) / zone.center_price
        if distance < tolerance and distance < best_distance:
            best, best_distance = candidate, distance
    return best


class StatsAggregator:

    def __init__(self, match_tolerance: float = 0.001, clock: Callable[[], float] = time.time) -> None:
        self.match_tolerance = match_tolerance
        self._clock = clock

    def compute(
        self,
        zones: Sequence[Zone],
        book: BookState,
        previous_zones: Sequence[Zone] = (),
        now_ms: int | None = None,
    ) -> Statistics:
        now = int(self._clock() * 1000) if now_ms is None else now_ms
        volume = self.volume_distribution(zones, book)

        if not zones:
            return Statistics(volume=volume)

        intensities = [zone.intensity for zone in zones]
        average_intensity = sum(intensities) / len(zones)

        return Statistics(
            total_zones=len(zones),
            support_zones=sum(1 for z in zones if z.type is ZoneType.SUPPORT),
            resistance_zones=sum(1 for z in zones if z.type is ZoneType.RESISTANCE),
            average_intensity=average_intensity,
            strongest_zone=max(zones, key=lambda z: z.intensity),
            critical_levels=tuple(sorted(
                z.center_price for z in zones if z.intensity > CRITICAL_INTENSITY
            )),
            volume=volume,
            clusters=self.cluster_stats(zones, book),
            temporal=self.temporal_stats(zones, now),
            risk=RiskMetrics(
                fragmentation=min(1.0, len(zones) / 10.0),
                concentration_risk=max(0.0, volume.concentration - 0.5) * 2.0,
                volatility=sum(abs(i - average_intensity) for i in intensities) / len(zones),
            ),
            persisting_zones=sum(
                1 for z in zones if match_zone(z, previous_zones, self.match_tolerance) is not None
            ),
        )

    @staticmethod
    def volume_distribution(zones: Sequence[Zone], book: BookState) -> VolumeDistribution:
        levels = valid_levels(book.levels)
        if not levels:
            return VolumeDistribution()

        total = sum(level.quantity for level in levels)
        average = total / len(levels)
        spikes = sum(1 for level in levels if level.quantity > average * SPIKE_MULTIPLE)
        concentrated = sum(z.total_volume for z in zones if z.intensity > CONCENTRATED_INTENSITY)
        concentration = min(1.0, max(0.0, concentrated / total)) if total > 0 else 0.0
        return VolumeDistribution(total, average, spikes, concentration)

    @staticmethod
    def cluster_stats(zones: Sequence[Zone], book: BookState) -> ClusterStats:
        clusters = [z for z in zones if z.pressure_type is PressureType.DISTRIBUTION]
        if not clusters:
            return ClusterStats()
        sizes = [z.order_count for z in clusters]
        span = book.price_range.span
        return ClusterStats(
            total_clusters=len(clusters),
            average_cluster_size=sum(sizes) / len(sizes),
            largest_cluster=max(sizes),
            cluster_density=len(clusters) / span if span > 0 else 0.0,
        )

    @staticmethod
    def temporal_stats(zones: Sequence[Zone], now_ms: int) -> TemporalStats:
        ages = [max(0, now_ms - z.timestamp_ms) for z in zones]
        return TemporalStats(
            forming_zones=sum(1 for age in ages if age < FORMING_AGE_MS),
            strengthening_zones=sum(1 for z in zones if z.intensity > STRONG_INTENSITY),
            weakening_zones=sum(1 for z in zones if z.intensity < WEAK_INTENSITY),
            average_zone_age_sec=sum(ages) / len(ages) / 1000.0 if ages else 0.0,
        )
