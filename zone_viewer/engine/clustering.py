"""
Small numeric helpers shared by the zone detectors.

All functions are pure and operate on PriceLevel sequences or numpy arrays.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

import numpy as np

from ..types import PriceLevel


def valid_levels(levels: Iterable[PriceLevel]) -> list[PriceLevel]:
    """Drop levels with a non-finite or non-positive price or quantity."""
    return [
        level for level in levels
        if math.isfinite(level.price) and math.isfinite(level.quantity)
        and level.price > 0 and level.quantity > 0
    ]


def index_percentile(sorted_values: Sequence[float], fraction: float) -> float:
    """Value at floor(n * fraction) of an ascending sequence (0.0 if empty)."""
    if not sorted_values:
        return 0.0
    idx = min(int(len(sorted_values) * fraction), len(sorted_values) - 1)
    return sorted_values[idx]


def volume_weighted_center(levels: Sequence[PriceLevel]) -> float:
    total = sum(level.quantity for level in levels)
    if total <= 0:
        return sum(level.price for level in levels) / len(levels)
    return sum(level.price * level.quantity for level in levels) / total


class LevelGroup:
    """Mutable accumulator used while grouping levels by price proximity."""

    __slots__ = ('members', 'total_volume', 'center_price')

    def __init__(self, level: PriceLevel) -> None:
        self.members: list[PriceLevel] = [level]
        self.total_volume = level.quantity
        self.center_price = level.price

    def add(self, level: PriceLevel) -> None:
        self.members.append(level)
        self.total_volume += level.quantity
        self.center_price = volume_weighted_center(self.members)

    @property
    def prices(self) -> list[float]:
        return [level.price for level in self.members]

    def __len__(self) -> int:
        return len(self.members)


def group_by_proximity(levels: Iterable[PriceLevel], tolerance: float) -> list[LevelGroup]:
    """
    Greedy grouping in ascending price order.

    A level joins the first group whose running volume-weighted center is within
    `tolerance` (relative), otherwise it starts a new group.
    """
    groups: list[LevelGroup] = []
    for level in sorted(levels, key=lambda l: l.price):
        for group in groups:
            if abs(level.price - group.center_price) / group.center_price <= tolerance:
                group.add(level)
                break
        else:
            groups.append(LevelGroup(level))
    return groups


def single_linkage(levels: Iterable[PriceLevel], epsilon: float) -> list[list[PriceLevel]]:
    """
    1-D single-linkage clustering: neighbouring prices link when |dp| / p <= epsilon.
    """
    ordered = sorted(levels, key=lambda l: l.price)
    if not ordered:
        return []

    clusters: list[list[PriceLevel]] = [[ordered[0]]]
    for prev, level in zip(ordered, ordered[1:]):
        if (level.price - prev.price) / prev.price <= epsilon:
            clusters[-1].append(level)
        else:
            clusters.append([level])
    return clusters


def local_maxima(values: np.ndarray, floor: float) -> list[int]:
    """Interior indices strictly greater than both neighbours and above `floor`."""
    if len(values) < 3:
        return []
    centre = values[1:-1]
    mask = (centre > values[:-2]) & (centre > values[2:]) & (centre > floor)
    return [int(i) + 1 for i in np.flatnonzero(mask)]


def expand_region(values: np.ndarray, peak: int, fraction: float) -> tuple[int, int]:
    """Contiguous index range around `peak` where values stay >= fraction * peak value."""
    threshold = values[peak] * fraction
    left = right = peak
    while left > 0 and values[left - 1] >= threshold:
        left -= 1
    while right < len(values) - 1 and values[right + 1] >= threshold:
        right += 1
    return left, right


def volume_consistency(levels: Sequence[PriceLevel]) -> float:
    """1 - coefficient of variation of the quantities, floored at 0."""
    if len(levels) <= 1:
        return 1.0
    quantities = np.array([level.quantity for level in levels])
    mean = float(quantities.mean())
    return max(0.0, 1.0 - float(quantities.std()) / max(mean, 1.0))


def price_spread(levels: Sequence[PriceLevel]) -> float:
    """(max - min) / mean price of a group of levels."""
    if len(levels) <= 1:
        return 0.0
    prices = [level.price for level in levels]
    return (max(prices) - min(prices)) / (sum(prices) / len(prices))
