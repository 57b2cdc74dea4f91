"""
Presentation feed: heatmap samples along the price axis and per-zone gradient segments.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..config import OverlayConfig
from ..types import BookState, GradientSegment, HeatmapPoint, PressureType, RiskLevel, Zone
from .clustering import valid_levels


def risk_level(intensity: float, density: float) -> RiskLevel:
    if intensity > 0.8 and density > 0.5:
        return RiskLevel.CRITICAL
    if intensity > 0.6 or density > 0.3:
        return RiskLevel.HIGH
    if intensity > 0.4 or density > 0.2:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class OverlayFeed:

    def __init__(self, config: OverlayConfig = OverlayConfig()) -> None:
        self.config = config

    def heatmap(self, zones: Sequence[Zone], book: BookState) -> list[HeatmapPoint]:
        """
        Sample `config.samples` evenly spaced prices across the book's range.

        Each zone contributes intensity * (1 - (d / half_width)^2) at distance d
        from its center; the sum is clamped to [0, 1].
        """
        n = self.config.samples
        levels = valid_levels(book.levels)
        lo, hi = book.price_range
        if not levels or hi <= lo or n < 2:
            return []

        prices = np.linspace(lo, hi, n)
        intensity = np.zeros(n)
        for zone in zones:
            inside = (prices >= zone.min_price) & (prices <= zone.max_price)
            if not inside.any():
                continue
            half = zone.half_width
            if half > 0:
                falloff = np.maximum(0.0, 1.0 - ((prices - zone.center_price) / half) ** 2)
            else:
                falloff = np.ones(n)
            intensity += np.where(inside, zone.intensity * falloff, 0.0)
        intensity = np.clip(intensity, 0.0, 1.0)

        bucket = (hi - lo) / (n - 1)
        level_prices = np.array([level.price for level in levels])
        level_qty = np.array([level.quantity for level in levels])
        # (samples, levels) proximity mask
        near = np.abs(prices[:, None] - level_prices[None, :]) <= bucket
        volume = (near * level_qty[None, :]).sum(axis=1)
        density = near.sum(axis=1).astype(float)
        gradient = np.gradient(intensity)

        return [
            HeatmapPoint(
                price=float(prices[i]),
                intensity=float(intensity[i]),
                volume=float(volume[i]),
                density=float(density[i]),
                gradient=float(gradient[i]),
                risk_level=risk_level(float(intensity[i]), float(density[i])),
            )
            for i in range(n)
        ]

    def color(self, zone: Zone) -> str:
        cfg = self.config
        strong = zone.intensity > cfg.strong_intensity
        if zone.pressure_type is PressureType.SUPPORT:
            return cfg.support_strong_color if strong else cfg.support_color
        if zone.pressure_type is PressureType.RESISTANCE:
            return cfg.resistance_strong_color if strong else cfg.resistance_color
        if zone.pressure_type is PressureType.ACCUMULATION:
            return cfg.accumulation_color
        return cfg.distribution_color

    def gradient_overlay(self, zones: Sequence[Zone]) -> list[GradientSegment]:
        cfg = self.config
        return [
            GradientSegment(
                start_price=zone.min_price,
                end_price=zone.max_price,
                intensity=zone.intensity,
                color=self.color(zone),
                opacity=min(cfg.max_opacity, max(cfg.min_opacity, zone.intensity)),
                pressure_type=zone.pressure_type,
            )
            for zone in zones
        ]

    def sample(self, zones: Sequence[Zone], book: BookState) -> tuple[list[HeatmapPoint], list[GradientSegment]]:
        """Heatmap and gradient overlay for one pass."""
        return self.heatmap(zones, book), self.gradient_overlay(zones)
