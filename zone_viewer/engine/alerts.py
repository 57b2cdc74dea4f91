"""
Zone lifecycle alerts.

Compares the current zone list with the previous pass (price-proximity
matching, same side) and emits formation / strengthening / weakening alerts,
plus volume-spike and cluster-formation alerts that depend only on the
current pass. A per-(type, side, price) cooldown suppresses repeats.
"""

from __future__ import annotations

import itertools
import logging
import time
from collections import deque
from typing import Callable, Sequence

from ..config import AlertConfig
from ..types import (
    Alert,
    AlertType,
    BookState,
    PressureType,
    PriceLevel,
    Severity,
    Side,
    Zone,
)
from .clustering import valid_levels
from .stats import match_zone
from .zones import make_zone, position

logger = logging.getLogger(__name__)


def formation_severity(intensity: float) -> Severity:
    if intensity > 0.8:
        return Severity.CRITICAL
    if intensity > 0.6:
        return Severity.HIGH
    if intensity > 0.4:
        return Severity.MEDIUM
    return Severity.LOW


def strengthening_severity(intensity: float) -> Severity:
    if intensity > 0.9:
        return Severity.CRITICAL
    if intensity > 0.7:
        return Severity.HIGH
    return Severity.MEDIUM


class AlertGenerator:
    """
    Stateful only through the cooldown window; previous zones are passed in.

    Thread-safety: NOT thread-safe.
    """

    def __init__(
        self,
        config: AlertConfig = AlertConfig(),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._clock = clock
        self._ids = itertools.count(1)
        # (timestamp_ms, type, side, price) of recently emitted alerts
        self._recent: deque[tuple[int, AlertType, Side, float]] = deque()

    def reset(self) -> None:
        self._recent.clear()

    def diff(
        self,
        zones: Sequence[Zone],
        previous_zones: Sequence[Zone],
        book: BookState,
        now_ms: int | None = None,
    ) -> list[Alert]:
        now = int(self._clock() * 1000) if now_ms is None else now_ms
        candidates = (
            self._lifecycle(zones, previous_zones, now)
            + self._volume_spikes(zones, book, now)
            + self._cluster_formations(zones, now)
        )
        alerts = [alert for alert in candidates if self._admit(alert, now)]
        if len(alerts) < len(candidates):
            logger.debug("Suppressed %d alerts within cooldown", len(candidates) - len(alerts))
        if self.config.cooldown_ms > 0:
            # Only earlier passes suppress; alerts of one pass never shadow each other
            self._recent.extend(self._key(alert, now) for alert in alerts)
        return alerts

    # ------------------------------------------------------------------
    # Cooldown
    # ------------------------------------------------------------------

    @staticmethod
    def _key(alert: Alert, now: int) -> tuple[int, AlertType, Side, float]:
        return now, alert.type, alert.zone.side, alert.metadata.get('price', alert.zone.center_price)

    def _admit(self, alert: Alert, now: int) -> bool:
        cooldown = self.config.cooldown_ms
        if cooldown <= 0:
            return True

        while self._recent and now - self._recent[0][0] >= cooldown:
            self._recent.popleft()

        _, _, _, price = self._key(alert, now)
        tolerance = self.config.match_tolerance
        for _, kind, side, seen_price in self._recent:
            if kind is alert.type and side is alert.zone.side and seen_price > 0 \
                    and abs(price - seen_price) / seen_price <= tolerance:
                return False
        return True

    def _alert(
        self,
        kind: AlertType,
        severity: Severity,
        message: str,
        zone: Zone,
        now: int,
        confidence: float,
        **metadata,
    ) -> Alert:
        return Alert(
            id=f"{kind.value}-{next(self._ids)}",
            type=kind,
            severity=severity,
            message=message,
            zone=zone,
            timestamp_ms=now,
            confidence=min(1.0, max(0.0, confidence)),
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Generators
    # ------------------------------------------------------------------

    def _lifecycle(self, zones: Sequence[Zone], previous: Sequence[Zone], now: int) -> list[Alert]:
        cfg = self.config
        alerts = []
        for zone in zones:
            label = zone.pressure_type.value
            match = match_zone(zone, previous, cfg.match_tolerance)
            if match is None:
                alerts.append(self._alert(
                    AlertType.FORMATION,
                    formation_severity(zone.intensity),
                    f"New {label} zone formed at {zone.center_price:.2f} "
                    f"with {zone.intensity * 100:.1f}% intensity",
                    zone, now,
                    confidence=min(0.9, zone.intensity + 0.1),
                    volume_change=zone.total_volume,
                    cluster_size=zone.order_count,
                ))
            elif zone.intensity >= match.intensity * cfg.strengthening_ratio and zone.intensity > match.intensity:
                alerts.append(self._alert(
                    AlertType.STRENGTHENING,
                    strengthening_severity(zone.intensity),
                    f"{label.capitalize()} zone at {zone.center_price:.2f} "
                    f"strengthening ({zone.intensity * 100:.1f}%)",
                    zone, now,
                    confidence=min(0.9, zone.intensity + 0.2),
                    volume_change=zone.total_volume - match.total_volume,
                    previous_intensity=match.intensity,
                ))
            elif zone.intensity <= match.intensity * cfg.weakening_ratio and zone.intensity < match.intensity:
                alerts.append(self._alert(
                    AlertType.WEAKENING,
                    Severity.MEDIUM,
                    f"{label.capitalize()} zone at {zone.center_price:.2f} "
                    f"weakening ({zone.intensity * 100:.1f}%)",
                    zone, now,
                    confidence=max(0.3, 1.0 - zone.intensity),
                    volume_change=zone.total_volume - match.total_volume,
                    previous_intensity=match.intensity,
                ))
        return alerts

    def _volume_spikes(self, zones: Sequence[Zone], book: BookState, now: int) -> list[Alert]:
        cfg = self.config
        levels = valid_levels(book.levels)
        if not levels:
            return []

        average = sum(level.quantity for level in levels) / len(levels)
        threshold = average * cfg.spike_multiple
        mid = book.mid_price

        alerts = []
        for level in levels:
            if level.quantity <= threshold:
                continue
            multiple = level.quantity / average
            if multiple > cfg.spike_critical_multiple:
                severity = Severity.CRITICAL
            elif multiple > cfg.spike_multiple:
                severity = Severity.HIGH
            else:
                severity = Severity.MEDIUM
            alerts.append(self._alert(
                AlertType.VOLUME_SPIKE,
                severity,
                f"Volume spike at {level.price:.2f}: {multiple:.1f}x average volume",
                self._zone_for_level(level, zones, mid, now), now,
                confidence=min(0.95, multiple * 0.2),
                price=level.price,
                quantity=level.quantity,
                multiple=multiple,
            ))
        return alerts

    def _zone_for_level(self, level: PriceLevel, zones: Sequence[Zone], mid: float, now: int) -> Zone:
        for zone in zones:
            if zone.side is level.side and zone.contains(level.price):
                return zone
        side, zone_type, pressure = position(level.price, mid)
        return make_zone(
            f"spike-{level.price}", side, zone_type, pressure,
            center_price=level.price,
            min_price=level.price,
            max_price=level.price,
            intensity=0.0,
            strength=0.0,
            total_volume=level.quantity,
            order_count=1,
            timestamp_ms=now,
        )

    def _cluster_formations(self, zones: Sequence[Zone], now: int) -> list[Alert]:
        cfg = self.config
        alerts = []
        for zone in zones:
            if zone.pressure_type is not PressureType.DISTRIBUTION or zone.order_count <= cfg.cluster_min_orders:
                continue
            alerts.append(self._alert(
                AlertType.CLUSTER_FORMATION,
                Severity.HIGH if zone.order_count > cfg.cluster_high_orders else Severity.MEDIUM,
                f"Price cluster detected: {zone.order_count} orders at {zone.center_price:.2f}",
                zone, now,
                confidence=min(0.9, zone.order_count / 15.0),
                cluster_size=zone.order_count,
            ))
        return alerts
