"""
Analysis pipeline: BookState -> AnalysisResult.

    detect zones -> statistics (vs previous zones) -> alerts -> heatmap -> overlays

The engine instance owns the previous pass's zones and the bounded volume
history; nothing is kept at module level.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable, Optional

from ..config import AlertConfig, DetectorConfig, OverlayConfig
from ..types import AnalysisResult, BookState, Statistics, Zone
from .alerts import AlertGenerator
from .overlay import OverlayFeed
from .stats import StatsAggregator
from .zones import VolumeSample, ZoneDetector, sample_book

logger = logging.getLogger(__name__)


class PressureEngine:
    """
    One engine per symbol/stream.

    Thread-safety: NOT thread-safe. Call analyze() from the task that owns the book.
    """

    def __init__(
        self,
        detector_config: DetectorConfig = DetectorConfig(),
        alert_config: AlertConfig = AlertConfig(),
        overlay_config: OverlayConfig = OverlayConfig(),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self.detector = ZoneDetector(detector_config, clock)
        self.stats = StatsAggregator(alert_config.match_tolerance, clock)
        self.alerts = AlertGenerator(alert_config, clock)
        self.overlay = OverlayFeed(overlay_config)

        self.previous_zones: tuple[Zone, ...] = ()
        self.history: deque[VolumeSample] = deque(maxlen=detector_config.history_length)
        self.last_result: Optional[AnalysisResult] = None

    def analyze(self, book: BookState, now_ms: int | None = None) -> AnalysisResult:
        now = int(self._clock() * 1000) if now_ms is None else now_ms

        if book.is_empty:
            result = AnalysisResult(
                zones=(),
                statistics=Statistics(),
                alerts=(),
                heatmap=(),
                overlays=(),
                sequence_id=book.sequence_id,
                timestamp_ms=now,
            )
            self.previous_zones = ()
            self.last_result = result
            return result

        zones = tuple(self.detector.detect(book, self.history, now))
        statistics = self.stats.compute(zones, book, self.previous_zones, now)
        alerts = tuple(self.alerts.diff(zones, self.previous_zones, book, now))
        heatmap, overlays = self.overlay.sample(zones, book)

        self.previous_zones = zones
        self.history.append(sample_book(book, now, self.detector.config.price_tick))

        result = AnalysisResult(
            zones=zones,
            statistics=statistics,
            alerts=alerts,
            heatmap=tuple(heatmap),
            overlays=tuple(overlays),
            sequence_id=book.sequence_id,
            timestamp_ms=now,
        )
        self.last_result = result
        logger.debug(
            "Pass seq=%d: %d zones, %d alerts", book.sequence_id, len(zones), len(alerts),
        )
        return result

    def reset(self) -> None:
        """Forget previous zones, history and alert cooldowns."""
        self.previous_zones = ()
        self.history.clear()
        self.alerts.reset()
        self.last_result = None
