import pytest

from zone_viewer.config import OverlayConfig
from zone_viewer.engine.overlay import OverlayFeed, risk_level
from zone_viewer.engine.zones import make_zone
from zone_viewer.types import PressureType, RiskLevel, Side, ZoneType


def _zone(center, lo, hi, intensity, pressure=PressureType.SUPPORT):
    side = Side.ASK if pressure is PressureType.RESISTANCE else Side.BID
    zone_type = ZoneType.RESISTANCE if side is Side.ASK else ZoneType.SUPPORT
    return make_zone("z", side, zone_type, pressure, center, lo, hi, intensity, 0.5, 10.0, 3, 0)


@pytest.fixture
def book(make_book):
    return make_book(bids=[(100, 1), (99, 1)], asks=[(101, 1), (102, 1)])


class TestHeatmap:

    def test_sample_count_and_range(self, book):
        points = OverlayFeed().heatmap([], book)
        assert len(points) == 200
        assert points[0].price == 99
        assert points[-1].price == 102

    def test_peak_at_zone_center(self, book):
        feed = OverlayFeed(OverlayConfig(samples=31))
        points = feed.heatmap([_zone(100.5, 100.0, 101.0, 0.8)], book)

        peak = max(points, key=lambda p: p.intensity)
        assert peak.price == pytest.approx(100.5)
        assert peak.intensity == pytest.approx(0.8)
        assert points[0].intensity == 0
        assert all(0.0 <= p.intensity <= 1.0 for p in points)

    def test_overlapping_zones_are_clamped(self, book):
        feed = OverlayFeed(OverlayConfig(samples=31))
        zones = [_zone(100.5, 100.0, 101.0, 0.9), _zone(100.5, 99.5, 101.5, 0.9)]

        points = feed.heatmap(zones, book)

        assert max(p.intensity for p in points) == 1.0

    def test_gradient_sign(self, book):
        feed = OverlayFeed(OverlayConfig(samples=31))
        points = feed.heatmap([_zone(100.5, 100.0, 101.0, 0.8)], book)
        rising = [p for p in points if 100.0 < p.price < 100.4]
        falling = [p for p in points if 100.6 < p.price < 101.0]
        assert all(p.gradient > 0 for p in rising)
        assert all(p.gradient < 0 for p in falling)

    def test_density_and_volume(self, book):
        points = OverlayFeed(OverlayConfig(samples=4)).heatmap([], book)
        # Samples land exactly on the four levels, one bucket (1.0) apart
        assert points[0].density == 2
        assert points[1].density == 3
        assert points[1].volume == pytest.approx(3)

    def test_one_level_under_strong_zone_is_critical(self, book):
        feed = OverlayFeed(OverlayConfig(samples=31))
        points = feed.heatmap([_zone(100.0, 99.5, 100.5, 0.95)], book)

        at_level = min(points, key=lambda p: abs(p.price - 100.0))
        assert at_level.density == 1
        assert at_level.intensity > 0.8
        assert at_level.risk_level is RiskLevel.CRITICAL

    def test_empty_book(self, make_book):
        assert OverlayFeed().heatmap([], make_book()) == []

    def test_zero_span_book(self, make_book):
        assert OverlayFeed().heatmap([], make_book(bids=[(100, 1)])) == []


@pytest.mark.parametrize("intensity,density,expected", [
    (0.9, 0.6, RiskLevel.CRITICAL),
    (0.9, 0.1, RiskLevel.HIGH),
    (0.1, 0.35, RiskLevel.HIGH),
    (0.5, 0.0, RiskLevel.MEDIUM),
    (0.0, 0.25, RiskLevel.MEDIUM),
    (0.1, 0.1, RiskLevel.LOW),
])
def test_risk_level(intensity, density, expected):
    assert risk_level(intensity, density) is expected


class TestGradientOverlay:

    def test_one_segment_per_zone(self):
        zones = [_zone(100.0, 99.0, 101.0, 0.5), _zone(105.0, 104.0, 106.0, 0.9, PressureType.RESISTANCE)]

        segments = OverlayFeed().gradient_overlay(zones)

        assert len(segments) == 2
        assert (segments[0].start_price, segments[0].end_price) == (99.0, 101.0)
        assert segments[0].color == "#34d399"
        assert segments[1].color == "#ef4444"

    @pytest.mark.parametrize("intensity,opacity", [(0.05, 0.2), (0.5, 0.5), (0.95, 0.8)])
    def test_opacity_is_clamped(self, intensity, opacity):
        segment = OverlayFeed().gradient_overlay([_zone(100.0, 99.0, 101.0, intensity)])[0]
        assert segment.opacity == pytest.approx(opacity)

    @pytest.mark.parametrize("pressure,color", [
        (PressureType.ACCUMULATION, "#3b82f6"),
        (PressureType.DISTRIBUTION, "#f59e0b"),
    ])
    def test_pressure_colors(self, pressure, color):
        segment = OverlayFeed().gradient_overlay([_zone(100.0, 99.0, 101.0, 0.9, pressure)])[0]
        assert segment.color == color
