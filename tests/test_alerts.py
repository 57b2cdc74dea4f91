import pytest

from zone_viewer.config import AlertConfig
from zone_viewer.datafeed.simulator import SyntheticFeed
from zone_viewer.engine.alerts import AlertGenerator, formation_severity
from zone_viewer.engine.zones import ZoneDetector, make_zone
from zone_viewer.types import AlertType, PressureType, Severity, Side, ZoneType

NOW_MS = 1_700_000_000_000
LIFECYCLE = {AlertType.FORMATION, AlertType.STRENGTHENING, AlertType.WEAKENING}


def _zone(zone_id, center, intensity, side=Side.BID, pressure=None, orders=5):
    zone_type = ZoneType.SUPPORT if side is Side.BID else ZoneType.RESISTANCE
    if pressure is None:
        pressure = PressureType.SUPPORT if side is Side.BID else PressureType.RESISTANCE
    return make_zone(
        zone_id, side, zone_type, pressure, center, center - 0.5, center + 0.5,
        intensity, 0.5, 100.0, orders, NOW_MS,
    )


@pytest.fixture
def generator(clock):
    return AlertGenerator(AlertConfig(cooldown_ms=0), clock=clock)


@pytest.fixture
def flat_book(make_book):
    return make_book(bids=[(99, 1), (98, 1)], asks=[(101, 1), (102, 1)])


@pytest.fixture
def spike_book(make_book):
    bids = [(100 - i * 0.1, 1) for i in range(10)]
    asks = [(101 + i * 0.1, 1) for i in range(9)] + [(102.5, 19)]
    return make_book(bids=bids, asks=asks)


class TestLifecycle:

    def test_new_zone_is_formation(self, generator, flat_book):
        alerts = generator.diff([_zone("a", 99.0, 0.85)], [], flat_book, NOW_MS)

        assert len(alerts) == 1
        assert alerts[0].type is AlertType.FORMATION
        assert alerts[0].severity is Severity.CRITICAL
        assert alerts[0].confidence == pytest.approx(0.9)

    def test_strengthening(self, generator, flat_book):
        alerts = generator.diff([_zone("a", 99.0, 0.75)], [_zone("p", 99.05, 0.5)], flat_book, NOW_MS)

        assert [a.type for a in alerts] == [AlertType.STRENGTHENING]
        assert alerts[0].severity is Severity.HIGH
        assert alerts[0].metadata["previous_intensity"] == 0.5

    def test_weakening(self, generator, flat_book):
        alerts = generator.diff([_zone("a", 99.0, 0.3)], [_zone("p", 99.0, 0.5)], flat_book, NOW_MS)

        assert [a.type for a in alerts] == [AlertType.WEAKENING]
        assert alerts[0].severity is Severity.MEDIUM

    def test_small_change_is_silent(self, generator, flat_book):
        assert generator.diff([_zone("a", 99.0, 0.55)], [_zone("p", 99.0, 0.5)], flat_book, NOW_MS) == []

    def test_match_requires_same_side(self, generator, flat_book):
        alerts = generator.diff([_zone("a", 99.0, 0.5)], [_zone("p", 99.0, 0.5, side=Side.ASK)], flat_book, NOW_MS)
        assert [a.type for a in alerts] == [AlertType.FORMATION]

    def test_same_book_twice_emits_no_lifecycle_alerts(self, clock, make_book):
        feed = SyntheticFeed("BTCUSDT", seed=5)
        book = make_book(*feed.generate_snapshot(20)[:2], depth=20)
        detector = ZoneDetector(clock=clock)
        generator = AlertGenerator(AlertConfig(cooldown_ms=0), clock=clock)

        first = detector.detect(book, now_ms=NOW_MS)
        generator.diff(first, [], book, NOW_MS)
        second = detector.detect(book, now_ms=NOW_MS + 1000)
        alerts = generator.diff(second, first, book, NOW_MS + 1000)

        assert not [a for a in alerts if a.type in LIFECYCLE]

    @pytest.mark.parametrize("intensity,severity", [
        (0.9, Severity.CRITICAL), (0.7, Severity.HIGH), (0.5, Severity.MEDIUM), (0.2, Severity.LOW),
    ])
    def test_formation_severity(self, intensity, severity):
        assert formation_severity(intensity) is severity


class TestVolumeSpike:

    def test_ten_times_average_is_one_critical_alert(self, generator, spike_book):
        alerts = generator.diff([], [], spike_book, NOW_MS)

        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.type is AlertType.VOLUME_SPIKE
        assert alert.severity is Severity.CRITICAL
        assert alert.metadata["multiple"] == pytest.approx(10.0)
        assert alert.zone.center_price == 102.5
        assert alert.zone.side is Side.ASK

    def test_between_three_and_five_is_high(self, generator, make_book):
        book = make_book(bids=[(100 - i * 0.1, 1) for i in range(9)], asks=[(101, 4)])

        alerts = generator.diff([], [], book, NOW_MS)

        assert [a.severity for a in alerts] == [Severity.HIGH]

    def test_attaches_containing_zone(self, generator, spike_book):
        zone = _zone("r", 102.5, 0.5, side=Side.ASK)
        alerts = [a for a in generator.diff([zone], [zone], spike_book, NOW_MS) if a.type is AlertType.VOLUME_SPIKE]
        assert alerts[0].zone.id == "r"

    def test_empty_book(self, generator, make_book):
        assert generator.diff([], [], make_book(), NOW_MS) == []


class TestClusterFormation:

    @pytest.mark.parametrize("orders,severity", [(6, Severity.MEDIUM), (12, Severity.HIGH)])
    def test_distribution_zone(self, generator, flat_book, orders, severity):
        zone = _zone("d", 99.0, 0.5, pressure=PressureType.DISTRIBUTION, orders=orders)

        alerts = [a for a in generator.diff([zone], [zone], flat_book, NOW_MS) if a.type is AlertType.CLUSTER_FORMATION]

        assert len(alerts) == 1
        assert alerts[0].severity is severity

    def test_small_cluster_ignored(self, generator, flat_book):
        zone = _zone("d", 99.0, 0.5, pressure=PressureType.DISTRIBUTION, orders=5)
        assert generator.diff([zone], [zone], flat_book, NOW_MS) == []


class TestCooldown:

    def test_repeat_suppressed_within_window(self, clock, spike_book):
        generator = AlertGenerator(AlertConfig(cooldown_ms=5000), clock=clock)

        assert len(generator.diff([], [], spike_book, NOW_MS)) == 1
        assert generator.diff([], [], spike_book, NOW_MS + 1000) == []
        assert len(generator.diff([], [], spike_book, NOW_MS + 6000)) == 1

    def test_reset_clears_window(self, clock, spike_book):
        generator = AlertGenerator(AlertConfig(cooldown_ms=5000), clock=clock)
        generator.diff([], [], spike_book, NOW_MS)
        generator.reset()
        assert len(generator.diff([], [], spike_book, NOW_MS + 1)) == 1

    def test_different_price_not_suppressed(self, clock, flat_book):
        generator = AlertGenerator(AlertConfig(cooldown_ms=5000), clock=clock)
        generator.diff([_zone("a", 99.0, 0.5)], [], flat_book, NOW_MS)
        alerts = generator.diff([_zone("b", 95.0, 0.5)], [], flat_book, NOW_MS + 10)
        assert [a.type for a in alerts] == [AlertType.FORMATION]

    def test_neighbouring_spikes_in_one_pass_all_alert(self, clock, make_book):
        generator = AlertGenerator(AlertConfig(cooldown_ms=5000), clock=clock)
        bids = [(100.0, 40), (99.99, 40)] + [(99.98 - i * 0.01, 1) for i in range(8)]
        book = make_book(bids=bids, asks=[(101 + i * 0.01, 1) for i in range(10)])

        alerts = generator.diff([], [], book, NOW_MS)

        assert sorted(a.metadata["price"] for a in alerts) == [99.99, 100.0]
        assert all(a.type is AlertType.VOLUME_SPIKE for a in alerts)
        assert generator.diff([], [], book, NOW_MS + 1000) == []
