from zone_viewer.config import DetectorConfig
from zone_viewer.datafeed.simulator import SyntheticFeed
from zone_viewer.engine.pipeline import PressureEngine
from zone_viewer.types import AlertType, AnalysisResult, Statistics

NOW_MS = 1_700_000_000_000


def _synthetic_book(make_book, seed=3):
    feed = SyntheticFeed("BTCUSDT", seed=seed)
    return make_book(*feed.generate_snapshot(20)[:2], depth=20)


def test_empty_book_gives_valid_empty_result(clock, make_book):
    engine = PressureEngine(clock=clock)

    result = engine.analyze(make_book(), NOW_MS)

    assert isinstance(result, AnalysisResult)
    assert result.zones == ()
    assert result.alerts == ()
    assert result.heatmap == ()
    assert result.statistics == Statistics()
    assert len(engine.history) == 0


def test_full_pass(clock, make_book):
    engine = PressureEngine(clock=clock)
    book = _synthetic_book(make_book)

    result = engine.analyze(book, NOW_MS)

    assert result.sequence_id == book.sequence_id
    assert result.timestamp_ms == NOW_MS
    assert result.statistics.total_zones == len(result.zones)
    assert len(result.overlays) == len(result.zones)
    assert len(result.heatmap) == 200
    assert engine.previous_zones == result.zones
    assert len(engine.history) == 1
    assert engine.last_result is result


def test_second_pass_uses_previous_zones(clock, make_book):
    engine = PressureEngine(clock=clock)
    book = _synthetic_book(make_book)

    first = engine.analyze(book, NOW_MS)
    second = engine.analyze(book, NOW_MS + 10_000)

    assert second.statistics.persisting_zones == len(second.zones)
    assert not [a for a in second.alerts if a.type is AlertType.FORMATION]
    if first.zones:
        assert [a for a in first.alerts if a.type is AlertType.FORMATION]


def test_history_is_bounded(clock, make_book):
    engine = PressureEngine(DetectorConfig(history_length=3), clock=clock)
    book = _synthetic_book(make_book)

    for i in range(5):
        engine.analyze(book, NOW_MS + i)

    assert len(engine.history) == 3


def test_reset(clock, make_book):
    engine = PressureEngine(clock=clock)
    book = _synthetic_book(make_book)
    engine.analyze(book, NOW_MS)

    engine.reset()

    assert engine.previous_zones == ()
    assert len(engine.history) == 0
    assert engine.last_result is None
