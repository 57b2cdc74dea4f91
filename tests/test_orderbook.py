import math

import pytest

from zone_viewer.config import BookConfig
from zone_viewer.datafeed.orderbook import BookReconciler, parse_entries
from zone_viewer.datafeed.simulator import SyntheticFeed
from zone_viewer.errors import BookNotReady, InvalidDiff, InvalidSnapshot, SequenceGap
from zone_viewer.types import BookDiff, BookSnapshot, Side


def _prices(levels):
    return [level.price for level in levels]


@pytest.fixture
def book(clock):
    reconciler = BookReconciler(clock=clock)
    reconciler.bootstrap(BookSnapshot(
        bids=[(100, 5), (99, 3)],
        asks=[(101, 4), (102, 2)],
        last_update_id=10,
    ))
    return reconciler


class TestBootstrap:

    def test_derived_fields(self, book):
        state = book.state
        assert state.price_range.min == 99
        assert state.price_range.max == 102
        assert state.max_quantity == 5
        assert state.sequence_id == 10
        assert book.ready

    def test_string_entries_are_parsed(self, clock):
        reconciler = BookReconciler(clock=clock)
        state = reconciler.bootstrap(BookSnapshot([("100.50", "1.25")], [("100.75", "2")], 1))
        assert state.best_bid == 100.5
        assert state.bids[0].quantity == 1.25
        assert state.mid_price == pytest.approx(100.625)

    def test_zero_quantity_entries_are_skipped(self, clock):
        reconciler = BookReconciler(clock=clock)
        state = reconciler.bootstrap(BookSnapshot([(100, 0), (99, 1)], [], 1))
        assert _prices(state.bids) == [99]

    def test_depth_cap_keeps_best_levels(self, clock):
        reconciler = BookReconciler(BookConfig(depth_cap=3), clock=clock)
        state = reconciler.bootstrap(BookSnapshot(
            bids=[(p, 1) for p in (95, 96, 97, 98, 99)],
            asks=[(p, 1) for p in (105, 104, 103, 102, 101)],
        ))
        assert _prices(state.bids) == [99, 98, 97]
        assert _prices(state.asks) == [101, 102, 103]

    @pytest.mark.parametrize("entry", [(math.nan, 1), (100, math.inf), (-1, 1), (100, -2), ("abc", 1), (100,)])
    def test_invalid_entry_rejected(self, clock, entry):
        reconciler = BookReconciler(clock=clock)
        with pytest.raises(InvalidSnapshot):
            reconciler.bootstrap(BookSnapshot([entry], [], 1))
        assert not reconciler.ready

    def test_rejected_snapshot_keeps_previous_book(self, book):
        with pytest.raises(InvalidSnapshot):
            book.bootstrap(BookSnapshot([(100, 1)], [(101, math.nan)], 50))
        assert book.last_update_id == 10
        assert _prices(book.state.bids) == [100, 99]

    def test_invalid_snapshot_is_value_error(self):
        assert issubclass(InvalidSnapshot, ValueError)

    def test_empty_book(self, clock):
        state = BookReconciler(clock=clock).bootstrap(BookSnapshot([], [], 3))
        assert state.is_empty
        assert state.max_quantity == 0
        assert state.price_range.span == 0


class TestApply:

    def test_zero_quantity_removes_level(self, book):
        state = book.apply(BookDiff(11, 11, bids=[(99, 0)], asks=[]))
        assert _prices(state.bids) == [100]
        assert state.price_range.min == 100
        assert state.sequence_id == 11

    def test_upsert_and_insert(self, book):
        state = book.apply(BookDiff(11, 11, bids=[(99.5, 8)], asks=[(101, 1)]))
        assert _prices(state.bids) == [100, 99.5, 99]
        assert state.asks[0].quantity == 1
        assert state.max_quantity == 8

    def test_removing_absent_price_is_noop(self, book):
        state = book.apply(BookDiff(11, 11, bids=[(50, 0)], asks=[]))
        assert _prices(state.bids) == [100, 99]

    def test_apply_before_bootstrap(self, clock):
        with pytest.raises(BookNotReady):
            BookReconciler(clock=clock).apply(BookDiff(1, 1, [], []))

    def test_already_applied_diff_is_ignored(self, book):
        before = book.state
        state = book.apply(BookDiff(5, 10, bids=[(100, 0)], asks=[]))
        assert state is before
        assert book.last_update_id == 10

    def test_first_diff_may_straddle_snapshot(self, book):
        state = book.apply(BookDiff(8, 12, bids=[(98, 1)], asks=[]))
        assert state.sequence_id == 12
        assert book.last_update_id == 12

    def test_first_diff_must_cover_next_id(self, book):
        with pytest.raises(SequenceGap):
            book.apply(BookDiff(12, 13, bids=[], asks=[]))

    def test_gap_does_not_mutate_book(self, book):
        book.apply(BookDiff(11, 11, bids=[], asks=[]))
        before = book.state

        with pytest.raises(SequenceGap) as info:
            book.apply(BookDiff(13, 13, bids=[(100, 0)], asks=[]))

        assert info.value.expected == 12
        assert info.value.received == 13
        assert book.gap_detected
        assert book.state == before
        assert book.last_update_id == 11

    def test_gap_clears_after_next_good_diff(self, book):
        book.apply(BookDiff(11, 11, [], []))
        with pytest.raises(SequenceGap):
            book.apply(BookDiff(13, 13, [], []))
        book.apply(BookDiff(12, 12, [], []))
        assert not book.gap_detected

    def test_invalid_diff(self, book):
        with pytest.raises(InvalidDiff):
            book.apply(BookDiff(11, 11, bids=[(100, math.nan)], asks=[]))
        assert book.last_update_id == 10

    def test_apply_many_keeps_diffs_before_gap(self, book):
        diffs = [
            BookDiff(11, 11, bids=[(99, 0)], asks=[]),
            BookDiff(12, 12, bids=[(98, 2)], asks=[]),
            BookDiff(20, 20, bids=[(97, 2)], asks=[]),
        ]
        with pytest.raises(SequenceGap):
            book.apply_many(diffs)
        assert _prices(book.state.bids) == [100, 98]
        assert book.last_update_id == 12

    def test_depth_cap_enforced_after_diff(self, clock):
        reconciler = BookReconciler(BookConfig(depth_cap=2), clock=clock)
        reconciler.bootstrap(BookSnapshot([(100, 1), (99, 1)], [(101, 1)], 1))
        state = reconciler.apply(BookDiff(2, 2, bids=[(99.5, 3)], asks=[]))
        assert _prices(state.bids) == [100, 99.5]


def test_sortedness_under_random_diffs(clock):
    feed = SyntheticFeed("ETHUSDT", seed=42)
    reconciler = BookReconciler(BookConfig(depth_cap=20), clock=clock)
    reconciler.bootstrap(feed.generate_snapshot(20))

    for _ in range(500):
        state = reconciler.apply(feed.generate_diff())
        bids, asks = _prices(state.bids), _prices(state.asks)
        assert all(a > b for a, b in zip(bids, bids[1:]))
        assert all(a < b for a, b in zip(asks, asks[1:]))
        assert len(bids) <= 20 and len(asks) <= 20
        assert all(level.quantity > 0 for level in state.levels)


def test_parse_entries_raises_chosen_error():
    with pytest.raises(InvalidDiff):
        parse_entries([("x", "1")], Side.ASK, InvalidDiff)
    assert parse_entries([("1.5", 2)], Side.BID) == [(1.5, 2.0)]
