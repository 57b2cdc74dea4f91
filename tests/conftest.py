import pytest

from zone_viewer.config import BookConfig
from zone_viewer.datafeed.orderbook import BookReconciler
from zone_viewer.types import BookSnapshot

FIXED_NOW = 1_700_000_000.0


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def make_book(clock):
    """Factory: bids/asks as [(price, qty), ...] -> BookState."""

    def _make(bids=(), asks=(), depth=100, last_update_id=1):
        book = BookReconciler(BookConfig(depth_cap=depth), clock=clock)
        return book.bootstrap(BookSnapshot(list(bids), list(asks), last_update_id))

    return _make
