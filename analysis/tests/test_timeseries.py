"""
Tests for the time series cache - idempotent quote storage, resampling
and time-based memoization. Uses an in-memory store.
"""

import pytest
from datetime import date

from analysis.timeseries import (
    Granularity,
    TTLCache,
    TimeSeriesCache,
    TimeSeriesError,
    resample_quotes,
)
from storage.store import Store


def quote(day: date, close: float, volume: int = 1000):
    return {
        'date': day,
        'open': close,
        'high': close + 1,
        'low': close - 1,
        'close': close,
        'volume': volume,
    }


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def store():
    store = Store.in_memory()
    yield store
    store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def series(store, clock):
    return TimeSeriesCache(store, ttl_seconds=300, clock=clock)


class TestStore:
    """Tests for TimeSeriesCache.store."""

    def test_insert_then_overwrite(self, series):
        inserted, updated = series.store('AAPL', [quote(date(2024, 1, 2), 100.0)])
        assert (inserted, updated) == (1, 0)

        inserted, updated = series.store('aapl', [quote(date(2024, 1, 2), 101.0)])
        assert (inserted, updated) == (0, 1)

        series.clear()
        assert series.query('AAPL', field='close') == [101.0]

    def test_batch_deduplicated_last_wins(self, series):
        day = date(2024, 1, 2)
        inserted, _ = series.store('AAPL', [quote(day, 100.0), quote(day, 102.0)])

        assert inserted == 1
        assert series.query('AAPL', field='close') == [102.0]

    def test_since_boundary_skipped(self, series):
        series.store('AAPL', [quote(date(2024, 1, 2), 100.0)])

        inserted, updated = series.store(
            'AAPL',
            [quote(date(2024, 1, 2), 999.0), quote(date(2024, 1, 3), 101.0)],
            since=date(2024, 1, 2)
        )

        assert (inserted, updated) == (1, 0)
        assert series.query('AAPL', field='close') == [100.0, 101.0]

    def test_empty_batch(self, series):
        assert series.store('AAPL', []) == (0, 0)


class TestQuery:
    """Tests for TimeSeriesCache.query."""

    def test_month_keeps_last_day(self, series):
        series.store('AAPL', [
            quote(date(2024, 2, 28), 110.0),
            quote(date(2024, 1, 15), 100.0),
            quote(date(2024, 1, 31), 105.0),
            quote(date(2024, 2, 1), 106.0),
        ])

        result = series.query('AAPL', Granularity.MONTH)

        assert [q['date'] for q in result] == [date(2024, 1, 31), date(2024, 2, 28)]
        assert [q['close'] for q in result] == [105.0, 110.0]

    def test_year_keeps_last_day(self, series):
        series.store('AAPL', [
            quote(date(2023, 6, 1), 90.0),
            quote(date(2023, 12, 29), 95.0),
            quote(date(2024, 3, 1), 100.0),
        ])

        assert series.query('AAPL', 'year', 'close') == [95.0, 100.0]

    def test_day_is_identity_in_date_order(self, series):
        series.store('AAPL', [quote(date(2024, 1, 3), 2.0), quote(date(2024, 1, 2), 1.0)])

        assert series.query('AAPL', Granularity.DAY, 'date') == [date(2024, 1, 2), date(2024, 1, 3)]

    def test_last_n(self, series):
        series.store('AAPL', [quote(date(2024, 1, d), float(d)) for d in range(2, 9)])

        assert series.query('AAPL', field='close', last_n=3) == [6.0, 7.0, 8.0]

    def test_unknown_symbol_is_empty(self, series):
        assert series.query('NONE', Granularity.MONTH) == []

    def test_unknown_field(self, series):
        with pytest.raises(TimeSeriesError, match="Unknown quote field"):
            series.query('AAPL', field='adj_close')

    def test_non_positive_last_n(self, series):
        with pytest.raises(TimeSeriesError):
            series.query('AAPL', last_n=0)

    def test_returns_and_last_close(self, series):
        series.store('AAPL', [quote(date(2024, 1, 31), 100.0), quote(date(2024, 2, 29), 110.0)])

        assert series.returns('AAPL') == pytest.approx([0.10])
        assert series.last_close('AAPL') == 110.0
        assert series.last_close('NONE') is None


class TestCacheFreshness:
    """Resampled results are served until they expire."""

    def test_stale_until_ttl(self, series, clock):
        series.store('AAPL', [quote(date(2024, 1, 2), 100.0)])
        assert series.query('AAPL', field='close') == [100.0]

        series.store('AAPL', [quote(date(2024, 1, 3), 101.0)])
        clock.now = 299.0
        assert series.query('AAPL', field='close') == [100.0]

        clock.now = 300.0
        assert series.query('AAPL', field='close') == [100.0, 101.0]

    def test_returned_list_is_a_copy(self, series):
        series.store('AAPL', [quote(date(2024, 1, 2), 100.0)])
        first = series.query('AAPL', field='close')
        first.append(0.0)

        assert series.query('AAPL', field='close') == [100.0]


class TestTTLCache:

    def test_miss_hit_expire(self, clock):
        cache = TTLCache(10, clock)
        assert cache.get(('k',)) == (False, None)

        cache.put(('k',), 1)
        assert cache.get(('k',)) == (True, 1)
        assert len(cache) == 1

        clock.now = 10.0
        assert cache.get(('k',)) == (False, None)
        assert len(cache) == 0


class TestResampleQuotes:

    def test_empty(self):
        assert resample_quotes([], Granularity.MONTH) == []

    def test_dates_come_back_as_dates(self):
        result = resample_quotes([quote(date(2024, 1, 2), 1.0)], Granularity.DAY)
        assert result[0]['date'] == date(2024, 1, 2)
        assert isinstance(result[0]['date'], date)
