"""
Tests for the metrics engine - write-through metric refresh with
per-metric failure isolation.
"""

import pytest
import random
from datetime import date

from analysis.calculations.volatility import sharpe_ratio
from analysis.metrics_engine import HistoryWarning, MetricsEngine, MetricsParams
from analysis.timeseries import TimeSeriesCache
from storage.metrics_store import MetricKind
from storage.store import Store


def monthly_quotes(closes, start_year=2023):
    quotes = []
    for i, close in enumerate(closes):
        year, month = start_year + i // 12, i % 12 + 1
        quotes.append({
            'date': date(year, month, 28),
            'open': close, 'high': close, 'low': close, 'close': close,
            'volume': 1000,
        })
    return quotes


def closes_from_returns(returns, start=100.0):
    closes = [start]
    for ret in returns:
        closes.append(closes[-1] * (1 + ret))
    return closes


RETURNS = [0.02, 0.03, -0.01, 0.02, 0.04, -0.02, -0.01, 0.03, 0.02, 0.01, 0.03, 0.02]


@pytest.fixture
def store():
    store = Store.in_memory()
    yield store
    store.close()


@pytest.fixture
def series(store):
    return TimeSeriesCache(store)


@pytest.fixture
def engine(store, series):
    return MetricsEngine(store, series, MetricsParams())


class TestMetricsParams:

    def test_defaults(self):
        params = MetricsParams()
        assert params.trailing_window == 12
        assert params.risk_tolerance == 0.3

    def test_invalid_risk(self):
        with pytest.raises(ValueError):
            MetricsParams(risk_tolerance=1.5)

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            MetricsParams(trailing_window=1)


class TestRefresh:

    def test_all_metrics_stored(self, engine, series, store):
        series.store('AAPL', monthly_quotes(closes_from_returns(RETURNS)))

        result = engine.refresh('AAPL')

        assert result.failures == {}
        assert result.warnings == []
        assert set(result.values) == set(MetricKind)
        assert set(store.get_all('aapl')) == set(MetricKind)

    def test_values_match_calculations(self, engine, series, store):
        series.store('AAPL', monthly_quotes(closes_from_returns(RETURNS)))
        engine.refresh('AAPL')

        assert store.get_one('AAPL', MetricKind.SHARPE) == pytest.approx(sharpe_ratio(RETURNS))
        assert store.get_one('AAPL', MetricKind.MAXIMUM_DRAWDOWN) == pytest.approx(1 - 0.98 * 0.99)
        assert store.get_one('AAPL', MetricKind.REDP) == pytest.approx(0.0)
        assert store.get_one('AAPL', MetricKind.SINGLE_ASSET_ALLOCATION) == 1.0

        calmar = store.get_one('AAPL', MetricKind.CALMAR)
        annual = store.get_one('AAPL', MetricKind.ANNUALIZED_RETURN)
        assert calmar == pytest.approx(annual / (1 - 0.98 * 0.99))

    def test_failure_isolated_per_metric(self, engine, series, store):
        """Flat prices break the ratio metrics only."""
        series.store('FLAT', monthly_quotes([50.0] * 13))

        result = engine.refresh('FLAT')

        assert set(result.failures) == {
            MetricKind.SHARPE,
            MetricKind.CALMAR,
            MetricKind.SINGLE_ASSET_ALLOCATION,
        }
        assert result.values[MetricKind.ANNUALIZED_RISK] == 0.0
        assert result.values[MetricKind.MAXIMUM_DRAWDOWN] == 0.0
        assert store.get_one('FLAT', MetricKind.SHARPE) is None

    def test_failed_metric_overwrites_stale_value(self, engine, series, store):
        store.upsert_metric('FLAT', MetricKind.SHARPE, 3.0)
        series.store('FLAT', monthly_quotes([50.0] * 13))

        engine.refresh('FLAT')

        assert store.get_one('FLAT', MetricKind.SHARPE) is None

    def test_short_history_warns(self, engine, series):
        series.store('NEW', monthly_quotes(closes_from_returns(RETURNS[:4])))

        result = engine.refresh('NEW')

        assert result.warnings == [HistoryWarning('new', 5)]
        assert MetricKind.REDP in result.failures
        assert MetricKind.SHARPE in result.values

    def test_no_history(self, engine):
        result = engine.refresh('NONE')

        assert result.warnings == [HistoryWarning('none', 0)]
        assert result.values == {}


class TestSingleAssetAllocation:

    def test_needs_three_closes(self, engine, series):
        series.store('NEW', monthly_quotes([100.0, 101.0]))
        assert engine.single_asset_allocation('NEW') is None

    def test_drop_last_period(self, engine, series):
        closes = closes_from_returns(RETURNS[:-1]) + [10.0]
        series.store('AAPL', monthly_quotes(closes))

        assert engine.single_asset_allocation('AAPL') == 0.0
        assert engine.single_asset_allocation('AAPL', drop_last_period=True) == 1.0


class TestRefreshMany:

    def test_every_symbol_processed(self, engine, series):
        for symbol in ['a', 'b', 'c']:
            series.store(symbol, monthly_quotes(closes_from_returns(RETURNS)))

        outcome = engine.refresh_many(['a', 'b', 'c'], max_workers=2, rng=random.Random(7))

        assert sorted(outcome.order) == ['a', 'b', 'c']
        assert set(outcome.results) == {'a', 'b', 'c'}
        assert outcome.failed == 0
