"""
Tests for the allocation optimizer - iterative winnow over candidates.
"""

import pytest
from datetime import date
from unittest.mock import patch

import numpy as np

from analysis.calculations.redp import multiple_allocation
from analysis.timeseries import TimeSeriesCache
from portfolio.optimizer import (
    AllocationCandidate,
    AllocationOptimizer,
    OptimizerParams,
    PortfolioConstructionError,
    _winnowed_weights,
)
from storage.store import Store


def monthly_quotes(closes):
    return [
        {
            'date': date(2023 + i // 12, i % 12 + 1, 28),
            'open': close, 'high': close, 'low': close, 'close': close,
            'volume': 1000,
        }
        for i, close in enumerate(closes)
    ]


def dip_closes(i, periods=12, drift=0.02):
    """Steady drift with one dip and rebound of size 0.01 * (i + 1)."""
    size = 0.01 * (i + 1)
    returns = [drift] * periods
    returns[2 * i] = -size
    returns[2 * i + 1] = size
    closes = [100.0]
    for ret in returns:
        closes.append(closes[-1] * (1 + ret))
    return closes


@pytest.fixture(autouse=True)
def clear_weight_memo():
    _winnowed_weights.cache_clear()
    yield
    _winnowed_weights.cache_clear()


@pytest.fixture
def store():
    store = Store.in_memory()
    yield store
    store.close()


@pytest.fixture
def series(store):
    return TimeSeriesCache(store)


@pytest.fixture
def optimizer(series):
    return AllocationOptimizer(series)


def load_assets(series, count):
    symbols = [f"s{i}" for i in range(count)]
    for i, symbol in enumerate(symbols):
        series.store(symbol, monthly_quotes(dip_closes(i)))
    return symbols


class TestOptimizerParams:

    def test_invalid_max_count(self):
        with pytest.raises(ValueError):
            OptimizerParams(max_count=0)

    def test_invalid_risk(self):
        with pytest.raises(ValueError):
            OptimizerParams(risk_tolerance=0.0)

    def test_hashable(self):
        assert hash(OptimizerParams()) == hash(OptimizerParams())


class TestCandidates:

    def test_trailing_window(self, optimizer, series):
        load_assets(series, 1)

        candidates = optimizer.build_candidates(['S0'], OptimizerParams())

        assert len(candidates) == 1
        assert len(candidates[0].closes) == 13
        assert len(candidates[0].trailing_returns) == 12

    def test_drop_last_period(self, optimizer, series):
        load_assets(series, 1)

        candidates = optimizer.build_candidates(['s0'], OptimizerParams(drop_last_period=True))

        assert len(candidates[0].closes) == 12

    def test_short_history_skipped(self, optimizer, series):
        load_assets(series, 1)
        series.store('new', monthly_quotes([100.0, 101.0, 102.0]))

        candidates = optimizer.build_candidates(['s0', 'new'], OptimizerParams())

        assert [c.symbol for c in candidates] == ['s0']


class TestOptimize:

    def test_within_max_count_single_round(self, optimizer, series):
        symbols = load_assets(series, 3)

        with patch('portfolio.optimizer.multiple_allocation', wraps=multiple_allocation) as spy:
            results = optimizer.optimize(symbols, OptimizerParams(max_count=5))

        assert spy.call_count == 1
        assert sorted(r.symbol for r in results) == symbols
        assert sum(r.weight for r in results) == pytest.approx(1.0, abs=0.02)

    def test_winnows_to_max_count(self, optimizer, series):
        symbols = load_assets(series, 5)

        results = optimizer.optimize(symbols, OptimizerParams(max_count=2))

        assert len(results) == 2
        assert {r.symbol for r in results} <= set(symbols)

    def test_drops_weakest_each_round(self, optimizer, series):
        symbols = load_assets(series, 5)

        results = optimizer.optimize(symbols, OptimizerParams(max_count=3))

        assert [r.symbol for r in results] == ['s0', 's1', 's2']
        weights = [r.weight for r in results]
        assert weights[0] > weights[1] > weights[2]

    def test_money_and_last_price(self, optimizer, series):
        symbols = load_assets(series, 3)

        results = optimizer.optimize(symbols, OptimizerParams(max_count=3, total_money=100000))

        assert sum(r.money for r in results) == pytest.approx(100000, abs=0.05)
        assert results[0].last_price == pytest.approx(dip_closes(0)[-1])

    def test_empty_candidates(self, optimizer):
        with pytest.raises(PortfolioConstructionError, match="no candidates"):
            optimizer.optimize([], OptimizerParams())

    def test_degenerate_inputs(self, optimizer, series):
        series.store('flat-a', monthly_quotes([100.0] * 13))
        series.store('flat-b', monthly_quotes([50.0] * 13))

        with pytest.raises(PortfolioConstructionError):
            optimizer.optimize(['flat-a', 'flat-b'], OptimizerParams())


class TestMemoization:

    def test_same_input_reuses_weights(self, optimizer, series):
        symbols = load_assets(series, 3)
        params = OptimizerParams(max_count=2)

        with patch('portfolio.optimizer.multiple_allocation', wraps=multiple_allocation) as spy:
            first = optimizer.optimize(symbols, params)
            calls = spy.call_count
            second = optimizer.optimize(symbols, params)

        assert second == first
        assert spy.call_count == calls

    def test_money_applied_without_recomputing(self, optimizer, series):
        symbols = load_assets(series, 3)

        with patch('portfolio.optimizer.multiple_allocation', wraps=multiple_allocation) as spy:
            first = optimizer.optimize(symbols, OptimizerParams(max_count=3, total_money=1000))
            second = optimizer.optimize(symbols, OptimizerParams(max_count=3, total_money=2000))

        assert spy.call_count == 1
        assert second[0].money == pytest.approx(first[0].money * 2, abs=0.02)

    def test_memo_is_bounded(self, optimizer, series):
        symbols = load_assets(series, 3)

        for money in range(1000, 1500):
            optimizer.optimize(symbols, OptimizerParams(max_count=3, total_money=money))

        info = _winnowed_weights.cache_info()
        assert info.currsize == 1
        assert info.maxsize is not None

    def test_weighting_change_recomputes(self, optimizer, series):
        symbols = load_assets(series, 3)

        with patch('portfolio.optimizer.multiple_allocation', wraps=multiple_allocation) as spy:
            optimizer.optimize(symbols, OptimizerParams(max_count=3, risk_tolerance=0.3))
            optimizer.optimize(symbols, OptimizerParams(max_count=3, risk_tolerance=0.25))

        assert spy.call_count == 2


class TestTieBreak:

    def test_candidates_keep_caller_order(self, optimizer, series):
        series.store('zz', monthly_quotes(dip_closes(0)))
        series.store('aa', monthly_quotes(dip_closes(1)))

        candidates = optimizer.build_candidates(['ZZ', 'aa'], OptimizerParams())

        assert [c.symbol for c in candidates] == ['zz', 'aa']

    def test_equal_weights_keep_candidate_order(self, optimizer, series):
        series.store('zz', monthly_quotes(dip_closes(0)))
        series.store('aa', monthly_quotes(dip_closes(1)))

        with patch('portfolio.optimizer.multiple_allocation', return_value=np.array([0.5, 0.5])):
            results = optimizer.optimize(['zz', 'aa'], OptimizerParams(max_count=2))

        assert [r.symbol for r in results] == ['zz', 'aa']

    def test_tied_lowest_drops_later_candidate(self, optimizer, series):
        symbols = load_assets(series, 3)
        rounds = [np.array([0.25, 0.5, 0.25]), np.array([0.5, 0.5])]

        with patch('portfolio.optimizer.multiple_allocation', side_effect=rounds) as spy:
            results = optimizer.optimize(symbols, OptimizerParams(max_count=2))

        candidates = optimizer.build_candidates(symbols, OptimizerParams())

        assert [r.symbol for r in results] == ['s0', 's1']
        assert spy.call_args_list[1][0][0] == [candidates[0].closes, candidates[1].closes]


class TestDropLastPeriod:

    def test_full_redp_window_kept(self, optimizer, series):
        symbols = load_assets(series, 3)

        with patch('portfolio.optimizer.multiple_allocation', wraps=multiple_allocation) as spy:
            optimizer.optimize(symbols, OptimizerParams(max_count=3, drop_last_period=True))

        closes = spy.call_args[0][0]
        assert spy.call_args.kwargs['window'] == 12
        assert all(len(c) == 12 for c in closes)


class TestAllocationCandidate:

    def test_returns(self):
        candidate = AllocationCandidate('x', (100.0, 110.0, 99.0))
        assert candidate.trailing_returns == pytest.approx([0.10, -0.10])
