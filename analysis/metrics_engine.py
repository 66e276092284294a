"""
Metrics engine - per-symbol risk/return metrics written through to storage.
Queries resampled closes, calls pure calculation functions, persists each
metric independently so one failure never blocks its siblings.
"""

import logging
import random
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple

from analysis.calculations.drawdown import (
    average_drawdown,
    calmar_ratio,
    maximum_drawdown,
    rolling_economic_drawdown,
)
from analysis.calculations.redp import single_allocation
from analysis.calculations.returns import (
    ReturnMode,
    annualized_return,
    cagr,
    rate_of_return,
    tick_to_returns,
)
from analysis.calculations.volatility import annualized_risk, downside_risk, sharpe_ratio
from analysis.timeseries import Granularity, TimeSeriesCache
from storage.metrics_store import MetricKind
from storage.store import Store
from utils.symbols import normalize_symbol
from utils.workers import BatchOutcome, run_shuffled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryWarning:
    """Fewer observations than the trailing window needs."""
    symbol: str
    observed_count: int


@dataclass
class RefreshResult:
    """Outcome of recomputing every metric of one symbol."""
    symbol: str
    values: Dict[MetricKind, float] = field(default_factory=dict)
    failures: Dict[MetricKind, str] = field(default_factory=dict)
    warnings: List[HistoryWarning] = field(default_factory=list)


@dataclass
class MetricsParams:
    """Parameters shared by every metric computation."""
    risk_free_rate: float = 0.0
    risk_tolerance: float = 0.3
    trailing_window: int = 12
    frequency: int = 12
    minimum_acceptable_return: float = 0.0
    return_mode: ReturnMode = ReturnMode.GEOMETRIC

    def __post_init__(self):
        if self.trailing_window < 2:
            raise ValueError("trailing_window must be >= 2")
        if self.frequency <= 0:
            raise ValueError("frequency must be positive")
        if not 0.0 < self.risk_tolerance < 1.0:
            raise ValueError("risk_tolerance must be in (0, 1)")
        self.return_mode = ReturnMode(self.return_mode)


@lru_cache(maxsize=4096)
def _memoized_single_allocation(
    symbol: str,
    closes: Tuple[float, ...],
    risk: float,
    risk_free: float,
    window: int
) -> float:
    return single_allocation(list(closes), risk, risk_free, window)


class MetricsEngine:
    """
    Computes and stores the metric set of a symbol.

    Args:
        store: Injected store handle
        series: Time series cache over the same store
        params: Metric parameters
    """

    def __init__(self, store: Store, series: TimeSeriesCache, params: Optional[MetricsParams] = None):
        self.store = store
        self.series = series
        self.params = params or MetricsParams()

    def trailing_closes(self, symbol: str) -> List[float]:
        """Last trailing_window + 1 month-end closes."""
        return self.series.query(
            symbol, Granularity.MONTH, 'close', self.params.trailing_window + 1
        )

    def single_asset_allocation(self, symbol: str, drop_last_period: bool = False) -> Optional[float]:
        """
        Standalone allocation of one symbol, memoized per symbol, closes and parameters.

        Returns:
            Allocation in [0, 1], or None without enough history
        """
        symbol = normalize_symbol(symbol)
        closes = self.trailing_closes(symbol)
        if drop_last_period:
            closes = closes[:-1]
        if len(closes) < 3:
            return None
        window = min(self.params.trailing_window, len(closes))
        return _memoized_single_allocation(
            symbol,
            tuple(closes),
            self.params.risk_tolerance,
            self.params.risk_free_rate / self.params.frequency,
            window,
        )

    def refresh(self, symbol: str) -> RefreshResult:
        """
        Recompute every metric for a symbol and overwrite stored values.

        A metric that cannot be computed is stored as absent, logged, and
        listed in `failures`; the remaining metrics still run.

        Returns:
            RefreshResult with values, failures and history warnings
        """
        symbol = normalize_symbol(symbol)
        result = RefreshResult(symbol=symbol)
        params = self.params

        closes = self.trailing_closes(symbol)
        if len(closes) < params.trailing_window + 1:
            result.warnings.append(HistoryWarning(symbol, len(closes)))
            logger.warning(
                f"{symbol}: {len(closes)} monthly closes, "
                f"{params.trailing_window + 1} needed for a full window"
            )

        def returns():
            return tick_to_returns(closes)

        def calmar():
            for kind in (MetricKind.ANNUALIZED_RETURN, MetricKind.MAXIMUM_DRAWDOWN):
                if kind not in result.values:
                    raise ValueError(f"{kind.value} unavailable")
            return calmar_ratio(
                result.values[MetricKind.ANNUALIZED_RETURN],
                result.values[MetricKind.MAXIMUM_DRAWDOWN],
            )

        calculations: List[Tuple[MetricKind, Callable[[], float]]] = [
            (MetricKind.SHARPE,
             lambda: sharpe_ratio(returns(), params.risk_free_rate, params.frequency)),
            (MetricKind.DOWNSIDE_RISK,
             lambda: downside_risk(returns(), params.minimum_acceptable_return)),
            (MetricKind.ANNUALIZED_RETURN,
             lambda: annualized_return(returns(), params.frequency, params.return_mode)),
            (MetricKind.ANNUALIZED_RISK,
             lambda: annualized_risk(returns(), params.frequency)),
            (MetricKind.AVERAGE_DRAWDOWN, lambda: average_drawdown(returns())),
            (MetricKind.MAXIMUM_DRAWDOWN, lambda: maximum_drawdown(returns())),
            (MetricKind.RATE_OF_RETURN, lambda: rate_of_return(returns())),
            (MetricKind.CAGR, lambda: cagr(returns(), params.frequency)),
            (MetricKind.CALMAR, calmar),
            (MetricKind.REDP,
             lambda: rolling_economic_drawdown(closes, params.trailing_window)),
            (MetricKind.SINGLE_ASSET_ALLOCATION, lambda: self._required_allocation(symbol)),
        ]

        for kind, calculate in calculations:
            try:
                value = float(calculate())
            except Exception as e:
                result.failures[kind] = str(e)
                logger.warning(f"{symbol}: {kind.value} skipped: {e}")
                self.store.upsert_metric(symbol, kind, None)
                continue
            result.values[kind] = value
            self.store.upsert_metric(symbol, kind, value)

        logger.debug(f"{symbol}: {len(result.values)} metrics stored, {len(result.failures)} skipped")
        return result

    def refresh_many(
        self,
        symbols: List[str],
        max_workers: int = 4,
        rng: Optional[random.Random] = None
    ) -> BatchOutcome:
        """
        Refresh metrics for many symbols in shuffled order on a bounded pool.
        Per-symbol failures are logged and recorded, never raised.
        """
        return run_shuffled(symbols, self.refresh, max_workers, rng, label='refresh metrics')

    def _required_allocation(self, symbol: str) -> float:
        value = self.single_asset_allocation(symbol)
        if value is None:
            raise ValueError("not enough history for single asset allocation")
        return value
