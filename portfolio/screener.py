"""
Portfolio screener - gates symbols on stored metrics, runs the optimizer
and assembles the report rows.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from analysis.timeseries import TimeSeriesCache
from portfolio.optimizer import AllocationOptimizer, AllocationResult, OptimizerParams
from reports.formatters import format_cell, format_money
from storage.metrics_store import MetricKind
from storage.store import Store
from utils.symbols import normalize_symbols

logger = logging.getLogger(__name__)

REPORT_COLUMNS = (
    'symbol', 'name', 'allocation', 'money', 'avg_drawdown', 'max_drawdown',
    'price', 'stop_loss', 'redp', 'annualized_return', 'sharpe', 'calmar', 'beta',
)


@dataclass
class ScreenerConfig:
    """Thresholds and optimizer parameters of one portfolio request."""
    exclude: FrozenSet[str] = field(default_factory=frozenset)
    min_sharpe: float = 1.0
    max_drawdown: float = 0.3
    max_redp: float = 1.0
    max_price: float = 100000.0
    max_count: int = 5
    money: float = 100000.0
    drop_last_period: bool = False
    risk_free_rate: float = 0.0
    risk_tolerance: float = 0.3
    trailing_window: int = 12

    def __post_init__(self):
        self.exclude = frozenset(normalize_symbols(self.exclude))
        if self.max_count < 1:
            raise ValueError("max_count must be >= 1")
        if self.money < 0:
            raise ValueError("money must be >= 0")
        if self.max_drawdown < 0:
            raise ValueError("max_drawdown must be >= 0")
        if self.max_redp < 0:
            raise ValueError("max_redp must be >= 0")
        if self.max_price <= 0:
            raise ValueError("max_price must be positive")
        if not 0.0 < self.risk_tolerance < 1.0:
            raise ValueError("risk_tolerance must be in (0, 1)")
        if self.trailing_window < 2:
            raise ValueError("trailing_window must be >= 2")

    def optimizer_params(self) -> OptimizerParams:
        return OptimizerParams(
            max_count=self.max_count,
            total_money=self.money,
            risk_free_rate=self.risk_free_rate,
            risk_tolerance=self.risk_tolerance,
            trailing_window=self.trailing_window,
            drop_last_period=self.drop_last_period,
        )


@dataclass
class ReportRow:
    """One portfolio member with its allocation and supporting metrics."""
    symbol: str
    name: Optional[str]
    allocation: float
    money: float
    avg_drawdown: Optional[float]
    max_drawdown: Optional[float]
    price: Optional[float]
    stop_loss: Optional[float]
    redp: Optional[float]
    annualized_return: Optional[float]
    sharpe: Optional[float]
    calmar: Optional[float]
    beta: Optional[float]

    def as_display_dict(self) -> Dict[str, str]:
        """Row rendered for display; absent values become empty strings."""
        display = {column: format_cell(value) for column, value in asdict(self).items()}
        display["money"] = format_money(self.money)
        return display


class PortfolioScreener:
    """
    Builds the portfolio report for a candidate universe.

    Args:
        store: Injected store handle
        series: Time series cache over the same store
        optimizer: Allocation optimizer (one is created when omitted)
    """

    def __init__(
        self,
        store: Store,
        series: TimeSeriesCache,
        optimizer: Optional[AllocationOptimizer] = None
    ):
        self.store = store
        self.series = series
        self.optimizer = optimizer or AllocationOptimizer(series)

    def candidate_universe(self) -> List[str]:
        """Configured universe, or every symbol with stored metrics when none is set."""
        universe = self.store.list_universe()
        return universe if universe else self.store.symbols_with_metrics()

    def is_eligible(self, symbol: str, config: ScreenerConfig) -> bool:
        """True when every gating metric is present and within its threshold."""
        sharpe = self.store.get_one(symbol, MetricKind.SHARPE)
        max_dd = self.store.get_one(symbol, MetricKind.MAXIMUM_DRAWDOWN)
        allocation = self.store.get_one(symbol, MetricKind.SINGLE_ASSET_ALLOCATION)
        redp = self.store.get_one(symbol, MetricKind.REDP)
        last_price = self.series.last_close(symbol)

        if None in (sharpe, max_dd, allocation, redp, last_price):
            logger.debug(f"{symbol}: missing gating metric, not eligible")
            return False

        return (
            sharpe >= config.min_sharpe
            and max_dd <= config.max_drawdown
            and allocation == 1.0
            and redp <= config.max_redp
            and round(last_price, 2) <= config.max_price
        )

    def eligible_symbols(
        self,
        config: ScreenerConfig,
        symbols: Optional[Iterable[str]] = None
    ) -> List[str]:
        """
        Symbols passing every gate, with exclusions removed.

        Args:
            config: Screening thresholds
            symbols: Candidate universe (defaults to candidate_universe())
        """
        if symbols is None:
            symbols = self.candidate_universe()

        eligible = [
            symbol for symbol in normalize_symbols(symbols)
            if symbol not in config.exclude and self.is_eligible(symbol, config)
        ]
        logger.info(f"{len(eligible)} symbols passed screening")
        return eligible

    def build_report(
        self,
        config: ScreenerConfig,
        symbols: Optional[Iterable[str]] = None
    ) -> List[ReportRow]:
        """
        Screen, optimize and enrich.

        Returns:
            ReportRow list ordered by descending allocation

        Raises:
            PortfolioConstructionError: If no portfolio can be built from the
                eligible symbols
        """
        eligible = self.eligible_symbols(config, symbols)
        results = self.optimizer.optimize(eligible, config.optimizer_params())
        rows = [self._to_row(result) for result in results]
        return sorted(rows, key=lambda row: -row.allocation)

    def _to_row(self, result: AllocationResult) -> ReportRow:
        metrics = self.store.get_all(result.symbol)
        info = self.store.query_info(result.symbol)
        avg_dd = metrics.get(MetricKind.AVERAGE_DRAWDOWN)
        price = result.last_price

        stop_loss = None
        if price is not None and avg_dd is not None:
            stop_loss = round(price * (1.0 - avg_dd), 2)

        return ReportRow(
            symbol=result.symbol,
            name=info.get('name'),
            allocation=result.weight,
            money=result.money,
            avg_drawdown=avg_dd,
            max_drawdown=metrics.get(MetricKind.MAXIMUM_DRAWDOWN),
            price=round(price, 2) if price is not None else None,
            stop_loss=stop_loss,
            redp=metrics.get(MetricKind.REDP),
            annualized_return=metrics.get(MetricKind.ANNUALIZED_RETURN),
            sharpe=metrics.get(MetricKind.SHARPE),
            calmar=metrics.get(MetricKind.CALMAR),
            beta=info.get('beta'),
        )


def report_records(rows: List[ReportRow]) -> List[Dict[str, Any]]:
    """Display dictionaries in REPORT_COLUMNS order."""
    return [{column: row.as_display_dict()[column] for column in REPORT_COLUMNS} for row in rows]
