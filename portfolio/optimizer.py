"""
Allocation optimizer - iterative winnow over a screened candidate set.

Each round re-optimizes REDP weights over the current universe, keeps the
best ranked assets and sheds the single weakest one, until no more than
`max_count` assets remain. Re-optimizing after every removal matters
because an asset's optimal weight depends on which other assets are present.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple

from analysis.calculations.redp import AllocationError, multiple_allocation
from analysis.calculations.returns import tick_to_returns
from analysis.timeseries import Granularity, TimeSeriesCache
from utils.symbols import normalize_symbols

logger = logging.getLogger(__name__)

MAX_ROUNDS = 1000
EXTRA_RANKED = 5
MEMO_SIZE = 256


class PortfolioConstructionError(Exception):
    """Raised when no portfolio can be built from the given candidates."""
    pass


@dataclass(frozen=True)
class OptimizerParams:
    """Parameters of one optimizer invocation."""
    max_count: int = 5
    total_money: float = 100000.0
    risk_free_rate: float = 0.0
    risk_tolerance: float = 0.3
    trailing_window: int = 12
    drop_last_period: bool = False
    frequency: int = 12

    def __post_init__(self):
        if self.max_count < 1:
            raise ValueError("max_count must be >= 1")
        if self.total_money < 0:
            raise ValueError("total_money must be >= 0")
        if not 0.0 < self.risk_tolerance < 1.0:
            raise ValueError("risk_tolerance must be in (0, 1)")
        if self.trailing_window < 2:
            raise ValueError("trailing_window must be >= 2")
        if self.frequency <= 0:
            raise ValueError("frequency must be positive")


@dataclass(frozen=True)
class AllocationCandidate:
    """A symbol with the trailing closes the optimizer works on."""
    symbol: str
    closes: Tuple[float, ...]

    @property
    def trailing_returns(self) -> List[float]:
        return tick_to_returns(self.closes).tolist()


@dataclass(frozen=True)
class AllocationResult:
    """Final weight and capital of one portfolio member."""
    symbol: str
    weight: float
    money: float
    last_price: Optional[float]

class AllocationOptimizer:
    """
    Builds concentrated portfolios from quote history.

    Winnowed weights are memoized per ordered candidate set and weighting
    parameters. Capital and last prices are applied on every call.

    Args:
        series: Time series cache providing month-end closes and last prices
    """

    def __init__(self, series: TimeSeriesCache):
        self.series = series

    def build_candidates(self, symbols: Iterable[str], params: OptimizerParams) -> List[AllocationCandidate]:
        """
        Trailing close series for every symbol with a full window, in the
        order the symbols were given.

        Takes the last trailing_window + 1 month-end closes and, when
        drop_last_period is set, discards the most recent one. Symbols with
        fewer closes are left out without error.
        """
        needed = params.trailing_window + 1
        candidates = []

        for symbol in normalize_symbols(symbols):
            closes = self.series.query(symbol, Granularity.MONTH, 'close', needed)
            if len(closes) < needed:
                logger.debug(f"{symbol}: {len(closes)} of {needed} closes, not a candidate")
                continue
            if params.drop_last_period:
                closes = closes[:-1]
            candidates.append(AllocationCandidate(symbol, tuple(float(c) for c in closes)))

        return candidates

    def optimize(self, symbols: Iterable[str], params: OptimizerParams) -> List[AllocationResult]:
        """
        Allocate `params.total_money` over at most `params.max_count` symbols.

        Returns:
            AllocationResult list ordered by descending weight, weights and
            money rounded to 2 decimals

        Raises:
            PortfolioConstructionError: If no candidate has enough history or
                the weighting problem is degenerate
        """
        candidates = self.build_candidates(symbols, params)
        if not candidates:
            raise PortfolioConstructionError("Cannot construct portfolio: no candidates with enough history")

        ranked = _winnowed_weights(
            tuple(candidates),
            params.max_count,
            params.risk_tolerance,
            params.risk_free_rate / params.frequency,
            params.trailing_window,
        )
        return self._to_results(ranked, params.total_money)

    def _to_results(self, ranked: Tuple[Tuple[str, float], ...], total_money: float) -> List[AllocationResult]:
        results = [
            AllocationResult(
                symbol=symbol,
                weight=round(weight, 2),
                money=round(total_money * weight, 2),
                last_price=self.series.last_close(symbol),
            )
            for symbol, weight in ranked
        ]
        return sorted(results, key=lambda result: -result.weight)


@lru_cache(maxsize=MEMO_SIZE)
def _winnowed_weights(
    candidates: Tuple[AllocationCandidate, ...],
    max_count: int,
    risk_tolerance: float,
    risk_free: float,
    window: int
) -> Tuple[Tuple[str, float], ...]:
    """
    Iterative winnow: re-optimize, keep the top max_count + EXTRA_RANKED,
    shed the lowest ranked one, until at most max_count remain.

    The working set keeps candidate order between rounds, so equal weights
    always rank in the order the candidates were given.
    """
    working = list(candidates)

    for round_no in range(1, MAX_ROUNDS + 1):
        try:
            weights = multiple_allocation(
                [candidate.closes for candidate in working],
                risk=risk_tolerance,
                risk_free=risk_free,
                window=window,
            )
        except AllocationError as e:
            raise PortfolioConstructionError(f"Cannot construct portfolio: {e}") from e

        # sorted() is stable, ties keep candidate order
        ranked = sorted(zip(working, weights), key=lambda pair: -pair[1])
        ranked = ranked[:max_count + EXTRA_RANKED]

        if len(ranked) > max_count:
            dropped = ranked[-1][0].symbol
            survivors = {candidate.symbol for candidate, _ in ranked[:-1]}
            working = [candidate for candidate in working if candidate.symbol in survivors]
            logger.debug(f"Round {round_no}: dropped {dropped}, {len(working)} left")
            continue

        logger.info(f"Portfolio converged after {round_no} rounds with {len(ranked)} assets")
        return tuple((candidate.symbol, float(weight)) for candidate, weight in ranked)

    raise PortfolioConstructionError(f"Cannot construct portfolio: no convergence in {MAX_ROUNDS} rounds")
