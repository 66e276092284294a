"""
Refresh DAG - keeps quotes, instrument info and metrics current.
Composes: Provider → Validate → Store → Metrics → Track.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from analysis.metrics_engine import HistoryWarning, MetricsEngine, RefreshResult
from analysis.timeseries import TimeSeriesCache
from ingestion.providers.yfinance_adapter import YFinanceError, fetch_history, fetch_info
from ingestion.transforms.validators import partition_valid
from storage.run_registry import RunStatus
from storage.store import Store
from utils.symbols import normalize_symbol, normalize_symbols
from utils.workers import BatchOutcome, run_shuffled

logger = logging.getLogger(__name__)

ShouldRetry = Callable[[str, int], bool]


class PipelineError(Exception):
    """Raised when pipeline execution fails."""
    pass


@dataclass
class RefreshConfig:
    """Configuration for refresh runs."""
    history_months: int = 13
    max_workers: int = 4
    min_history_quotes: int = 30
    max_check_attempts: int = 2

    def __post_init__(self):
        if self.history_months < 1:
            raise ValueError("history_months must be >= 1")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.min_history_quotes < 1:
            raise ValueError("min_history_quotes must be >= 1")
        if self.max_check_attempts < 0:
            raise ValueError("max_check_attempts must be >= 0")


@dataclass
class QuoteRefreshResult:
    """What one incremental quote refresh fetched and stored."""
    symbol: str
    since: date
    rows_fetched: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    validation_warnings: List[str] = field(default_factory=list)


class RefreshPipeline:
    """
    Incremental refresh of quote history, instrument info and metrics.

    Args:
        store: Injected store handle
        series: Time series cache over the same store
        engine: Metrics engine over the same store
        config: Refresh configuration
        history_fetcher: Quote source, fetch_history(symbol, since)
        info_fetcher: Instrument info source, fetch_info(symbol)
        today: Clock for the initial history window
    """

    def __init__(
        self,
        store: Store,
        series: TimeSeriesCache,
        engine: MetricsEngine,
        config: Optional[RefreshConfig] = None,
        history_fetcher: Callable[[str, date], List[Dict[str, Any]]] = fetch_history,
        info_fetcher: Callable[[str], Dict[str, Any]] = fetch_info,
        today: Callable[[], date] = date.today
    ):
        self.store = store
        self.series = series
        self.engine = engine
        self.config = config or RefreshConfig()
        self._fetch_history = history_fetcher
        self._fetch_info = info_fetcher
        self._today = today

    def universe(self, symbols: Optional[List[str]] = None) -> List[str]:
        return normalize_symbols(symbols) if symbols is not None else self.store.list_universe()

    def history_start(self) -> date:
        """First date fetched for a symbol with no stored quotes."""
        start = pd.Timestamp(self._today()) - pd.DateOffset(months=self.config.history_months)
        return start.date()

    def refresh_quotes(self, symbol: str) -> QuoteRefreshResult:
        """
        Fetch and store the quotes missing since the last stored date.

        The fetch starts at the last stored date (inclusive) so a partial
        bar from the previous run is visible, but the boundary date itself
        is not rewritten.
        """
        symbol = normalize_symbol(symbol)
        last_date = self.store.last_quote_date(symbol)
        since = last_date or self.history_start()

        rows = self._fetch_history(symbol, since)
        result = QuoteRefreshResult(symbol=symbol, since=since, rows_fetched=len(rows))

        valid_rows, errors = partition_valid(rows)
        for error in errors:
            logger.warning(f"Validation warning for {symbol} {error}")
        result.validation_warnings = errors

        if rows and not valid_rows:
            raise PipelineError(f"{symbol}: all {len(rows)} fetched rows failed validation")

        result.rows_inserted, result.rows_updated = self.series.store(symbol, valid_rows, since=last_date)
        logger.info(
            f"{symbol}: {result.rows_fetched} quotes fetched since {since}, "
            f"{result.rows_inserted} new"
        )
        return result

    def refresh_info(self, symbol: str) -> Dict[str, Any]:
        """Fetch and store name and beta."""
        symbol = normalize_symbol(symbol)
        info = self._fetch_info(symbol)
        self.store.upsert_info(symbol, info.get('name'), info.get('beta'))
        return info

    def refresh_symbol(self, symbol: str) -> QuoteRefreshResult:
        """
        Refresh quotes, then instrument info.
        An info failure is logged and does not fail the symbol.
        """
        result = self.refresh_quotes(symbol)
        try:
            self.refresh_info(symbol)
        except YFinanceError as e:
            logger.warning(f"{result.symbol}: info not refreshed: {e}")
        return result

    def refresh_quant(self, symbol: str) -> RefreshResult:
        """Recompute every metric, single asset allocation included."""
        return self.engine.refresh(symbol)

    def refresh_all_quotes(
        self,
        symbols: Optional[List[str]] = None,
        rng: Optional[random.Random] = None
    ) -> BatchOutcome:
        """Refresh quotes and info for the universe; one run is recorded."""
        return self._run_batch('refresh_quotes', self.universe(symbols), self.refresh_symbol, rng)

    def refresh_all_metrics(
        self,
        symbols: Optional[List[str]] = None,
        rng: Optional[random.Random] = None
    ) -> BatchOutcome:
        """Recompute metrics for the universe; one run is recorded."""
        return self._run_batch('refresh_metrics', self.universe(symbols), self.refresh_quant, rng)

    def delete_symbol(self, symbol: str) -> int:
        """Remove stored quotes, metrics and info; the universe is untouched."""
        deleted = self.store.delete_symbol_data(symbol)
        self.series.clear()
        logger.info(f"Deleted {deleted} rows for {normalize_symbol(symbol)}")
        return deleted

    def check_downloaded_symbols(
        self,
        should_retry: ShouldRetry,
        symbols: Optional[List[str]] = None
    ) -> List[HistoryWarning]:
        """
        Find symbols with too little downloaded history.

        For each symbol below min_history_quotes day quotes,
        `should_retry(symbol, observed_count)` decides whether its data is
        deleted and downloaded again. Retries are bounded by
        max_check_attempts.

        Returns:
            HistoryWarning for every symbol still short of history
        """
        warnings = []

        for symbol in self.universe(symbols):
            count = self.store.count_quotes(symbol)
            attempts = 0

            while (count < self.config.min_history_quotes
                   and attempts < self.config.max_check_attempts
                   and should_retry(symbol, count)):
                attempts += 1
                logger.info(f"{symbol}: {count} quotes, downloading again (attempt {attempts})")
                self.delete_symbol(symbol)
                try:
                    self.refresh_symbol(symbol)
                except Exception as e:
                    logger.error(f"Download failed for {symbol}: {e}")
                    count = self.store.count_quotes(symbol)
                    break
                count = self.store.count_quotes(symbol)

            if count < self.config.min_history_quotes:
                logger.warning(f"{symbol}: only {count} quotes downloaded")
                warnings.append(HistoryWarning(symbol, count))

        return warnings

    def _run_batch(
        self,
        dag_name: str,
        symbols: List[str],
        work: Callable[[str], Any],
        rng: Optional[random.Random]
    ) -> BatchOutcome:
        run_id = self.store.start_run(dag_name)

        try:
            outcome = run_shuffled(symbols, work, self.config.max_workers, rng, label=dag_name)
        except Exception as e:
            self.store.finish_run(run_id, RunStatus.FAILED, len(symbols), len(symbols), str(e))
            raise PipelineError(f"{dag_name} failed: {e}") from e

        error_message = None
        if outcome.errors:
            error_message = '; '.join(
                f"{symbol}: {message}" for symbol, message in sorted(outcome.errors.items())[:5]
            )

        status = RunStatus.FAILED if outcome.total and outcome.failed == outcome.total else RunStatus.COMPLETED
        self.store.finish_run(run_id, status, outcome.total, outcome.failed, error_message)
        logger.info(f"{dag_name}: {outcome.total - outcome.failed}/{outcome.total} symbols refreshed")
        return outcome
