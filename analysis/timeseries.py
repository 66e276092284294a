"""
Time series cache - stores quote history and serves resampled views of it.

Resampled query results are memoized with a time-to-live. A cached result
is served until it expires even when new quotes were stored in between;
invalidation is time-based only.
"""

import logging
import threading
import time
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from analysis.calculations.returns import tick_to_returns
from storage.store import Store
from utils.symbols import normalize_symbol

logger = logging.getLogger(__name__)

QUOTE_FIELDS = ('date', 'open', 'high', 'low', 'close', 'volume')
DEFAULT_TTL_SECONDS = 300.0


class TimeSeriesError(Exception):
    """Raised when a time series query is invalid."""
    pass


class Granularity(str, Enum):
    """Sampling granularity of a quote series."""
    DAY = 'day'
    MONTH = 'month'
    YEAR = 'year'


class TTLCache:
    """Thread-safe memo whose entries expire after a fixed number of seconds."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Tuple):
        """Return (hit, value)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return False, None
            return True, value

    def put(self, key: Tuple, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def resample_quotes(quotes: List[Dict[str, Any]], granularity: Granularity) -> List[Dict[str, Any]]:
    """
    Resample day quotes to a coarser granularity.

    DAY is an identity pass-through in date order. MONTH and YEAR keep the
    last quote by date inside each (year, month) or (year) bucket, with
    buckets in chronological order.

    Args:
        quotes: Quote dictionaries, any order
        granularity: Target granularity

    Returns:
        List of quote dictionaries in chronological order
    """
    granularity = Granularity(granularity)

    if not quotes:
        return []

    frame = pd.DataFrame(quotes)
    frame['date'] = pd.to_datetime(frame['date'])
    frame = frame.sort_values('date', kind='mergesort')

    if granularity is Granularity.DAY:
        sampled = frame
    else:
        keys = [frame['date'].dt.year]
        if granularity is Granularity.MONTH:
            keys.append(frame['date'].dt.month)
        sampled = frame.groupby(keys, sort=True).tail(1).sort_values('date', kind='mergesort')

    sampled = sampled.assign(date=sampled['date'].dt.date)
    return sampled.to_dict('records')


class TimeSeriesCache:
    """
    Quote history access for one store, with memoized resampled views.

    Args:
        store: Injected store handle
        ttl_seconds: Freshness window of memoized query results
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        store: Store,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self._store = store
        self._cache = TTLCache(ttl_seconds, clock)

    def store(
        self,
        symbol: str,
        quotes: Sequence[Dict[str, Any]],
        since: Optional[date] = None
    ) -> Tuple[int, int]:
        """
        Idempotently append quotes for a symbol.

        The batch is deduplicated by date (last occurrence wins), and a
        quote dated exactly at the `since` boundary is skipped because it
        is already stored. Remaining quotes overwrite stored ones per date.

        Returns:
            Tuple of (inserted_count, updated_count)
        """
        symbol = normalize_symbol(symbol)
        by_date: Dict[date, Dict[str, Any]] = {}

        for quote in quotes:
            if since is not None and quote['date'] == since:
                continue
            by_date[quote['date']] = {field: quote[field] for field in QUOTE_FIELDS}

        if not by_date:
            return (0, 0)

        rows = [by_date[key] for key in sorted(by_date)]
        inserted, updated = self._store.upsert_quotes(symbol, rows)
        logger.debug(f"Stored {symbol} quotes: {inserted} inserted, {updated} updated")
        return inserted, updated

    def query(
        self,
        symbol: str,
        granularity: Granularity = Granularity.DAY,
        field: Optional[str] = None,
        last_n: Optional[int] = None
    ) -> List[Any]:
        """
        Ordered quote history at the given granularity.

        Args:
            symbol: Instrument symbol (normalized here)
            granularity: DAY, MONTH or YEAR
            field: Project a single column ('close', 'date', ...)
            last_n: Keep only the final N elements

        Returns:
            Quote dictionaries, or plain values when `field` is given

        Raises:
            TimeSeriesError: For an unknown field or non-positive last_n
        """
        symbol = normalize_symbol(symbol)
        granularity = Granularity(granularity)

        if field is not None and field not in QUOTE_FIELDS:
            raise TimeSeriesError(f"Unknown quote field: {field}")

        if last_n is not None and last_n <= 0:
            raise TimeSeriesError("last_n must be positive")

        key = (symbol, granularity, field, last_n)
        hit, value = self._cache.get(key)
        if hit:
            logger.debug(f"Quote cache hit for {key}")
            return list(value)

        series = resample_quotes(self._store.query_quotes(symbol), granularity)
        if field is not None:
            series = [quote[field] for quote in series]
        if last_n is not None:
            series = series[-last_n:]

        self._cache.put(key, tuple(series))
        return list(series)

    def returns(
        self,
        symbol: str,
        granularity: Granularity = Granularity.MONTH,
        last_n: Optional[int] = None
    ) -> List[float]:
        """
        Simple returns of the close series.

        Args:
            last_n: Number of trailing closes to use (gives last_n - 1 returns)

        Returns:
            Returns in chronological order; empty when fewer than 2 closes
        """
        closes = self.query(symbol, granularity, 'close', last_n)
        if len(closes) < 2:
            return []
        return tick_to_returns(closes).tolist()

    def last_close(self, symbol: str) -> Optional[float]:
        """Most recent stored close, or None without history."""
        closes = self.query(symbol, Granularity.DAY, 'close', 1)
        return closes[-1] if closes else None

    def clear(self) -> None:
        """Drop every memoized result."""
        self._cache.clear()
