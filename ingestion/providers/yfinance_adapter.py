"""
yfinance adapter - fetch quote history and instrument info from Yahoo Finance.
Network IO allowed here, but minimal business logic.
"""

import logging
import re
from datetime import date, timedelta
from typing import Dict, Any, List, Optional

import pandas as pd
import yfinance as yf

from ingestion.transforms.normalizers import normalize_info, normalize_quotes
from utils.symbols import normalize_symbol, provider_ticker

logger = logging.getLogger(__name__)

PRICE_FIELDS = ('Open', 'High', 'Low', 'Close', 'Volume')
MAX_TICKER_LENGTH = 12
TICKER_PATTERN = re.compile(r"^[A-Z0-9.\-^=]+$")


class YFinanceError(Exception):
    """Raised when yfinance operations fail."""
    pass


def fetch_raw_history(ticker: str, start: date, end: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Fetch daily price rows for a provider ticker.
    Returns raw data in provider format - no normalization.

    Args:
        ticker: Provider ticker (e.g., 'BRK-B')
        start: Start date (inclusive)
        end: End date (inclusive, defaults to today)

    Returns:
        List of raw price dictionaries in yfinance format

    Raises:
        YFinanceError: If the fetch fails
    """
    end = end or date.today()
    _validate_ticker(ticker)
    if start > end:
        return []

    try:
        # yfinance end dates are exclusive
        data = yf.download(
            ticker,
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),
            progress=False,
        )
    except Exception as e:
        raise YFinanceError(f"Failed to fetch prices for {ticker}: {e}") from e

    if data is None or data.empty:
        return []

    return _frame_to_rows(data)


def fetch_history(symbol: str, since: date, end: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Fetch canonical quotes for a symbol from `since` (inclusive) onward.

    Returns:
        Quote dictionaries {symbol, date, open, high, low, close, volume}
    """
    symbol = normalize_symbol(symbol)
    raw_rows = fetch_raw_history(provider_ticker(symbol), since, end)
    logger.debug(f"Fetched {len(raw_rows)} raw rows for {symbol} since {since}")
    return normalize_quotes(raw_rows, symbol=symbol)


def fetch_info(symbol: str) -> Dict[str, Any]:
    """
    Fetch descriptive data for a symbol.

    Returns:
        Dictionary with 'name' and 'beta' (None when the provider has none)

    Raises:
        YFinanceError: If the lookup fails
    """
    ticker = provider_ticker(symbol)
    _validate_ticker(ticker)
    try:
        raw_info = yf.Ticker(ticker).info
    except Exception as e:
        raise YFinanceError(f"Failed to fetch info for {ticker}: {e}") from e
    return normalize_info(raw_info)

def _frame_to_rows(data: pd.DataFrame) -> List[Dict[str, Any]]:
    """Turn a yfinance history frame into provider-format dictionaries."""
    if isinstance(data.columns, pd.MultiIndex):
        data.columns = data.columns.get_level_values(0)

    columns = [name for name in PRICE_FIELDS if name in data.columns]
    rows = []
    for stamp, values in data[columns].iterrows():
        row = {'Date': stamp.strftime('%Y-%m-%d')}
        row.update({
            name: int(values[name]) if name == 'Volume' else float(values[name])
            for name in columns if pd.notna(values[name])
        })
        rows.append(row)
    return rows


def _validate_ticker(ticker: str) -> None:
    """
    Reject tickers yfinance could not resolve.

    Raises:
        YFinanceError: If ticker is invalid
    """
    if not ticker or not isinstance(ticker, str):
        raise YFinanceError("Ticker must be non-empty string")
    if len(ticker) > MAX_TICKER_LENGTH:
        raise YFinanceError(f"Ticker too long (max {MAX_TICKER_LENGTH} characters)")
    if not TICKER_PATTERN.match(ticker.upper()):
        raise YFinanceError(f"Ticker contains invalid characters: {ticker}")
