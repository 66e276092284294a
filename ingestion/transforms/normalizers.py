"""
Normalizers for transforming provider data to canonical shape.
Pure functions - no IO, network, or side effects.
"""

import math
from datetime import date, datetime
from typing import Dict, Any, List, Optional


class NormalizationError(Exception):
    """Raised when a provider row cannot be mapped to a quote."""
    pass


def normalize_quotes(raw_rows: List[Dict[str, Any]], *, symbol: str) -> List[Dict[str, Any]]:
    """
    Transform provider-native price rows to canonical quotes.

    - Date strings and timestamps to date objects
    - Provider field names ("Open", "Close", ...) to quote fields
    - Deduplication by date (keep last to handle corrections)

    Args:
        raw_rows: Provider-specific price dictionaries
        symbol: Canonical symbol the rows belong to

    Returns:
        Quote dictionaries in date order

    Raises:
        NormalizationError: If a row has no usable date or close
    """
    if not raw_rows:
        return []

    by_date: Dict[date, Dict[str, Any]] = {}

    for raw in raw_rows:
        row_date = _parse_date(raw.get('Date', raw.get('date')))
        close = _as_float(raw.get('Close', raw.get('close')))
        if close is None:
            raise NormalizationError(f"{symbol}: row dated {row_date} has no close")

        by_date[row_date] = {
            'symbol': symbol,
            'date': row_date,
            'open': _as_float(raw.get('Open', raw.get('open'))),
            'high': _as_float(raw.get('High', raw.get('high'))),
            'low': _as_float(raw.get('Low', raw.get('low'))),
            'close': close,
            'volume': _as_int(raw.get('Volume', raw.get('volume'))),
        }

    return [by_date[key] for key in sorted(by_date)]


def normalize_info(raw_info: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Pick descriptive fields out of a provider info payload.

    Returns:
        Dictionary with 'name' (long name, falling back to short name) and 'beta'
    """
    raw_info = raw_info or {}
    name = raw_info.get('longName') or raw_info.get('shortName')
    return {'name': name, 'beta': _as_float(raw_info.get('beta'))}


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise NormalizationError(f"Unparseable quote date: {value!r}")


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_int(value: Any) -> Optional[int]:
    number = _as_float(value)
    return int(number) if number is not None else None
