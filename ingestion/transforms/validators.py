"""
Sanity checks for normalized quote rows before they are stored.
Pure functions - no IO.
"""

import math
from datetime import date
from typing import Dict, Any, List, Optional, Tuple


class ValidationError(ValueError):
    """Raised when a quote row is rejected."""
    pass


QUOTE_KEYS = frozenset({'symbol', 'date', 'open', 'high', 'low', 'close', 'volume'})
PRICE_FIELDS = ('open', 'high', 'low', 'close')


def _check_price(name: str, value: Optional[float]) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{name} is not a number: {value!r}")
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be finite, got {value}")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


def validate_quote_row(row: Dict[str, Any]) -> None:
    """
    Validate a canonical quote row.

    The close is the only mandatory price. Open, high, low and volume may
    be None when the provider omits them.

    Raises:
        ValidationError: If the row cannot be stored
    """
    missing = QUOTE_KEYS.difference(row)
    if missing:
        raise ValidationError(f"Missing required keys: {sorted(missing)}")

    if not row['symbol'] or not isinstance(row['symbol'], str):
        raise ValidationError(f"symbol must be a non-empty string, got {row['symbol']!r}")
    if not isinstance(row['date'], date):
        raise ValidationError(f"date must be date, got {type(row['date']).__name__}")
    if row['close'] is None:
        raise ValidationError("close is required")

    for name in PRICE_FIELDS:
        _check_price(name, row[name])

    if row['high'] is not None and row['low'] is not None and row['high'] < row['low']:
        raise ValidationError(f"high {row['high']} is below low {row['low']}")

    volume = row['volume']
    if volume is not None and (isinstance(volume, bool) or not isinstance(volume, int)):
        raise ValidationError(f"volume is not an integer: {volume!r}")
    if volume is not None and volume < 0:
        raise ValidationError(f"volume must be non-negative, got {volume}")


def partition_valid(rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Split rows into storable ones and "date: reason" messages for the rest.
    """
    valid, errors = [], []
    for row in rows:
        try:
            validate_quote_row(row)
        except ValidationError as e:
            errors.append(f"{row.get('date')}: {e}")
        else:
            valid.append(row)
    return valid, errors
