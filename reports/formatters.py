"""
Display formatters for portfolio report rows.
Deterministic string formatting; absent values render as empty cells.
"""

from typing import Any, Optional


class FormatterError(Exception):
    """Raised when formatter input validation fails."""
    pass


def format_decimal(value: Optional[float], decimal_places: int = 2) -> str:
    """
    Format a number with fixed precision.

    Args:
        value: Number or None
        decimal_places: Number of decimal places (default: 2)

    Returns:
        Formatted string (e.g., "0.19"), or "" when value is None
    """
    if value is None:
        return ""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormatterError(f"Decimal value must be numeric, got {type(value)}")

    return f"{value:.{decimal_places}f}"


def format_money(value: Optional[float]) -> str:
    """Format a capital amount with thousands separators (e.g., "$72,981.50")."""
    if value is None:
        return ""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FormatterError(f"Money value must be numeric, got {type(value)}")

    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_cell(value: Any) -> str:
    """Render any report value: numbers to 2 decimals, None to "", text as is."""
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format_decimal(float(value))
    return str(value)
