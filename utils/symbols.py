"""
Symbol normalization shared by every layer.
Canonical form is lowercase and dash-separated ("BRK.B" -> "brk-b").
"""

import re
from typing import Iterable, List

_SEPARATORS = re.compile(r'[^a-z0-9]+')


class SymbolError(ValueError):
    """Raised when a symbol normalizes to nothing."""
    pass


def normalize_symbol(symbol: str) -> str:
    """
    Canonicalize an instrument identifier.

    Args:
        symbol: Raw identifier in any case, with any separators

    Returns:
        Lowercase identifier with words joined by single dashes

    Raises:
        SymbolError: If no alphanumeric characters remain
    """
    if not isinstance(symbol, str):
        raise SymbolError(f"Symbol must be a string, got {type(symbol)}")

    canonical = _SEPARATORS.sub('-', symbol.strip().lower()).strip('-')
    if not canonical:
        raise SymbolError(f"Invalid symbol: {symbol!r}")
    return canonical


def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    """Normalize and deduplicate, keeping first-seen order."""
    seen = {}
    for symbol in symbols:
        seen.setdefault(normalize_symbol(symbol), None)
    return list(seen)


def split_symbols(text: str) -> List[str]:
    """Split a comma/whitespace separated list as typed on a command line."""
    return normalize_symbols(part for part in re.split(r'[,\s]+', text) if part)


def provider_ticker(symbol: str) -> str:
    """Ticker spelling expected by Yahoo Finance ("brk-b" -> "BRK-B")."""
    return normalize_symbol(symbol).upper()
