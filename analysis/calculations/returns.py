"""
Returns calculation utilities.
Pure functions over trailing windows of periodic simple returns.
"""

import numpy as np
from enum import Enum
from typing import Sequence


class ReturnsError(Exception):
    """Raised when returns calculation fails."""
    pass


class ReturnMode(str, Enum):
    """Compounding convention for annualized return."""
    GEOMETRIC = 'geometric'
    ARITHMETIC = 'arithmetic'


def tick_to_returns(prices: Sequence[float]) -> np.ndarray:
    """
    Convert a price series to one-period simple returns.

    Formula: r_t = (P_t / P_{t-1}) - 1

    Args:
        prices: Prices in chronological order

    Returns:
        Numpy array of returns (length = len(prices) - 1)

    Raises:
        ReturnsError: If insufficient data or invalid prices
    """
    if len(prices) < 2:
        raise ReturnsError("Insufficient data: need at least 2 prices")

    prices_array = np.asarray(prices, dtype=float)

    if np.any(prices_array <= 0):
        raise ReturnsError("Zero or negative prices not allowed")

    return prices_array[1:] / prices_array[:-1] - 1


def _window(returns: Sequence[float], minimum: int = 1) -> np.ndarray:
    values = np.asarray(returns, dtype=float)
    if len(values) < minimum:
        raise ReturnsError(f"Insufficient data: need {minimum} returns, have {len(values)}")
    if np.any(~np.isfinite(values)):
        raise ReturnsError("NaN or infinite values not allowed in returns")
    return values


def annualized_return(
    returns: Sequence[float],
    frequency: int = 12,
    mode: ReturnMode = ReturnMode.GEOMETRIC
) -> float:
    """
    Annualize a window of periodic returns.

    Geometric: prod(1 + r) ** (frequency / n) - 1
    Arithmetic: mean(r) * frequency

    Args:
        returns: Periodic simple returns
        frequency: Periods per year (12 for monthly)
        mode: Compounding convention

    Returns:
        Annualized return as decimal (0.19 = 19%)

    Raises:
        ReturnsError: If the window is empty or contains invalid values
    """
    values = _window(returns)
    mode = ReturnMode(mode)

    if mode is ReturnMode.GEOMETRIC:
        growth = float(np.prod(1 + values))
        return growth ** (frequency / len(values)) - 1

    return float(np.mean(values)) * frequency


def rate_of_return(returns: Sequence[float]) -> float:
    """
    Growth between the first and the last compounded point of the window.

    The compounded path starts after the first return, so the first period
    itself is not part of the result: prod(1 + r[1:]) - 1.

    Raises:
        ReturnsError: If fewer than 2 returns are given
    """
    values = _window(returns, minimum=2)
    path = np.cumprod(1 + values)
    return float(path[-1] / path[0] - 1)


def cagr(returns: Sequence[float], periods_per_year: int = 12) -> float:
    """
    Compound annual growth rate of the window.

    Formula: (1 + ror) ** (periods_per_year / n) - 1

    Args:
        returns: Periodic simple returns
        periods_per_year: Number of periods in one year

    Raises:
        ReturnsError: If fewer than 2 returns are given
    """
    values = _window(returns, minimum=2)
    ror = rate_of_return(values)
    return (1 + ror) ** (periods_per_year / len(values)) - 1
