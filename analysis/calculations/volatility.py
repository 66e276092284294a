"""
Volatility calculation utilities.
Pure functions for annualized risk, downside risk and Sharpe ratio.
"""

import numpy as np
import math
from typing import Sequence


class VolatilityError(Exception):
    """Raised when volatility calculation fails."""
    pass


def _validated(returns: Sequence[float], minimum: int) -> np.ndarray:
    values = np.asarray(returns, dtype=float)

    if len(values) < minimum:
        raise VolatilityError(f"Insufficient data: need {minimum} returns, have {len(values)}")

    if np.any(np.isnan(values)):
        raise VolatilityError("NaN values not allowed in returns")

    if np.any(np.isinf(values)):
        raise VolatilityError("Infinite values not allowed in returns")

    return values


def annualized_risk(returns: Sequence[float], frequency: int = 12) -> float:
    """
    Annualized volatility of periodic returns.

    Formula: σ = std(returns, ddof=1) × √frequency

    Args:
        returns: Periodic simple returns
        frequency: Periods per year

    Returns:
        Annualized volatility as decimal (0.25 = 25%)

    Raises:
        VolatilityError: If fewer than 2 returns or invalid values
    """
    values = _validated(returns, minimum=2)
    return float(np.std(values, ddof=1)) * math.sqrt(frequency)


def downside_risk(returns: Sequence[float], mar: float = 0.0) -> float:
    """
    Downside deviation below a minimum acceptable return.

    Formula: √(mean(min(r - mar, 0)²))

    Raises:
        VolatilityError: If the window is empty or contains invalid values
    """
    values = _validated(returns, minimum=1)
    shortfall = np.minimum(values - mar, 0.0)
    return math.sqrt(float(np.mean(shortfall ** 2)))


def sharpe_ratio(
    returns: Sequence[float],
    risk_free: float = 0.0,
    frequency: int = 12
) -> float:
    """
    Annualized Sharpe ratio.

    Formula: (mean(r) - rf / frequency) / std(r) × √frequency
    where rf is an annual rate.

    Raises:
        VolatilityError: If fewer than 2 returns or zero volatility
    """
    values = _validated(returns, minimum=2)
    std_dev = float(np.std(values, ddof=1))

    if std_dev == 0:
        raise VolatilityError("Zero volatility: Sharpe ratio undefined")

    excess = float(np.mean(values)) - risk_free / frequency
    return excess / std_dev * math.sqrt(frequency)


def periodic_sharpe_ratio(returns: Sequence[float], risk_free: float = 0.0) -> float:
    """
    Non-annualized Sharpe ratio per period: (mean(r) - rf) / std(r).
    Input to the standalone allocation score.
    """
    values = _validated(returns, minimum=2)
    std_dev = float(np.std(values, ddof=1))

    if std_dev == 0:
        raise VolatilityError("Zero volatility: Sharpe ratio undefined")

    return (float(np.mean(values)) - risk_free) / std_dev
