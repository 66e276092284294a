"""
Drawdown calculation utilities.
Pure functions for drawdowns built from losing runs of periodic returns,
the Calmar ratio, and the rolling economic drawdown of a price series.
"""

import numpy as np
from typing import List, Sequence


class DrawdownError(Exception):
    """Raised when drawdown calculation fails."""
    pass


def continuous_drawdowns(returns: Sequence[float]) -> List[float]:
    """
    Drawdown of every run of consecutive negative returns.

    Each run contributes 1 - prod(1 + r) over its returns. A zero return
    neither extends nor closes a run. A run still open at the end of the
    window is included.

    Args:
        returns: Periodic simple returns in chronological order

    Returns:
        List of positive drawdown magnitudes, oldest first

    Example:
        [0.003, 0.026, 0.015, -0.009, 0.014, ..., -0.014, 0.039]
        -> [0.009, 0.014]
    """
    if len(returns) == 0:
        raise DrawdownError("Insufficient data: need at least 1 return")

    drawdowns = []
    level = 1.0

    for ret in returns:
        if ret < 0:
            level *= 1 + ret
        elif ret > 0:
            if level < 1.0:
                drawdowns.append(1.0 - level)
            level = 1.0

    if level < 1.0:
        drawdowns.append(1.0 - level)

    return drawdowns


def maximum_drawdown(returns: Sequence[float]) -> float:
    """
    Worst single drawdown in the window, as a positive magnitude.
    Returns 0.0 when the window has no losing run.
    """
    drawdowns = continuous_drawdowns(returns)
    return max(drawdowns) if drawdowns else 0.0


def average_drawdown(returns: Sequence[float]) -> float:
    """
    Mean drawdown over the losing runs of the window.
    Returns 0.0 when the window has no losing run.
    """
    drawdowns = continuous_drawdowns(returns)
    return float(np.mean(drawdowns)) if drawdowns else 0.0


def calmar_ratio(annual_return: float, max_drawdown: float) -> float:
    """
    Calmar ratio: annualized return over the magnitude of maximum drawdown.

    Raises:
        DrawdownError: If maximum drawdown is zero
    """
    if max_drawdown == 0:
        raise DrawdownError("Zero maximum drawdown: Calmar ratio undefined")
    return annual_return / abs(max_drawdown)


def rolling_economic_drawdown(closes: Sequence[float], window: int = 12) -> float:
    """
    Rolling economic drawdown (REDP) of the most recent window.

    Formula: 1 - P_t / max(P_{t-window+1..t})

    Args:
        closes: Close prices in chronological order
        window: Number of trailing closes considered

    Returns:
        Drawdown of the last close from the window peak (0.0 at a new high)

    Raises:
        DrawdownError: If fewer than `window` closes or invalid prices
    """
    if window <= 0:
        raise DrawdownError("Window must be positive")

    if len(closes) < window:
        raise DrawdownError(f"Insufficient data: need {window} prices, have {len(closes)}")

    recent = np.asarray(closes[-window:], dtype=float)

    if np.any(recent <= 0) or np.any(~np.isfinite(recent)):
        raise DrawdownError("Zero, negative or non-finite prices not allowed")

    return float(1.0 - recent[-1] / recent.max())
