"""
REDP allocation math.
Pure functions for the standalone allocation score of one asset and the
risk-budgeted weights of a set of assets, both driven by the rolling
economic drawdown of each price series.
"""

import numpy as np
from typing import List, Sequence

from analysis.calculations.drawdown import rolling_economic_drawdown
from analysis.calculations.returns import tick_to_returns
from analysis.calculations.volatility import periodic_sharpe_ratio


class AllocationError(Exception):
    """Raised when an allocation problem is degenerate or unsolvable."""
    pass


def _risk_budget(risk: float, redp: float) -> float:
    """y = (1 / (1 - risk²)) × ((risk - redp) / (1 - redp))"""
    if redp >= 1.0:
        raise AllocationError("REDP of 1.0 leaves no risk budget")
    return (1.0 / (1.0 - risk * risk)) * ((risk - redp) / (1.0 - redp))


def _validate_risk(risk: float) -> None:
    if not 0.0 < risk < 1.0:
        raise AllocationError(f"Risk tolerance must be in (0, 1), got {risk}")


def single_allocation_score(
    closes: Sequence[float],
    risk: float = 0.3,
    risk_free: float = 0.0,
    window: int = 12
) -> float:
    """
    Unclamped standalone REDP allocation for one asset.

    Formula: (sr / σ + 0.5 / (1 - risk²)) × risk - redp / (1 - redp)
    with sr the per-period Sharpe ratio and σ the per-period volatility.

    Args:
        closes: Close prices in chronological order (at least window closes)
        risk: Risk tolerance (maximum acceptable drawdown)
        risk_free: Per-period risk free return
        window: Trailing window for REDP

    Raises:
        AllocationError: If the score cannot be computed
    """
    _validate_risk(risk)
    returns = tick_to_returns(closes)
    sigma = float(np.std(returns, ddof=1))
    if sigma == 0:
        raise AllocationError("Zero volatility: allocation undefined")

    sr = periodic_sharpe_ratio(returns, risk_free)
    redp = rolling_economic_drawdown(closes, window)
    if redp >= 1.0:
        raise AllocationError("REDP of 1.0 leaves no risk budget")

    return (sr / sigma + 0.5 / (1.0 - risk * risk)) * risk - redp / (1.0 - redp)


def single_allocation(
    closes: Sequence[float],
    risk: float = 0.3,
    risk_free: float = 0.0,
    window: int = 12
) -> float:
    """Standalone allocation clamped to [0, 1]; 1.0 means fully investable alone."""
    score = single_allocation_score(closes, risk, risk_free, window)
    return min(1.0, max(0.0, score))

def _inverse_covariance(returns: np.ndarray) -> np.ndarray:
    """
    Inverse of the sample covariance of per-asset returns (one row per asset).

    A matrix that is singular although there are enough observations to
    estimate it is rejected. With more assets than observations the matrix
    is singular by shape alone, and the Moore-Penrose pseudo-inverse is used.
    """
    n_assets, n_obs = returns.shape
    covariance = np.atleast_2d(np.cov(returns, ddof=1))
    if not np.all(np.isfinite(covariance)) or np.allclose(covariance, 0.0):
        raise AllocationError("Degenerate covariance matrix")

    if n_assets > n_obs - 1:
        return np.linalg.pinv(covariance)

    if np.linalg.matrix_rank(covariance) < n_assets:
        raise AllocationError("Covariance matrix is not invertible")
    try:
        return np.linalg.inv(covariance)
    except np.linalg.LinAlgError as e:
        raise AllocationError(f"Covariance matrix is not invertible: {e}") from e


def multiple_allocation(
    closes_by_asset: List[Sequence[float]],
    risk: float = 0.3,
    risk_free: float = 0.0,
    window: int = 12
) -> np.ndarray:
    """
    Risk-budgeted long-only weights for a set of assets.

    Per asset i with returns r_i:
        σ_i = std(r_i), μ_i = max(mean(r_i) - risk_free + σ_i² / 2, 0)
        y_i = risk budget from REDP of the asset's closes
    Weights: x = (Σ⁻¹ μ)ᵀ Σ⁻¹ diag(y), floored at zero and divided by Σ|x|.

    Args:
        closes_by_asset: One close series per asset, all the same length
        risk: Risk tolerance
        risk_free: Per-period risk free return
        window: Trailing window for REDP, capped at the series length

    Returns:
        Array of weights aligned with the input, summing to 1.0

    Raises:
        AllocationError: If the set is empty, series lengths differ, the
            covariance matrix cannot be inverted, or no asset receives a
            positive weight
    """
    _validate_risk(risk)

    if not closes_by_asset:
        raise AllocationError("No assets to allocate")

    lengths = {len(closes) for closes in closes_by_asset}
    if len(lengths) != 1:
        raise AllocationError(f"Close series must share one length, got {sorted(lengths)}")

    if lengths.pop() < 3:
        raise AllocationError("Need at least 3 closes per asset")

    returns = np.vstack([tick_to_returns(closes) for closes in closes_by_asset])
    redp_window = min(window, returns.shape[1] + 1)

    sigma = returns.std(axis=1, ddof=1)
    drift = np.maximum(returns.mean(axis=1) - risk_free + sigma ** 2 / 2, 0.0)
    budgets = np.array([
        _risk_budget(risk, rolling_economic_drawdown(closes, redp_window))
        for closes in closes_by_asset
    ])

    sigma_inv = _inverse_covariance(returns)
    raw = (sigma_inv @ drift) @ sigma_inv @ np.diag(budgets)
    weights = np.maximum(raw, 0.0)
    total = np.abs(weights).sum()

    if not np.isfinite(total) or total <= 0:
        raise AllocationError("No asset receives a positive allocation")

    return weights / total
