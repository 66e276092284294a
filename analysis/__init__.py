"""
Analysis Engine Module

Calculates risk/return metrics from stored quote history:
- Returns (geometric/arithmetic annualized, rate of return, CAGR)
- Risk (annualized, downside) and Sharpe/Calmar ratios
- Continuous drawdowns and rolling economic drawdown (REDP)
- REDP single and multiple asset allocation
"""

__version__ = "0.1.0"
