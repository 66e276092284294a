"""
Metric storage - typed (symbol, kind) records with overwrite semantics.
No history of past metric values is retained.
"""

import sqlite3
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class MetricCategory(str, Enum):
    """Grouping of metric kinds for category lookups."""
    RETURN = 'return'
    RISK = 'risk'
    DRAWDOWN = 'drawdown'
    RATIO = 'ratio'
    ALLOCATION = 'allocation'


class MetricKind(str, Enum):
    """Closed enumeration of stored per-symbol metrics."""
    ANNUALIZED_RETURN = 'annualized_return'
    ANNUALIZED_RISK = 'annualized_risk'
    DOWNSIDE_RISK = 'downside_risk'
    SHARPE = 'sharpe'
    CALMAR = 'calmar'
    AVERAGE_DRAWDOWN = 'average_drawdown'
    MAXIMUM_DRAWDOWN = 'maximum_drawdown'
    RATE_OF_RETURN = 'rate_of_return'
    CAGR = 'cagr'
    REDP = 'redp'
    SINGLE_ASSET_ALLOCATION = 'single_asset_allocation'

    @property
    def category(self) -> MetricCategory:
        return _CATEGORIES[self]


_CATEGORIES = {
    MetricKind.ANNUALIZED_RETURN: MetricCategory.RETURN,
    MetricKind.RATE_OF_RETURN: MetricCategory.RETURN,
    MetricKind.CAGR: MetricCategory.RETURN,
    MetricKind.ANNUALIZED_RISK: MetricCategory.RISK,
    MetricKind.DOWNSIDE_RISK: MetricCategory.RISK,
    MetricKind.AVERAGE_DRAWDOWN: MetricCategory.DRAWDOWN,
    MetricKind.MAXIMUM_DRAWDOWN: MetricCategory.DRAWDOWN,
    MetricKind.REDP: MetricCategory.DRAWDOWN,
    MetricKind.SHARPE: MetricCategory.RATIO,
    MetricKind.CALMAR: MetricCategory.RATIO,
    MetricKind.SINGLE_ASSET_ALLOCATION: MetricCategory.ALLOCATION,
}


class MetricStoreError(Exception):
    """Raised when a metric record cannot be written."""
    pass


def upsert_metric(
    conn: sqlite3.Connection,
    symbol: str,
    kind: MetricKind,
    value: Optional[float],
    updated_at: Optional[datetime] = None
) -> None:
    """
    Write a metric value, replacing any previous value for (symbol, kind).

    Args:
        conn: SQLite connection
        symbol: Canonical symbol
        kind: Metric kind
        value: Metric value, None to record an absent value
        updated_at: Write timestamp (defaults to now)

    Raises:
        MetricStoreError: If kind is not a MetricKind
    """
    if not isinstance(kind, MetricKind):
        raise MetricStoreError(f"Unknown metric kind: {kind!r}")

    if updated_at is None:
        updated_at = datetime.now()

    conn.execute("""
        INSERT INTO metrics (symbol, kind, value, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(symbol, kind) DO UPDATE SET
            value = excluded.value,
            updated_at = excluded.updated_at
    """, (symbol, kind.value, None if value is None else float(value), updated_at))
    conn.commit()


def get_one(conn: sqlite3.Connection, symbol: str, kind: MetricKind) -> Optional[float]:
    """Single metric value, or None when absent."""
    cursor = conn.execute(
        "SELECT value FROM metrics WHERE symbol = ? AND kind = ?",
        (symbol, kind.value)
    )
    row = cursor.fetchone()
    return row[0] if row is not None else None


def get_all(conn: sqlite3.Connection, symbol: str) -> Dict[MetricKind, Optional[float]]:
    """All stored metrics for a symbol, keyed by kind."""
    cursor = conn.execute(
        "SELECT kind, value FROM metrics WHERE symbol = ?", (symbol,)
    )
    return {MetricKind(kind): value for kind, value in cursor.fetchall()}


def get_by_category(
    conn: sqlite3.Connection,
    symbol: str,
    category: MetricCategory
) -> Dict[MetricKind, Optional[float]]:
    """Stored metrics for a symbol restricted to one category."""
    return {
        kind: value
        for kind, value in get_all(conn, symbol).items()
        if kind.category is category
    }


def symbols_with_metrics(conn: sqlite3.Connection) -> list:
    """Every symbol that has at least one stored metric."""
    cursor = conn.execute("SELECT DISTINCT symbol FROM metrics ORDER BY symbol")
    return [row[0] for row in cursor.fetchall()]
