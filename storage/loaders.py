"""
Database loaders - idempotent upsert functions for SQLite.
Thin IO layer for quotes, instrument info and the download universe.
"""

import sqlite3
from datetime import date
from typing import Dict, Any, List, Tuple, Optional

import pandas as pd


def init_database(conn: sqlite3.Connection) -> None:
    """
    Initialize database with required tables.
    Idempotent - safe to call multiple times.

    Args:
        conn: SQLite connection
    """
    conn.execute("PRAGMA foreign_keys = ON")

    # One row per (symbol, date); later writes overwrite
    conn.execute("""
        CREATE TABLE IF NOT EXISTS quotes (
            symbol TEXT NOT NULL,
            date DATE NOT NULL,
            open REAL,
            high REAL,
            low REAL,
            close REAL NOT NULL,
            volume INTEGER,
            PRIMARY KEY (symbol, date)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS metrics (
            symbol TEXT NOT NULL,
            kind TEXT NOT NULL,
            value REAL,
            updated_at DATETIME NOT NULL,
            PRIMARY KEY (symbol, kind)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS instrument_info (
            symbol TEXT PRIMARY KEY,
            name TEXT,
            beta REAL,
            updated_at DATETIME NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS universe (
            symbol TEXT PRIMARY KEY,
            added_at DATETIME NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS runs (
            run_id INTEGER PRIMARY KEY AUTOINCREMENT,
            dag_name TEXT NOT NULL,
            started_at DATETIME NOT NULL,
            finished_at DATETIME,
            status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
            symbols_total INTEGER,
            symbols_failed INTEGER,
            error_message TEXT
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_quotes_symbol ON quotes(symbol)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_metrics_kind ON metrics(kind)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status)")

    conn.commit()


def get_connection(db_path: str = './data/portfolio.db') -> sqlite3.Connection:
    """
    Get SQLite connection with proper configuration.

    The connection may be shared by refresh worker threads; callers
    serialise writes themselves (see storage.store.Store).

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured SQLite connection
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def upsert_quotes(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Upsert quote rows into database.
    Idempotent - can be called multiple times with same data.

    Args:
        conn: SQLite connection
        rows: List of canonical quote dictionaries

    Returns:
        Tuple of (inserted_count, updated_count)
    """
    if not rows:
        return (0, 0)

    inserted = 0
    updated = 0

    for row in rows:
        cursor = conn.execute(
            "SELECT COUNT(*) FROM quotes WHERE symbol = ? AND date = ?",
            (row['symbol'], _as_iso(row['date']))
        )
        exists = cursor.fetchone()[0] > 0

        if exists:
            conn.execute("""
                UPDATE quotes SET
                    open = ?, high = ?, low = ?, close = ?, volume = ?
                WHERE symbol = ? AND date = ?
            """, (
                row['open'], row['high'], row['low'], row['close'], row['volume'],
                row['symbol'], _as_iso(row['date'])
            ))
            updated += 1
        else:
            conn.execute("""
                INSERT INTO quotes (symbol, date, open, high, low, close, volume)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                row['symbol'], _as_iso(row['date']), row['open'], row['high'],
                row['low'], row['close'], row['volume']
            ))
            inserted += 1

    conn.commit()
    return (inserted, updated)


def query_quotes(conn: sqlite3.Connection, symbol: str) -> List[Dict[str, Any]]:
    """
    Query all stored quotes for a symbol in date order.

    Args:
        conn: SQLite connection
        symbol: Canonical symbol

    Returns:
        List of quote dictionaries with date objects
    """
    cursor = conn.execute("""
        SELECT symbol, date, open, high, low, close, volume
        FROM quotes
        WHERE symbol = ?
        ORDER BY date ASC
    """, (symbol,))

    return [
        {
            'symbol': row[0],
            'date': date.fromisoformat(row[1]),
            'open': row[2],
            'high': row[3],
            'low': row[4],
            'close': row[5],
            'volume': row[6],
        }
        for row in cursor.fetchall()
    ]


def query_quotes_frame(
    conn: sqlite3.Connection,
    symbol: str,
    start_date: Optional[date] = None
) -> pd.DataFrame:
    """
    Query stored quotes for a symbol as a DataFrame in date order.

    Args:
        conn: SQLite connection
        symbol: Canonical symbol
        start_date: Only quotes on or after this date (optional)

    Returns:
        DataFrame with columns date, open, high, low, close, volume
    """
    query = """
        SELECT date, open, high, low, close, volume
        FROM quotes
        WHERE symbol = ?
    """
    params = [symbol]

    if start_date is not None:
        query += " AND date >= ?"
        params.append(_as_iso(start_date))

    query += " ORDER BY date ASC"

    df = pd.read_sql_query(query, conn, params=params)

    if not df.empty:
        df['date'] = pd.to_datetime(df['date']).dt.date

    return df


def last_quote_date(conn: sqlite3.Connection, symbol: str) -> Optional[date]:
    """Most recent stored quote date for a symbol, or None."""
    cursor = conn.execute(
        "SELECT MAX(date) FROM quotes WHERE symbol = ?", (symbol,)
    )
    value = cursor.fetchone()[0]
    return date.fromisoformat(value) if value else None


def count_quotes(conn: sqlite3.Connection, symbol: str) -> int:
    cursor = conn.execute("SELECT COUNT(*) FROM quotes WHERE symbol = ?", (symbol,))
    return cursor.fetchone()[0]


def delete_symbol_data(conn: sqlite3.Connection, symbol: str) -> int:
    """
    Delete quotes, metrics and info stored for a symbol.
    The symbol stays in the download universe.

    Returns:
        Number of deleted rows across all tables
    """
    deleted = 0
    for table in ('quotes', 'metrics', 'instrument_info'):
        cursor = conn.execute(f"DELETE FROM {table} WHERE symbol = ?", (symbol,))
        deleted += cursor.rowcount
    conn.commit()
    return deleted


def upsert_info(
    conn: sqlite3.Connection,
    symbol: str,
    name: Optional[str],
    beta: Optional[float],
    updated_at
) -> None:
    """Insert or replace descriptive instrument data."""
    conn.execute("""
        INSERT INTO instrument_info (symbol, name, beta, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(symbol) DO UPDATE SET
            name = excluded.name,
            beta = excluded.beta,
            updated_at = excluded.updated_at
    """, (symbol, name, beta, updated_at))
    conn.commit()


def query_info(conn: sqlite3.Connection, symbol: str) -> Dict[str, Any]:
    """
    Query descriptive instrument data.

    Returns:
        Dictionary with 'name' and 'beta' (values None when unknown)
    """
    cursor = conn.execute(
        "SELECT name, beta FROM instrument_info WHERE symbol = ?", (symbol,)
    )
    row = cursor.fetchone()
    if row is None:
        return {'name': None, 'beta': None}
    return {'name': row[0], 'beta': row[1]}


def list_universe(conn: sqlite3.Connection) -> List[str]:
    cursor = conn.execute("SELECT symbol FROM universe ORDER BY symbol")
    return [row[0] for row in cursor.fetchall()]


def add_to_universe(conn: sqlite3.Connection, symbols: List[str], added_at) -> int:
    """
    Add symbols to the download universe.

    Returns:
        Number of symbols that were not present before
    """
    added = 0
    for symbol in symbols:
        cursor = conn.execute(
            "INSERT OR IGNORE INTO universe (symbol, added_at) VALUES (?, ?)",
            (symbol, added_at)
        )
        added += cursor.rowcount
    conn.commit()
    return added


def remove_from_universe(conn: sqlite3.Connection, symbols: List[str]) -> int:
    removed = 0
    for symbol in symbols:
        cursor = conn.execute("DELETE FROM universe WHERE symbol = ?", (symbol,))
        removed += cursor.rowcount
    conn.commit()
    return removed


def clear_universe(conn: sqlite3.Connection) -> None:
    conn.execute("DELETE FROM universe")
    conn.commit()


def _as_iso(value) -> str:
    """Dates are stored as ISO strings so ordering is lexical."""
    if isinstance(value, date):
        return value.isoformat()
    return str(value)
