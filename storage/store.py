"""
Store handle - the single persistence object passed into every component.
Owned and closed by the top-level process; all access is serialised.
"""

import logging
import sqlite3
import threading
from datetime import date, datetime
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd

from storage import loaders
from storage import metrics_store
from storage import run_registry
from storage.metrics_store import MetricCategory, MetricKind
from storage.run_registry import RunStatus
from utils.symbols import normalize_symbol, normalize_symbols

logger = logging.getLogger(__name__)


class Store:
    """
    Thread-safe facade over the SQLite loaders.

    Every call runs under one lock so that each write transaction is
    serialised against concurrent refresh workers.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._lock = threading.RLock()
        with self._lock:
            loaders.init_database(self._conn)

    @classmethod
    def open(cls, db_path: str) -> 'Store':
        logger.info(f"Opening store at {db_path}")
        return cls(loaders.get_connection(db_path))

    @classmethod
    def in_memory(cls) -> 'Store':
        return cls(sqlite3.connect(':memory:', check_same_thread=False))

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> 'Store':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Quotes

    def query_quotes(self, symbol: str) -> List[Dict[str, Any]]:
        with self._lock:
            return loaders.query_quotes(self._conn, normalize_symbol(symbol))

    def quotes_frame(self, symbol: str, start_date: Optional[date] = None) -> pd.DataFrame:
        with self._lock:
            return loaders.query_quotes_frame(self._conn, normalize_symbol(symbol), start_date)

    def upsert_quotes(self, symbol: str, quotes: List[Dict[str, Any]]) -> Tuple[int, int]:
        rows = [dict(quote, symbol=normalize_symbol(symbol)) for quote in quotes]
        with self._lock:
            return loaders.upsert_quotes(self._conn, rows)

    def last_quote_date(self, symbol: str) -> Optional[date]:
        with self._lock:
            return loaders.last_quote_date(self._conn, normalize_symbol(symbol))

    def count_quotes(self, symbol: str) -> int:
        with self._lock:
            return loaders.count_quotes(self._conn, normalize_symbol(symbol))

    def delete_symbol_data(self, symbol: str) -> int:
        with self._lock:
            return loaders.delete_symbol_data(self._conn, normalize_symbol(symbol))

    # Metrics

    def query_metric(self, symbol: str, kind: MetricKind) -> Optional[float]:
        return self.get_one(symbol, kind)

    def upsert_metric(self, symbol: str, kind: MetricKind, value: Optional[float]) -> None:
        with self._lock:
            metrics_store.upsert_metric(self._conn, normalize_symbol(symbol), kind, value)

    def get_one(self, symbol: str, kind: MetricKind) -> Optional[float]:
        with self._lock:
            return metrics_store.get_one(self._conn, normalize_symbol(symbol), kind)

    def get_all(self, symbol: str) -> Dict[MetricKind, Optional[float]]:
        with self._lock:
            return metrics_store.get_all(self._conn, normalize_symbol(symbol))

    def get_by_category(self, symbol: str, category: MetricCategory) -> Dict[MetricKind, Optional[float]]:
        with self._lock:
            return metrics_store.get_by_category(self._conn, normalize_symbol(symbol), category)

    def symbols_with_metrics(self) -> List[str]:
        with self._lock:
            return metrics_store.symbols_with_metrics(self._conn)

    # Instrument info

    def upsert_info(self, symbol: str, name: Optional[str], beta: Optional[float]) -> None:
        with self._lock:
            loaders.upsert_info(self._conn, normalize_symbol(symbol), name, beta, datetime.now())

    def query_info(self, symbol: str) -> Dict[str, Any]:
        with self._lock:
            return loaders.query_info(self._conn, normalize_symbol(symbol))

    # Universe

    def list_universe(self) -> List[str]:
        with self._lock:
            return loaders.list_universe(self._conn)

    def add_to_universe(self, symbols: List[str]) -> int:
        with self._lock:
            return loaders.add_to_universe(self._conn, normalize_symbols(symbols), datetime.now())

    def set_universe(self, symbols: List[str]) -> None:
        with self._lock:
            loaders.clear_universe(self._conn)
            loaders.add_to_universe(self._conn, normalize_symbols(symbols), datetime.now())

    def remove_from_universe(self, symbols: List[str]) -> int:
        with self._lock:
            return loaders.remove_from_universe(self._conn, normalize_symbols(symbols))

    # Runs

    def start_run(self, dag_name: str) -> int:
        with self._lock:
            return run_registry.start_run(self._conn, dag_name, datetime.now())

    def finish_run(
        self,
        run_id: int,
        status: RunStatus,
        symbols_total: Optional[int] = None,
        symbols_failed: Optional[int] = None,
        error_message: Optional[str] = None
    ) -> None:
        with self._lock:
            run_registry.finish_run(
                self._conn, run_id, status, datetime.now(),
                symbols_total, symbols_failed, error_message
            )

    def list_recent_runs(self, limit: int = 20, dag_name: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return run_registry.list_recent_runs(self._conn, limit, dag_name)
