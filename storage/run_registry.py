"""
Run registry - bookkeeping for bulk quote and metric refreshes.
Each run records when it started and ended, how many symbols it touched
and how many of them failed.
"""

import sqlite3
from datetime import datetime
from typing import Dict, Any, List, Optional
from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle state of a refresh run."""
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


class RunNotFoundError(Exception):
    """Raised when a run id is unknown."""
    pass


_RUN_COLUMNS = (
    'run_id', 'dag_name', 'started_at', 'finished_at', 'status',
    'symbols_total', 'symbols_failed', 'error_message',
)
_SELECT_RUNS = f"SELECT {', '.join(_RUN_COLUMNS)} FROM runs"


def start_run(conn: sqlite3.Connection, dag_name: str, started_at: Optional[datetime] = None) -> int:
    """
    Record the start of a refresh.

    Args:
        conn: SQLite connection
        dag_name: Refresh kind ('refresh_quotes' or 'refresh_metrics')
        started_at: Start timestamp (defaults to now)

    Returns:
        Id of the new run
    """
    stamp = (started_at or datetime.now()).isoformat()
    cursor = conn.execute(
        "INSERT INTO runs (dag_name, started_at, status) VALUES (?, ?, ?)",
        (dag_name, stamp, RunStatus.RUNNING.value)
    )
    conn.commit()
    return cursor.lastrowid


def finish_run(
    conn: sqlite3.Connection,
    run_id: int,
    status: RunStatus,
    finished_at: Optional[datetime] = None,
    symbols_total: Optional[int] = None,
    symbols_failed: Optional[int] = None,
    error_message: Optional[str] = None
) -> None:
    """
    Close a run with its outcome.

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    stamp = (finished_at or datetime.now()).isoformat()
    cursor = conn.execute(
        """
        UPDATE runs
        SET status = ?, finished_at = ?, symbols_total = ?, symbols_failed = ?, error_message = ?
        WHERE run_id = ?
        """,
        (RunStatus(status).value, stamp, symbols_total, symbols_failed, error_message, run_id)
    )
    if cursor.rowcount == 0:
        conn.rollback()
        raise RunNotFoundError(f"Run ID {run_id} not found")
    conn.commit()


def get_run(conn: sqlite3.Connection, run_id: int) -> Dict[str, Any]:
    """
    Fetch one run with its derived duration and success rate.

    Raises:
        RunNotFoundError: If run_id doesn't exist
    """
    row = conn.execute(f"{_SELECT_RUNS} WHERE run_id = ?", (run_id,)).fetchone()
    if row is None:
        raise RunNotFoundError(f"Run ID {run_id} not found")
    return _row_to_run(row)


def list_recent_runs(
    conn: sqlite3.Connection,
    limit: int = 20,
    dag_name: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Most recent runs first, optionally only those of one refresh kind."""
    if dag_name:
        cursor = conn.execute(
            f"{_SELECT_RUNS} WHERE dag_name = ? ORDER BY run_id DESC LIMIT ?", (dag_name, limit)
        )
    else:
        cursor = conn.execute(f"{_SELECT_RUNS} ORDER BY run_id DESC LIMIT ?", (limit,))
    return [_row_to_run(row) for row in cursor.fetchall()]


def _row_to_run(row) -> Dict[str, Any]:
    run = dict(zip(_RUN_COLUMNS, row))
    run['status'] = RunStatus(run['status'])
    run['started_at'] = _parse_timestamp(run['started_at'])
    run['finished_at'] = _parse_timestamp(run['finished_at'])

    run['duration_seconds'] = None
    if run['started_at'] and run['finished_at']:
        run['duration_seconds'] = (run['finished_at'] - run['started_at']).total_seconds()

    run['success_rate'] = None
    total = run['symbols_total']
    if total:
        run['success_rate'] = (total - (run['symbols_failed'] or 0)) / total

    return run


def _parse_timestamp(value) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
