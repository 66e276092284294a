#!/usr/bin/env python3
"""
Main CLI for the REDP portfolio builder.
Usage: python cli.py COMMAND [options]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from analysis.metrics_engine import MetricsEngine, MetricsParams
from analysis.timeseries import TimeSeriesCache
from pipeline.refresh_dag import RefreshConfig, RefreshPipeline
from portfolio.optimizer import PortfolioConstructionError
from portfolio.screener import PortfolioScreener, REPORT_COLUMNS, ScreenerConfig, report_records
from storage.store import Store
from utils.settings import Settings, SettingsError, configure_logging, load_universe_file
from utils.symbols import SymbolError, normalize_symbol, split_symbols

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Download quotes, compute risk metrics and build REDP portfolios',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py universe set AAPL MSFT BRK.B
  python cli.py universe load config/universe.yml
  python cli.py refresh
  python cli.py refresh --symbol AAPL
  python cli.py check
  python cli.py show AAPL
  python cli.py portfolio --max-count 10 --money 50000 --exclude TSLA
        """
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--db', help='SQLite database path (default: $DB_PATH)')

    commands = parser.add_subparsers(dest='command', required=True)

    universe = commands.add_parser('universe', help='Manage the download universe')
    universe.add_argument('action', choices=['list', 'set', 'add', 'remove', 'load'])
    universe.add_argument('symbols', nargs='*', help='Symbols, or the YAML file for load')

    refresh = commands.add_parser('refresh', help='Refresh quotes and metrics')
    refresh.add_argument('--symbol', help='Refresh one symbol instead of the universe')
    stage = refresh.add_mutually_exclusive_group()
    stage.add_argument('--quotes-only', action='store_true', help='Skip metric computation')
    stage.add_argument('--metrics-only', action='store_true', help='Skip quote download')

    commands.add_parser('check', help='Find and optionally re-download short histories')

    delete = commands.add_parser('delete', help='Delete stored data for a symbol')
    delete.add_argument('symbol')

    show = commands.add_parser('show', help='Show stored metrics and recent quotes')
    show.add_argument('symbol')
    show.add_argument('--rows', type=int, default=10, help='Number of recent quotes (default: 10)')

    runs = commands.add_parser('runs', help='List recent refresh runs')
    runs.add_argument('--limit', type=int, default=10)

    portfolio = commands.add_parser('portfolio', help='Screen the universe and allocate capital')
    portfolio.add_argument('--exclude', default='', help='Comma separated symbols to leave out')
    portfolio.add_argument('--min-sharpe', type=float, default=1.0)
    portfolio.add_argument('--max-drawdown', type=float, default=0.3)
    portfolio.add_argument('--max-redp', type=float, default=1.0)
    portfolio.add_argument('--max-price', type=float, default=100000.0)
    portfolio.add_argument('--max-count', type=int, default=10)
    portfolio.add_argument('--money', type=float, default=100000.0)
    portfolio.add_argument('--drop-last-period', action='store_true',
                           help='Ignore the current, incomplete month')

    return parser


def ask_retry(symbol: str, observed_count: int) -> bool:
    """Interactive retry decision for an undersized history."""
    answer = input(f"{symbol} has only {observed_count} quotes. Download again? [y/N] ")
    return answer.strip().lower() in ('y', 'yes')


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        settings = Settings.from_env()
    except (SettingsError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    db_path = args.db or settings.db_path
    if db_path != ':memory:':
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    with Store.open(db_path) as store:
        try:
            return run_command(args, store, settings)
        except (SymbolError, SettingsError, ValueError) as e:
            print(f"❌ {e}", file=sys.stderr)
            return 1


def run_command(args: argparse.Namespace, store: Store, settings: Settings) -> int:
    series = TimeSeriesCache(store, settings.quotes_cache_ttl_s)
    engine = MetricsEngine(store, series, MetricsParams(
        risk_free_rate=settings.risk_free_rate,
        risk_tolerance=settings.risk_tolerance,
        trailing_window=settings.trailing_window,
    ))
    pipeline = RefreshPipeline(store, series, engine, RefreshConfig(
        max_workers=settings.refresh_workers,
        min_history_quotes=settings.min_history_quotes,
    ))

    if args.command == 'universe':
        return _universe(args, store, settings)

    if args.command == 'refresh':
        symbols = [normalize_symbol(args.symbol)] if args.symbol else None
        if not args.metrics_only:
            outcome = pipeline.refresh_all_quotes(symbols)
            print(f"Quotes: {outcome.total - outcome.failed}/{outcome.total} symbols refreshed")
        if not args.quotes_only:
            outcome = pipeline.refresh_all_metrics(symbols)
            print(f"Metrics: {outcome.total - outcome.failed}/{outcome.total} symbols refreshed")
        return 0

    if args.command == 'check':
        warnings = pipeline.check_downloaded_symbols(ask_retry)
        for warning in warnings:
            print(f"⚠️  {warning.symbol}: {warning.observed_count} quotes")
        if not warnings:
            print("✅ Every symbol has enough history")
        return 0

    if args.command == 'delete':
        deleted = pipeline.delete_symbol(args.symbol)
        print(f"Deleted {deleted} rows for {normalize_symbol(args.symbol)}")
        return 0

    if args.command == 'show':
        return _show(args, store)

    if args.command == 'runs':
        runs = store.list_recent_runs(args.limit)
        if not runs:
            print("No runs recorded")
            return 0
        columns = ['run_id', 'dag_name', 'status', 'started_at', 'symbols_total',
                   'symbols_failed', 'duration_seconds']
        print(pd.DataFrame(runs)[columns].to_string(index=False))
        return 0

    if args.command == 'portfolio':
        return _portfolio(args, store, series, settings)

    return 1


def _universe(args: argparse.Namespace, store: Store, settings: Settings) -> int:
    symbols = split_symbols(' '.join(args.symbols))

    if args.action == 'list':
        universe = store.list_universe()
        print('\n'.join(universe) if universe else "Universe is empty")
        return 0

    if args.action == 'load':
        path = args.symbols[0] if args.symbols else settings.universe_file
        if not path:
            print("❌ No universe file given and UNIVERSE_FILE is not set", file=sys.stderr)
            return 1
        store.set_universe(load_universe_file(path))
    elif not symbols:
        print(f"❌ universe {args.action} needs at least one symbol", file=sys.stderr)
        return 1
    elif args.action == 'set':
        store.set_universe(symbols)
    elif args.action == 'add':
        store.add_to_universe(symbols)
    elif args.action == 'remove':
        store.remove_from_universe(symbols)

    print(f"Universe has {len(store.list_universe())} symbols")
    return 0


def _show(args: argparse.Namespace, store: Store) -> int:
    symbol = normalize_symbol(args.symbol)
    info = store.query_info(symbol)
    print(f"{symbol} {info.get('name') or ''}".strip())

    metrics = store.get_all(symbol)
    for kind, value in metrics.items():
        print(f"  {kind.value:<24} {'' if value is None else f'{value:.4f}'}")

    quotes = store.quotes_frame(symbol)
    if quotes.empty:
        print("No quotes stored")
    else:
        print(quotes.tail(args.rows).to_string(index=False))
    return 0


def _portfolio(args: argparse.Namespace, store: Store, series: TimeSeriesCache, settings: Settings) -> int:
    config = ScreenerConfig(
        exclude=frozenset(split_symbols(args.exclude)) if args.exclude else frozenset(),
        min_sharpe=args.min_sharpe,
        max_drawdown=args.max_drawdown,
        max_redp=args.max_redp,
        max_price=args.max_price,
        max_count=args.max_count,
        money=args.money,
        drop_last_period=args.drop_last_period,
        risk_free_rate=settings.risk_free_rate,
        risk_tolerance=settings.risk_tolerance,
        trailing_window=settings.trailing_window,
    )

    try:
        rows = PortfolioScreener(store, series).build_report(config)
    except PortfolioConstructionError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    frame = pd.DataFrame(report_records(rows), columns=list(REPORT_COLUMNS))
    print(frame.to_string(index=False))
    return 0


if __name__ == '__main__':
    sys.exit(main())
