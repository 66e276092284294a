"""
Settings - environment configuration and logging setup for entry points.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv

from utils.symbols import normalize_symbols

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


class SettingsError(Exception):
    """Raised when configuration cannot be loaded."""
    pass


@dataclass
class Settings:
    """Process-wide configuration read from the environment."""
    db_path: str = './data/portfolio.db'
    quotes_cache_ttl_s: float = 300.0
    refresh_workers: int = 4
    risk_free_rate: float = 0.0
    risk_tolerance: float = 0.3
    trailing_window: int = 12
    min_history_quotes: int = 30
    universe_file: Optional[str] = None

    def __post_init__(self):
        if self.quotes_cache_ttl_s < 0:
            raise ValueError("QUOTES_CACHE_TTL_S must be >= 0")
        if self.refresh_workers < 1:
            raise ValueError("REFRESH_WORKERS must be >= 1")
        if not 0.0 < self.risk_tolerance < 1.0:
            raise ValueError("RISK_TOLERANCE must be in (0, 1)")
        if self.trailing_window < 2:
            raise ValueError("TRAILING_WINDOW must be >= 2")
        if self.min_history_quotes < 1:
            raise ValueError("MIN_HISTORY_QUOTES must be >= 1")

    @classmethod
    def from_env(cls) -> 'Settings':
        """
        Build settings from environment variables (and .env).

        Raises:
            SettingsError: If a variable cannot be parsed
        """
        try:
            return cls(
                db_path=os.getenv('DB_PATH', './data/portfolio.db'),
                quotes_cache_ttl_s=float(os.getenv('QUOTES_CACHE_TTL_S', '300')),
                refresh_workers=int(os.getenv('REFRESH_WORKERS', '4')),
                risk_free_rate=float(os.getenv('RISK_FREE_RATE', '0.0')),
                risk_tolerance=float(os.getenv('RISK_TOLERANCE', '0.3')),
                trailing_window=int(os.getenv('TRAILING_WINDOW', '12')),
                min_history_quotes=int(os.getenv('MIN_HISTORY_QUOTES', '30')),
                universe_file=os.getenv('UNIVERSE_FILE') or None,
            )
        except ValueError as e:
            raise SettingsError(f"Invalid configuration: {e}") from e


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging once for a command-line run."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    # yfinance and urllib3 are chatty at DEBUG
    for noisy in ('yfinance', 'urllib3', 'peewee'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def load_universe_file(path: str) -> List[str]:
    """
    Load a symbol universe from YAML.

    The file holds either a plain list of symbols or a mapping with a
    'symbols' list.

    Returns:
        Normalized, deduplicated symbols in file order

    Raises:
        SettingsError: If the file is missing or malformed
    """
    universe_file = Path(path)
    if not universe_file.exists():
        raise SettingsError(f"Universe file not found: {path}")

    try:
        with open(universe_file, 'r', encoding='utf-8') as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise SettingsError(f"Failed to parse universe file: {e}") from e

    if isinstance(content, dict):
        content = content.get('symbols')

    if not isinstance(content, list):
        raise SettingsError("Universe file must contain a list of symbols")

    symbols = normalize_symbols(str(item) for item in content)
    logger.info(f"Loaded {len(symbols)} symbols from {path}")
    return symbols
