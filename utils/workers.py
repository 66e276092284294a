"""
Bounded worker pool for per-symbol batch work.
Symbols are processed in shuffled order; one failure never stops the batch.
"""

import logging
import random
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """Per-symbol results and errors of one batch."""
    order: List[str]
    results: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.order)

    @property
    def failed(self) -> int:
        return len(self.errors)


def run_shuffled(
    symbols: List[str],
    work: Callable[[str], Any],
    max_workers: int = 4,
    rng: Optional[random.Random] = None,
    label: str = 'refresh'
) -> BatchOutcome:
    """
    Run `work(symbol)` for every symbol on a bounded thread pool.

    Args:
        symbols: Symbols to process
        work: Per-symbol callable; exceptions are caught and recorded
        max_workers: Pool size (at least 1)
        rng: Random source for the processing order
        label: Name used in progress log lines

    Returns:
        BatchOutcome with the shuffled order, results and error messages
    """
    order = list(symbols)
    (rng or random).shuffle(order)
    outcome = BatchOutcome(order=order)

    if not order:
        return outcome

    done = 0
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = {pool.submit(work, symbol): symbol for symbol in order}
        for future in as_completed(futures):
            symbol = futures[future]
            try:
                outcome.results[symbol] = future.result()
            except Exception as e:
                outcome.errors[symbol] = str(e)
                logger.error(f"{label} failed for {symbol}: {e}")
            done += 1
            logger.info(f"{label} {symbol} ({100 * done / len(order):.2f}%)")

    return outcome
