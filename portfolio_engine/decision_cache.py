# portfolio_engine/decision_cache.py
"""
Decision Cache

Memoizes AI trading decisions per ticker, keyed by a hash of the portfolio
state they were produced for. An entry is served only while it is younger
than the TTL and the portfolio hash still matches, so any change to cash or
to any position's shares or price forces re-analysis.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from . import config
from .decisions import Decision
from .models import Position

logger = logging.getLogger(__name__)


def portfolio_hash(portfolio: Iterable[Position], cash: float) -> str:
    """
    Deterministic fingerprint of positions and cash.

    Covers every (ticker, shares, current_price) tuple, sorted so position
    order does not matter, plus cash to the cent.
    """
    parts = sorted(f"{p.ticker}:{p.shares}:{float(p.current_price)!r}" for p in portfolio)
    canonical = '|'.join(parts) + f":{cash:.2f}"
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class CacheEntry:
    ticker: str
    decision: Optional[Decision]   # None: analysed, no action recommended
    timestamp: float
    portfolio_hash: str


class DecisionCache:
    """Per-ticker decision memo with TTL and portfolio-hash validation."""

    def __init__(
        self,
        ttl_minutes: Optional[float] = None,
        clock: Callable[[], float] = time.time
    ):
        ttl_minutes = config.DECISION_CACHE_TTL_MINUTES if ttl_minutes is None else ttl_minutes
        self.ttl_seconds = ttl_minutes * 60
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp >= self.ttl_seconds

    def get(self, ticker: str, current_hash: str) -> Optional[CacheEntry]:
        """
        Valid entry for ``ticker``, or None on a miss.

        A returned entry may carry ``decision=None``, meaning the advisor was
        asked and recommended nothing; that is a hit, not a miss.
        """
        with self._lock:
            entry = self._entries.get(ticker)
            if entry is None:
                return None
            if self._expired(entry, self.clock()):
                return None
            if entry.portfolio_hash != current_hash:
                return None
            return entry

    def put(self, ticker: str, decision: Optional[Decision], current_hash: str) -> None:
        """Store (or overwrite) the entry for ``ticker``."""
        with self._lock:
            self._entries[ticker] = CacheEntry(
                ticker=ticker,
                decision=decision,
                timestamp=self.clock(),
                portfolio_hash=current_hash
            )

    def clean_expired(self) -> int:
        """Drop entries older than the TTL. Returns how many were removed."""
        with self._lock:
            now = self.clock()
            stale = [t for t, e in self._entries.items() if self._expired(e, now)]
            for ticker in stale:
                del self._entries[ticker]

        if stale:
            logger.debug(f"Decision cache: purged {len(stale)} expired entries")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
