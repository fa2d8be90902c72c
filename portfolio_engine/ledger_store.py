# portfolio_engine/ledger_store.py
"""
Append-only CSV persistence for the portfolio ledger and the trade log.

Both files are plain comma-separated text with a header row so they stay
human-readable and diffable. Rows are only ever appended; each call writes
its whole payload in a single locked write.
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from . import config
from .utils import append_text_atomic, log_audit_event

logger = logging.getLogger(__name__)

LEDGER_COLUMNS = [
    'Date', 'Ticker', 'Shares', 'Cost Basis', 'Stop Loss', 'Current Price',
    'Total Value', 'PnL', 'Action', 'Cash Balance', 'Total Equity'
]

TRADE_LOG_COLUMNS = [
    'Date', 'Ticker', 'Shares Bought', 'Buy Price', 'Shares Sold',
    'Sell Price', 'Cost Basis', 'PnL', 'Reason'
]

# Row dict keys -> CSV column names
LEDGER_FIELDS = {
    'date': 'Date',
    'ticker': 'Ticker',
    'shares': 'Shares',
    'cost_basis': 'Cost Basis',
    'stop_loss': 'Stop Loss',
    'current_price': 'Current Price',
    'total_value': 'Total Value',
    'pnl': 'PnL',
    'action': 'Action',
    'cash_balance': 'Cash Balance',
    'total_equity': 'Total Equity',
}

TRADE_FIELDS = {
    'date': 'Date',
    'ticker': 'Ticker',
    'shares_bought': 'Shares Bought',
    'buy_price': 'Buy Price',
    'shares_sold': 'Shares Sold',
    'sell_price': 'Sell Price',
    'cost_basis': 'Cost Basis',
    'pnl': 'PnL',
    'reason': 'Reason',
}

TOTAL_TICKER = 'TOTAL'
NO_DATA = 'NO DATA'
INCOMPLETE_ACTION = 'INCOMPLETE'


def _render(rows: Iterable[Dict[str, Any]], fields: Dict[str, str], columns: List[str]) -> str:
    """Render row dicts to CSV text (no header). Unknown keys raise KeyError."""
    records = []
    for row in rows:
        unknown = set(row) - set(fields)
        if unknown:
            raise KeyError(f"Unknown ledger field(s): {sorted(unknown)}")
        records.append({fields[key]: value for key, value in row.items()})

    # object dtype keeps whole shares as ints when other rows leave the column blank
    frame = pd.DataFrame(records, columns=columns, dtype=object)
    frame = frame.where(frame.notna(), '')
    return frame.to_csv(index=False, header=False, lineterminator='\n')


def _header(columns: List[str]) -> str:
    return ','.join(columns) + '\n'


class LedgerStore:
    """Owner of the two append-only CSV files."""

    def __init__(
        self,
        ledger_file: Optional[str] = None,
        trade_log_file: Optional[str] = None
    ):
        self.ledger_file = ledger_file or config.PORTFOLIO_LEDGER_FILE
        self.trade_log_file = trade_log_file or config.TRADE_LOG_FILE

    # =========================================================================
    # Writes
    # =========================================================================

    def append_ledger_batch(self, rows: List[Dict[str, Any]]) -> None:
        """
        Persist one processing cycle (position rows + TOTAL row) all-or-nothing.

        The batch is fully rendered before the file is opened, so any error in
        the rows leaves the file byte-identical.

        Args:
            rows: Row dicts keyed by LEDGER_FIELDS names
        """
        if not rows:
            return

        text = _render(rows, LEDGER_FIELDS, LEDGER_COLUMNS)
        append_text_atomic(self.ledger_file, text, header=_header(LEDGER_COLUMNS))

        log_audit_event('LEDGER_BATCH_WRITTEN', {
            'rows': len(rows),
            'tickers': [r.get('ticker') for r in rows]
        })
        logger.info(f"✅ Ledger updated with {len(rows)} rows")

    def append_trade(self, entry: Dict[str, Any]) -> None:
        """
        Append one executed order to the trade log.

        Args:
            entry: Row dict keyed by TRADE_FIELDS names
        """
        text = _render([entry], TRADE_FIELDS, TRADE_LOG_COLUMNS)
        append_text_atomic(self.trade_log_file, text, header=_header(TRADE_LOG_COLUMNS))
        logger.info(f"Trade logged: {entry.get('ticker')} - {entry.get('reason')}")

    # =========================================================================
    # Reads
    # =========================================================================

    def _read(self, path: str, columns: List[str]) -> pd.DataFrame:
        if not os.path.exists(path) or os.path.getsize(path) == 0:
            return pd.DataFrame(columns=columns)
        return pd.read_csv(path, dtype=str, keep_default_na=False)

    def load_ledger(self) -> pd.DataFrame:
        """Whole ledger as strings (empty frame with the columns when absent)."""
        return self._read(self.ledger_file, LEDGER_COLUMNS)

    def load_trade_log(self) -> pd.DataFrame:
        """Whole trade log (empty frame with the columns when absent)."""
        return self._read(self.trade_log_file, TRADE_LOG_COLUMNS)

    def load_tracked_stops(self) -> Dict[str, float]:
        """
        Stop-loss level per ticker from the most recent non-TOTAL row.

        Later rows override earlier ones. Rows whose stop is not numeric are
        ignored.

        Returns:
            {ticker: stop_loss}
        """
        frame = self.load_ledger()
        if frame.empty:
            return {}

        frame = frame[frame['Ticker'].str.strip() != TOTAL_TICKER].copy()
        frame['stop'] = pd.to_numeric(frame['Stop Loss'], errors='coerce')
        frame = frame.dropna(subset=['stop'])

        stops: Dict[str, float] = {}
        for ticker, stop in zip(frame['Ticker'], frame['stop']):
            stops[ticker.strip().upper()] = float(stop)
        return stops

    def load_equity_history(self) -> List[Tuple[str, float]]:
        """
        Ordered ``(date, total_equity)`` pairs from TOTAL rows.

        TOTAL rows from cycles that had missing price data (action INCOMPLETE)
        and rows without a positive numeric equity are skipped.
        """
        frame = self.load_ledger()
        if frame.empty:
            return []

        totals = frame[frame['Ticker'].str.strip() == TOTAL_TICKER].copy()
        totals = totals[~totals['Action'].str.startswith(INCOMPLETE_ACTION)]
        totals['equity'] = pd.to_numeric(totals['Total Equity'], errors='coerce')
        totals = totals[totals['equity'] > 0]

        return [(date, float(equity)) for date, equity in zip(totals['Date'], totals['equity'])]
