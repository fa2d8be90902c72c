# portfolio_engine/position_ledger.py
"""
Position Ledger

Single source of "current portfolio" truth for a processing cycle, and the
writer of the per-cycle ledger batch.

A cycle is all-or-nothing on disk: the rows are written in one append after
every position has been processed. Broker actions taken during the cycle
(stop-loss sells) are NOT rolled back if that write fails, since the broker
is not transactional with the local files.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .exceptions import TradingError
from .ledger_store import INCOMPLETE_ACTION, NO_DATA, TOTAL_TICKER, LedgerStore
from .models import Position
from .order_executor import OrderExecutor
from .reconciliation import reconcile_positions
from .stop_loss_monitor import StopLossMonitor
from .utils import get_today_str

logger = logging.getLogger(__name__)

HOLD_ACTION = 'HOLD'
STOP_SOLD_ACTION = 'SELL - Stop Loss Triggered'


class PositionLedger:
    """Merges broker positions with local stops and processes each cycle."""

    def __init__(
        self,
        broker,
        ledger_store: Optional[LedgerStore] = None,
        executor: Optional[OrderExecutor] = None,
        price_source: Optional[Callable[[str], float]] = None
    ):
        """
        Args:
            broker: AlpacaTradingClient (or compatible)
            ledger_store: CSV persistence
            executor: Order gateway used for stop-loss liquidation
            price_source: ticker -> current price; defaults to the broker's
                latest trade price
        """
        self.broker = broker
        self.ledger_store = ledger_store or LedgerStore()
        self.executor = executor or OrderExecutor(broker, self.ledger_store)
        self.monitor = StopLossMonitor(self.executor)
        self.price_source = price_source or broker.get_latest_trade_price

    def get_current_portfolio(self) -> List[Position]:
        """
        Live positions with stop-loss levels merged in from the ledger.

        Broker wins for shares, prices and cost basis; the most recent ledger
        row wins for stop-loss (0 when untracked).
        """
        broker_positions = self.broker.get_positions()
        tracked_stops = self.ledger_store.load_tracked_stops()
        positions, _ = reconcile_positions(broker_positions, tracked_stops)
        return positions

    def process_portfolio(self, portfolio: List[Position], cash: float) -> Dict[str, Any]:
        """
        Price every position, enforce stop-losses and append the cycle to the ledger.

        Liquidated positions are removed from ``portfolio`` in place and their
        proceeds added to cash. A position whose price cannot be fetched gets
        a NO DATA row, contributes nothing to the totals, and marks the TOTAL
        row INCOMPLETE; the rest of the batch continues.

        Args:
            portfolio: Positions from get_current_portfolio()
            cash: Cash balance before this cycle

        Returns:
            Dict with rows, portfolio, cash, total_value, total_pnl,
            total_equity, sold and missing ticker lists
        """
        today = get_today_str()
        rows: List[Dict[str, Any]] = []
        remaining: List[Position] = []
        sold: List[str] = []
        missing: List[str] = []
        total_value = 0.0
        total_pnl = 0.0

        for position in list(portfolio):
            ticker = position.ticker

            try:
                price = float(self.price_source(ticker))
            except TradingError as e:
                logger.warning(f"⚠️  {ticker}: no price data ({e})")
                missing.append(ticker)
                rows.append({
                    'date': today,
                    'ticker': ticker,
                    'shares': position.shares,
                    'cost_basis': round(position.cost_basis, 2),
                    'stop_loss': round(position.stop_loss, 2),
                    'current_price': NO_DATA,
                    'total_value': NO_DATA,
                    'pnl': NO_DATA,
                    'action': 'ERROR',
                })
                remaining.append(position)
                continue

            position.refresh(price)
            action = HOLD_ACTION

            if self.monitor.should_trigger(price, position.stop_loss):
                try:
                    result = self.monitor.liquidate(position, price)
                except TradingError as e:
                    logger.error(f"❌ {ticker}: stop-loss sell failed: {e}")
                    action = f"ERROR - stop-loss sell failed: {e}"
                else:
                    cash += result['proceeds']
                    sold.append(ticker)
                    pnl = round(result['pnl'], 2)
                    total_pnl += pnl
                    rows.append({
                        'date': today,
                        'ticker': ticker,
                        'shares': 0,
                        'cost_basis': round(position.cost_basis, 2),
                        'stop_loss': 0.0,
                        'current_price': round(price, 2),
                        'total_value': 0.0,
                        'pnl': pnl,
                        'action': STOP_SOLD_ACTION,
                    })
                    continue

            value = round(position.market_value, 2)
            pnl = round(position.unrealized_pnl, 2)
            total_value += value
            total_pnl += pnl
            remaining.append(position)
            rows.append({
                'date': today,
                'ticker': ticker,
                'shares': position.shares,
                'cost_basis': round(position.cost_basis, 2),
                'stop_loss': round(position.stop_loss, 2),
                'current_price': round(price, 2),
                'total_value': value,
                'pnl': pnl,
                'action': action,
            })

        cash = round(cash, 2)
        total_value = round(total_value, 2)
        total_equity = round(cash + total_value, 2)

        total_action = ''
        if missing:
            total_action = f"{INCOMPLETE_ACTION} - no data for {', '.join(missing)}"

        rows.append({
            'date': today,
            'ticker': TOTAL_TICKER,
            'total_value': total_value,
            'pnl': round(total_pnl, 2),
            'action': total_action,
            'cash_balance': cash,
            'total_equity': total_equity,
        })

        portfolio[:] = remaining
        self.ledger_store.append_ledger_batch(rows)

        logger.info(
            f"Portfolio processed: {len(remaining)} positions, "
            f"${total_value:,.2f} invested, ${cash:,.2f} cash, ${total_equity:,.2f} equity"
        )

        return {
            'rows': rows,
            'portfolio': remaining,
            'cash': cash,
            'total_value': total_value,
            'total_pnl': round(total_pnl, 2),
            'total_equity': total_equity,
            'sold': sold,
            'missing': missing,
        }
