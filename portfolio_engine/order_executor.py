# portfolio_engine/order_executor.py
"""
Order Execution Gateway

Places buy, sell and protective stop orders while avoiding wash-trade
rejections. The broker refuses an order that could trade against one of our
own open orders on the same symbol, so before every submission the open
orders for that ticker are inspected and the conflicting ones cancelled.

Buy protocol:
1. Cancel open SELL orders on the ticker, then wait ``cancel_settle_seconds``.
2. Submit a market buy (day).
3. If a stop-loss was requested: wait ``fill_settle_seconds``, cancel sell
   orders of type stop/market again, then submit a GTC stop-sell covering the
   whole position (shares already held plus the new ones). A failure here is
   logged and audited but never fails the (already executed) buy.
4. ``execute_buy`` records the stop-loss in the ledger, which is where the
   daily stop-loss check reads it from.

Sell protocol:
1. Check the requested shares against the ledger; fail with
   InsufficientPosition before any broker call.
2. Cancel open BUY orders and duplicate SELL orders, waiting
   ``cancel_settle_seconds`` if anything was cancelled.
3. Submit a market sell (day).

Mutating calls are serialized per ticker.
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from . import config
from .exceptions import InsufficientBuyingPower, InsufficientPosition, TradingError, ValidationError
from .ledger_store import LedgerStore
from .utils import get_today_str, log_audit_event

logger = logging.getLogger(__name__)

AI_BUY_REASON = 'AI RECOMMENDATION - New position'
AI_SELL_REASON = 'AI RECOMMENDATION - Position exit'
STOP_LOSS_REASON = 'AUTOMATED SELL - STOPLOSS TRIGGERED'


class OrderExecutor:
    """Executes orders against one brokerage account."""

    def __init__(
        self,
        broker,
        ledger_store: Optional[LedgerStore] = None,
        cancel_settle_seconds: Optional[float] = None,
        fill_settle_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            broker: AlpacaTradingClient (or any object with the same methods)
            ledger_store: Where executed trades are logged
            cancel_settle_seconds: Wait after cancelling conflicting orders
            fill_settle_seconds: Wait between a buy and its stop order
            sleep: Blocking sleep function
        """
        self.broker = broker
        self.ledger_store = ledger_store or LedgerStore()
        self.cancel_settle_seconds = (
            config.CANCEL_SETTLE_SECONDS if cancel_settle_seconds is None else cancel_settle_seconds
        )
        self.fill_settle_seconds = (
            config.FILL_SETTLE_SECONDS if fill_settle_seconds is None else fill_settle_seconds
        )
        self.sleep = sleep

        self._ticker_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, ticker: str) -> threading.Lock:
        with self._locks_guard:
            return self._ticker_locks[ticker]

    # =========================================================================
    # Conflict resolution
    # =========================================================================

    def _cancel_orders(self, ticker: str, orders: List[Dict[str, Any]], label: str) -> int:
        """
        Cancel each order, logging (not raising) individual failures.

        Returns:
            Number of cancellation attempts
        """
        if not orders:
            return 0

        logger.warning(f"⚠️  Found {len(orders)} {label} orders for {ticker}")
        logger.info("🛑 Cancelling them to prevent wash trade detection...")

        for order in orders:
            try:
                self.broker.cancel_order(order['id'])
                logger.info(f"   ✅ Cancelled {order.get('side')} order {order['id']}")
            except TradingError as e:
                logger.warning(f"   ⚠️  Failed to cancel order {order['id']}: {e}")

        return len(orders)

    def _settle(self, seconds: float, what: str) -> None:
        if seconds > 0:
            logger.info(f"⏳ Waiting {seconds:g}s for {what}...")
            self.sleep(seconds)

    # =========================================================================
    # Order protocols
    # =========================================================================

    def place_buy(
        self,
        ticker: str,
        shares: int,
        stop_loss: float = 0.0,
        held_shares: int = 0
    ) -> Dict[str, Any]:
        """
        Market buy with optional protective stop.

        Any existing stop order on the ticker is cancelled as a conflicting
        sell, so the new stop covers ``held_shares + shares``.

        Args:
            ticker: Symbol to buy
            shares: Whole shares (> 0)
            stop_loss: Stop price; 0 means no stop order
            held_shares: Shares already held before this buy

        Returns:
            {'order': buy order dict, 'stop_order': stop order dict or None}
        """
        if shares <= 0:
            raise ValidationError(f"Cannot buy {shares} shares of {ticker}", ticker)

        with self._lock_for(ticker):
            open_orders = self.broker.list_open_orders(ticker)
            sells = [o for o in open_orders if o['side'] == 'sell']
            if self._cancel_orders(ticker, sells, 'conflicting sell'):
                self._settle(self.cancel_settle_seconds, 'order cancellations to process')

            order = self.broker.create_order(
                ticker, shares, 'buy', 'market', time_in_force=config.DEFAULT_TIME_IN_FORCE
            )
            logger.info(f"✅ Buy order placed: {shares} shares of {ticker} (Order ID: {order['id']})")

            stop_order = None
            if stop_loss and stop_loss > 0:
                stop_order = self._place_stop_loss(ticker, held_shares + shares, stop_loss)

        return {'order': order, 'stop_order': stop_order}

    def _place_stop_loss(self, ticker: str, shares: int, stop_loss: float) -> Optional[Dict[str, Any]]:
        """GTC stop-sell after a buy. Returns None (and audits) on failure."""
        try:
            self._settle(self.fill_settle_seconds, f'{ticker} buy to fill')

            open_orders = self.broker.list_open_orders(ticker)
            conflicts = [
                o for o in open_orders
                if o['side'] == 'sell' and o['type'] in ('stop', 'market')
            ]
            if self._cancel_orders(ticker, conflicts, 'conflicting sell'):
                self._settle(self.cancel_settle_seconds, 'order cancellations to process')

            stop_order = self.broker.create_order(
                ticker, shares, 'sell', 'stop',
                stop_price=stop_loss,
                time_in_force=config.STOP_TIME_IN_FORCE
            )
            logger.info(f"🛡️ Stop-loss order placed: {ticker} at ${stop_loss:.2f} (Order ID: {stop_order['id']})")
            return stop_order

        except Exception as e:
            # The buy already executed; a missing stop is reported, not raised
            logger.error(f"⚠️  Failed to place stop-loss for {ticker}: {e}")
            log_audit_event('STOP_ORDER_FAILED', {
                'ticker': ticker,
                'shares': shares,
                'stop_loss': stop_loss,
                'error': str(e),
                'error_type': type(e).__name__
            }, outcome='FAILURE')
            return None

    def place_sell(self, ticker: str, shares: int, held_shares: int) -> Dict[str, Any]:
        """
        Market sell after local holdings validation.

        Args:
            ticker: Symbol to sell
            shares: Whole shares to sell
            held_shares: Shares the ledger shows as held

        Returns:
            Sell order dict

        Raises:
            InsufficientPosition: requested more than held (no broker call made)
        """
        if shares <= 0 or held_shares < shares:
            raise InsufficientPosition(ticker, shares, held_shares)

        with self._lock_for(ticker):
            open_orders = self.broker.list_open_orders(ticker)
            buys = [o for o in open_orders if o['side'] == 'buy']
            sells = [o for o in open_orders if o['side'] == 'sell']

            cancelled = self._cancel_orders(ticker, buys, 'conflicting buy')
            cancelled += self._cancel_orders(ticker, sells, 'existing sell')
            if cancelled:
                self._settle(self.cancel_settle_seconds, 'order cancellations to process')

            order = self.broker.create_order(
                ticker, shares, 'sell', 'market', time_in_force=config.DEFAULT_TIME_IN_FORCE
            )

        logger.info(f"✅ Sell order placed: {shares} shares of {ticker} (Order ID: {order['id']})")
        return order

    # =========================================================================
    # Trade execution (price lookup + protocol + trade log)
    # =========================================================================

    def execute_buy(
        self,
        ticker: str,
        shares: int,
        stop_loss: float,
        reason: str = AI_BUY_REASON,
        held_shares: int = 0,
        held_cost_basis: float = 0.0
    ) -> Dict[str, Any]:
        """
        Buy at market after a buying-power check, then log the trade and
        record the stop-loss in the ledger.

        Args:
            ticker: Symbol to buy
            shares: Whole shares to buy
            stop_loss: Stop price for the whole position (0 for none)
            reason: Trade-log reason
            held_shares: Shares already held (add-on buys)
            held_cost_basis: Cost basis of the shares already held

        Raises:
            InsufficientBuyingPower: estimated cost exceeds buying power
        """
        price = self.broker.get_latest_trade_price(ticker)
        cost = price * shares

        buying_power = self.broker.get_buying_power()
        if cost > buying_power:
            raise InsufficientBuyingPower(ticker, cost, buying_power)

        result = self.place_buy(ticker, shares, stop_loss, held_shares=held_shares)

        self.ledger_store.append_trade({
            'date': get_today_str(),
            'ticker': ticker,
            'shares_bought': shares,
            'buy_price': round(price, 2),
            'cost_basis': round(cost, 2),
            'pnl': 0.0,
            'reason': reason
        })
        log_audit_event('TRADE_EXECUTED', {
            'side': 'BUY', 'ticker': ticker, 'shares': shares,
            'price': price, 'stop_loss': stop_loss, 'reason': reason,
            'stop_placed': result['stop_order'] is not None
        })

        stop_tracked = False
        if stop_loss and stop_loss > 0:
            stop_tracked = self._track_stop_loss(
                ticker, held_shares + shares, held_cost_basis + cost, stop_loss, price, reason
            )

        return {**result, 'price': price, 'cost': cost, 'stop_tracked': stop_tracked}

    def _track_stop_loss(
        self,
        ticker: str,
        shares: int,
        cost_basis: float,
        stop_loss: float,
        price: float,
        reason: str
    ) -> bool:
        """Ledger row carrying the new stop. Returns False (and audits) on failure."""
        value = round(price * shares, 2)
        try:
            self.ledger_store.append_ledger_batch([{
                'date': get_today_str(),
                'ticker': ticker,
                'shares': shares,
                'cost_basis': round(cost_basis, 2),
                'stop_loss': round(stop_loss, 2),
                'current_price': round(price, 2),
                'total_value': value,
                'pnl': round(value - cost_basis, 2),
                'action': f"BUY - {reason}",
            }])
            return True
        except OSError as e:
            # The buy already executed, so this is reported instead of raised
            logger.error(f"⚠️  Failed to record stop-loss for {ticker} in the ledger: {e}")
            log_audit_event('STOP_TRACKING_FAILED', {
                'ticker': ticker,
                'stop_loss': stop_loss,
                'error': str(e)
            }, outcome='FAILURE')
            return False

    def execute_sell(
        self,
        ticker: str,
        shares: int,
        held_shares: int,
        buy_price: float,
        price: Optional[float] = None,
        reason: str = AI_SELL_REASON
    ) -> Dict[str, Any]:
        """
        Sell at market and log the realized P&L.

        Args:
            ticker: Symbol to sell
            shares: Shares to sell
            held_shares: Shares the ledger shows as held
            buy_price: Average entry price, for cost basis and P&L
            price: Known current price; fetched from the broker when omitted
            reason: Trade-log reason

        Returns:
            Dict with order, price, proceeds, cost_basis, pnl
        """
        if shares <= 0 or held_shares < shares:
            raise InsufficientPosition(ticker, shares, held_shares)

        if price is None:
            price = self.broker.get_latest_trade_price(ticker)

        order = self.place_sell(ticker, shares, held_shares)

        proceeds = price * shares
        cost_basis = buy_price * shares
        pnl = proceeds - cost_basis

        self.ledger_store.append_trade({
            'date': get_today_str(),
            'ticker': ticker,
            'shares_sold': shares,
            'sell_price': round(price, 2),
            'cost_basis': round(cost_basis, 2),
            'pnl': round(pnl, 2),
            'reason': reason
        })
        log_audit_event('TRADE_EXECUTED', {
            'side': 'SELL', 'ticker': ticker, 'shares': shares,
            'price': price, 'pnl': pnl, 'reason': reason
        })

        return {
            'order': order,
            'price': price,
            'proceeds': proceeds,
            'cost_basis': cost_basis,
            'pnl': pnl
        }

    # =========================================================================
    # Emergency stop
    # =========================================================================

    def emergency_stop(self, reason: str = 'Manual emergency stop') -> int:
        """
        Cancel every open order account-wide, with no settle delays.

        Returns:
            Number of orders cancelled
        """
        logger.critical(f"🚨 EMERGENCY STOP: {reason}")
        try:
            count = self.broker.cancel_all_orders()
        except TradingError as e:
            log_audit_event('EMERGENCY_STOP', {'reason': reason, 'error': str(e)}, outcome='ERROR')
            raise

        log_audit_event('EMERGENCY_STOP', {'reason': reason, 'orders_cancelled': count})
        logger.critical(f"🛑 Emergency stop complete: {count} orders cancelled")
        return count
