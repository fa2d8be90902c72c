# portfolio_engine/stop_loss_monitor.py
"""
Stop-Loss Monitor

Detects positions whose price has fallen to or below their tracked stop-loss
and liquidates them through the OrderExecutor.
"""

import logging
from typing import Any, Dict, List, Mapping

from .models import Position
from .order_executor import STOP_LOSS_REASON, OrderExecutor
from .utils import log_audit_event

logger = logging.getLogger(__name__)


class StopLossMonitor:
    """Trigger check and full-position liquidation."""

    def __init__(self, executor: OrderExecutor):
        self.executor = executor

    @staticmethod
    def should_trigger(price: float, stop_loss: float) -> bool:
        """A stop of 0 means none is configured and never triggers."""
        return stop_loss > 0 and price <= stop_loss

    def liquidate(self, position: Position, price: float) -> Dict[str, Any]:
        """
        Sell the whole position at market.

        Args:
            position: Position whose stop triggered
            price: Price that triggered it (used for proceeds and P&L)

        Returns:
            Result from OrderExecutor.execute_sell (order, proceeds, pnl, ...)
        """
        logger.warning(
            f"🛑 STOP-LOSS TRIGGERED: {position.ticker} @ ${price:.2f} "
            f"(stop ${position.stop_loss:.2f}), selling {position.shares} shares"
        )

        result = self.executor.execute_sell(
            position.ticker,
            position.shares,
            held_shares=position.shares,
            buy_price=position.buy_price,
            price=price,
            reason=STOP_LOSS_REASON
        )

        log_audit_event('STOP_LOSS_TRIGGERED', {
            'ticker': position.ticker,
            'shares': position.shares,
            'stop_loss': position.stop_loss,
            'trigger_price': price,
            'proceeds': result['proceeds'],
            'pnl': result['pnl']
        })

        return result

    def scan(self, portfolio: List[Position], prices: Mapping[str, float]) -> List[Dict[str, Any]]:
        """
        Report which positions would trigger at the given prices, without trading.

        Positions missing from ``prices`` are skipped.
        """
        breaches = []
        for position in portfolio:
            price = prices.get(position.ticker)
            if price is None:
                continue
            if self.should_trigger(price, position.stop_loss):
                breaches.append({
                    'ticker': position.ticker,
                    'shares': position.shares,
                    'current_price': price,
                    'stop_loss': position.stop_loss
                })
        return breaches
