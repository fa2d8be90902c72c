# portfolio_engine/reconciliation.py
"""
Broker State Reconciliation

Merges broker-reported positions with locally tracked stop-loss levels.

Conflict rule: the broker wins for shares, prices and cost basis; the local
ledger wins for stop-loss. Disagreements are reported as discrepancies,
logged and audited, but never abort the merge.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .models import Position
from .utils import log_audit_event

logger = logging.getLogger(__name__)


class PositionDiscrepancy:
    """Represents a discrepancy between local tracking and broker state."""

    UNTRACKED_AT_BROKER = 'untracked_at_broker'  # Held at broker, no local stop
    CLOSED_AT_BROKER = 'closed_at_broker'        # Local stop, no longer held

    def __init__(
        self,
        discrepancy_type: str,
        ticker: str,
        broker_shares: int = 0,
        tracked_stop: Optional[float] = None
    ):
        self.type = discrepancy_type
        self.ticker = ticker
        self.broker_shares = broker_shares
        self.tracked_stop = tracked_stop
        self.detected_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'ticker': self.ticker,
            'broker_shares': self.broker_shares,
            'tracked_stop': self.tracked_stop,
            'detected_at': self.detected_at.isoformat()
        }

    def __str__(self) -> str:
        if self.type == self.UNTRACKED_AT_BROKER:
            return f"{self.ticker}: Held at broker ({self.broker_shares} shares) with no tracked stop-loss"
        elif self.type == self.CLOSED_AT_BROKER:
            return f"{self.ticker}: Tracked locally (stop ${self.tracked_stop:.2f}) but not held at broker"
        return f"{self.ticker}: {self.type}"


def reconcile_positions(
    broker_positions: List[Dict[str, Any]],
    tracked_stops: Dict[str, float]
) -> Tuple[List[Position], List[PositionDiscrepancy]]:
    """
    Build the current position set from broker data plus local stops.

    Args:
        broker_positions: Dicts from AlpacaTradingClient.get_positions()
        tracked_stops: {ticker: stop_loss} from LedgerStore.load_tracked_stops()

    Returns:
        Tuple of (positions, discrepancies). Positions keep broker order;
        untracked holdings are included with stop_loss 0.
    """
    positions: List[Position] = []
    discrepancies: List[PositionDiscrepancy] = []
    held = set()

    for bp in broker_positions:
        ticker = bp['ticker'].upper()
        shares = int(bp['shares'])
        if shares <= 0:
            continue
        held.add(ticker)

        cost_basis = float(bp['cost_basis'])
        buy_price = float(bp.get('avg_price') or (cost_basis / shares))

        if ticker in tracked_stops:
            stop_loss = float(tracked_stops[ticker])
        else:
            stop_loss = 0.0
            discrepancies.append(PositionDiscrepancy(
                PositionDiscrepancy.UNTRACKED_AT_BROKER, ticker, broker_shares=shares
            ))

        position = Position(
            ticker=ticker,
            shares=shares,
            cost_basis=cost_basis,
            buy_price=buy_price,
            stop_loss=stop_loss
        )
        position.refresh(float(bp.get('current_price') or buy_price))
        positions.append(position)

    for ticker in sorted(set(tracked_stops) - held):
        stop = tracked_stops[ticker]
        # A zero stop on a closed row is just history, not a discrepancy
        if stop > 0:
            discrepancies.append(PositionDiscrepancy(
                PositionDiscrepancy.CLOSED_AT_BROKER, ticker, tracked_stop=stop
            ))

    for d in discrepancies:
        logger.warning(f"⚠️  Reconciliation: {d}")
        log_audit_event('RECONCILIATION_DISCREPANCY', d.to_dict(), outcome='FAILURE')

    return positions, discrepancies
