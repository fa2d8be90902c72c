# portfolio_engine/models.py
"""Position record shared by the ledger, the stop-loss monitor and the advisor."""

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass
class Position:
    """
    One held security.

    ``shares``, prices and cost basis come from the broker; ``stop_loss``
    comes from local tracking (0 means no stop configured). The market
    fields are recomputed by ``refresh`` and never persisted as such.
    """
    ticker: str
    shares: int
    cost_basis: float
    buy_price: float
    stop_loss: float = 0.0
    current_price: float = 0.0
    market_value: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0

    def refresh(self, price: float) -> None:
        """Recompute the derived market fields at ``price``."""
        self.current_price = price
        self.market_value = price * self.shares
        self.unrealized_pnl = self.market_value - self.cost_basis
        if self.cost_basis > 0:
            self.unrealized_pnl_percent = self.unrealized_pnl / self.cost_basis * 100
        else:
            self.unrealized_pnl_percent = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
