# portfolio_engine/metrics.py
"""
Performance Metrics Engine

Computes return, risk and drawdown statistics from the equity history held in
the ledger's TOTAL rows. With fewer than two history points it falls back to
a snapshot of the live portfolio, where the time-series ratios are reported
as 0 (undefined, not "no risk").
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from . import config
from .ledger_store import LedgerStore
from .models import Position

logger = logging.getLogger(__name__)

SOURCE_HISTORY = 'history'
SOURCE_REALTIME = 'realtime'


@dataclass
class PortfolioMetrics:
    total_equity: float
    total_return: float
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    avg_return: float = 0.0
    std_dev: float = 0.0
    data_points: int = 0
    source: str = SOURCE_HISTORY

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def period_returns(equity: Sequence[float]) -> np.ndarray:
    """r_i = (E_i - E_{i-1}) / E_{i-1}"""
    values = np.asarray(equity, dtype=float)
    if len(values) < 2:
        return np.array([], dtype=float)
    return np.diff(values) / values[:-1]


def max_drawdown(equity: Sequence[float]) -> float:
    """Largest fractional decline from the running peak."""
    values = np.asarray(equity, dtype=float)
    if len(values) == 0:
        return 0.0
    peaks = np.maximum.accumulate(values)
    drawdowns = (peaks - values) / peaks
    return float(drawdowns.max())


def calculate_from_history(
    equity: Sequence[float],
    risk_free_rate: Optional[float] = None,
    trading_days: Optional[int] = None
) -> PortfolioMetrics:
    """
    Metrics from an ordered equity series (at least two points).

    Args:
        equity: Total equity per cycle, oldest first
        risk_free_rate: Annual risk-free rate (defaults to config)
        trading_days: Periods per year (defaults to config)

    Returns:
        PortfolioMetrics with source 'history'
    """
    if len(equity) < 2:
        raise ValueError("At least two equity points are required")

    risk_free_rate = config.RISK_FREE_RATE if risk_free_rate is None else risk_free_rate
    trading_days = config.TRADING_DAYS_PER_YEAR if trading_days is None else trading_days
    daily_risk_free = risk_free_rate / trading_days

    first, last = float(equity[0]), float(equity[-1])
    returns = period_returns(equity)

    avg_return = float(returns.mean())
    std_dev = float(returns.std())  # population (ddof=0)

    sharpe = (avg_return - daily_risk_free) / std_dev if std_dev > 0 else 0.0

    negative = returns[returns < 0]
    if len(negative) > 0:
        downside_dev = float(np.sqrt(np.mean(negative ** 2)))
        sortino = (avg_return - daily_risk_free) / downside_dev if downside_dev > 0 else 0.0
    else:
        sortino = 0.0

    return PortfolioMetrics(
        total_equity=last,
        total_return=(last - first) / first,
        sharpe_ratio=float(sharpe),
        sortino_ratio=float(sortino),
        max_drawdown=max_drawdown(equity),
        win_rate=float((returns > 0).sum() / len(returns)),
        avg_return=avg_return,
        std_dev=std_dev,
        data_points=len(equity),
        source=SOURCE_HISTORY
    )


def calculate_realtime(
    portfolio: List[Position],
    cash: float,
    broker_equity: float = 0.0,
    threshold: Optional[float] = None
) -> PortfolioMetrics:
    """
    Snapshot metrics when there is not enough history.

    Equity is cash plus position market values, unless the broker-reported
    equity is positive and differs from that by more than ``threshold``, in
    which case the broker figure is used. Return is unrealized P&L over cost
    basis; the ratios stay 0.
    """
    threshold = config.EQUITY_DIVERGENCE_THRESHOLD if threshold is None else threshold

    market_value = sum(p.market_value for p in portfolio)
    cost_basis = sum(p.cost_basis for p in portfolio)
    unrealized = sum(p.unrealized_pnl for p in portfolio)

    equity = cash + market_value
    if broker_equity > 0 and abs(equity - broker_equity) > threshold:
        logger.warning(
            f"⚠️  Local equity ${equity:,.2f} differs from broker ${broker_equity:,.2f}, using broker figure"
        )
        equity = broker_equity

    return PortfolioMetrics(
        total_equity=equity,
        total_return=unrealized / cost_basis if cost_basis > 0 else 0.0,
        data_points=0,
        source=SOURCE_REALTIME
    )


class MetricsEngine:
    """Chooses the history or realtime path for the current account."""

    def __init__(self, ledger_store: Optional[LedgerStore] = None, broker=None):
        self.ledger_store = ledger_store or LedgerStore()
        self.broker = broker

    def calculate_metrics(
        self,
        portfolio: Optional[List[Position]] = None,
        cash: Optional[float] = None
    ) -> PortfolioMetrics:
        """
        Metrics from ledger history, or a realtime snapshot as fallback.

        Args:
            portfolio: Current positions (only needed for the fallback)
            cash: Current cash (fetched from the broker when omitted)
        """
        history = self.ledger_store.load_equity_history()
        if len(history) >= 2:
            return calculate_from_history([equity for _, equity in history])

        logger.info(f"Only {len(history)} equity point(s) in ledger, using realtime snapshot")

        broker_equity = 0.0
        if self.broker is not None:
            account = self.broker.get_account()
            broker_equity = account['equity']
            if cash is None:
                cash = account['cash']

        return calculate_realtime(portfolio or [], cash or 0.0, broker_equity)
