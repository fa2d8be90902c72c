"""
Pytest configuration and fixtures for the portfolio engine tests.

Every data file is redirected into a per-test temporary directory, and an
in-memory broker stands in for Alpaca so nothing touches the network or the
real clock.
"""
import itertools
from typing import Any, Dict, List, Optional

import pytest

from portfolio_engine import config
from portfolio_engine.exceptions import DataUnavailableError, OrderRejectedWashTrade
from portfolio_engine.ledger_store import LedgerStore


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Point the ledger, trade log and audit log at tmp_path."""
    monkeypatch.setattr(config, 'DATA_DIR', str(tmp_path))
    monkeypatch.setattr(config, 'PORTFOLIO_LEDGER_FILE', str(tmp_path / 'portfolio_ledger.csv'))
    monkeypatch.setattr(config, 'TRADE_LOG_FILE', str(tmp_path / 'trade_log.csv'))
    monkeypatch.setattr(config, 'AUDIT_LOG_FILE', str(tmp_path / 'audit_log.jsonl'))
    monkeypatch.setattr(config, 'LOG_FILE', str(tmp_path / 'portfolio_engine.log'))
    return tmp_path


class FakeBroker:
    """
    In-memory brokerage with the AlpacaTradingClient interface.

    Market orders fill immediately; stop orders stay open until cancelled.
    Like the real broker it rejects an order while an opposite-side order is
    open on the same symbol. Every call is recorded in ``calls``.
    """

    def __init__(
        self,
        positions: Optional[List[Dict[str, Any]]] = None,
        prices: Optional[Dict[str, float]] = None,
        cash: float = 10_000.0,
        buying_power: Optional[float] = None,
        equity: Optional[float] = None
    ):
        self.positions = positions or []
        self.prices = prices or {}
        self.cash = cash
        self.buying_power = cash if buying_power is None else buying_power
        self.equity = equity
        self.open_orders: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self._ids = itertools.count(1)

    def add_open_order(self, symbol: str, side: str, order_type: str = 'stop', qty: int = 10) -> Dict[str, Any]:
        order = {
            'id': f"open-{next(self._ids)}",
            'symbol': symbol,
            'side': side,
            'type': order_type,
            'qty': qty,
            'stop_price': 1.0 if order_type == 'stop' else None,
            'status': 'new'
        }
        self.open_orders.append(order)
        return order

    def mutating_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ('create_order', 'cancel_order', 'cancel_all_orders')]

    # Account
    def get_account(self) -> Dict[str, float]:
        self.calls.append(('get_account',))
        market_value = sum(p['market_value'] for p in self.positions)
        equity = self.cash + market_value if self.equity is None else self.equity
        return {
            'cash': self.cash,
            'buying_power': self.buying_power,
            'equity': equity,
            'last_equity': equity,
            'portfolio_value': equity
        }

    def get_cash(self) -> float:
        return self.get_account()['cash']

    def get_buying_power(self) -> float:
        return self.get_account()['buying_power']

    def is_market_open(self) -> bool:
        return True

    # Positions
    def get_positions(self) -> List[Dict[str, Any]]:
        self.calls.append(('get_positions',))
        return [dict(p) for p in self.positions]

    # Orders
    def list_open_orders(self, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        self.calls.append(('list_open_orders', symbol))
        return [dict(o) for o in self.open_orders if symbol is None or o['symbol'] == symbol]

    def create_order(self, symbol, qty, side, order_type='market', stop_price=None,
                     time_in_force=None, client_order_id=None) -> Dict[str, Any]:
        self.calls.append(('create_order', symbol, qty, side, order_type, stop_price, time_in_force))
        opposite = 'sell' if side == 'buy' else 'buy'
        if any(o['symbol'] == symbol and o['side'] == opposite for o in self.open_orders):
            raise OrderRejectedWashTrade(f"potential wash trade detected for {symbol}", symbol, 403)

        order = {
            'id': f"order-{next(self._ids)}",
            'client_order_id': client_order_id,
            'symbol': symbol,
            'qty': qty,
            'side': side,
            'type': order_type,
            'stop_price': stop_price,
            'status': 'new' if order_type == 'stop' else 'filled'
        }
        if order_type == 'stop':
            self.open_orders.append(dict(order))
        return order

    def cancel_order(self, order_id: str) -> None:
        self.calls.append(('cancel_order', order_id))
        self.open_orders = [o for o in self.open_orders if o['id'] != order_id]

    def cancel_all_orders(self) -> int:
        self.calls.append(('cancel_all_orders',))
        count = len(self.open_orders)
        self.open_orders = []
        return count

    # Market data
    def get_latest_trade_price(self, symbol: str) -> float:
        self.calls.append(('get_latest_trade_price', symbol))
        price = self.prices.get(symbol)
        if price is None:
            raise DataUnavailableError(symbol)
        return price


def broker_position(ticker: str, shares: int, avg_price: float, current_price: float) -> Dict[str, Any]:
    """Position dict shaped like AlpacaTradingClient.get_positions() output."""
    cost_basis = shares * avg_price
    market_value = shares * current_price
    return {
        'ticker': ticker,
        'shares': shares,
        'avg_price': avg_price,
        'cost_basis': cost_basis,
        'market_value': market_value,
        'current_price': current_price,
        'unrealized_pnl': market_value - cost_basis,
        'unrealized_pnl_percent': (market_value - cost_basis) / cost_basis * 100,
        'change_today': 0.0
    }


@pytest.fixture
def fake_broker():
    return FakeBroker()


@pytest.fixture
def ledger_store(isolated_data_dir):
    return LedgerStore(
        str(isolated_data_dir / 'portfolio_ledger.csv'),
        str(isolated_data_dir / 'trade_log.csv')
    )


@pytest.fixture
def no_sleep():
    """Sleep stand-in that records requested delays."""
    class Sleeper:
        def __init__(self):
            self.calls = []

        def __call__(self, seconds):
            self.calls.append(seconds)

    return Sleeper()
