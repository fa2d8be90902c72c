# portfolio_engine/alpaca_client.py
"""
Alpaca API Client Wrapper

Brokerage adapter used by the rest of the engine. Provides:
- Rate limiting and retry through a single RateLimitedGateway
- Classification of SDK / HTTP errors into the engine's error taxonomy
- Idempotent order submission keyed by client_order_id
- Plain-dict results with normalized keys
- Audit logging of order submissions and cancellations
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from alpaca.common.exceptions import APIError
from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockLatestTradeRequest
from alpaca.trading.client import TradingClient
from alpaca.trading.enums import OrderSide, QueryOrderStatus, TimeInForce
from alpaca.trading.requests import GetOrdersRequest, MarketOrderRequest, StopOrderRequest

from . import config
from .exceptions import (
    BrokerError,
    DataUnavailableError,
    InsufficientBuyingPower,
    OrderRejectedOther,
    OrderRejectedWashTrade,
    RateLimited,
    TradingError,
    TransientApiError,
)
from .rate_limiter import RateLimitedGateway
from .utils import generate_client_order_id, log_audit_event

logger = logging.getLogger(__name__)

WASH_TRADE_MARKERS = ('wash trade', 'opposite side')


class AlpacaClientError(BrokerError):
    """Connection or credential problem while setting up the client."""
    pass


def _enum_value(value: Any) -> str:
    """
    Normalize an SDK enum (or its str() form) to a lowercase plain value.

    Handles OrderSide.SELL, 'OrderSide.SELL' and 'sell' alike.
    """
    if value is None:
        return ''
    raw = getattr(value, 'value', value)
    text = str(raw)
    if '.' in text:
        text = text.split('.')[-1]
    return text.lower()


def classify_api_error(error: Exception, ticker: Optional[str] = None) -> Exception:
    """
    Map a raw SDK or transport exception into the TradingError taxonomy.

    Args:
        error: Exception raised by alpaca-py or requests
        ticker: Symbol the failed call was about, if any

    Returns:
        A TradingError subclass instance, or the original exception when it is
        not a brokerage failure at all (programming errors propagate untouched)
    """
    if isinstance(error, TradingError):
        return error

    if isinstance(error, requests.exceptions.RequestException):
        return TransientApiError(f"Network error: {error}", ticker)

    if isinstance(error, APIError):
        status = getattr(error, 'status_code', None)
        message = str(error)
        lowered = message.lower()

        if status == 429:
            return RateLimited(f"Rate limit exceeded: {message}", ticker, status)
        if status == 403:
            if any(marker in lowered for marker in WASH_TRADE_MARKERS):
                return OrderRejectedWashTrade(
                    f"Potential wash trade detected for {ticker}: {message}", ticker, status
                )
            if 'buying power' in lowered:
                return InsufficientBuyingPower(ticker, detail=message)
            return OrderRejectedOther(f"Order forbidden: {message}", ticker, status)
        if status == 422:
            if 'buying power' in lowered:
                return InsufficientBuyingPower(ticker, detail=message)
            return OrderRejectedOther(f"Invalid order: {message}", ticker, status)
        if status is None or status >= 500:
            return TransientApiError(f"Broker unavailable: {message}", ticker, status)
        return OrderRejectedOther(f"Broker rejected request ({status}): {message}", ticker, status)

    if isinstance(error, OSError):
        return TransientApiError(f"Connection error: {error}", ticker)

    return error


class AlpacaTradingClient:
    """
    Safe wrapper around the Alpaca Trading API.

    Every request goes through ``self.gateway`` so call spacing and retry
    policy are shared by all operations on the account.
    """

    def __init__(
        self,
        paper: bool = True,
        client: Optional[Any] = None,
        data_client: Optional[Any] = None,
        gateway: Optional[RateLimitedGateway] = None
    ):
        """
        Initialize Alpaca client.

        Args:
            paper: If True, use paper trading API. If False, use live API.
            client: Pre-built TradingClient (tests pass a mock)
            data_client: Pre-built StockHistoricalDataClient
            gateway: Shared rate limiter; one is created when omitted
        """
        self.paper = paper
        self.gateway = gateway or RateLimitedGateway(error_classifier=classify_api_error)
        if self.gateway.error_classifier is None:
            self.gateway.error_classifier = classify_api_error

        if client is None or data_client is None:
            creds = config.get_api_credentials()
            if not creds['api_key'] or not creds['secret_key']:
                mode = 'PAPER' if paper else 'LIVE'
                raise AlpacaClientError(
                    f"Missing API credentials for {mode.lower()} trading. "
                    f"Set ALPACA_{mode}_API_KEY and ALPACA_{mode}_SECRET_KEY environment variables."
                )
            if client is None:
                client = TradingClient(
                    api_key=creds['api_key'],
                    secret_key=creds['secret_key'],
                    paper=paper
                )
            if data_client is None:
                data_client = StockHistoricalDataClient(
                    api_key=creds['api_key'],
                    secret_key=creds['secret_key']
                )
            logger.info(f"Connected to Alpaca {'paper' if paper else 'LIVE'} trading API")

        self.client = client
        self.data_client = data_client

    def _call(self, operation, operation_name: str, ticker: Optional[str] = None):
        """Run one SDK call through the gateway, tagging errors with ``ticker``."""
        def wrapped():
            try:
                return operation()
            except TradingError:
                raise
            except Exception as e:
                classified = classify_api_error(e, ticker)
                if classified is e:
                    raise
                raise classified from e

        return self.gateway.call(wrapped, operation_name)

    # =========================================================================
    # Account
    # =========================================================================

    def get_account(self) -> Dict[str, float]:
        """
        Get account balances.

        Returns:
            Dict with cash, buying_power, equity, last_equity, portfolio_value
        """
        account = self._call(lambda: self.client.get_account(), "Get account")

        return {
            'cash': float(account.cash),
            'buying_power': float(account.buying_power),
            'equity': float(account.equity),
            'last_equity': float(account.last_equity),
            'portfolio_value': float(account.portfolio_value)
        }

    def get_cash(self) -> float:
        """Get available cash."""
        return self.get_account()['cash']

    def get_buying_power(self) -> float:
        """Get buying power (may differ from cash for margin accounts)."""
        return self.get_account()['buying_power']

    # =========================================================================
    # Market Status
    # =========================================================================

    def is_market_open(self) -> bool:
        """Check if the market is currently open."""
        try:
            clock = self._call(lambda: self.client.get_clock(), "Get market clock")
            return bool(clock.is_open)
        except TradingError as e:
            logger.error(f"Failed to get market clock: {e}")
            return False

    # =========================================================================
    # Position Operations
    # =========================================================================

    def get_positions(self) -> List[Dict[str, Any]]:
        """
        Get all current positions.

        Returns:
            List of position dictionaries with standardized keys
        """
        positions = self._call(lambda: self.client.get_all_positions(), "Get all positions")

        result = []
        for pos in positions:
            result.append({
                'ticker': pos.symbol,
                'shares': int(float(pos.qty)),
                'avg_price': float(pos.avg_entry_price),
                'cost_basis': float(pos.cost_basis),
                'market_value': float(pos.market_value),
                'current_price': float(pos.current_price),
                'unrealized_pnl': float(pos.unrealized_pl),
                'unrealized_pnl_percent': float(pos.unrealized_plpc) * 100,
                'change_today': float(pos.change_today) if pos.change_today else 0.0
            })

        return result

    # =========================================================================
    # Order Operations
    # =========================================================================

    def create_order(
        self,
        symbol: str,
        qty: int,
        side: str,
        order_type: str = 'market',
        stop_price: Optional[float] = None,
        time_in_force: Optional[str] = None,
        client_order_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Submit a market or stop order.

        The client_order_id is fixed before the first attempt. If an attempt
        fails transiently, the next attempt first asks the broker whether an
        order with that id already exists and returns it instead of
        submitting twice.

        Args:
            symbol: Ticker symbol
            qty: Number of whole shares
            side: 'buy' or 'sell'
            order_type: 'market' or 'stop'
            stop_price: Trigger price for stop orders
            time_in_force: 'day' or 'gtc' (defaults per order type)
            client_order_id: Idempotency key (generated when omitted)

        Returns:
            Order response dictionary
        """
        side = side.lower()
        order_type = order_type.lower()
        order_side = OrderSide.BUY if side == 'buy' else OrderSide.SELL

        if time_in_force is None:
            time_in_force = config.STOP_TIME_IN_FORCE if order_type == 'stop' else config.DEFAULT_TIME_IN_FORCE
        tif = TimeInForce.GTC if time_in_force.lower() == 'gtc' else TimeInForce.DAY

        if client_order_id is None:
            action = 'STOP' if order_type == 'stop' else side.upper()
            client_order_id = generate_client_order_id(symbol, action)

        if order_type == 'stop':
            if stop_price is None or stop_price <= 0:
                raise OrderRejectedOther(f"Stop order for {symbol} needs a positive stop price", symbol)
            request = StopOrderRequest(
                symbol=symbol,
                qty=qty,
                side=order_side,
                time_in_force=tif,
                stop_price=round(float(stop_price), 2),
                client_order_id=client_order_id
            )
        else:
            request = MarketOrderRequest(
                symbol=symbol,
                qty=qty,
                side=order_side,
                time_in_force=tif,
                client_order_id=client_order_id
            )

        attempts = {'count': 0}

        def submit():
            attempts['count'] += 1
            if attempts['count'] > 1:
                existing = self._find_order_by_client_id(client_order_id)
                if existing is not None:
                    logger.info(f"Order {client_order_id} already accepted by broker, not resubmitting")
                    return existing
            return self.client.submit_order(request)

        logger.info(f"Submitting {order_type.upper()} {side.upper()}: {symbol} x{qty}"
                    + (f" @ stop ${stop_price:.2f}" if order_type == 'stop' else ""))

        order = self._call(submit, f"Submit {order_type} {side} {symbol}", ticker=symbol)

        log_audit_event('ORDER_SUBMITTED', {
            'type': f"{order_type.upper()}_{side.upper()}",
            'symbol': symbol,
            'qty': qty,
            'stop_price': stop_price,
            'order_id': str(order.id),
            'client_order_id': client_order_id,
            'status': _enum_value(order.status)
        })

        return self._format_order_response(order)

    def _find_order_by_client_id(self, client_order_id: str):
        """Raw SDK order with this client id, or None when the broker has no such order."""
        try:
            return self.client.get_order_by_client_id(client_order_id)
        except APIError as e:
            if getattr(e, 'status_code', None) == 404:
                return None
            raise

    def list_open_orders(self, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Get all open orders, optionally filtered by symbol.

        Args:
            symbol: Optional ticker symbol to filter

        Returns:
            List of order dictionaries
        """
        request = GetOrdersRequest(
            status=QueryOrderStatus.OPEN,
            symbols=[symbol] if symbol else None
        )

        orders = self._call(
            lambda: self.client.get_orders(filter=request),
            "Get open orders",
            ticker=symbol
        )

        return [self._format_order_response(o) for o in orders]

    def cancel_order(self, order_id: str) -> None:
        """
        Cancel an order.

        Args:
            order_id: Alpaca order ID
        """
        self._call(lambda: self.client.cancel_order_by_id(order_id), f"Cancel order {order_id}")
        log_audit_event('ORDER_CANCELLED', {'order_id': order_id})
        logger.info(f"🛑 Order cancelled: {order_id}")

    def cancel_all_orders(self) -> int:
        """
        Cancel every open order on the account.

        Returns:
            Number of orders the broker reported as cancelled
        """
        responses = self._call(lambda: self.client.cancel_orders(), "Cancel all orders")
        count = len(responses) if responses else 0
        log_audit_event('ORDER_CANCELLED', {'scope': 'ALL', 'count': count})
        logger.warning(f"🛑 Cancelled all open orders ({count})")
        return count

    def _format_order_response(self, order) -> Dict[str, Any]:
        """Format order object to dictionary."""
        return {
            'id': str(order.id),
            'client_order_id': order.client_order_id,
            'symbol': order.symbol,
            'qty': int(float(order.qty)) if order.qty else 0,
            'filled_qty': int(float(order.filled_qty)) if order.filled_qty else 0,
            'side': _enum_value(order.side),
            'type': _enum_value(getattr(order, 'order_type', None) or order.type),
            'status': _enum_value(order.status),
            'stop_price': float(order.stop_price) if order.stop_price else None,
            'filled_avg_price': float(order.filled_avg_price) if order.filled_avg_price else None
        }

    # =========================================================================
    # Market Data
    # =========================================================================

    def get_latest_trade_price(self, symbol: str) -> float:
        """
        Last trade price from Alpaca market data.

        Raises:
            DataUnavailableError: when the price cannot be fetched
        """
        request = StockLatestTradeRequest(symbol_or_symbols=symbol)
        try:
            trades = self._call(
                lambda: self.data_client.get_stock_latest_trade(request),
                f"Latest trade {symbol}",
                ticker=symbol
            )
        except TradingError as e:
            raise DataUnavailableError(symbol, e) from e

        trade = trades.get(symbol) if trades else None
        if trade is None or not trade.price:
            raise DataUnavailableError(symbol)
        return float(trade.price)


def create_alpaca_client() -> AlpacaTradingClient:
    """
    Factory function to create Alpaca client based on config.

    Returns:
        Configured AlpacaTradingClient instance
    """
    paper = config.TRADING_MODE == 'paper'
    return AlpacaTradingClient(paper=paper)


if __name__ == '__main__':
    # Test connection
    try:
        client = create_alpaca_client()
        account = client.get_account()
        print("Connected successfully!")
        print(f"Equity: ${account['equity']:,.2f}")
        print(f"Cash: ${account['cash']:,.2f}")
        print(f"Market Open: {client.is_market_open()}")
        print(f"Positions: {len(client.get_positions())}")
    except TradingError as e:
        print(f"Connection failed: {e}")
