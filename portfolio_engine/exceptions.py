# portfolio_engine/exceptions.py
"""Shared exception types for order execution, ledger processing and advice."""

from typing import Optional


class TradingError(Exception):
    """Base class for every error raised by the portfolio engine."""

    def __init__(self, message: str, ticker: Optional[str] = None):
        super().__init__(message)
        self.ticker = ticker


# =============================================================================
# Local precondition failures (never retried)
# =============================================================================

class ValidationError(TradingError):
    """A local precondition failed before anything was sent to the broker."""


class InsufficientPosition(ValidationError):
    """Attempt to sell more shares than the ledger shows as held."""

    def __init__(self, ticker: str, requested: int, held: int):
        if held > 0:
            detail = f"only own {held} shares"
        else:
            detail = "no position found"
        super().__init__(f"Cannot sell {requested} shares of {ticker}: {detail}", ticker)
        self.requested = requested
        self.held = held


class InsufficientBuyingPower(ValidationError):
    """Order cost exceeds the account's buying power."""

    def __init__(
        self,
        ticker: Optional[str],
        required: Optional[float] = None,
        available: Optional[float] = None,
        detail: Optional[str] = None
    ):
        if required is not None and available is not None:
            message = (
                f"Insufficient buying power for {ticker}: "
                f"need ${required:,.2f}, have ${available:,.2f}"
            )
        else:
            message = f"Insufficient buying power for {ticker}: {detail or 'rejected by broker'}"
        super().__init__(message, ticker)
        self.required = required
        self.available = available


# =============================================================================
# Broker-side failures
# =============================================================================

class BrokerError(TradingError):
    """The brokerage API answered with (or failed with) an error."""

    def __init__(
        self,
        message: str,
        ticker: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message, ticker)
        self.status_code = status_code


class TransientApiError(BrokerError):
    """Network failure or server-side hiccup; safe to retry with backoff."""


class RateLimited(TransientApiError):
    """HTTP 429. Surfaces only after the gateway's retry budget is exhausted."""


class ConflictError(BrokerError):
    """Order rejected because it conflicts with other open orders. Retry later."""


class OrderRejectedWashTrade(ConflictError):
    """Broker still reports a potential wash trade after conflicts were cancelled."""


class OrderRejectedOther(BrokerError):
    """Any other non-retryable order rejection (e.g. HTTP 422)."""


# =============================================================================
# Data and advisory failures
# =============================================================================

class DataUnavailableError(TradingError):
    """Quote or history for one symbol could not be fetched."""

    def __init__(self, symbol: str, original: Optional[Exception] = None):
        message = f"No market data for {symbol}"
        if original is not None:
            message = f"{message}: {original}"
        super().__init__(message, symbol)
        self.symbol = symbol
        self.original = original


class AdvisorError(TradingError):
    """The AI advisory service could not be reached or returned nothing usable."""
