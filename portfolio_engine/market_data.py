# portfolio_engine/market_data.py
"""
Market data provider backed by Yahoo Finance (yfinance).

Quotes, historical OHLCV bars, market cap lookups, benchmark snapshots, the
weekly micro-cap screen and symbol validation.
A failure for one symbol raises DataUnavailableError for that symbol; batch
helpers turn it into a zeroed quote and keep going.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import yfinance as yf

from . import config
from .exceptions import DataUnavailableError

logger = logging.getLogger(__name__)

PERIOD_ALIASES = {
    '1w': '5d',
    '1m': '1mo',
    '3m': '3mo',
    '6m': '6mo',
}
VALID_PERIODS = ('1d', '5d', '1mo', '3mo', '6mo', '1y')


def _first_number(info: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = info.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value == value:
            return float(value)
    return None


class MarketDataService:
    """Thin, rate-spaced wrapper around yf.Ticker."""

    def __init__(
        self,
        ticker_factory: Callable[[str], Any] = yf.Ticker,
        min_delay_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.ticker_factory = ticker_factory
        self.min_delay = (config.MIN_API_DELAY_MS if min_delay_ms is None else min_delay_ms) / 1000.0
        self.sleep = sleep

    def get_quote(self, symbol: str) -> Dict[str, Any]:
        """
        Latest quote for one symbol.

        Returns:
            {symbol, price, previous_close, volume, percent_change}

        Raises:
            DataUnavailableError: no usable price
        """
        try:
            ticker = self.ticker_factory(symbol)
            info = ticker.info or {}
            price = _first_number(info, 'regularMarketPrice', 'currentPrice')
            previous_close = _first_number(info, 'regularMarketPreviousClose', 'previousClose')
            volume = _first_number(info, 'regularMarketVolume', 'volume') or 0.0

            if price is None:
                hist = ticker.history(period='5d')
                if hist is not None and not hist.empty:
                    price = float(hist['Close'].iloc[-1])
                    if previous_close is None and len(hist) > 1:
                        previous_close = float(hist['Close'].iloc[-2])
                    volume = float(hist['Volume'].iloc[-1])
        except Exception as e:
            raise DataUnavailableError(symbol, e) from e

        if price is None or price <= 0:
            raise DataUnavailableError(symbol)

        previous_close = previous_close or price
        percent_change = (price - previous_close) / previous_close * 100 if previous_close else 0.0

        return {
            'symbol': symbol,
            'price': price,
            'previous_close': previous_close,
            'volume': volume,
            'percent_change': percent_change
        }

    def get_market_data(self, symbols: List[str]) -> List[Dict[str, Any]]:
        """
        Quotes for several symbols. Failures become zeroed quotes.
        """
        results = []
        for i, symbol in enumerate(symbols):
            if i > 0 and self.min_delay > 0:
                self.sleep(self.min_delay)
            try:
                results.append(self.get_quote(symbol))
            except DataUnavailableError as e:
                logger.warning(f"⚠️  {e}")
                results.append({
                    'symbol': symbol,
                    'price': 0.0,
                    'previous_close': 0.0,
                    'volume': 0.0,
                    'percent_change': 0.0
                })
        return results

    def get_historical_bars(self, symbol: str, period: str = '1mo') -> pd.DataFrame:
        """
        Daily OHLCV bars.

        Args:
            symbol: Ticker symbol
            period: 1d, 5d, 1mo, 3mo, 6mo, 1y (or 1w, 1m, 3m, 6m)

        Returns:
            DataFrame with Open, High, Low, Close, Volume columns
        """
        period = PERIOD_ALIASES.get(period, period)
        if period not in VALID_PERIODS:
            raise ValueError(f"Unsupported period {period!r} (use one of {', '.join(VALID_PERIODS)})")

        try:
            hist = self.ticker_factory(symbol).history(period=period, interval='1d')
        except Exception as e:
            raise DataUnavailableError(symbol, e) from e

        if hist is None or hist.empty:
            raise DataUnavailableError(symbol)
        return hist[['Open', 'High', 'Low', 'Close', 'Volume']]

    def get_market_cap(self, symbol: str) -> Optional[float]:
        """Market cap in dollars, or None when unknown."""
        try:
            info = self.ticker_factory(symbol).info or {}
        except Exception as e:
            logger.warning(f"⚠️  Market cap lookup failed for {symbol}: {e}")
            return None
        return _first_number(info, 'marketCap')

    def is_micro_cap(self, symbol: str, limit: Optional[float] = None) -> bool:
        """True only when the market cap is known and under the limit."""
        limit = config.MICRO_CAP_LIMIT if limit is None else limit
        market_cap = self.get_market_cap(symbol)
        return market_cap is not None and 0 < market_cap < limit

    def get_benchmark_data(self) -> List[Dict[str, Any]]:
        """Quotes for the configured benchmark indices and ETFs."""
        return self.get_market_data(config.BENCHMARK_TICKERS)

    def screen_micro_caps(
        self,
        candidates: Optional[List[str]] = None,
        min_volume: Optional[float] = None
    ) -> List[str]:
        """
        Candidates that are micro-caps trading at least ``min_volume`` shares.

        Args:
            candidates: Symbols to check (default: config.SCREEN_CANDIDATES)
            min_volume: Minimum daily volume (default: config.MIN_SCREEN_VOLUME)

        Returns:
            Qualifying symbols in candidate order
        """
        candidates = config.SCREEN_CANDIDATES if candidates is None else candidates
        min_volume = config.MIN_SCREEN_VOLUME if min_volume is None else min_volume

        logger.info(f"🔍 Screening {len(candidates)} potential micro-cap stocks...")
        logger.info(
            f"📊 Criteria: Market cap < ${config.MICRO_CAP_LIMIT / 1e6:.0f}M, "
            f"Volume >= {min_volume:,.0f}"
        )

        qualified = []
        for i, symbol in enumerate(candidates):
            if i > 0 and self.min_delay > 0:
                self.sleep(self.min_delay)

            if not self.is_micro_cap(symbol):
                logger.info(f"   ❌ {symbol}: not a verified micro-cap")
                continue

            try:
                volume = self.get_quote(symbol)['volume']
            except DataUnavailableError as e:
                logger.warning(f"   ⚠️  Skipping {symbol}: {e}")
                continue

            if volume < min_volume:
                logger.info(f"   ❌ {symbol}: volume too low ({volume:,.0f})")
                continue

            qualified.append(symbol)
            logger.info(f"   ✅ {symbol} qualified: volume {volume:,.0f}")

        logger.info(f"🎯 Screening complete: {len(qualified)} stocks qualified")
        return qualified

    def validate_symbol(self, symbol: str) -> bool:
        """True when the symbol is non-blank and has a positive quoted price."""
        if not symbol or not symbol.strip():
            return False
        try:
            self.get_quote(symbol.strip().upper())
        except DataUnavailableError as e:
            logger.warning(f"⚠️  Symbol validation failed: {e}")
            return False
        return True
