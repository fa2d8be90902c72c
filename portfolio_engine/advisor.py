# portfolio_engine/advisor.py
"""
AI Trading Advisor

Asks an LLM (Groq, llama-3.3-70b-versatile) for BUY/SELL/HOLD decisions on
the current portfolio. Decisions are memoized per ticker in a DecisionCache
keyed by the portfolio hash; only tickers without a valid cached decision are
sent to the model. Malformed decisions are rejected, logged and audited,
never executed.
"""

import logging
from typing import Any, Dict, List, Optional

import groq
from groq import Groq

from . import config
from .decision_cache import DecisionCache, portfolio_hash
from .decisions import Decision, decision_to_dict, parse_decisions
from .exceptions import AdvisorError
from .metrics import PortfolioMetrics
from .models import Position
from .utils import log_audit_event

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = f"""You are a professional-grade portfolio strategist managing a micro-cap stock portfolio.
You can only trade U.S.-listed micro-cap stocks (market cap under ${config.MICRO_CAP_LIMIT / 1e6:.0f}M) with full-share positions.
Your objective is to generate maximum alpha. You have complete control over position sizing,
risk management, and stop-loss placement. You may concentrate or diversify at will.

CRITICAL: Respond with a JSON array of decisions in this EXACT format:
[
  {{
    "action": "BUY" | "SELL" | "HOLD",
    "ticker": "SYMBOL",
    "shares": number,
    "stopLoss": number,
    "reasoning": "detailed explanation"
  }}
]

Rules:
- Only recommend BUY for verified micro-cap stocks
- Every BUY needs a whole share count and a stop-loss price above zero
- Every SELL needs a whole share count no larger than the position
- Provide clear, actionable reasoning"""

RESEARCH_SYSTEM_PROMPT = (
    "You are a professional equity research analyst specializing in micro-cap stocks "
    "with expertise in fundamental analysis, technical analysis, and catalyst identification."
)


def build_portfolio_prompt(
    portfolio: List[Position],
    cash: float,
    metrics: PortfolioMetrics,
    market_data: List[Dict[str, Any]]
) -> str:
    """User prompt describing positions, cash, metrics and quotes."""
    if portfolio:
        portfolio_summary = '\n'.join(
            f"{p.ticker}: {p.shares} shares @ ${p.buy_price:.2f} (Stop: ${p.stop_loss:.2f})"
            for p in portfolio
        )
    else:
        portfolio_summary = 'No positions'

    if market_data:
        market_summary = '\n'.join(
            f"{d['symbol']}: ${d['price']:.2f} ({d.get('percent_change', 0.0):+.2f}%)"
            if d.get('price', 0.0) > 0 else f"{d['symbol']}: no market data"
            for d in market_data
        )
    else:
        market_summary = 'No market data available'

    return f"""CURRENT PORTFOLIO:
{portfolio_summary}

AVAILABLE CASH: ${cash:.2f}

PORTFOLIO METRICS:
- Total Equity: ${metrics.total_equity:.2f}
- Total Return: {metrics.total_return * 100:.2f}%
- Sharpe Ratio: {metrics.sharpe_ratio:.3f}
- Win Rate: {metrics.win_rate * 100:.1f}%

CURRENT MARKET DATA:
{market_summary}

Based on this information, what trading decisions do you recommend?
Consider:
1. Current position performance and stop-loss levels
2. Market momentum and sector trends
3. Available cash for new opportunities
4. Risk management and portfolio balance

Remember: You can only trade micro-cap stocks under ${config.MICRO_CAP_LIMIT / 1e6:.0f}M market cap."""


def build_research_prompt(ticker: str) -> str:
    return f"""Provide comprehensive research analysis on {ticker}. Structure your response as follows:

## Company Overview
## Financial Analysis
## Recent Developments
## Technical Analysis
## Risk Factors
## Investment Thesis
## Micro-Cap Specific Considerations

Be specific and cite figures where you can."""


class TradingAdvisor:
    """Groq-backed advisor with per-ticker decision memoization."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[Any] = None,
        cache: Optional[DecisionCache] = None,
        model: Optional[str] = None
    ):
        """
        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY)
            client: Pre-built Groq client (tests pass a mock)
            cache: Decision cache (a fresh one with the configured TTL by default)
            model: Chat model name
        """
        if client is None:
            api_key = api_key or config.GROQ_API_KEY
            if not api_key:
                raise AdvisorError("GROQ_API_KEY environment variable is required")
            client = Groq(api_key=api_key)

        self.client = client
        self.cache = cache or DecisionCache()
        self.model = model or config.ADVISOR_MODEL

    def _complete(self, system: str, prompt: str, model: str, max_tokens: int, temperature: float) -> str:
        try:
            response = self.client.chat.completions.create(
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt}
                ],
                model=model,
                max_tokens=max_tokens,
                temperature=temperature
            )
        except groq.APIError as e:
            raise AdvisorError(f"Advisory request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AdvisorError("No content received from advisory service")
        return content

    def get_portfolio_decisions(
        self,
        portfolio: List[Position],
        cash: float,
        metrics: PortfolioMetrics,
        market_data: List[Dict[str, Any]]
    ) -> List[Decision]:
        """
        Decisions for the held tickers and the symbols in ``market_data``.

        Cached decisions are reused while the portfolio hash matches and the
        TTL has not elapsed; the model is only asked about the rest.

        Returns:
            Cached decisions followed by new ones

        Raises:
            AdvisorError: the model could not be reached or returned nothing
        """
        self.cache.clean_expired()
        current_hash = portfolio_hash(portfolio, cash)

        candidates: List[str] = []
        for ticker in [p.ticker for p in portfolio] + [d['symbol'] for d in market_data]:
            if ticker not in candidates:
                candidates.append(ticker)

        cached: List[Decision] = []
        to_analyze: List[str] = []

        logger.info("🧠 AI Analysis Cache Check:")
        for ticker in candidates:
            entry = self.cache.get(ticker, current_hash)
            if entry is not None:
                logger.info(f"   💾 Cache HIT for {ticker}")
                if entry.decision is not None:
                    cached.append(entry.decision)
            else:
                logger.info(f"   🔍 Cache MISS for {ticker} - needs analysis")
                to_analyze.append(ticker)

        if not to_analyze:
            logger.info("   ✅ All tickers cached - skipping advisory call")
            return cached

        logger.info(f"   🤖 Analyzing {len(to_analyze)} tickers with {self.model}...")
        prompt = build_portfolio_prompt(
            [p for p in portfolio if p.ticker in to_analyze],
            cash,
            metrics,
            [d for d in market_data if d['symbol'] in to_analyze]
        )
        content = self._complete(
            SYSTEM_PROMPT, prompt, self.model,
            config.ADVISOR_MAX_TOKENS, config.ADVISOR_TEMPERATURE
        )

        decisions, rejections = parse_decisions(content)

        for rejection in rejections:
            logger.warning(f"⚠️  Rejected advisory decision #{rejection.index}: {rejection.reason}")
            log_audit_event('ADVISOR_DECISION_REJECTED', {
                'index': rejection.index,
                'reason': rejection.reason,
                'raw': rejection.raw
            }, outcome='FAILURE')

        decided = set()
        for decision in decisions:
            if decision.ticker:
                self.cache.put(decision.ticker, decision, current_hash)
                decided.add(decision.ticker)
                logger.info(f"   💾 Cached decision for {decision.ticker}: {decision.action}")

        for ticker in to_analyze:
            if ticker not in decided:
                self.cache.put(ticker, None, current_hash)
                logger.info(f"   💾 Cached \"no action\" for {ticker}")

        log_audit_event('ADVISOR_DECISIONS', {
            'analyzed': to_analyze,
            'decisions': [decision_to_dict(d) for d in decisions],
            'rejected': len(rejections),
            'from_cache': len(cached)
        })

        return cached + decisions

    def get_deep_research(self, ticker: str) -> str:
        """
        Free-text research report for one ticker.

        Raises:
            AdvisorError: blank ticker or failed request
        """
        if not ticker or not ticker.strip():
            raise AdvisorError("Ticker symbol is required for research")

        ticker = ticker.strip().upper()
        return self._complete(
            RESEARCH_SYSTEM_PROMPT,
            build_research_prompt(ticker),
            config.RESEARCH_MODEL,
            config.RESEARCH_MAX_TOKENS,
            config.RESEARCH_TEMPERATURE
        )
