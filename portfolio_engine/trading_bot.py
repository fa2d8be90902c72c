# portfolio_engine/trading_bot.py
"""
Trading Bot

Main orchestration for one brokerage account. This module handles:
- Daily portfolio update (pricing, stop-losses, ledger, metrics)
- AI analysis and (optionally) execution of its decisions
- Weekly deep research on holdings and screened micro-caps
- Emergency stop
- Status reporting

Designed to be run as:
1. python -m portfolio_engine.trading_bot update      - after the close
2. python -m portfolio_engine.trading_bot analyze     - during market hours
3. python -m portfolio_engine.trading_bot research    - weekly, after the close
4. python -m portfolio_engine.trading_bot emergency-stop --force --reason "..."
"""

import json
import logging
import os
import sys
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from . import config
from .advisor import TradingAdvisor
from .alpaca_client import AlpacaTradingClient, create_alpaca_client
from .decisions import BuyDecision, Decision, SellDecision, decision_to_dict
from .exceptions import TradingError
from .ledger_store import LedgerStore
from .market_data import MarketDataService
from .metrics import MetricsEngine
from .models import Position
from .order_executor import OrderExecutor
from .position_ledger import PositionLedger
from .utils import format_currency, format_percentage, get_today_str, is_market_hours, log_audit_event

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """File + console logging for command-line runs."""
    os.makedirs(config.DATA_DIR, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(config.LOG_FILE),
            logging.StreamHandler()
        ]
    )


class TradingBot:
    """
    Coordinates all portfolio components:
    - Alpaca API client
    - Position ledger and stop-loss monitor
    - Order executor
    - Metrics engine
    - Market data and AI advisor
    """

    def __init__(
        self,
        broker: Optional[AlpacaTradingClient] = None,
        ledger_store: Optional[LedgerStore] = None,
        market_data: Optional[MarketDataService] = None,
        advisor: Optional[TradingAdvisor] = None,
        executor: Optional[OrderExecutor] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        logger.info(f"{'='*60}")
        logger.info("INITIALIZING AI PORTFOLIO ENGINE")
        logger.info(f"Mode: {config.TRADING_MODE.upper()}")
        logger.info(f"Automated Trading: {config.ENABLE_AUTOMATED_TRADING}")
        logger.info(f"{'='*60}")

        self.broker = broker or create_alpaca_client()
        self.ledger_store = ledger_store or LedgerStore()
        self.market_data = market_data or MarketDataService()
        self.executor = executor or OrderExecutor(self.broker, self.ledger_store)
        self.ledger = PositionLedger(self.broker, self.ledger_store, self.executor)
        self.metrics_engine = MetricsEngine(self.ledger_store, self.broker)
        self._advisor = advisor
        self.sleep = sleep

    @property
    def advisor(self) -> TradingAdvisor:
        """Created on first use so update/status runs need no advisory key."""
        if self._advisor is None:
            self._advisor = TradingAdvisor()
        return self._advisor

    # =========================================================================
    # Daily update
    # =========================================================================

    def run_daily_update(self) -> Dict[str, Any]:
        """
        Price every position, enforce stop-losses, append the ledger and
        compute metrics.
        """
        logger.info("📊 Running daily portfolio update...")

        portfolio = self.ledger.get_current_portfolio()
        cash = self.broker.get_cash()

        result = self.ledger.process_portfolio(portfolio, cash)

        tickers = [p.ticker for p in result['portfolio']]
        quotes = self.market_data.get_market_data(tickers) + self.market_data.get_benchmark_data()

        metrics = self.metrics_engine.calculate_metrics(result['portfolio'], result['cash'])

        logger.info(
            f"✅ Update complete: equity {format_currency(metrics.total_equity)}, "
            f"return {format_percentage(metrics.total_return)}"
        )

        return {
            'timestamp': datetime.now().isoformat(),
            'positions': [p.to_dict() for p in result['portfolio']],
            'cash': result['cash'],
            'total_value': result['total_value'],
            'total_equity': result['total_equity'],
            'stop_losses_triggered': result['sold'],
            'missing_data': result['missing'],
            'market_data': quotes,
            'metrics': metrics.to_dict()
        }

    # =========================================================================
    # AI analysis
    # =========================================================================

    def run_ai_analysis(self, execute: Optional[bool] = None) -> Dict[str, Any]:
        """
        Ask the advisor for decisions and execute them when enabled.

        Args:
            execute: Override for ENABLE_AUTOMATED_TRADING

        Returns:
            Dict with decisions, executed and skipped lists
        """
        if execute is None:
            execute = config.ENABLE_AUTOMATED_TRADING

        logger.info("🤖 Running AI analysis...")

        portfolio = self.ledger.get_current_portfolio()
        cash = self.broker.get_cash()
        metrics = self.metrics_engine.calculate_metrics(portfolio, cash)
        quotes = self.market_data.get_market_data(
            [p.ticker for p in portfolio] + config.ANALYSIS_BENCHMARKS
        )

        decisions = self.advisor.get_portfolio_decisions(portfolio, cash, metrics, quotes)
        logger.info(f"Received {len(decisions)} decisions")

        executed: List[Dict[str, Any]] = []
        skipped: List[Dict[str, Any]] = []

        if not execute:
            logger.info("📋 Automated trading disabled - decisions logged only")
        else:
            positions = {p.ticker: p for p in portfolio}
            for decision in decisions:
                if not isinstance(decision, (BuyDecision, SellDecision)):
                    continue

                if executed:
                    self.sleep(config.TRADE_SPACING_SECONDS)

                outcome = self._execute_decision(decision, positions)
                if outcome.get('error'):
                    skipped.append(outcome)
                else:
                    executed.append(outcome)

        return {
            'timestamp': datetime.now().isoformat(),
            'decisions': [decision_to_dict(d) for d in decisions],
            'executed': executed,
            'skipped': skipped,
            'automated_trading': execute
        }

    def _execute_decision(self, decision: Decision, positions: Dict[str, Position]) -> Dict[str, Any]:
        """Execute one BUY/SELL decision. Failures are returned, not raised."""
        summary = decision_to_dict(decision)
        try:
            if isinstance(decision, BuyDecision):
                if not self.market_data.is_micro_cap(decision.ticker):
                    summary['error'] = f"{decision.ticker} is not a verified micro-cap"
                    logger.warning(f"⚠️  Skipping BUY {decision.ticker}: {summary['error']}")
                    return summary
                position = positions.get(decision.ticker)
                result = self.executor.execute_buy(
                    decision.ticker, decision.shares, decision.stop_loss,
                    held_shares=position.shares if position else 0,
                    held_cost_basis=position.cost_basis if position else 0.0
                )
            else:
                position = positions.get(decision.ticker)
                held = position.shares if position else 0
                buy_price = position.buy_price if position else 0.0
                result = self.executor.execute_sell(
                    decision.ticker, decision.shares, held, buy_price
                )
                if position:
                    position.shares -= decision.shares
        except TradingError as e:
            summary['error'] = str(e)
            summary['error_type'] = type(e).__name__
            logger.error(f"❌ {decision.action} {decision.ticker} failed: {e}")
            return summary

        summary['price'] = result['price']
        summary['order_id'] = result['order']['id']
        return summary

    # =========================================================================
    # Weekly research
    # =========================================================================

    def _research_batch(
        self,
        tickers: List[str],
        reports: Dict[str, str],
        failed: Dict[str, str]
    ) -> None:
        """Research each ticker, spacing calls. Failures are recorded, not raised."""
        for ticker in tickers:
            if reports or failed:
                self.sleep(config.RESEARCH_SPACING_SECONDS)
            logger.info(f"📚 Researching {ticker}...")
            try:
                reports[ticker] = self.advisor.get_deep_research(ticker)
            except TradingError as e:
                failed[ticker] = str(e)
                logger.warning(f"⚠️  Research failed for {ticker}: {e}")

    def run_weekly_research(self, report_dir: Optional[str] = None) -> Dict[str, Any]:
        """
        Deep research on every holding plus the top screened micro-caps,
        saved as one markdown report.

        Args:
            report_dir: Output directory (default RESEARCH_OUTPUT_DIR or
                DATA_DIR/research)

        Returns:
            Dict with holdings, screened, top_picks, researched, failed and
            report_path
        """
        logger.info("🔍 Running weekly deep research...")
        started = time.monotonic()

        holdings = [p.ticker for p in self.ledger.get_current_portfolio()]
        reports: Dict[str, str] = {}
        failed: Dict[str, str] = {}

        self._research_batch(holdings, reports, failed)

        screened = self.market_data.screen_micro_caps()
        top_picks = [t for t in screened if t not in holdings][:config.RESEARCH_TOP_PICKS]
        logger.info(f"🎯 Deep research on top {len(top_picks)} picks: {', '.join(top_picks) or 'none'}")

        self._research_batch(top_picks, reports, failed)

        report_dir = report_dir or config.RESEARCH_OUTPUT_DIR or os.path.join(config.DATA_DIR, 'research')
        report_path = self._save_research_report(report_dir, holdings, top_picks, reports, failed)

        summary = {
            'timestamp': datetime.now().isoformat(),
            'holdings': holdings,
            'screened': screened,
            'top_picks': top_picks,
            'researched': list(reports),
            'failed': failed,
            'report_path': report_path,
            'duration_seconds': round(time.monotonic() - started, 3)
        }
        log_audit_event('WEEKLY_RESEARCH', {k: v for k, v in summary.items() if k != 'timestamp'})
        logger.info(f"✅ Research report saved: {report_path}")
        return summary

    @staticmethod
    def _save_research_report(
        report_dir: str,
        holdings: List[str],
        top_picks: List[str],
        reports: Dict[str, str],
        failed: Dict[str, str]
    ) -> str:
        date_str = get_today_str()
        lines = [f"# Weekly Research Report - {date_str}", ""]

        for title, tickers in (('Current Holdings', holdings), ('New Opportunities', top_picks)):
            lines += [f"## {title}", ""]
            if not tickers:
                lines += ["_None_", ""]
            for ticker in tickers:
                lines.append(f"### {ticker}")
                lines.append("")
                if ticker in reports:
                    lines.append(reports[ticker].strip())
                else:
                    lines.append(f"_Research failed: {failed.get(ticker, 'unknown error')}_")
                lines.append("")

        os.makedirs(report_dir, exist_ok=True)
        report_path = os.path.join(report_dir, f"weekly_research_{date_str}.md")
        with open(report_path, 'w') as f:
            f.write('\n'.join(lines))
        return report_path

    # =========================================================================
    # Emergency stop and status
    # =========================================================================

    def emergency_stop(self, reason: str = 'Manual emergency stop') -> Dict[str, Any]:
        """Cancel every open order and verify nothing is left open."""
        started = time.monotonic()
        cancelled = self.executor.emergency_stop(reason)

        remaining = self.broker.list_open_orders()
        if remaining:
            logger.warning(f"⚠️  {len(remaining)} orders still open after emergency stop")

        return {
            'success': not remaining,
            'cancelled_orders': cancelled,
            'remaining_orders': len(remaining),
            'reason': reason,
            'duration_seconds': round(time.monotonic() - started, 3),
            'timestamp': datetime.now().isoformat()
        }

    def get_status(self) -> Dict[str, Any]:
        """Positions, balances, metrics and current stop-loss breaches."""
        portfolio = self.ledger.get_current_portfolio()
        account = self.broker.get_account()
        metrics = self.metrics_engine.calculate_metrics(portfolio, account['cash'])
        breaches = self.ledger.monitor.scan(
            portfolio, {p.ticker: p.current_price for p in portfolio}
        )

        return {
            'timestamp': datetime.now().isoformat(),
            'trading_mode': config.TRADING_MODE,
            'automated_trading': config.ENABLE_AUTOMATED_TRADING,
            'market_open': self.broker.is_market_open(),
            'local_market_hours': is_market_hours(),
            'account': account,
            'positions': [p.to_dict() for p in portfolio],
            'metrics': metrics.to_dict(),
            'stop_loss_breaches': breaches
        }


def _confirm_emergency_stop() -> bool:
    print("⚠️  This will cancel ALL open orders on the account.")
    answer = input("Type 'yes' to continue: ")
    return answer.strip().lower() == 'yes'


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the portfolio engine."""
    import argparse

    parser = argparse.ArgumentParser(description='AI Portfolio Engine')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('update', help='Daily portfolio update')
    subparsers.add_parser('analyze', help='AI analysis (executes only if enabled)')
    subparsers.add_parser('metrics', help='Performance metrics')
    subparsers.add_parser('status', help='Account and position status')

    research = subparsers.add_parser(
        'research', help='Deep research on one ticker, or the weekly run when none is given'
    )
    research.add_argument('ticker', nargs='?')

    stop = subparsers.add_parser('emergency-stop', help='Cancel all open orders')
    stop.add_argument('--force', action='store_true', help='Skip confirmation prompt')
    stop.add_argument('--reason', default='Manual emergency stop')

    args = parser.parse_args(argv)

    setup_logging()

    try:
        if args.command == 'emergency-stop' and not args.force and not _confirm_emergency_stop():
            print("❌ Emergency stop cancelled by user")
            return 1

        bot = TradingBot()

        if args.command == 'update':
            results = bot.run_daily_update()
        elif args.command == 'analyze':
            results = bot.run_ai_analysis()
        elif args.command == 'metrics':
            results = bot.metrics_engine.calculate_metrics(
                bot.ledger.get_current_portfolio()
            ).to_dict()
        elif args.command == 'status':
            results = bot.get_status()
        elif args.command == 'research':
            if not args.ticker:
                results = bot.run_weekly_research()
            elif not bot.market_data.validate_symbol(args.ticker):
                print(f"❌ Unknown or unpriced symbol: {args.ticker}")
                return 1
            else:
                print(bot.advisor.get_deep_research(args.ticker))
                return 0
        else:
            results = bot.emergency_stop(args.reason)
            log_audit_event('EMERGENCY_STOP_COMMAND', {'reason': args.reason, 'forced': args.force})

        print(json.dumps(results, indent=2, default=str))
        return 0

    except TradingError as e:
        logger.error(f"Engine error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
