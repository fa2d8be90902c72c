"""Tests for orchestration: daily update, AI analysis, emergency stop, CLI."""
from unittest.mock import MagicMock, patch

import pytest

from conftest import FakeBroker, broker_position

from portfolio_engine import trading_bot
from portfolio_engine.decisions import BuyDecision, HoldDecision, SellDecision
from portfolio_engine.ledger_store import TOTAL_TICKER
from portfolio_engine.order_executor import OrderExecutor
from portfolio_engine.trading_bot import TradingBot


@pytest.fixture
def broker():
    return FakeBroker(
        positions=[broker_position('ABCD', 10, 5.0, 6.0)],
        prices={'ABCD': 6.0, 'NEWW': 2.0},
        cash=1_000.0
    )


@pytest.fixture
def market_data():
    service = MagicMock()
    service.get_market_data.return_value = []
    service.get_benchmark_data.return_value = [{'symbol': '^RUT', 'price': 2000.0, 'percent_change': 0.4}]
    service.is_micro_cap.return_value = True
    return service


@pytest.fixture
def advisor():
    return MagicMock()


@pytest.fixture
def bot(broker, ledger_store, market_data, advisor, no_sleep):
    executor = OrderExecutor(broker, ledger_store, cancel_settle_seconds=0,
                             fill_settle_seconds=0, sleep=no_sleep)
    return TradingBot(
        broker=broker, ledger_store=ledger_store, market_data=market_data,
        advisor=advisor, executor=executor, sleep=no_sleep
    )


def seed_stop(ledger_store, ticker, stop):
    ledger_store.append_ledger_batch([{
        'date': '2024-01-02', 'ticker': ticker, 'shares': 10, 'cost_basis': 50.0,
        'stop_loss': stop, 'current_price': 5.0, 'total_value': 50.0, 'pnl': 0.0, 'action': 'HOLD'
    }])


# ─── Daily update ────────────────────────────────────────────────────────────

def test_daily_update_appends_cycle_and_reports_metrics(bot, ledger_store):
    seed_stop(ledger_store, 'ABCD', 4.0)

    summary = bot.run_daily_update()

    assert summary['total_equity'] == pytest.approx(1_060.0)
    assert summary['stop_losses_triggered'] == []
    assert summary['metrics']['source'] == 'realtime'
    assert [q['symbol'] for q in summary['market_data']] == ['^RUT']
    assert summary['positions'][0]['stop_loss'] == 4.0
    assert ledger_store.load_ledger().iloc[-1]['Ticker'] == TOTAL_TICKER


def test_daily_update_liquidates_breached_stop(bot, broker, ledger_store):
    seed_stop(ledger_store, 'ABCD', 6.5)

    summary = bot.run_daily_update()

    assert summary['stop_losses_triggered'] == ['ABCD']
    assert summary['positions'] == []
    assert summary['cash'] == pytest.approx(1_060.0)
    assert ('create_order', 'ABCD', 10, 'sell', 'market', None, 'day') in broker.calls


# ─── AI analysis ─────────────────────────────────────────────────────────────

def test_analysis_without_execution_places_no_orders(bot, broker, advisor):
    advisor.get_portfolio_decisions.return_value = [BuyDecision('NEWW', 10, 1.5, 'Setup')]

    result = bot.run_ai_analysis(execute=False)

    assert result['decisions'][0]['ticker'] == 'NEWW'
    assert result['executed'] == []
    assert broker.mutating_calls() == []


def test_analysis_executes_valid_decisions_and_skips_failures(bot, broker, advisor, no_sleep):
    advisor.get_portfolio_decisions.return_value = [
        BuyDecision('NEWW', 10, 1.5, 'Setup'),
        SellDecision('ABCD', 20, 'Oversized sell'),
        HoldDecision('Nothing else'),
    ]

    result = bot.run_ai_analysis(execute=True)

    assert [e['ticker'] for e in result['executed']] == ['NEWW']
    assert result['skipped'][0]['error_type'] == 'InsufficientPosition'
    creates = [c for c in broker.calls if c[0] == 'create_order']
    assert [(c[1], c[3], c[4]) for c in creates] == [('NEWW', 'buy', 'market'), ('NEWW', 'sell', 'stop')]


def test_stop_from_executed_buy_triggers_liquidation(bot, broker, advisor, ledger_store):
    advisor.get_portfolio_decisions.return_value = [BuyDecision('NEWW', 10, 1.5, 'Setup')]
    bot.run_ai_analysis(execute=True)

    broker.positions.append(broker_position('NEWW', 10, 2.0, 2.0))
    portfolio = bot.ledger.get_current_portfolio()
    assert {p.ticker: p.stop_loss for p in portfolio}['NEWW'] == 1.5

    broker.prices['NEWW'] = 1.0
    result = bot.ledger.process_portfolio(portfolio, broker.get_cash())

    assert result['sold'] == ['NEWW']
    liquidations = [c for c in broker.calls
                    if c[0] == 'create_order' and c[1] == 'NEWW' and c[3] == 'sell' and c[4] == 'market']
    assert len(liquidations) == 1


def test_analysis_skips_buys_that_are_not_micro_caps(bot, broker, advisor, market_data):
    market_data.is_micro_cap.return_value = False
    advisor.get_portfolio_decisions.return_value = [BuyDecision('NEWW', 10, 1.5, 'Setup')]

    result = bot.run_ai_analysis(execute=True)

    assert result['executed'] == []
    assert 'micro-cap' in result['skipped'][0]['error']
    assert broker.mutating_calls() == []


# ─── Emergency stop and status ───────────────────────────────────────────────

def test_emergency_stop_reports_success(bot, broker):
    broker.add_open_order('ABCD', 'sell', 'stop')
    broker.add_open_order('NEWW', 'buy', 'market')

    result = bot.emergency_stop('test')

    assert result['success'] is True
    assert result['cancelled_orders'] == 2
    assert result['remaining_orders'] == 0


def test_status_lists_stop_loss_breaches(bot, broker, ledger_store):
    broker.positions = [broker_position('ABCD', 10, 5.0, 3.0)]
    seed_stop(ledger_store, 'ABCD', 4.0)

    status = bot.get_status()

    assert status['stop_loss_breaches'] == [
        {'ticker': 'ABCD', 'shares': 10, 'current_price': 3.0, 'stop_loss': 4.0}
    ]
    assert broker.mutating_calls() == []


# ─── CLI ─────────────────────────────────────────────────────────────────────

def test_cli_emergency_stop_requires_confirmation():
    with patch.object(trading_bot, 'TradingBot') as bot_class, \
            patch('builtins.input', return_value='no'):
        assert trading_bot.main(['emergency-stop']) == 1
    bot_class.assert_not_called()


def test_cli_forced_emergency_stop(capsys):
    with patch.object(trading_bot, 'TradingBot') as bot_class:
        bot_class.return_value.emergency_stop.return_value = {'success': True, 'cancelled_orders': 3}
        assert trading_bot.main(['emergency-stop', '--force', '--reason', 'drill']) == 0

    bot_class.return_value.emergency_stop.assert_called_once_with('drill')
    assert '"cancelled_orders": 3' in capsys.readouterr().out


# ─── Weekly research ─────────────────────────────────────────────────────────

def test_weekly_research_covers_holdings_and_top_picks(bot, advisor, market_data, no_sleep,
                                                        isolated_data_dir, monkeypatch):
    from portfolio_engine import config
    from portfolio_engine.exceptions import AdvisorError
    monkeypatch.setattr(config, 'RESEARCH_OUTPUT_DIR', None)
    monkeypatch.setattr(config, 'RESEARCH_TOP_PICKS', 3)
    monkeypatch.setattr(config, 'RESEARCH_SPACING_SECONDS', 0.5)
    market_data.screen_micro_caps.return_value = ['ABCD', 'NEWW', 'FAIL', 'PIKA', 'LATE']

    def research(ticker):
        if ticker == 'FAIL':
            raise AdvisorError('model timeout')
        return f"## Company Overview\n{ticker} notes"

    advisor.get_deep_research.side_effect = research

    result = bot.run_weekly_research()

    assert result['holdings'] == ['ABCD']
    assert result['top_picks'] == ['NEWW', 'FAIL', 'PIKA']
    assert result['researched'] == ['ABCD', 'NEWW', 'PIKA']
    assert result['failed'] == {'FAIL': 'model timeout'}
    assert no_sleep.calls == [0.5, 0.5, 0.5]

    assert result['report_path'].startswith(str(isolated_data_dir / 'research'))
    report = open(result['report_path']).read()
    assert '### PIKA' in report
    assert 'PIKA notes' in report
    assert 'Research failed: model timeout' in report
    assert 'LATE' not in report


def test_cli_research_without_ticker_runs_weekly_research(capsys):
    with patch.object(trading_bot, 'TradingBot') as bot_class:
        bot_class.return_value.run_weekly_research.return_value = {'researched': ['ABCD']}
        assert trading_bot.main(['research']) == 0

    bot_class.return_value.run_weekly_research.assert_called_once_with()
    assert '"researched"' in capsys.readouterr().out


def test_cli_research_rejects_unknown_symbol():
    with patch.object(trading_bot, 'TradingBot') as bot_class:
        bot_class.return_value.market_data.validate_symbol.return_value = False
        assert trading_bot.main(['research', 'ZZZZ']) == 1

    bot_class.return_value.advisor.get_deep_research.assert_not_called()
