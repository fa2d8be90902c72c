# portfolio_engine/__init__.py
"""
AI Portfolio Engine

Maintains a small micro-cap equity portfolio on Alpaca, using an LLM advisor
to propose trades. The engine places orders without tripping the broker's
wash-trade rules, enforces locally tracked stop-losses, keeps an append-only
ledger and trade log, and derives performance metrics from them.

Directory Structure:
    portfolio_engine/
    ├── __init__.py           # This file
    ├── config.py             # Environment-driven configuration
    ├── exceptions.py         # Error taxonomy
    ├── rate_limiter.py       # Call spacing + retry with backoff
    ├── alpaca_client.py      # Alpaca API wrapper and error classification
    ├── order_executor.py     # Buy/sell/stop protocols, emergency stop
    ├── models.py             # Position record
    ├── reconciliation.py     # Broker positions + local stop-losses
    ├── position_ledger.py    # Current portfolio and per-cycle processing
    ├── stop_loss_monitor.py  # Trigger check and liquidation
    ├── ledger_store.py       # Append-only CSV ledger and trade log
    ├── metrics.py            # Return, Sharpe, Sortino, drawdown, win rate
    ├── decisions.py          # Strict decoding of advisor decisions
    ├── decision_cache.py     # Per-ticker decision memo keyed by portfolio hash
    ├── advisor.py            # Groq-backed trading advisor
    ├── market_data.py        # yfinance quotes, bars, market cap
    ├── trading_bot.py        # Orchestration and CLI
    └── utils.py              # Audit log, file locks, formatting
    data/
        ├── portfolio_ledger.csv   # One row per ticker per cycle + TOTAL
        ├── trade_log.csv          # One row per executed order
        └── audit_log.jsonl        # Immutable audit trail

Safety Features:
    - Wash-trade conflict resolution before every order
    - Local holdings check before any sell
    - Idempotent order submission across retries
    - All-or-nothing ledger appends per cycle
    - Advisor output validated before anything is executed
    - Kill switch: AI trades run only with ENABLE_AUTOMATED_TRADING=true
"""

__version__ = "1.0.0"
__author__ = "AI Portfolio Engine"
