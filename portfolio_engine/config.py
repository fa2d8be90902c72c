# portfolio_engine/config.py
"""
Configuration for the AI Portfolio Engine

This module contains all configuration parameters for the portfolio engine.
Every value can be overridden from the environment (or a .env file) so that
protocol timings can be shortened in tests and tuned in production without
code changes.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / '.env')
load_dotenv()

# =============================================================================
# TRADING MODE
# =============================================================================
# CRITICAL: Set to 'paper' for testing, 'live' for real money
TRADING_MODE = os.getenv('ALPACA_TRADING_MODE', 'paper')  # 'paper' or 'live'

# AI recommendations are only executed when this is explicitly enabled.
# With it off the engine still analyses and logs what it would have done.
ENABLE_AUTOMATED_TRADING = os.getenv('ENABLE_AUTOMATED_TRADING', 'false').lower() == 'true'

# =============================================================================
# ALPACA API CREDENTIALS
# =============================================================================
ALPACA_PAPER_API_KEY = os.getenv('ALPACA_PAPER_API_KEY') or os.getenv('ALPACA_API_KEY')
ALPACA_PAPER_SECRET_KEY = os.getenv('ALPACA_PAPER_SECRET_KEY') or os.getenv('ALPACA_SECRET_KEY')

ALPACA_LIVE_API_KEY = os.getenv('ALPACA_LIVE_API_KEY')
ALPACA_LIVE_SECRET_KEY = os.getenv('ALPACA_LIVE_SECRET_KEY')

ALPACA_PAPER_BASE_URL = 'https://paper-api.alpaca.markets'
ALPACA_LIVE_BASE_URL = 'https://api.alpaca.markets'

# =============================================================================
# API GATEWAY (rate limiting + retry)
# =============================================================================
MIN_API_DELAY_MS = int(os.getenv('MIN_API_DELAY_MS', '100'))   # Spacing between broker calls
API_MAX_RETRIES = int(os.getenv('API_MAX_RETRIES', '3'))       # Retries after the first attempt
API_RETRY_BASE_DELAY_SECONDS = float(os.getenv('API_RETRY_BASE_DELAY_SECONDS', '1.0'))  # 1, 2, 4 ...

# =============================================================================
# ORDER PROTOCOL TIMINGS
# =============================================================================
CANCEL_SETTLE_SECONDS = float(os.getenv('CANCEL_SETTLE_SECONDS', '3'))  # After cancelling conflicts
FILL_SETTLE_SECONDS = float(os.getenv('FILL_SETTLE_SECONDS', '2'))      # Before attaching a stop order
TRADE_SPACING_SECONDS = float(os.getenv('TRADE_SPACING_SECONDS', '1'))  # Between executed AI decisions

DEFAULT_TIME_IN_FORCE = 'day'    # Market orders expire at close
STOP_TIME_IN_FORCE = 'gtc'       # Protective stops are good-til-cancelled

# =============================================================================
# PERFORMANCE METRICS
# =============================================================================
RISK_FREE_RATE = float(os.getenv('RISK_FREE_RATE', '0.045'))  # 4.5% annual
TRADING_DAYS_PER_YEAR = 252

# Local equity (cash + market values) is replaced by the broker's figure when
# the two differ by more than this many dollars.
EQUITY_DIVERGENCE_THRESHOLD = float(os.getenv('EQUITY_DIVERGENCE_THRESHOLD', '100'))

# =============================================================================
# AI ADVISORY SERVICE
# =============================================================================
GROQ_API_KEY = os.getenv('GROQ_API_KEY')
ADVISOR_MODEL = os.getenv('ADVISOR_MODEL', 'llama-3.3-70b-versatile')
RESEARCH_MODEL = os.getenv('RESEARCH_MODEL', ADVISOR_MODEL)
ADVISOR_TEMPERATURE = 0.1
ADVISOR_MAX_TOKENS = 2000
RESEARCH_TEMPERATURE = 0.2
RESEARCH_MAX_TOKENS = 1500

DECISION_CACHE_TTL_MINUTES = float(os.getenv('DECISION_CACHE_TTL_MINUTES', '15'))

# =============================================================================
# UNIVERSE
# =============================================================================
MICRO_CAP_LIMIT = 300_000_000    # $300M market cap ceiling for new buys
BENCHMARK_TICKERS = ['^GSPC', '^RUT', 'IWO', 'XBI']  # S&P 500, Russell 2000, R2K Growth, Biotech
ANALYSIS_BENCHMARKS = ['^GSPC', '^RUT']

# Weekly screen for new ideas: candidates must be micro-caps trading at least
# this many shares a day.
MIN_SCREEN_VOLUME = int(os.getenv('MIN_SCREEN_VOLUME', '100000'))
SCREEN_CANDIDATES = [
    'ABEO', 'IINN', 'ACTU', 'MYSZ', 'BLIN', 'DTIL', 'ETON', 'GBNH',
    'HCDI', 'IMPL', 'IZEA', 'KTRA', 'LCTX', 'MDWD', 'NAOV', 'ONCS',
    'PAVM', 'RKDA', 'SGMO', 'TRVN', 'UONE', 'VBIV', 'WISA', 'ADMP',
    'ADTX', 'AEMD', 'AGLE', 'AIMD', 'ALVR', 'AMRN', 'ANAB', 'ARTL',
    'ASLN', 'AVCO', 'BCEL', 'BCLI', 'BFRI',
]

# =============================================================================
# WEEKLY RESEARCH
# =============================================================================
RESEARCH_TOP_PICKS = int(os.getenv('RESEARCH_TOP_PICKS', '3'))        # Screened names researched per run
RESEARCH_SPACING_SECONDS = float(os.getenv('RESEARCH_SPACING_SECONDS', '1'))
RESEARCH_OUTPUT_DIR = os.getenv('RESEARCH_OUTPUT_DIR')  # Defaults to DATA_DIR/research

# =============================================================================
# MARKET HOURS (US Eastern Time)
# =============================================================================
MARKET_TIMEZONE = 'US/Eastern'
MARKET_OPEN_HOUR, MARKET_OPEN_MINUTE = 9, 30
MARKET_CLOSE_HOUR, MARKET_CLOSE_MINUTE = 16, 0

# =============================================================================
# DATA FILES
# =============================================================================
DATA_DIR = os.getenv('PORTFOLIO_DATA_DIR', os.path.join(os.getcwd(), 'data'))

PORTFOLIO_LEDGER_FILE = os.path.join(DATA_DIR, 'portfolio_ledger.csv')
TRADE_LOG_FILE = os.path.join(DATA_DIR, 'trade_log.csv')
AUDIT_LOG_FILE = os.path.join(DATA_DIR, 'audit_log.jsonl')

# =============================================================================
# LOGGING
# =============================================================================
LOG_LEVEL = os.getenv('PORTFOLIO_LOG_LEVEL', 'INFO')
LOG_FILE = os.path.join(DATA_DIR, 'portfolio_engine.log')

# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_api_credentials():
    """Get the appropriate API credentials based on trading mode."""
    if TRADING_MODE == 'live':
        return {
            'api_key': ALPACA_LIVE_API_KEY,
            'secret_key': ALPACA_LIVE_SECRET_KEY,
            'base_url': ALPACA_LIVE_BASE_URL
        }
    else:
        return {
            'api_key': ALPACA_PAPER_API_KEY,
            'secret_key': ALPACA_PAPER_SECRET_KEY,
            'base_url': ALPACA_PAPER_BASE_URL
        }


def validate_config():
    """Validate critical configuration settings."""
    errors = []

    creds = get_api_credentials()
    if not creds['api_key']:
        errors.append(f"Missing API key for {TRADING_MODE} trading")
    if not creds['secret_key']:
        errors.append(f"Missing secret key for {TRADING_MODE} trading")

    if TRADING_MODE not in ['paper', 'live']:
        errors.append(f"Invalid TRADING_MODE: {TRADING_MODE} (must be 'paper' or 'live')")

    if MIN_API_DELAY_MS < 0:
        errors.append(f"MIN_API_DELAY_MS ({MIN_API_DELAY_MS}) cannot be negative")
    if API_MAX_RETRIES < 0:
        errors.append(f"API_MAX_RETRIES ({API_MAX_RETRIES}) cannot be negative")
    if CANCEL_SETTLE_SECONDS < 0 or FILL_SETTLE_SECONDS < 0:
        errors.append("Settle delays cannot be negative")
    if DECISION_CACHE_TTL_MINUTES <= 0:
        errors.append(f"DECISION_CACHE_TTL_MINUTES ({DECISION_CACHE_TTL_MINUTES}) must be positive")

    return errors


def print_config_summary():
    """Print a summary of current configuration."""
    mode_emoji = "🧪" if TRADING_MODE == 'paper' else "💰"
    enabled_status = "✅ EXECUTING" if ENABLE_AUTOMATED_TRADING else "📋 ADVISORY ONLY"

    print(f"""
{'='*60}
{mode_emoji} AI PORTFOLIO ENGINE CONFIGURATION
{'='*60}

Mode:           {TRADING_MODE.upper()} TRADING
AI Trades:      {enabled_status}

API Gateway:
  Min Delay:    {MIN_API_DELAY_MS}ms
  Max Retries:  {API_MAX_RETRIES} (base backoff {API_RETRY_BASE_DELAY_SECONDS:.1f}s)

Order Protocol:
  Cancel Settle: {CANCEL_SETTLE_SECONDS:.1f}s
  Fill Settle:   {FILL_SETTLE_SECONDS:.1f}s

Metrics:
  Risk-Free:    {RISK_FREE_RATE*100:.2f}% annual
  Equity Check: ${EQUITY_DIVERGENCE_THRESHOLD:,.2f}

Decision Cache TTL: {DECISION_CACHE_TTL_MINUTES:.0f} min

{'='*60}
""")


if __name__ == '__main__':
    print_config_summary()

    errors = validate_config()
    if errors:
        print("⚠️  Configuration Errors:")
        for err in errors:
            print(f"  - {err}")
    else:
        print("✅ Configuration validated successfully")
