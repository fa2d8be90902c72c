# portfolio_engine/utils.py
"""
Utility Functions for the Portfolio Engine

Provides common utilities including:
- Audit logging
- File locking and single-write appends
- Client order ID generation
- Market hours helpers
- Display formatting
"""

import os
import json
import logging
import fcntl
import hashlib
from contextlib import contextmanager
from datetime import datetime, time
from typing import Any, Dict, Iterator, List, Optional

import pytz

from . import config

logger = logging.getLogger(__name__)

# Timezone for market hours
EASTERN = pytz.timezone(config.MARKET_TIMEZONE)


def _get_lock_file(filepath: str) -> str:
    """Get the lock file path for a given file."""
    return f"{filepath}.lock"


@contextmanager
def file_lock(filepath: str) -> Iterator[None]:
    """
    Hold an exclusive advisory lock on ``filepath`` for the duration of the block.

    The lock lives in a sidecar ``.lock`` file so the data file itself can be
    opened in any mode inside the block.
    """
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(_get_lock_file(filepath), 'w') as lf:
        fcntl.flock(lf.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lf.fileno(), fcntl.LOCK_UN)


def append_text_atomic(filepath: str, text: str, header: Optional[str] = None) -> None:
    """
    Append ``text`` to ``filepath`` in one write, flush and fsync.

    The caller renders everything it wants to persist before calling, so a
    failure while building the payload never touches the file. ``header`` is
    prepended (in the same write) only when the file is new or empty. Raises
    on I/O errors.
    """
    with file_lock(filepath):
        payload = text
        if header and file_is_empty(filepath):
            payload = header + text
        with open(filepath, 'a', newline='') as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())


def file_is_empty(filepath: str) -> bool:
    """True when the file is missing or has zero bytes."""
    return not os.path.exists(filepath) or os.path.getsize(filepath) == 0


# =============================================================================
# AUDIT LOGGING
# =============================================================================

def log_audit_event(
    event_type: str,
    data: Dict[str, Any],
    outcome: str = 'SUCCESS'
) -> None:
    """
    Log an audit event to the permanent audit trail.

    Uses JSONL format (one JSON object per line) for append-only efficiency.
    Audit logs should NEVER be deleted or rotated.

    Args:
        event_type: Type of event (ORDER_SUBMITTED, STOP_LOSS_TRIGGERED, etc.)
        data: Event data dictionary
        outcome: SUCCESS, FAILURE, or ERROR
    """
    event = {
        'timestamp': datetime.now().isoformat(),
        'event_type': event_type,
        'outcome': outcome,
        'trading_mode': config.TRADING_MODE,
        'data': data
    }

    try:
        append_text_atomic(config.AUDIT_LOG_FILE, json.dumps(event, default=str) + '\n')
    except Exception as e:
        logger.error(f"Failed to write audit log: {e}")
        # Don't raise - audit failure shouldn't stop trading


def read_recent_audit_events(
    event_type: Optional[str] = None,
    limit: int = 100
) -> List[Dict[str, Any]]:
    """
    Read recent audit events from the log.

    Args:
        event_type: Optional filter by event type
        limit: Maximum events to return

    Returns:
        List of event dictionaries (most recent first)
    """
    if not os.path.exists(config.AUDIT_LOG_FILE):
        return []

    events = []
    with open(config.AUDIT_LOG_FILE, 'r') as f:
        lines = f.readlines()

    for line in reversed(lines):
        if len(events) >= limit:
            break
        try:
            event = json.loads(line.strip())
        except json.JSONDecodeError:
            continue
        if event_type is None or event.get('event_type') == event_type:
            events.append(event)

    return events


# =============================================================================
# CLIENT ORDER ID GENERATION
# =============================================================================

def generate_client_order_id(
    ticker: str,
    action: str,
    timestamp: Optional[datetime] = None
) -> str:
    """
    Generate a unique client order ID.

    Format: {TICKER}-{ACTION}-{YYYYMMDD}-{HHMMSS}-{HASH}

    The ID is created once per logical order and reused across retries, which
    lets the broker adapter detect an order that already went through.

    Args:
        ticker: Stock ticker symbol
        action: BUY, SELL, STOP
        timestamp: Optional timestamp (defaults to now)

    Returns:
        Client order ID string
    """
    if timestamp is None:
        timestamp = datetime.now()

    base = f"{ticker}-{action}-{timestamp.strftime('%Y%m%d-%H%M%S')}"
    hash_input = f"{base}-{timestamp.microsecond}-{os.getpid()}"
    short_hash = hashlib.md5(hash_input.encode()).hexdigest()[:6]

    return f"{base}-{short_hash}"


# =============================================================================
# DATE/TIME HELPERS
# =============================================================================

def get_eastern_now() -> datetime:
    """Get current time in US Eastern timezone."""
    return datetime.now(EASTERN)


def get_today_str() -> str:
    """Today's date (Eastern) as YYYY-MM-DD, the format used in the CSV files."""
    return get_eastern_now().strftime('%Y-%m-%d')


def is_market_hours(now: Optional[datetime] = None) -> bool:
    """
    Weekday and clock check for regular session hours (9:30 AM - 4:00 PM ET).

    Holidays are not known here; the broker clock
    (``AlpacaTradingClient.is_market_open``) is authoritative when available.
    """
    if now is None:
        now = get_eastern_now()
    else:
        now = now.astimezone(EASTERN)

    if now.weekday() >= 5:
        return False

    open_time = time(config.MARKET_OPEN_HOUR, config.MARKET_OPEN_MINUTE)
    close_time = time(config.MARKET_CLOSE_HOUR, config.MARKET_CLOSE_MINUTE)
    return open_time <= now.time() <= close_time


# =============================================================================
# FORMATTING HELPERS
# =============================================================================

def format_currency(value: float) -> str:
    """Format a value as currency."""
    if value is None:
        return "N/A"
    if value < 0:
        return f"-${abs(value):,.2f}"
    return f"${value:,.2f}"


def format_percentage(value: float, include_sign: bool = True) -> str:
    """Format a fraction (0.05) as a percentage string (+5.00%)."""
    if value is None:
        return "N/A"
    pct = value * 100
    if include_sign and pct > 0:
        return f"+{pct:.2f}%"
    return f"{pct:.2f}%"
