# portfolio_engine/decisions.py
"""
AI trading decisions and their strict decoder.

The advisory model is asked for a JSON array of
``{action, ticker, shares, stopLoss, reasoning}`` objects. Each element is
decoded into exactly one of BuyDecision / SellDecision / HoldDecision, or
rejected with a reason. Values are never coerced: a string "10" is not a
share count, true is not 1, and 10.5 shares is malformed.
"""

import json
import math
import re
from dataclasses import dataclass
from typing import Any, ClassVar, List, Optional, Tuple, Union

TICKER_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9.\-]{0,9}$')

ACTIONS = ('BUY', 'SELL', 'HOLD')


@dataclass(frozen=True)
class BuyDecision:
    """Open or add to a position with a protective stop."""
    ticker: str
    shares: int
    stop_loss: float    # > 0, required for every buy
    reasoning: str
    action: ClassVar[str] = 'BUY'


@dataclass(frozen=True)
class SellDecision:
    ticker: str
    shares: int
    reasoning: str
    action: ClassVar[str] = 'SELL'


@dataclass(frozen=True)
class HoldDecision:
    reasoning: str
    ticker: Optional[str] = None
    action: ClassVar[str] = 'HOLD'


Decision = Union[BuyDecision, SellDecision, HoldDecision]


@dataclass(frozen=True)
class Rejection:
    """A response element that was not turned into a decision."""
    index: Optional[int]   # Position in the array, None for whole-response failures
    reason: str
    raw: Any = None


class _Reject(Exception):
    pass


def decision_to_dict(decision: Decision) -> dict:
    """Plain dict in the advisory response's own field names."""
    data = {'action': decision.action, 'reasoning': decision.reasoning}
    if decision.ticker is not None:
        data['ticker'] = decision.ticker
    if isinstance(decision, (BuyDecision, SellDecision)):
        data['shares'] = decision.shares
    if isinstance(decision, BuyDecision):
        data['stopLoss'] = decision.stop_loss
    return data


def extract_json_array(content: str) -> Optional[list]:
    """First JSON array embedded in ``content`` (code fences and prose tolerated)."""
    decoder = json.JSONDecoder()
    start = content.find('[')
    while start != -1:
        try:
            value, _ = decoder.raw_decode(content, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            return value
        start = content.find('[', start + 1)
    return None


# =============================================================================
# Field decoders
# =============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _ticker(item: dict, required: bool) -> Optional[str]:
    value = item.get('ticker')
    if value is None:
        if required:
            raise _Reject("missing ticker")
        return None
    if not isinstance(value, str) or not TICKER_PATTERN.match(value.strip()):
        raise _Reject(f"malformed ticker {value!r}")
    return value.strip().upper()


def _shares(item: dict) -> int:
    value = item.get('shares')
    if value is None:
        raise _Reject("missing shares")
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Reject(f"shares must be a whole number, got {value!r}")
    if value <= 0:
        raise _Reject(f"shares must be positive, got {value}")
    return value


def _stop_loss(item: dict, required: bool) -> float:
    value = item.get('stopLoss')
    if value is None:
        if required:
            raise _Reject("BUY requires a stopLoss")
        return 0.0
    if not _is_number(value) or not math.isfinite(value):
        raise _Reject(f"stopLoss must be a number, got {value!r}")
    if value < 0:
        raise _Reject(f"stopLoss cannot be negative, got {value}")
    if required and value == 0:
        raise _Reject("BUY requires a positive stopLoss")
    return float(value)


def _reasoning(item: dict) -> str:
    value = item.get('reasoning')
    if not isinstance(value, str) or not value.strip():
        raise _Reject("missing reasoning")
    return value.strip()


def decode_decision(item: Any) -> Decision:
    """
    Decode one response element.

    Raises:
        ValueError: with the rejection reason
    """
    try:
        if not isinstance(item, dict):
            raise _Reject(f"expected an object, got {type(item).__name__}")

        action = item.get('action')
        if action not in ACTIONS:
            raise _Reject(f"unknown action {action!r}")

        reasoning = _reasoning(item)

        if action == 'BUY':
            return BuyDecision(
                ticker=_ticker(item, required=True),
                shares=_shares(item),
                stop_loss=_stop_loss(item, required=True),
                reasoning=reasoning
            )
        if action == 'SELL':
            ticker = _ticker(item, required=True)
            shares = _shares(item)
            _stop_loss(item, required=False)
            return SellDecision(ticker=ticker, shares=shares, reasoning=reasoning)

        return HoldDecision(reasoning=reasoning, ticker=_ticker(item, required=False))

    except _Reject as e:
        raise ValueError(str(e)) from None


def parse_decisions(content: str) -> Tuple[List[Decision], List[Rejection]]:
    """
    Decode an advisory response.

    Returns:
        (decisions, rejections). Content without a JSON array yields no
        decisions and a single rejection; nothing is inferred from prose.
    """
    items = extract_json_array(content or '')
    if items is None:
        snippet = (content or '')[:200]
        return [], [Rejection(None, "no JSON array found in response", snippet)]

    decisions: List[Decision] = []
    rejections: List[Rejection] = []
    for index, item in enumerate(items):
        try:
            decisions.append(decode_decision(item))
        except ValueError as e:
            rejections.append(Rejection(index, str(e), item))

    return decisions, rejections
