"""Tests for strict decoding of advisory decisions."""
import json

import pytest

from portfolio_engine.decisions import (
    BuyDecision,
    HoldDecision,
    SellDecision,
    decision_to_dict,
    decode_decision,
    extract_json_array,
    parse_decisions,
)


def test_parses_each_variant():
    content = json.dumps([
        {'action': 'BUY', 'ticker': 'abcd', 'shares': 10, 'stopLoss': 4.5, 'reasoning': 'Catalyst'},
        {'action': 'SELL', 'ticker': 'WXYZ', 'shares': 3, 'reasoning': 'Thesis broken'},
        {'action': 'HOLD', 'reasoning': 'Nothing compelling'},
    ])

    decisions, rejections = parse_decisions(content)

    assert rejections == []
    assert decisions == [
        BuyDecision('ABCD', 10, 4.5, 'Catalyst'),
        SellDecision('WXYZ', 3, 'Thesis broken'),
        HoldDecision('Nothing compelling'),
    ]


def test_array_inside_prose_and_code_fence():
    content = (
        "Here is my analysis.\n```json\n"
        '[{"action": "HOLD", "ticker": "ABCD", "reasoning": "Wait for earnings"}]\n'
        "```\nGood luck [not json]"
    )

    decisions, rejections = parse_decisions(content)

    assert decisions == [HoldDecision('Wait for earnings', 'ABCD')]
    assert rejections == []


def test_free_text_yields_no_decisions():
    decisions, rejections = parse_decisions("I would BUY 10 shares of ABCD with a stop at 4.")

    assert decisions == []
    assert len(rejections) == 1
    assert rejections[0].index is None


@pytest.mark.parametrize('item, reason', [
    ({'action': 'SHORT', 'ticker': 'ABCD', 'shares': 1, 'reasoning': 'x'}, 'unknown action'),
    ({'action': 'buy', 'ticker': 'ABCD', 'shares': 1, 'stopLoss': 1.0, 'reasoning': 'x'}, 'unknown action'),
    ({'action': 'BUY', 'ticker': 'ABCD', 'shares': '10', 'stopLoss': 1.0, 'reasoning': 'x'}, 'whole number'),
    ({'action': 'BUY', 'ticker': 'ABCD', 'shares': 10.5, 'stopLoss': 1.0, 'reasoning': 'x'}, 'whole number'),
    ({'action': 'BUY', 'ticker': 'ABCD', 'shares': True, 'stopLoss': 1.0, 'reasoning': 'x'}, 'whole number'),
    ({'action': 'BUY', 'ticker': 'ABCD', 'shares': 0, 'stopLoss': 1.0, 'reasoning': 'x'}, 'positive'),
    ({'action': 'BUY', 'ticker': 'ABCD', 'shares': 10, 'reasoning': 'x'}, 'stopLoss'),
    ({'action': 'BUY', 'ticker': 'ABCD', 'shares': 10, 'stopLoss': 0, 'reasoning': 'x'}, 'positive stopLoss'),
    ({'action': 'BUY', 'ticker': 'ABCD', 'shares': 10, 'stopLoss': '4.5', 'reasoning': 'x'}, 'must be a number'),
    ({'action': 'SELL', 'ticker': 'ABCD', 'shares': 10, 'stopLoss': -1, 'reasoning': 'x'}, 'negative'),
    ({'action': 'SELL', 'shares': 10, 'reasoning': 'x'}, 'missing ticker'),
    ({'action': 'SELL', 'ticker': 'AB CD', 'shares': 10, 'reasoning': 'x'}, 'malformed ticker'),
    ({'action': 'HOLD', 'reasoning': '   '}, 'missing reasoning'),
    (['BUY', 'ABCD'], 'expected an object'),
])
def test_malformed_entries_are_rejected(item, reason):
    with pytest.raises(ValueError) as exc_info:
        decode_decision(item)
    assert reason in str(exc_info.value)


def test_bad_entries_do_not_block_good_ones():
    content = json.dumps([
        {'action': 'BUY', 'ticker': 'ABCD', 'shares': 'lots', 'stopLoss': 1.0, 'reasoning': 'x'},
        {'action': 'SELL', 'ticker': 'WXYZ', 'shares': 2, 'reasoning': 'Trim'},
    ])

    decisions, rejections = parse_decisions(content)

    assert decisions == [SellDecision('WXYZ', 2, 'Trim')]
    assert [r.index for r in rejections] == [0]


def test_decision_to_dict_uses_response_field_names():
    assert decision_to_dict(BuyDecision('ABCD', 10, 4.5, 'Catalyst')) == {
        'action': 'BUY', 'ticker': 'ABCD', 'shares': 10, 'stopLoss': 4.5, 'reasoning': 'Catalyst'
    }
    assert decision_to_dict(HoldDecision('Wait')) == {'action': 'HOLD', 'reasoning': 'Wait'}


def test_extract_json_array_skips_non_array_brackets():
    assert extract_json_array('see [note] then [1, 2]') == [1, 2]
    assert extract_json_array('no arrays here') is None
