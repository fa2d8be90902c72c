"""Tests for the decision cache and the portfolio hash it is keyed on."""
import pytest

from portfolio_engine.decision_cache import DecisionCache, portfolio_hash
from portfolio_engine.decisions import BuyDecision, SellDecision
from portfolio_engine.models import Position


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def position(ticker, shares, price):
    p = Position(ticker, shares, shares * 5.0, 5.0)
    p.refresh(price)
    return p


@pytest.fixture
def portfolio():
    return [position('ABCD', 10, 6.0), position('WXYZ', 4, 7.5)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return DecisionCache(ttl_minutes=15, clock=clock)


SELL = SellDecision('ABCD', 5, 'Momentum fading')


# ─── Portfolio hash ──────────────────────────────────────────────────────────

def test_hash_is_order_independent(portfolio):
    assert portfolio_hash(portfolio, 100.0) == portfolio_hash(list(reversed(portfolio)), 100.0)


def test_hash_changes_with_cash(portfolio):
    assert portfolio_hash(portfolio, 100.0) != portfolio_hash(portfolio, 100.01)


def test_hash_changes_with_shares(portfolio):
    before = portfolio_hash(portfolio, 100.0)
    portfolio[0].shares = 11
    assert portfolio_hash(portfolio, 100.0) != before


def test_hash_changes_with_price(portfolio):
    before = portfolio_hash(portfolio, 100.0)
    portfolio[1].refresh(7.51)
    assert portfolio_hash(portfolio, 100.0) != before


def test_hash_changes_when_position_added(portfolio):
    before = portfolio_hash(portfolio, 100.0)
    assert portfolio_hash(portfolio + [position('NEWW', 1, 1.0)], 100.0) != before


# ─── Get / put ───────────────────────────────────────────────────────────────

def test_get_after_put_with_same_hash_hits(cache, portfolio):
    current = portfolio_hash(portfolio, 100.0)
    cache.put('ABCD', SELL, current)

    entry = cache.get('ABCD', current)

    assert entry is not None
    assert entry.decision == SELL


def test_portfolio_change_forces_miss(cache, portfolio):
    cache.put('ABCD', SELL, portfolio_hash(portfolio, 100.0))

    portfolio[0].refresh(5.5)

    assert cache.get('ABCD', portfolio_hash(portfolio, 100.0)) is None
    assert cache.get('ABCD', portfolio_hash(portfolio, 99.0)) is None


def test_none_decision_is_a_hit_not_a_miss(cache):
    cache.put('WXYZ', None, 'h1')

    entry = cache.get('WXYZ', 'h1')

    assert entry is not None
    assert entry.decision is None
    assert cache.get('NEVER', 'h1') is None


def test_put_overwrites_previous_entry(cache):
    cache.put('ABCD', SELL, 'h1')
    buy = BuyDecision('ABCD', 3, 4.0, 'Breakout')
    cache.put('ABCD', buy, 'h2')

    assert cache.get('ABCD', 'h1') is None
    assert cache.get('ABCD', 'h2').decision == buy
    assert len(cache) == 1


def test_entry_expires_at_ttl(cache, clock):
    cache.put('ABCD', SELL, 'h1')

    clock.now += 15 * 60 - 1
    assert cache.get('ABCD', 'h1') is not None

    clock.now += 1
    assert cache.get('ABCD', 'h1') is None


def test_clean_expired_purges_only_stale_entries(cache, clock):
    cache.put('OLD', SELL, 'h1')
    clock.now += 10 * 60
    cache.put('NEW', None, 'h1')
    clock.now += 6 * 60

    assert cache.clean_expired() == 1
    assert len(cache) == 1
    assert cache.get('NEW', 'h1') is not None
